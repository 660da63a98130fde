from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, NamedTuple, Sequence, Tuple, Union, overload

import numpy as np


XYWH = Tuple[float, float, float, float]
XY = Tuple[float, float]


class Size(NamedTuple):
    """Pixel size as (width, height)."""

    width: float
    height: float


@dataclass(frozen=True)
class FrameContext:
    """
    Per-frame geometry supplied by the capture/inference side.

    buffer_size: pixel size of the sensor frame that produced the tensor
    model_input_size: pixel size the network consumes
    """

    buffer_size: Size
    model_input_size: Size = Size(640, 640)


@dataclass(frozen=True)
class Candidate:
    """
    One anchor that passed the confidence filter.

    `box` is corner-form (x, y, w, h) in model space, `keypoint_features` holds
    2K values laid out as x0, y0, x1, y1, ...
    """

    box: XYWH
    confidence: float
    keypoint_features: Tuple[float, ...] = ()

    @property
    def num_keypoints(self) -> int:
        return len(self.keypoint_features) // 2


@dataclass(frozen=True, eq=False)
class CandidateBatch(Sequence[Candidate]):
    """
    Array-backed sequence of candidates produced by the decoder.

    boxes: (M, 4) float32 corner-form x, y, w, h in model space
    scores: (M,) float32 confidences
    features: (M, 2K) float32 keypoint features
    """

    boxes: np.ndarray
    scores: np.ndarray
    features: np.ndarray

    @classmethod
    def empty(cls, num_features: int = 0) -> "CandidateBatch":
        return cls(
            boxes=np.zeros((0, 4), dtype=np.float32),
            scores=np.zeros((0,), dtype=np.float32),
            features=np.zeros((0, num_features), dtype=np.float32),
        )

    @property
    def num_keypoints(self) -> int:
        return int(self.features.shape[1]) // 2

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    @overload
    def __getitem__(self, index: int) -> Candidate: ...

    @overload
    def __getitem__(self, index: slice) -> "CandidateBatch": ...

    def __getitem__(self, index: Union[int, slice]) -> Union[Candidate, "CandidateBatch"]:
        if isinstance(index, slice):
            return CandidateBatch(self.boxes[index], self.scores[index], self.features[index])
        x, y, w, h = self.boxes[index]
        return Candidate(
            box=(float(x), float(y), float(w), float(h)),
            confidence=float(self.scores[index]),
            keypoint_features=tuple(float(v) for v in self.features[index]),
        )

    def __iter__(self) -> Iterator[Candidate]:
        for i in range(len(self)):
            yield self[i]

    def take(self, indices: Sequence[int]) -> "CandidateBatch":
        idx = np.asarray(indices, dtype=np.intp).reshape(-1)
        return CandidateBatch(self.boxes[idx], self.scores[idx], self.features[idx])


@dataclass(frozen=True)
class Box:
    """Box in buffer pixels (`xywh`) and normalized space (`xywhn`)."""

    confidence: float
    xywh: XYWH
    xywhn: XYWH

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        x, y, w, h = self.xywh
        return x, y, x + w, y + h


@dataclass(frozen=True)
class Keypoints:
    xy: Tuple[XY, ...] = ()
    xyn: Tuple[XY, ...] = ()

    def __len__(self) -> int:
        return len(self.xy)


@dataclass(frozen=True)
class Detection:
    """
    Final per-frame output record handed to the renderer.
    """

    box: Box
    keypoints: Keypoints

    @property
    def confidence(self) -> float:
        return self.box.confidence
