"""
Coordinate spaces used by the pose pipeline:

- model space: pixels of the network input (e.g. 640x640)
- normalized space: model space divided by the model input size
- buffer space: normalized space multiplied by the sensor buffer size

Buffer coordinates are always derived from normalized ones so that only the
dimensionless stage needs recomputing when the buffer size changes (rotation).
Nothing is clamped; out-of-frame detections keep values outside [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .types import CandidateBatch, Size


def _check_size(size: Tuple[float, float], name: str) -> Tuple[float, float]:
    w, h = float(size[0]), float(size[1])
    if not (w > 0 and h > 0):
        raise ValueError(f"{name} must be positive, got {tuple(size)}")
    return w, h


def boxes_to_normalized(boxes: np.ndarray, model_input_size: Tuple[float, float]) -> np.ndarray:
    mw, mh = _check_size(model_input_size, "model_input_size")
    return np.asarray(boxes, dtype=np.float64) / np.array([mw, mh, mw, mh])


def points_to_normalized(points: np.ndarray, model_input_size: Tuple[float, float]) -> np.ndarray:
    mw, mh = _check_size(model_input_size, "model_input_size")
    return np.asarray(points, dtype=np.float64) / np.array([mw, mh])


def normalized_boxes_to_buffer(boxes: np.ndarray, buffer_size: Tuple[float, float]) -> np.ndarray:
    bw, bh = _check_size(buffer_size, "buffer_size")
    return np.asarray(boxes, dtype=np.float64) * np.array([bw, bh, bw, bh])


def normalized_points_to_buffer(points: np.ndarray, buffer_size: Tuple[float, float]) -> np.ndarray:
    bw, bh = _check_size(buffer_size, "buffer_size")
    return np.asarray(points, dtype=np.float64) * np.array([bw, bh])


@dataclass(frozen=True, eq=False)
class MappedCoordinates:
    """
    Row-aligned coordinates for a batch of candidates.

    boxes_*: (M, 4) xywh, keypoints_*: (M, K, 2) xy
    """

    boxes_normalized: np.ndarray
    boxes_buffer: np.ndarray
    keypoints_normalized: np.ndarray
    keypoints_buffer: np.ndarray

    def __len__(self) -> int:
        return int(self.boxes_normalized.shape[0])


class CoordinateMapper:
    def __init__(self, model_input_size: Tuple[float, float] = Size(640, 640)):
        _check_size(model_input_size, "model_input_size")
        self.model_input_size = Size(float(model_input_size[0]), float(model_input_size[1]))

    def map(self, batch: CandidateBatch, buffer_size: Tuple[float, float]) -> MappedCoordinates:
        keypoints = np.asarray(batch.features, dtype=np.float64).reshape(len(batch), batch.num_keypoints, 2)

        boxes_n = boxes_to_normalized(batch.boxes, self.model_input_size)
        kps_n = points_to_normalized(keypoints, self.model_input_size)
        return MappedCoordinates(
            boxes_normalized=boxes_n,
            boxes_buffer=normalized_boxes_to_buffer(boxes_n, buffer_size),
            keypoints_normalized=kps_n,
            keypoints_buffer=normalized_points_to_buffer(kps_n, buffer_size),
        )
