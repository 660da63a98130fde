"""
Decode raw pose-model output into confidence-filtered candidates.

Supported layout (per image): (1, 5 + 2K, N) or the squeezed (5 + 2K, N),
channel-major with anchors on the last axis:

    channel 0..3  -> cx, cy, w, h (model pixels)
    channel 4     -> objectness confidence
    channel 5..   -> K keypoints as interleaved x, y pairs (model pixels)
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from .cancel import CancelToken
from .types import CandidateBatch

logger = logging.getLogger(__name__)

BOX_CHANNELS = 4
CONF_CHANNEL = 4
KEYPOINT_OFFSET = 5

_Chunk = Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]


class ShapeError(ValueError):
    """Raised when a tensor does not follow the (1, 5 + 2K, N) pose layout."""


def _as_channels_anchors(tensor: np.ndarray) -> np.ndarray:
    p = np.asarray(tensor)
    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ShapeError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one frame at a time.")
        p = p[0]
    if p.ndim != 2:
        raise ShapeError(f"Unsupported pose output shape: {p.shape}")

    channels = int(p.shape[0])
    if channels < KEYPOINT_OFFSET:
        raise ShapeError(f"Expected at least {KEYPOINT_OFFSET} channels, got shape {p.shape}")
    if (channels - KEYPOINT_OFFSET) % 2 != 0:
        raise ShapeError(
            f"Keypoint channels must come in x, y pairs; got {channels - KEYPOINT_OFFSET} "
            f"extra channels (shape {p.shape})"
        )
    return np.ascontiguousarray(p, dtype=np.float32)


def partition_anchors(num_anchors: int, workers: int, min_anchors_per_worker: int = 1) -> List[Tuple[int, int]]:
    """
    Split [0, num_anchors) into contiguous (start, stop) chunks, at most one per
    worker and never smaller than `min_anchors_per_worker` (except the last).
    """

    if num_anchors <= 0:
        return [(0, 0)]
    per = max(1, int(min_anchors_per_worker))
    n_chunks = max(1, min(int(workers), math.ceil(num_anchors / per)))
    step = math.ceil(num_anchors / n_chunks)
    return [(start, min(start + step, num_anchors)) for start in range(0, num_anchors, step)]


def _decode_chunk(
    p: np.ndarray,
    start: int,
    stop: int,
    conf_threshold: float,
    cancel: Optional[CancelToken],
) -> _Chunk:
    if cancel is not None:
        cancel.raise_if_cancelled()

    conf = p[CONF_CHANNEL, start:stop]
    hit = np.flatnonzero(conf > conf_threshold)
    if hit.size == 0:
        return None

    cols = hit + start
    cx, cy, w, h = p[0:BOX_CHANNELS, cols]
    # cxcywh -> corner form xywh
    boxes = np.stack([cx - w / 2, cy - h / 2, w, h], axis=1)
    scores = conf[hit].copy()
    features = p[KEYPOINT_OFFSET:, cols].T.copy()
    return boxes, scores, features


def _merge(parts: List[_Chunk], num_features: int) -> CandidateBatch:
    parts_ok = [part for part in parts if part is not None]
    if not parts_ok:
        return CandidateBatch.empty(num_features)
    if len(parts_ok) == 1:
        boxes, scores, features = parts_ok[0]
        return CandidateBatch(boxes=boxes, scores=scores, features=features)
    return CandidateBatch(
        boxes=np.concatenate([part[0] for part in parts_ok], axis=0),
        scores=np.concatenate([part[1] for part in parts_ok], axis=0),
        features=np.concatenate([part[2] for part in parts_ok], axis=0),
    )


def decode(
    tensor: np.ndarray,
    conf_threshold: float,
    *,
    workers: int = 1,
    executor: Optional[Executor] = None,
    min_anchors_per_worker: int = 2048,
    cancel: Optional[CancelToken] = None,
) -> CandidateBatch:
    """
    Keep every anchor whose confidence is strictly above `conf_threshold`.

    Anchors are split into contiguous chunks; each chunk is decoded on its own
    (optionally on `executor` or a temporary thread pool) and the partial
    results are concatenated in chunk order after all of them finish, so the
    output is the same whatever the worker count.

    Raises:
        ShapeError: tensor is not (1, 5 + 2K, N) / (5 + 2K, N)
        FrameCancelled: `cancel` was triggered before all chunks ran
    """

    if not 0.0 <= conf_threshold <= 1.0:
        raise ValueError("conf_threshold must be in [0, 1]")
    if workers < 1:
        raise ValueError("workers must be >= 1")

    p = _as_channels_anchors(tensor)
    num_features = p.shape[0] - KEYPOINT_OFFSET
    num_anchors = int(p.shape[1])
    chunks = partition_anchors(num_anchors, workers, min_anchors_per_worker)

    if len(chunks) == 1:
        parts = [_decode_chunk(p, chunks[0][0], chunks[0][1], conf_threshold, cancel)]
    elif executor is not None:
        parts = list(executor.map(lambda c: _decode_chunk(p, c[0], c[1], conf_threshold, cancel), chunks))
    else:
        with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
            parts = list(pool.map(lambda c: _decode_chunk(p, c[0], c[1], conf_threshold, cancel), chunks))

    batch = _merge(parts, num_features)
    logger.debug(
        "decoded %d/%d anchors above %.3f (%d chunks, %d keypoints)",
        len(batch),
        num_anchors,
        conf_threshold,
        len(chunks),
        num_features // 2,
    )
    return batch


class TensorDecoder:
    """
    Reusable decoder that keeps one thread pool alive across frames.

    With `workers == 1` no pool is created and decoding runs on the caller's thread.
    """

    def __init__(self, workers: int = 1, min_anchors_per_worker: int = 2048):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if min_anchors_per_worker < 1:
            raise ValueError("min_anchors_per_worker must be >= 1")
        self.workers = int(workers)
        self.min_anchors_per_worker = int(min_anchors_per_worker)
        self._executor: Optional[ThreadPoolExecutor] = None

    def _pool(self) -> Optional[ThreadPoolExecutor]:
        if self.workers == 1:
            return None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="pose-decode")
        return self._executor

    def decode(
        self,
        tensor: np.ndarray,
        conf_threshold: float,
        cancel: Optional[CancelToken] = None,
    ) -> CandidateBatch:
        return decode(
            tensor,
            conf_threshold,
            workers=self.workers,
            executor=self._pool(),
            min_anchors_per_worker=self.min_anchors_per_worker,
            cancel=cancel,
        )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "TensorDecoder":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
