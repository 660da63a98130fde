from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .types import Candidate, CandidateBatch


@dataclass(frozen=True)
class NMSConfig:
    overlap_threshold: float = 0.5
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.overlap_threshold <= 1.0:
            raise ValueError("overlap_threshold must be in [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 when set")


def _corners(boxes: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    # Negative extents span backwards from the origin, same as a standardized rect.
    x, y, w, h = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    return np.minimum(x, x + w), np.minimum(y, y + h), np.maximum(x, x + w), np.maximum(y, y + h)


def overlap_ratio(box_a: Sequence[float], box_b: Sequence[float]) -> float:
    """
    Intersection area over the smaller of the two areas, for corner-form
    (x, y, w, h) boxes. Zero-area boxes never overlap anything (ratio 0).
    """

    pair = np.asarray([box_a, box_b], dtype=np.float64).reshape(2, 4)
    x1, y1, x2, y2 = _corners(pair)
    areas = (x2 - x1) * (y2 - y1)
    smaller = float(min(areas[0], areas[1]))
    if smaller <= 0.0:
        return 0.0
    iw = max(0.0, float(min(x2[0], x2[1]) - max(x1[0], x1[1])))
    ih = max(0.0, float(min(y2[0], y2[1]) - max(y1[0], y1[1])))
    return (iw * ih) / smaller


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NMS over intersection-over-minimum-area. Expects boxes shape (N, 4)
    in corner-form xywh and scores shape (N,).

    Boxes are visited by descending score (ties keep input order); each kept
    box deactivates every later active box whose overlap ratio is strictly
    above `cfg.overlap_threshold`. Returns kept indices in selection order.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores).reshape(-1)
    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.intp)
    if scores.shape[0] != boxes.shape[0]:
        raise ValueError(f"boxes/scores length mismatch: {boxes.shape[0]} vs {scores.shape[0]}")

    x1, y1, x2, y2 = _corners(boxes)
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    active = np.ones(boxes.shape[0], dtype=bool)
    keep: List[int] = []

    for pos, i in enumerate(order):
        if not active[i]:
            continue
        keep.append(int(i))
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break

        rest = order[pos + 1 :]
        rest = rest[active[rest]]
        if rest.size == 0:
            continue

        w = np.maximum(0.0, np.minimum(x2[i], x2[rest]) - np.maximum(x1[i], x1[rest]))
        h = np.maximum(0.0, np.minimum(y2[i], y2[rest]) - np.maximum(y1[i], y1[rest]))
        inter = w * h
        smaller = np.minimum(areas[i], areas[rest])
        ratio = np.divide(inter, smaller, out=np.zeros_like(inter), where=smaller > 0)

        active[rest[ratio > cfg.overlap_threshold]] = False

    return np.array(keep, dtype=np.intp)


def suppress(
    candidates: Union[CandidateBatch, Sequence[Candidate]],
    overlap_threshold: float = 0.5,
    max_detections: Optional[int] = None,
) -> List[int]:
    """
    Indices (into `candidates`) of the survivors, in selection order.
    """

    cfg = NMSConfig(overlap_threshold=overlap_threshold, max_detections=max_detections)
    if isinstance(candidates, CandidateBatch):
        boxes, scores = candidates.boxes, candidates.scores
    else:
        boxes = np.array([c.box for c in candidates], dtype=np.float64).reshape(-1, 4)
        scores = np.array([c.confidence for c in candidates], dtype=np.float64)
    return nms(boxes, scores, cfg).tolist()
