from __future__ import annotations

from typing import List, Sequence, Union

from .coords import MappedCoordinates
from .types import Box, Candidate, CandidateBatch, Detection, Keypoints


def _xywh(row) -> tuple:
    return (float(row[0]), float(row[1]), float(row[2]), float(row[3]))


def _points(rows) -> tuple:
    return tuple((float(x), float(y)) for x, y in rows)


def assemble(
    candidates: Union[CandidateBatch, Sequence[Candidate]],
    selected: Sequence[int],
    mapped: MappedCoordinates,
) -> List[Detection]:
    """
    Build the output records in `selected` order.

    Row r of `mapped` belongs to `candidates[selected[r]]`. An empty selection
    yields an empty list, which the renderer treats as "clear the overlay".
    """

    if len(candidates) == 0 or len(selected) == 0:
        return []
    if len(mapped) != len(selected):
        raise ValueError(f"mapped rows ({len(mapped)}) do not match selected indices ({len(selected)})")

    if isinstance(candidates, CandidateBatch):
        scores = [float(candidates.scores[i]) for i in selected]
    else:
        scores = [float(candidates[i].confidence) for i in selected]

    detections: List[Detection] = []
    for r, score in enumerate(scores):
        detections.append(
            Detection(
                box=Box(
                    confidence=score,
                    xywh=_xywh(mapped.boxes_buffer[r]),
                    xywhn=_xywh(mapped.boxes_normalized[r]),
                ),
                keypoints=Keypoints(
                    xy=_points(mapped.keypoints_buffer[r]),
                    xyn=_points(mapped.keypoints_normalized[r]),
                ),
            )
        )
    return detections
