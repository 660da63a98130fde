from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .metadata import DEFAULT_MODEL_INPUT_SIZE
from .postprocess import PosePostConfig
from .types import Size


@dataclass(frozen=True)
class PostProfile:
    config: PosePostConfig
    model_input_size: Size = DEFAULT_MODEL_INPUT_SIZE
    notes: Optional[str] = None


def _optional_number(payload: Dict[str, Any], key: str, default: float) -> float:
    if key not in payload:
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    if key not in payload:
        return default
    value = payload[key]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _parse_size(value: Any) -> Size:
    if not isinstance(value, list) or len(value) != 2:
        raise ValueError("model_input_size must be a [width, height] list")
    for v in value:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or v <= 0:
            raise ValueError("model_input_size entries must be positive numbers")
    return Size(float(value[0]), float(value[1]))


def load_post_profile(path: Path) -> PostProfile:
    """
    Load a post-processing profile JSON, for example:

        {"schema_version": 1, "conf_threshold": 0.4, "overlap_threshold": 0.5,
         "workers": 4, "model_input_size": [640, 640]}

    Every key except `schema_version` is optional and falls back to the
    `PosePostConfig` defaults. Invalid values are rejected here, not per frame.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Post-processing profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid post-processing profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Post-processing profile must be a JSON object")

    allowed = {
        "schema_version",
        "conf_threshold",
        "overlap_threshold",
        "max_detections",
        "workers",
        "min_anchors_per_worker",
        "model_input_size",
        "notes",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown post-processing profile keys: {unknown}")

    if "schema_version" not in payload:
        raise ValueError("Missing required key: schema_version")
    if _optional_int(payload, "schema_version", None) != 1:
        raise ValueError("post-processing profile schema_version must be 1")

    defaults = PosePostConfig()
    workers = _optional_int(payload, "workers", defaults.workers)
    min_per_worker = _optional_int(payload, "min_anchors_per_worker", defaults.min_anchors_per_worker)
    config = PosePostConfig(
        conf_threshold=_optional_number(payload, "conf_threshold", defaults.conf_threshold),
        overlap_threshold=_optional_number(payload, "overlap_threshold", defaults.overlap_threshold),
        max_detections=_optional_int(payload, "max_detections", defaults.max_detections),
        workers=defaults.workers if workers is None else workers,
        min_anchors_per_worker=defaults.min_anchors_per_worker if min_per_worker is None else min_per_worker,
    )

    model_input_size = DEFAULT_MODEL_INPUT_SIZE
    if "model_input_size" in payload:
        model_input_size = _parse_size(payload["model_input_size"])

    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string if provided")

    return PostProfile(config=config, model_input_size=model_input_size, notes=notes)


def load_post_config(path: Path) -> PosePostConfig:
    return load_post_profile(path).config
