from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .types import Size

logger = logging.getLogger(__name__)

DEFAULT_MODEL_INPUT_SIZE = Size(640, 640)


def _positive_int(value: object) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        v = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None
    return v if v > 0 else None


def model_input_size_from_shape(
    shape: Optional[Sequence[object]],
    default: Size = DEFAULT_MODEL_INPUT_SIZE,
) -> Size:
    """
    Model input size from a declared input shape.

    - 4 dims: NCHW (e.g. ONNX Runtime `session.get_inputs()[0].shape`)
    - 3 dims: CHW
    - 2 dims: (H, W)

    Dynamic dims (strings like "height", None, <= 0) fall back to `default`.
    """

    if shape is None:
        return default
    dims = list(shape)
    if len(dims) >= 4:
        h, w = dims[-2], dims[-1]
    elif len(dims) == 3:
        h, w = dims[1], dims[2]
    elif len(dims) == 2:
        h, w = dims[0], dims[1]
    else:
        logger.warning("Cannot infer model input size from shape %s; using %s", dims, tuple(default))
        return default

    h_i, w_i = _positive_int(h), _positive_int(w)
    if h_i is None or w_i is None:
        logger.warning("Model input shape %s is dynamic; using %s", dims, tuple(default))
        return default
    return Size(w_i, h_i)


def _parse_inline_list(text: str) -> List[str]:
    return [t.strip() for t in text.strip().strip("[]").split(",") if t.strip()]


def load_model_input_size(metadata_path: str, default: Size = DEFAULT_MODEL_INPUT_SIZE) -> Size:
    """
    Read `imgsz` from an exported model's lightweight `metadata.yaml`.

    Exports store it as [height, width], either inline or as a block list:

        imgsz:
        - 640
        - 480

    A scalar `imgsz: 640` means square. Avoids adding a PyYAML dependency.
    """

    values: List[str] = []
    in_imgsz = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            if in_imgsz:
                if line.startswith("-"):
                    values.append(line[1:].strip())
                    continue
                break

            if not line.startswith("imgsz:"):
                continue
            right = line.split(":", 1)[1].strip()
            if right:
                values = _parse_inline_list(right)
                break
            in_imgsz = True

    if len(values) == 1:
        values = values * 2
    if len(values) != 2:
        logger.warning("No usable imgsz in %s; using %s", metadata_path, tuple(default))
        return default
    return model_input_size_from_shape(values, default=default)
