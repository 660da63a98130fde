"""
Per-frame post-processing for pose-detection models.

Turns a raw (1, 5 + 2K, N) output tensor into deduplicated detections with
keypoints, expressed in normalized and sensor-buffer coordinates. Framework
agnostic: works on NumPy arrays from any inference runtime.
"""

from .types import Box, Candidate, CandidateBatch, Detection, FrameContext, Keypoints, Size
from .cancel import CancelToken, FrameCancelled
from .decode import ShapeError, TensorDecoder, decode
from .nms import NMSConfig, nms, overlap_ratio, suppress
from .coords import CoordinateMapper, MappedCoordinates
from .assemble import assemble
from .postprocess import PosePostConfig, PosePostprocessor
from .runtime import FrameWorker
from .metadata import load_model_input_size, model_input_size_from_shape
from .config import PostProfile, load_post_config, load_post_profile

__all__ = [
    "Box",
    "Candidate",
    "CandidateBatch",
    "Detection",
    "FrameContext",
    "Keypoints",
    "Size",
    "CancelToken",
    "FrameCancelled",
    "ShapeError",
    "TensorDecoder",
    "decode",
    "NMSConfig",
    "nms",
    "overlap_ratio",
    "suppress",
    "CoordinateMapper",
    "MappedCoordinates",
    "assemble",
    "PosePostConfig",
    "PosePostprocessor",
    "FrameWorker",
    "load_model_input_size",
    "model_input_size_from_shape",
    "PostProfile",
    "load_post_config",
    "load_post_profile",
]
