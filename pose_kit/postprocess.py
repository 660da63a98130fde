from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .assemble import assemble
from .cancel import CancelToken, FrameCancelled
from .coords import CoordinateMapper
from .decode import ShapeError, TensorDecoder
from .nms import NMSConfig, nms
from .types import Detection, FrameContext, Size

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PosePostConfig:
    """
    Konfigurasi untuk pose post processing
    """

    conf_threshold: float = 0.35
    # Overlap is intersection over the smaller box area, not IoU.
    overlap_threshold: float = 0.5
    # None keeps every NMS survivor.
    max_detections: Optional[int] = None
    # Threads used to decode anchors; 1 decodes on the calling thread.
    workers: int = 1
    min_anchors_per_worker: int = 2048

    def __post_init__(self) -> None:
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be in [0, 1]")
        if not 0.0 <= self.overlap_threshold <= 1.0:
            raise ValueError("overlap_threshold must be in [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 when set")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.min_anchors_per_worker < 1:
            raise ValueError("min_anchors_per_worker must be >= 1")


class PosePostprocessor:
    """
    Post-process untuk output pose model (1, 5 + 2K, N):

        decode (confidence filter) -> NMS -> map ke normalized/buffer -> Detection

    Thresholds can be changed between frames with `update_config`; every
    `process` call works on the config snapshot taken when it started.
    """

    def __init__(self, cfg: PosePostConfig = PosePostConfig(), model_input_size: Tuple[float, float] = Size(640, 640)):
        self._cfg = cfg
        self._cfg_lock = threading.Lock()
        self.mapper = CoordinateMapper(model_input_size)
        self._decoder = TensorDecoder(cfg.workers, cfg.min_anchors_per_worker)
        # Frames currently decoding with each decoder; replaced decoders are
        # closed once their last frame finishes.
        self._decoder_users: Dict[TensorDecoder, int] = {}
        self._retired: List[TensorDecoder] = []

    @property
    def cfg(self) -> PosePostConfig:
        with self._cfg_lock:
            return self._cfg

    @property
    def model_input_size(self) -> Size:
        return self.mapper.model_input_size

    def update_config(self, **changes: Any) -> PosePostConfig:
        """
        Replace config fields (validated) and return the new config. Intended
        to be called between frames; in-flight frames keep their snapshot,
        including the decoder they started with.
        """

        old_decoder: Optional[TensorDecoder] = None
        with self._cfg_lock:
            new_cfg = replace(self._cfg, **changes)
            old_cfg = self._cfg
            self._cfg = new_cfg
            if (new_cfg.workers, new_cfg.min_anchors_per_worker) != (old_cfg.workers, old_cfg.min_anchors_per_worker):
                old_decoder = self._decoder
                self._decoder = TensorDecoder(new_cfg.workers, new_cfg.min_anchors_per_worker)
                if self._decoder_users.get(old_decoder, 0) > 0:
                    self._retired.append(old_decoder)
                    old_decoder = None
        if old_decoder is not None:
            old_decoder.close()
        logger.info(
            "post config updated: conf=%.3f overlap=%.3f workers=%d",
            new_cfg.conf_threshold,
            new_cfg.overlap_threshold,
            new_cfg.workers,
        )
        return new_cfg

    def _acquire(self) -> Tuple[PosePostConfig, TensorDecoder]:
        with self._cfg_lock:
            cfg, decoder = self._cfg, self._decoder
            self._decoder_users[decoder] = self._decoder_users.get(decoder, 0) + 1
        return cfg, decoder

    def _release(self, decoder: TensorDecoder) -> None:
        with self._cfg_lock:
            users = self._decoder_users[decoder] - 1
            if users:
                self._decoder_users[decoder] = users
                return
            del self._decoder_users[decoder]
            if decoder not in self._retired:
                return
            self._retired.remove(decoder)
        decoder.close()

    def process(
        self,
        preds: np.ndarray,
        buffer_size: Tuple[float, float],
        *,
        model_input_size: Optional[Tuple[float, float]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> List[Detection]:
        """
        Mengkonversikan raw output model menjadi list Detection.

        Args:
            preds: output model untuk single frame, (1, 5 + 2K, N) atau (5 + 2K, N)
            buffer_size: (width, height) dari sensor frame
            model_input_size: override ukuran input model untuk frame ini
            cancel: token untuk membatalkan frame yang sudah basi

        Any failure inside the frame is logged and yields [] so the stream
        keeps going. Only FrameCancelled propagates.
        """

        cfg, decoder = self._acquire()
        try:
            return self._run(preds, buffer_size, cfg, decoder, model_input_size, cancel)
        except FrameCancelled:
            raise
        except ShapeError as exc:
            logger.warning("Skipping frame with malformed pose output: %s", exc)
            return []
        except Exception:
            logger.exception("Pose post-processing failed; returning empty frame")
            return []
        finally:
            self._release(decoder)

    def _run(
        self,
        preds: np.ndarray,
        buffer_size: Tuple[float, float],
        cfg: PosePostConfig,
        decoder: TensorDecoder,
        model_input_size: Optional[Tuple[float, float]],
        cancel: Optional[CancelToken],
    ) -> List[Detection]:
        mapper = self.mapper if model_input_size is None else CoordinateMapper(model_input_size)

        candidates = decoder.decode(preds, cfg.conf_threshold, cancel=cancel)
        if len(candidates) == 0:
            return []

        if cancel is not None:
            cancel.raise_if_cancelled()
        nms_cfg = NMSConfig(overlap_threshold=cfg.overlap_threshold, max_detections=cfg.max_detections)
        selected = nms(candidates.boxes, candidates.scores, nms_cfg)

        if cancel is not None:
            cancel.raise_if_cancelled()
        mapped = mapper.map(candidates.take(selected), buffer_size)
        detections = assemble(candidates, selected.tolist(), mapped)

        logger.debug("%d candidates -> %d detections", len(candidates), len(detections))
        return detections

    def process_frame(
        self,
        preds: np.ndarray,
        ctx: FrameContext,
        cancel: Optional[CancelToken] = None,
    ) -> List[Detection]:
        return self.process(preds, ctx.buffer_size, model_input_size=ctx.model_input_size, cancel=cancel)

    def __call__(self, preds: np.ndarray, buffer_size: Tuple[float, float]) -> List[Detection]:
        return self.process(preds, buffer_size)

    def close(self) -> None:
        with self._cfg_lock:
            decoders = [self._decoder] + self._retired
            self._retired = []
        for decoder in decoders:
            decoder.close()

    def __enter__(self) -> "PosePostprocessor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
