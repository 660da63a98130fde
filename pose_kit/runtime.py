from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from .cancel import CancelToken, FrameCancelled
from .postprocess import PosePostprocessor
from .types import Detection

logger = logging.getLogger(__name__)

ResultCallback = Callable[[int, List[Detection]], None]

POLICY_LATEST = "latest"
POLICY_DROP = "drop"


@dataclass(frozen=True)
class _PendingFrame:
    frame_id: int
    preds: np.ndarray
    buffer_size: Tuple[float, float]
    model_input_size: Optional[Tuple[float, float]]


class FrameWorker:
    """
    Runs pose post-processing for a live stream on one background thread.

    `submit` never blocks the capture side. When a frame arrives while the
    worker is busy:
    - policy "drop": the new frame is dropped
    - policy "latest": the in-flight frame runs to completion and the newest
      frame replaces anything still pending, so results lag the input by at
      most one frame however slow processing gets

    `stop` cancels the in-flight frame cooperatively.

    `on_result(frame_id, detections)` is called on the worker thread for every
    finished frame, including empty results (the renderer clears its overlay).
    Cancelled frames are never delivered; other failures are logged and
    delivered as an empty list.
    """

    def __init__(
        self,
        postprocessor: PosePostprocessor,
        on_result: ResultCallback,
        *,
        policy: str = POLICY_LATEST,
        name: str = "pose-frame-worker",
    ):
        if policy not in (POLICY_LATEST, POLICY_DROP):
            raise ValueError(f"Unsupported frame policy: {policy!r}")
        self.postprocessor = postprocessor
        self.on_result = on_result
        self.policy = policy
        self.name = name

        self._cond = threading.Condition()
        self._pending: Optional[_PendingFrame] = None
        self._in_flight: Optional[CancelToken] = None
        self._stopping = False
        self._thread: Optional[threading.Thread] = None
        self._next_frame_id = 0

        self.processed = 0
        self.dropped = 0
        self.cancelled = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "FrameWorker":
        with self._cond:
            if self.running:
                return self
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.info("%s started (policy=%s)", self.name, self.policy)
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._cond:
            self._stopping = True
            self._pending = None
            if self._in_flight is not None:
                self._in_flight.cancel()
            self._cond.notify_all()
            thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None
        logger.info(
            "%s stopped: processed=%d dropped=%d cancelled=%d failed=%d",
            self.name,
            self.processed,
            self.dropped,
            self.cancelled,
            self.failed,
        )

    def submit(
        self,
        preds: np.ndarray,
        buffer_size: Tuple[float, float],
        *,
        model_input_size: Optional[Tuple[float, float]] = None,
        frame_id: Optional[int] = None,
    ) -> bool:
        """
        Queue a frame. Returns False when the frame was dropped (policy "drop"
        and the worker is busy).
        """

        with self._cond:
            if not self.running or self._stopping:
                raise RuntimeError(f"{self.name} is not running")

            if frame_id is None:
                frame_id = self._next_frame_id
            self._next_frame_id = max(self._next_frame_id, int(frame_id)) + 1

            busy = self._in_flight is not None or self._pending is not None
            if busy and self.policy == POLICY_DROP:
                self.dropped += 1
                logger.debug("%s busy, dropping frame %d", self.name, frame_id)
                return False

            if self._pending is not None:
                self.dropped += 1
                logger.debug("%s replacing stale frame %d", self.name, self._pending.frame_id)

            self._pending = _PendingFrame(
                frame_id=int(frame_id),
                preds=preds,
                buffer_size=buffer_size,
                model_input_size=model_input_size,
            )
            self._cond.notify_all()
            return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is pending or in flight. Returns False on timeout."""

        with self._cond:
            return self._cond.wait_for(lambda: self._pending is None and self._in_flight is None, timeout)

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending is not None or self._stopping)
                if self._stopping:
                    return
                job = self._pending
                self._pending = None
                token = CancelToken()
                self._in_flight = token

            detections: Optional[List[Detection]] = None
            try:
                detections = self.postprocessor.process(
                    job.preds,
                    job.buffer_size,
                    model_input_size=job.model_input_size,
                    cancel=token,
                )
            except FrameCancelled:
                self.cancelled += 1
                logger.debug("%s cancelled frame %d", self.name, job.frame_id)
            except Exception:
                self.failed += 1
                logger.exception("%s failed on frame %d; delivering empty result", self.name, job.frame_id)
                detections = []

            if detections is not None:
                self.processed += 1
                self._deliver(job.frame_id, detections)

            with self._cond:
                self._in_flight = None
                self._cond.notify_all()

    def _deliver(self, frame_id: int, detections: List[Detection]) -> None:
        try:
            self.on_result(frame_id, detections)
        except Exception:
            logger.exception("%s result callback raised for frame %d", self.name, frame_id)

    def __enter__(self) -> "FrameWorker":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()
