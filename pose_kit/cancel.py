from __future__ import annotations

import threading


class FrameCancelled(RuntimeError):
    """Raised when a frame's processing is abandoned through its CancelToken."""


class CancelToken:
    """
    Cooperative cancellation flag shared between the frame scheduler and the
    pipeline stages. Stages poll it at their own safe points.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FrameCancelled("frame processing cancelled")
