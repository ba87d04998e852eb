"""Signal handling for cancellation of running operations."""

from __future__ import annotations

import logging
import signal
import threading
import types
from collections.abc import Callable, Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class CancellationScope:
    """Cancellation state of one invocation.

    The first SIGINT or SIGTERM sets the cancel event and runs the abort
    callbacks so that waits and remote commands end and cleanup can run.
    A second signal raises KeyboardInterrupt.

    Parameters
    ----------
    cancel_event : threading.Event | None
        Event to set on cancellation, a new one if None
    """

    def __init__(self, cancel_event: threading.Event | None = None) -> None:
        self.cancel_event = cancel_event or threading.Event()
        self._lock = threading.Lock()
        self._abort_callbacks: list[Callable[[], None]] = []

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback run on the first cancellation signal."""
        with self._lock:
            self._abort_callbacks.append(callback)

    def handle_signal(self, signum: int, frame: types.FrameType | None) -> None:
        if self.cancel_event.is_set():
            raise KeyboardInterrupt

        logger.warning(
            "Received %s, cancelling (press Ctrl+C again to force quit)...",
            signal.Signals(signum).name,
        )
        self.cancel_event.set()

        with self._lock:
            callbacks = list(self._abort_callbacks)

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug("Abort callback failed: %s", e)


@contextmanager
def signal_handlers(scope: CancellationScope) -> Iterator[CancellationScope]:
    """Route SIGINT and SIGTERM to a cancellation scope for the block.

    Previous handlers are restored on exit. Outside the main thread signals
    cannot be handled, so the scope is yielded without installing handlers.
    """
    if threading.current_thread() is not threading.main_thread():
        yield scope
        return

    previous = {
        signal.SIGINT: signal.signal(signal.SIGINT, scope.handle_signal),
        signal.SIGTERM: signal.signal(signal.SIGTERM, scope.handle_signal),
    }
    try:
        yield scope
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
