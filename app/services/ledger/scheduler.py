"""
Trailing-edge debounced scheduler.

Successive ``schedule()`` calls within the quiet window collapse into one
callback invocation carrying the arguments of the *last* call.  A pending
call is never dropped: ``flush()`` runs it immediately, ``cancel()`` is the
only way to discard it.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 200


class DebouncedScheduler:
    """Run *callback* once after *delay_ms* of quiescence.

    Args:
        callback: invoked with the args of the most recent ``schedule`` call.
        delay_ms: quiet window in milliseconds.
        timer_factory: ``threading.Timer``-compatible constructor; tests
            inject a manual timer.
    """

    def __init__(self, callback: Callable, delay_ms: int = DEFAULT_DELAY_MS, timer_factory=threading.Timer):
        self._callback = callback
        self._delay = delay_ms / 1000.0
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._pending = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def schedule(self, *args, **kwargs) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._pending = (args, kwargs)
            timer = self._timer_factory(self._delay, self._fire, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def flush(self) -> bool:
        """Run the pending call now.  Returns False when nothing was pending."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            call = self._pending
            self._pending = None
        if call is None:
            return False
        self._run(call)
        return True

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._pending is None:
                return
            call = self._pending
            self._pending = None
            self._timer = None
        self._run(call)

    def _run(self, call) -> None:
        args, kwargs = call
        try:
            self._callback(*args, **kwargs)
        except Exception:
            logger.exception("Debounced callback failed")
            raise
