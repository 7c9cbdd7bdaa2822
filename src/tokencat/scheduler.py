"""Single owner thread for engine state, plus cancellable timers.

All engine mutations run as callables queued onto one OwnerLoop thread.
Timers sleep on their own daemon threads and post their callback back onto
the loop when they fire, so nothing mutates engine state concurrently.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

log = logging.getLogger(__name__)

_STOP = object()


class TimerHandle:
    """A one-shot or repeating timer that posts to an OwnerLoop."""

    def __init__(self, loop: OwnerLoop, delay: float, callback: Callable[[], None],
                 repeat: bool = False, name: str = "Timer") -> None:
        self._loop = loop
        self._delay = delay
        self._callback = callback
        self._repeat = repeat
        self._cancel_event = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True, name=name)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def start(self) -> TimerHandle:
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancel_event.set()

    def _run(self) -> None:
        while True:
            # Returns True as soon as cancel() is called
            if self._cancel_event.wait(self._delay):
                return
            self._loop.call_soon(self._fire)
            if not self._repeat:
                return

    def _fire(self) -> None:
        # Re-checked on the loop thread: a cancel may have raced the post
        if not self.cancelled:
            self._callback()


class OwnerLoop:
    """Daemon thread draining a queue of callables in FIFO order."""

    def __init__(self, name: str = "UsageEngine") -> None:
        self._name = name
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the loop thread."""
        self._thread = threading.Thread(target=self._run, daemon=True, name=self._name)
        self._thread.start()
        log.info("Owner loop %s started", self._name)

    def stop(self) -> None:
        """Finish queued work, then exit the loop thread."""
        self._queue.put(_STOP)
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        log.info("Owner loop %s stopped", self._name)

    def call_soon(self, callback: Callable, *args) -> None:
        self._queue.put((callback, args))

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return TimerHandle(self, delay, callback, name=f"{self._name}-later").start()

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        return TimerHandle(self, interval, callback, repeat=True,
                           name=f"{self._name}-every").start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            callback, args = item
            try:
                callback(*args)
            except Exception:
                log.exception("Unhandled error in %s callback", self._name)
