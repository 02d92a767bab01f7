"""
Timer Scheduling Module
=======================

Cancellable one-shot and interval timers behind one small interface.

Design:
- TimerHandle.cancel() is idempotent and safe from any thread
- ThreadingTimerScheduler: wall-clock (threading.Timer + daemon loops)
- ManualTimerScheduler: virtual clock driven by advance(), deterministic
- Callback errors are logged, never propagated into the scheduler
"""

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, List, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle:
    """Handle to a scheduled callback."""

    _ids = itertools.count(1)

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self.timer_id = next(self._ids)
        self._on_cancel = on_cancel
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Cancel the timer. Calling it again is a no-op."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self._on_cancel is not None:
            self._on_cancel()

    def wait(self, timeout: float) -> bool:
        """Block up to timeout seconds. True if cancelled meanwhile."""
        return self._cancelled.wait(timeout)

    def __repr__(self) -> str:
        return f"TimerHandle(id={self.timer_id}, cancelled={self.cancelled})"


class TimerScheduler(Protocol):
    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


def _run_safely(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception as e:
        logger.exception(f"❌ Timer callback failed: {e}")


class ThreadingTimerScheduler:
    """
    Real-time scheduler.

    One-shot timers use threading.Timer, intervals use a daemon thread that
    waits on the handle's cancel event (so cancel wakes it up immediately).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handles: set = set()

    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        timer: Optional[threading.Timer] = None

        def on_cancel():
            if timer is not None:
                timer.cancel()
            self._forget(handle)

        handle = TimerHandle(on_cancel)

        def fire():
            self._forget(handle)
            if not handle.cancelled:
                _run_safely(callback)

        timer = threading.Timer(max(0, delay_ms) / 1000.0, fire)
        timer.daemon = True
        self._remember(handle)
        timer.start()
        return handle

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        handle = TimerHandle(lambda: self._forget(handle))

        def loop():
            while not handle.wait(interval_ms / 1000.0):
                _run_safely(callback)

        thread = threading.Thread(target=loop, daemon=True, name=f"interval-{handle.timer_id}")
        self._remember(handle)
        thread.start()
        return handle

    def shutdown(self) -> None:
        """Cancel every outstanding timer."""
        with self._lock:
            handles = list(self._handles)
        for handle in handles:
            handle.cancel()

    def _remember(self, handle: TimerHandle) -> None:
        with self._lock:
            self._handles.add(handle)

    def _forget(self, handle: TimerHandle) -> None:
        with self._lock:
            self._handles.discard(handle)


class ManualTimerScheduler:
    """
    Virtual-clock scheduler for tests and offline replay.

    Nothing runs until advance()/advance_to() is called; due callbacks then
    run in due-time order on the calling thread, and the clock reads the
    callback's due time while it runs. Scheduling is thread-safe (session
    workers arm timers while the test thread advances the clock); callbacks
    run outside the internal lock so they may schedule again.

    Usage:
        clock = ManualTimerScheduler()
        clock.call_later(5000, on_timeout)
        clock.advance(4999)  # nothing
        clock.advance(1)     # on_timeout runs
    """

    def __init__(self, start_ms: int = 0):
        self._now = start_ms
        self._queue: List[tuple] = []
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()
        with self._lock:
            self._push(self._now + max(0, delay_ms), handle, callback, None)
        return handle

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        handle = TimerHandle()
        with self._lock:
            self._push(self._now + interval_ms, handle, callback, interval_ms)
        return handle

    def advance(self, delta_ms: int) -> None:
        self.advance_to(self.now_ms() + delta_ms)

    def advance_to(self, target_ms: int) -> None:
        with self._lock:
            if target_ms < self._now:
                raise ValueError(f"Cannot move clock backwards ({target_ms} < {self._now})")

        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > target_ms:
                    self._now = target_ms
                    return
                due, _, handle, callback, interval = heapq.heappop(self._queue)
                if handle.cancelled:
                    continue
                self._now = due

            _run_safely(callback)

            if interval is not None and not handle.cancelled:
                with self._lock:
                    self._push(due + interval, handle, callback, interval)

    @property
    def pending(self) -> int:
        """Number of live (not cancelled) scheduled entries."""
        with self._lock:
            return sum(1 for entry in self._queue if not entry[2].cancelled)

    def _push(self, due: int, handle: TimerHandle, callback, interval) -> None:
        heapq.heappush(self._queue, (due, next(self._sequence), handle, callback, interval))
