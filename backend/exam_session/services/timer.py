"""
Timer Controller - countdown for one test session.

Two independent repeating timers run on daemon threads:
- the tick timer decrements the remaining time once per tick interval and
  fires on_expire exactly once when it reaches zero
- the save timer calls on_save on a slower interval, so a slow or failing
  snapshot write never delays a tick

tick() can also be driven by hand, which is how the tests exercise it.
Callbacks always run outside the controller's lock.
"""

import threading
from typing import Callable, Optional

from exam_session import config
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("timer")


class RepeatingTimer:
    """Calls `callback` every `interval` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str):
        self.interval = interval
        self.callback = callback
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self.callback()
            except Exception:
                log_with_context(logger, "ERROR", "Timer callback failed",
                                 context={"thread": self._thread.name}, exc_info=True)


class TimerController:
    """
    Monotonic countdown from a fixed number of seconds to zero.

    Usage:
        timer = TimerController()
        timer.start(300, on_tick=..., on_expire=..., on_save=...)
        ...
        timer.stop()
    """

    def __init__(self, tick_interval: float = None, save_interval: float = None, name: str = "session"):
        self.tick_interval = config.TICK_INTERVAL_SECONDS if tick_interval is None else tick_interval
        self.save_interval = config.SNAPSHOT_SAVE_INTERVAL_SECONDS if save_interval is None else save_interval
        self.name = name
        self._lock = threading.Lock()
        self._remaining = 0
        self._running = False
        self._expired = False
        self._on_tick: Optional[Callable[[int], None]] = None
        self._on_expire: Optional[Callable[[], None]] = None
        self._on_save: Optional[Callable[[], None]] = None
        self._tick_timer: Optional[RepeatingTimer] = None
        self._save_timer: Optional[RepeatingTimer] = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._running

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self, initial_seconds: int, on_tick: Callable[[int], None], on_expire: Callable[[], None],
              on_save: Callable[[], None] = None, background: bool = True) -> None:
        """
        Begin counting down from initial_seconds.

        With background=False no threads are started and the owner drives
        tick() itself.
        """
        with self._lock:
            if self._running or self._expired:
                raise RuntimeError("Timer {} already started".format(self.name))
            self._remaining = max(0, int(initial_seconds))
            self._on_tick = on_tick
            self._on_expire = on_expire
            self._on_save = on_save
            self._running = True

            if background:
                self._tick_timer = RepeatingTimer(self.tick_interval, self.tick, f"{self.name}-tick")
                self._tick_timer.start()
                if on_save is not None and self.save_interval > 0:
                    self._save_timer = RepeatingTimer(self.save_interval, self._save, f"{self.name}-save")
                    self._save_timer.start()

        log_with_context(logger, "DEBUG", "Timer started",
                         context={"timer": self.name},
                         extra_data={"initial_seconds": self._remaining})

    def tick(self) -> int:
        """Advance the countdown by one second. Ticks after expiry or stop are ignored."""
        fire_expire = False
        with self._lock:
            if not self._running:
                return self._remaining
            self._remaining = max(0, self._remaining - 1)
            remaining = self._remaining
            if remaining == 0:
                self._expired = True
                fire_expire = True
                self._halt()
            on_tick, on_expire = self._on_tick, self._on_expire

        if on_tick is not None:
            on_tick(remaining)
        if fire_expire:
            log_with_context(logger, "INFO", "Timer expired", context={"timer": self.name})
            on_expire()
        return remaining

    def stop(self) -> None:
        """Stop ticking and saving. Safe to call repeatedly and from callbacks."""
        with self._lock:
            was_running = self._running
            self._halt()
        if was_running:
            log_with_context(logger, "DEBUG", "Timer stopped",
                             context={"timer": self.name},
                             extra_data={"remaining_seconds": self._remaining})

    def save_now(self) -> None:
        self._save()

    def _save(self) -> None:
        with self._lock:
            if not self._running:
                return
            on_save = self._on_save
        if on_save is not None:
            on_save()

    def _halt(self) -> None:
        # Caller holds self._lock
        self._running = False
        if self._tick_timer is not None:
            self._tick_timer.cancel()
        if self._save_timer is not None:
            self._save_timer.cancel()
