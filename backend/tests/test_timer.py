"""
Unit Tests for the Timer Controller
Tests for: countdown, single expiry, stop, background threads
"""
import threading

import pytest

from exam_session.services.timer import TimerController


class Recorder:
    def __init__(self):
        self.ticks = []
        self.expired = 0
        self.saves = 0

    def on_tick(self, remaining):
        self.ticks.append(remaining)

    def on_expire(self):
        self.expired += 1

    def on_save(self):
        self.saves += 1


@pytest.fixture
def recorder():
    return Recorder()


class TestCountdown:
    """Test manual ticking"""

    def test_remaining_after_n_ticks(self, recorder):
        """Test remaining == max(0, r0 - n) for n below r0"""
        timer = TimerController()
        timer.start(5, recorder.on_tick, recorder.on_expire, background=False)

        for _ in range(3):
            timer.tick()

        assert timer.remaining == 2
        assert recorder.ticks == [4, 3, 2]
        assert recorder.expired == 0

    def test_expire_fires_exactly_once(self, recorder):
        """Test ticking past zero clamps and fires expire once"""
        timer = TimerController()
        timer.start(3, recorder.on_tick, recorder.on_expire, background=False)

        for _ in range(10):
            timer.tick()

        assert timer.remaining == 0
        assert recorder.expired == 1
        assert recorder.ticks == [2, 1, 0]
        assert timer.expired is True
        assert timer.running is False

    def test_stopped_timer_ignores_ticks(self, recorder):
        """Test ticks after stop do nothing"""
        timer = TimerController()
        timer.start(10, recorder.on_tick, recorder.on_expire, background=False)
        timer.tick()

        timer.stop()
        timer.tick()
        timer.stop()

        assert timer.remaining == 9
        assert recorder.ticks == [9]
        assert recorder.expired == 0

    def test_cannot_start_twice(self, recorder):
        """Test a second start is refused"""
        timer = TimerController()
        timer.start(10, recorder.on_tick, recorder.on_expire, background=False)

        with pytest.raises(RuntimeError):
            timer.start(10, recorder.on_tick, recorder.on_expire, background=False)

    def test_save_only_while_running(self, recorder):
        """Test save_now calls on_save until the timer stops"""
        timer = TimerController()
        timer.start(10, recorder.on_tick, recorder.on_expire, on_save=recorder.on_save, background=False)

        timer.save_now()
        timer.stop()
        timer.save_now()

        assert recorder.saves == 1

    def test_expire_callback_may_stop_timer(self, recorder):
        """Test stopping from inside on_expire does not deadlock"""
        timer = TimerController()
        timer.start(1, recorder.on_tick, timer.stop, background=False)

        assert timer.tick() == 0


class TestBackgroundThreads:
    """Test the daemon-thread driven countdown"""

    def test_counts_down_to_expiry(self):
        """Test a short countdown on real threads reaches expiry once"""
        done = threading.Event()
        expirations = []

        def on_expire():
            expirations.append(True)
            done.set()

        timer = TimerController(tick_interval=0.01, save_interval=0)
        timer.start(3, lambda remaining: None, on_expire)

        assert done.wait(timeout=5)
        assert expirations == [True]
        assert timer.remaining == 0

    def test_save_timer_runs_independently(self):
        """Test on_save is called on its own interval"""
        saved = threading.Event()
        timer = TimerController(tick_interval=60, save_interval=0.01)
        timer.start(100, lambda remaining: None, lambda: None, on_save=saved.set)

        try:
            assert saved.wait(timeout=5)
            assert timer.remaining == 100
        finally:
            timer.stop()
