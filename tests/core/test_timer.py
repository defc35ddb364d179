"""Tests for Timer and TimerSet."""

from unittest.mock import patch

from renditionworker.core.timer import DOWNLOAD, PROCESSING, Timer, TimerSet


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestTimer:
    def test_never_started_reports_none(self):
        timer = Timer()
        assert timer.current_duration() is None
        assert timer.total_duration() is None
        assert str(timer) == "???"

    def test_accumulates_intervals(self):
        clock = FakeClock()
        with patch("renditionworker.core.timer.time.perf_counter", clock):
            timer = Timer().start()
            clock.now += 2
            timer.stop()
            timer.start()
            clock.now += 3
            timer.stop()

            assert timer.current_duration() == 3
            assert timer.total_duration() == 5

    def test_duration_stops_running_timer(self):
        clock = FakeClock()
        with patch("renditionworker.core.timer.time.perf_counter", clock):
            timer = Timer().start()
            clock.now += 1.5
            assert timer.current_duration() == 1.5
            assert not timer.running

    def test_start_twice_keeps_first_start(self):
        clock = FakeClock()
        with patch("renditionworker.core.timer.time.perf_counter", clock):
            timer = Timer().start()
            clock.now += 1
            timer.start()
            clock.now += 1
            assert timer.total_duration() == 2

    def test_elapsed_does_not_stop(self):
        clock = FakeClock()
        with patch("renditionworker.core.timer.time.perf_counter", clock):
            timer = Timer().start()
            clock.now += 4
            assert timer.elapsed() == 4
            assert timer.running

    def test_sums_skip_unmeasured(self):
        clock = FakeClock()
        with patch("renditionworker.core.timer.time.perf_counter", clock):
            measured = Timer().start()
            clock.now += 2
            measured.stop()
            assert Timer.current_sum(measured, Timer()) == 2
            assert Timer.total_sum(Timer(), Timer()) == 0


class TestTimerSet:
    def test_same_key_same_timer(self):
        timers = TimerSet()
        assert timers.timer(PROCESSING, 1) is timers.timer(PROCESSING, 1)
        assert timers.timer(PROCESSING, 1) is not timers.timer(PROCESSING, 2)

    def test_total_folds_rendition_timers(self):
        clock = FakeClock()
        with patch("renditionworker.core.timer.time.perf_counter", clock):
            timers = TimerSet()
            first = timers.timer(PROCESSING, 0).start()
            second = timers.timer(PROCESSING, 1).start()
            clock.now += 2
            first.stop()
            clock.now += 1
            second.stop()

            assert timers.total(PROCESSING) == 5

    def test_total_none_when_phase_never_ran(self):
        timers = TimerSet()
        assert timers.total(DOWNLOAD) is None
        timers.timer(DOWNLOAD)
        assert timers.total(DOWNLOAD) is None
