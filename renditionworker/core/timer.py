"""Wall-clock duration accumulators."""

from __future__ import annotations

import time
from threading import Lock
from typing import Dict, Iterable, Optional, Tuple

from renditionworker.core.logger import setup_logger

logger = setup_logger(__name__)


class Timer:
    """Stopwatch that can be started and stopped repeatedly.

    ``current_duration`` is the length of the last start/stop interval and
    ``total_duration`` the sum of all intervals. Both stop a running timer first
    and return None if the timer never ran.
    """

    def __init__(self) -> None:
        self._started_at: Optional[float] = None
        self._measured = False
        self._current = 0.0
        self._total = 0.0
        self._lock = Lock()

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def start(self) -> "Timer":
        with self._lock:
            if self._started_at is None:
                self._started_at = time.perf_counter()
                self._measured = True
        return self

    def stop(self) -> None:
        with self._lock:
            if self._started_at is not None:
                self._current = time.perf_counter() - self._started_at
                self._total += self._current
                self._started_at = None

    def current_duration(self) -> Optional[float]:
        self.stop()
        return self._current if self._measured else None

    def total_duration(self) -> Optional[float]:
        self.stop()
        return self._total if self._measured else None

    def elapsed(self) -> Optional[float]:
        """Total duration including a still running interval, without stopping."""
        with self._lock:
            if not self._measured:
                return None
            running = time.perf_counter() - self._started_at if self._started_at is not None else 0.0
            return self._total + running

    def __str__(self) -> str:
        duration = self.current_duration()
        return f"{duration:.3f}" if duration is not None else "???"

    @staticmethod
    def current_sum(*timers: "Timer") -> float:
        return sum(d for d in (t.current_duration() for t in timers) if d is not None)

    @staticmethod
    def total_sum(*timers: "Timer") -> float:
        return sum(d for d in (t.total_duration() for t in timers) if d is not None)


# Phases tracked for every activation
ACTIVATION = "activation"
DOWNLOAD = "download"
PROCESSING = "processing"
POST_PROCESSING = "postProcessing"
UPLOAD = "upload"

_Key = Tuple[str, Optional[int]]


class TimerSet:
    """Timers keyed by phase and, for per-rendition phases, rendition index.

    Per-rendition keys keep concurrent renditions from sharing a stopwatch;
    ``total`` folds them back into one cumulative figure per phase.
    """

    def __init__(self) -> None:
        self._timers: Dict[_Key, Timer] = {}
        self._lock = Lock()

    def timer(self, phase: str, index: Optional[int] = None) -> Timer:
        key = (phase, index)
        with self._lock:
            timer = self._timers.get(key)
            if timer is None:
                timer = Timer()
                self._timers[key] = timer
            return timer

    def _phase_timers(self, phase: str) -> Iterable[Timer]:
        with self._lock:
            return [t for (p, _), t in self._timers.items() if p == phase]

    def total(self, phase: str) -> Optional[float]:
        """Cumulative duration of a phase, None if it never ran."""
        durations = [d for d in (t.total_duration() for t in self._phase_timers(phase)) if d is not None]
        return sum(durations) if durations else None

    def elapsed(self, phase: str) -> Optional[float]:
        """Like ``total`` but does not stop running timers."""
        durations = [d for d in (t.elapsed() for t in self._phase_timers(phase)) if d is not None]
        return sum(durations) if durations else None

    def stop_all(self) -> None:
        for timer in self._phase_timers_all():
            timer.stop()

    def _phase_timers_all(self) -> Iterable[Timer]:
        with self._lock:
            return list(self._timers.values())
