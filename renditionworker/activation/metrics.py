"""Activation metrics: accumulator, deadline flush and resource sampling."""

from __future__ import annotations

import resource
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from renditionworker.config import env as env_config
from renditionworker.core.errors import location_of, message_of, reason_of
from renditionworker.core.logger import setup_logger

from .events import LoggingMetricsSink, MetricsSink

logger = setup_logger(__name__)

METRIC_RENDITION = "rendition"
METRIC_ERROR = "error"
METRIC_ACTIVATION = "activation"
METRIC_TIMEOUT = "timeout"


def duration_sec(start: Any, end: Any) -> Optional[float]:
    """Seconds between two epoch millisecond timestamps, None if either is missing."""
    if start is None or end is None:
        return None
    try:
        return (float(end) - float(start)) / 1000.0
    except (TypeError, ValueError):
        return None


class ActivationMetrics:
    """Sends individual metrics and accumulates the activation aggregate."""

    def __init__(self, sink: Optional[MetricsSink] = None):
        self.sink = sink or LoggingMetricsSink()
        self._aggregate: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def add(self, **values: Any) -> None:
        with self._lock:
            self._aggregate.update(values)

    @property
    def aggregate(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._aggregate)

    def send(self, name: str, payload: Dict[str, Any]) -> None:
        try:
            self.sink.send(name, payload)
        except Exception as e:
            logger.error_trace("Sending %s metric failed: %s", name, e)

    def handle_error(self, err: Optional[BaseException], location: str, metrics: Optional[Dict[str, Any]] = None) -> None:
        payload = dict(metrics or {})
        payload.update(
            {
                "reason": reason_of(err),
                "message": message_of(err),
                "location": location_of(err, location),
            }
        )
        self.send(METRIC_ERROR, payload)

    def send_activation(self) -> Dict[str, Any]:
        aggregate = self.aggregate
        self.send(METRIC_ACTIVATION, aggregate)
        return aggregate


class DeadlineTimer:
    """Runs ``on_deadline`` shortly before the activation's hard deadline."""

    def __init__(self, on_deadline: Callable[[], None], buffer_ms: Optional[int] = None):
        self.on_deadline = on_deadline
        self.buffer_ms = env_config.TIMEOUT_BUFFER_MS if buffer_ms is None else buffer_ms
        self._timer: Optional[threading.Timer] = None

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def arm(self, seconds_left: Optional[float] = None) -> bool:
        if env_config.DISABLE_TIMEOUT_METRICS:
            return False
        if seconds_left is None:
            seconds_left = env_config.time_until_deadline()
        if seconds_left is None:
            return False

        delay = max(0.0, seconds_left - self.buffer_ms / 1000.0)
        self._timer = threading.Timer(delay, self._fire)
        self._timer.daemon = True
        self._timer.start()
        logger.debug("Deadline timer armed, fires in %.1f seconds", delay)
        return True

    def _fire(self) -> None:
        logger.warning("Activation is about to time out, flushing outstanding events and metrics")
        self.on_deadline()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


def _rusage_sample() -> Dict[str, float]:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return {"max_rss": float(usage.ru_maxrss), "cpu": usage.ru_utime + usage.ru_stime}


class ResourceSampler:
    """Background thread sampling memory and cpu usage of this process."""

    def __init__(self, interval: Optional[float] = None):
        self.interval = env_config.RESOURCE_SAMPLE_INTERVAL if interval is None else interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._samples: List[Dict[str, float]] = []
        self._cpu_percentages: List[float] = []

    def start(self) -> bool:
        if env_config.DISABLE_RESOURCE_METRICS:
            return False
        self._samples.append(_rusage_sample())
        self._thread = threading.Thread(target=self._run, name="resource-sampler", daemon=True)
        self._thread.start()
        return True

    def _run(self) -> None:
        last = self._samples[-1]
        last_time = time.monotonic()
        while not self._stop.wait(self.interval):
            sample = _rusage_sample()
            now = time.monotonic()
            elapsed = now - last_time
            if elapsed > 0:
                self._cpu_percentages.append(100.0 * (sample["cpu"] - last["cpu"]) / elapsed)
            self._samples.append(sample)
            last, last_time = sample, now

    def finish(self) -> Dict[str, Any]:
        """Stop sampling and summarize. Empty when the sampler never started."""
        if self._thread is None:
            return {}
        self._stop.set()
        self._thread.join(timeout=max(1.0, self.interval * 2))
        self._thread = None

        final = _rusage_sample()
        self._samples.append(final)
        summary: Dict[str, Any] = {
            # ru_maxrss is in kilobytes on Linux
            "memoryMaxRssKb": max(s["max_rss"] for s in self._samples),
            "cpuTime": final["cpu"] - self._samples[0]["cpu"],
            "resourceSampleCount": len(self._samples),
        }
        if self._cpu_percentages:
            summary["cpuUsagePercentageMax"] = max(self._cpu_percentages)
            summary["cpuUsagePercentageMean"] = sum(self._cpu_percentages) / len(self._cpu_percentages)
        return summary
