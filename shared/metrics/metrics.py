"""Metrics and performance tracking."""

import threading
import time
from contextlib import contextmanager
from typing import Dict
import logging

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Simple in-process metrics collector.

    Tracks:
    - Latency per engine operation (train, predict, monitor, optimize)
    - Event counts (alerts, breaker trips, non-convergent runs)
    - Gauges holding the latest value of a measurement (e.g. VaR, final loss)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.latencies: Dict[str, list] = {}
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}

    @contextmanager
    def time_operation(self, operation_name: str):
        """Context manager for timing operations."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                self.latencies.setdefault(operation_name, []).append(elapsed)

    def increment(self, counter_name: str, value: int = 1):
        """Increment a counter."""
        with self._lock:
            self.counters[counter_name] = self.counters.get(counter_name, 0) + value

    def set_gauge(self, name: str, value: float):
        with self._lock:
            self.gauges[name] = float(value)

    def reset(self):
        with self._lock:
            self.latencies.clear()
            self.counters.clear()
            self.gauges.clear()

    def get_summary(self) -> dict:
        """Get metrics summary."""
        with self._lock:
            return {
                "latencies": {
                    name: {
                        "mean": sum(values) / len(values),
                        "min": min(values),
                        "max": max(values),
                        "count": len(values)
                    }
                    for name, values in self.latencies.items()
                    if values
                },
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
            }
