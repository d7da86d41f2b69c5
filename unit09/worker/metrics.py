"""
Worker metrics: counters and gauges for job dispatch.
"""

from __future__ import annotations

from typing import Dict


class Counter:
    """Monotonically increasing count."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._value = 0

    def inc(self, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError(f"Counter {self.name} cannot decrease")
        self._value += amount

    @property
    def value(self) -> int:
        return self._value


class Gauge:
    """Point-in-time value that can move both ways."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._value = 0

    def set(self, value: int) -> None:
        self._value = value

    @property
    def value(self) -> int:
        return self._value


class WorkerMetrics:
    """Counters and the active-jobs gauge owned by one worker loop."""

    def __init__(self) -> None:
        self.jobs_started = Counter("jobs_started", "Jobs dispatched to a handler")
        self.jobs_completed = Counter("jobs_completed", "Jobs whose handler succeeded")
        self.jobs_failed = Counter("jobs_failed", "Handler attempts that failed")
        self.jobs_active = Gauge("jobs_active", "Jobs currently in flight")

    def snapshot(self) -> Dict[str, int]:
        return {
            "started": self.jobs_started.value,
            "completed": self.jobs_completed.value,
            "failed": self.jobs_failed.value,
            "active": self.jobs_active.value,
        }
