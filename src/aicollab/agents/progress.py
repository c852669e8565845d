"""Per-task progress tracking."""

from __future__ import annotations

import time
from collections.abc import Callable

from aicollab.tasks.capabilities import Capability
from aicollab.tasks.models import Task, TaskPriority

_BASE_DURATION = {
    TaskPriority.CRITICAL: 5.0,
    TaskPriority.HIGH: 10.0,
    TaskPriority.NORMAL: 15.0,
    TaskPriority.LOW: 20.0,
}


def estimate_duration(task: Task) -> float:
    """Expected seconds for *task*, scaled by priority, capability and query length."""
    expected = _BASE_DURATION[task.priority]
    if task.requires(Capability.CODE_GENERATION):
        expected *= 1.5
    if task.requires(Capability.TEXT_ANALYSIS):
        expected *= 1.2
    return expected * (1 + min(len(task.query), 1000) / 1000)


class ProgressMonitor:
    """Tracks status text and a clamped [0, 1] progress value for one task."""

    def __init__(
        self,
        task_id: str,
        expected_duration: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.task_id = task_id
        self.expected_duration = expected_duration
        self.status = "Starting"
        self.progress = 0.0
        self._clock = clock
        self.start_time = clock()

    def update_progress(self, status: str, progress: float) -> None:
        self.status = status
        self.progress = min(max(progress, 0.0), 1.0)

    @property
    def elapsed_time(self) -> float:
        return self._clock() - self.start_time

    @property
    def estimated_time_remaining(self) -> float:
        if self.progress >= 0.99:
            return 0.0
        elapsed = self.elapsed_time
        if self.progress > 0.05:
            return elapsed * (1 - self.progress) / self.progress
        return max(0.0, self.expected_duration - elapsed)

    def __repr__(self) -> str:
        return f"ProgressMonitor(task_id={self.task_id!r}, status={self.status!r}, progress={self.progress:.2f})"
