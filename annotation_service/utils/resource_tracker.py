"""Per-stage resource tracking for annotation pipeline runs.

Tracks wall-clock time for each pipeline stage and RSS memory of the worker
process via a lightweight context manager. Timings end up on the
``AnnotationResult`` (``stage_timings``) and in DEBUG logs.

Usage:
    from annotation_service.utils.resource_tracker import ResourceTracker

    tracker = ResourceTracker()

    with tracker.track_module("tokenize"):
        stage.process(document)

    usage = tracker.finalize()
    usage.to_dict()
    # {"elapsed_time": 0.21, "peak_memory_mb": 512.3, "module_timings": {"tokenize": 0.02}}
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import psutil


@dataclass
class ResourceSnapshot:
    """RSS memory and timestamp captured at a single instant."""

    timestamp: float
    memory_mb: float

    @staticmethod
    def capture() -> "ResourceSnapshot":
        """Capture current process RSS memory (0.0 if the OS refuses)."""
        try:
            memory_mb = psutil.Process().memory_info().rss / (1024 ** 2)
        except psutil.Error:
            memory_mb = 0.0
        return ResourceSnapshot(timestamp=time.monotonic(), memory_mb=memory_mb)


@dataclass
class ResourceUsage:
    """Aggregated resource usage for one document run."""

    start_time: float
    end_time: Optional[float] = None
    peak_memory_mb: float = 0.0
    module_timings: Dict[str, float] = field(default_factory=dict)
    snapshots: List[ResourceSnapshot] = field(default_factory=list)

    def elapsed_time(self) -> float:
        """Seconds from start to end (or now if not finalised)."""
        end = self.end_time or time.monotonic()
        return end - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "elapsed_time": round(self.elapsed_time(), 4),
            "peak_memory_mb": round(self.peak_memory_mb, 1),
            "module_timings": {k: round(v, 4) for k, v in self.module_timings.items()},
        }


class ResourceTracker:
    """
    Records elapsed time per named stage and memory snapshots around it.

    Only stage boundaries are sampled, so the overhead stays at one
    ``psutil`` call per stage.
    """

    def __init__(self) -> None:
        self.usage = ResourceUsage(start_time=time.monotonic())
        self._snapshot()

    @contextmanager
    def track_module(self, module_name: str):
        """Time the wrapped block under *module_name*, even if it raises."""
        start = time.monotonic()
        try:
            yield
        finally:
            self.usage.module_timings[module_name] = time.monotonic() - start
            self._snapshot()

    def finalize(self) -> ResourceUsage:
        """Close tracking and return the completed usage."""
        self.usage.end_time = time.monotonic()
        return self.usage

    def _snapshot(self) -> None:
        snap = ResourceSnapshot.capture()
        self.usage.snapshots.append(snap)
        if snap.memory_mb > self.usage.peak_memory_mb:
            self.usage.peak_memory_mb = snap.memory_mb
