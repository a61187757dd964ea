"""In-memory accumulation of DELTA metrics into monotonic counters."""
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Callable, Dict, List, Union

from gcm_exporter.series import ConstMetric, HistogramMetric

logger = logging.getLogger(__name__)

Collected = Union[ConstMetric, HistogramMetric]


@dataclass
class _Entry:
    collected: Collected
    last_seen: float


class DeltaStore(ABC):
    """
    Running totals for DELTA series, keyed by descriptor type and then by
    fully-qualified name plus sorted labels.

    Every operation holds a single lock; listed metrics are copies, so callers
    see a consistent snapshot of each running total.
    """

    def __init__(self, ttl: timedelta, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl.total_seconds()
        self.clock = clock
        self._lock = threading.Lock()
        self._trackers: Dict[str, Dict[str, _Entry]] = {}

    @abstractmethod
    def _merge(self, existing: Collected, current: Collected) -> Collected:
        """Fold a newer reading into the stored running total."""

    @abstractmethod
    def _copy(self, collected: Collected) -> Collected:
        pass

    def increment(self, descriptor_type: str, current: Collected):
        """Add a new DELTA reading to the running total for its key."""
        key = current.label_key()
        now = self.clock()

        with self._lock:
            tracker = self._trackers.setdefault(descriptor_type, {})
            existing = tracker.get(key)

            if existing is None:
                tracker[key] = _Entry(self._copy(current), now)
                return

            existing.last_seen = now
            if existing.collected.report_time < current.report_time:
                existing.collected = self._merge(existing.collected, current)
            else:
                logger.debug(
                    f"Ignoring old sample for {key}: reported at {current.report_time}, "
                    f"already folded {existing.collected.report_time}"
                )

    def list_metrics(self, descriptor_type: str) -> List[Collected]:
        """Current running totals for a descriptor, evicting stale keys first."""
        with self._lock:
            tracker = self._trackers.get(descriptor_type)
            if not tracker:
                return []
            self._evict(descriptor_type, tracker, self.clock())
            return [self._copy(entry.collected) for entry in tracker.values()]

    def evict_stale(self) -> int:
        """Remove keys not seen within the TTL across every descriptor."""
        now = self.clock()
        removed = 0
        with self._lock:
            for descriptor_type, tracker in list(self._trackers.items()):
                removed += self._evict(descriptor_type, tracker, now)
        return removed

    def reset(self):
        """Forget every running total."""
        with self._lock:
            self._trackers.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(tracker) for tracker in self._trackers.values())

    def _evict(self, descriptor_type: str, tracker: Dict[str, _Entry], now: float) -> int:
        if self.ttl <= 0:
            return 0

        stale = [key for key, entry in tracker.items() if now - entry.last_seen > self.ttl]
        for key in stale:
            logger.debug(f"Evicting stale delta entry {key}")
            del tracker[key]

        if not tracker:
            del self._trackers[descriptor_type]
        return len(stale)


class InMemoryDeltaCounterStore(DeltaStore):
    """Running sums for scalar DELTA metrics."""

    def _merge(self, existing: ConstMetric, current: ConstMetric) -> ConstMetric:
        return replace(current, labels=dict(current.labels), value=current.value + existing.value)

    def _copy(self, collected: ConstMetric) -> ConstMetric:
        return replace(collected, labels=dict(collected.labels))


def _cumulative_at(buckets: Dict[float, int], bound: float) -> int:
    """Cumulative count at bound, carried from the nearest lower bound when absent."""
    if bound in buckets:
        return buckets[bound]
    lower = [b for b in buckets if b < bound]
    return buckets[max(lower)] if lower else 0


class InMemoryDeltaHistogramStore(DeltaStore):
    """Running per-bucket counts for distribution DELTA metrics."""

    def _merge(self, existing: HistogramMetric, current: HistogramMetric) -> HistogramMetric:
        # Bucket layouts may differ between readings; counts are cumulative
        bounds = sorted(set(existing.buckets) | set(current.buckets))
        buckets = {
            b: _cumulative_at(existing.buckets, b) + _cumulative_at(current.buckets, b)
            for b in bounds
        }
        return replace(
            current,
            labels=dict(current.labels),
            count=existing.count + current.count,
            sum=existing.sum + current.sum,
            buckets=buckets,
        )

    def _copy(self, collected: HistogramMetric) -> HistogramMetric:
        return replace(collected, labels=dict(collected.labels), buckets=dict(collected.buckets))
