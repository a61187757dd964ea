"""Metric descriptor caching per metric type prefix."""
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from gcm_exporter.series import MetricDescriptor

logger = logging.getLogger(__name__)

OFFICIAL_NAMESPACE = "googleapis.com"


def is_google_metric(name: str) -> bool:
    """Whether the first path segment of a metric type belongs to googleapis.com."""
    return OFFICIAL_NAMESPACE in name.split("/")[0]


class DescriptorCache(ABC):
    """Read-through cache of descriptor lists keyed by metric type prefix."""

    @abstractmethod
    def lookup(self, prefix: str) -> Optional[List[MetricDescriptor]]:
        """Return the cached descriptors, or None on a miss."""

    @abstractmethod
    def store(self, prefix: str, descriptors: List[MetricDescriptor]):
        """Cache the full descriptor list for a prefix."""

    def clear(self):
        """Drop every entry."""

    def __len__(self) -> int:
        return 0


class NoopDescriptorCache(DescriptorCache):
    """Cache used when the TTL is zero: every lookup misses."""

    def lookup(self, prefix: str) -> Optional[List[MetricDescriptor]]:
        return None

    def store(self, prefix: str, descriptors: List[MetricDescriptor]):
        pass


class TTLDescriptorCache(DescriptorCache):
    """Caches whole prefix entries until they expire."""

    def __init__(self, ttl: timedelta, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl.total_seconds()
        self.clock = clock
        self._entries: Dict[str, Tuple[List[MetricDescriptor], float]] = {}
        self._lock = threading.Lock()

    def lookup(self, prefix: str) -> Optional[List[MetricDescriptor]]:
        with self._lock:
            entry = self._entries.get(prefix)
            if entry is None:
                return None

            descriptors, expiry = entry
            if self.clock() >= expiry:
                logger.debug(f"Descriptor cache entry expired for prefix {prefix}")
                return None

            return list(descriptors)

    def store(self, prefix: str, descriptors: List[MetricDescriptor]):
        with self._lock:
            self._entries[prefix] = (list(descriptors), self.clock() + self.ttl)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            now = self.clock()
            return sum(1 for _, expiry in self._entries.values() if now < expiry)


class GoogleDescriptorCache(DescriptorCache):
    """Only caches prefixes under the googleapis.com namespace."""

    def __init__(self, inner: TTLDescriptorCache):
        self.inner = inner

    def lookup(self, prefix: str) -> Optional[List[MetricDescriptor]]:
        if not is_google_metric(prefix):
            return None
        return self.inner.lookup(prefix)

    def store(self, prefix: str, descriptors: List[MetricDescriptor]):
        if not is_google_metric(prefix):
            return
        self.inner.store(prefix, descriptors)

    def clear(self):
        self.inner.clear()

    def __len__(self) -> int:
        return len(self.inner)


def new_descriptor_cache(
    ttl: timedelta,
    only_google: bool = False,
    clock: Callable[[], float] = time.monotonic
) -> DescriptorCache:
    """Select the cache implementation for the configured TTL and mode."""
    if ttl.total_seconds() <= 0:
        return NoopDescriptorCache()
    if only_google:
        return GoogleDescriptorCache(TTLDescriptorCache(ttl, clock))
    return TTLDescriptorCache(ttl, clock)
