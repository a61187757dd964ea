"""Shared fakes for the exporter tests."""
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

import pytest

from gcm_exporter.client import MonitoringClient
from gcm_exporter.config import MonitoringConfig
from gcm_exporter.delta_store import InMemoryDeltaCounterStore, InMemoryDeltaHistogramStore
from gcm_exporter.series import (
    DescriptorPage, Distribution, MetricDescriptor, Point, TimeSeries, TimeSeriesPage, TypedValue
)

PROJECT_ID = "my-project"
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeMonitoringClient(MonitoringClient):
    """
    Serves canned pages. Descriptor pages are keyed by the prefix appearing in
    the filter; time series pages by metric type. An Exception in place of a
    page is raised when that page is requested.
    """

    def __init__(
        self,
        descriptor_pages: Optional[Dict[str, List[Union[DescriptorPage, Exception]]]] = None,
        time_series_pages: Optional[Dict[str, List[Union[TimeSeriesPage, Exception]]]] = None
    ):
        self.descriptor_pages = descriptor_pages or {}
        self.time_series_pages = time_series_pages or {}
        self.descriptor_calls: List[dict] = []
        self.time_series_calls: List[dict] = []
        self._lock = threading.Lock()

    @staticmethod
    def _page(pages, page_token):
        page = pages[int(page_token or 0)]
        if isinstance(page, Exception):
            raise page
        return page

    def list_metric_descriptors(self, project_id, filter, page_token=""):
        with self._lock:
            self.descriptor_calls.append(
                {"project_id": project_id, "filter": filter, "page_token": page_token}
            )
        for prefix, pages in self.descriptor_pages.items():
            if f'starts_with("{prefix}")' in filter:
                return self._page(pages, page_token)
        return DescriptorPage(descriptors=[])

    def list_time_series(self, project_id, filter, start_time, end_time, aggregation=None, page_token=""):
        metric_type = filter.split('metric.type="', 1)[1].split('"', 1)[0]
        with self._lock:
            self.time_series_calls.append({
                "project_id": project_id,
                "filter": filter,
                "start_time": start_time,
                "end_time": end_time,
                "aggregation": aggregation,
                "page_token": page_token,
                "metric_type": metric_type,
            })
        pages = self.time_series_pages.get(metric_type)
        if not pages:
            return TimeSeriesPage(time_series=[])
        return self._page(pages, page_token)


class ListSink:
    """Sink that keeps translated samples as-is."""

    def __init__(self):
        self.const = []
        self.histograms = []

    def add_const(self, metric):
        self.const.append(metric)

    def add_histogram(self, metric):
        self.histograms.append(metric)


def timestamp(minutes: float) -> str:
    """RFC 3339 time `minutes` after NOW - 10m."""
    value = NOW - timedelta(minutes=10) + timedelta(minutes=minutes)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def descriptor(metric_type: str, **kwargs) -> MetricDescriptor:
    kwargs.setdefault("metric_kind", "GAUGE")
    kwargs.setdefault("value_type", "DOUBLE")
    kwargs.setdefault("unit", "1")
    return MetricDescriptor(type=metric_type, **kwargs)


def series(
    metric_type: str,
    points,
    metric_kind: str = "GAUGE",
    value_type: str = "DOUBLE",
    metric_labels: Optional[Dict[str, str]] = None,
    resource_labels: Optional[Dict[str, str]] = None,
    system_labels: Optional[str] = None,
    resource_type: str = "gce_instance"
) -> TimeSeries:
    """Build a time series from (end minute, value) pairs."""
    built = []
    for end, value in points:
        if isinstance(value, Distribution):
            typed = TypedValue(distribution_value=value)
        elif isinstance(value, bool):
            typed = TypedValue(bool_value=value)
        elif isinstance(value, int):
            typed = TypedValue(int64_value=value)
        else:
            typed = TypedValue(double_value=value)
        built.append(Point(end_time=timestamp(end), value=typed))

    return TimeSeries(
        metric_type=metric_type,
        resource_type=resource_type,
        metric_kind=metric_kind,
        value_type=value_type,
        metric_labels=metric_labels or {},
        resource_labels=resource_labels or {},
        system_labels=system_labels,
        points=built,
    )


def monitoring_config(**kwargs) -> MonitoringConfig:
    kwargs.setdefault("project_id", PROJECT_ID)
    kwargs.setdefault("metrics_prefixes", ["compute.googleapis.com"])
    return MonitoringConfig(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def counter_store(clock):
    return InMemoryDeltaCounterStore(timedelta(minutes=30), clock=clock)


@pytest.fixture
def histogram_store(clock):
    return InMemoryDeltaHistogramStore(timedelta(minutes=30), clock=clock)
