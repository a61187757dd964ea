"""Data structures for Monitoring API objects and translated samples."""
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


def _int(value: Any, default: int = 0) -> int:
    # int64 fields are encoded as JSON strings by the REST API
    if value is None:
        return default
    return int(value)


@dataclass(frozen=True)
class MetricDescriptor:
    """Metadata describing one metric type."""
    type: str
    metric_kind: str = "METRIC_KIND_UNSPECIFIED"
    value_type: str = "VALUE_TYPE_UNSPECIFIED"
    unit: str = ""
    description: str = ""
    name: str = ""
    ingest_delay: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MetricDescriptor":
        metadata = data.get("metadata") or {}
        return cls(
            type=data.get("type", ""),
            metric_kind=data.get("metricKind", "METRIC_KIND_UNSPECIFIED"),
            value_type=data.get("valueType", "VALUE_TYPE_UNSPECIFIED"),
            unit=data.get("unit", ""),
            description=data.get("description", ""),
            name=data.get("name", ""),
            ingest_delay=metadata.get("ingestDelay") or None,
        )


@dataclass
class ExplicitBuckets:
    bounds: List[float] = field(default_factory=list)


@dataclass
class LinearBuckets:
    num_finite_buckets: int
    width: float
    offset: float


@dataclass
class ExponentialBuckets:
    num_finite_buckets: int
    growth_factor: float
    scale: float


@dataclass
class BucketOptions:
    """Exactly one variant is expected to be set."""
    explicit: Optional[ExplicitBuckets] = None
    linear: Optional[LinearBuckets] = None
    exponential: Optional[ExponentialBuckets] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "BucketOptions":
        options = cls()
        if "explicitBuckets" in data:
            explicit = data["explicitBuckets"] or {}
            options.explicit = ExplicitBuckets(
                bounds=[float(b) for b in explicit.get("bounds", [])]
            )
        if "linearBuckets" in data:
            linear = data["linearBuckets"] or {}
            options.linear = LinearBuckets(
                num_finite_buckets=_int(linear.get("numFiniteBuckets")),
                width=float(linear.get("width", 0.0)),
                offset=float(linear.get("offset", 0.0)),
            )
        if "exponentialBuckets" in data:
            exponential = data["exponentialBuckets"] or {}
            options.exponential = ExponentialBuckets(
                num_finite_buckets=_int(exponential.get("numFiniteBuckets")),
                growth_factor=float(exponential.get("growthFactor", 0.0)),
                scale=float(exponential.get("scale", 0.0)),
            )
        return options


@dataclass
class Distribution:
    """Histogram value with independent (non-cumulative) bucket counts."""
    count: int = 0
    mean: float = 0.0
    bucket_options: BucketOptions = field(default_factory=BucketOptions)
    bucket_counts: List[int] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Distribution":
        return cls(
            count=_int(data.get("count")),
            mean=float(data.get("mean", 0.0)),
            bucket_options=BucketOptions.from_api(data.get("bucketOptions") or {}),
            bucket_counts=[_int(c) for c in data.get("bucketCounts", [])],
        )


@dataclass
class TypedValue:
    bool_value: Optional[bool] = None
    int64_value: Optional[int] = None
    double_value: Optional[float] = None
    distribution_value: Optional[Distribution] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TypedValue":
        value = cls()
        if "boolValue" in data:
            value.bool_value = bool(data["boolValue"])
        if "int64Value" in data:
            value.int64_value = _int(data["int64Value"])
        if "doubleValue" in data:
            value.double_value = float(data["doubleValue"])
        if "distributionValue" in data:
            value.distribution_value = Distribution.from_api(data["distributionValue"])
        return value


@dataclass
class Point:
    """A typed value over the interval [start_time, end_time)."""
    end_time: str
    value: TypedValue
    start_time: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Point":
        interval = data.get("interval") or {}
        return cls(
            end_time=interval.get("endTime", ""),
            start_time=interval.get("startTime"),
            value=TypedValue.from_api(data.get("value") or {}),
        )


@dataclass
class TimeSeries:
    """One labeled stream of points for a metric type."""
    metric_type: str
    resource_type: str
    metric_kind: str
    value_type: str
    metric_labels: Dict[str, str] = field(default_factory=dict)
    resource_labels: Dict[str, str] = field(default_factory=dict)
    system_labels: Optional[str] = None  # raw JSON text
    points: List[Point] = field(default_factory=list)
    unit: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TimeSeries":
        metric = data.get("metric") or {}
        resource = data.get("resource") or {}
        metadata = data.get("metadata") or {}

        system_labels = None
        if metadata.get("systemLabels") is not None:
            system_labels = json.dumps(metadata["systemLabels"])

        return cls(
            metric_type=metric.get("type", ""),
            metric_labels=dict(metric.get("labels") or {}),
            resource_type=resource.get("type", ""),
            resource_labels=dict(resource.get("labels") or {}),
            system_labels=system_labels,
            metric_kind=data.get("metricKind", "METRIC_KIND_UNSPECIFIED"),
            value_type=data.get("valueType", "VALUE_TYPE_UNSPECIFIED"),
            points=[Point.from_api(p) for p in data.get("points", [])],
            unit=data.get("unit", ""),
        )


@dataclass
class DescriptorPage:
    descriptors: List[MetricDescriptor]
    next_page_token: str = ""


@dataclass
class TimeSeriesPage:
    time_series: List[TimeSeries]
    next_page_token: str = ""


@dataclass
class ConstMetric:
    """A translated gauge or counter sample."""
    fq_name: str
    help: str
    value_type: str  # "gauge" or "counter"
    labels: Dict[str, str]
    value: float
    report_time: datetime

    def label_key(self) -> str:
        """Generate a stable key from name and sorted labels."""
        items = sorted(self.labels.items())
        return self.fq_name + "|" + ",".join(f"{k}={v}" for k, v in items)


@dataclass
class HistogramMetric:
    """A translated histogram sample with cumulative 0-bound buckets."""
    fq_name: str
    help: str
    value_type: str
    labels: Dict[str, str]
    count: int
    sum: float
    buckets: Dict[float, int]
    report_time: datetime

    def label_key(self) -> str:
        """Generate a stable key from name and sorted labels."""
        items = sorted(self.labels.items())
        return self.fq_name + "|" + ",".join(f"{k}={v}" for k, v in items)
