"""Translation of Monitoring time series into Prometheus samples."""
import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from gcm_exporter.buckets import generate_histogram_buckets
from gcm_exporter.delta_store import InMemoryDeltaCounterStore, InMemoryDeltaHistogramStore
from gcm_exporter.errors import UnknownBucketOptionsError
from gcm_exporter.series import (
    ConstMetric, HistogramMetric, MetricDescriptor, Point, TimeSeries, TimeSeriesPage
)
from gcm_exporter.timeutils import EPOCH, parse_timestamp

logger = logging.getLogger(__name__)

GAUGE = "gauge"
COUNTER = "counter"


def normalize_metric_name(name: str) -> str:
    """Lower-case each path segment and replace non-alphanumerics with '_'."""
    words = []
    for word in name.split("/"):
        words.append("".join(c if c.isalnum() else "_" for c in word).lower())
    return "_".join(words)


def build_fq_name(namespace: str, time_series: TimeSeries) -> str:
    """
    Compose <namespace>_<monitored resource type>_<metric type>, for example
    stackdriver_gce_instance_compute_googleapis_com_instance_cpu_usage_time.
    """
    parts = [
        namespace,
        normalize_metric_name(time_series.resource_type),
        normalize_metric_name(time_series.metric_type),
    ]
    return "_".join(p for p in parts if p)


def newest_point(time_series: TimeSeries) -> Tuple[Optional[Point], datetime]:
    """
    The point with the latest interval end. The first point wins on ties.

    Raises:
        TimestampError: if a point end time is malformed
    """
    newest = None
    newest_end = EPOCH
    for point in time_series.points:
        end_time = parse_timestamp(point.end_time)
        if end_time > newest_end:
            newest_end = end_time
            newest = point
    return newest, newest_end


def decode_system_labels(raw: str) -> Dict[str, str]:
    """Decode the JSON object of system labels; values must be strings."""
    decoded = json.loads(raw)
    if not isinstance(decoded, dict):
        raise ValueError(f"system labels are not a JSON object: {raw}")
    for key, value in decoded.items():
        if not isinstance(value, str):
            raise ValueError(f"system label {key!r} is not a string: {value!r}")
    return decoded


class TimeSeriesTranslator:
    """
    Translates every page of time series returned for one metric descriptor.

    Call translate() once per page and complete() once after the last page;
    completion groups samples per metric family and emits them to the sink.
    """

    def __init__(
        self,
        descriptor: MetricDescriptor,
        project_id: str,
        namespace: str,
        fill_missing_labels: bool,
        drop_delegated_projects: bool,
        counter_store: InMemoryDeltaCounterStore,
        histogram_store: InMemoryDeltaHistogramStore,
        aggregate_deltas: bool,
        log: Union[logging.Logger, logging.LoggerAdapter] = logger
    ):
        self.descriptor = descriptor
        self.project_id = project_id
        self.namespace = namespace
        self.fill_missing_labels = fill_missing_labels
        self.drop_delegated_projects = drop_delegated_projects
        self.counter_store = counter_store
        self.histogram_store = histogram_store
        self.aggregate_deltas = aggregate_deltas
        self.log = log

        self.help = descriptor.description or f"Google Cloud Monitoring metric {descriptor.type}"
        self._const_metrics: Dict[str, List[ConstMetric]] = {}
        self._histogram_metrics: Dict[str, List[HistogramMetric]] = {}

    def translate(self, page: TimeSeriesPage):
        """Translate one page of time series."""
        for time_series in page.time_series:
            self._translate_series(time_series)

    def _translate_series(self, time_series: TimeSeries):
        point, end_time = newest_point(time_series)
        if point is None:
            return

        labels = self.build_labels(time_series)

        if self.drop_delegated_projects:
            project_id = labels.get("project_id")
            if project_id is not None and project_id != self.project_id:
                return

        if time_series.metric_kind == "GAUGE":
            value_type = GAUGE
        elif time_series.metric_kind == "DELTA":
            value_type = COUNTER if self.aggregate_deltas else GAUGE
        elif time_series.metric_kind == "CUMULATIVE":
            value_type = COUNTER
        else:
            self.log.debug(
                f"Discarding {time_series.metric_type}: unknown metric kind {time_series.metric_kind}"
            )
            return

        fq_name = build_fq_name(self.namespace, time_series)
        value = point.value

        if time_series.value_type == "BOOL":
            metric_value = 1.0 if value.bool_value else 0.0
        elif time_series.value_type == "INT64":
            metric_value = float(value.int64_value or 0)
        elif time_series.value_type == "DOUBLE":
            metric_value = value.double_value or 0.0
        elif time_series.value_type == "DISTRIBUTION":
            self._translate_distribution(time_series, point, fq_name, value_type, labels, end_time)
            return
        else:
            self.log.debug(
                f"Discarding {time_series.metric_type}: unknown value type {time_series.value_type}"
            )
            return

        metric = ConstMetric(
            fq_name=fq_name,
            help=self.help,
            value_type=value_type,
            labels=labels,
            value=metric_value,
            report_time=end_time,
        )
        if time_series.metric_kind == "DELTA" and self.aggregate_deltas:
            self.counter_store.increment(self.descriptor.type, metric)
        else:
            self._const_metrics.setdefault(fq_name, []).append(metric)

    def _translate_distribution(
        self,
        time_series: TimeSeries,
        point: Point,
        fq_name: str,
        value_type: str,
        labels: Dict[str, str],
        end_time: datetime
    ):
        dist = point.value.distribution_value
        if dist is None:
            self.log.debug(f"Discarding {time_series.metric_type}: point has no distribution value")
            return

        try:
            buckets = generate_histogram_buckets(dist)
        except UnknownBucketOptionsError as e:
            self.log.debug(
                f"Discarding resource={time_series.resource_type} "
                f"metric={time_series.metric_type}: {e}"
            )
            return

        metric = HistogramMetric(
            fq_name=fq_name,
            help=self.help,
            value_type=value_type,
            labels=labels,
            count=dist.count,
            sum=dist.mean * dist.count,
            buckets=buckets,
            report_time=end_time,
        )
        if time_series.metric_kind == "DELTA" and self.aggregate_deltas:
            self.histogram_store.increment(self.descriptor.type, metric)
        else:
            self._histogram_metrics.setdefault(fq_name, []).append(metric)

    def build_labels(self, time_series: TimeSeries) -> Dict[str, str]:
        """
        Ordered label set: unit, then metric, resource and system labels.
        The first occurrence of a key wins.
        """
        labels = {"unit": self.descriptor.unit}

        def add(source: Dict[str, str]):
            for key, value in source.items():
                if key in labels:
                    self.log.debug(f"Found duplicate label key {key}")
                    continue
                labels[key] = value

        add(time_series.metric_labels)
        add(time_series.resource_labels)

        if time_series.system_labels is not None:
            try:
                add(decode_system_labels(time_series.system_labels))
            except ValueError as e:
                self.log.error(f"Failed to decode system labels for {time_series.metric_type}: {e}")

        return labels

    def complete(self, sink):
        """Emit every collected sample, including running totals of DELTA metrics."""
        if self.aggregate_deltas:
            for metric in self.counter_store.list_metrics(self.descriptor.type):
                self._const_metrics.setdefault(metric.fq_name, []).append(metric)
            for metric in self.histogram_store.list_metrics(self.descriptor.type):
                self._histogram_metrics.setdefault(metric.fq_name, []).append(metric)

        for metrics in self._const_metrics.values():
            for metric in self._fill_labels(metrics):
                sink.add_const(metric)

        for metrics in self._histogram_metrics.values():
            for metric in self._fill_labels(metrics):
                sink.add_histogram(metric)

        self._const_metrics = {}
        self._histogram_metrics = {}

    def _fill_labels(self, metrics):
        """Give every sample of a family the same label keys, missing ones as ""."""
        if not self.fill_missing_labels:
            return metrics

        keys: Dict[str, None] = {}
        for metric in metrics:
            for key in metric.labels:
                keys.setdefault(key, None)

        for metric in metrics:
            metric.labels = {key: metric.labels.get(key, "") for key in keys}
        return metrics
