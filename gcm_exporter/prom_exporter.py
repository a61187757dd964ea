"""Prometheus pull exporter using prometheus_client."""
from typing import Dict, List, Optional
from prometheus_client import Counter, Gauge, CollectorRegistry, start_http_server
from prometheus_client.metrics_core import Metric
from prometheus_client.utils import floatToGoString
import logging
import threading

from gcm_exporter.config import ExporterConfig
from gcm_exporter.series import ConstMetric, HistogramMetric

logger = logging.getLogger(__name__)


class PrometheusExporter:
    """Owns the registry and the HTTP server that serves /metrics."""

    def __init__(self, config: ExporterConfig, start_server: bool = True):
        self.config = config
        # Use a custom registry to avoid exporting default Python/process metrics
        self.registry = CollectorRegistry()

        if start_server:
            self._start_server()

    def register_collector(self, collector):
        """Register a custom collector that scrapes on every collect()."""
        self.registry.register(collector)
        logger.info(f"Registered collector {type(collector).__name__}")

    def _start_server(self):
        """Start Prometheus HTTP server."""
        try:
            start_http_server(
                self.config.port,
                addr=self.config.bind_address,
                registry=self.registry
            )
            logger.info(
                f"Prometheus exporter listening on "
                f"{self.config.bind_address}:{self.config.port}/metrics"
            )
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise


class MetricSink:
    """
    Collects translated samples for one scrape into metric families.

    Sibling scrape threads add samples concurrently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._families: Dict[str, Metric] = {}

    def _family(self, name: str, documentation: str, typ: str) -> Optional[Metric]:
        if typ == "counter" and name.endswith("_total"):
            name = name[:-6]
        family = self._families.get(name)
        if family is None:
            family = Metric(name, documentation, typ)
            self._families[name] = family
        elif family.type != typ:
            logger.warning(
                f"Dropping {typ} sample for {name}: family already exported as {family.type}"
            )
            return None
        return family

    def add_const(self, metric: ConstMetric):
        """Add a gauge or counter sample."""
        timestamp = metric.report_time.timestamp()
        with self._lock:
            family = self._family(metric.fq_name, metric.help, metric.value_type)
            if family is None:
                return
            sample_name = family.name + "_total" if family.type == "counter" else family.name
            family.add_sample(sample_name, dict(metric.labels), metric.value, timestamp=timestamp)

    def add_histogram(self, metric: HistogramMetric):
        """Add the _bucket, _count and _sum samples of a histogram."""
        timestamp = metric.report_time.timestamp()
        with self._lock:
            family = self._family(metric.fq_name, metric.help, "histogram")
            if family is None:
                return
            for bound, count in metric.buckets.items():
                labels = dict(metric.labels)
                labels["le"] = floatToGoString(bound)
                family.add_sample(family.name + "_bucket", labels, count, timestamp=timestamp)
            family.add_sample(family.name + "_count", dict(metric.labels), metric.count, timestamp=timestamp)
            family.add_sample(family.name + "_sum", dict(metric.labels), metric.sum, timestamp=timestamp)

    def collect(self) -> List[Metric]:
        with self._lock:
            return list(self._families.values())

    def __len__(self) -> int:
        with self._lock:
            return sum(len(f.samples) for f in self._families.values())


class ScrapeMetrics:
    """Self-monitoring metrics for Monitoring API scrapes."""

    def __init__(self, project_id: str, namespace: str = "stackdriver"):
        self.project_id = project_id
        prefix = f"{namespace}_monitoring_"

        # Not registered: collected by the owning collector after each scrape
        self.api_calls_total = Counter(
            f"{prefix}api_calls_total",
            "Total number of Google Stackdriver Monitoring API calls made.",
            ["project_id"],
            registry=None
        )

        self.scrapes_total = Counter(
            f"{prefix}scrapes_total",
            "Total number of Google Stackdriver Monitoring metrics scrapes.",
            ["project_id"],
            registry=None
        )

        self.scrape_errors_total = Counter(
            f"{prefix}scrape_errors_total",
            "Total number of Google Stackdriver Monitoring metrics scrape errors.",
            ["project_id"],
            registry=None
        )

        self.last_scrape_error = Gauge(
            f"{prefix}last_scrape_error",
            "Whether the last metrics scrape from Google Stackdriver Monitoring resulted "
            "in an error (1 for error, 0 for success).",
            ["project_id"],
            registry=None
        )

        self.last_scrape_timestamp = Gauge(
            f"{prefix}last_scrape_timestamp",
            "Number of seconds since 1970 since last metrics scrape from Google "
            "Stackdriver Monitoring.",
            ["project_id"],
            registry=None
        )

        self.last_scrape_duration_seconds = Gauge(
            f"{prefix}last_scrape_duration_seconds",
            "Duration of the last metrics scrape from Google Stackdriver Monitoring.",
            ["project_id"],
            registry=None
        )

        self._all = [
            self.scrape_errors_total,
            self.api_calls_total,
            self.scrapes_total,
            self.last_scrape_error,
            self.last_scrape_timestamp,
            self.last_scrape_duration_seconds,
        ]

        # Children exist from the start so every series is exposed, zero included
        for metric in self._all:
            metric.labels(project_id=project_id)

    def record_api_call(self):
        """Record one Monitoring API request."""
        self.api_calls_total.labels(project_id=self.project_id).inc()

    def record_scrape(self, failed: bool, timestamp: float, duration: float):
        """Record the outcome of a finished scrape."""
        if failed:
            self.scrape_errors_total.labels(project_id=self.project_id).inc()
        self.scrapes_total.labels(project_id=self.project_id).inc()
        self.last_scrape_error.labels(project_id=self.project_id).set(1 if failed else 0)
        self.last_scrape_timestamp.labels(project_id=self.project_id).set(timestamp)
        self.last_scrape_duration_seconds.labels(project_id=self.project_id).set(duration)

    def api_calls(self) -> float:
        return self.api_calls_total.labels(project_id=self.project_id)._value.get()

    def collect(self) -> List[Metric]:
        families = []
        for metric in self._all:
            families.extend(metric.collect())
        return families
