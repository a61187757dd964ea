"""Scrape orchestration: descriptors, time series and translation per scrape."""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from gcm_exporter.cache import DescriptorCache, new_descriptor_cache
from gcm_exporter.client import MonitoringClient
from gcm_exporter.config import AggregationConfig, MonitoringConfig
from gcm_exporter.delta_store import InMemoryDeltaCounterStore, InMemoryDeltaHistogramStore
from gcm_exporter.errors import DecodeError, IngestDelayError, MonitoringApiError
from gcm_exporter.prom_exporter import MetricSink, ScrapeMetrics
from gcm_exporter.series import MetricDescriptor
from gcm_exporter.timeutils import parse_duration
from gcm_exporter.translator import TimeSeriesTranslator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorCollector:
    """Errors reported by concurrent scrape units; the first one represents the scrape."""

    def __init__(self):
        self._lock = threading.Lock()
        self._errors: List[Exception] = []

    def add(self, error: Exception):
        with self._lock:
            self._errors.append(error)

    def first(self) -> Optional[Exception]:
        with self._lock:
            return self._errors[0] if self._errors else None


def run_concurrently(target: Callable, args_list: List[tuple]):
    """Start one thread per argument tuple and wait for all of them."""
    threads = [threading.Thread(target=target, args=args, daemon=True) for args in args_list]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()


class MonitoringCollector:
    """
    prometheus_client custom collector for one Google Cloud project.

    Every collect() runs a full scrape: one thread per metric type prefix, one
    thread per unique descriptor, pages fetched sequentially. A failing unit
    never stops its siblings; the scrape reports the first error through the
    last_scrape_error meta-metric and still exposes everything collected.
    """

    def __init__(
        self,
        project_id: str,
        client: MonitoringClient,
        config: MonitoringConfig,
        counter_store: InMemoryDeltaCounterStore,
        histogram_store: InMemoryDeltaHistogramStore,
        namespace: str = "stackdriver",
        descriptor_cache: Optional[DescriptorCache] = None,
        now: Callable[[], datetime] = utc_now
    ):
        self.project_id = project_id
        self.client = client
        self.config = config
        self.counter_store = counter_store
        self.histogram_store = histogram_store
        self.namespace = namespace
        self.now = now
        self.log = logging.LoggerAdapter(logger, {"project_id": project_id})

        if descriptor_cache is None:
            descriptor_cache = new_descriptor_cache(
                config.descriptor_cache_ttl,
                config.descriptor_cache_only_google
            )
        self.descriptor_cache = descriptor_cache

        self.scrape_metrics = ScrapeMetrics(project_id, namespace)

        self._status_lock = threading.Lock()
        self.last_scrape: Dict[str, object] = {
            "timestamp": None,
            "duration_seconds": None,
            "error": None,
            "samples": 0,
        }

    def describe(self):
        # Nothing to describe up front; avoids a scrape at registration time
        return []

    def collect(self):
        """Run one scrape and yield translated families plus meta-metrics."""
        begun = time.time()
        sink = MetricSink()

        error = self.scrape(sink)
        if error is not None:
            self.log.error(f"Error while getting Google Stackdriver Monitoring metrics: {error}")

        finished = time.time()
        self.scrape_metrics.record_scrape(error is not None, finished, finished - begun)

        with self._status_lock:
            self.last_scrape = {
                "timestamp": finished,
                "duration_seconds": finished - begun,
                "error": str(error) if error is not None else None,
                "samples": len(sink),
            }

        yield from sink.collect()
        yield from self.scrape_metrics.collect()

    def scrape(self, sink: MetricSink) -> Optional[Exception]:
        """Scrape every configured prefix into the sink; return the first error."""
        errors = ErrorCollector()
        run_concurrently(
            self._run_prefix,
            [(prefix, sink, errors) for prefix in self.config.metrics_prefixes]
        )
        self.log.debug("Done reporting monitoring metrics")
        return errors.first()

    def _run_prefix(self, prefix: str, sink: MetricSink, errors: ErrorCollector):
        try:
            error = self._scrape_prefix(prefix, sink)
        except Exception as e:
            self.log.error(f"Unexpected error scraping prefix {prefix}: {e}", exc_info=True)
            error = e
        if error is not None:
            errors.add(error)

    def descriptor_filter(self, prefix: str) -> str:
        query = f'metric.type = starts_with("{prefix}")'
        if self.config.drop_delegated_projects:
            query = f'project = "{self.project_id}" AND {query}'
        return query

    def _scrape_prefix(self, prefix: str, sink: MetricSink) -> Optional[Exception]:
        cached = self.descriptor_cache.lookup(prefix)
        if cached is not None:
            self.log.debug(f"Using cached metric descriptors starting with {prefix}")
            return self.report_descriptors(cached, sink)

        self.log.debug(f"Listing metric descriptors starting with {prefix}")
        query = self.descriptor_filter(prefix)
        descriptors: List[MetricDescriptor] = []
        first_error: Optional[Exception] = None
        seen: Set[str] = set()
        page_token = ""

        while True:
            self.scrape_metrics.record_api_call()
            try:
                page = self.client.list_metric_descriptors(self.project_id, query, page_token)
            except MonitoringApiError as e:
                self.log.error(f"Error listing metric descriptors for prefix {prefix} ({query}): {e}")
                return first_error or e

            # Types already fetched from an earlier page are not fetched again
            fresh = [d for d in page.descriptors if d.type not in seen]
            seen.update(d.type for d in page.descriptors)
            descriptors.extend(page.descriptors)

            # Descriptor failures are already logged; keep listing the rest
            error = self.report_descriptors(fresh, sink)
            if first_error is None:
                first_error = error

            if not page.next_page_token:
                break
            page_token = page.next_page_token

        self.descriptor_cache.store(prefix, descriptors)
        return first_error

    def report_descriptors(
        self,
        descriptors: List[MetricDescriptor],
        sink: MetricSink
    ) -> Optional[Exception]:
        """
        Fetch and translate time series for every unique descriptor type.

        The same descriptor can be returned for several delegated projects.
        Metrics are fetched by type across all of them anyway, so fetching a
        type twice would only expose duplicate series.
        """
        unique: Dict[str, MetricDescriptor] = {}
        for descriptor in descriptors:
            unique[descriptor.type] = descriptor

        end_time = self.now() - self.config.offset
        start_time = end_time - self.config.interval

        errors = ErrorCollector()
        run_concurrently(
            self._run_descriptor,
            [(d, start_time, end_time, sink, errors) for d in unique.values()]
        )
        return errors.first()

    def _run_descriptor(
        self,
        descriptor: MetricDescriptor,
        start_time: datetime,
        end_time: datetime,
        sink: MetricSink,
        errors: ErrorCollector
    ):
        try:
            error = self._scrape_descriptor(descriptor, start_time, end_time, sink)
        except Exception as e:
            self.log.error(f"Unexpected error scraping descriptor {descriptor.type}: {e}", exc_info=True)
            error = e
        if error is not None:
            errors.add(error)

    def time_series_filter(self, descriptor: MetricDescriptor) -> str:
        query = f'metric.type="{descriptor.type}"'
        if self.config.drop_delegated_projects:
            query = f'project="{self.project_id}" AND {query}'

        for extra in self.config.extra_filters:
            if descriptor.type.startswith(extra.targeted_metric_prefix):
                query = f"{query} AND ({extra.filter_query})"
        return query

    def aggregation_for(self, descriptor: MetricDescriptor) -> Optional[AggregationConfig]:
        """The first aggregation whose prefix matches; later matches are ignored."""
        for aggregation in self.config.aggregations:
            if descriptor.type.startswith(aggregation.targeted_metric_prefix):
                return aggregation
        return None

    def query_window(
        self,
        descriptor: MetricDescriptor,
        start_time: datetime,
        end_time: datetime
    ) -> Tuple[datetime, datetime]:
        """
        Shift the window back by the descriptor's ingest delay when enabled.

        Raises:
            IngestDelayError: if the declared delay is not a valid duration
        """
        if not self.config.ingest_delay or not descriptor.ingest_delay:
            return start_time, end_time

        try:
            delay = parse_duration(descriptor.ingest_delay)
        except ValueError as e:
            raise IngestDelayError(
                f"invalid ingest delay {descriptor.ingest_delay!r} for {descriptor.type}: {e}"
            ) from e

        self.log.debug(f"Adding ingest delay {descriptor.ingest_delay} for {descriptor.type}")
        return start_time - delay, end_time - delay

    def _scrape_descriptor(
        self,
        descriptor: MetricDescriptor,
        start_time: datetime,
        end_time: datetime,
        sink: MetricSink
    ) -> Optional[Exception]:
        self.log.debug(f"Retrieving metrics for descriptor {descriptor.type}")

        try:
            start_time, end_time = self.query_window(descriptor, start_time, end_time)
        except IngestDelayError as e:
            self.log.error(f"Error parsing ingest delay from metric metadata: {e}")
            return e

        query = self.time_series_filter(descriptor)
        aggregation = self.aggregation_for(descriptor)
        self.log.debug(f"Retrieving metrics for {descriptor.type} with filter {query}")

        translator = TimeSeriesTranslator(
            descriptor,
            project_id=self.project_id,
            namespace=self.namespace,
            fill_missing_labels=self.config.fill_missing_labels,
            drop_delegated_projects=self.config.drop_delegated_projects,
            counter_store=self.counter_store,
            histogram_store=self.histogram_store,
            aggregate_deltas=self.config.aggregate_deltas,
            log=self.log,
        )

        page_token = ""
        try:
            while True:
                self.scrape_metrics.record_api_call()
                try:
                    page = self.client.list_time_series(
                        self.project_id, query, start_time, end_time, aggregation, page_token
                    )
                except MonitoringApiError as e:
                    self.log.error(f"Error retrieving time series for descriptor {descriptor.type}: {e}")
                    return e

                try:
                    translator.translate(page)
                except DecodeError as e:
                    self.log.error(f"Error reporting time series for descriptor {descriptor.type}: {e}")
                    return e

                if not page.next_page_token:
                    return None
                page_token = page.next_page_token
        finally:
            translator.complete(sink)
