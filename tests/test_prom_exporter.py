"""Tests for the metric sink and scrape meta-metrics."""
from datetime import datetime, timezone

from gcm_exporter.prom_exporter import MetricSink, ScrapeMetrics
from gcm_exporter.series import ConstMetric

REPORT_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def sample_values(families):
    return {s.name: s.value for f in families for s in f.samples}


def test_clean_scrape_exposes_every_meta_metric():
    metrics = ScrapeMetrics("p")
    metrics.record_api_call()
    metrics.record_scrape(False, 1.0, 0.1)

    values = sample_values(metrics.collect())

    assert values["stackdriver_monitoring_scrape_errors_total"] == 0
    assert values["stackdriver_monitoring_scrapes_total"] == 1
    assert values["stackdriver_monitoring_api_calls_total"] == 1
    assert values["stackdriver_monitoring_last_scrape_error"] == 0
    assert values["stackdriver_monitoring_last_scrape_timestamp"] == 1.0
    assert values["stackdriver_monitoring_last_scrape_duration_seconds"] == 0.1


def test_meta_metrics_exposed_before_first_scrape():
    values = sample_values(ScrapeMetrics("p").collect())

    assert values["stackdriver_monitoring_scrape_errors_total"] == 0
    assert values["stackdriver_monitoring_api_calls_total"] == 0


def test_failed_scrape_increments_errors():
    metrics = ScrapeMetrics("p")
    metrics.record_scrape(True, 1.0, 0.1)
    metrics.record_scrape(True, 2.0, 0.1)

    values = sample_values(metrics.collect())

    assert values["stackdriver_monitoring_scrape_errors_total"] == 2
    assert values["stackdriver_monitoring_last_scrape_error"] == 1


def const(fq_name, value_type, value=3.0):
    return ConstMetric(
        fq_name=fq_name,
        help="requests",
        value_type=value_type,
        labels={"unit": "1"},
        value=value,
        report_time=REPORT_TIME,
    )


def test_counter_sample_gets_total_suffix():
    sink = MetricSink()
    sink.add_const(const("stackdriver_global_requests", "counter"))

    family = sink.collect()[0]

    assert family.name == "stackdriver_global_requests"
    assert [s.name for s in family.samples] == ["stackdriver_global_requests_total"]


def test_counter_already_ending_in_total_is_not_doubled():
    sink = MetricSink()
    sink.add_const(const("stackdriver_global_requests_total", "counter"))
    sink.add_const(const("stackdriver_global_requests_total", "counter", value=4.0))

    families = sink.collect()

    assert len(families) == 1
    assert families[0].name == "stackdriver_global_requests"
    assert [s.name for s in families[0].samples] == ["stackdriver_global_requests_total"] * 2


def test_gauge_name_is_kept():
    sink = MetricSink()
    sink.add_const(const("stackdriver_global_requests_total", "gauge"))

    family = sink.collect()[0]

    assert family.name == "stackdriver_global_requests_total"
    assert family.samples[0].name == "stackdriver_global_requests_total"
    assert len(sink) == 1
