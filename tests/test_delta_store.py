"""Tests for DELTA aggregation stores."""
import math
import threading
from datetime import datetime, timedelta, timezone

from gcm_exporter.series import ConstMetric, HistogramMetric

DESCRIPTOR = "pubsub.googleapis.com/subscription/pull_request_count"
FQ_NAME = "stackdriver_pubsub_subscription_pubsub_googleapis_com_subscription_pull_request_count"


def at(minute: int) -> datetime:
    return datetime(2024, 1, 1, 12, minute, tzinfo=timezone.utc)


def counter(value: float, minute: int, **labels) -> ConstMetric:
    return ConstMetric(
        fq_name=FQ_NAME,
        help="pulls",
        value_type="counter",
        labels={"unit": "1", **labels},
        value=value,
        report_time=at(minute),
    )


def histogram(buckets, count: int, total: float, minute: int) -> HistogramMetric:
    return HistogramMetric(
        fq_name=FQ_NAME,
        help="latency",
        value_type="counter",
        labels={"unit": "ms"},
        count=count,
        sum=total,
        buckets=buckets,
        report_time=at(minute),
    )


def test_sequential_deltas_accumulate(counter_store):
    """Observations of 5 then 7 expose a running total of 12."""
    counter_store.increment(DESCRIPTOR, counter(5, 1))
    assert [m.value for m in counter_store.list_metrics(DESCRIPTOR)] == [5]

    counter_store.increment(DESCRIPTOR, counter(7, 2))
    listed = counter_store.list_metrics(DESCRIPTOR)

    assert [m.value for m in listed] == [12]
    assert listed[0].report_time == at(2)


def test_same_point_is_not_counted_twice(counter_store):
    counter_store.increment(DESCRIPTOR, counter(5, 1))
    counter_store.increment(DESCRIPTOR, counter(5, 1))
    counter_store.increment(DESCRIPTOR, counter(3, 0))

    assert [m.value for m in counter_store.list_metrics(DESCRIPTOR)] == [5]


def test_keys_are_separated_by_labels(counter_store):
    counter_store.increment(DESCRIPTOR, counter(1, 1, subscription_id="a"))
    counter_store.increment(DESCRIPTOR, counter(2, 1, subscription_id="b"))
    counter_store.increment(DESCRIPTOR, counter(3, 2, subscription_id="a"))

    values = {m.labels["subscription_id"]: m.value for m in counter_store.list_metrics(DESCRIPTOR)}
    assert values == {"a": 4, "b": 2}
    assert len(counter_store) == 2


def test_listed_metrics_are_copies(counter_store):
    counter_store.increment(DESCRIPTOR, counter(5, 1))
    listed = counter_store.list_metrics(DESCRIPTOR)
    listed[0].labels["unit"] = "changed"
    listed[0].value = 100

    assert counter_store.list_metrics(DESCRIPTOR)[0].labels["unit"] == "1"
    assert counter_store.list_metrics(DESCRIPTOR)[0].value == 5


def test_stale_entries_are_evicted(counter_store, clock):
    counter_store.increment(DESCRIPTOR, counter(5, 1, subscription_id="old"))
    clock.advance(20 * 60)
    counter_store.increment(DESCRIPTOR, counter(5, 1, subscription_id="new"))
    clock.advance(15 * 60)

    listed = counter_store.list_metrics(DESCRIPTOR)
    assert [m.labels["subscription_id"] for m in listed] == ["new"]

    clock.advance(60 * 60)
    assert counter_store.evict_stale() == 1
    assert len(counter_store) == 0


def test_reset(counter_store):
    counter_store.increment(DESCRIPTOR, counter(5, 1))
    counter_store.reset()

    assert counter_store.list_metrics(DESCRIPTOR) == []


def test_concurrent_increments_are_not_lost(counter_store):
    def worker(offset):
        for minute in range(1, 51):
            counter_store.increment(DESCRIPTOR, counter(1, minute, worker=str(offset)))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(m.value for m in counter_store.list_metrics(DESCRIPTOR)) == [50] * 8


def test_histogram_deltas_merge_buckets(histogram_store):
    histogram_store.increment(DESCRIPTOR, histogram({1.0: 1, 2.0: 3, math.inf: 4}, 4, 6.0, 1))
    histogram_store.increment(DESCRIPTOR, histogram({1.0: 2, 2.0: 2, math.inf: 5}, 5, 9.0, 2))

    merged = histogram_store.list_metrics(DESCRIPTOR)[0]

    assert merged.buckets == {1.0: 3, 2.0: 5, math.inf: 9}
    assert merged.count == 9
    assert merged.sum == 15.0
    assert merged.report_time == at(2)


def test_histogram_merge_with_different_layouts_stays_cumulative(histogram_store):
    histogram_store.increment(DESCRIPTOR, histogram({1.0: 5, math.inf: 5}, 5, 2.5, 1))
    histogram_store.increment(DESCRIPTOR, histogram({2.0: 1, math.inf: 1}, 1, 1.5, 2))

    merged = histogram_store.list_metrics(DESCRIPTOR)[0]

    assert merged.buckets == {1.0: 5, 2.0: 6, math.inf: 6}
    assert merged.count == 6
