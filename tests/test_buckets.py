"""Tests for histogram bucket reconstruction."""
import math

import pytest

from gcm_exporter.buckets import generate_histogram_buckets
from gcm_exporter.errors import UnknownBucketOptionsError
from gcm_exporter.series import (
    BucketOptions, Distribution, ExplicitBuckets, ExponentialBuckets, LinearBuckets
)


def test_explicit_bounds_are_cumulative():
    """Explicit bounds [1, 2] with three counts end in a +Inf grand total."""
    dist = Distribution(
        count=12,
        bucket_options=BucketOptions(explicit=ExplicitBuckets(bounds=[1.0, 2.0])),
        bucket_counts=[3, 4, 5],
    )

    buckets = generate_histogram_buckets(dist)

    assert list(buckets.keys()) == [1.0, 2.0, math.inf]
    assert list(buckets.values()) == [3, 7, 12]


def test_linear_boundaries():
    """Linear offset 0, width 2, 3 finite buckets gives 5 boundaries."""
    dist = Distribution(
        bucket_options=BucketOptions(
            linear=LinearBuckets(num_finite_buckets=3, width=2.0, offset=0.0)
        ),
        bucket_counts=[1, 1, 1, 1, 1],
    )

    buckets = generate_histogram_buckets(dist)

    assert list(buckets.keys()) == [0.0, 2.0, 4.0, 6.0, math.inf]
    assert list(buckets.values()) == [1, 2, 3, 4, 5]


def test_exponential_boundaries():
    dist = Distribution(
        bucket_options=BucketOptions(
            exponential=ExponentialBuckets(num_finite_buckets=3, growth_factor=2.0, scale=1.5)
        ),
        bucket_counts=[0, 2, 0, 1, 4],
    )

    buckets = generate_histogram_buckets(dist)

    assert list(buckets.keys()) == [1.5, 3.0, 6.0, 12.0, math.inf]
    assert list(buckets.values()) == [0, 2, 2, 3, 7]


def test_missing_counts_carry_running_total():
    """Bucket counts may stop early; the remaining boundaries keep the total."""
    dist = Distribution(
        bucket_options=BucketOptions(explicit=ExplicitBuckets(bounds=[10.0, 20.0, 30.0])),
        bucket_counts=[4, 6],
    )

    buckets = generate_histogram_buckets(dist)

    assert buckets == {10.0: 4, 20.0: 10, 30.0: 10, math.inf: 10}


def test_empty_counts_are_all_zero():
    dist = Distribution(
        bucket_options=BucketOptions(explicit=ExplicitBuckets(bounds=[1.0])),
    )

    assert generate_histogram_buckets(dist) == {1.0: 0, math.inf: 0}


def test_unknown_bucket_options():
    with pytest.raises(UnknownBucketOptionsError):
        generate_histogram_buckets(Distribution(bucket_counts=[1, 2]))
