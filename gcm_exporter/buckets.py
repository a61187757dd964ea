"""Reconstruction of Prometheus histogram buckets from Monitoring distributions."""
from typing import Dict

import numpy as np

from gcm_exporter.errors import UnknownBucketOptionsError
from gcm_exporter.series import Distribution


def bucket_boundaries(dist: Distribution) -> np.ndarray:
    """
    Upper bounds for every bucket of a distribution, ending with +Inf.

    Linear and exponential options declare num_finite_buckets finite buckets
    plus an underflow and an overflow bucket, so they produce
    num_finite_buckets + 2 boundaries.
    """
    opts = dist.bucket_options

    if opts.explicit is not None:
        finite = np.asarray(opts.explicit.bounds, dtype=float)
    elif opts.linear is not None:
        steps = np.arange(opts.linear.num_finite_buckets + 1, dtype=float)
        finite = opts.linear.offset + steps * opts.linear.width
    elif opts.exponential is not None:
        steps = np.arange(opts.exponential.num_finite_buckets + 1, dtype=float)
        finite = opts.exponential.scale * np.power(opts.exponential.growth_factor, steps)
    else:
        raise UnknownBucketOptionsError("Unknown distribution buckets")

    return np.append(finite, np.inf)


def generate_histogram_buckets(dist: Distribution) -> Dict[float, int]:
    """
    Convert a distribution into an ordered upper-bound -> cumulative count map.

    The API reports an independent count per bucket, each bucket starting at
    the previous bucket's upper bound. Prometheus expects every bucket to be
    bound at 0, so counts are accumulated in ascending order. Boundaries with
    no reported count carry the running total.
    """
    bounds = bucket_boundaries(dist)

    counts = np.zeros(len(bounds), dtype=np.int64)
    reported = np.asarray(dist.bucket_counts[: len(bounds)], dtype=np.int64)
    counts[: len(reported)] = reported

    cumulative = np.cumsum(counts)
    return {float(b): int(c) for b, c in zip(bounds, cumulative)}
