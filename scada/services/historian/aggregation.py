"""
Historian Aggregation
Statistics and chart bucketing over historian samples
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from scada.services.historian.sample import AggregateResult, ChartPoint, Sample, is_numeric

logger = logging.getLogger(__name__)


def numeric_samples(samples: Sequence[Sample]) -> List[Sample]:
    return [s for s in samples if is_numeric(s.value)]


def aggregate_samples(
    tag: str,
    samples: Sequence[Sample],
    start_time: float,
    end_time: float
) -> Optional[AggregateResult]:
    """
    Summary statistics of the numeric samples (oldest first).

    Args:
        tag: Tag name
        samples: Samples ordered by timestamp
        start_time: Range start (reported only)
        end_time: Range end (reported only)

    Returns:
        AggregateResult, or None when there are no numeric samples
    """
    numeric = numeric_samples(samples)
    if not numeric:
        return None

    values = np.array([float(s.value) for s in numeric], dtype=float)
    minimum = float(np.min(values))
    maximum = float(np.max(values))
    total = float(np.sum(values))
    # Float summation can put the mean a hair outside [min, max]
    avg = float(np.clip(np.mean(values), minimum, maximum))

    return AggregateResult(
        tag=tag,
        start_time=start_time,
        end_time=end_time,
        count=len(values),
        min=minimum,
        max=maximum,
        avg=avg,
        sum=total,
        first=float(values[0]),
        last=float(values[-1]),
        range=maximum - minimum,
        stddev=float(np.std(values)) if len(values) > 1 else 0.0,  # population
    )


def bucket_samples(
    samples: Sequence[Sample],
    start_time: float,
    end_time: float,
    buckets: int = 100
) -> List[ChartPoint]:
    """
    Split ``[start_time, end_time)`` into equal windows and average each.

    Windows without numeric samples are omitted.
    """
    if buckets < 1 or end_time <= start_time:
        return []

    numeric = [s for s in numeric_samples(samples) if start_time <= s.timestamp < end_time]
    if not numeric:
        return []

    bucket_size = (end_time - start_time) / buckets
    timestamps = np.array([s.timestamp for s in numeric], dtype=float)
    values = np.array([float(s.value) for s in numeric], dtype=float)
    indexes = np.minimum(((timestamps - start_time) // bucket_size).astype(int), buckets - 1)

    points = []
    for index in np.unique(indexes):
        bucket_values = values[indexes == index]
        points.append(ChartPoint(
            timestamp=start_time + int(index) * bucket_size + bucket_size / 2,
            value=float(np.clip(np.mean(bucket_values), bucket_values.min(), bucket_values.max())),
            min=float(bucket_values.min()),
            max=float(bucket_values.max()),
            count=int(bucket_values.size),
        ))
    return points
