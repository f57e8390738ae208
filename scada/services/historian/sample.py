"""
Historian Data Types
Samples, aggregate results and chart points returned by the historian
"""
import math
import uuid
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict

from scada.services.tagbus.records import Quality


def new_sample_id() -> str:
    return uuid.uuid4().hex


def is_numeric(value) -> bool:
    """True for finite real numbers (booleans count as 0/1)"""
    return isinstance(value, Real) and math.isfinite(value)


@dataclass(frozen=True)
class Sample:
    """One historised value of a tag"""
    tag: str
    value: Any
    timestamp: float
    quality: Quality = Quality.GOOD
    sample_id: str = field(default_factory=new_sample_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "value": self.value,
            "timestamp": self.timestamp,
            "quality": self.quality.value,
            "sample_id": self.sample_id,
        }


@dataclass(frozen=True)
class AggregateResult:
    tag: str
    start_time: float
    end_time: float
    count: int
    min: float
    max: float
    avg: float
    sum: float
    first: float
    last: float
    range: float
    stddev: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "sum": self.sum,
            "first": self.first,
            "last": self.last,
            "range": self.range,
            "stddev": self.stddev,
        }


@dataclass(frozen=True)
class ChartPoint:
    """Mean of one time bucket, stamped at the bucket centre"""
    timestamp: float
    value: float
    min: float
    max: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "value": self.value,
            "min": self.min,
            "max": self.max,
            "count": self.count,
        }
