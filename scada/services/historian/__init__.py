"""
Historian Services
Buffered time-series storage with range queries and aggregation
"""
from .sample import Sample, AggregateResult, ChartPoint
from .sample_store import SQLiteSampleStore
from .historian import Historian

__all__ = [
    "Sample",
    "AggregateResult",
    "ChartPoint",
    "SQLiteSampleStore",
    "Historian",
]
