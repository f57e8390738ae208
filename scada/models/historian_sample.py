"""
Historian Sample Model
Durable time-series samples written by the historian
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, Float, String, Text, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class HistorianSample(Base):
    """
    One historised tag value.

    Numeric and boolean values live in ``value``; strings in ``value_text``.
    ``value_kind`` (int, float, bool, str) restores the original Python type.
    """

    __tablename__ = "historian_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sample_id = Column(String(32), nullable=False, unique=True)
    tag = Column(String(255), nullable=False)
    value = Column(Float, nullable=True)
    value_text = Column(Text, nullable=True)
    value_kind = Column(String(8), nullable=False, default="float")
    quality = Column(String(16), nullable=False, default="GOOD")
    timestamp = Column(Float, nullable=False)  # Unix timestamp
    created_at = Column(Float, default=lambda: datetime.now(timezone.utc).timestamp())

    __table_args__ = (
        Index("idx_historian_tag_timestamp", "tag", "timestamp"),
        Index("idx_historian_timestamp", "timestamp"),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "sample_id": self.sample_id,
            "tag": self.tag,
            "value": self.value_text if self.value_kind == "str" else self.value,
            "quality": self.quality,
            "timestamp": self.timestamp,
            "created_at": self.created_at,
        }

    def __repr__(self) -> str:
        return (
            f"<HistorianSample(tag={self.tag}, value={self.value}, "
            f"timestamp={self.timestamp})>"
        )
