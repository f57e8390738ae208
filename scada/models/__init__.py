"""
SCADA Database Models
Defines SQLAlchemy ORM models for the historian SQLite database
"""
from .historian_sample import Base, HistorianSample

__all__ = [
    "Base",
    "HistorianSample",
]
