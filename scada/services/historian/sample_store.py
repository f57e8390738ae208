"""
SQLite Sample Store
Durable storage of historian samples in the ``historian_samples`` table
"""
import logging
import sqlite3
import time
from numbers import Integral, Real
from typing import Dict, Iterable, List, Optional, Tuple

from scada.core.error_handling import ErrorCode, StorageError
from scada.database.manager import DatabaseManager
from scada.models import Base, HistorianSample
from scada.services.historian.sample import Sample
from scada.services.tagbus.records import Quality

logger = logging.getLogger(__name__)

TABLE = HistorianSample.__tablename__

_COLUMNS = "sample_id, tag, value, value_text, value_kind, quality, timestamp"


def encode_value(value) -> Tuple[Optional[float], Optional[str], str]:
    """Split a value into (value, value_text, value_kind) columns"""
    if isinstance(value, bool):
        return float(value), None, "bool"
    if isinstance(value, Integral):
        return float(value), None, "int"
    if isinstance(value, Real):
        return float(value), None, "float"
    return None, (None if value is None else str(value)), "str"


def decode_value(row: sqlite3.Row):
    kind = row["value_kind"]
    if kind == "str":
        return row["value_text"]
    if row["value"] is None:
        return None
    if kind == "bool":
        return bool(row["value"])
    if kind == "int":
        return int(row["value"])
    return row["value"]


def _row_to_sample(row: sqlite3.Row) -> Sample:
    return Sample(
        tag=row["tag"],
        value=decode_value(row),
        timestamp=row["timestamp"],
        quality=Quality(row["quality"]),
        sample_id=row["sample_id"],
    )


class SQLiteSampleStore:
    """
    Sample store backed by the DatabaseManager.

    Errors from SQLite surface as StorageError so callers can decide
    whether to retry (writes) or fail the request (reads).
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.db_manager.create_tables(Base.metadata)

    @classmethod
    def open(cls, db_path: str) -> "SQLiteSampleStore":
        return cls(DatabaseManager(db_path))

    def close(self) -> None:
        self.db_manager.close()

    def append(self, samples: Iterable[Sample]) -> int:
        """
        Insert samples in one transaction.

        Samples already stored (same sample_id) are ignored, so a batch can
        be retried safely.

        Returns:
            Number of rows inserted
        """
        created_at = time.time()
        params_list = []
        for sample in samples:
            value, value_text, value_kind = encode_value(sample.value)
            params_list.append((
                sample.sample_id,
                sample.tag,
                value,
                value_text,
                value_kind,
                sample.quality.value,
                sample.timestamp,
                created_at,
            ))
        if not params_list:
            return 0

        try:
            with self.db_manager.transaction() as conn:
                cursor = conn.executemany(
                    f"INSERT OR IGNORE INTO {TABLE} ({_COLUMNS}, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    params_list
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to append {len(params_list)} samples: {e}",
                details={'db_path': self.db_manager.db_path}
            ) from e

    def _read(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self.db_manager.fetchall(query, params)
        except sqlite3.Error as e:
            raise StorageError(
                f"Sample store read failed: {e}",
                error_code=ErrorCode.STORAGE_READ_ERROR,
                details={'db_path': self.db_manager.db_path}
            ) from e

    def query(self, tag: str, start: float, end: float, limit: Optional[int] = None) -> List[Sample]:
        """Samples of a tag with ``start <= timestamp <= end``, oldest first"""
        sql = (
            f"SELECT {_COLUMNS} FROM {TABLE} "
            f"WHERE tag = ? AND timestamp >= ? AND timestamp <= ? "
            f"ORDER BY timestamp, id"
        )
        params: tuple = (tag, start, end)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        return [_row_to_sample(row) for row in self._read(sql, params)]

    def latest(self, tag: str) -> Optional[Sample]:
        rows = self._read(
            f"SELECT {_COLUMNS} FROM {TABLE} WHERE tag = ? ORDER BY timestamp DESC, id DESC LIMIT 1",
            (tag,)
        )
        return _row_to_sample(rows[0]) if rows else None

    def list_tags(self) -> List[str]:
        rows = self._read(f"SELECT DISTINCT tag FROM {TABLE} ORDER BY tag")
        return [row["tag"] for row in rows]

    def max_timestamps(self) -> Dict[str, float]:
        """Newest stored timestamp per tag"""
        rows = self._read(f"SELECT tag, MAX(timestamp) AS newest FROM {TABLE} GROUP BY tag")
        return {row["tag"]: row["newest"] for row in rows}

    def count(self, tag: Optional[str] = None) -> int:
        if tag is None:
            rows = self._read(f"SELECT COUNT(*) AS n FROM {TABLE}")
        else:
            rows = self._read(f"SELECT COUNT(*) AS n FROM {TABLE} WHERE tag = ?", (tag,))
        return rows[0]["n"]

    def delete_older_than(self, cutoff: float) -> int:
        """Delete samples with ``timestamp < cutoff``; returns the row count"""
        try:
            with self.db_manager.transaction() as conn:
                cursor = conn.execute(f"DELETE FROM {TABLE} WHERE timestamp < ?", (cutoff,))
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(
                f"Retention cleanup failed: {e}",
                details={'cutoff': cutoff}
            ) from e
        logger.info(f"Deleted {deleted} historian samples older than {cutoff:.0f}")
        return deleted

    def compact(self) -> None:
        """Reclaim the space freed by retention cleanup"""
        try:
            self.db_manager.vacuum()
        except sqlite3.Error as e:
            raise StorageError(
                f"Sample store compaction failed: {e}",
                details={'db_path': self.db_manager.db_path}
            ) from e
