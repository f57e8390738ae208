"""
Database Manager Utility
Manages the SQLite connection, transaction handling and WAL mode enforcement
"""
import sqlite3
import logging
import threading
from typing import List, Optional, Tuple
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import MetaData
from sqlalchemy.dialects import sqlite as sqlite_dialect
from sqlalchemy.schema import CreateIndex, CreateTable

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"


class DatabaseManager:
    """
    SQLite database manager with a shared connection and WAL mode enforcement.

    Ensures:
    - Write-Ahead Logging (WAL) mode for concurrent readers/writers
    - One statement or transaction at a time across threads
    - Schema created from SQLAlchemy model metadata
    - Query result handling with row_factory
    """

    def __init__(self, db_path: str = "data/historian.db"):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file (``:memory:`` for tests)
        """
        self.db_path = str(db_path)
        self._ensure_database_exists()
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _ensure_database_exists(self) -> None:
        """Create database directory if it doesn't exist"""
        if self.db_path == MEMORY_DATABASE:
            return
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """
        Establish database connection with proper configuration.

        Returns:
            SQLite connection with WAL mode and row_factory
        """
        with self._lock:
            if self._connection is None:
                self._connection = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,  # shared by scan, flush and query threads
                    timeout=30.0
                )
                self._connection.row_factory = sqlite3.Row
                self._connection.execute("PRAGMA journal_mode=WAL")
                self._connection.execute("PRAGMA synchronous=NORMAL")
                self._connection.execute("PRAGMA cache_size=-10000")

                logger.info(f"Database connected: {self.db_path} (WAL mode enabled)")

            return self._connection

    def close(self) -> None:
        """Close database connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("Database connection closed")

    def create_tables(self, metadata: MetaData) -> None:
        """
        Create the tables and indexes of SQLAlchemy metadata if missing.

        Args:
            metadata: ``Base.metadata`` of the declarative models
        """
        dialect = sqlite_dialect.dialect()
        with self.transaction() as conn:
            for table in metadata.sorted_tables:
                conn.execute(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)))
                for index in table.indexes:
                    conn.execute(str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)))
        logger.info(f"Schema ensured: {', '.join(metadata.tables)}")

    @contextmanager
    def transaction(self):
        """
        Context manager for transaction handling.

        Usage:
            with db.transaction():
                db.execute("INSERT ...")
                db.execute("UPDATE ...")
            # Automatically commits on success, rolls back on exception
        """
        with self._lock:
            conn = self.connect()
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                logger.error(f"Transaction rolled back: {e}")
                raise

    def execute(
        self,
        query: str,
        params: Optional[Tuple] = None
    ) -> sqlite3.Cursor:
        """
        Execute a SQL statement (INSERT, UPDATE, DELETE).

        Args:
            query: SQL query string
            params: Query parameters (optional)

        Returns:
            SQLite cursor
        """
        with self._lock:
            cursor = self.connect().cursor()
            try:
                cursor.execute(query, params or ())
                return cursor
            except sqlite3.Error as e:
                logger.error(f"Query execution failed: {e}\nQuery: {query}\nParams: {params}")
                raise

    def fetchall(self, query: str, params: Optional[Tuple] = None) -> List[sqlite3.Row]:
        """
        Execute query and fetch all results.

        Returns:
            List of rows as dict-like Row objects
        """
        with self._lock:
            return self.execute(query, params).fetchall()

    def get_table_names(self) -> List[str]:
        """All table names in the database"""
        rows = self.fetchall("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        return [row['name'] for row in rows]

    def vacuum(self) -> None:
        """Run VACUUM to reclaim space after retention cleanup"""
        with self._lock:
            self.connect().execute("VACUUM")
        logger.info("Database vacuumed")
