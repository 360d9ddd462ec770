"""
Database management and connection handling.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

try:
    import psycopg2
    from psycopg2.extras import RealDictCursor
    PSYCOPG2_AVAILABLE = True
except ImportError:
    PSYCOPG2_AVAILABLE = False

from ..core.exceptions import StorageError, ConfigurationError

logger = logging.getLogger(__name__)


class DatabaseManager(ABC):
    """Abstract base class for database management.

    Statements are written with ``?`` placeholders; backends with another
    paramstyle translate them in ``_prepare``.
    """

    @abstractmethod
    def connect(self) -> Any:
        """Create a database connection."""
        pass

    @abstractmethod
    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        pass

    @abstractmethod
    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        pass

    @abstractmethod
    def transaction(self) -> Iterator[Any]:
        """Context manager running every statement of the block in one transaction.

        Nested calls join the outer transaction.
        """
        pass

    @abstractmethod
    def advisory_lock(self, key: str) -> None:
        """Hold a lock on ``key`` until the current transaction ends."""
        pass

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        pass

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "connection", None) is not None

    def _prepare(self, query: str) -> str:
        return query


class SQLiteDatabase(DatabaseManager):
    """SQLite database implementation.

    Transactions start with ``BEGIN IMMEDIATE`` so the write lock is taken
    before the first read; concurrent writers queue on the busy timeout.
    """

    def __init__(self, database_path: str = "siakad.db", timeout: float = 30.0):
        self._database_path = database_path
        self._timeout = timeout
        self._local = threading.local()

    def connect(self) -> sqlite3.Connection:
        """Create a database connection."""
        try:
            conn = sqlite3.connect(
                self._database_path,
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            return conn
        except sqlite3.Error as e:
            raise StorageError(f"Database connection error: {str(e)}")

    @contextmanager
    def _get_connection(self):
        """Get the transaction's connection, or a fresh one closed on exit."""
        active = getattr(self._local, "connection", None)
        if active is not None:
            yield active
            return

        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query, params or ())
                return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {str(e)}")

    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query, params or ())
                return cursor.rowcount
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Constraint violation: {str(e)}", error_code="constraint_violation")
        except sqlite3.Error as e:
            raise StorageError(f"Update failed: {str(e)}")

    @contextmanager
    def transaction(self):
        """Run the block in a single ``BEGIN IMMEDIATE`` transaction."""
        if self.in_transaction:
            yield self._local.connection
            return

        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            conn.close()
            raise StorageError(f"Could not start transaction: {str(e)}")

        self._local.connection = conn
        try:
            yield conn
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Transaction failed: {str(e)}")
        finally:
            self._local.connection = None
            conn.close()

    def advisory_lock(self, key: str) -> None:
        # BEGIN IMMEDIATE already serializes writers on the whole database file.
        if not self.in_transaction:
            raise StorageError("advisory_lock requires an open transaction")

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        query = "SELECT name FROM sqlite_master WHERE type='table' AND name=?"
        results = self.execute_query(query, (table_name,))
        return len(results) > 0


class PostgreSQLDatabase(DatabaseManager):
    """PostgreSQL database implementation."""

    def __init__(self, host: str = "localhost", port: int = 5432,
                 database: str = "siakad", user: str = "siakad", password: str = ""):
        if not PSYCOPG2_AVAILABLE:
            raise ConfigurationError("psycopg2 is required for PostgreSQL support")

        self._host = host
        self._port = port
        self._database = database
        self._user = user
        self._password = password
        self._local = threading.local()

    def _get_connection_string(self) -> str:
        """Get PostgreSQL connection string."""
        return f"host={self._host} port={self._port} dbname={self._database} user={self._user} password={self._password}"

    def _prepare(self, query: str) -> str:
        return query.replace("?", "%s")

    def connect(self):
        """Create a database connection."""
        try:
            return psycopg2.connect(self._get_connection_string())
        except psycopg2.Error as e:
            raise StorageError(f"Database connection error: {str(e)}")

    @contextmanager
    def _get_connection(self):
        """Get the transaction's connection, or a fresh autocommitting one."""
        active = getattr(self._local, "connection", None)
        if active is not None:
            yield active
            return

        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor(cursor_factory=RealDictCursor)
                cursor.execute(self._prepare(query), params or ())
                return [dict(row) for row in cursor.fetchall()]
        except psycopg2.Error as e:
            raise StorageError(f"Query failed: {str(e)}")

    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(self._prepare(query), params or ())
                return cursor.rowcount
        except psycopg2.IntegrityError as e:
            raise StorageError(f"Constraint violation: {str(e)}", error_code="constraint_violation")
        except psycopg2.Error as e:
            raise StorageError(f"Update failed: {str(e)}")

    @contextmanager
    def transaction(self):
        """Run the block in a single transaction."""
        if self.in_transaction:
            yield self._local.connection
            return

        conn = self.connect()
        self._local.connection = conn
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        else:
            try:
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise StorageError(f"Transaction failed: {str(e)}")
        finally:
            self._local.connection = None
            conn.close()

    def advisory_lock(self, key: str) -> None:
        if not self.in_transaction:
            raise StorageError("advisory_lock requires an open transaction")
        self.execute_query("SELECT pg_advisory_xact_lock(hashtext(?))", (key,))

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        query = "SELECT table_name FROM information_schema.tables WHERE table_name = ?"
        results = self.execute_query(query, (table_name,))
        return len(results) > 0


class DatabaseFactory:
    """Factory for creating database instances."""

    @staticmethod
    def create_database(database_type: str, **kwargs) -> DatabaseManager:
        """Create a database instance based on type."""
        logger.info("Using %s database backend", database_type)
        if database_type.lower() == "sqlite":
            return SQLiteDatabase(**kwargs)
        elif database_type.lower() == "postgresql":
            return PostgreSQLDatabase(**kwargs)
        else:
            raise ConfigurationError(f"Unsupported database type: {database_type}")
