"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (persistence) and PostgreSQL. Records are JSON documents keyed by id;
all monetary values are stored as Decimal strings.

Every backend supports ``atomic()``: a unit of work that either commits all of
its writes or none of them. How concurrent units are isolated depends on the
backend:

- SQLite has a single writer per database file, so a unit holds the storage
  lock from start to finish and units never interleave.
- PostgreSQL and the in-memory store give each thread its own unit. Uncommitted
  writes are visible only to the thread making them, and ``lock_record`` /
  ``lock_name`` serialize units that touch the same record. Units on unrelated
  records run in parallel.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, date, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from contextlib import contextmanager, nullcontext


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, (datetime, date)):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        # Unit-of-work state is per thread
        self._local = threading.local()

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a database transaction"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit current transaction"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Rollback current transaction"""
        pass

    def lock_record(self, table: str, record_id: str) -> None:
        """Lock a row until the current unit of work ends (default no-op)"""
        pass

    def lock_name(self, name: str) -> None:
        """Lock an arbitrary name, e.g. a username, until the unit ends (default no-op)"""
        pass

    def _unit_guard(self):
        """Held for the whole outermost unit of work"""
        return self._lock

    @property
    def _depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @_depth.setter
    def _depth(self, value: int) -> None:
        self._local.depth = value

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Nested calls join the outermost unit; only the outermost one commits
        or rolls back. Any exception, including cancellation, rolls back.
        """
        if self.in_transaction:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        with self._unit_guard():
            self.begin_transaction()
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._depth = 0
                self.rollback()
                raise
            self._depth = 0
            try:
                self.commit()
            except BaseException:
                self.rollback()
                raise


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    A unit of work buffers its writes per thread and applies them on commit,
    so other threads only ever see committed data. Named locks taken inside a
    unit are held until it commits or rolls back.
    """

    _DELETED = None

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._named_locks: Dict[str, threading.Lock] = {}

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _unit_guard(self):
        return nullcontext()

    def _pending(self, table: str) -> Dict[str, Optional[Dict[str, Any]]]:
        """This thread's uncommitted writes to a table"""
        if not self.in_transaction:
            return {}
        return self._local.writes.get(table, {})

    def _visible(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        pending = self._pending(table)
        if record_id in pending:
            return pending[record_id]
        with self._lock:
            self._ensure_table(table)
            return self._data[table].get(record_id)

    def _rows(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed rows overlaid with this thread's uncommitted writes"""
        with self._lock:
            self._ensure_table(table)
            rows = dict(self._data[table])
        for record_id, record in self._pending(table).items():
            if record is self._DELETED:
                rows.pop(record_id, None)
            else:
                rows[record_id] = record
        return rows

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        # Deep copy to prevent external mutation
        record = json.loads(json.dumps(data, default=str))
        if self.in_transaction:
            self._local.writes.setdefault(table, {})[record_id] = record
            return
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = record

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        record = self._visible(table, record_id)
        if record:
            return json.loads(json.dumps(record))
        return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return [json.loads(json.dumps(record)) for record in self._rows(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        if self.in_transaction:
            existed = self._visible(table, record_id) is not None
            self._local.writes.setdefault(table, {})[record_id] = self._DELETED
            return existed
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self._visible(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        return [json.loads(json.dumps(record))
                for record in self._rows(table).values()
                if _matches(record, filters)]

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self._rows(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}
        if self.in_transaction:
            self._local.writes.pop(table, None)

    def lock_record(self, table: str, record_id: str) -> None:
        """Hold the record's lock until the current unit ends"""
        self.lock_name(f"{table}:{record_id}")

    def lock_name(self, name: str) -> None:
        """Hold a named lock until the current unit ends (no-op outside a unit)"""
        if not self.in_transaction:
            return
        with self._lock:
            lock = self._named_locks.setdefault(name, threading.Lock())
        if lock in self._local.held:
            return
        lock.acquire()
        self._local.held.append(lock)

    def begin_transaction(self) -> None:
        """Start buffering this thread's writes"""
        self._local.writes = {}
        self._local.held = []

    def commit(self) -> None:
        """Apply the buffered writes, then release the unit's locks"""
        writes = getattr(self._local, "writes", None) or {}
        with self._lock:
            for table, records in writes.items():
                self._ensure_table(table)
                for record_id, record in records.items():
                    if record is self._DELETED:
                        self._data[table].pop(record_id, None)
                    else:
                        self._data[table][record_id] = record
        self._end_unit()

    def rollback(self) -> None:
        """Discard the buffered writes"""
        self._end_unit()

    def _end_unit(self) -> None:
        self._local.writes = None
        held = getattr(self._local, "held", None) or []
        self._local.held = []
        for lock in reversed(held):
            lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout_ms: int = 5000):
        super().__init__()
        self.db_path = str(db_path)
        # Autocommit mode: statements outside a unit of work commit on their own,
        # units of work are opened explicitly with BEGIN IMMEDIATE.
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._tables = set()

        with self._lock:
            self._connection.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
            if self.db_path != ":memory:":
                # WAL mode for better concurrent access
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters, evaluated in SQL with json_extract"""
        with self._lock:
            self._ensure_table(table)

            conditions = []
            params = []
            for key, value in filters.items():
                if value is None:
                    # A missing key and an explicit null both match None
                    conditions.append("json_extract(data, ?) IS NULL")
                    params.append(f"$.{key}")
                else:
                    conditions.append("json_extract(data, ?) = ?")
                    params.extend([f"$.{key}", _sqlite_json_value(value)])

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(f"""
                SELECT data FROM {table}
                {where_clause}
                ORDER BY created_at
            """, params)

            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Start a database transaction holding the write lock"""
        with self._lock:
            self._connection.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._connection.in_transaction:
                self._connection.execute("COMMIT")

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")
            # Tables created inside the unit are gone again
            self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """
    PostgreSQL storage backend with ACID transaction support and row locks.

    Connections come from a thread-safe pool. A unit of work pins one
    connection to its thread until it commits or rolls back; statements
    outside a unit borrow a connection and commit straight away.
    """

    def __init__(self, connection_string: str, min_connections: int = 1, max_connections: int = 20):
        super().__init__()
        try:
            import psycopg2
            import psycopg2.extras
            import psycopg2.pool
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install 'loan-ledger[postgres]'")

        self.connection_string = connection_string
        self._tables = set()
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            min_connections, max_connections, connection_string,
            cursor_factory=self.extras.RealDictCursor
        )

    def _unit_guard(self):
        # Row locks serialize conflicting units; unrelated units run in parallel
        return nullcontext()

    @contextmanager
    def _cursor(self):
        """Cursor on this thread's unit connection, or on a borrowed autocommitting one"""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            cursor = connection.cursor()
            try:
                yield cursor
            finally:
                cursor.close()
            return

        connection = self._pool.getconn()
        try:
            cursor = connection.cursor()
            try:
                yield cursor
                connection.commit()
            except BaseException:
                connection.rollback()
                raise
            finally:
                cursor.close()
        finally:
            self._pool.putconn(connection)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        # DDL runs on its own connection so that it commits even when the
        # first touch of a table happens inside a unit that later rolls back
        connection = self._pool.getconn()
        try:
            cursor = connection.cursor()
            try:
                cursor.execute("SELECT to_regclass(%s) AS name", (table,))
                if cursor.fetchone()['name'] is None:
                    cursor.execute(f"""
                        CREATE TABLE IF NOT EXISTS {table} (
                            id TEXT PRIMARY KEY,
                            data JSONB NOT NULL,
                            created_at TIMESTAMP DEFAULT NOW(),
                            updated_at TIMESTAMP DEFAULT NOW()
                        )
                    """)
                    cursor.execute(f"""
                        CREATE INDEX IF NOT EXISTS idx_{table}_data
                        ON {table} USING gin(data)
                    """)
                    cursor.execute(f"""
                        CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                        ON {table}(created_at)
                    """)
                connection.commit()
                self._tables.add(table)
            except BaseException:
                connection.rollback()
                raise
            finally:
                cursor.close()
        finally:
            self._pool.putconn(connection)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        self._ensure_table(table)

        now = datetime.now(timezone.utc)
        data_json = json.dumps(data, default=str)

        with self._cursor() as cursor:
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        self._ensure_table(table)

        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} WHERE id = %s
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        self._ensure_table(table)

        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [dict(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        self._ensure_table(table)

        with self._cursor() as cursor:
            cursor.execute(f"""
                DELETE FROM {table} WHERE id = %s
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        self._ensure_table(table)

        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT 1 FROM {table} WHERE id = %s LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        self._ensure_table(table)

        conditions = []
        params = []
        for key, value in filters.items():
            if value is None:
                conditions.append("data ->> %s IS NULL")
                params.append(key)
            else:
                conditions.append("data ->> %s = %s")
                if isinstance(value, bool):
                    params.extend([key, "true" if value else "false"])
                else:
                    params.extend([key, str(value)])

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table}
                {where_clause}
                ORDER BY created_at
            """, params)
            return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        self._ensure_table(table)

        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        self._ensure_table(table)

        with self._cursor() as cursor:
            cursor.execute(f"DELETE FROM {table}")

    def lock_record(self, table: str, record_id: str) -> None:
        """Take a row lock held until the unit of work commits or rolls back"""
        self._ensure_table(table)

        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT 1 FROM {table} WHERE id = %s FOR UPDATE
            """, (record_id,))

    def lock_name(self, name: str) -> None:
        """Transaction-scoped advisory lock; works for rows that do not exist yet"""
        with self._cursor() as cursor:
            cursor.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (name,))

    def begin_transaction(self) -> None:
        """Pin a pooled connection to this thread for the unit of work"""
        # psycopg2 opens the transaction implicitly on the first statement
        self._local.connection = self._pool.getconn()

    def commit(self) -> None:
        """Commit current transaction"""
        # On failure atomic() follows up with rollback(), which releases the connection
        self._local.connection.commit()
        self._release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        connection = getattr(self._local, "connection", None)
        if connection is None:
            return
        try:
            connection.rollback()
        finally:
            self._release()

    def _release(self) -> None:
        connection = self._local.connection
        self._local.connection = None
        self._pool.putconn(connection)

    def close(self) -> None:
        """Close every pooled connection"""
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if record.get(key) != value:
            return False
    return True


def _sqlite_json_value(value: Any) -> Any:
    """The value json_extract returns for a stored JSON scalar"""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, str)):
        return value
    return str(value)


def create_storage(database_url: str, pool_size: int = 20) -> StorageInterface:
    """
    Build a storage backend from a URL.

    memory://                 -> InMemoryStorage
    sqlite:///path/to/file.db -> SQLiteStorage (sqlite:///:memory: works too)
    postgresql://...          -> PostgreSQLStorage with up to ``pool_size`` connections
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):])
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, max_connections=pool_size)
    raise ValueError(f"Unsupported database URL: {database_url}")
