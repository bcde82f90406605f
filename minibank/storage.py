"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite and PostgreSQL (persistence). Records are JSON documents keyed by a
string id; all monetary values are stored as Decimal strings.

Every component receives a storage handle explicitly; there is no module-level
connection pool.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager
import copy
import json
import logging
import sqlite3
import threading
import time

from .errors import StorageUnavailable


logger = logging.getLogger(__name__)


class DuplicateRecord(Exception):
    """Raised when a save would violate a unique index"""

    def __init__(self, table: str, field: str):
        self.table = table
        self.field = field
        super().__init__(f"Duplicate value for {table}.{field}")


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
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        for key in ('created_at', 'updated_at'):
            if key in data and isinstance(data[key], str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    _lock: threading.RLock

    @abstractmethod
    def initialize(self, tables: Iterable[str],
                   unique: Optional[Dict[str, List[str]]] = None) -> None:
        """Create tables (and unique indexes on document fields) if absent"""
        pass

    @abstractmethod
    def ping(self) -> None:
        """Raise if the backend cannot serve queries"""
        pass

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or update a record; raises DuplicateRecord on a unique index clash"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal all filter values"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def increment(self, table: str, record_id: str, field: str,
                  amount: Decimal) -> Optional[Decimal]:
        """
        Atomically apply field = field + amount and return the new value.

        Returns None when the record does not exist. Concurrent increments
        on the same record never lose an update.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Holds the storage lock for the whole block, so check-then-write
        sequences inside it are serialized. Nested blocks join the outer one.
        """
        with self._lock:
            self.begin_transaction()
            try:
                yield
            except BaseException:
                self.rollback()
                raise
            else:
                self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._unique: Dict[str, List[str]] = {}
        self._lock = threading.RLock()
        self._txn_depth = 0
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def initialize(self, tables: Iterable[str],
                   unique: Optional[Dict[str, List[str]]] = None) -> None:
        with self._lock:
            for table in tables:
                self._ensure_table(table)
            for table, fields in (unique or {}).items():
                self._unique.setdefault(table, [])
                for field in fields:
                    if field not in self._unique[table]:
                        self._unique[table].append(field)

    def ping(self) -> None:
        pass

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            for field in self._unique.get(table, []):
                value = data.get(field)
                if value is None:
                    continue
                for other_id, other in self._data[table].items():
                    if other_id != record_id and other.get(field) == value:
                        raise DuplicateRecord(table, field)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is not None:
                return json.loads(json.dumps(record))
            return None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(json.loads(json.dumps(record)))
            return results

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def increment(self, table: str, record_id: str, field: str,
                  amount: Decimal) -> Optional[Decimal]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is None:
                return None
            new_value = Decimal(str(record[field])) + amount
            record[field] = str(new_value)
            record['updated_at'] = datetime.now(timezone.utc).isoformat()
            return new_value

    def begin_transaction(self) -> None:
        with self._lock:
            if self._txn_depth == 0:
                self._snapshot = copy.deepcopy(self._data)
            self._txn_depth += 1

    def commit(self) -> None:
        with self._lock:
            if self._txn_depth == 0:
                return
            self._txn_depth -= 1
            if self._txn_depth == 0:
                self._snapshot = None

    def rollback(self) -> None:
        with self._lock:
            if self._txn_depth == 0:
                return
            self._txn_depth -= 1
            if self._txn_depth == 0:
                self._data = self._snapshot
                self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        self.db_path = str(db_path)
        # isolation_level='DEFERRED' leaves transaction control to us
        self._connection = sqlite3.connect(
            self.db_path,
            timeout=timeout,
            check_same_thread=False,
            isolation_level='DEFERRED',
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._txn_depth = 0
        self._tables = set()
        self._unique: Dict[str, List[str]] = {}

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @property
    def _in_transaction(self) -> bool:
        return self._txn_depth > 0

    def _maybe_commit(self) -> None:
        # Only commit if not in transaction
        if not self._in_transaction:
            self._connection.commit()

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
            self._maybe_commit()
            # DDL inside an open transaction is undone by a rollback
            if not self._in_transaction:
                self._tables.add(table)

    def initialize(self, tables: Iterable[str],
                   unique: Optional[Dict[str, List[str]]] = None) -> None:
        with self._lock:
            for table in tables:
                self._ensure_table(table)
            for table, fields in (unique or {}).items():
                self._ensure_table(table)
                for field in fields:
                    self._connection.execute(f"""
                        CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field}
                        ON {table}(json_extract(data, '$.{field}'))
                    """)
                    self._unique.setdefault(table, []).append(field)
            self._maybe_commit()

    def ping(self) -> None:
        with self._lock:
            self._connection.execute("SELECT 1").fetchone()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            try:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                """, (record_id, data_json, now, now))
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e):
                    raise
                field = next(iter(self._unique.get(table, [])), "id")
                raise DuplicateRecord(table, field)

            self._maybe_commit()

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

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        with self._lock:
            self._ensure_table(table)
            conditions = []
            params = []
            for key, value in filters.items():
                conditions.append("json_extract(data, ?) = ?")
                params.extend([f"$.{key}", value])
            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} {where_clause} ORDER BY created_at
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def increment(self, table: str, record_id: str, field: str,
                  amount: Decimal) -> Optional[Decimal]:
        with self._lock:
            self._ensure_table(table)
            own_transaction = not self._in_transaction
            if own_transaction:
                if self._connection.in_transaction:
                    self._connection.commit()
                # Take the write lock before reading so other processes
                # cannot interleave between the read and the write.
                self._connection.execute("BEGIN IMMEDIATE")
            try:
                row = self._connection.execute(f"""
                    SELECT data FROM {table} WHERE id = ?
                """, (record_id,)).fetchone()
                if row is None:
                    new_value = None
                else:
                    record = json.loads(row['data'])
                    new_value = Decimal(str(record[field])) + amount
                    record[field] = str(new_value)
                    now = datetime.now(timezone.utc).isoformat()
                    record['updated_at'] = now
                    self._connection.execute(f"""
                        UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?
                    """, (json.dumps(record, default=str), now, record_id))
                if own_transaction:
                    self._connection.commit()
                return new_value
            except Exception:
                if own_transaction:
                    self._connection.rollback()
                raise

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if self._txn_depth == 0:
                if self._connection.in_transaction:
                    self._connection.commit()
                self._connection.execute("BEGIN IMMEDIATE")
            self._txn_depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._txn_depth == 0:
                return
            self._txn_depth -= 1
            if self._txn_depth == 0:
                self._connection.commit()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._txn_depth == 0:
                return
            self._txn_depth -= 1
            if self._txn_depth == 0:
                self._connection.rollback()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    def __init__(self, connection_string: str, timeout: float = 5.0):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install minibank[postgres]")

        self.connection_string = connection_string
        self.timeout = timeout
        self._connection = None
        self._lock = threading.RLock()
        self._txn_depth = 0
        self._unique: Dict[str, List[str]] = {}
        self._connect()

    @property
    def _in_transaction(self) -> bool:
        return self._txn_depth > 0

    def _connect(self) -> None:
        """Establish database connection with bounded connect and statement time"""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except self.psycopg2.Error:
                    logger.warning("Error closing stale PostgreSQL connection", exc_info=True)

            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor,
                connect_timeout=max(1, int(self.timeout)),
                options=f"-c statement_timeout={int(self.timeout * 1000)}",
            )
            self._connection.autocommit = False  # We handle transactions manually

    @contextmanager
    def _cursor(self):
        cursor = self._connection.cursor()
        try:
            yield cursor
            if not self._in_transaction:
                self._connection.commit()
        except Exception:
            # A failed statement aborts the whole PostgreSQL transaction
            if not self._in_transaction:
                self._connection.rollback()
            raise
        finally:
            cursor.close()

    def initialize(self, tables: Iterable[str],
                   unique: Optional[Dict[str, List[str]]] = None) -> None:
        with self._lock, self._cursor() as cursor:
            for table in set(tables) | set((unique or {}).keys()):
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        data JSONB NOT NULL,
                        created_at TIMESTAMP DEFAULT NOW(),
                        updated_at TIMESTAMP DEFAULT NOW()
                    )
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                    ON {table}(created_at)
                """)
            for table, fields in (unique or {}).items():
                for field in fields:
                    cursor.execute(f"""
                        CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field}
                        ON {table} ((data ->> '{field}'))
                    """)
                    self._unique.setdefault(table, []).append(field)

    def ping(self) -> None:
        with self._lock, self._cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        with self._lock:
            now = datetime.now(timezone.utc)
            data_json = json.dumps(data, default=str)
            try:
                with self._cursor() as cursor:
                    cursor.execute(f"""
                        INSERT INTO {table} (id, data, created_at, updated_at)
                        VALUES (%s, %s, %s, %s)
                        ON CONFLICT (id) DO UPDATE SET
                            data = EXCLUDED.data,
                            updated_at = EXCLUDED.updated_at
                    """, (record_id, data_json, now, now))
            except self.psycopg2.IntegrityError:
                field = next(iter(self._unique.get(table, [])), "id")
                raise DuplicateRecord(table, field)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock, self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} WHERE id = %s
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock, self._cursor() as cursor:
            cursor.execute(f"""
                SELECT 1 FROM {table} WHERE id = %s LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        with self._lock, self._cursor() as cursor:
            conditions = []
            params = []
            for key, value in filters.items():
                conditions.append("data ->> %s = %s")
                params.extend([key, str(value)])
            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor.execute(f"""
                SELECT data FROM {table} {where_clause} ORDER BY created_at
            """, params)
            return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        with self._lock, self._cursor() as cursor:
            cursor.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def increment(self, table: str, record_id: str, field: str,
                  amount: Decimal) -> Optional[Decimal]:
        # Single statement: the row lock taken by UPDATE serializes writers.
        with self._lock, self._cursor() as cursor:
            cursor.execute(f"""
                UPDATE {table}
                SET data = jsonb_set(
                        data,
                        ARRAY[%s],
                        to_jsonb(((data ->> %s)::numeric + %s::numeric)::text)
                    ),
                    updated_at = NOW()
                WHERE id = %s
                RETURNING data ->> %s AS value
            """, (field, field, str(amount), record_id, field))
            row = cursor.fetchone()
            if row is None:
                return None
            return Decimal(row['value'])

    def begin_transaction(self) -> None:
        # PostgreSQL transactions start automatically
        with self._lock:
            self._txn_depth += 1

    def commit(self) -> None:
        with self._lock:
            if self._txn_depth == 0:
                return
            self._txn_depth -= 1
            if self._txn_depth == 0:
                self._connection.commit()

    def rollback(self) -> None:
        with self._lock:
            if self._txn_depth == 0:
                return
            self._txn_depth -= 1
            if self._txn_depth == 0:
                self._connection.rollback()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str, timeout: float = 5.0) -> StorageInterface:
    """
    Build a storage backend from a URL.

    memory://               -> InMemoryStorage
    sqlite:///path/to.db    -> SQLiteStorage (sqlite:///:memory: also works)
    postgresql://...        -> PostgreSQLStorage
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:", timeout=timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, timeout=timeout)
    raise ValueError(f"Unsupported database URL: {database_url}")


def wait_for_storage(connect: Callable[[], StorageInterface], attempts: int = 10,
                     interval: float = 3.0, sleep=time.sleep) -> StorageInterface:
    """
    Open storage and ping it until it answers, sleeping a fixed interval
    between tries.

    Args:
        connect: Factory building the backend; retried while it raises
        attempts: Maximum number of tries
        interval: Seconds to sleep between tries

    Returns:
        The connected storage

    Raises:
        StorageUnavailable: after `attempts` failed tries
    """
    storage = None
    for attempt in range(1, attempts + 1):
        try:
            if storage is None:
                storage = connect()
            storage.ping()
            logger.info("Connected to database")
            return storage
        except Exception as e:
            logger.warning(
                "Waiting for database to be ready (attempt %d/%d): %s",
                attempt, attempts, e,
            )
            if attempt < attempts:
                sleep(interval)

    if storage is not None:
        storage.close()
    raise StorageUnavailable(
        f"Could not connect to database after {attempts} attempts"
    )
