"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Both backends support a transaction boundary: writes made between
begin_transaction() and commit() become visible together or not at all.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Tuple
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import ConflictError, ContentionError


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy through JSON to prevent external mutation"""
    return json.loads(json.dumps(data, default=str))


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    version_field = "version"

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
    def compare_and_save(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: int
    ) -> None:
        """
        Save a record only if its stored version equals expected_version

        Raises:
            ConflictError: If the record is missing or was modified concurrently
        """
        pass

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Return the next value of a monotonically increasing named sequence"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a new record, refusing to overwrite an existing one"""
        if self.exists(table, record_id):
            raise ConflictError(f"Record {record_id} already exists in {table}",
                                table=table, record_id=record_id)
        self.save(table, record_id, data)

    def query(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Find records matching filters, sorted and sliced"""
        records = self.find(table, filters)
        if order_by:
            records.sort(key=lambda r: r.get(order_by), reverse=descending)
        end = offset + limit if limit is not None else None
        return records[offset:end]

    def count_where(self, table: str, filters: Dict[str, Any]) -> int:
        """Count records matching filters"""
        return len(self.find(table, filters))

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
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()


class _PendingTransaction:
    """Per-thread write buffer for InMemoryStorage"""

    _DELETED = object()

    def __init__(self):
        self.depth = 0
        self.writes: Dict[Tuple[str, str], Any] = {}
        self.version_checks: List[Tuple[str, str, int]] = []
        self.insert_checks: List[Tuple[str, str]] = []
        self.rollback_only = False

    def reset(self) -> None:
        self.depth = 0
        self.writes.clear()
        self.version_checks.clear()
        self.insert_checks.clear()
        self.rollback_only = False


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing

    Transactions buffer writes per thread and apply them at commit under the
    storage lock; version checks registered by compare_and_save are verified
    again at commit so a concurrent writer cannot be silently overwritten.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _tx(self) -> Optional[_PendingTransaction]:
        tx = getattr(self._local, 'tx', None)
        if tx is not None and tx.depth > 0:
            return tx
        return None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _table_view(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed table contents overlaid with this thread's pending writes"""
        self._ensure_table(table)
        view = dict(self._data[table])
        tx = self._tx()
        if tx:
            for (pending_table, record_id), data in tx.writes.items():
                if pending_table != table:
                    continue
                if data is _PendingTransaction._DELETED:
                    view.pop(record_id, None)
                else:
                    view[record_id] = data
        return view

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        tx = self._tx()
        if tx:
            tx.writes[(table, record_id)] = _copy(data)
            return
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = _copy(data)

    def _visible(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Single-record lookup honouring this thread's pending writes"""
        tx = self._tx()
        if tx and (table, record_id) in tx.writes:
            data = tx.writes[(table, record_id)]
            return None if data is _PendingTransaction._DELETED else data
        self._ensure_table(table)
        return self._data[table].get(record_id)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            record = self._visible(table, record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            return [_copy(record) for record in self._table_view(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            present = self._visible(table, record_id) is not None
            tx = self._tx()
            if tx:
                if present:
                    tx.writes[(table, record_id)] = _PendingTransaction._DELETED
                return present
            if present:
                del self._data[table][record_id]
            return present

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            return self._visible(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            return [
                _copy(record) for record in self._table_view(table).values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            return len(self._table_view(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def compare_and_save(self, table, record_id, data, expected_version) -> None:
        """Save if the visible version matches, re-checked at commit"""
        with self._lock:
            current = self._visible(table, record_id)
            if current is None or current.get(self.version_field) != expected_version:
                raise ConflictError(
                    f"Record {record_id} in {table} was modified concurrently",
                    table=table, record_id=record_id, expected_version=expected_version
                )
            tx = self._tx()
            if tx:
                # The first check of a record inside a transaction covers later ones
                if (table, record_id) not in tx.writes:
                    tx.version_checks.append((table, record_id, expected_version))
                tx.writes[(table, record_id)] = _copy(data)
                return
            self._data[table][record_id] = _copy(data)

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Check and write under the lock; inside a transaction, check again at commit"""
        with self._lock:
            if self._visible(table, record_id) is not None:
                raise ConflictError(f"Record {record_id} already exists in {table}",
                                    table=table, record_id=record_id)
            tx = self._tx()
            if tx:
                if (table, record_id) not in tx.writes:
                    tx.insert_checks.append((table, record_id))
                tx.writes[(table, record_id)] = _copy(data)
                return
            self._data[table][record_id] = _copy(data)

    def next_sequence(self, name: str) -> int:
        """Sequences are not transactional; rolled back values leave gaps"""
        with self._lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
            return value

    def begin_transaction(self) -> None:
        """Start buffering writes for the calling thread"""
        tx = getattr(self._local, 'tx', None)
        if tx is None:
            tx = _PendingTransaction()
            self._local.tx = tx
        tx.depth += 1

    def commit(self) -> None:
        """Apply buffered writes atomically once the outermost transaction ends"""
        tx = self._tx()
        if not tx:
            return
        tx.depth -= 1
        if tx.depth > 0:
            return
        try:
            if tx.rollback_only:
                raise ConflictError("Transaction was rolled back by a nested scope")
            with self._lock:
                for table, record_id in tx.insert_checks:
                    self._ensure_table(table)
                    if record_id in self._data[table]:
                        raise ConflictError(
                            f"Record {record_id} already exists in {table}",
                            table=table, record_id=record_id
                        )
                for table, record_id, expected_version in tx.version_checks:
                    self._ensure_table(table)
                    committed = self._data[table].get(record_id)
                    if committed is None or committed.get(self.version_field) != expected_version:
                        raise ConflictError(
                            f"Record {record_id} in {table} was modified concurrently",
                            table=table, record_id=record_id,
                            expected_version=expected_version
                        )
                for (table, record_id), data in tx.writes.items():
                    self._ensure_table(table)
                    if data is _PendingTransaction._DELETED:
                        self._data[table].pop(record_id, None)
                    else:
                        self._data[table][record_id] = data
        finally:
            tx.reset()

    def rollback(self) -> None:
        """
        Discard buffered writes when the outermost transaction ends

        A nested rollback marks the whole transaction rollback-only, so the
        outermost commit fails instead of applying a partial write set.
        """
        tx = self._tx()
        if not tx:
            return
        tx.depth -= 1
        if tx.depth > 0:
            tx.rollback_only = True
            return
        tx.reset()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    A transaction holds the connection lock from begin to commit/rollback and
    opens the database with BEGIN IMMEDIATE, so writers in other threads and
    other processes are serialized. Every wait is bounded by lock_timeout.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.lock_timeout = lock_timeout
        # isolation_level='DEFERRED' keeps manual transaction control
        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level='DEFERRED',
            timeout=lock_timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._rollback_only = False
        self._tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

        self._execute("""
            CREATE TABLE IF NOT EXISTS _sequences (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        self._connection.commit()

    @property
    def _in_transaction(self) -> bool:
        return self._tx_depth > 0

    @contextmanager
    def _locked(self):
        """Acquire the connection lock or fail with ContentionError"""
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise ContentionError(
                f"Timed out after {self.lock_timeout}s waiting for storage lock",
                db_path=self.db_path
            )
        try:
            yield
        finally:
            self._lock.release()

    @contextmanager
    def _translated(self):
        """Translate lock errors into ContentionError"""
        try:
            yield
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise ContentionError(f"Database busy: {e}", db_path=self.db_path) from e
            raise

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a statement, translating lock errors into ContentionError"""
        with self._translated():
            return self._connection.execute(sql, params)

    def _commit_connection(self) -> None:
        """Commit; on failure the open transaction is rolled back"""
        try:
            with self._translated():
                self._connection.commit()
        except BaseException:
            self._connection.rollback()
            self._tables.clear()
            raise

    def _autocommit(self) -> None:
        """Only commit if not in transaction"""
        if not self._in_transaction:
            self._commit_connection()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._autocommit()
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._locked():
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

            self._autocommit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Plain INSERT; the primary key rejects an existing id"""
        with self._locked():
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            try:
                self._execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, json.dumps(data, default=str), now, now))
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"Record {record_id} already exists in {table}",
                                    table=table, record_id=record_id) from e

            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._locked():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._locked():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._locked():
            self._ensure_table(table)
            cursor = self._execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._autocommit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._locked():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def _where(self, filters: Dict[str, Any]) -> Tuple[str, list]:
        if not filters:
            return "", []
        conditions = []
        params = []
        for key, value in filters.items():
            conditions.append("json_extract(data, ?) = ?")
            params.extend([f"$.{key}", value])
        return "WHERE " + " AND ".join(conditions), params

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        with self._locked():
            self._ensure_table(table)
            where, params = self._where(filters)
            cursor = self._execute(f"""
                SELECT data FROM {table} {where} ORDER BY created_at
            """, tuple(params))
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def query(self, table, filters, order_by=None, descending=False, offset=0, limit=None):
        """Filter, sort and page inside SQLite"""
        with self._locked():
            self._ensure_table(table)
            where, params = self._where(filters)
            order = "created_at"
            if order_by:
                order = "json_extract(data, ?)"
                params.append(f"$.{order_by}")
            direction = "DESC" if descending else "ASC"
            params.extend([limit if limit is not None else -1, offset])
            cursor = self._execute(f"""
                SELECT data FROM {table} {where}
                ORDER BY {order} {direction}
                LIMIT ? OFFSET ?
            """, tuple(params))
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        return self.count_where(table, {})

    def count_where(self, table: str, filters: Dict[str, Any]) -> int:
        """Count records matching filters"""
        with self._locked():
            self._ensure_table(table)
            where, params = self._where(filters)
            cursor = self._execute(f"""
                SELECT COUNT(*) as count FROM {table} {where}
            """, tuple(params))
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._locked():
            self._ensure_table(table)
            self._execute(f"DELETE FROM {table}")
            self._autocommit()

    def compare_and_save(self, table, record_id, data, expected_version) -> None:
        """Version check and write under one lock hold"""
        with self._locked():
            current = self.load(table, record_id)
            if current is None or current.get(self.version_field) != expected_version:
                raise ConflictError(
                    f"Record {record_id} in {table} was modified concurrently",
                    table=table, record_id=record_id, expected_version=expected_version
                )
            self.save(table, record_id, data)

    def next_sequence(self, name: str) -> int:
        """Next value of a named sequence; rolled back with the transaction"""
        with self._locked():
            self._execute("""
                INSERT INTO _sequences (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
            """, (name,))
            cursor = self._execute("SELECT value FROM _sequences WHERE name = ?", (name,))
            value = cursor.fetchone()['value']
            self._autocommit()
            return value

    def begin_transaction(self) -> None:
        """Start a database transaction, holding the lock until it ends"""
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise ContentionError(
                f"Timed out after {self.lock_timeout}s waiting for a transaction",
                db_path=self.db_path
            )
        if self._tx_depth == 0:
            try:
                if self._connection.in_transaction:
                    # Left open by a failed commit
                    self._connection.rollback()
                self._execute("BEGIN IMMEDIATE")
            except BaseException:
                self._lock.release()
                raise
        self._tx_depth += 1

    def commit(self) -> None:
        """Commit current transaction once the outermost scope ends"""
        if self._tx_depth == 0:
            return
        self._tx_depth -= 1
        try:
            if self._tx_depth == 0:
                if self._rollback_only:
                    self._discard()
                    raise ConflictError("Transaction was rolled back by a nested scope")
                self._commit_connection()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """
        Rollback current transaction

        A nested rollback marks the whole transaction rollback-only, so the
        outermost commit fails instead of applying a partial write set.
        """
        if self._tx_depth == 0:
            return
        self._tx_depth -= 1
        try:
            if self._tx_depth > 0:
                self._rollback_only = True
            else:
                self._discard()
        finally:
            self._lock.release()

    def _discard(self) -> None:
        self._rollback_only = False
        self._connection.rollback()
        # DDL issued inside the transaction is rolled back as well
        self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(backend: str, database_path: str = ":memory:",
                   lock_timeout: float = 5.0) -> StorageInterface:
    """Build a storage backend by name (memory or sqlite)"""
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(database_path, lock_timeout=lock_timeout)
    raise ValueError(f"Unknown storage backend: {backend}")
