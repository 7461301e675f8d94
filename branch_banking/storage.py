"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and flat files (persistence). All monetary values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, date
from enum import Enum
import json
import os
import tempfile
import threading
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from contextlib import contextmanager

from .exceptions import PersistenceError


def to_primitive(value: Any) -> Any:
    """Convert Decimal, datetime and Enum values to JSON primitives"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_primitive(v) for v in value]
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {key: to_primitive(value) for key, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        # Ignore columns written by newer versions
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def save_many(self, table: str, records: Dict[str, Dict[str, Any]]) -> None:
        """Save several records to storage in one write"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, in insertion order"""
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
        """Close storage"""
        pass

    def begin_transaction(self) -> None:
        """Start a storage transaction (default no-op)"""
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
            self.commit()
        except Exception:
            self.rollback()
            raise


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def save_many(self, table: str, records: Dict[str, Dict[str, Any]]) -> None:
        """Save several records to memory"""
        with self._lock:
            for record_id, data in records.items():
                self.save(table, record_id, data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [
                json.loads(json.dumps(record))
                for record in self._data[table].values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class FlatFileStorage(StorageInterface):
    """
    Flat-file storage: one JSON document per table under a data directory.

    Each table is cached in memory and rewritten whole on every change via a
    temporary file and an atomic rename, so a crash mid-write leaves the
    previous version intact. Inside atomic() writes are deferred to commit().
    """

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._dirty: set = set()
        self._lock = threading.RLock()
        self._in_transaction = False
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create data directory {self.data_dir}: {e}")

    def _path(self, table: str) -> Path:
        return self.data_dir / f"{table}.json"

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Load a table from disk on first use"""
        if table not in self._tables:
            path = self._path(table)
            if path.exists():
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        rows = json.load(f)
                except (OSError, ValueError) as e:
                    raise PersistenceError(f"Cannot read {path}: {e}")
                self._tables[table] = {row["id"]: row["data"] for row in rows}
            else:
                self._tables[table] = {}
        return self._tables[table]

    def _flush(self, table: str) -> None:
        """Rewrite one table file atomically"""
        path = self._path(table)
        rows = [{"id": record_id, "data": data} for record_id, data in self._tables[table].items()]
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{table}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(rows, f, indent=2, default=str)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}")

    def _mark_dirty(self, table: str) -> None:
        if self._in_transaction:
            self._dirty.add(table)
        else:
            self._flush(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record and rewrite its table file"""
        with self._lock:
            self._table(table)[record_id] = json.loads(json.dumps(data, default=str))
            self._mark_dirty(table)

    def save_many(self, table: str, records: Dict[str, Dict[str, Any]]) -> None:
        """Save several records with a single file rewrite"""
        with self._lock:
            rows = self._table(table)
            for record_id, data in records.items():
                rows[record_id] = json.loads(json.dumps(data, default=str))
            self._mark_dirty(table)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record"""
        with self._lock:
            record = self._table(table).get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            return [json.loads(json.dumps(record)) for record in self._table(table).values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            return record_id in self._table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            return [
                json.loads(json.dumps(record))
                for record in self._table(table).values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._tables[table] = {}
            self._mark_dirty(table)

    def begin_transaction(self) -> None:
        """Defer file writes until commit"""
        with self._lock:
            self._in_transaction = True

    def commit(self) -> None:
        """Write every table changed since begin_transaction"""
        with self._lock:
            self._in_transaction = False
            dirty, self._dirty = self._dirty, set()
            for table in sorted(dirty):
                self._flush(table)

    def rollback(self) -> None:
        """Discard cached changes and reload from disk on next use"""
        with self._lock:
            self._in_transaction = False
            for table in self._dirty:
                self._tables.pop(table, None)
            self._dirty = set()

    @contextmanager
    def atomic(self):
        """
        Transaction that owns the storage until it commits or rolls back

        Other threads block on their reads and writes meanwhile, so a
        rollback only ever discards this transaction's own changes.
        """
        with self._lock:
            with super().atomic():
                yield

    def close(self) -> None:
        """Flush any pending changes"""
        with self._lock:
            if self._in_transaction:
                self.commit()
