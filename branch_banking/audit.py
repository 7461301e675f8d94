"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every security- or money-relevant event in the branch is logged here, and
mirrored as one human-readable line in the audit log file.
"""

import hashlib
import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Any, Union
from enum import Enum
import uuid

from .clock import Clock, local_now
from .exceptions import PersistenceError
from .storage import StorageInterface, StorageRecord, to_primitive


class AuditEventType(Enum):
    """Types of audit events"""
    # Account lifecycle
    ACCOUNT_OPENED = "account_opened"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    ACCOUNT_CLOSED = "account_closed"
    PIN_CHANGED = "pin_changed"
    PIN_CHANGE_FAILED = "pin_change_failed"

    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_NOT_FOUND = "account_not_found"
    LOCKED_ACCESS_ATTEMPT = "locked_access_attempt"

    # Money movement
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    INTEREST_POSTED = "interest_posted"
    BILL_PAYMENT = "bill_payment"
    TRANSACTION_REJECTED = "transaction_rejected"

    # System
    SYSTEM_START = "system_start"
    SYSTEM_STOP = "system_stop"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    account_number: str
    message: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]

    def __post_init__(self):
        if self.metadata:
            self.metadata = {k: to_primitive(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'account_number': self.account_number,
            'message': self.message,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_line(self) -> str:
        """Human-readable single-line form for the audit log file"""
        return f"{self.created_at.isoformat(timespec='seconds')} | {self.event_type.value} | {self.message}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create AuditEvent from dictionary with proper enum deserialization"""
        data = dict(data)
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(
        self,
        storage: StorageInterface,
        log_path: Optional[Union[str, Path]] = None,
        table_name: str = "audit_events",
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.table_name = table_name
        self.log_path = Path(log_path) if log_path else None
        self._clock = clock or local_now
        self._last_hash: Optional[str] = None
        self._lock = threading.Lock()
        self._load_last_hash()

    def _load_last_hash(self) -> None:
        """Load the hash of the most recent audit event"""
        events = self.storage.load_all(self.table_name)
        if events:
            self._last_hash = events[-1].get('current_hash')

    def _append_line(self, event: AuditEvent) -> None:
        if not self.log_path:
            return
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(event.to_line() + "\n")
        except OSError as e:
            raise PersistenceError(f"Cannot append to audit log {self.log_path}: {e}")

    def log_event(
        self,
        event_type: AuditEventType,
        account_number: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            account_number: Account the event concerns ("" for system events)
            message: Human-readable description
            metadata: Additional event-specific data

        Returns:
            Created AuditEvent

        Raises:
            PersistenceError: If the event could not be written
        """
        with self._lock:
            now = self._clock()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                account_number=account_number,
                message=message,
                previous_hash=self._last_hash or "",
                current_hash="",
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self._last_hash = event.current_hash
            self._append_line(event)

            return event

    def get_events_for_account(self, account_number: str,
                               limit: Optional[int] = None) -> List[AuditEvent]:
        """
        Get all audit events for an account, oldest first

        Args:
            account_number: Account to filter on
            limit: Maximum number of (most recent) events to return
        """
        events_data = self.storage.find(self.table_name, {'account_number': account_number})
        events = [AuditEvent.from_dict(data) for data in events_data]
        if limit:
            events = events[-limit:]
        return events

    def get_events_by_type(self, event_type: AuditEventType,
                           account_number: Optional[str] = None) -> List[AuditEvent]:
        """Get audit events of one type, optionally for a single account"""
        filters = {'event_type': event_type.value}
        if account_number is not None:
            filters['account_number'] = account_number
        return [AuditEvent.from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def get_all_events(self) -> List[AuditEvent]:
        """Get every audit event in chain order"""
        return [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> Optional[str]:
        """Get the hash of the most recent audit event"""
        return self._last_hash
