"""
Keyed store of attested public keys and their last accepted sign counter.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .errors import KeyAlreadyRegistered, RecordNotFound

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AttestationRecord:
    key_id: str
    public_key: str
    sign_count: int = 0
    platform: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.sign_count < 0:
            raise ValueError("sign_count must be >= 0")


class AttestationRegistry:
    """
    In-memory registry, one record per hardware key tag.

    ``advance`` serialises read-compare-update of a key's counter behind a
    per-key lock; different keys never contend.
    """

    def __init__(self):
        self._records: Dict[str, AttestationRecord] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _key_lock(self, key_id: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key_id)
            if lock is None:
                lock = self._key_locks[key_id] = threading.Lock()
            return lock

    def _existing_key_lock(self, key_id: str) -> threading.Lock:
        """Lock for a stored key; unknown keys never get one."""
        with self._lock:
            if key_id not in self._records:
                raise RecordNotFound(key_id)
            return self._key_locks.setdefault(key_id, threading.Lock())

    def get(self, key_id: str) -> AttestationRecord:
        with self._lock:
            record = self._records.get(key_id)
        if record is None:
            raise RecordNotFound(key_id)
        return record

    def put(self, key_id: str, record: AttestationRecord) -> None:
        """Store ``record`` unconditionally, replacing any existing one."""
        if record.key_id != key_id:
            record = replace(record, key_id=key_id)
        with self._key_lock(key_id):
            with self._lock:
                self._records[key_id] = record
        logger.info(f"Stored attestation record - Key: {key_id}, Sign count: {record.sign_count}")

    def register(self, key_id: str, record: AttestationRecord) -> AttestationRecord:
        """
        Store a newly attested key.

        Registering the same public key again keeps the stored record, so its
        counter never moves back. A different public key under an existing
        tag raises KeyAlreadyRegistered.
        """
        if record.key_id != key_id:
            record = replace(record, key_id=key_id)
        with self._key_lock(key_id):
            with self._lock:
                existing = self._records.get(key_id)
                if existing is None:
                    self._records[key_id] = record
            if existing is not None:
                if existing.public_key != record.public_key:
                    raise KeyAlreadyRegistered(key_id)
                logger.info(f"Key already registered - Key: {key_id}, Sign count: {existing.sign_count}")
                return existing
        logger.info(f"Registered attestation record - Key: {key_id}")
        return record

    def advance(self, key_id: str, verify: Callable[[AttestationRecord], int]) -> AttestationRecord:
        """
        Atomically verify against the current record and store the new counter.

        ``verify`` gets the current record and returns the new sign count, or
        raises. Nothing is stored when it raises.
        """
        with self._existing_key_lock(key_id):
            current = self.get(key_id)
            new_count = verify(current)
            if new_count <= current.sign_count:
                raise ValueError(
                    f"Sign count for {key_id} must increase ({current.sign_count} -> {new_count})"
                )
            updated = replace(current, sign_count=new_count, updated_at=_utcnow())
            with self._lock:
                self._records[key_id] = updated
        logger.debug(f"Advanced sign count - Key: {key_id}, Sign count: {new_count}")
        return updated

    def __contains__(self, key_id: str) -> bool:
        with self._lock:
            return key_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
