"""
Client Registry

Concurrency-safe store of per-device protocol state, keyed by the exact bytes
of the identity key public blob.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from attestation_verifier.core.logging import get_logger, key_fingerprint

from .models import AttestationParameters, DeviceRecord

logger = get_logger(__name__)


class ClientRegistry:
    """
    Maps identity key public blobs to DeviceRecords.

    All access goes through a single exclusive lock. Request handlers use
    transaction() so the lookup and the mutation of the fetched record happen
    as one atomic step. Records are never removed; the registry doubles as an
    in-memory audit trail for the life of the process.
    """

    def __init__(self):
        self._records: Dict[bytes, DeviceRecord] = {}
        # Re-entrant so get_or_create() can be called inside transaction()
        self._lock = threading.RLock()

    def get_or_create(self, identity_public: bytes) -> DeviceRecord:
        """
        Return the record for an exact match of identity_public, creating a
        zero-valued record on first contact.
        """
        key = bytes(identity_public)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = DeviceRecord(
                    identity_params=AttestationParameters(public=key)
                )
                self._records[key] = record
                logger.info("Registered new device", fingerprint=key_fingerprint(key))
            return record

    def get(self, identity_public: bytes) -> Optional[DeviceRecord]:
        """Return the record for identity_public without creating one."""
        with self._lock:
            return self._records.get(bytes(identity_public))

    @contextmanager
    def transaction(self, identity_public: bytes) -> Iterator[DeviceRecord]:
        """
        Hold the registry lock for the duration of the block and yield the
        device's record (created if needed).
        """
        with self._lock:
            yield self.get_or_create(identity_public)

    @contextmanager
    def transaction_if_known(self, identity_public: bytes) -> Iterator[Optional[DeviceRecord]]:
        """Like transaction(), but yields None for an unseen key instead of creating it."""
        with self._lock:
            yield self._records.get(bytes(identity_public))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, identity_public: bytes) -> bool:
        with self._lock:
            return bytes(identity_public) in self._records
