"""
Persistent journal of transfer records.

A record is written before the first external call of a transfer and
after every state change, keyed by the burn-intent salt, so an
interrupted aggregation can be audited and reconciled.
"""
import os
import logging
from typing import List, Optional

import portalocker

from .exceptions import JournalError
from .models import TransferRecord, RecordStatus, TransferState, utc_now
from .store import JsonStore

logger = logging.getLogger(__name__)

DEFAULT_RECORD_STORE_PATH = "~/.settlement/transfers.json"


class TransferRecordStore:
    """Transfer records persisted in a locked JSON file."""

    def __init__(self, store_path: Optional[str] = None):
        """
        Initialize the journal.

        Args:
            store_path: Optional custom path; defaults to
                ``SETTLEMENT_RECORD_STORE_PATH`` or ``~/.settlement/transfers.json``
        """
        path = store_path or os.environ.get("SETTLEMENT_RECORD_STORE_PATH", DEFAULT_RECORD_STORE_PATH)
        self._store = JsonStore(os.path.expanduser(path), root_key="transfers")

    @property
    def path(self) -> str:
        return str(self._store.store_path)

    def save(self, record: TransferRecord) -> TransferRecord:
        """
        Persist ``record``, stamping its update time.

        Raises:
            JournalError: If the journal file cannot be locked or written
        """
        record.updated_at = utc_now()
        try:
            self._store.put(record.record_id, record.model_dump(mode="json", by_alias=True))
        except (OSError, portalocker.LockException) as e:
            logger.error(f"Failed to journal transfer {record.record_id[:10]}...: {e}")
            raise JournalError(record.record_id, str(e)) from e
        logger.debug(f"Journaled transfer {record.record_id[:10]}... state={record.state.value} status={record.status.value}")
        return record

    def get(self, record_id: str) -> Optional[TransferRecord]:
        data = self._store.get(record_id)
        if data is None:
            return None
        return TransferRecord.model_validate(data)

    def list(self, status: Optional[RecordStatus] = None) -> List[TransferRecord]:
        """All journaled records, optionally filtered by status, oldest first."""
        records = [TransferRecord.model_validate(d) for d in self._store.read().values()]
        if status is not None:
            records = [r for r in records if r.status == status]
        return sorted(records, key=lambda r: r.created_at)

    def in_flight(self) -> List[TransferRecord]:
        """Records that reached the mint step but never saw a terminal state."""
        return [
            r for r in self.list(RecordStatus.PENDING)
            if r.state == TransferState.MINTING and r.mint_operation_id
        ]
