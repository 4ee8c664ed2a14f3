"""
Abstract Upload Ledger Interface

The ledger is the durable record of every upload credential ever issued.
It never proves that bytes exist in the store - only the store can do that.

All mutual exclusion lives here, in conditional writes:
- link() succeeds only while no transaction is linked (at-most-once)
- mark_completed() and mark_expired() only move pending records

Callers may be spread across processes, so implementations must enforce
these conditions in the database, never with in-process locks.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from cashflow.models.upload import UploadRecord


class UploadLedgerInterface(ABC):
    """Persistence contract for upload records."""

    @abstractmethod
    async def create(self, record: UploadRecord) -> None:
        """
        Persist a new upload record.

        Raises:
            PersistenceError: If the write fails (including duplicate token/key)
        """
        pass

    @abstractmethod
    async def get_by_token(self, upload_token: str) -> UploadRecord:
        """
        Fetch a record by its client-facing token.

        Raises:
            NotFoundError: If no record matches
            PersistenceError: If the read fails
        """
        pass

    @abstractmethod
    async def mark_completed(self, upload_token: str, completed_at: datetime) -> bool:
        """
        Move a pending record to completed.

        Returns:
            True if the record moved, False if it was no longer pending

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def link(self, upload_token: str, record_id: UUID, completed_at: datetime) -> None:
        """
        Link the upload to a transaction and mark it completed, in one
        conditional write that only succeeds while no link exists and the
        record is pending or completed.

        Raises:
            ConflictError: If the upload is already linked, expired or failed
            NotFoundError: If no record matches
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def mark_expired(self, upload_token: str) -> bool:
        """
        Move a pending, unlinked record to expired.

        Returns:
            True if the record moved

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def list_orphans(self, created_before: datetime) -> list[UploadRecord]:
        """
        List pending, unlinked records created before the cutoff,
        oldest first.

        Raises:
            PersistenceError: If the read fails
        """
        pass
