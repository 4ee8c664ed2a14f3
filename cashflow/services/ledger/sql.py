"""
SQL Upload Ledger

SQLAlchemy implementation of UploadLedgerInterface on the upload_requests
table. Works on PostgreSQL in production and SQLite for development/tests.

At-most-once linking is a single conditional UPDATE:

    UPDATE upload_requests
       SET transaction_id = :tx, status = 'completed', completed_at = :now
     WHERE upload_id = :token AND transaction_id IS NULL
       AND status IN ('pending', 'completed')

Exactly one concurrent caller sees rowcount == 1; everyone else gets a
ConflictError. No in-process locking is involved.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import BigInteger, DateTime, String, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from cashflow.errors import ConflictError, NotFoundError, PersistenceError
from cashflow.models.upload import UploadRecord, UploadStatus
from cashflow.services.database import Base
from cashflow.services.ledger.interface import UploadLedgerInterface


logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Expired and failed uploads are terminal and never linked
LINKABLE_STATUSES = (UploadStatus.PENDING.value, UploadStatus.COMPLETED.value)


class UploadRequestRow(Base):
    __tablename__ = "upload_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    upload_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    s3_key: Mapped[str] = mapped_column(String(500), unique=True, nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UploadStatus.PENDING.value, index=True
    )
    presigned_url_expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)


def _row_to_record(row: UploadRequestRow) -> UploadRecord:
    return UploadRecord(
        id=UUID(row.id),
        upload_token=row.upload_id,
        staging_key=row.s3_key,
        content_type=row.content_type,
        declared_size=row.file_size,
        status=UploadStatus(row.status),
        credential_expires_at=row.presigned_url_expires_at,
        created_at=row.created_at,
        completed_at=row.completed_at,
        linked_record_id=UUID(row.transaction_id) if row.transaction_id else None,
    )


class SqlUploadLedger(UploadLedgerInterface):
    """
    Upload ledger backed by a relational database.

    Each call opens its own Session inside a worker thread, so calls from
    concurrent requests never share connection state.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except SQLAlchemyError as e:
            logger.error("ledger_operation_failed", operation=operation, error=str(e))
            raise PersistenceError(f"{operation}: {e}") from e

    async def create(self, record: UploadRecord) -> None:
        def _create() -> None:
            with self._session_factory() as session:
                session.add(UploadRequestRow(
                    id=str(record.id),
                    upload_id=record.upload_token,
                    s3_key=record.staging_key,
                    content_type=record.content_type,
                    file_size=record.declared_size,
                    status=record.status.value,
                    presigned_url_expires_at=record.credential_expires_at,
                    created_at=record.created_at,
                    completed_at=record.completed_at,
                    transaction_id=str(record.linked_record_id) if record.linked_record_id else None,
                ))
                session.commit()

        await self._run("creating upload record", _create)

    async def get_by_token(self, upload_token: str) -> UploadRecord:
        def _get() -> Optional[UploadRecord]:
            with self._session_factory() as session:
                row = session.scalar(
                    select(UploadRequestRow).where(UploadRequestRow.upload_id == upload_token)
                )
                return _row_to_record(row) if row else None

        record = await self._run("getting upload record", _get)
        if record is None:
            raise NotFoundError("upload not found")
        return record

    async def mark_completed(self, upload_token: str, completed_at: datetime) -> bool:
        def _mark() -> bool:
            with self._session_factory() as session:
                result = session.execute(
                    update(UploadRequestRow)
                    .where(
                        UploadRequestRow.upload_id == upload_token,
                        UploadRequestRow.status == UploadStatus.PENDING.value,
                    )
                    .values(status=UploadStatus.COMPLETED.value, completed_at=completed_at)
                )
                session.commit()
                return result.rowcount == 1

        return await self._run("updating upload status", _mark)

    async def link(self, upload_token: str, record_id: UUID, completed_at: datetime) -> None:
        def _link() -> None:
            with self._session_factory() as session:
                result = session.execute(
                    update(UploadRequestRow)
                    .where(
                        UploadRequestRow.upload_id == upload_token,
                        UploadRequestRow.transaction_id.is_(None),
                        UploadRequestRow.status.in_(LINKABLE_STATUSES),
                    )
                    .values(
                        transaction_id=str(record_id),
                        status=UploadStatus.COMPLETED.value,
                        completed_at=completed_at,
                    )
                )
                session.commit()
                if result.rowcount == 1:
                    return

                # Lost the race, replayed, or no longer linkable
                row = session.scalar(
                    select(UploadRequestRow).where(UploadRequestRow.upload_id == upload_token)
                )
                if row is None:
                    raise NotFoundError("upload not found")
                if row.transaction_id is not None:
                    raise ConflictError("upload already linked to another transaction")
                raise ConflictError(f"upload is {row.status} and can no longer be linked")

        await self._run("linking upload to transaction", _link)

    async def mark_expired(self, upload_token: str) -> bool:
        def _expire() -> bool:
            with self._session_factory() as session:
                result = session.execute(
                    update(UploadRequestRow)
                    .where(
                        UploadRequestRow.upload_id == upload_token,
                        UploadRequestRow.status == UploadStatus.PENDING.value,
                        UploadRequestRow.transaction_id.is_(None),
                    )
                    .values(status=UploadStatus.EXPIRED.value)
                )
                session.commit()
                return result.rowcount == 1

        return await self._run("expiring upload", _expire)

    async def list_orphans(self, created_before: datetime) -> list[UploadRecord]:
        def _list() -> list[UploadRecord]:
            with self._session_factory() as session:
                rows = session.scalars(
                    select(UploadRequestRow)
                    .where(
                        UploadRequestRow.status == UploadStatus.PENDING.value,
                        UploadRequestRow.transaction_id.is_(None),
                        UploadRequestRow.created_at < created_before,
                    )
                    .order_by(UploadRequestRow.created_at)
                )
                return [_row_to_record(row) for row in rows]

        return await self._run("getting orphaned uploads", _list)
