"""
Transaction Repository

Abstract interface plus the SQLAlchemy implementation for the
transactions table. Same threading model as the upload ledger: one Session
per call, run in a worker thread.
"""

import asyncio
import calendar
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import Date, DateTime, Numeric, String, Text, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from cashflow.errors import NotFoundError, PersistenceError
from cashflow.models.transaction import Transaction, TransactionType
from cashflow.services.database import Base


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TransactionRepositoryInterface(ABC):
    """Persistence contract for transactions."""

    @abstractmethod
    async def create(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: UUID) -> Transaction:
        """Raises NotFoundError if missing."""
        pass

    @abstractmethod
    async def list_recent(self, limit: int, offset: int) -> list[Transaction]:
        """Newest first (by date, then creation time)."""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def get_by_month(self, year: int, month: int) -> list[Transaction]:
        pass

    @abstractmethod
    async def delete(self, transaction_id: UUID) -> None:
        """Raises NotFoundError if missing."""
        pass


class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    upload_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


def _row_to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=UUID(row.id),
        date=row.date,
        amount=Decimal(row.amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        type=TransactionType(row.type),
        description=row.description or "",
        image_key=row.image_key,
        upload_id=row.upload_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlTransactionRepository(TransactionRepositoryInterface):
    """Transactions stored in a relational database."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except SQLAlchemyError as e:
            logger.error("transaction_repository_failed", operation=operation, error=str(e))
            raise PersistenceError(f"{operation}: {e}") from e

    async def create(self, transaction: Transaction) -> None:
        def _create() -> None:
            with self._session_factory() as session:
                session.add(TransactionRow(
                    id=str(transaction.id),
                    date=transaction.date,
                    amount=transaction.amount,
                    type=transaction.type.value,
                    description=transaction.description,
                    image_key=transaction.image_key,
                    upload_id=transaction.upload_id,
                    created_at=transaction.created_at,
                    updated_at=transaction.updated_at,
                ))
                session.commit()

        await self._run("creating transaction", _create)

    async def get_by_id(self, transaction_id: UUID) -> Transaction:
        def _get() -> Optional[Transaction]:
            with self._session_factory() as session:
                row = session.get(TransactionRow, str(transaction_id))
                return _row_to_transaction(row) if row else None

        transaction = await self._run("getting transaction", _get)
        if transaction is None:
            raise NotFoundError("transaction not found")
        return transaction

    async def list_recent(self, limit: int, offset: int) -> list[Transaction]:
        def _list() -> list[Transaction]:
            with self._session_factory() as session:
                rows = session.scalars(
                    select(TransactionRow)
                    .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
                return [_row_to_transaction(row) for row in rows]

        return await self._run("listing transactions", _list)

    async def count(self) -> int:
        def _count() -> int:
            with self._session_factory() as session:
                return session.scalar(select(func.count()).select_from(TransactionRow)) or 0

        return await self._run("counting transactions", _count)

    async def get_by_month(self, year: int, month: int) -> list[Transaction]:
        first = date(year, month, 1)
        last = date(year, month, calendar.monthrange(year, month)[1])

        def _by_month() -> list[Transaction]:
            with self._session_factory() as session:
                rows = session.scalars(
                    select(TransactionRow)
                    .where(TransactionRow.date >= first, TransactionRow.date <= last)
                    .order_by(TransactionRow.date)
                )
                return [_row_to_transaction(row) for row in rows]

        return await self._run("getting monthly transactions", _by_month)

    async def delete(self, transaction_id: UUID) -> None:
        def _delete() -> int:
            with self._session_factory() as session:
                result = session.execute(
                    delete(TransactionRow).where(TransactionRow.id == str(transaction_id))
                )
                session.commit()
                return result.rowcount

        if await self._run("deleting transaction", _delete) == 0:
            raise NotFoundError("transaction not found")
