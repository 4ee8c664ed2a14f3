"""
Transaction Service

The financial record side of the ledger. Mostly a thin layer over the
repository; the interesting part is receipt handling:

- New flow: the client uploaded straight to the store and passes the
  upload id. The coordinator verifies, promotes and links it before the
  transaction row is written, and its permanent key is stored on the row.
- Legacy flow (deprecated): the image arrives inline as base64 and is put
  into permanent storage directly.

Deleting a transaction removes its receipt from the store best-effort; the
row is deleted regardless.
"""

import base64
import binascii
import uuid
from datetime import MAXYEAR, MINYEAR, date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import structlog

from cashflow.audit import AuditLogger, create_correlation_id
from cashflow.config import UploadSettings
from cashflow.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    StoreError,
    ValidationError,
)
from cashflow.models.transaction import (
    CreateTransactionRequest,
    MonthlyAggregate,
    Transaction,
    TransactionPage,
    TransactionType,
)
from cashflow.services.storage import ObjectStoreInterface
from cashflow.transactions.repository import TransactionRepositoryInterface
from cashflow.uploads import UploadCoordinator, extension_for


logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def decode_base64_image(value: str) -> tuple[bytes, str]:
    """
    Decode an inline image.

    Accepts a data URL ("data:image/png;base64,....") or bare base64, which
    is assumed to be JPEG.

    Raises:
        ValidationError: If the payload is not valid base64
    """
    content_type = "image/jpeg"
    data = value

    head, sep, tail = value.partition(",")
    if sep and head.startswith("data:"):
        data = tail
        meta = head[len("data:"):]
        declared = meta.split(";")[0].strip().lower()
        if declared:
            content_type = declared

    try:
        return base64.b64decode(data, validate=True), content_type
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"decoding base64 image: {e}") from e


def parse_month(month: str) -> tuple[int, int]:
    """Parse "YYYY-MM" into (year, month)."""
    parts = month.split("-")
    if len(parts) != 2:
        raise ValidationError("invalid month format, expected YYYY-MM")

    try:
        year, month_num = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValidationError("invalid month format, expected YYYY-MM")

    if not 1 <= month_num <= 12:
        raise ValidationError("month must be between 1 and 12")
    if not MINYEAR <= year <= MAXYEAR:
        raise ValidationError(f"year must be between {MINYEAR} and {MAXYEAR}")

    return year, month_num


class TransactionService:
    """
    Records, lists, summarises and deletes transactions.

    Receipt images are resolved through the upload coordinator; presigned
    GET URLs for responses come straight from the object store.
    """

    def __init__(
        self,
        repository: TransactionRepositoryInterface,
        store: ObjectStoreInterface,
        coordinator: UploadCoordinator,
        settings: UploadSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repo = repository
        self._store = store
        self._coordinator = coordinator
        self._settings = settings
        self._audit = audit_logger or AuditLogger()

    def _validate_request(self, request: CreateTransactionRequest) -> tuple[date, Decimal, TransactionType]:
        try:
            amount = Decimal(request.amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise ValidationError("amount must be a number")
        if amount <= 0:
            raise ValidationError("amount must be greater than 0")

        try:
            transaction_type = TransactionType(request.type)
        except ValueError:
            raise ValidationError(f"invalid transaction type: {request.type}")

        try:
            transaction_date = datetime.strptime(request.date, "%Y-%m-%d").date()
        except ValueError:
            raise ValidationError("invalid date format, expected YYYY-MM-DD")

        return transaction_date, amount, transaction_type

    async def _store_inline_image(self, image_base64: str) -> str:
        """Legacy path: decode, check, and put an inline image under the permanent prefix."""
        data, content_type = decode_base64_image(image_base64)

        if content_type not in self._settings.allowed_content_types_list:
            raise ValidationError(f"invalid content type: {content_type}")
        if len(data) > self._settings.max_file_size_bytes:
            raise ValidationError(
                f"image size exceeds maximum allowed size of {self._settings.max_file_size_bytes} bytes"
            )

        now = datetime.utcnow()
        unix_time = int(now.replace(tzinfo=timezone.utc).timestamp())
        key = (
            f"{self._settings.permanent_prefix}/{now.year}/{now.month:02d}/"
            f"{uuid.uuid4()}_{unix_time}{extension_for(content_type)}"
        )
        await self._store.put_object(key, data, content_type)
        return key

    async def _attach_image_url(self, transaction: Transaction) -> Transaction:
        """Add a presigned GET URL; a signing failure leaves the URL empty."""
        if not transaction.image_key:
            return transaction

        try:
            url = await self._store.issue_get_credential(transaction.image_key)
        except StoreError as e:
            logger.warning("presigned_get_url_failed", key=transaction.image_key, error=str(e))
            return transaction

        return transaction.model_copy(update={"image_url": url})

    async def create_transaction(self, request: CreateTransactionRequest) -> Transaction:
        """
        Record a transaction, consuming its upload if one is referenced.

        Raises:
            ValidationError: Bad input, or the referenced upload is unknown,
                missing from the store, or already used
            StoreError / PersistenceError: Infrastructure failures
        """
        transaction_date, amount, transaction_type = self._validate_request(request)
        correlation_id = create_correlation_id()

        transaction = Transaction(
            date=transaction_date,
            amount=amount,
            type=transaction_type,
            description=request.description,
        )

        if request.upload_id:
            try:
                image_key = await self._coordinator.verify_and_link(
                    request.upload_id, transaction.id, correlation_id=correlation_id
                )
            except (NotFoundError, ConflictError) as e:
                raise ValidationError(f"verifying upload: {e.message}") from e
            transaction = transaction.model_copy(update={
                "image_key": image_key,
                "upload_id": request.upload_id,
            })
        elif request.image_base64:
            image_key = await self._store_inline_image(request.image_base64)
            transaction = transaction.model_copy(update={"image_key": image_key})

        try:
            await self._repo.create(transaction)
        except PersistenceError:
            logger.error(
                "transaction_create_failed",
                type=transaction_type.value,
                amount=str(amount),
                upload_id=request.upload_id,
            )
            raise

        logger.info(
            "transaction_created",
            id=str(transaction.id),
            type=transaction.type.value,
            amount=str(transaction.amount),
        )
        self._audit.log_transaction_created(
            transaction_id=transaction.id,
            transaction_type=transaction.type.value,
            amount=str(transaction.amount),
            has_image=transaction.image_key is not None,
            correlation_id=correlation_id,
        )

        return await self._attach_image_url(transaction)

    async def list_transactions(self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> TransactionPage:
        """One page of transactions, newest first, with receipt URLs."""
        if limit <= 0:
            limit = DEFAULT_PAGE_SIZE
        limit = min(limit, MAX_PAGE_SIZE)
        offset = max(offset, 0)

        transactions = await self._repo.list_recent(limit, offset)
        transactions = [await self._attach_image_url(t) for t in transactions]
        total = await self._repo.count()

        return TransactionPage(transactions=transactions, total=total, limit=limit, offset=offset)

    async def get_monthly_aggregate(self, month: str) -> MonthlyAggregate:
        """Income, spending and net total for "YYYY-MM"."""
        year, month_num = parse_month(month)

        transactions = await self._repo.get_by_month(year, month_num)

        income = sum(
            (t.amount for t in transactions if t.type == TransactionType.EARNING),
            Decimal("0"),
        )
        spending = sum(
            (t.amount for t in transactions if t.type == TransactionType.SPENDING),
            Decimal("0"),
        )

        aggregate = MonthlyAggregate(
            month=f"{year:04d}-{month_num:02d}",
            income=income,
            spending=spending,
            net_total=income - spending,
            transaction_count=len(transactions),
        )

        logger.info(
            "calculated_monthly_aggregate",
            month=aggregate.month,
            income=str(income),
            spending=str(spending),
            net=str(aggregate.net_total),
        )

        return aggregate

    async def delete_transaction(self, transaction_id: UUID) -> None:
        """
        Delete a transaction and, best-effort, its receipt.

        Raises:
            NotFoundError: No such transaction
        """
        transaction = await self._repo.get_by_id(transaction_id)

        if transaction.image_key:
            try:
                await self._store.delete(transaction.image_key)
            except StoreError as e:
                logger.error(
                    "transaction_image_delete_failed",
                    key=transaction.image_key,
                    error=str(e),
                )

        await self._repo.delete(transaction_id)

        logger.info("transaction_deleted", id=str(transaction_id))
        self._audit.log_transaction_deleted(
            transaction_id=transaction_id,
            image_key=transaction.image_key,
        )
