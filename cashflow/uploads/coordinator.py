"""
Upload Coordinator

Orchestrates the staged-upload lifecycle:

1. request_credential -> issue a presigned PUT for a staging key, record it
2. client PUTs the file straight to the store (we never see the bytes)
3. get_status        -> poll; opportunistically confirm the object arrived
4. verify_and_link   -> prove the object exists, promote it to permanent
                        storage, link it to exactly one transaction
5. reclaim_orphans   -> expire uploads that were never linked

ORDERING inside verify_and_link:
    exists(staging) -> copy(staging, permanent) -> delete(staging) -> link

Copy before delete bounds the damage of a crash to "object in two places",
never "object in zero places". The link write is conditional, so two
concurrent calls with the same upload id produce exactly one winner.

"Must succeed" steps raise. Best-effort steps (staging cleanup, status
updates seen while polling, orphan bookkeeping) go through _attempt(),
which logs the failure and reports it without raising.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from cashflow.audit import AuditLogger
from cashflow.config import UploadSettings
from cashflow.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    PromotionError,
    StoreError,
    ValidationError,
)
from cashflow.models.upload import (
    UploadCredential,
    UploadRecord,
    UploadStatus,
    UploadStatusView,
)
from cashflow.services.ledger import UploadLedgerInterface
from cashflow.services.storage import ObjectStoreInterface


logger = structlog.get_logger(__name__)

KNOWN_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}
DEFAULT_EXTENSION = ".jpg"


def extension_for(content_type: str) -> str:
    """
    File extension for a content type.

    Known image types map to their usual extension; anything else falls
    back to the subtype after "/", and to ".jpg" if that cannot be parsed.
    """
    if content_type in KNOWN_EXTENSIONS:
        return KNOWN_EXTENSIONS[content_type]

    parts = content_type.split("/")
    if len(parts) == 2 and parts[1]:
        return "." + parts[1]

    return DEFAULT_EXTENSION


def build_staging_key(prefix: str, token: str, issued_at: datetime, content_type: str) -> str:
    """
    Staging key: {prefix}/{year}/{month}/{token}_{unix_time}{ext}

    issued_at is naive UTC.
    """
    unix_time = int(issued_at.replace(tzinfo=timezone.utc).timestamp())
    return (
        f"{prefix}/{issued_at.year}/{issued_at.month:02d}/"
        f"{token}_{unix_time}{extension_for(content_type)}"
    )


def to_permanent_key(staging_key: str, staging_prefix: str, permanent_prefix: str) -> str:
    """Rewrite the leading staging prefix to the permanent one, keeping the tail."""
    head = staging_prefix.rstrip("/") + "/"
    if not staging_key.startswith(head):
        raise PromotionError(f"key {staging_key!r} is not under {head!r}")
    return permanent_prefix.rstrip("/") + "/" + staging_key[len(head):]


class UploadCoordinator:
    """
    Drives uploads from credential issuance to a linked transaction.

    Holds no mutable state of its own; everything lives in the ledger and
    the object store, so any number of coordinators may run concurrently.
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        ledger: UploadLedgerInterface,
        settings: UploadSettings,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        token_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._store = store
        self._ledger = ledger
        self._settings = settings
        self._audit = audit_logger or AuditLogger()
        self._clock = clock
        self._new_token = token_factory

    @property
    def settings(self) -> UploadSettings:
        return self._settings

    async def _attempt(self, event: str, action: Awaitable, **context) -> bool:
        """
        Run a best-effort side effect.

        Returns the action's own boolean result when it has one (a
        conditional write that moved no row is False), otherwise True.
        Store and persistence failures are logged and reported as False;
        they never reach the caller.
        """
        try:
            result = await action
        except (StoreError, PersistenceError) as e:
            logger.warning(event, error=str(e), **context)
            return False
        return result is not False

    def _validate(self, content_type: str, declared_size: int) -> None:
        allowed = self._settings.allowed_content_types_list
        if content_type not in allowed:
            raise ValidationError(
                f"invalid content type: {content_type} (allowed: {', '.join(allowed)})"
            )

        max_size = self._settings.max_file_size_bytes
        if declared_size <= 0:
            raise ValidationError("file size must be positive")
        if declared_size > max_size:
            raise ValidationError(
                f"file size exceeds maximum of {max_size // (1024 * 1024)}MB"
            )

    async def request_credential(self, content_type: str, declared_size: int) -> UploadCredential:
        """
        Issue a presigned PUT for a fresh staging key and record it as pending.

        Raises:
            ValidationError: Content type not allowed or size out of bounds
            CredentialError: The store could not sign the URL
            PersistenceError: The ledger write failed (the URL is discarded)
        """
        self._validate(content_type, declared_size)

        token = self._new_token()
        issued_at = self._clock()
        staging_key = build_staging_key(
            self._settings.staging_prefix, token, issued_at, content_type
        )
        ttl = self._settings.credential_ttl_seconds

        try:
            presigned_url = await self._store.issue_put_credential(staging_key, content_type, ttl)
        except StoreError as e:
            logger.error("presigned_url_failed", upload_id=token, error=str(e))
            raise

        record = UploadRecord(
            upload_token=token,
            staging_key=staging_key,
            content_type=content_type,
            declared_size=declared_size,
            status=UploadStatus.PENDING,
            credential_expires_at=issued_at + timedelta(seconds=ttl),
            created_at=issued_at,
        )

        try:
            await self._ledger.create(record)
        except PersistenceError:
            logger.error("upload_record_create_failed", upload_id=token)
            raise

        logger.info(
            "upload_request_created",
            upload_id=token,
            key=staging_key,
            file_size=declared_size,
        )
        self._audit.log_credential_issued(upload_id=token, key=staging_key, file_size=declared_size)

        return UploadCredential(
            upload_id=token,
            presigned_url=presigned_url,
            method="PUT",
            headers={"Content-Type": content_type},
            key=staging_key,
            expires_at=record.credential_expires_at,
        )

    async def get_status(self, upload_token: str) -> UploadStatusView:
        """
        Look up an upload, confirming it on the way if the object has arrived.

        Raises:
            NotFoundError: No upload with this id
        """
        record = await self._ledger.get_by_token(upload_token)

        if record.status == UploadStatus.PENDING:
            try:
                arrived = await self._store.exists(record.staging_key)
            except StoreError as e:
                logger.warning("upload_existence_check_failed", upload_id=upload_token, error=str(e))
                arrived = False

            if arrived:
                now = self._clock()
                confirmed = await self._attempt(
                    "upload_status_update_failed",
                    self._ledger.mark_completed(upload_token, now),
                    upload_id=upload_token,
                )
                # Report what we observed even if the write did not stick
                record = record.model_copy(update={
                    "status": UploadStatus.COMPLETED,
                    "completed_at": record.completed_at or now,
                })
                if confirmed:
                    self._audit.log_upload_confirmed(upload_id=upload_token, key=record.staging_key)

        return UploadStatusView.from_record(record)

    async def verify_and_link(
        self,
        upload_token: str,
        record_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Prove an upload completed, promote it, and link it to a transaction.

        Returns:
            The permanent object key, or "" when no upload token is given

        Raises:
            NotFoundError: Unknown upload id, or the uploaded file is missing
            ConflictError: The upload is already linked, expired or failed
            StoreError: The existence check failed
            PromotionError: The staging key is not under the staging prefix,
                or copying to permanent storage failed (safe to retry)
            PersistenceError: The link write failed after promotion
        """
        if not upload_token:
            return ""

        record = await self._ledger.get_by_token(upload_token)

        if record.is_linked:
            raise ConflictError("upload already linked to another transaction")
        if record.status in (UploadStatus.EXPIRED, UploadStatus.FAILED):
            raise ConflictError(f"upload is {record.status.value} and can no longer be linked")

        staging_key = record.staging_key
        permanent_key = to_permanent_key(
            staging_key, self._settings.staging_prefix, self._settings.permanent_prefix
        )

        if await self._store.exists(staging_key):
            try:
                await self._store.copy(staging_key, permanent_key)
            except StoreError as e:
                logger.error(
                    "upload_promotion_failed",
                    upload_id=upload_token,
                    error=str(e),
                    source=staging_key,
                    destination=permanent_key,
                )
                self._audit.log_external_service_error(
                    service="object_store", operation="copy", error_message=e.message
                )
                raise PromotionError(f"moving file to permanent storage: {e.message}") from e

            self._audit.log_upload_promoted(
                upload_id=upload_token, staging_key=staging_key, permanent_key=permanent_key
            )

            # The store's lifecycle rule on the staging prefix is the backstop
            cleaned = await self._attempt(
                "staging_object_delete_failed",
                self._store.delete(staging_key),
                upload_id=upload_token,
                key=staging_key,
            )
            if not cleaned:
                self._audit.log_staging_cleanup_failed(
                    upload_id=upload_token, key=staging_key, error_message="delete failed"
                )
        elif await self._store.exists(permanent_key):
            # An earlier attempt promoted the object but never recorded the link
            logger.warning(
                "upload_already_promoted",
                upload_id=upload_token,
                key=permanent_key,
            )
        else:
            raise NotFoundError("uploaded file not found")

        try:
            await self._ledger.link(upload_token, record_id, self._clock())
        except PersistenceError:
            logger.error(
                "upload_link_failed_after_promotion",
                upload_id=upload_token,
                transaction_id=str(record_id),
                key=permanent_key,
            )
            raise

        logger.info(
            "upload_verified_and_linked",
            upload_id=upload_token,
            transaction_id=str(record_id),
            key=permanent_key,
        )
        self._audit.log_upload_linked(
            upload_id=upload_token,
            transaction_id=record_id,
            permanent_key=permanent_key,
            correlation_id=correlation_id,
        )

        return permanent_key

    async def reclaim_orphans(self, max_age: Optional[timedelta] = None) -> int:
        """
        Expire pending uploads that were never linked and are older than max_age.

        Each orphan's staging object is deleted best-effort before the record
        is marked expired; one failing orphan never stops the batch.

        Returns:
            Number of orphans considered (not the number cleaned)

        Raises:
            PersistenceError: If the orphans cannot be listed at all
        """
        if max_age is None:
            max_age = timedelta(hours=self._settings.orphan_max_age_hours)

        cutoff = self._clock() - max_age
        orphans = await self._ledger.list_orphans(cutoff)

        for orphan in orphans:
            await self._attempt(
                "orphan_object_delete_failed",
                self._store.delete(orphan.staging_key),
                upload_id=orphan.upload_token,
                key=orphan.staging_key,
            )
            expired = await self._attempt(
                "orphan_status_update_failed",
                self._ledger.mark_expired(orphan.upload_token),
                upload_id=orphan.upload_token,
            )
            if expired:
                self._audit.log_orphan_expired(upload_id=orphan.upload_token, key=orphan.staging_key)

        logger.info("cleaned_up_orphaned_uploads", count=len(orphans), cutoff=cutoff.isoformat())

        return len(orphans)
