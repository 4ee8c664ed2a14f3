"""
Shared fixtures.

No test talks to a real object store or database server:
- the store is InMemoryObjectStore, with per-operation failure injection
- the ledger and repository run on in-memory SQLite
"""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from cashflow.audit import AuditLogger
from cashflow.config import DatabaseSettings, StorageSettings, UploadSettings
from cashflow.errors import StoreError
from cashflow.services.database import (
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from cashflow.services.ledger import SqlUploadLedger
from cashflow.services.storage import ObjectStoreInterface
from cashflow.transactions import SqlTransactionRepository, TransactionService
from cashflow.uploads import UploadCoordinator


class InMemoryObjectStore(ObjectStoreInterface):
    """
    Dict-backed object store.

    fail(operation) makes every later call of that operation raise until
    heal(operation) is called.
    """

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, Exception] = {}

    def fail(self, operation: str, error: Optional[Exception] = None) -> None:
        self._failures[operation] = error or StoreError(f"{operation} unavailable")

    def heal(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def _enter(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        if operation in self._failures:
            raise self._failures[operation]

    def client_put(self, key: str, data: bytes = b"\xff\xd8receipt", content_type: str = "image/jpeg") -> None:
        """What a client does with its presigned PUT URL."""
        self.objects[key] = (data, content_type)

    def calls_for(self, operation: str) -> list[str]:
        return [key for op, key in self.calls if op == operation]

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self._enter("put_object", key)
        self.objects[key] = (data, content_type)

    async def issue_put_credential(self, key: str, content_type: str, ttl_seconds: int) -> str:
        self._enter("issue_put_credential", key)
        return f"https://store.test/{key}?X-Amz-Expires={ttl_seconds}&X-Amz-Signature=put"

    async def issue_get_credential(self, key: str, ttl_seconds: Optional[int] = None) -> str:
        if not key:
            return ""
        self._enter("issue_get_credential", key)
        return f"https://store.test/{key}?X-Amz-Expires={ttl_seconds or 86400}&X-Amz-Signature=get"

    async def exists(self, key: str) -> bool:
        self._enter("exists", key)
        return key in self.objects

    async def copy(self, source_key: str, dest_key: str) -> None:
        self._enter("copy", source_key)
        if source_key not in self.objects:
            raise StoreError(f"copying {source_key}: NoSuchKey")
        self.objects[dest_key] = self.objects[source_key]

    async def delete(self, key: str) -> None:
        if not key:
            return
        self._enter("delete", key)
        self.objects.pop(key, None)


class FixedClock:
    """Deterministic naive-UTC clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingLogger:
    """Stands in for a structlog logger and keeps what it was given."""

    def __init__(self):
        self.entries: list[tuple[str, str, dict]] = []

    def _record(self, level: str, event: str, **kwargs) -> None:
        self.entries.append((level, event, kwargs))

    def debug(self, event: str, **kwargs) -> None:
        self._record("debug", event, **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self._record("error", event, **kwargs)

    def event_types(self) -> list[str]:
        return [kwargs.get("event_type") for _, _, kwargs in self.entries]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 15, 10, 30, 0))


@pytest.fixture
def upload_settings() -> UploadSettings:
    return UploadSettings(
        staging_prefix="staging",
        permanent_prefix="transactions",
        credential_ttl_seconds=900,
        max_file_size_bytes=10 * 1024 * 1024,
        allowed_content_types="image/jpeg,image/jpg,image/png,image/webp",
        orphan_max_age_hours=24,
    )


@pytest.fixture
def storage_settings() -> StorageSettings:
    return StorageSettings(
        bucket_name="test-bucket",
        region="us-east-1",
        access_key_id="testing",
        secret_access_key="testing",
        max_attempts=1,
    )


@pytest.fixture
def engine():
    engine = create_engine_from_settings(DatabaseSettings(url="sqlite://"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def ledger(session_factory) -> SqlUploadLedger:
    return SqlUploadLedger(session_factory)


@pytest.fixture
def audit_log() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def audit_logger(audit_log) -> AuditLogger:
    return AuditLogger(logger=audit_log)


@pytest.fixture
def coordinator(store, ledger, upload_settings, audit_logger, clock) -> UploadCoordinator:
    tokens = iter(f"upload-{n}" for n in range(1, 1000))
    return UploadCoordinator(
        store=store,
        ledger=ledger,
        settings=upload_settings,
        audit_logger=audit_logger,
        clock=clock,
        token_factory=lambda: next(tokens),
    )


@pytest.fixture
def repository(session_factory) -> SqlTransactionRepository:
    return SqlTransactionRepository(session_factory)


@pytest.fixture
def transaction_service(repository, store, coordinator, upload_settings, audit_logger) -> TransactionService:
    return TransactionService(
        repository=repository,
        store=store,
        coordinator=coordinator,
        settings=upload_settings,
        audit_logger=audit_logger,
    )
