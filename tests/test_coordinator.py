"""
Tests for the upload coordinator.

Runs against the in-memory store and an in-memory SQLite ledger, so every
step of the lifecycle (issue, poll, promote, link, reclaim) is observed
through the real persistence code.
"""

import asyncio
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from cashflow.config import DatabaseSettings
from cashflow.errors import (
    ConflictError,
    CredentialError,
    NotFoundError,
    PersistenceError,
    PromotionError,
    StoreError,
    ValidationError,
)
from cashflow.models import AuditEventType, UploadStatus
from cashflow.services.database import (
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from cashflow.services.ledger import SqlUploadLedger
from cashflow.uploads import (
    UploadCoordinator,
    build_staging_key,
    extension_for,
    to_permanent_key,
)


class BrokenLedger:
    """Wraps a ledger and fails the named operations with PersistenceError."""

    def __init__(self, inner, *failing: str):
        self._inner = inner
        self._failing = set(failing)

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if name not in self._failing:
            return attr

        async def _fail(*args, **kwargs):
            raise PersistenceError(f"{name}: database is locked")

        return _fail


class StaleLedger:
    """Wraps a ledger whose conditional status writes always lose the race."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def mark_completed(self, upload_token, completed_at):
        return False

    async def mark_expired(self, upload_token):
        return False


class TestKeyHelpers:
    """Tests for key derivation."""

    @pytest.mark.parametrize("content_type, ext", [
        ("image/jpeg", ".jpg"),
        ("image/jpg", ".jpg"),
        ("image/png", ".png"),
        ("image/webp", ".webp"),
        ("image/heic", ".heic"),
        ("garbage", ".jpg"),
        ("image/", ".jpg"),
    ])
    def test_extension_for(self, content_type, ext):
        assert extension_for(content_type) == ext

    def test_build_staging_key(self):
        issued_at = datetime(2024, 3, 15, 10, 30, 0)
        key = build_staging_key("staging", "tok", issued_at, "image/png")
        assert key == "staging/2024/03/tok_1710498600.png"

    def test_to_permanent_key_keeps_tail(self):
        key = to_permanent_key("staging/2024/03/tok_1710498600.png", "staging", "transactions")
        assert key == "transactions/2024/03/tok_1710498600.png"

    def test_to_permanent_key_rejects_foreign_key(self):
        with pytest.raises(PromotionError):
            to_permanent_key("other/2024/03/tok.png", "staging", "transactions")


@pytest.mark.anyio
class TestRequestCredential:
    """Tests for credential issuance."""

    @pytest.mark.parametrize("content_type, ext", [
        ("image/jpeg", ".jpg"),
        ("image/jpg", ".jpg"),
        ("image/png", ".png"),
        ("image/webp", ".webp"),
    ])
    async def test_staging_key_has_month_and_extension(self, coordinator, content_type, ext):
        credential = await coordinator.request_credential(content_type, 1024)

        assert credential.key.startswith("staging/2024/03/")
        assert credential.key.endswith(ext)
        assert credential.upload_id in credential.key

    async def test_credential_shape(self, coordinator, clock):
        credential = await coordinator.request_credential("image/png", 2 * 1024 * 1024)

        assert credential.method == "PUT"
        assert credential.headers == {"Content-Type": "image/png"}
        assert credential.presigned_url.startswith("https://store.test/")
        assert credential.expires_at == clock.now + timedelta(minutes=15)

    async def test_records_pending_upload(self, coordinator, ledger):
        credential = await coordinator.request_credential("image/jpeg", 5000)

        record = await ledger.get_by_token(credential.upload_id)
        assert record.status == UploadStatus.PENDING
        assert record.staging_key == credential.key
        assert record.declared_size == 5000
        assert record.linked_record_id is None

    async def test_accepts_maximum_size(self, coordinator):
        credential = await coordinator.request_credential("image/jpeg", 10_485_760)
        assert credential.upload_id

    async def test_rejects_oversized(self, coordinator, store):
        with pytest.raises(ValidationError):
            await coordinator.request_credential("image/jpeg", 10_485_761)
        assert store.calls_for("issue_put_credential") == []

    async def test_rejects_zero_size(self, coordinator):
        with pytest.raises(ValidationError):
            await coordinator.request_credential("image/jpeg", 0)

    @pytest.mark.parametrize("content_type", [
        "application/pdf",
        "image/gif",
        "text/plain",
        "",
    ])
    async def test_rejects_content_type(self, coordinator, content_type):
        with pytest.raises(ValidationError):
            await coordinator.request_credential(content_type, 1024)

    async def test_credential_failure_propagates(self, coordinator, store, ledger):
        store.fail("issue_put_credential", CredentialError("store unreachable"))

        with pytest.raises(CredentialError):
            await coordinator.request_credential("image/jpeg", 1024)

        with pytest.raises(NotFoundError):
            await ledger.get_by_token("upload-1")

    async def test_persistence_failure_discards_credential(
        self, store, ledger, upload_settings, clock
    ):
        coordinator = UploadCoordinator(
            store=store,
            ledger=BrokenLedger(ledger, "create"),
            settings=upload_settings,
            clock=clock,
        )

        with pytest.raises(PersistenceError):
            await coordinator.request_credential("image/jpeg", 1024)

    async def test_audits_issuance(self, coordinator, audit_log):
        await coordinator.request_credential("image/jpeg", 1024)
        assert AuditEventType.CREDENTIAL_ISSUED.value in audit_log.event_types()


@pytest.mark.anyio
class TestGetStatus:
    """Tests for status polling."""

    async def test_unknown_upload(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.get_status("nope")

    async def test_pending_while_object_absent(self, coordinator):
        credential = await coordinator.request_credential("image/jpeg", 1024)

        view = await coordinator.get_status(credential.upload_id)

        assert view.status == UploadStatus.PENDING
        assert view.completed_at is None

    async def test_completes_when_object_present(self, coordinator, store, ledger, clock):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        view = await coordinator.get_status(credential.upload_id)

        assert view.status == UploadStatus.COMPLETED
        assert view.completed_at == clock.now
        record = await ledger.get_by_token(credential.upload_id)
        assert record.status == UploadStatus.COMPLETED

    async def test_reports_observed_state_when_persist_fails(
        self, store, ledger, upload_settings, clock
    ):
        setup = UploadCoordinator(store=store, ledger=ledger, settings=upload_settings, clock=clock)
        credential = await setup.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        coordinator = UploadCoordinator(
            store=store,
            ledger=BrokenLedger(ledger, "mark_completed"),
            settings=upload_settings,
            clock=clock,
        )
        view = await coordinator.get_status(credential.upload_id)

        assert view.status == UploadStatus.COMPLETED
        record = await ledger.get_by_token(credential.upload_id)
        assert record.status == UploadStatus.PENDING

    async def test_store_failure_reads_as_pending(self, coordinator, store):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.fail("exists")

        view = await coordinator.get_status(credential.upload_id)

        assert view.status == UploadStatus.PENDING

    async def test_terminal_record_not_rechecked(self, coordinator, store, ledger):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        await ledger.mark_expired(credential.upload_id)
        store.client_put(credential.key)

        view = await coordinator.get_status(credential.upload_id)

        assert view.status == UploadStatus.EXPIRED
        assert store.calls_for("exists") == []

    async def test_audits_confirmation(self, coordinator, store, audit_log):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        await coordinator.get_status(credential.upload_id)

        assert AuditEventType.UPLOAD_CONFIRMED.value in audit_log.event_types()

    async def test_no_confirmation_audit_when_write_moves_nothing(
        self, store, ledger, upload_settings, audit_logger, audit_log, clock
    ):
        setup = UploadCoordinator(store=store, ledger=ledger, settings=upload_settings, clock=clock)
        credential = await setup.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        coordinator = UploadCoordinator(
            store=store,
            ledger=StaleLedger(ledger),
            settings=upload_settings,
            audit_logger=audit_logger,
            clock=clock,
        )
        view = await coordinator.get_status(credential.upload_id)

        assert view.status == UploadStatus.COMPLETED
        assert AuditEventType.UPLOAD_CONFIRMED.value not in audit_log.event_types()


@pytest.mark.anyio
class TestVerifyAndLink:
    """Tests for promotion and at-most-once linking."""

    async def test_empty_token_is_noop(self, coordinator, store):
        assert await coordinator.verify_and_link("", uuid4()) == ""
        assert store.calls == []

    async def test_unknown_token(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.verify_and_link("nope", uuid4())

    async def test_promotes_and_links(self, coordinator, store, ledger, clock):
        credential = await coordinator.request_credential("image/png", 2 * 1024 * 1024)
        store.client_put(credential.key, content_type="image/png")
        record_id = uuid4()

        permanent_key = await coordinator.verify_and_link(credential.upload_id, record_id)

        assert permanent_key == credential.key.replace("staging/", "transactions/", 1)
        assert permanent_key in store.objects
        assert credential.key not in store.objects

        record = await ledger.get_by_token(credential.upload_id)
        assert record.status == UploadStatus.COMPLETED
        assert record.linked_record_id == record_id
        assert record.completed_at == clock.now

    async def test_operation_order(self, coordinator, store):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)
        store.calls.clear()

        await coordinator.verify_and_link(credential.upload_id, uuid4())

        assert [op for op, _ in store.calls] == ["exists", "copy", "delete"]

    async def test_second_link_conflicts(self, coordinator, store):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        first = await coordinator.verify_and_link(credential.upload_id, uuid4())
        assert first

        with pytest.raises(ConflictError):
            await coordinator.verify_and_link(credential.upload_id, uuid4())

    async def test_missing_object_leaves_record_pending(self, coordinator, ledger):
        credential = await coordinator.request_credential("image/jpeg", 1024)

        with pytest.raises(NotFoundError, match="uploaded file not found"):
            await coordinator.verify_and_link(credential.upload_id, uuid4())

        record = await ledger.get_by_token(credential.upload_id)
        assert record.status == UploadStatus.PENDING
        assert record.linked_record_id is None

    async def test_existence_check_failure_propagates(self, coordinator, store):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)
        store.fail("exists")

        with pytest.raises(StoreError):
            await coordinator.verify_and_link(credential.upload_id, uuid4())

    async def test_copy_failure_is_promotion_error(self, coordinator, store, ledger):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)
        store.fail("copy")

        with pytest.raises(PromotionError):
            await coordinator.verify_and_link(credential.upload_id, uuid4())

        record = await ledger.get_by_token(credential.upload_id)
        assert record.status == UploadStatus.PENDING
        assert credential.key in store.objects

        # Safe to retry once the store recovers
        store.heal("copy")
        assert await coordinator.verify_and_link(credential.upload_id, uuid4())

    async def test_expired_upload_is_not_promoted(self, coordinator, store, ledger, clock):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)
        clock.advance(hours=25)
        store.fail("delete")
        await coordinator.reclaim_orphans(timedelta(hours=24))
        store.heal("delete")
        assert credential.key in store.objects

        with pytest.raises(ConflictError):
            await coordinator.verify_and_link(credential.upload_id, uuid4())

        record = await ledger.get_by_token(credential.upload_id)
        assert record.status == UploadStatus.EXPIRED
        assert record.linked_record_id is None
        assert store.calls_for("copy") == []
        assert store.calls_for("exists") == []

    async def test_staging_prefix_change_is_promotion_error(
        self, store, ledger, upload_settings, clock
    ):
        setup = UploadCoordinator(store=store, ledger=ledger, settings=upload_settings, clock=clock)
        credential = await setup.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        coordinator = UploadCoordinator(
            store=store,
            ledger=ledger,
            settings=upload_settings.model_copy(update={"staging_prefix": "incoming"}),
            clock=clock,
        )
        with pytest.raises(PromotionError):
            await coordinator.verify_and_link(credential.upload_id, uuid4())

        assert not (await ledger.get_by_token(credential.upload_id)).is_linked

    async def test_staging_delete_failure_is_swallowed(self, coordinator, store, ledger, audit_log):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)
        store.fail("delete")
        record_id = uuid4()

        permanent_key = await coordinator.verify_and_link(credential.upload_id, record_id)

        assert permanent_key in store.objects
        assert credential.key in store.objects
        record = await ledger.get_by_token(credential.upload_id)
        assert record.linked_record_id == record_id
        assert AuditEventType.STAGING_CLEANUP_FAILED.value in audit_log.event_types()

    async def test_link_failure_after_promotion_propagates(
        self, store, ledger, upload_settings, clock
    ):
        setup = UploadCoordinator(store=store, ledger=ledger, settings=upload_settings, clock=clock)
        credential = await setup.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        coordinator = UploadCoordinator(
            store=store,
            ledger=BrokenLedger(ledger, "link"),
            settings=upload_settings,
            clock=clock,
        )
        with pytest.raises(PersistenceError):
            await coordinator.verify_and_link(credential.upload_id, uuid4())

        permanent_key = to_permanent_key(credential.key, "staging", "transactions")
        assert permanent_key in store.objects
        assert credential.key not in store.objects

    async def test_retry_after_link_failure_uses_promoted_object(
        self, store, ledger, upload_settings, clock
    ):
        setup = UploadCoordinator(store=store, ledger=ledger, settings=upload_settings, clock=clock)
        credential = await setup.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)

        broken = UploadCoordinator(
            store=store,
            ledger=BrokenLedger(ledger, "link"),
            settings=upload_settings,
            clock=clock,
        )
        with pytest.raises(PersistenceError):
            await broken.verify_and_link(credential.upload_id, uuid4())

        record_id = uuid4()
        store.calls.clear()
        permanent_key = await setup.verify_and_link(credential.upload_id, record_id)

        assert permanent_key == to_permanent_key(credential.key, "staging", "transactions")
        assert store.calls_for("copy") == []
        record = await ledger.get_by_token(credential.upload_id)
        assert record.linked_record_id == record_id

    async def test_concurrent_links_have_one_winner(self, tmp_path, store, upload_settings, clock):
        engine = create_engine_from_settings(
            DatabaseSettings(url=f"sqlite:///{tmp_path / 'race.db'}")
        )
        init_db(engine)
        coordinator = UploadCoordinator(
            store=store,
            ledger=SqlUploadLedger(create_session_factory(engine)),
            settings=upload_settings,
            clock=clock,
        )
        try:
            credential = await coordinator.request_credential("image/jpeg", 1024)
            store.client_put(credential.key)

            results = await asyncio.gather(
                coordinator.verify_and_link(credential.upload_id, uuid4()),
                coordinator.verify_and_link(credential.upload_id, uuid4()),
                return_exceptions=True,
            )
        finally:
            engine.dispose()

        winners = [r for r in results if isinstance(r, str)]
        losers = [r for r in results if isinstance(r, ConflictError)]
        assert len(winners) == 1
        assert len(losers) == 1

    async def test_end_to_end(self, coordinator, store):
        credential = await coordinator.request_credential("image/png", 2 * 1024 * 1024)
        store.client_put(credential.key, content_type="image/png")

        status = await coordinator.get_status(credential.upload_id)
        assert status.status == UploadStatus.COMPLETED

        permanent_key = await coordinator.verify_and_link(credential.upload_id, uuid4())

        assert permanent_key.startswith("transactions/")
        tail = credential.key[len("staging/"):]
        assert permanent_key.endswith(tail)

        status = await coordinator.get_status(credential.upload_id)
        assert status.linked is True

        with pytest.raises(ConflictError):
            await coordinator.verify_and_link(credential.upload_id, uuid4())


@pytest.mark.anyio
class TestReclaimOrphans:
    """Tests for orphan reclamation."""

    async def test_expires_old_and_spares_recent(self, coordinator, store, ledger, clock):
        old = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(old.key)
        clock.advance(hours=24)
        recent = await coordinator.request_credential("image/jpeg", 1024)
        clock.advance(hours=1)

        count = await coordinator.reclaim_orphans(timedelta(hours=24))

        assert count == 1
        assert (await ledger.get_by_token(old.upload_id)).status == UploadStatus.EXPIRED
        assert (await ledger.get_by_token(recent.upload_id)).status == UploadStatus.PENDING
        assert store.calls_for("delete") == [old.key]
        assert old.key not in store.objects

    async def test_defaults_to_configured_age(self, coordinator, ledger, clock):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        clock.advance(hours=25)

        assert await coordinator.reclaim_orphans() == 1
        assert (await ledger.get_by_token(credential.upload_id)).status == UploadStatus.EXPIRED

    async def test_linked_uploads_are_not_orphans(self, coordinator, store, clock):
        credential = await coordinator.request_credential("image/jpeg", 1024)
        store.client_put(credential.key)
        await coordinator.verify_and_link(credential.upload_id, uuid4())
        clock.advance(hours=48)

        assert await coordinator.reclaim_orphans(timedelta(hours=24)) == 0

    async def test_delete_failure_does_not_block(self, coordinator, store, ledger, clock):
        first = await coordinator.request_credential("image/jpeg", 1024)
        second = await coordinator.request_credential("image/jpeg", 1024)
        clock.advance(hours=25)
        store.fail("delete")

        count = await coordinator.reclaim_orphans(timedelta(hours=24))

        assert count == 2
        assert (await ledger.get_by_token(first.upload_id)).status == UploadStatus.EXPIRED
        assert (await ledger.get_by_token(second.upload_id)).status == UploadStatus.EXPIRED

    async def test_status_failure_does_not_block(self, store, ledger, upload_settings, clock):
        setup = UploadCoordinator(store=store, ledger=ledger, settings=upload_settings, clock=clock)
        first = await setup.request_credential("image/jpeg", 1024)
        clock.advance(seconds=1)
        second = await setup.request_credential("image/jpeg", 1024)
        clock.advance(hours=25)

        coordinator = UploadCoordinator(
            store=store,
            ledger=BrokenLedger(ledger, "mark_expired"),
            settings=upload_settings,
            clock=clock,
        )
        count = await coordinator.reclaim_orphans(timedelta(hours=24))

        assert count == 2
        assert store.calls_for("delete") == [first.key, second.key]

    async def test_audits_only_records_that_moved(
        self, store, ledger, upload_settings, audit_logger, audit_log, clock
    ):
        setup = UploadCoordinator(store=store, ledger=ledger, settings=upload_settings, clock=clock)
        await setup.request_credential("image/jpeg", 1024)
        clock.advance(hours=25)

        coordinator = UploadCoordinator(
            store=store,
            ledger=StaleLedger(ledger),
            settings=upload_settings,
            audit_logger=audit_logger,
            clock=clock,
        )
        assert await coordinator.reclaim_orphans(timedelta(hours=24)) == 1

        assert AuditEventType.ORPHAN_EXPIRED.value not in audit_log.event_types()

    async def test_listing_failure_propagates(self, store, ledger, upload_settings, clock):
        coordinator = UploadCoordinator(
            store=store,
            ledger=BrokenLedger(ledger, "list_orphans"),
            settings=upload_settings,
            clock=clock,
        )
        with pytest.raises(PersistenceError):
            await coordinator.reclaim_orphans(timedelta(hours=24))
