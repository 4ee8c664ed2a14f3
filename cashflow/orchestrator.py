"""
Component wiring for Cashflow

This module ties together all the components and exposes the two process
entry points:
1. HTTP API (uvicorn serving create_app(components))
2. Operator UI and maintenance jobs (which use the components directly)

DESIGN DECISION: Components are built once, from Settings, in one place.
Nothing below this module reads configuration on its own; everything it
needs is passed in. Swapping the object store or database for tests is a
matter of building AppComponents by hand.
"""

from typing import NamedTuple, Optional

import structlog
from sqlalchemy.engine import Engine

from cashflow.audit import AuditLogger, configure_logging
from cashflow.config import Settings, get_settings
from cashflow.services import (
    ObjectStoreInterface,
    S3ObjectStore,
    SqlUploadLedger,
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from cashflow.transactions import SqlTransactionRepository, TransactionService
from cashflow.uploads import UploadCoordinator


logger = structlog.get_logger(__name__)


class AppComponents(NamedTuple):
    """Everything a process needs to serve the ledger."""
    engine: Engine
    store: ObjectStoreInterface
    coordinator: UploadCoordinator
    transactions: TransactionService
    audit_logger: AuditLogger


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[ObjectStoreInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from; defaults to get_settings()
        store: Object store to use instead of S3 (tests, local runs)

    Returns:
        AppComponents with engine, store, coordinator and transaction service
    """
    settings = settings or get_settings()
    app_settings = settings.app
    upload_settings = settings.uploads

    log_level = "DEBUG" if app_settings.debug_mode else app_settings.log_level
    configure_logging(level=log_level, json_output=app_settings.log_json)

    engine = create_engine_from_settings(settings.database)
    init_db(engine)
    session_factory = create_session_factory(engine)

    if store is None:
        store = S3ObjectStore(settings.storage)

    audit_logger = AuditLogger()

    coordinator = UploadCoordinator(
        store=store,
        ledger=SqlUploadLedger(session_factory),
        settings=upload_settings,
        audit_logger=audit_logger,
    )

    transactions = TransactionService(
        repository=SqlTransactionRepository(session_factory),
        store=store,
        coordinator=coordinator,
        settings=upload_settings,
        audit_logger=audit_logger,
    )

    logger.info(
        "components_initialized",
        environment=app_settings.app_environment,
        database=engine.url.get_backend_name(),
    )

    return AppComponents(
        engine=engine,
        store=store,
        coordinator=coordinator,
        transactions=transactions,
        audit_logger=audit_logger,
    )


def serve() -> None:
    """Run the HTTP API under uvicorn (console script: cashflow-api)."""
    import uvicorn

    from cashflow.api import create_app

    settings = get_settings()
    components = create_app_components(settings)
    app = create_app(components, cors_origins=settings.app.cors_origins_list)

    uvicorn.run(
        app,
        host=settings.app.host,
        port=settings.app.port,
        log_config=None,
    )
