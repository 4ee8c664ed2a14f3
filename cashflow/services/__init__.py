"""Services package."""

from cashflow.services.database import (
    Base,
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from cashflow.services.ledger import (
    SqlUploadLedger,
    UploadLedgerInterface,
)
from cashflow.services.storage import (
    ObjectStoreInterface,
    S3ObjectStore,
    create_s3_client,
)

__all__ = [
    # Database
    "Base",
    "create_engine_from_settings",
    "create_session_factory",
    "init_db",
    # Upload ledger
    "SqlUploadLedger",
    "UploadLedgerInterface",
    # Object storage
    "ObjectStoreInterface",
    "S3ObjectStore",
    "create_s3_client",
]
