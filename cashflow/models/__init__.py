"""
Data Models Package

This package contains all Pydantic models used in Cashflow.
All data flowing through the system must conform to these schemas.
"""

from cashflow.models.upload import (
    UploadCredential,
    UploadCredentialRequest,
    UploadRecord,
    UploadStatus,
    UploadStatusView,
)
from cashflow.models.transaction import (
    CreateTransactionRequest,
    MonthlyAggregate,
    Transaction,
    TransactionPage,
    TransactionType,
)
from cashflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Upload models
    "UploadCredential",
    "UploadCredentialRequest",
    "UploadRecord",
    "UploadStatus",
    "UploadStatusView",
    # Transaction models
    "CreateTransactionRequest",
    "MonthlyAggregate",
    "Transaction",
    "TransactionPage",
    "TransactionType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
