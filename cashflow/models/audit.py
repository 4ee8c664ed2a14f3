"""
Audit Models for Cashflow

Every milestone of an upload's lifecycle, and every change to the ledger,
is emitted as a typed audit event. This provides:
1. Traceability of an upload from credential to linked transaction
2. Debugging information when promotion or cleanup goes wrong
3. A record of the known inconsistency windows when they are hit

DESIGN DECISION: Audit events are append-only and never alter control flow.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Upload lifecycle
    CREDENTIAL_ISSUED = "credential_issued"
    UPLOAD_CONFIRMED = "upload_confirmed"
    UPLOAD_PROMOTED = "upload_promoted"
    UPLOAD_LINKED = "upload_linked"
    STAGING_CLEANUP_FAILED = "staging_cleanup_failed"
    ORPHAN_EXPIRED = "orphan_expired"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_DELETED = "transaction_deleted"

    # System events
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'upload', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.credential_issued(upload_id, key, size)
        event = AuditEventBuilder.upload_linked(upload_id, transaction_id, key)
    """

    @staticmethod
    def credential_issued(
        upload_id: str,
        key: str,
        file_size: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_ISSUED,
            entity_type="upload",
            entity_id=upload_id,
            correlation_id=correlation_id,
            description=f"Upload credential issued for {key}",
            details={"key": key, "file_size": file_size},
        )

    @staticmethod
    def upload_confirmed(upload_id: str, key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPLOAD_CONFIRMED,
            entity_type="upload",
            entity_id=upload_id,
            description="Staged object found in store",
            details={"key": key},
        )

    @staticmethod
    def upload_promoted(upload_id: str, staging_key: str, permanent_key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPLOAD_PROMOTED,
            entity_type="upload",
            entity_id=upload_id,
            description="Upload moved to permanent storage",
            details={"from": staging_key, "to": permanent_key},
        )

    @staticmethod
    def upload_linked(
        upload_id: str,
        transaction_id: UUID,
        permanent_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPLOAD_LINKED,
            entity_type="upload",
            entity_id=upload_id,
            correlation_id=correlation_id,
            description="Upload verified and linked to transaction",
            details={
                "transaction_id": str(transaction_id),
                "key": permanent_key,
            },
        )

    @staticmethod
    def staging_cleanup_failed(upload_id: str, key: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STAGING_CLEANUP_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="upload",
            entity_id=upload_id,
            description="Staging object left behind after promotion",
            details={"key": key},
            error_message=error_message,
        )

    @staticmethod
    def orphan_expired(upload_id: str, key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORPHAN_EXPIRED,
            entity_type="upload",
            entity_id=upload_id,
            description="Unlinked upload reclaimed",
            details={"key": key},
        )

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        transaction_type: str,
        amount: str,
        has_image: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description=f"Transaction recorded: {transaction_type} {amount}",
            details={
                "type": transaction_type,
                "amount": amount,
                "has_image": has_image,
            },
        )

    @staticmethod
    def transaction_deleted(transaction_id: UUID, image_key: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=str(transaction_id),
            description="Transaction deleted",
            details={"image_key": image_key},
        )

    @staticmethod
    def external_service_error(
        service: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service, "operation": operation},
            correlation_id=correlation_id,
        )
