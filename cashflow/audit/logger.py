"""
Logging and Audit

DESIGN DECISION: Logging is structured (structlog over stdlib logging) so
every line carries machine-readable context such as upload_id, key and
error. Upload lifecycle milestones are additionally emitted as typed
AuditEvents.

The audit logger:
- Never raises (a broken log sink must not fail a ledger write)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from cashflow.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure stdlib logging and structlog once at process startup.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Writes every event to the structured log at a level matching its
    severity.
    """

    def __init__(self, logger=None):
        self._logger = logger or structlog.get_logger("cashflow.audit")

    def log(self, event: AuditEvent) -> None:
        """Log an audit event. Failures to log are reported, never raised."""
        log_dict = event.to_log_dict()
        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            print(f"audit logging failed: {e}", file=sys.stderr)

    def log_credential_issued(
        self,
        upload_id: str,
        key: str,
        file_size: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.credential_issued(
            upload_id=upload_id,
            key=key,
            file_size=file_size,
            correlation_id=correlation_id,
        ))

    def log_upload_confirmed(self, upload_id: str, key: str) -> None:
        self.log(AuditEventBuilder.upload_confirmed(upload_id=upload_id, key=key))

    def log_upload_promoted(self, upload_id: str, staging_key: str, permanent_key: str) -> None:
        self.log(AuditEventBuilder.upload_promoted(
            upload_id=upload_id,
            staging_key=staging_key,
            permanent_key=permanent_key,
        ))

    def log_upload_linked(
        self,
        upload_id: str,
        transaction_id: UUID,
        permanent_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.upload_linked(
            upload_id=upload_id,
            transaction_id=transaction_id,
            permanent_key=permanent_key,
            correlation_id=correlation_id,
        ))

    def log_staging_cleanup_failed(self, upload_id: str, key: str, error_message: str) -> None:
        self.log(AuditEventBuilder.staging_cleanup_failed(
            upload_id=upload_id,
            key=key,
            error_message=error_message,
        ))

    def log_orphan_expired(self, upload_id: str, key: str) -> None:
        self.log(AuditEventBuilder.orphan_expired(upload_id=upload_id, key=key))

    def log_transaction_created(
        self,
        transaction_id: UUID,
        transaction_type: str,
        amount: str,
        has_image: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            has_image=has_image,
            correlation_id=correlation_id,
        ))

    def log_transaction_deleted(self, transaction_id: UUID, image_key: Optional[str]) -> None:
        self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            image_key=image_key,
        ))

    def log_external_service_error(
        self,
        service: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.external_service_error(
            service=service,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., adding a receipt).
    Pass it through all subsequent operations.
    """
    return uuid4()
