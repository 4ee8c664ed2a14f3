"""
Upload Models

One UploadRecord exists per presigned PUT credential ever issued. Records
are never deleted: terminal states are kept for audit and so that a
replayed upload id is recognised as already consumed.

STATE MACHINE:
    pending -> completed
    pending -> failed
    pending -> expired

There is no path back to pending. "completed" means the object was seen in
the store; it is only *consumed* once linked_record_id is set.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class UploadStatus(str, Enum):
    """Lifecycle state of a staged upload."""
    PENDING = "pending"      # Credential issued, object not yet confirmed
    COMPLETED = "completed"  # Object confirmed in store (and maybe linked)
    FAILED = "failed"
    EXPIRED = "expired"      # Reclaimed as an orphan

    @property
    def is_terminal(self) -> bool:
        return self is not UploadStatus.PENDING


class UploadRecord(BaseModel):
    """
    Durable record of a requested upload.

    staging_key, content_type and declared_size are fixed at credential
    issuance. The declared size and type scope the credential; they are
    never treated as proof of what was actually uploaded.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Internal identity"
    )
    upload_token: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Client-facing correlation handle (the upload id)"
    )
    staging_key: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Object key under the staging prefix"
    )
    content_type: str = Field(..., max_length=100)
    declared_size: int = Field(..., ge=1)
    status: UploadStatus = Field(default=UploadStatus.PENDING)
    credential_expires_at: datetime = Field(
        ...,
        description="After this the PUT credential is unusable"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    linked_record_id: Optional[UUID] = Field(
        default=None,
        description="Transaction this upload was consumed by; set exactly once"
    )

    @property
    def is_linked(self) -> bool:
        return self.linked_record_id is not None


class UploadCredentialRequest(BaseModel):
    """Body of a credential request: {content_type, file_size}."""

    content_type: str = Field(..., min_length=1, max_length=100)
    file_size: int = Field(..., ge=1)


class UploadCredential(BaseModel):
    """
    Everything a client needs to PUT its file straight to the store.

    The client must send exactly the listed headers; the signature is
    scoped to the content type.
    """

    upload_id: str
    presigned_url: str
    method: str = "PUT"
    headers: dict[str, str] = Field(default_factory=dict)
    key: str
    expires_at: datetime


class UploadStatusView(BaseModel):
    """What a client sees when it polls an upload."""

    upload_id: str
    status: UploadStatus
    key: str
    content_type: str
    file_size: int
    created_at: datetime
    completed_at: Optional[datetime] = None
    linked: bool = False

    @classmethod
    def from_record(cls, record: UploadRecord) -> "UploadStatusView":
        return cls(
            upload_id=record.upload_token,
            status=record.status,
            key=record.staging_key,
            content_type=record.content_type,
            file_size=record.declared_size,
            created_at=record.created_at,
            completed_at=record.completed_at,
            linked=record.is_linked,
        )
