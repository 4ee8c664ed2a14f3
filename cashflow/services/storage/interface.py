"""
Abstract Object Store Interface

DESIGN DECISION: The coordinator and the transaction service only see this
interface. This allows us to:
1. Run against S3 or any S3-compatible store
2. Use an in-memory store for testing
3. Keep retry and error translation in one adapter

Every method is a network round trip and is therefore async, so a caller
that is cancelled stops waiting immediately.

Error contract:
- "Not found" is never an error: exists() returns False
- Connectivity and permission failures raise StoreError
- Failing to sign a URL raises CredentialError
- Empty keys are no-ops for delete() and issue_get_credential()
"""

from abc import ABC, abstractmethod
from typing import Optional


class ObjectStoreInterface(ABC):
    """Capability contract for the remote object store."""

    @abstractmethod
    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        """
        Store bytes under key.

        Raises:
            StoreError: If the upload fails
        """
        pass

    @abstractmethod
    async def issue_put_credential(self, key: str, content_type: str, ttl_seconds: int) -> str:
        """
        Issue a presigned PUT URL scoped to one key and content type.

        Raises:
            CredentialError: If the URL cannot be signed
        """
        pass

    @abstractmethod
    async def issue_get_credential(self, key: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Issue a presigned GET URL for serving an object back to clients.

        Returns "" for an empty key.

        Raises:
            CredentialError: If the URL cannot be signed
        """
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            StoreError: On connectivity or permission failures only
        """
        pass

    @abstractmethod
    async def copy(self, source_key: str, dest_key: str) -> None:
        """
        Server-side copy within the bucket.

        Raises:
            StoreError: If the copy fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete an object. Deleting an empty key is a successful no-op.

        Raises:
            StoreError: If the delete fails
        """
        pass
