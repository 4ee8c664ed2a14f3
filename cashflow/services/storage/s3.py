"""
S3 Object Store

Implements ObjectStoreInterface with boto3.

boto3 is synchronous, so every SDK call runs in a worker thread via
asyncio.to_thread. A cancelled caller stops awaiting right away; the
in-flight HTTP request finishes in the background and its result is
discarded.

Retries are owned by tenacity, not botocore: transient failures (5xx,
throttling, connection errors) are retried with exponential backoff, while
403/404-style answers are returned or raised immediately.
"""

import asyncio
from typing import Any, Callable, Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cashflow.config import StorageSettings
from cashflow.errors import CredentialError, StoreError
from cashflow.services.storage.interface import ObjectStoreInterface


logger = structlog.get_logger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
THROTTLING_CODES = {"RequestTimeout", "SlowDown", "Throttling", "ThrottlingException"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _http_status(error: ClientError) -> int:
    return int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def is_not_found(error: ClientError) -> bool:
    """True when S3 answered that the key does not exist."""
    return _error_code(error) in NOT_FOUND_CODES or _http_status(error) == 404


def is_retryable(error: BaseException) -> bool:
    """Connection problems, throttling and 5xx answers are worth retrying."""
    if isinstance(error, ClientError):
        return _error_code(error) in THROTTLING_CODES or _http_status(error) >= 500
    return isinstance(error, BotoCoreError)


def create_s3_client(settings: StorageSettings):
    """Build a boto3 S3 client from explicit settings."""
    return boto3.client(
        "s3",
        region_name=settings.region,
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        endpoint_url=settings.endpoint_url,
        config=Config(
            signature_version="s3v4",
            retries={"max_attempts": 1, "mode": "standard"},
            connect_timeout=3,
            read_timeout=10,
        ),
    )


class S3ObjectStore(ObjectStoreInterface):
    """
    S3-backed object store.

    The bucket, region and credentials come from the StorageSettings passed
    in at construction; nothing is read from the environment here.
    """

    def __init__(self, settings: StorageSettings, client: Optional[Any] = None):
        self._settings = settings
        self._bucket = settings.bucket_name
        self._client = client or create_s3_client(settings)

    async def _call(self, operation: str, fn: Callable, **kwargs) -> Any:
        """Run one SDK call off the event loop, retrying transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "s3_retry",
                        operation=operation,
                        attempt=attempt.retry_state.attempt_number,
                    )
                result = await asyncio.to_thread(fn, **kwargs)
        return result

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await self._call(
                "put_object",
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"uploading {key}: {e}") from e

    async def issue_put_credential(self, key: str, content_type: str, ttl_seconds: int) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="put_object",
                Params={
                    "Bucket": self._bucket,
                    "Key": key,
                    "ContentType": content_type,
                },
                ExpiresIn=ttl_seconds,
                HttpMethod="PUT",
            )
        except (BotoCoreError, ClientError) as e:
            raise CredentialError(f"generating presigned PUT URL: {e}") from e

    async def issue_get_credential(self, key: str, ttl_seconds: Optional[int] = None) -> str:
        if not key:
            return ""

        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=ttl_seconds or self._settings.url_expiration_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise CredentialError(f"generating presigned GET URL: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            await self._call(
                "head_object",
                self._client.head_object,
                Bucket=self._bucket,
                Key=key,
            )
        except ClientError as e:
            if is_not_found(e):
                return False
            raise StoreError(f"checking object existence: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"checking object existence: {e}") from e

        return True

    async def copy(self, source_key: str, dest_key: str) -> None:
        try:
            await self._call(
                "copy_object",
                self._client.copy_object,
                Bucket=self._bucket,
                CopySource={"Bucket": self._bucket, "Key": source_key},
                Key=dest_key,
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"copying {source_key} to {dest_key}: {e}") from e

    async def delete(self, key: str) -> None:
        if not key:
            return

        try:
            await self._call(
                "delete_object",
                self._client.delete_object,
                Bucket=self._bucket,
                Key=key,
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"deleting {key}: {e}") from e
