"""Blob store abstraction and S3 implementation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from invoice_pipeline.errors import NotFoundError, StoreError
from invoice_pipeline.models import Blob

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class BlobStore(Protocol):
    """Protocol for opaque blob storage addressed by (bucket, key)."""

    def get(self, bucket: str, key: str) -> Blob: ...

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None: ...


class S3BlobStore:
    """S3 implementation of BlobStore."""

    def __init__(self, client: S3Client) -> None:
        self.client = client

    def get(self, bucket: str, key: str) -> Blob:
        """Fetch an object's bytes and content metadata."""
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            data = response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _MISSING_KEY_CODES:
                msg = f"Object s3://{bucket}/{key} does not exist"
                raise NotFoundError(msg) from e
            msg = f"Failed to read s3://{bucket}/{key}: {e}"
            raise StoreError(msg) from e
        except BotoCoreError as e:
            msg = f"Failed to read s3://{bucket}/{key}: {e}"
            raise StoreError(msg) from e

        logger.debug("Read %d bytes from s3://%s/%s", len(data), bucket, key)
        return Blob(
            data=data,
            content_type=response.get("ContentType"),
            content_length=response.get("ContentLength", len(data)),
        )

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Write an object, overwriting any existing one at the same key."""
        try:
            self.client.put_object(
                Bucket=bucket, Key=key, Body=data, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to write s3://{bucket}/{key}: {e}"
            raise StoreError(msg) from e
        logger.debug("Wrote %d bytes to s3://%s/%s", len(data), bucket, key)
