"""Tests for invoice_pipeline.store."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from invoice_pipeline.errors import NotFoundError, StoreError
from invoice_pipeline.store import S3BlobStore


class TestS3BlobStore:
    """Tests for S3BlobStore against moto."""

    def test_put_then_get(self, s3_client: Any, attachment_bucket: str) -> None:
        store = S3BlobStore(s3_client)
        store.put(attachment_bucket, "attachments/M1/a.pdf", b"%PDF", "application/pdf")

        blob = store.get(attachment_bucket, "attachments/M1/a.pdf")

        assert blob.data == b"%PDF"
        assert blob.content_type == "application/pdf"
        assert blob.content_length == 4

    def test_put_overwrites(self, s3_client: Any, attachment_bucket: str) -> None:
        store = S3BlobStore(s3_client)
        store.put(attachment_bucket, "k.pdf", b"old", "application/pdf")
        store.put(attachment_bucket, "k.pdf", b"new", "application/pdf")

        assert store.get(attachment_bucket, "k.pdf").data == b"new"

    def test_get_missing_key(self, s3_client: Any, attachment_bucket: str) -> None:
        store = S3BlobStore(s3_client)
        with pytest.raises(NotFoundError, match="does not exist"):
            store.get(attachment_bucket, "missing.pdf")

    def test_get_missing_bucket(self, s3_client: Any) -> None:
        store = S3BlobStore(s3_client)
        with pytest.raises(StoreError):
            store.get("no-such-bucket", "k.pdf")

    def test_put_missing_bucket(self, s3_client: Any) -> None:
        store = S3BlobStore(s3_client)
        with pytest.raises(StoreError, match="Failed to write"):
            store.put("no-such-bucket", "k.pdf", b"x", "application/pdf")


class TestS3BlobStoreErrors:
    """Tests for S3BlobStore error translation with a stubbed client."""

    def test_access_denied_is_not_not_found(self) -> None:
        client = MagicMock()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject"
        )

        with pytest.raises(StoreError) as exc_info:
            S3BlobStore(client).get("bucket", "k.pdf")

        assert not isinstance(exc_info.value, NotFoundError)

    def test_connection_error_on_put(self) -> None:
        client = MagicMock()
        client.put_object.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.amazonaws.com"
        )

        with pytest.raises(StoreError):
            S3BlobStore(client).put("bucket", "k.pdf", b"x", "application/pdf")
