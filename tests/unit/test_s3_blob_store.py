"""
Unit Tests: S3 Blob Store
═══════════════════════════
Tests for docdump/storage/s3.py

Coverage:
  ✅ Objects are keyed under owners/<owner>/documents/ with a sanitized tail
  ✅ SSE-KMS params only when a KMS key is configured
  ✅ source_ref round-trips through parse_source_ref
  ✅ NoSuchKey on fetch → BlobNotFoundError; other ClientErrors propagate
  ✅ delete never raises; failures return False
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from docdump.storage.base import BlobNotFoundError
from docdump.storage.s3 import S3BlobStore, parse_source_ref


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "test"}}, "operation")


def _build_s3_mock(body: bytes = b"%PDF-1.4") -> AsyncMock:
    """Build a mock S3 client context manager."""
    s3 = AsyncMock()
    s3.__aenter__ = AsyncMock(return_value=s3)
    s3.__aexit__  = AsyncMock(return_value=None)
    stream = MagicMock()
    stream.read = AsyncMock(return_value=body)
    s3.put_object    = AsyncMock(return_value={"ETag": '"etag"'})
    s3.get_object    = AsyncMock(return_value={"Body": stream})
    s3.delete_object = AsyncMock(return_value={})
    return s3


def _store(s3_mock: AsyncMock, kms_key_arn: str | None = None) -> tuple[S3BlobStore, MagicMock]:
    patcher = patch("docdump.storage.s3.aioboto3.Session")
    mock_session = patcher.start()
    mock_session.return_value.client.return_value = s3_mock
    store = S3BlobStore("test-bucket", kms_key_arn=kms_key_arn)
    patcher.stop()
    return store, mock_session


# ─────────────────────────────────────────────────────────────────────────────
# Tests
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.s3
class TestS3BlobStore:

    async def test_store_keys_object_under_owner_prefix(self):
        s3 = _build_s3_mock()
        store, _ = _store(s3)

        ref = await store.store(b"data", "owner-1", "../../My Scan (1).png", "image/png")

        kwargs = s3.put_object.await_args.kwargs
        assert kwargs["Bucket"] == "test-bucket"
        assert kwargs["Key"].startswith("owners/owner-1/documents/")
        assert kwargs["Key"].endswith("-My_Scan__1_.png")
        assert ".." not in kwargs["Key"]
        assert kwargs["ContentType"] == "image/png"
        assert ref == f"s3://test-bucket/{kwargs['Key']}"

    async def test_sse_kms_params_sent_when_key_configured(self):
        s3 = _build_s3_mock()
        store, _ = _store(s3, kms_key_arn="arn:aws:kms:us-east-1:000:key/test")

        await store.store(b"data", "owner-1", "a.pdf", "application/pdf")

        kwargs = s3.put_object.await_args.kwargs
        assert kwargs["ServerSideEncryption"] == "aws:kms"
        assert kwargs["SSEKMSKeyId"] == "arn:aws:kms:us-east-1:000:key/test"

    async def test_no_sse_params_without_key(self):
        s3 = _build_s3_mock()
        store, _ = _store(s3)

        await store.store(b"data", "owner-1", "a.pdf", "application/pdf")

        assert "ServerSideEncryption" not in s3.put_object.await_args.kwargs

    async def test_fetch_reads_body(self):
        s3 = _build_s3_mock(body=b"hello")
        store, _ = _store(s3)

        data = await store.fetch("s3://test-bucket/owners/o/documents/x.pdf")

        assert data == b"hello"
        s3.get_object.assert_awaited_once_with(Bucket="test-bucket", Key="owners/o/documents/x.pdf")

    async def test_missing_key_raises_blob_not_found(self):
        s3 = _build_s3_mock()
        s3.get_object.side_effect = _client_error("NoSuchKey")
        store, _ = _store(s3)

        with pytest.raises(BlobNotFoundError):
            await store.fetch("s3://test-bucket/owners/o/documents/x.pdf")

    async def test_other_client_errors_propagate(self):
        s3 = _build_s3_mock()
        s3.get_object.side_effect = _client_error("AccessDenied")
        store, _ = _store(s3)

        with pytest.raises(ClientError):
            await store.fetch("s3://test-bucket/owners/o/documents/x.pdf")

    async def test_delete_success_and_failure(self):
        s3 = _build_s3_mock()
        store, _ = _store(s3)

        assert await store.delete("s3://test-bucket/owners/o/documents/x.pdf") is True

        s3.delete_object.side_effect = _client_error("AccessDenied")
        assert await store.delete("s3://test-bucket/owners/o/documents/x.pdf") is False

    async def test_delete_of_malformed_ref_returns_false(self):
        store, _ = _store(_build_s3_mock())
        assert await store.delete("file:///tmp/x") is False


@pytest.mark.unit
@pytest.mark.s3
class TestParseSourceRef:

    def test_splits_bucket_and_key(self):
        assert parse_source_ref("s3://b/owners/o/documents/k.png") == ("b", "owners/o/documents/k.png")

    @pytest.mark.parametrize("ref", ["file:///x", "s3://", "s3://bucket-only", "s3:///key"])
    def test_rejects_malformed_refs(self, ref):
        with pytest.raises(ValueError):
            parse_source_ref(ref)
