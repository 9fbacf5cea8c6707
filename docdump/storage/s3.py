"""
S3 Blob Store (owner-partitioned)

Every object is stored under:
    s3://<BUCKET>/owners/<owner_id>/documents/<uuid>-<sanitized name>

The prefix is built server-side from the verified owner id; the client
only influences the sanitized tail of the key.

When a KMS key ARN is configured, every PutObject carries SSE-KMS
parameters. Deletion is a hard delete: the document row is gone by the
time delete() is called, so nothing references the object any more.
"""

from __future__ import annotations

import logging

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from docdump.storage.base import BlobNotFoundError, BlobStore, safe_object_name

logger = logging.getLogger(__name__)

_SCHEME = "s3://"


def parse_source_ref(source_ref: str) -> tuple[str, str]:
    """Split s3://bucket/key into (bucket, key)."""
    if not source_ref.startswith(_SCHEME):
        raise ValueError(f"Not an S3 reference: {source_ref!r}")
    bucket, _, key = source_ref[len(_SCHEME):].partition("/")
    if not bucket or not key:
        raise ValueError(f"Malformed S3 reference: {source_ref!r}")
    return bucket, key


class S3BlobStore(BlobStore):

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        kms_key_arn: str | None = None,
    ) -> None:
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url or None
        self._kms_key_arn = kms_key_arn or None
        self._session = aioboto3.Session()

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,
        )

    def _sse_params(self) -> dict:
        if not self._kms_key_arn:
            return {}
        return {
            "ServerSideEncryption": "aws:kms",
            "SSEKMSKeyId": self._kms_key_arn,
        }

    @staticmethod
    def object_key(owner_id: str, object_name: str) -> str:
        safe_owner = owner_id.replace("/", "_").replace("..", "_")
        return f"owners/{safe_owner}/documents/{object_name}"

    async def store(
        self,
        data: bytes,
        owner_id: str,
        suggested_name: str,
        content_type: str,
    ) -> str:
        key = self.object_key(owner_id, safe_object_name(suggested_name))

        async with self._client() as s3:
            await s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata={"owner_id": owner_id},
                **self._sse_params(),
            )

        logger.info(
            "S3 upload ok | owner=%s key=%s size=%d",
            owner_id, key, len(data),
        )
        return f"{_SCHEME}{self._bucket}/{key}"

    async def fetch(self, source_ref: str) -> bytes:
        bucket, key = parse_source_ref(source_ref)
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise BlobNotFoundError(f"Object not found: {key}") from exc
                raise

    async def delete(self, source_ref: str) -> bool:
        try:
            bucket, key = parse_source_ref(source_ref)
            async with self._client() as s3:
                await s3.delete_object(Bucket=bucket, Key=key)
        except (ValueError, ClientError, BotoCoreError) as exc:
            logger.warning("S3 delete failed | ref=%s error=%s", source_ref, exc)
            return False

        logger.info("S3 delete ok | key=%s", key)
        return True
