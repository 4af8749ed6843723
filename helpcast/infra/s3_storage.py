# helpcast/infra/s3_storage.py
"""
Media bucket for sideloaded request images and videos.

Any S3-compatible endpoint works (AWS S3, Cloudflare R2, MinIO); see the
``S3_*`` settings.  Stored objects are addressed by the public URL under
``S3_PUBLIC_URL`` when set, else under the endpoint itself.
"""
from __future__ import annotations

import asyncio
from functools import lru_cache

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from helpcast.config import settings
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import inc_counter

logger = get_logger(__name__)

# Keys embed the request id and item index, so objects never change
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def _build_client():
    addressing = "path" if settings.s3_force_path_style else "virtual"
    return boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        config=Config(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "adaptive"},
            s3={"addressing_style": addressing},
        ),
    )


class S3Storage:
    """``MediaUploader`` backed by an S3 bucket. boto3 calls run in a worker thread."""

    def __init__(self, client=None):
        if not settings.s3_enabled:
            raise RuntimeError("S3 storage not configured")

        self._client = client if client is not None else _build_client()
        self._bucket = settings.s3_bucket_name
        base = settings.s3_public_url or f"{settings.s3_endpoint_url.rstrip('/')}/{self._bucket}"
        self._url_base = base.rstrip("/")
        logger.info(f"S3 storage ready: bucket={self._bucket} url_base={self._url_base}")

    def get_public_url(self, key: str) -> str:
        return f"{self._url_base}/{key}"

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=IMMUTABLE_CACHE_CONTROL,
            )
        except (ClientError, BotoCoreError):
            inc_counter("s3_uploads_failed")
            logger.error(f"S3 upload failed: key={key}", exc_info=True)
            raise

        inc_counter("s3_uploads_success")
        logger.info(f"Stored media object: key={key} bytes={len(data)}")
        return self.get_public_url(key)

    async def ping(self) -> None:
        """Raise when the bucket is not reachable."""
        await asyncio.to_thread(self._client.head_bucket, Bucket=self._bucket)


@lru_cache(maxsize=1)
def get_s3_storage() -> S3Storage:
    return S3Storage()


def is_s3_available() -> bool:
    return settings.s3_enabled
