"""Utilities for interacting with MinIO/S3 storage."""
from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

from minio import Minio

from .config import get_settings


@lru_cache()
def get_client() -> Minio:
    settings = get_settings()
    return Minio(
        endpoint=settings.minio_endpoint,
        access_key=settings.minio_access_key,
        secret_key=settings.minio_secret_key,
        secure=False,
    )


def ensure_bucket() -> None:
    client = get_client()
    bucket = get_settings().minio_bucket
    if not client.bucket_exists(bucket):
        client.make_bucket(bucket)


@dataclass
class SignedUpload:
    """Representation of an object uploaded to storage with a signed URL."""

    key: str
    size: int
    content_type: str
    signed_url: str
    expires_at: Optional[datetime]


def upload_bytes(
    key: str,
    payload: bytes,
    content_type: str = "application/octet-stream",
    ttl_seconds: Optional[int] = None,
) -> SignedUpload:
    """Upload a payload to storage and return metadata with a presigned URL."""

    settings = get_settings()
    ensure_bucket()
    client = get_client()
    client.put_object(
        settings.minio_bucket,
        key,
        io.BytesIO(payload),
        len(payload),
        content_type=content_type,
    )
    ttl = max(ttl_seconds or settings.asset_url_ttl_seconds, 1)
    expires_delta = timedelta(seconds=ttl)
    url = client.presigned_get_object(settings.minio_bucket, key, expires=expires_delta)
    return SignedUpload(
        key=key,
        size=len(payload),
        content_type=content_type,
        signed_url=url,
        expires_at=datetime.now(timezone.utc) + expires_delta,
    )
