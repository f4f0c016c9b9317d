from __future__ import annotations

from datetime import datetime
import re

import boto3
from botocore.config import Config


UPLOAD_URL_TTL_SECONDS = 900
DOWNLOAD_URL_TTL_SECONDS = 300

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_file_name(file_name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", file_name)


def build_storage_key(
    *,
    tenant_id: str,
    document_id: str,
    version: int,
    file_name: str,
    now: datetime,
) -> str:
    epoch_ms = int(now.timestamp() * 1000)
    return (
        f"tenants/{tenant_id}/documents/{document_id}/"
        f"v{version}-{epoch_ms}-{sanitize_file_name(file_name)}"
    )


def build_s3_client(
    *,
    endpoint_url: str,
    region: str,
    access_key: str,
    secret_key: str,
):
    """S3 client for MinIO or any S3-compatible store, using path-style addressing."""

    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        region_name=region,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )


class ObjectStorage:
    """Presigned upload and download URLs for document versions.

    Presigning is computed locally from the credentials; no request reaches
    the store until the browser uses the URL.
    """

    def __init__(self, s3_client, *, bucket: str) -> None:
        if not bucket:
            raise ValueError("storage bucket is required")
        self.s3_client = s3_client
        self.bucket = bucket

    def upload_url(
        self,
        storage_key: str,
        *,
        content_type: str,
        expires_in: int = UPLOAD_URL_TTL_SECONDS,
    ) -> str:
        return self.s3_client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": storage_key, "ContentType": content_type},
            ExpiresIn=expires_in,
            HttpMethod="PUT",
        )

    def download_url(self, storage_key: str, *, expires_in: int = DOWNLOAD_URL_TTL_SECONDS) -> str:
        return self.s3_client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": storage_key},
            ExpiresIn=expires_in,
        )
