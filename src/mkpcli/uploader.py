from __future__ import annotations

import hashlib
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .client import MarketplaceError
from .models import HASH_ALGO_SHA1

logger = logging.getLogger(__name__)

PRODUCT_FILES_FOLDER = "marketplace-product-files"
MEDIA_FILES_FOLDER = "marketplace-product-media"
META_FILES_FOLDER = "marketplace-product-metafiles"

_HASH_CHUNK = 1024 * 1024


class UploadError(MarketplaceError):
    pass


@dataclass(frozen=True)
class UploadCredentials:
    access_id: str
    access_key: str
    session_token: str
    expiration: str = ""


class Uploader(Protocol):
    def upload_product_file(self, path: str | Path) -> tuple[str, str]:
        """Returns (remote filename, url)."""
        ...

    def upload_media_file(self, path: str | Path) -> tuple[str, str]:
        ...

    def upload_metafile(self, path: str | Path) -> tuple[str, str]:
        ...


def _timestamp_ms() -> int:
    return time.time_ns() // 1_000_000


def make_unique_filename(filename: str) -> str:
    base, ext = os.path.splitext(filename)
    return f"{base}-{_timestamp_ms()}{ext}"


def make_unique_file_id() -> str:
    return f"fileuploader{_timestamp_ms()}.url"


def hash_file(path: str | Path, algorithm: str = HASH_ALGO_SHA1) -> str:
    if algorithm != HASH_ALGO_SHA1:
        raise MarketplaceError(f"Unsupported hash algorithm: {algorithm}")
    digest = hashlib.sha1()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
                digest.update(chunk)
    except OSError as e:
        raise MarketplaceError(f"failed to generate the hash for {path}: {e}") from e
    return digest.hexdigest()


class S3Uploader:
    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        org_id: str,
        credentials: UploadCredentials,
        s3_client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.org_id = org_id
        self._s3 = s3_client or boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=credentials.access_id,
            aws_secret_access_key=credentials.access_key,
            aws_session_token=credentials.session_token,
        )

    def _upload(self, path: str | Path, folder: str) -> tuple[str, str]:
        source = Path(path).expanduser()
        if not source.is_file():
            raise UploadError(f"failed to open {source}: not a file")

        filename = make_unique_filename(source.name)
        key = "/".join((self.org_id, folder, filename))
        logger.debug("uploading %s to s3://%s/%s", source, self.bucket, key)
        try:
            self._s3.upload_file(str(source), self.bucket, key)
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"failed to upload {source}: {e}") from e

        url = f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return filename, url

    def upload_product_file(self, path: str | Path) -> tuple[str, str]:
        return self._upload(path, PRODUCT_FILES_FOLDER)

    def upload_media_file(self, path: str | Path) -> tuple[str, str]:
        return self._upload(path, MEDIA_FILES_FOLDER)

    def upload_metafile(self, path: str | Path) -> tuple[str, str]:
        return self._upload(path, META_FILES_FOLDER)
