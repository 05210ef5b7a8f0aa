"""Object storage for claim photos and policy documents."""

import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..utils.config import Config
from ..utils.errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Strip directories and unusual characters from a client-supplied name."""
    name = Path(filename or "").name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or "upload"


@dataclass
class StoredObject:
    """
    A stored object.

    Attributes:
        url: Retrievable URL recorded on the claim file row
        key: Backend key (relative path or S3 key)
        size: Size in bytes
        content_type: MIME type given at upload
    """
    url: str
    key: str
    size: int
    content_type: str


class ObjectStorage:
    """Interface for the claim-file bucket. There is no deletion path."""

    def upload(self, key_prefix: str, filename: str, content: bytes, content_type: str) -> StoredObject:
        raise NotImplementedError

    def read(self, url: str) -> bytes:
        raise NotImplementedError

    def owns(self, url: str) -> bool:
        """Whether ``url`` points into this storage."""
        raise NotImplementedError

    @staticmethod
    def make_key(key_prefix: str, filename: str) -> str:
        prefix = "/".join(safe_filename(part) for part in key_prefix.strip("/").split("/") if part)
        return f"{prefix}/{uuid.uuid4().hex[:12]}-{safe_filename(filename)}"


class LocalObjectStorage(ObjectStorage):
    """
    Directory-backed storage.

    Files are written under ``base_dir`` and exposed at
    ``public_base_url`` (the web service mounts the directory there).
    """

    def __init__(self, base_dir: str = "data/uploads", public_base_url: str = "http://localhost:8000/files"):
        self.base_dir = Path(base_dir).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.base_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Initialized LocalObjectStorage: base_dir={self.base_dir}, url={self.public_base_url}")

    def upload(self, key_prefix: str, filename: str, content: bytes, content_type: str) -> StoredObject:
        key = self.make_key(key_prefix, filename)
        file_path = self.base_dir / key

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Failed to save upload {filename}: {str(e)}")
            raise StorageError.upload_failed(filename, e) from e

        logger.info(f"Saved upload: {key} ({len(content)} bytes)")
        return StoredObject(url=f"{self.public_base_url}/{key}", key=key, size=len(content), content_type=content_type)

    def owns(self, url: str) -> bool:
        return url.startswith(self.public_base_url + "/")

    def read(self, url: str) -> bytes:
        if not self.owns(url):
            raise StorageError.read_failed(url, ValueError("URL is not served by this storage"))

        key = unquote(url[len(self.public_base_url) + 1:])
        file_path = (self.base_dir / key).resolve()
        if self.base_dir not in file_path.parents:
            raise StorageError.read_failed(url, ValueError("key escapes the storage directory"))

        try:
            with open(file_path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError.read_failed(url, e) from e


class S3ObjectStorage(ObjectStorage):
    """S3-backed storage using boto3."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "claim-files",
        region: str = "us-east-1",
        presign_expiry: int = 0,
        client: Any = None
    ):
        """
        Args:
            bucket: Bucket name
            prefix: Key prefix for all claim files
            region: Bucket region
            presign_expiry: When > 0, URLs are presigned GETs valid for this many seconds
            client: Optional pre-built S3 client
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.presign_expiry = presign_expiry
        self.client = client or boto3.client("s3", region_name=region)
        self.base_url = f"https://{bucket}.s3.{region}.amazonaws.com"

        logger.info(f"Initialized S3ObjectStorage: bucket={bucket}, prefix={self.prefix}")

    def upload(self, key_prefix: str, filename: str, content: bytes, content_type: str) -> StoredObject:
        key = self.make_key(f"{self.prefix}/{key_prefix}" if self.prefix else key_prefix, filename)

        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=content, ContentType=content_type)
            if self.presign_expiry > 0:
                url = self.client.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": key},
                    ExpiresIn=self.presign_expiry
                )
            else:
                url = f"{self.base_url}/{key}"
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {filename} to s3://{self.bucket}/{key}: {str(e)}")
            raise StorageError.upload_failed(filename, e) from e

        logger.info(f"Uploaded s3://{self.bucket}/{key} ({len(content)} bytes)")
        return StoredObject(url=url, key=key, size=len(content), content_type=content_type)

    def owns(self, url: str) -> bool:
        return url.startswith(self.base_url + "/")

    def _key_from_url(self, url: str) -> Optional[str]:
        if not self.owns(url):
            return None
        return unquote(urlparse(url).path.lstrip("/"))

    def read(self, url: str) -> bytes:
        key = self._key_from_url(url)
        if key is None:
            raise StorageError.read_failed(url, ValueError("URL is not served by this bucket"))

        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageError.read_failed(url, e) from e


def build_object_storage(config: Config) -> ObjectStorage:
    storage = config.storage
    if storage.backend == "s3":
        return S3ObjectStorage(
            bucket=storage.s3_bucket,
            prefix=storage.s3_prefix,
            region=config.aws_region,
            presign_expiry=storage.presign_expiry,
        )
    return LocalObjectStorage(base_dir=storage.local_dir, public_base_url=storage.public_base_url)
