"""
Storage abstraction for uploaded files: local disk, S3-compatible buckets and
an in-memory implementation for tests.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from migration_pipeline.text_utils import extension


class StorageClient(Protocol):
    """Defines the operations the API needs from file storage."""

    def put_bytes(self, stored_name: str, data: bytes, content_type: str) -> None:
        ...

    def get_bytes(self, stored_name: str) -> bytes:
        ...


class InvalidStoredNameError(ValueError):
    """Raised when a stored name would escape the storage root."""


def validate_stored_name(stored_name: str) -> str:
    if (
        not stored_name
        or "/" in stored_name
        or "\\" in stored_name
        or stored_name in (".", "..")
        or ".." in stored_name
    ):
        raise InvalidStoredNameError(f"Invalid file name: {stored_name!r}")
    return stored_name


def new_stored_name(original_name: str) -> str:
    """Returns `<uuid>.<ext>` (or a bare uuid when there is no extension)."""
    ext = extension(original_name or "")
    return f"{uuid.uuid4()}.{ext}" if ext else str(uuid.uuid4())


def store_file(storage: StorageClient, original_name: str, data: bytes, content_type: str) -> str:
    """Stores `data` under a fresh name and returns that name."""
    stored_name = new_stored_name(original_name)
    storage.put_bytes(stored_name, data, content_type)
    return stored_name


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: Dict[str, bytes] = field(default_factory=dict)

    def put_bytes(self, stored_name: str, data: bytes, content_type: str) -> None:
        self.stored_objects[validate_stored_name(stored_name)] = bytes(data)

    def get_bytes(self, stored_name: str) -> bytes:
        stored = self.stored_objects.get(validate_stored_name(stored_name))
        if stored is None:
            raise FileNotFoundError(stored_name)
        return stored

    def reset(self) -> None:
        self.stored_objects.clear()


@dataclass
class LocalStorageClient:
    """Keeps files flat in one directory on local disk."""

    base_dir: str

    def __post_init__(self):
        self._root = Path(self.base_dir).resolve()
        os.makedirs(self._root, exist_ok=True)

    def _path(self, stored_name: str) -> Path:
        path = (self._root / validate_stored_name(stored_name)).resolve()
        if path.parent != self._root:
            raise InvalidStoredNameError(f"Invalid file name: {stored_name!r}")
        return path

    def put_bytes(self, stored_name: str, data: bytes, content_type: str) -> None:
        path = self._path(stored_name)
        tmp_path = path.with_name(path.name + ".part")
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)

    def get_bytes(self, stored_name: str) -> bytes:
        path = self._path(stored_name)
        if not path.is_file():
            raise FileNotFoundError(stored_name)
        with open(path, "rb") as f:
            return f.read()


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    key_prefix: str = "files/"

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def _key(self, stored_name: str) -> str:
        return f"{self.key_prefix}{validate_stored_name(stored_name)}"

    def put_bytes(self, stored_name: str, data: bytes, content_type: str) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=self._key(stored_name),
            Body=data,
            ContentType=content_type,
        )

    def get_bytes(self, stored_name: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self._key(stored_name))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(stored_name) from e
            raise
        return response["Body"].read()
