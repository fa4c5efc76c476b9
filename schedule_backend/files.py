"""
Image uploads attached to items, and serving stored files.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from typing import List, Optional

from schedule_backend.db import FileAssetRecord, SqlDbClient
from schedule_backend.errors import BadRequestError, NotFoundError
from schedule_backend.storage import (
    InvalidStoredNameError,
    StorageClient,
    store_file,
    validate_stored_name,
)
from schedule_backend.workspace import WorkspaceService
from migration_pipeline.text_utils import extension

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp", "image/gif"})
ALLOWED_IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "webp", "gif"})
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class StoredFile:
    data: bytes
    mime_type: str


class FileService:
    def __init__(self, db: SqlDbClient, storage: StorageClient):
        self.db = db
        self.storage = storage
        self.workspace = WorkspaceService(db)

    def upload_image(
        self,
        user_id: str,
        item_id: str,
        original_name: Optional[str],
        content_type: Optional[str],
        data: bytes,
    ) -> FileAssetRecord:
        self.workspace.owned_item(user_id, item_id)
        if not data:
            raise BadRequestError("Uploaded file is empty.")
        mime_type = (content_type or "").split(";", 1)[0].strip().lower()
        if mime_type not in ALLOWED_IMAGE_MIME_TYPES:
            raise BadRequestError("Only PNG, JPEG, WEBP and GIF images are allowed.")
        name = original_name or "file"
        if extension(name) not in ALLOWED_IMAGE_EXTENSIONS:
            raise BadRequestError("File extension is not allowed.")

        stored_name = store_file(self.storage, name, data, mime_type)
        asset = self.db.create_file_asset(
            user_id, item_id, name, stored_name, mime_type, len(data)
        )
        logger.info("Stored upload %s for item %s", stored_name, item_id)
        return asset

    def list_item_files(self, user_id: str, item_id: str) -> List[FileAssetRecord]:
        self.workspace.owned_item(user_id, item_id)
        return self.db.list_files(item_id)

    def load(self, stored_name: str) -> StoredFile:
        try:
            validate_stored_name(stored_name)
            data = self.storage.get_bytes(stored_name)
        except InvalidStoredNameError as e:
            raise BadRequestError("Invalid file name.") from e
        except FileNotFoundError as e:
            raise NotFoundError("File not found.") from e
        asset = self.db.get_file_by_stored_name(stored_name)
        if asset is not None:
            return StoredFile(data=data, mime_type=asset.mime_type)
        guessed, _ = mimetypes.guess_type(stored_name)
        return StoredFile(data=data, mime_type=guessed or DEFAULT_MIME_TYPE)
