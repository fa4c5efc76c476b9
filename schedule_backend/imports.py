"""
Runs migration imports against the database and guards imports with a
per-user lock.
"""

from __future__ import annotations

import contextlib
import datetime
import logging
import secrets
from typing import Iterator, List, Optional, Tuple

from schedule_backend.config import Settings
from schedule_backend.db import SqlDbClient
from schedule_backend.errors import ConflictError
from schedule_backend.kv_store import KeyValueStore
from schedule_backend.storage import StorageClient, store_file
from migration_pipeline.archive_utils import ExtractionLimits
from migration_pipeline.migration import MigrationImporter
from shared.string_utils import is_blank
from shared.types import MigrationReport, TemplateType

logger = logging.getLogger(__name__)

BLOCK_TYPE = "paragraph"
IMPORT_LOCK_TTL_SECONDS = 600


def import_lock_key(user_id: str) -> str:
    return f"import-lock:{user_id}"


@contextlib.contextmanager
def import_lock(kv: KeyValueStore, user_id: str) -> Iterator[None]:
    """Holds the user's import lock; raises ConflictError when it is taken."""
    key = import_lock_key(user_id)
    token = secrets.token_hex(16)
    if not kv.acquire_lock(key, IMPORT_LOCK_TTL_SECONDS, token):
        logger.warning("Rejected concurrent import for user %s", user_id)
        raise ConflictError("Another import is already running.")
    try:
        yield
    finally:
        # A lock that expired mid-import may belong to a newer import by now.
        if not kv.release_lock(key, token):
            logger.warning("Import lock for user %s expired before release", user_id)


def extraction_limits(settings: Settings) -> ExtractionLimits:
    return ExtractionLimits(
        max_depth=settings.migration_max_depth,
        max_entries=settings.migration_max_entries,
        max_entry_bytes=settings.migration_max_entry_bytes,
        max_total_bytes=settings.migration_max_total_bytes,
    )


class DbMigrationTarget:
    """Writes imported pages, day notes and attachments into one user's workspace."""

    def __init__(self, db: SqlDbClient, storage: StorageClient, user_id: str):
        self.db = db
        self.storage = storage
        self.user_id = user_id

    def create_item(
        self,
        title: str,
        template_type: TemplateType,
        due_date: Optional[datetime.date],
        parent_id: Optional[str],
    ) -> str:
        item = self.db.create_item(
            self.user_id,
            title,
            parent_id=parent_id,
            due_date=due_date,
            template_type=template_type,
        )
        return item.id

    def find_item_by_due_date(self, due_date: datetime.date) -> Optional[str]:
        items = self.db.list_items_by_due_date(self.user_id, due_date)
        return items[0].id if items else None

    def item_due_date(self, item_id: str) -> Optional[datetime.date]:
        item = self.db.get_item(item_id)
        return item.due_date if item else None

    def list_blocks(self, item_id: str) -> List[Tuple[str, str]]:
        return [(block.id, block.content) for block in self.db.list_blocks(item_id)]

    def add_block(self, item_id: str, content: str) -> None:
        blocks = self.db.list_blocks(item_id)
        sort_order = blocks[-1].sort_order + 1 if blocks else 0
        self.db.add_block(item_id, sort_order, BLOCK_TYPE, content)

    def update_block(self, block_id: str, content: str) -> None:
        self.db.update_block_content(block_id, content)

    def merge_day_note(self, due_date: datetime.date, issue: str, memo: str) -> None:
        self.db.upsert_day_note(
            self.user_id,
            due_date,
            issue=None if is_blank(issue) else issue,
            memo=None if is_blank(memo) else memo,
        )

    def store_file(self, item_id: str, original_name: str, mime_type: str, data: bytes) -> str:
        stored_name = store_file(self.storage, original_name, data, mime_type)
        self.db.create_file_asset(
            self.user_id, item_id, original_name, stored_name, mime_type, len(data)
        )
        return stored_name


def run_migration(
    db: SqlDbClient,
    storage: StorageClient,
    settings: Settings,
    user_id: str,
    filename: Optional[str],
    data: bytes,
) -> MigrationReport:
    importer = MigrationImporter(
        DbMigrationTarget(db, storage, user_id), extraction_limits(settings)
    )
    report = importer.run(filename, data)
    logger.info(
        "Migration for user %s: %d items, %d files, %d failures",
        user_id, report.persisted_items, report.persisted_files, len(report.failures),
    )
    return report
