"""
Workspace backup export and all-or-nothing restore.

A backup is a ZIP holding `backup.json` and every attachment under
`files/<storedName>`.
"""

from __future__ import annotations

import datetime
import io
import json
import logging
import uuid
import zipfile
import zlib
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from schedule_backend.db import (
    BlockRecord,
    DayNoteRecord,
    FileAssetRecord,
    ItemRecord,
    SqlDbClient,
    WorkspaceSnapshot,
    utc_now,
)
from schedule_backend.storage import (
    InvalidStoredNameError,
    StorageClient,
    new_stored_name,
    validate_stored_name,
)
from migration_pipeline.archive_utils import ExtractionLimits, read_member
from shared.file_urls import file_url
from shared.types import BackupImportReport, ItemStatus, TemplateType

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1
BACKUP_JSON = "backup.json"
FILES_DIR = "files/"


class MalformedEntryError(ValueError):
    """A backup entry that cannot be restored."""


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_day(value: Any, field: str) -> Optional[datetime.date]:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise MalformedEntryError(f"{field} must be a YYYY-MM-DD string")
    try:
        return datetime.date.fromisoformat(value)
    except ValueError as e:
        raise MalformedEntryError(f"{field} is not a valid date: {value}") from e


def _parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _block_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    raise MalformedEntryError("block content must be a string")


class BackupService:
    def __init__(
        self,
        db: SqlDbClient,
        storage: StorageClient,
        limits: Optional[ExtractionLimits] = None,
    ):
        self.db = db
        self.storage = storage
        self.limits = limits or ExtractionLimits()

    # Export

    def export_payload(self, user_id: str) -> Dict[str, Any]:
        items = self.db.list_items(user_id)
        tag_names = self.db.tag_names_for_items(item.id for item in items)
        exported = []
        for item in items:
            exported.append({
                "id": item.id,
                "parentId": item.parent_id,
                "title": item.title,
                "status": item.status.value,
                "templateType": item.template_type.value,
                "dueDate": item.due_date.isoformat() if item.due_date else None,
                "createdAt": _iso(item.created_at),
                "updatedAt": _iso(item.updated_at),
                "tagNames": tag_names.get(item.id, []),
                "blocks": [
                    {"sortOrder": block.sort_order, "type": block.type, "content": block.content}
                    for block in self.db.list_blocks(item.id)
                ],
                "files": [
                    {
                        "originalName": asset.original_name,
                        "storedName": asset.stored_name,
                        "mimeType": asset.mime_type,
                        "sizeBytes": asset.size_bytes,
                        "createdAt": _iso(asset.created_at),
                    }
                    for asset in self.db.list_files(item.id)
                ],
            })
        return {
            "version": BACKUP_VERSION,
            "exportedAt": utc_now().isoformat(),
            "items": exported,
            "dayNotes": [
                {"dueDate": note.due_date.isoformat(), "issue": note.issue, "memo": note.memo}
                for note in self.db.list_day_notes(user_id)
            ],
        }

    def export_zip(self, user_id: str) -> bytes:
        payload = self.export_payload(user_id)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(BACKUP_JSON, json.dumps(payload, ensure_ascii=False, indent=2))
            for item in payload["items"]:
                for asset in item["files"]:
                    stored_name = asset["storedName"]
                    try:
                        data = self.storage.get_bytes(stored_name)
                    except FileNotFoundError:
                        logger.warning("Backup of %s skips missing file %s", user_id, stored_name)
                        continue
                    archive.writestr(FILES_DIR + stored_name, data)
        logger.info("Exported %d items for user %s", len(payload["items"]), user_id)
        return buffer.getvalue()

    # Import

    def import_zip(self, user_id: str, data: bytes) -> BackupImportReport:
        """
        Replaces the user's workspace with the archive contents.

        Nothing changes when the archive, its `backup.json` or the database
        write fails; those problems are reported in `errors`.
        """
        report = BackupImportReport()
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                names = set(archive.namelist())
                if BACKUP_JSON not in names:
                    report.errors.append("backup.json is missing from the archive")
                    return report
                raw_json = read_member(
                    archive, archive.getinfo(BACKUP_JSON), self.limits.max_entry_bytes
                )
                payload = json.loads(raw_json.decode("utf-8"))
                snapshot, uploads = self._build_snapshot(user_id, payload, archive, names, report)
        except (
            zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError, RuntimeError, OSError
        ) as e:
            report.errors.append(f"Backup archive could not be read: {e}")
            return report
        except (ValueError, MalformedEntryError) as e:
            report.errors.append(f"backup.json could not be parsed: {e}")
            return report

        try:
            for stored_name, content, mime_type in uploads:
                self.storage.put_bytes(stored_name, content, mime_type)
            self.db.replace_workspace(user_id, snapshot)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Restoring backup for user %s failed: %s", user_id, e)
            report.errors.append(f"Restore failed, workspace left unchanged: {e}")
            return report

        report.imported_items = len(snapshot.items)
        report.imported_files = len(snapshot.files)
        logger.info(
            "Restored backup for user %s: %d items, %d files, %d errors",
            user_id, report.imported_items, report.imported_files, len(report.errors),
        )
        return report

    def _build_snapshot(
        self,
        user_id: str,
        payload: Any,
        archive: zipfile.ZipFile,
        names: set,
        report: BackupImportReport,
    ) -> Tuple[WorkspaceSnapshot, List[Tuple[str, bytes, str]]]:
        if not isinstance(payload, dict) or not isinstance(payload.get("items", []), list):
            raise MalformedEntryError("expected an object with an items list")

        snapshot = WorkspaceSnapshot()
        uploads: List[Tuple[str, bytes, str]] = []
        id_map: Dict[str, str] = {}
        total_bytes = 0
        old_parents: Dict[str, Optional[str]] = {}

        for index, raw in enumerate(payload.get("items", []), start=1):
            try:
                item, blocks, old_id, old_parent, tag_names = self._parse_item(user_id, raw)
            except MalformedEntryError as e:
                report.errors.append(f"Item {index} skipped: {e}")
                continue
            if old_id:
                id_map[old_id] = item.id
            old_parents[item.id] = old_parent
            snapshot.items.append(item)
            snapshot.blocks.extend(blocks)
            if tag_names:
                snapshot.tag_names[item.id] = tag_names

            for raw_file in raw.get("files") or []:
                try:
                    asset, content = self._parse_file(user_id, item.id, raw_file, archive, names)
                except MalformedEntryError as e:
                    report.errors.append(f"Item {index} file skipped: {e}")
                    continue
                if total_bytes + len(content) > self.limits.max_total_bytes:
                    report.errors.append(
                        f"Item {index} file skipped: total size limit of "
                        f"{self.limits.max_total_bytes} bytes exceeded"
                    )
                    continue
                total_bytes += len(content)
                if asset.stored_name != raw_file["storedName"]:
                    self._relink(blocks, raw_file["storedName"], asset.stored_name)
                snapshot.files.append(asset)
                uploads.append((asset.stored_name, content, asset.mime_type))

        for item in snapshot.items:
            old_parent = old_parents.get(item.id)
            item.parent_id = id_map.get(old_parent) if old_parent else None

        notes: Dict[datetime.date, DayNoteRecord] = {}
        for index, raw in enumerate(payload.get("dayNotes") or [], start=1):
            try:
                if not isinstance(raw, dict):
                    raise MalformedEntryError("expected an object")
                day = _parse_day(raw.get("dueDate"), "dueDate")
                if day is None:
                    raise MalformedEntryError("dueDate is required")
                notes[day] = DayNoteRecord(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    due_date=day,
                    issue=str(raw.get("issue") or ""),
                    memo=str(raw.get("memo") or ""),
                )
            except MalformedEntryError as e:
                report.errors.append(f"Day note {index} skipped: {e}")
        snapshot.day_notes = list(notes.values())
        return snapshot, uploads

    def _parse_item(
        self, user_id: str, raw: Any
    ) -> Tuple[ItemRecord, List[BlockRecord], Optional[str], Optional[str], List[str]]:
        if not isinstance(raw, dict):
            raise MalformedEntryError("expected an object")
        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            raise MalformedEntryError("title is required")
        try:
            status = ItemStatus(raw.get("status") or ItemStatus.TODO.value)
        except ValueError as e:
            raise MalformedEntryError(f"unknown status {raw.get('status')!r}") from e
        template_type = raw.get("templateType")
        if template_type is not None and not isinstance(template_type, str):
            raise MalformedEntryError("templateType must be a string")
        old_parent = raw.get("parentId")
        if old_parent is not None and not isinstance(old_parent, str):
            raise MalformedEntryError("parentId must be a string")
        tag_names = raw.get("tagNames") or []
        if not isinstance(tag_names, list) or not all(isinstance(n, str) for n in tag_names):
            raise MalformedEntryError("tagNames must be a list of strings")

        item = ItemRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title.strip(),
            status=status,
            template_type=TemplateType.normalize(template_type),
            due_date=_parse_day(raw.get("dueDate"), "dueDate"),
            created_at=_parse_timestamp(raw.get("createdAt")),
            updated_at=_parse_timestamp(raw.get("updatedAt")),
        )

        raw_blocks = raw.get("blocks") or []
        if not isinstance(raw_blocks, list):
            raise MalformedEntryError("blocks must be a list")
        blocks = []
        for position, raw_block in enumerate(raw_blocks):
            if not isinstance(raw_block, dict):
                raise MalformedEntryError("each block must be an object")
            block_type = raw_block.get("type") or "paragraph"
            if not isinstance(block_type, str):
                raise MalformedEntryError("block type must be a string")
            sort_order = raw_block.get("sortOrder", position)
            if not isinstance(sort_order, int):
                raise MalformedEntryError("block sortOrder must be an integer")
            blocks.append(BlockRecord(
                id=str(uuid.uuid4()),
                item_id=item.id,
                sort_order=sort_order,
                type=block_type,
                content=_block_content(raw_block.get("content", "")),
            ))
        old_id = raw.get("id") if isinstance(raw.get("id"), str) else None
        return item, blocks, old_id, old_parent, list(dict.fromkeys(tag_names))

    def _parse_file(
        self,
        user_id: str,
        item_id: str,
        raw: Any,
        archive: zipfile.ZipFile,
        names: set,
    ) -> Tuple[FileAssetRecord, bytes]:
        if not isinstance(raw, dict) or not isinstance(raw.get("storedName"), str):
            raise MalformedEntryError("storedName is required")
        stored_name = raw["storedName"]
        try:
            validate_stored_name(stored_name)
        except InvalidStoredNameError as e:
            raise MalformedEntryError(str(e)) from e
        if FILES_DIR + stored_name not in names:
            raise MalformedEntryError(f"{stored_name} is missing from the archive")
        try:
            content = read_member(
                archive, archive.getinfo(FILES_DIR + stored_name), self.limits.max_entry_bytes
            )
        except (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, ValueError) as e:
            raise MalformedEntryError(str(e)) from e

        existing = self.db.get_file_by_stored_name(stored_name)
        if existing is not None and existing.user_id != user_id:
            # Another account owns this name; restore under a fresh one.
            stored_name = new_stored_name(stored_name)

        original_name = raw.get("originalName")
        mime_type = raw.get("mimeType")
        return FileAssetRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            item_id=item_id,
            original_name=original_name if isinstance(original_name, str) else stored_name,
            stored_name=stored_name,
            mime_type=mime_type if isinstance(mime_type, str) else "application/octet-stream",
            size_bytes=len(content),
            created_at=_parse_timestamp(raw.get("createdAt")),
        ), content

    @staticmethod
    def _relink(blocks: List[BlockRecord], old_name: str, new_name: str) -> None:
        for block in blocks:
            block.content = block.content.replace(file_url(old_name), file_url(new_name))
