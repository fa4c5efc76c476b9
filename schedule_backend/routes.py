"""
HTTP routes for workspace items, content, files, tags, backup and migration.
"""

from __future__ import annotations

import datetime

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile

from schedule_backend.backup import BackupService
from schedule_backend.config import get_settings
from schedule_backend.db import (
    BlockRecord,
    DayNoteRecord,
    FileAssetRecord,
    ItemRecord,
    NewBlock,
    SqlDbClient,
    TagRecord,
    UserRecord,
)
from schedule_backend.dependencies import (
    get_backup_service,
    get_current_user,
    get_db_client,
    get_file_service,
    get_kv_store,
    get_storage_client,
    get_workspace_service,
)
from schedule_backend.files import FileService
from schedule_backend.imports import import_lock, run_migration
from schedule_backend.kv_store import KeyValueStore
from schedule_backend.schemas import (
    BackupImportResponse,
    BlockResponse,
    BlocksResponse,
    BlocksSaveRequest,
    BoardRowResponse,
    DayNoteRequest,
    DayNoteResponse,
    FileAssetResponse,
    ItemCreateRequest,
    ItemResponse,
    ItemUpdateRequest,
    MigrationReportResponse,
    TagCreateRequest,
    TagResponse,
)
from schedule_backend.storage import StorageClient
from schedule_backend.workspace import BoardRow, WorkspaceService
from shared.file_urls import file_url

router = APIRouter()
public_router = APIRouter()


def item_response(item: ItemRecord) -> ItemResponse:
    return ItemResponse(
        id=item.id,
        parent_id=item.parent_id,
        title=item.title,
        status=item.status,
        template_type=item.template_type,
        due_date=item.due_date,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def block_response(block: BlockRecord) -> BlockResponse:
    return BlockResponse(
        id=block.id, sort_order=block.sort_order, type=block.type, content=block.content
    )


def _board_row_response(row: BoardRow) -> BoardRowResponse:
    return BoardRowResponse(
        id=row.item.id,
        parent_id=row.item.parent_id,
        due_date=row.item.due_date,
        title=row.item.title,
        status=row.item.status,
        template_type=row.item.template_type,
        today_work=row.today_work,
        issue=row.issue,
        memo=row.memo,
        checklist_total=row.checklist_total,
        checklist_done=row.checklist_done,
    )


def _day_note_response(note: DayNoteRecord) -> DayNoteResponse:
    return DayNoteResponse(due_date=note.due_date, issue=note.issue, memo=note.memo)


def _file_response(asset: FileAssetRecord) -> FileAssetResponse:
    return FileAssetResponse(
        id=asset.id,
        url=file_url(asset.stored_name),
        original_name=asset.original_name,
        mime_type=asset.mime_type,
        size_bytes=asset.size_bytes,
        created_at=asset.created_at,
    )


def _tag_response(tag: TagRecord) -> TagResponse:
    return TagResponse(id=tag.id, name=tag.name)


# Workspace items


@router.post("/workspace/items", response_model=ItemResponse)
def create_item(
    payload: ItemCreateRequest,
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    item = workspace.create_item(
        user.id,
        payload.title,
        parent_id=payload.parent_id,
        due_date=payload.due_date,
        template_type=payload.template_type,
    )
    return item_response(item)


@router.get("/workspace/items", response_model=list[ItemResponse])
def list_items(
    q: str | None = Query(None),
    due_date: datetime.date | None = Query(None, alias="dueDate"),
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    return [item_response(item) for item in workspace.list_items(user.id, q, due_date)]


@router.get("/workspace/items/recent", response_model=list[ItemResponse])
def recent_items(
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    return [item_response(item) for item in workspace.recent_items(user.id)]


@router.get("/workspace/items/board", response_model=list[BoardRowResponse])
def board(
    month: str = Query(...),
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    return [_board_row_response(row) for row in workspace.board(user.id, month)]


@router.get("/workspace/items/day-note", response_model=DayNoteResponse)
def get_day_note(
    date: datetime.date = Query(...),
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    return _day_note_response(workspace.get_day_note(user.id, date))


@router.put("/workspace/items/day-note", response_model=DayNoteResponse)
def put_day_note(
    payload: DayNoteRequest,
    date: datetime.date = Query(...),
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    note = workspace.put_day_note(user.id, date, payload.issue, payload.memo)
    return _day_note_response(note)


@router.patch("/workspace/items/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: str,
    payload: ItemUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    # parent_id is only replaced when the client sent the key.
    changes = {
        name: getattr(payload, name)
        for name in ("title", "status", "due_date", "template_type", "tag_ids")
    }
    if "parent_id" in payload.model_fields_set:
        changes["parent_id"] = payload.parent_id
    return item_response(workspace.update_item(user.id, item_id, changes))


@router.delete("/workspace/items/{item_id}", status_code=204)
def delete_item(
    item_id: str,
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    workspace.delete_item(user.id, item_id)
    return Response(status_code=204)


# Content


@router.get("/content/{item_id}/blocks", response_model=BlocksResponse)
def get_blocks(
    item_id: str,
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    blocks = workspace.get_blocks(user.id, item_id)
    return BlocksResponse(item_id=item_id, blocks=[block_response(b) for b in blocks])


@router.put("/content/{item_id}/blocks", response_model=BlocksResponse)
def save_blocks(
    item_id: str,
    payload: BlocksSaveRequest,
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    blocks = workspace.replace_blocks(
        user.id,
        item_id,
        [NewBlock(sort_order=b.sort_order, type=b.type, content=b.content) for b in payload.blocks],
    )
    return BlocksResponse(item_id=item_id, blocks=[block_response(b) for b in blocks])


# Files


@router.post("/files/upload", response_model=FileAssetResponse)
async def upload_file(
    item_id: str = Form(..., alias="itemId"),
    file: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
    files: FileService = Depends(get_file_service),
):
    data = await file.read()
    asset = files.upload_image(user.id, item_id, file.filename, file.content_type, data)
    return _file_response(asset)


@router.get("/files/item/{item_id}", response_model=list[FileAssetResponse])
def list_item_files(
    item_id: str,
    user: UserRecord = Depends(get_current_user),
    files: FileService = Depends(get_file_service),
):
    return [_file_response(asset) for asset in files.list_item_files(user.id, item_id)]


# Tags


@router.post("/tags", response_model=TagResponse)
def create_tag(
    payload: TagCreateRequest,
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    return _tag_response(workspace.create_tag(user.id, payload.name))


@router.get("/tags", response_model=list[TagResponse])
def list_tags(
    user: UserRecord = Depends(get_current_user),
    workspace: WorkspaceService = Depends(get_workspace_service),
):
    return [_tag_response(tag) for tag in workspace.list_tags(user.id)]


# Backup and migration


@router.get("/backup/export")
def export_backup(
    user: UserRecord = Depends(get_current_user),
    backup: BackupService = Depends(get_backup_service),
):
    return Response(
        content=backup.export_zip(user.id),
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="backup.zip"'},
    )


@router.post("/backup/import", response_model=BackupImportResponse)
def import_backup(
    file: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
    backup: BackupService = Depends(get_backup_service),
    kv: KeyValueStore = Depends(get_kv_store),
):
    data = file.file.read()
    with import_lock(kv, user.id):
        report = backup.import_zip(user.id, data)
    return BackupImportResponse(
        imported_items=report.imported_items,
        imported_files=report.imported_files,
        errors=report.errors,
    )


@router.post("/migration/import", response_model=MigrationReportResponse)
def import_migration(
    file: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
    db: SqlDbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    kv: KeyValueStore = Depends(get_kv_store),
):
    data = file.file.read()
    with import_lock(kv, user.id):
        report = run_migration(db, storage, get_settings(), user.id, file.filename, data)
    return MigrationReportResponse(
        detected_patterns=report.detected_patterns,
        persisted_items=report.persisted_items,
        persisted_files=report.persisted_files,
        failures=report.failures,
        manual_fix_hints=report.manual_fix_hints,
    )


# Public


@public_router.get("/health")
def health():
    return {"status": "ok"}


@public_router.get("/files/{stored_name}")
def serve_file(stored_name: str, files: FileService = Depends(get_file_service)):
    stored = files.load(stored_name)
    return Response(content=stored.data, media_type=stored.mime_type)
