"""
Administrator routes: statistics, account management and item inspection.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Response

from schedule_backend.auth_service import refresh_key
from schedule_backend.db import ItemRecord, NewBlock, SqlDbClient, UserRecord
from schedule_backend.dependencies import get_db_client, get_kv_store, require_admin
from schedule_backend.errors import BadRequestError, NotFoundError
from schedule_backend.imports import BLOCK_TYPE
from schedule_backend.kv_store import KeyValueStore
from schedule_backend.routes import block_response
from schedule_backend.schemas import (
    AdminBlocksResponse,
    AdminItemDetail,
    AdminItemDetailUpdate,
    AdminItemResponse,
    AdminUserResponse,
    RoleUpdateRequest,
    StatsResponse,
)
from shared.string_utils import is_blank
from shared.types import TemplateType, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


def _user(db: SqlDbClient, user_id: str) -> UserRecord:
    user = db.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return user


def _user_item(db: SqlDbClient, user_id: str, item_id: str) -> ItemRecord:
    item = db.get_item(item_id)
    if item is None:
        raise NotFoundError("Item not found.")
    if item.user_id != user_id:
        raise BadRequestError("The item does not belong to that user.")
    return item


def _user_row(user: UserRecord, item_count: int) -> AdminUserResponse:
    return AdminUserResponse(
        id=user.id,
        email=user.email,
        nickname=user.nickname,
        role=user.role,
        failed_login_count=user.failed_login_count,
        locked_until=user.locked_until,
        created_at=user.created_at,
        item_count=item_count,
    )


def _detail(db: SqlDbClient, item: ItemRecord) -> AdminItemDetail:
    html = ""
    block = db.first_block(item.id)
    if block is not None:
        try:
            payload = json.loads(block.content)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            html = str(payload.get("html") or "")

    issue = memo = ""
    if item.due_date is not None:
        note = db.get_day_note(item.user_id, item.due_date)
        if note is not None:
            issue, memo = note.issue, note.memo
    return AdminItemDetail(
        user_id=item.user_id,
        item_id=item.id,
        title=item.title,
        status=item.status,
        due_date=item.due_date,
        template_type=item.template_type,
        html=html,
        issue=issue,
        memo=memo,
    )


@router.get("/stats", response_model=StatsResponse)
def stats(db: SqlDbClient = Depends(get_db_client)):
    counts = db.stats()
    return StatsResponse(
        total_users=counts["users"],
        total_items=counts["items"],
        total_blocks=counts["blocks"],
        total_files=counts["files"],
    )


@router.get("/users", response_model=list[AdminUserResponse])
def list_users(db: SqlDbClient = Depends(get_db_client)):
    item_counts = db.count_items_by_user()
    return [_user_row(user, item_counts.get(user.id, 0)) for user in db.list_users()]


@router.get("/users/{user_id}/items", response_model=list[AdminItemResponse])
def list_user_items(user_id: str, db: SqlDbClient = Depends(get_db_client)):
    _user(db, user_id)
    block_counts = db.count_blocks_by_item(user_id)
    file_counts = db.count_files_by_item(user_id)
    return [
        AdminItemResponse(
            id=item.id,
            title=item.title,
            status=item.status,
            due_date=item.due_date,
            template_type=item.template_type,
            updated_at=item.updated_at,
            block_count=block_counts.get(item.id, 0),
            file_count=file_counts.get(item.id, 0),
        )
        for item in db.list_items(user_id)
    ]


@router.get("/users/{user_id}/items/{item_id}/blocks", response_model=AdminBlocksResponse)
def user_item_blocks(user_id: str, item_id: str, db: SqlDbClient = Depends(get_db_client)):
    _user_item(db, user_id, item_id)
    return AdminBlocksResponse(
        user_id=user_id,
        item_id=item_id,
        blocks=[block_response(block) for block in db.list_blocks(item_id)],
    )


@router.get("/users/{user_id}/items/{item_id}/detail", response_model=AdminItemDetail)
def user_item_detail(user_id: str, item_id: str, db: SqlDbClient = Depends(get_db_client)):
    return _detail(db, _user_item(db, user_id, item_id))


@router.put("/users/{user_id}/items/{item_id}/detail", response_model=AdminItemDetail)
def update_user_item_detail(
    user_id: str,
    item_id: str,
    payload: AdminItemDetailUpdate,
    db: SqlDbClient = Depends(get_db_client),
):
    _user_item(db, user_id, item_id)
    changes = {}
    if payload.title is not None and not is_blank(payload.title):
        changes["title"] = payload.title.strip()
    if payload.status is not None:
        changes["status"] = payload.status
    if payload.due_date is not None:
        changes["due_date"] = payload.due_date
    if not is_blank(payload.template_type):
        changes["template_type"] = TemplateType.normalize(payload.template_type)
    item = db.update_item(item_id, **changes)

    content = json.dumps({"html": payload.html or ""}, ensure_ascii=False)
    db.replace_blocks(item_id, [NewBlock(sort_order=0, type=BLOCK_TYPE, content=content)])
    if item.due_date is not None:
        db.upsert_day_note(
            user_id, item.due_date, issue=payload.issue or "", memo=payload.memo or ""
        )
    logger.info("Admin updated item %s of user %s", item_id, user_id)
    return _detail(db, db.get_item(item_id))


@router.patch("/users/{user_id}/role", response_model=AdminUserResponse)
def update_role(
    user_id: str,
    payload: RoleUpdateRequest,
    db: SqlDbClient = Depends(get_db_client),
):
    _user(db, user_id)
    try:
        role = UserRole((payload.role or "").strip().upper())
    except ValueError as e:
        raise BadRequestError("Role must be USER or ADMIN.") from e
    user = db.update_user(user_id, role=role)
    logger.info("Changed role of user %s to %s", user_id, role.value)
    return _user_row(user, len(db.list_items(user_id)))


@router.post("/users/{user_id}/unlock", status_code=204)
def unlock_user(user_id: str, db: SqlDbClient = Depends(get_db_client)):
    _user(db, user_id)
    db.update_user(user_id, failed_login_count=0, locked_until=None)
    return Response(status_code=204)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    user_id: str,
    db: SqlDbClient = Depends(get_db_client),
    kv: KeyValueStore = Depends(get_kv_store),
):
    if not db.delete_user(user_id):
        raise NotFoundError("User not found.")
    kv.delete(refresh_key(user_id))
    logger.info("Deleted user %s", user_id)
    return Response(status_code=204)


@router.delete("/users/{user_id}/items/{item_id}", status_code=204)
def delete_user_item(user_id: str, item_id: str, db: SqlDbClient = Depends(get_db_client)):
    _user_item(db, user_id, item_id)
    db.delete_item(item_id)
    return Response(status_code=204)
