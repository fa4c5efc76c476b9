"""
Pydantic schemas for the schedule backend. JSON keys are camelCase.
"""

from __future__ import annotations

import datetime
import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.types import ItemStatus, TemplateType, UserRole

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Auth


class RegisterRequest(CamelModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    nickname: Optional[str] = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        value = value.strip()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("must be a well-formed email address")
        return value

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(CamelModel):
    access_token: str
    expires_in_seconds: int


class UserResponse(CamelModel):
    id: str
    email: str
    nickname: str
    role: UserRole


# Workspace


class ItemCreateRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)
    parent_id: Optional[str] = None
    due_date: Optional[datetime.date] = None
    template_type: Optional[str] = None


class ItemUpdateRequest(CamelModel):
    title: Optional[str] = Field(None, max_length=500)
    status: Optional[ItemStatus] = None
    due_date: Optional[datetime.date] = None
    template_type: Optional[str] = None
    parent_id: Optional[str] = None
    tag_ids: Optional[List[str]] = None


class ItemResponse(CamelModel):
    id: str
    parent_id: Optional[str] = None
    title: str
    status: ItemStatus
    template_type: TemplateType
    due_date: Optional[datetime.date] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


class BoardRowResponse(CamelModel):
    id: str
    parent_id: Optional[str] = None
    due_date: Optional[datetime.date] = None
    title: str
    status: ItemStatus
    template_type: TemplateType
    today_work: str = ""
    issue: str = ""
    memo: str = ""
    checklist_total: int = 0
    checklist_done: int = 0


class DayNoteRequest(CamelModel):
    issue: Optional[str] = None
    memo: Optional[str] = None


class DayNoteResponse(CamelModel):
    due_date: datetime.date
    issue: str = ""
    memo: str = ""


# Content


class BlockPayload(CamelModel):
    sort_order: int = 0
    type: str
    content: str


class BlockResponse(CamelModel):
    id: str
    sort_order: int
    type: str
    content: str


class BlocksResponse(CamelModel):
    item_id: str
    blocks: List[BlockResponse]


class BlocksSaveRequest(CamelModel):
    blocks: List[BlockPayload]


# Files, tags, imports


class FileAssetResponse(CamelModel):
    id: str
    url: str
    original_name: str
    mime_type: str
    size_bytes: int
    created_at: Optional[datetime.datetime] = None


class TagCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)


class TagResponse(CamelModel):
    id: str
    name: str


class BackupImportResponse(CamelModel):
    imported_items: int
    imported_files: int
    errors: List[str]


class MigrationReportResponse(CamelModel):
    detected_patterns: List[str]
    persisted_items: int
    persisted_files: int
    failures: List[str]
    manual_fix_hints: List[str]


# Admin


class StatsResponse(CamelModel):
    total_users: int
    total_items: int
    total_blocks: int
    total_files: int


class AdminUserResponse(CamelModel):
    id: str
    email: str
    nickname: str
    role: UserRole
    failed_login_count: int
    locked_until: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None
    item_count: int = 0


class AdminItemResponse(CamelModel):
    id: str
    title: str
    status: ItemStatus
    due_date: Optional[datetime.date] = None
    template_type: TemplateType
    updated_at: Optional[datetime.datetime] = None
    block_count: int = 0
    file_count: int = 0


class AdminBlocksResponse(CamelModel):
    user_id: str
    item_id: str
    blocks: List[BlockResponse]


class AdminItemDetail(CamelModel):
    user_id: str
    item_id: str
    title: str
    status: ItemStatus
    due_date: Optional[datetime.date] = None
    template_type: TemplateType
    html: str = ""
    issue: str = ""
    memo: str = ""


class AdminItemDetailUpdate(CamelModel):
    title: Optional[str] = Field(None, max_length=500)
    status: Optional[ItemStatus] = None
    due_date: Optional[datetime.date] = None
    template_type: Optional[str] = None
    html: Optional[str] = None
    issue: Optional[str] = None
    memo: Optional[str] = None


class RoleUpdateRequest(CamelModel):
    role: str
