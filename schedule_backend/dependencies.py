"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header

from schedule_backend.auth_service import AuthService
from schedule_backend.backup import BackupService
from schedule_backend.config import get_settings
from schedule_backend.db import SqlDbClient, UserRecord
from schedule_backend.errors import ForbiddenError, UnauthorizedError
from schedule_backend.files import FileService
from schedule_backend.imports import extraction_limits
from schedule_backend.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)
from schedule_backend.storage import (
    InMemoryStorageClient,
    LocalStorageClient,
    S3StorageClient,
    StorageClient,
)
from schedule_backend.workspace import WorkspaceService
from shared.types import UserRole

_db_client: SqlDbClient | None = None
_storage_client: StorageClient | None = None
_kv_store: KeyValueStore | None = None


def get_db_client() -> SqlDbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = SqlDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _storage_client = InMemoryStorageClient()
    elif settings.s3_bucket:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    elif settings.files_base_dir:
        _storage_client = LocalStorageClient(settings.files_base_dir)
    else:
        _storage_client = InMemoryStorageClient()
    return _storage_client


def get_kv_store() -> KeyValueStore:
    """
    Return a singleton key-value store for tokens, rate limits and import locks.
    """
    global _kv_store
    if _kv_store:
        return _kv_store

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _kv_store = RedisKeyValueStore(
            url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
        )
    else:
        _kv_store = InMemoryKeyValueStore()
    return _kv_store


def get_auth_service(
    db: SqlDbClient = Depends(get_db_client),
    kv: KeyValueStore = Depends(get_kv_store),
) -> AuthService:
    return AuthService(db, kv, get_settings())


def get_workspace_service(db: SqlDbClient = Depends(get_db_client)) -> WorkspaceService:
    return WorkspaceService(db)


def get_file_service(
    db: SqlDbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
) -> FileService:
    return FileService(db, storage)


def get_backup_service(
    db: SqlDbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
) -> BackupService:
    return BackupService(db, storage, extraction_limits(get_settings()))


def get_current_user(
    authorization: Optional[str] = Header(None),
    auth: AuthService = Depends(get_auth_service),
) -> UserRecord:
    """Resolves the `Authorization: Bearer` token to the calling user."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Authentication required.")
    claims = auth.tokens.parse_access_token(token.strip())
    user = auth.db.get_user(claims.user_id)
    if user is None:
        raise UnauthorizedError("Authentication required.")
    return user


def require_admin(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if user.role != UserRole.ADMIN:
        raise ForbiddenError("Administrator role required.")
    return user
