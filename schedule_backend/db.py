"""
Database access for the workspace, backed by SQLAlchemy.

Any SQLAlchemy URL works (Postgres in production). Without a URL an in-memory
SQLite database is used, which is what local runs and tests rely on.
"""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.types import ItemStatus, TemplateType, UserRole

IN_MEMORY_URL = "sqlite+pysqlite:///:memory:"


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _aware(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass
class UserRecord:
    id: str
    email: str
    nickname: str
    password_hash: str
    role: UserRole
    failed_login_count: int = 0
    locked_until: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


@dataclass
class ItemRecord:
    id: str
    user_id: str
    title: str
    status: ItemStatus = ItemStatus.TODO
    template_type: TemplateType = TemplateType.FREE
    parent_id: Optional[str] = None
    due_date: Optional[datetime.date] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


@dataclass
class BlockRecord:
    id: str
    item_id: str
    sort_order: int
    type: str
    content: str
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


@dataclass
class NewBlock:
    sort_order: int
    type: str
    content: str


@dataclass
class DayNoteRecord:
    id: str
    user_id: str
    due_date: datetime.date
    issue: str = ""
    memo: str = ""


@dataclass
class FileAssetRecord:
    id: str
    user_id: str
    item_id: str
    original_name: str
    stored_name: str
    mime_type: str
    size_bytes: int
    created_at: Optional[datetime.datetime] = None


@dataclass
class TagRecord:
    id: str
    user_id: str
    name: str


@dataclass
class WorkspaceSnapshot:
    """Complete replacement content for one user's workspace."""

    items: List[ItemRecord] = field(default_factory=list)
    blocks: List[BlockRecord] = field(default_factory=list)
    day_notes: List[DayNoteRecord] = field(default_factory=list)
    files: List[FileAssetRecord] = field(default_factory=list)
    tag_names: Dict[str, List[str]] = field(default_factory=dict)


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    nickname = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default=UserRole.USER.value)
    failed_login_count = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class WorkspaceItemRow(Base):
    __tablename__ = "workspace_items"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    parent_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False)
    template_type = Column(String, nullable=False)
    due_date = Column(Date, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class BlockRow(Base):
    __tablename__ = "blocks"

    id = Column(String, primary_key=True)
    item_id = Column(String, nullable=False, index=True)
    sort_order = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class DayNoteRow(Base):
    __tablename__ = "day_notes"
    __table_args__ = (UniqueConstraint("user_id", "due_date"),)

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    issue = Column(Text, nullable=False, default="")
    memo = Column(Text, nullable=False, default="")


class FileAssetRow(Base):
    __tablename__ = "file_assets"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    item_id = Column(String, nullable=False, index=True)
    original_name = Column(String, nullable=False)
    stored_name = Column(String, nullable=False, unique=True)
    mime_type = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class TagRow(Base):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name"),)

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)


class ItemTagRow(Base):
    __tablename__ = "item_tags"

    item_id = Column(String, primary_key=True)
    tag_id = Column(String, primary_key=True)


_USER_FIELDS = {"nickname", "password_hash", "role", "failed_login_count", "locked_until"}
_ITEM_FIELDS = {"title", "status", "template_type", "due_date", "parent_id"}


def _to_user(row: UserRow) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        nickname=row.nickname,
        password_hash=row.password_hash,
        role=UserRole(row.role),
        failed_login_count=row.failed_login_count,
        locked_until=_aware(row.locked_until),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_item(row: WorkspaceItemRow) -> ItemRecord:
    return ItemRecord(
        id=row.id,
        user_id=row.user_id,
        parent_id=row.parent_id,
        title=row.title,
        status=ItemStatus(row.status),
        template_type=TemplateType.normalize(row.template_type),
        due_date=row.due_date,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_block(row: BlockRow) -> BlockRecord:
    return BlockRecord(
        id=row.id,
        item_id=row.item_id,
        sort_order=row.sort_order,
        type=row.type,
        content=row.content,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_day_note(row: DayNoteRow) -> DayNoteRecord:
    return DayNoteRecord(
        id=row.id,
        user_id=row.user_id,
        due_date=row.due_date,
        issue=row.issue or "",
        memo=row.memo or "",
    )


def _to_file(row: FileAssetRow) -> FileAssetRecord:
    return FileAssetRecord(
        id=row.id,
        user_id=row.user_id,
        item_id=row.item_id,
        original_name=row.original_name,
        stored_name=row.stored_name,
        mime_type=row.mime_type,
        size_bytes=row.size_bytes,
        created_at=_aware(row.created_at),
    )


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: Optional[str] = None):
        url = database_url or IN_MEMORY_URL
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every session sees an empty database.
            self.engine = create_engine(
                url,
                future=True,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def reset(self) -> None:
        """Drop and recreate every table (useful in tests)."""
        Base.metadata.drop_all(self.engine)
        Base.metadata.create_all(self.engine)

    # Users

    def create_user(
        self,
        email: str,
        nickname: str,
        password_hash: str,
        role: UserRole = UserRole.USER,
    ) -> UserRecord:
        now = utc_now()
        with self.Session() as session:
            row = UserRow(
                id=_new_id(),
                email=email.lower(),
                nickname=nickname,
                password_hash=password_hash,
                role=role.value,
                failed_login_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return _to_user(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.email == email.lower())
            row = session.execute(stmt).scalar_one_or_none()
            return _to_user(row) if row else None

    def update_user(self, user_id: str, **changes) -> Optional[UserRecord]:
        unknown = set(changes) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            for name, value in changes.items():
                if name == "role":
                    value = UserRole(value).value
                setattr(row, name, value)
            row.updated_at = utc_now()
            session.commit()
            return _to_user(row)

    def list_users(self) -> List[UserRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(UserRow).order_by(UserRow.created_at.asc())
            ).scalars()
            return [_to_user(row) for row in rows]

    def delete_user(self, user_id: str) -> bool:
        """Removes the account together with every row the user owns."""
        with self.Session() as session, session.begin():
            row = session.get(UserRow, user_id)
            if not row:
                return False
            self._delete_workspace(session, user_id)
            session.execute(delete(TagRow).where(TagRow.user_id == user_id))
            session.delete(row)
        return True

    def count_items_by_user(self) -> Dict[str, int]:
        with self.Session() as session:
            stmt = select(WorkspaceItemRow.user_id, func.count()).group_by(
                WorkspaceItemRow.user_id
            )
            return {user_id: count for user_id, count in session.execute(stmt)}

    def stats(self) -> Dict[str, int]:
        with self.Session() as session:
            return {
                "users": session.scalar(select(func.count()).select_from(UserRow)),
                "items": session.scalar(select(func.count()).select_from(WorkspaceItemRow)),
                "blocks": session.scalar(select(func.count()).select_from(BlockRow)),
                "files": session.scalar(select(func.count()).select_from(FileAssetRow)),
            }

    # Items

    def create_item(
        self,
        user_id: str,
        title: str,
        *,
        parent_id: Optional[str] = None,
        due_date: Optional[datetime.date] = None,
        template_type: TemplateType = TemplateType.FREE,
        status: ItemStatus = ItemStatus.TODO,
    ) -> ItemRecord:
        now = utc_now()
        with self.Session() as session:
            row = WorkspaceItemRow(
                id=_new_id(),
                user_id=user_id,
                parent_id=parent_id,
                title=title,
                status=ItemStatus(status).value,
                template_type=TemplateType(template_type).value,
                due_date=due_date,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return _to_item(row)

    def get_item(self, item_id: str) -> Optional[ItemRecord]:
        with self.Session() as session:
            row = session.get(WorkspaceItemRow, item_id)
            return _to_item(row) if row else None

    def update_item(self, item_id: str, **changes) -> Optional[ItemRecord]:
        """Applies field changes and bumps `updated_at`."""
        unknown = set(changes) - _ITEM_FIELDS
        if unknown:
            raise ValueError(f"Unknown item fields: {sorted(unknown)}")
        with self.Session() as session:
            row = session.get(WorkspaceItemRow, item_id)
            if not row:
                return None
            for name, value in changes.items():
                if name == "status":
                    value = ItemStatus(value).value
                elif name == "template_type":
                    value = TemplateType(value).value
                setattr(row, name, value)
            row.updated_at = utc_now()
            session.commit()
            return _to_item(row)

    def delete_item(self, item_id: str) -> None:
        with self.Session() as session, session.begin():
            self._delete_items(session, [item_id])
            session.execute(
                WorkspaceItemRow.__table__.update()
                .where(WorkspaceItemRow.parent_id == item_id)
                .values(parent_id=None)
            )

    def list_items(self, user_id: str, limit: Optional[int] = None) -> List[ItemRecord]:
        with self.Session() as session:
            stmt = (
                select(WorkspaceItemRow)
                .where(WorkspaceItemRow.user_id == user_id)
                .order_by(WorkspaceItemRow.updated_at.desc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [_to_item(row) for row in session.execute(stmt).scalars()]

    def list_items_by_due_date(self, user_id: str, due_date: datetime.date) -> List[ItemRecord]:
        with self.Session() as session:
            stmt = (
                select(WorkspaceItemRow)
                .where(
                    WorkspaceItemRow.user_id == user_id,
                    WorkspaceItemRow.due_date == due_date,
                )
                .order_by(WorkspaceItemRow.updated_at.desc())
            )
            return [_to_item(row) for row in session.execute(stmt).scalars()]

    def list_items_between(
        self, user_id: str, start: datetime.date, end: datetime.date
    ) -> List[ItemRecord]:
        """Items due within [start, end], latest due date first."""
        with self.Session() as session:
            stmt = (
                select(WorkspaceItemRow)
                .where(
                    WorkspaceItemRow.user_id == user_id,
                    WorkspaceItemRow.due_date >= start,
                    WorkspaceItemRow.due_date <= end,
                )
                .order_by(
                    WorkspaceItemRow.due_date.desc(),
                    WorkspaceItemRow.updated_at.desc(),
                )
            )
            return [_to_item(row) for row in session.execute(stmt).scalars()]

    def search_items(
        self,
        user_id: str,
        query: str,
        due_date: Optional[datetime.date] = None,
    ) -> List[ItemRecord]:
        """
        Case-insensitive substring search over titles and block content.

        Each matching item is returned once, ordered by due date (undated last)
        and then by most recent update.
        """
        pattern = _like_pattern(query)
        with self.Session() as session:
            content_match = select(BlockRow.item_id).where(
                BlockRow.content.ilike(pattern, escape="\\")
            )
            stmt = select(WorkspaceItemRow).where(
                WorkspaceItemRow.user_id == user_id,
                or_(
                    WorkspaceItemRow.title.ilike(pattern, escape="\\"),
                    WorkspaceItemRow.id.in_(content_match),
                ),
            )
            if due_date is not None:
                stmt = stmt.where(WorkspaceItemRow.due_date == due_date)
            stmt = stmt.order_by(
                WorkspaceItemRow.due_date.is_(None),
                WorkspaceItemRow.due_date.desc(),
                WorkspaceItemRow.updated_at.desc(),
            )
            return [_to_item(row) for row in session.execute(stmt).scalars()]

    # Blocks

    def list_blocks(self, item_id: str) -> List[BlockRecord]:
        with self.Session() as session:
            stmt = (
                select(BlockRow)
                .where(BlockRow.item_id == item_id)
                .order_by(BlockRow.sort_order.asc())
            )
            return [_to_block(row) for row in session.execute(stmt).scalars()]

    def first_block(self, item_id: str) -> Optional[BlockRecord]:
        blocks = self.list_blocks(item_id)
        return blocks[0] if blocks else None

    def first_blocks(self, item_ids: Iterable[str]) -> Dict[str, BlockRecord]:
        ids = list(item_ids)
        if not ids:
            return {}
        with self.Session() as session:
            stmt = (
                select(BlockRow)
                .where(BlockRow.item_id.in_(ids))
                .order_by(BlockRow.sort_order.desc())
            )
            # Later assignments win, so the lowest sort order ends up stored.
            result: Dict[str, BlockRecord] = {}
            for row in session.execute(stmt).scalars():
                result[row.item_id] = _to_block(row)
            return result

    def add_block(self, item_id: str, sort_order: int, type: str, content: str) -> BlockRecord:
        now = utc_now()
        with self.Session() as session:
            row = BlockRow(
                id=_new_id(),
                item_id=item_id,
                sort_order=sort_order,
                type=type,
                content=content,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return _to_block(row)

    def update_block_content(self, block_id: str, content: str) -> None:
        with self.Session() as session:
            row = session.get(BlockRow, block_id)
            if not row:
                return
            row.content = content
            row.updated_at = utc_now()
            session.commit()

    def replace_blocks(self, item_id: str, blocks: List[NewBlock]) -> List[BlockRecord]:
        """Atomically swaps the item's blocks and bumps the item's `updated_at`."""
        now = utc_now()
        with self.Session() as session, session.begin():
            session.execute(delete(BlockRow).where(BlockRow.item_id == item_id))
            rows = [
                BlockRow(
                    id=_new_id(),
                    item_id=item_id,
                    sort_order=block.sort_order,
                    type=block.type,
                    content=block.content,
                    created_at=now,
                    updated_at=now,
                )
                for block in blocks
            ]
            session.add_all(rows)
            item = session.get(WorkspaceItemRow, item_id)
            if item:
                item.updated_at = now
        return sorted((_to_block(row) for row in rows), key=lambda b: b.sort_order)

    def count_blocks_by_item(self, user_id: str) -> Dict[str, int]:
        with self.Session() as session:
            stmt = (
                select(BlockRow.item_id, func.count())
                .join(WorkspaceItemRow, WorkspaceItemRow.id == BlockRow.item_id)
                .where(WorkspaceItemRow.user_id == user_id)
                .group_by(BlockRow.item_id)
            )
            return {item_id: count for item_id, count in session.execute(stmt)}

    # Day notes

    def get_day_note(self, user_id: str, due_date: datetime.date) -> Optional[DayNoteRecord]:
        with self.Session() as session:
            row = self._find_day_note(session, user_id, due_date)
            return _to_day_note(row) if row else None

    def upsert_day_note(
        self,
        user_id: str,
        due_date: datetime.date,
        *,
        issue: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> DayNoteRecord:
        """Creates or updates the note; a None field is left unchanged."""
        with self.Session() as session:
            row = self._find_day_note(session, user_id, due_date)
            if row is None:
                row = DayNoteRow(
                    id=_new_id(), user_id=user_id, due_date=due_date, issue="", memo=""
                )
                session.add(row)
            if issue is not None:
                row.issue = issue
            if memo is not None:
                row.memo = memo
            session.commit()
            return _to_day_note(row)

    def list_day_notes(self, user_id: str) -> List[DayNoteRecord]:
        with self.Session() as session:
            stmt = (
                select(DayNoteRow)
                .where(DayNoteRow.user_id == user_id)
                .order_by(DayNoteRow.due_date.asc())
            )
            return [_to_day_note(row) for row in session.execute(stmt).scalars()]

    def day_notes_for_dates(
        self, user_id: str, dates: Iterable[datetime.date]
    ) -> Dict[datetime.date, DayNoteRecord]:
        wanted = {d for d in dates if d is not None}
        if not wanted:
            return {}
        with self.Session() as session:
            stmt = select(DayNoteRow).where(
                DayNoteRow.user_id == user_id, DayNoteRow.due_date.in_(wanted)
            )
            return {
                row.due_date: _to_day_note(row) for row in session.execute(stmt).scalars()
            }

    @staticmethod
    def _find_day_note(session: Session, user_id: str, due_date: datetime.date) -> Optional[DayNoteRow]:
        stmt = select(DayNoteRow).where(
            DayNoteRow.user_id == user_id, DayNoteRow.due_date == due_date
        )
        return session.execute(stmt).scalar_one_or_none()

    # Files

    def create_file_asset(
        self,
        user_id: str,
        item_id: str,
        original_name: str,
        stored_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> FileAssetRecord:
        with self.Session() as session:
            row = FileAssetRow(
                id=_new_id(),
                user_id=user_id,
                item_id=item_id,
                original_name=original_name,
                stored_name=stored_name,
                mime_type=mime_type,
                size_bytes=size_bytes,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            return _to_file(row)

    def list_files(self, item_id: str) -> List[FileAssetRecord]:
        with self.Session() as session:
            stmt = (
                select(FileAssetRow)
                .where(FileAssetRow.item_id == item_id)
                .order_by(FileAssetRow.created_at.desc())
            )
            return [_to_file(row) for row in session.execute(stmt).scalars()]

    def get_file_by_stored_name(self, stored_name: str) -> Optional[FileAssetRecord]:
        with self.Session() as session:
            stmt = select(FileAssetRow).where(FileAssetRow.stored_name == stored_name)
            row = session.execute(stmt).scalar_one_or_none()
            return _to_file(row) if row else None

    def count_files_by_item(self, user_id: str) -> Dict[str, int]:
        with self.Session() as session:
            stmt = (
                select(FileAssetRow.item_id, func.count())
                .where(FileAssetRow.user_id == user_id)
                .group_by(FileAssetRow.item_id)
            )
            return {item_id: count for item_id, count in session.execute(stmt)}

    # Tags

    def create_tag(self, user_id: str, name: str) -> TagRecord:
        with self.Session() as session:
            row = TagRow(id=_new_id(), user_id=user_id, name=name)
            session.add(row)
            session.commit()
            return TagRecord(id=row.id, user_id=row.user_id, name=row.name)

    def get_tag_by_name(self, user_id: str, name: str) -> Optional[TagRecord]:
        with self.Session() as session:
            stmt = select(TagRow).where(TagRow.user_id == user_id, TagRow.name == name)
            row = session.execute(stmt).scalar_one_or_none()
            return TagRecord(id=row.id, user_id=row.user_id, name=row.name) if row else None

    def list_tags(self, user_id: str) -> List[TagRecord]:
        with self.Session() as session:
            stmt = select(TagRow).where(TagRow.user_id == user_id).order_by(TagRow.name.asc())
            return [
                TagRecord(id=row.id, user_id=row.user_id, name=row.name)
                for row in session.execute(stmt).scalars()
            ]

    def set_item_tags(self, item_id: str, tag_ids: Iterable[str]) -> None:
        with self.Session() as session, session.begin():
            session.execute(delete(ItemTagRow).where(ItemTagRow.item_id == item_id))
            session.add_all(
                ItemTagRow(item_id=item_id, tag_id=tag_id) for tag_id in dict.fromkeys(tag_ids)
            )

    def tag_names_for_items(self, item_ids: Iterable[str]) -> Dict[str, List[str]]:
        ids = list(item_ids)
        if not ids:
            return {}
        with self.Session() as session:
            stmt = (
                select(ItemTagRow.item_id, TagRow.name)
                .join(TagRow, TagRow.id == ItemTagRow.tag_id)
                .where(ItemTagRow.item_id.in_(ids))
                .order_by(TagRow.name.asc())
            )
            result: Dict[str, List[str]] = {}
            for item_id, name in session.execute(stmt):
                result.setdefault(item_id, []).append(name)
            return result

    # Backup restore

    def replace_workspace(self, user_id: str, snapshot: WorkspaceSnapshot) -> None:
        """
        Deletes the user's items, blocks, day notes, tag links and file assets
        and inserts the snapshot in a single transaction. Tags are kept and
        reused by name; missing ones are created.
        """
        with self.Session() as session, session.begin():
            self._delete_workspace(session, user_id)
            for item in snapshot.items:
                session.add(
                    WorkspaceItemRow(
                        id=item.id,
                        user_id=user_id,
                        parent_id=item.parent_id,
                        title=item.title,
                        status=ItemStatus(item.status).value,
                        template_type=TemplateType(item.template_type).value,
                        due_date=item.due_date,
                        created_at=item.created_at or utc_now(),
                        updated_at=item.updated_at or utc_now(),
                    )
                )
            for block in snapshot.blocks:
                session.add(
                    BlockRow(
                        id=block.id,
                        item_id=block.item_id,
                        sort_order=block.sort_order,
                        type=block.type,
                        content=block.content,
                        created_at=block.created_at or utc_now(),
                        updated_at=block.updated_at or utc_now(),
                    )
                )
            for note in snapshot.day_notes:
                session.add(
                    DayNoteRow(
                        id=note.id,
                        user_id=user_id,
                        due_date=note.due_date,
                        issue=note.issue,
                        memo=note.memo,
                    )
                )
            for asset in snapshot.files:
                session.add(
                    FileAssetRow(
                        id=asset.id,
                        user_id=user_id,
                        item_id=asset.item_id,
                        original_name=asset.original_name,
                        stored_name=asset.stored_name,
                        mime_type=asset.mime_type,
                        size_bytes=asset.size_bytes,
                        created_at=asset.created_at or utc_now(),
                    )
                )
            tags = {
                row.name: row.id
                for row in session.execute(
                    select(TagRow).where(TagRow.user_id == user_id)
                ).scalars()
            }
            for item_id, names in snapshot.tag_names.items():
                for name in dict.fromkeys(names):
                    if name not in tags:
                        tag = TagRow(id=_new_id(), user_id=user_id, name=name)
                        session.add(tag)
                        tags[name] = tag.id
                    session.add(ItemTagRow(item_id=item_id, tag_id=tags[name]))

    def _delete_workspace(self, session: Session, user_id: str) -> None:
        item_ids = list(
            session.execute(
                select(WorkspaceItemRow.id).where(WorkspaceItemRow.user_id == user_id)
            ).scalars()
        )
        self._delete_items(session, item_ids)
        session.execute(delete(FileAssetRow).where(FileAssetRow.user_id == user_id))
        session.execute(delete(DayNoteRow).where(DayNoteRow.user_id == user_id))

    @staticmethod
    def _delete_items(session: Session, item_ids: List[str]) -> None:
        if not item_ids:
            return
        session.execute(delete(BlockRow).where(BlockRow.item_id.in_(item_ids)))
        session.execute(delete(ItemTagRow).where(ItemTagRow.item_id.in_(item_ids)))
        session.execute(delete(FileAssetRow).where(FileAssetRow.item_id.in_(item_ids)))
        session.execute(delete(WorkspaceItemRow).where(WorkspaceItemRow.id.in_(item_ids)))
