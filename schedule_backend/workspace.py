"""
Workspace items, content blocks, day notes, tags and the monthly board.
"""

from __future__ import annotations

import calendar
import datetime
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from schedule_backend.db import (
    BlockRecord,
    DayNoteRecord,
    ItemRecord,
    NewBlock,
    SqlDbClient,
    TagRecord,
)
from schedule_backend.errors import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from shared.string_utils import count_token, is_blank, short_text, to_one_line
from shared.types import ItemStatus, TemplateType

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10
MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

TODAY_HEADINGS = ("요청내용", "오늘의 업무")
ISSUE_HEADING = "이슈"
MEMO_HEADING = "메모"
SECTION_HEADINGS = {"h1", "h2", "h3", "h4"}
CHECKLIST_OPEN = ("[ ]", "☐")
CHECKLIST_DONE = ("[x]", "☑")


@dataclass
class BoardRow:
    item: ItemRecord
    today_work: str = ""
    issue: str = ""
    memo: str = ""
    checklist_total: int = 0
    checklist_done: int = 0


@dataclass
class ContentSummary:
    today_work: str = ""
    issue: str = ""
    memo: str = ""
    checklist_total: int = 0
    checklist_done: int = 0


def parse_month(month: str) -> tuple[datetime.date, datetime.date]:
    """Returns the first and last day of a `YYYY-MM` month."""
    match = MONTH_PATTERN.match(month or "")
    if not match:
        raise ValidationError("month must be formatted as YYYY-MM")
    year, number = int(match.group(1)), int(match.group(2))
    if not 1 <= number <= 12:
        raise ValidationError("month must be formatted as YYYY-MM")
    last_day = calendar.monthrange(year, number)[1]
    return datetime.date(year, number, 1), datetime.date(year, number, last_day)


def summarize_html(html: str) -> ContentSummary:
    """
    Pulls the today / issue / memo sections and checklist counts out of
    document HTML.

    Sections start at an h1-h4 heading whose text names them and collect the
    text of the following top-level elements. Without a today section the
    first paragraph or list item is used.
    """
    if is_blank(html):
        return ContentSummary()
    soup = BeautifulSoup(html, "html.parser")

    total = done = 0
    for li in soup.find_all("li"):
        text = li.get_text(" ")
        if any(token in text for token in CHECKLIST_OPEN + CHECKLIST_DONE):
            total += 1
            if any(token in text for token in CHECKLIST_DONE):
                done += 1

    lines: Dict[str, List[str]] = {"today": [], "issue": [], "memo": []}
    section = None
    for element in soup.find_all(True, recursive=False):
        text = " ".join(element.get_text(" ").split())
        if not text:
            continue
        if element.name in SECTION_HEADINGS:
            if any(heading in text for heading in TODAY_HEADINGS):
                section = "today"
            elif ISSUE_HEADING in text:
                section = "issue"
            elif MEMO_HEADING in text:
                section = "memo"
            else:
                section = None
            continue
        if section is not None:
            lines[section].append(text)

    summary = ContentSummary(
        today_work=short_text(" / ".join(lines["today"])),
        issue=short_text(" / ".join(lines["issue"])),
        memo=short_text(" / ".join(lines["memo"])),
        checklist_total=total,
        checklist_done=min(done, total),
    )
    if not summary.today_work:
        first = soup.find(["p", "li"])
        if first is not None:
            summary.today_work = short_text(first.get_text(" "))
    return summary


def summarize_block(content: Optional[str]) -> ContentSummary:
    """Summarizes a block's JSON content for the board."""
    if is_blank(content):
        return ContentSummary()
    try:
        payload = json.loads(content)
    except ValueError:
        logger.debug("Block content is not JSON; board summary left empty")
        return ContentSummary()
    if not isinstance(payload, dict):
        return ContentSummary()

    worklog = payload.get("worklog")
    if isinstance(worklog, dict):
        today = to_one_line(str(worklog.get("requestContent") or ""))
        memo = to_one_line(str(worklog.get("processContent1") or ""))
        return ContentSummary(
            today_work=today,
            issue=to_one_line(str(worklog.get("requestChannel") or "")),
            memo=memo,
            checklist_total=count_token(today, "[ ]") + count_token(memo, "[ ]"),
            checklist_done=count_token(today, "[x]") + count_token(memo, "[x]"),
        )

    summary = summarize_html(str(payload.get("html") or ""))
    issue = to_one_line(str(payload.get("issue") or ""))
    memo = to_one_line(str(payload.get("memo") or ""))
    if issue:
        summary.issue = issue
    if memo:
        summary.memo = memo
    return summary


class WorkspaceService:
    def __init__(self, db: SqlDbClient):
        self.db = db

    def owned_item(self, user_id: str, item_id: str) -> ItemRecord:
        item = self.db.get_item(item_id)
        if item is None:
            raise NotFoundError("Item not found.")
        if item.user_id != user_id:
            raise ForbiddenError("You do not have access to this item.")
        return item

    def _check_parent(self, user_id: str, item_id: Optional[str], parent_id: Optional[str]) -> None:
        if parent_id is None:
            return
        if parent_id == item_id:
            raise BadRequestError("An item cannot be its own parent.")
        self.owned_item(user_id, parent_id)

    # Items

    def create_item(
        self,
        user_id: str,
        title: str,
        *,
        parent_id: Optional[str] = None,
        due_date: Optional[datetime.date] = None,
        template_type: Optional[str] = None,
    ) -> ItemRecord:
        if is_blank(title):
            raise ValidationError("title must not be blank")
        self._check_parent(user_id, None, parent_id)
        return self.db.create_item(
            user_id,
            title.strip(),
            parent_id=parent_id,
            due_date=due_date,
            template_type=TemplateType.normalize(template_type),
        )

    def list_items(
        self,
        user_id: str,
        query: Optional[str] = None,
        due_date: Optional[datetime.date] = None,
    ) -> List[ItemRecord]:
        keyword = (query or "").strip()
        if keyword:
            return self.db.search_items(user_id, keyword, due_date)
        if due_date is not None:
            return self.db.list_items_by_due_date(user_id, due_date)
        return self.db.list_items(user_id)

    def recent_items(self, user_id: str) -> List[ItemRecord]:
        return self.db.list_items(user_id, limit=RECENT_LIMIT)

    def update_item(self, user_id: str, item_id: str, changes: Dict[str, Any]) -> ItemRecord:
        """
        Applies a partial update. Only keys present in `changes` are touched;
        a blank title is ignored and `tag_ids` replaces the item's tags.
        """
        self.owned_item(user_id, item_id)
        fields: Dict[str, Any] = {}
        title = changes.get("title")
        if title is not None and not is_blank(title):
            fields["title"] = title.strip()
        if changes.get("status") is not None:
            fields["status"] = ItemStatus(changes["status"])
        if changes.get("due_date") is not None:
            fields["due_date"] = changes["due_date"]
        if changes.get("template_type") is not None:
            fields["template_type"] = TemplateType.normalize(changes["template_type"])
        if "parent_id" in changes:
            self._check_parent(user_id, item_id, changes["parent_id"])
            fields["parent_id"] = changes["parent_id"]

        tag_ids = changes.get("tag_ids")
        if tag_ids is not None:
            owned = {tag.id for tag in self.db.list_tags(user_id)}
            unknown = [tag_id for tag_id in tag_ids if tag_id not in owned]
            if unknown:
                raise BadRequestError(f"Unknown tag ids: {', '.join(unknown)}")
            self.db.set_item_tags(item_id, tag_ids)

        return self.db.update_item(item_id, **fields)

    def delete_item(self, user_id: str, item_id: str) -> None:
        self.owned_item(user_id, item_id)
        self.db.delete_item(item_id)
        logger.info("Deleted item %s of user %s", item_id, user_id)

    def board(self, user_id: str, month: str) -> List[BoardRow]:
        start, end = parse_month(month)
        items = self.db.list_items_between(user_id, start, end)
        blocks = self.db.first_blocks(item.id for item in items)
        notes = self.db.day_notes_for_dates(user_id, (item.due_date for item in items))

        rows = []
        for item in items:
            block = blocks.get(item.id)
            summary = summarize_block(block.content if block else None)
            row = BoardRow(
                item=item,
                today_work=summary.today_work,
                issue=summary.issue,
                memo=summary.memo,
                checklist_total=summary.checklist_total,
                checklist_done=summary.checklist_done,
            )
            note = notes.get(item.due_date)
            if note is not None:
                if not is_blank(note.issue):
                    row.issue = short_text(note.issue)
                if not is_blank(note.memo):
                    row.memo = short_text(note.memo)
            rows.append(row)
        return rows

    # Day notes

    def get_day_note(self, user_id: str, due_date: datetime.date) -> DayNoteRecord:
        note = self.db.get_day_note(user_id, due_date)
        if note is None:
            return DayNoteRecord(id="", user_id=user_id, due_date=due_date)
        return note

    def put_day_note(
        self,
        user_id: str,
        due_date: datetime.date,
        issue: Optional[str],
        memo: Optional[str],
    ) -> DayNoteRecord:
        return self.db.upsert_day_note(
            user_id, due_date, issue=issue or "", memo=memo or ""
        )

    # Content

    def get_blocks(self, user_id: str, item_id: str) -> List[BlockRecord]:
        self.owned_item(user_id, item_id)
        return self.db.list_blocks(item_id)

    def replace_blocks(self, user_id: str, item_id: str, blocks: List[NewBlock]) -> List[BlockRecord]:
        self.owned_item(user_id, item_id)
        for block in blocks:
            if is_blank(block.type) or is_blank(block.content):
                raise ValidationError("block type and content must not be blank")
        return self.db.replace_blocks(item_id, blocks)

    # Tags

    def create_tag(self, user_id: str, name: str) -> TagRecord:
        if is_blank(name):
            raise ValidationError("name must not be blank")
        name = name.strip()
        if self.db.get_tag_by_name(user_id, name):
            raise BadRequestError("Tag already exists.")
        return self.db.create_tag(user_id, name)

    def list_tags(self, user_id: str) -> List[TagRecord]:
        return self.db.list_tags(user_id)
