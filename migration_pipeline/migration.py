# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import datetime
import json
import logging
import re
from typing import Dict, List, Optional, Protocol, Tuple

from migration_pipeline import csv_utils
from migration_pipeline.archive_utils import ArchiveEntry, ExtractionLimits, extract_entries
from migration_pipeline.html_utils import rewrite_asset_urls, sanitize_html
from migration_pipeline.markdown_utils import (
    extract_title,
    infer_template_type,
    markdown_to_html,
)
from migration_pipeline.text_utils import (
    DEFAULT_TITLE,
    clip_title,
    directory_path,
    extension,
    file_name,
    level_from_date,
    mime_for_extension,
    normalize_path,
    normalize_title,
    parse_date_flexible,
    path_depth,
    strip_extension,
)
from shared.file_urls import file_url
from shared.string_utils import escape_html, first_non_blank
from shared.types import MigrationReport, TemplateType

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_NAME = "upload.zip"
ASSET_EXTENSIONS = frozenset(
    {"png", "jpg", "jpeg", "webp", "gif", "pdf", "txt", "csv",
     "doc", "docx", "xls", "xlsx", "ppt", "pptx"}
)
DOCUMENT_SUFFIXES = (".md", ".html", ".htm")
# Documents nested this many levels below a dated folder are folded into
# their parent page.
MERGE_LEVEL = 2
MANUAL_FIX_HINTS = (
    "Date or status columns with different names need manual mapping",
    "Some non-standard checklist syntax may be converted to plain paragraphs",
    "Nested ZIP archives are detected automatically, but encrypted ZIPs are not supported",
)

_SLASHES = re.compile(r"/+")


class MigrationTarget(Protocol):
    """Persistence operations the importer needs, scoped to one user."""

    def create_item(
        self,
        title: str,
        template_type: TemplateType,
        due_date: Optional[datetime.date],
        parent_id: Optional[str],
    ) -> str:
        ...

    def find_item_by_due_date(self, due_date: datetime.date) -> Optional[str]:
        """Returns the most recently updated item due on `due_date`."""
        ...

    def item_due_date(self, item_id: str) -> Optional[datetime.date]:
        ...

    def list_blocks(self, item_id: str) -> List[Tuple[str, str]]:
        """Returns (block id, content) pairs ordered by sort order."""
        ...

    def add_block(self, item_id: str, content: str) -> None:
        ...

    def update_block(self, block_id: str, content: str) -> None:
        ...

    def merge_day_note(self, due_date: datetime.date, issue: str, memo: str) -> None:
        """Upserts the day note, overwriting only the non-blank fields."""
        ...

    def store_file(self, item_id: str, original_name: str, mime_type: str, data: bytes) -> str:
        """Stores the file, records it against the item and returns the stored name."""
        ...


def _html_payload(html: str, **extra: str) -> str:
    return json.dumps({"html": html, **extra}, ensure_ascii=False)


def _page_folders(path: str) -> List[str]:
    normalized = normalize_path(path)
    directory = directory_path(normalized)
    stem = strip_extension(file_name(normalized))
    return [
        _SLASHES.sub("/", f"{directory}/{stem}"),
        _SLASHES.sub("/", f"{directory}/{normalize_title(stem)}"),
    ]


class MigrationImporter:
    """
    Imports a ZIP export of notes (Notion style markdown/html pages, worklog
    CSV tables and their attachments) into one user's workspace.

    Every archive member is handled on its own: a malformed member is recorded
    in the report's failures and the import carries on with the rest.
    """

    def __init__(self, target: MigrationTarget, limits: Optional[ExtractionLimits] = None):
        self.target = target
        self.limits = limits or ExtractionLimits()

    def run(self, filename: Optional[str], data: bytes) -> MigrationReport:
        return _MigrationRun(self.target, self.limits).execute(filename, data)


class _MigrationRun:
    """State for a single import."""

    def __init__(self, target: MigrationTarget, limits: ExtractionLimits):
        self.target = target
        self.limits = limits
        self.report = MigrationReport(manual_fix_hints=list(MANUAL_FIX_HINTS))
        self.item_paths: Dict[str, str] = {}
        self.asset_rewrites: Dict[str, Dict[str, str]] = {}

    def execute(self, filename: Optional[str], data: bytes) -> MigrationReport:
        source_name = DEFAULT_SOURCE_NAME
        if filename and filename.strip():
            source_name = normalize_path(filename.strip())

        entries = extract_entries(source_name, data, self.report.failures, self.limits)
        logger.info("Migration archive %s yielded %d entries", source_name, len(entries))

        for entry in entries:
            if entry.lower_path.endswith(".csv"):
                self._import_csv(entry)

        documents = sorted(
            (e for e in entries if e.lower_path.endswith(DOCUMENT_SUFFIXES)),
            key=lambda e: path_depth(e.path),
        )
        for entry in documents:
            self._import_document(entry)

        for entry in entries:
            if extension(entry.path) in ASSET_EXTENSIONS:
                self._import_asset(entry)

        for item_id, rewrites in self.asset_rewrites.items():
            self._rewrite_item_blocks(item_id, rewrites)

        logger.info(
            "Migration of %s finished: %d items, %d files, %d failures",
            source_name,
            self.report.persisted_items,
            self.report.persisted_files,
            len(self.report.failures),
        )
        return self.report

    # CSV tables

    def _import_csv(self, entry: ArchiveEntry) -> None:
        if entry.lower_path.endswith("_all.csv"):
            self.report.detected_patterns.append(f"csv-skip-all:{entry.path}")
            return
        self.report.detected_patterns.append(f"csv:{entry.path}")

        issues: Dict[datetime.date, str] = {}
        memos: Dict[datetime.date, str] = {}
        try:
            columns, rows = csv_utils.read_worklog_csv(entry.data)
            for row in rows:
                try:
                    self._import_csv_row(row, columns, issues, memos)
                except Exception as e:
                    logger.warning("CSV row %d of %s failed: %s", row.line, entry.path, e)
                    self.report.failures.append(
                        f"CSV row parse failed({entry.path}, row {row.line}): {e}"
                    )
        except Exception as e:
            logger.warning("CSV %s could not be parsed: %s", entry.path, e)
            self.report.failures.append(f"CSV parse failed({entry.path}): {e}")

        for day in sorted(set(issues) | set(memos)):
            try:
                self.target.merge_day_note(day, issues.get(day, ""), memos.get(day, ""))
            except Exception as e:
                logger.warning("Day note %s from %s failed: %s", day, entry.path, e)
                self.report.failures.append(f"Day note save failed({entry.path}, {day}): {e}")

    def _import_csv_row(
        self,
        row: csv_utils.CsvRow,
        columns: csv_utils.WorklogColumns,
        issues: Dict[datetime.date, str],
        memos: Dict[datetime.date, str],
    ) -> None:
        row.check()
        due_date = parse_date_flexible(row.read(columns.date))
        if due_date is not None:
            title = due_date.isoformat()
        else:
            title = first_non_blank(
                *(row.read(name) for name in csv_utils.TITLE_COLUMNS),
                f"{DEFAULT_TITLE} {row.line - 1}",
            )
        item_id = self.target.create_item(
            normalize_title(clip_title(title)), TemplateType.WORKLOG, due_date, None
        )

        work = row.read(columns.work)
        issue = row.read(columns.issue)
        memo = row.read(columns.memo)
        html = csv_utils.csv_row_to_html(work, issue, memo)
        if html.strip():
            self.target.add_block(item_id, _html_payload(html, issue=issue or "", memo=memo or ""))
        csv_utils.merge_day_text(issues, due_date, issue)
        csv_utils.merge_day_text(memos, due_date, memo)
        self.report.persisted_items += 1

    # Markdown and HTML pages

    def _import_document(self, entry: ArchiveEntry) -> None:
        is_markdown = entry.lower_path.endswith(".md")
        kind = "Markdown" if is_markdown else "HTML"
        self.report.detected_patterns.append(
            f"{'markdown' if is_markdown else 'html'}:{entry.path}"
        )
        parent_id = self._find_parent(entry.path)
        try:
            text = entry.data.decode("utf-8")
            html = markdown_to_html(text) if is_markdown else sanitize_html(text)

            if parent_id is not None and level_from_date(entry.path) >= MERGE_LEVEL:
                self._append_section(parent_id, file_name(entry.path), html)
                return

            if is_markdown:
                title = extract_title(text, entry.path)
                template_type = infer_template_type(text)
            else:
                title = normalize_title(strip_extension(file_name(entry.path)))
                template_type = TemplateType.FREE
            due_date = parse_date_flexible(f"{title} {entry.path}")

            if parent_id is None and due_date is not None:
                anchor_id = self.target.find_item_by_due_date(due_date)
                if anchor_id is not None:
                    self._append_section(anchor_id, file_name(entry.path), html)
                    self._register_item_path(entry.path, anchor_id)
                    return

            if due_date is None and parent_id is not None:
                due_date = self.target.item_due_date(parent_id)
            item_id = self.target.create_item(title, template_type, due_date, parent_id)
            if html.strip():
                self.target.add_block(item_id, _html_payload(html))
            self.report.persisted_items += 1
            self._register_item_path(entry.path, item_id)
        except Exception as e:
            logger.warning("%s page %s failed: %s", kind, entry.path, e)
            self.report.failures.append(f"{kind} parse failed({entry.path}): {e}")

    def _append_section(self, item_id: str, source_name: str, html: str) -> None:
        """Appends `<hr /><h3>title</h3>html` to the item's first block."""
        if not html or not html.strip():
            return
        section_title = normalize_title(strip_extension(source_name))
        section = f"<hr /><h3>{escape_html(section_title)}</h3>{html}"
        try:
            blocks = self.target.list_blocks(item_id)
            if not blocks:
                self.target.add_block(item_id, _html_payload(section))
                return
            block_id, content = blocks[0]
            payload = json.loads(content)
            if not isinstance(payload, dict):
                raise ValueError("first block content is not a JSON object")
            payload["html"] = str(payload.get("html") or "") + section
            self.target.update_block(block_id, json.dumps(payload, ensure_ascii=False))
        except Exception as e:
            logger.warning("Merging %s into item %s failed: %s", source_name, item_id, e)
            self.report.failures.append(f"Parent merge failed({source_name}): {e}")

    def _register_item_path(self, path: str, item_id: str) -> None:
        for folder in _page_folders(path):
            self.item_paths[folder] = item_id

    def _find_parent(self, path: str) -> Optional[str]:
        directory = directory_path(normalize_path(path))
        while directory:
            found = self.item_paths.get(directory)
            if found is not None:
                return found
            directory = directory_path(directory)
        return None

    # Attachments

    def _find_owner(self, path: str) -> Optional[str]:
        """The item whose page folder is the longest prefix of `path`."""
        normalized = normalize_path(path)
        best = None
        for folder in self.item_paths:
            if normalized.startswith(folder + "/") and (best is None or len(folder) > len(best)):
                best = folder
        return self.item_paths[best] if best is not None else None

    def _import_asset(self, entry: ArchiveEntry) -> None:
        item_id = self._find_owner(entry.path)
        if item_id is None:
            return
        original_name = file_name(entry.path)
        try:
            mime_type = mime_for_extension(extension(entry.path))
            stored_name = self.target.store_file(item_id, original_name, mime_type, entry.data)
        except Exception as e:
            logger.warning("Storing %s failed: %s", entry.path, e)
            self.report.failures.append(f"File store failed({entry.path}): {e}")
            return
        url = file_url(stored_name)
        rewrites = self.asset_rewrites.setdefault(item_id, {})
        normalized = normalize_path(entry.path)
        rewrites[original_name] = url
        rewrites["./" + original_name] = url
        rewrites[normalized] = url
        self.report.persisted_files += 1

    def _rewrite_item_blocks(self, item_id: str, rewrites: Dict[str, str]) -> None:
        for block_id, content in self.target.list_blocks(item_id):
            try:
                payload = json.loads(content)
            except ValueError:
                logger.warning("Block %s of item %s is not JSON; links left as is", block_id, item_id)
                continue
            if not isinstance(payload, dict):
                continue
            html = payload.get("html")
            if not isinstance(html, str) or not html.strip():
                continue
            updated = rewrite_asset_urls(html, rewrites)
            if updated != html:
                payload["html"] = updated
                self.target.update_block(block_id, json.dumps(payload, ensure_ascii=False))
