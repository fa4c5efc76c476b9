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

import csv
import datetime
import io
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from migration_pipeline.text_utils import apply_inline_code
from shared.string_utils import is_blank

DATE_HEADERS = ("날짜", "date", "캘린더")
WORK_HEADERS = ("오늘의 업무", "업무", "title", "task")
ISSUE_HEADERS = ("이슈", "issue")
MEMO_HEADERS = ("메모", "memo", "note")
# Exact column names used for the title of undated rows.
TITLE_COLUMNS = ("오늘의 업무 제목", "제목")

WORK_SECTION = "요청내용"
ISSUE_SECTION = "이슈"
MEMO_SECTION = "메모"


def find_header(headers: Iterable[str], candidates: Sequence[str]) -> Optional[str]:
    """
    Picks the first header matching a candidate, in candidate order.

    A header matches when it equals the candidate ignoring case, or contains
    it as a substring.
    """
    header_list = [h for h in headers if h]
    for candidate in candidates:
        for header in header_list:
            if header.strip().lower() == candidate.lower() or candidate in header:
                return header
    return None


@dataclass
class WorklogColumns:
    date: Optional[str]
    work: Optional[str]
    issue: Optional[str]
    memo: Optional[str]

    @classmethod
    def from_headers(cls, headers: Sequence[str]) -> "WorklogColumns":
        return cls(
            date=find_header(headers, DATE_HEADERS),
            work=find_header(headers, WORK_HEADERS),
            issue=find_header(headers, ISSUE_HEADERS),
            memo=find_header(headers, MEMO_HEADERS),
        )


@dataclass
class CsvRow:
    """One data record; `line` is its 1-based line number counting the header."""

    line: int
    values: Dict[Optional[str], object]

    def read(self, column: Optional[str]) -> str:
        if column is None:
            return ""
        value = self.values.get(column)
        return value if isinstance(value, str) else ""

    def check(self) -> None:
        # DictReader collects surplus fields under the None key.
        extra = self.values.get(None)
        if extra:
            raise ValueError(f"{len(extra)} value(s) beyond the header columns")


def read_worklog_csv(data: bytes) -> Tuple[WorklogColumns, Iterator[CsvRow]]:
    """
    Parses CSV bytes (UTF-8, optional BOM) into detected columns and rows.

    Raises UnicodeDecodeError or csv.Error when the file itself is unreadable.
    Rows are yielded lazily; blank lines are skipped.
    """
    text = data.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(text, newline=""))
    headers = reader.fieldnames or []
    columns = WorklogColumns.from_headers(headers)

    def rows() -> Iterator[CsvRow]:
        for index, values in enumerate(reader, start=1):
            yield CsvRow(line=index + 1, values=values)

    return columns, rows()


def _append_section(parts: List[str], title: str, value: str) -> None:
    if is_blank(value):
        return
    parts.append(f"<h3>{title}</h3>")
    for line in value.splitlines():
        if line.strip():
            parts.append(f"<p>{apply_inline_code(line.strip())}</p>")


def csv_row_to_html(work: str, issue: str, memo: str) -> str:
    parts: List[str] = []
    _append_section(parts, WORK_SECTION, work)
    _append_section(parts, ISSUE_SECTION, issue)
    _append_section(parts, MEMO_SECTION, memo)
    return "".join(parts)


def merge_day_text(
    target: Dict[datetime.date, str],
    due_date: Optional[datetime.date],
    value: Optional[str],
) -> None:
    """Appends `value` to the text collected for `due_date` unless already present."""
    if due_date is None or is_blank(value):
        return
    normalized = value.strip()
    current = target.get(due_date, "")
    if normalized in current:
        return
    target[due_date] = f"{current}\n{normalized}" if current else normalized
