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
import re
from typing import Optional

from shared.string_utils import escape_html, is_blank

DEFAULT_TITLE = "Imported item"
MAX_TITLE_LENGTH = 120

ISO_DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
KOREAN_DATE_PATTERN = re.compile(r"(\d{4})년\s*(\d{1,2})월\s*(\d{1,2})일")
# Notion appends a 32 character hex id to exported page names.
TRAILING_ID_PATTERN = re.compile(r"\s+[0-9a-f]{32}$", re.IGNORECASE)
WON_CODE_PATTERN = re.compile(r"₩([^₩]{1,200})₩")
BACKTICK_CODE_PATTERN = re.compile(r"`([^`]{1,300})`")

MIME_BY_EXTENSION = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "csv": "text/csv",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}


def _safe_date(year: str, month: str, day: str) -> Optional[datetime.date]:
    try:
        return datetime.date(int(year), int(month), int(day))
    except ValueError:
        return None


def parse_date_flexible(source: Optional[str]) -> Optional[datetime.date]:
    """
    Finds the first calendar date in free text.

    Both ISO dates (2024-03-05) and Korean dates (2024년 3월 5일) are
    recognized; ISO takes precedence. Impossible dates yield None.
    """
    if is_blank(source):
        return None
    iso = ISO_DATE_PATTERN.search(source)
    if iso:
        return _safe_date(*iso.groups())
    korean = KOREAN_DATE_PATTERN.search(source)
    if korean:
        return _safe_date(*korean.groups())
    return None


def normalize_title(raw: Optional[str]) -> str:
    if is_blank(raw):
        return DEFAULT_TITLE
    return TRAILING_ID_PATTERN.sub("", raw.strip()).strip()


def clip_title(raw: str) -> str:
    """Keeps the first line of `raw`, at most MAX_TITLE_LENGTH characters."""
    lines = raw.splitlines()
    title = (lines[0] if lines else raw).strip()
    return title[:MAX_TITLE_LENGTH]


def apply_inline_code(raw: str) -> str:
    escaped = escape_html(raw)
    escaped = WON_CODE_PATTERN.sub(r"<code>\1</code>", escaped)
    return BACKTICK_CODE_PATTERN.sub(r"<code>\1</code>", escaped)


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def file_name(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def directory_path(path: str) -> str:
    if "/" not in path:
        return ""
    return path.rsplit("/", 1)[0]


def strip_extension(name: str) -> str:
    if "." not in name:
        return name
    return name.rsplit(".", 1)[0]


def extension(path: str) -> str:
    name = file_name(path).lower()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1]


def path_depth(path: Optional[str]) -> int:
    if is_blank(path):
        return 0
    return path.count("/")


def level_from_date(path: Optional[str]) -> int:
    """
    Returns how many path segments sit below the first dated segment.

    Archive segments (`*.zip`) are not counted. A path without any dated
    segment has level 0.
    """
    if is_blank(path):
        return 0
    segments = [
        segment
        for segment in normalize_path(path).split("/")
        if segment.strip() and not segment.lower().endswith(".zip")
    ]
    for index, segment in enumerate(segments):
        if parse_date_flexible(strip_extension(segment)) is not None:
            return max(0, len(segments) - 1 - index)
    return 0


def mime_for_extension(ext: str) -> str:
    return MIME_BY_EXTENSION.get(ext.lower(), "image/png")
