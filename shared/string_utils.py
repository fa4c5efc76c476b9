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

import re
from typing import Optional

SHORT_TEXT_LIMIT = 120

_WHITESPACE = re.compile(r"\s+")


def escape_html(raw: str) -> str:
    """Escapes the characters that matter inside element text."""
    return raw.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def first_non_blank(*values: Optional[str]) -> str:
    for value in values:
        if not is_blank(value):
            return value
    return ""


def short_text(raw: Optional[str], limit: int = SHORT_TEXT_LIMIT) -> str:
    """Collapses whitespace and truncates to `limit` characters plus "..."."""
    if raw is None:
        return ""
    compact = _WHITESPACE.sub(" ", raw).strip()
    if len(compact) > limit:
        return compact[:limit] + "..."
    return compact


def to_one_line(raw: Optional[str]) -> str:
    return short_text((raw or "").replace("\n", " "))


def count_token(source: Optional[str], token: str) -> int:
    """Counts non-overlapping occurrences of `token`."""
    if is_blank(source):
        return 0
    return source.count(token)
