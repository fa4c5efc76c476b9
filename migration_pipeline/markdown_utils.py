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
from typing import List

from migration_pipeline.text_utils import (
    apply_inline_code,
    file_name,
    normalize_title,
    strip_extension,
)
from shared.string_utils import escape_html
from shared.types import TemplateType

MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[[^\]]*\]\(([^)]+)\)")

CHECKED_PREFIX = "- [x] "
UNCHECKED_PREFIX = "- [ ] "
CHECKED_MARK = "☑ "
UNCHECKED_MARK = "☐ "
# Bullet glyphs used by Notion and messenger exports in addition to "- ".
GLYPH_BULLETS = ("▪️", "🔸")
HORIZONTAL_RULES = ("---", "----------")
HEADING_PREFIXES = (("# ", "h1"), ("## ", "h2"), ("### ", "h3"))

WORKLOG_KEYWORDS = ("요청자", "요청내용", "[내선]")
MEETING_KEYWORDS = ("회의", "회의록")


class _HtmlBuilder:
    """Accumulates HTML while tracking open list and code block state."""

    def __init__(self):
        self.parts: List[str] = []
        self.in_list = False
        self.in_code = False

    def append(self, html: str) -> None:
        self.parts.append(html)

    def open_list(self) -> None:
        if not self.in_list:
            self.parts.append("<ul>")
            self.in_list = True

    def close_list(self) -> None:
        if self.in_list:
            self.parts.append("</ul>")
            self.in_list = False

    def finish(self) -> str:
        self.close_list()
        if self.in_code:
            self.parts.append("</code></pre>")
        return "".join(self.parts)


def markdown_to_html(markdown: str) -> str:
    """
    Converts the markdown dialect found in note exports into HTML.

    This is a line-based converter covering headings (h1-h3), horizontal rules,
    fenced code blocks, checklists, bullets, standalone images and paragraphs.
    All text is HTML-escaped; inline code is written with backticks or ₩…₩.
    """
    out = _HtmlBuilder()
    for raw in markdown.splitlines():
        line = raw.strip()

        if line.startswith("```"):
            out.close_list()
            out.append("</code></pre>" if out.in_code else "<pre><code>")
            out.in_code = not out.in_code
            continue
        if out.in_code:
            out.append(escape_html(raw) + "\n")
            continue
        if not line:
            out.close_list()
            continue
        if line in HORIZONTAL_RULES:
            out.close_list()
            out.append("<hr />")
            continue

        heading = next(
            ((prefix, tag) for prefix, tag in HEADING_PREFIXES if line.startswith(prefix)),
            None,
        )
        if heading:
            prefix, tag = heading
            out.close_list()
            text = apply_inline_code(line[len(prefix):].strip())
            out.append(f"<{tag}>{text}</{tag}>")
            continue

        if line.startswith(UNCHECKED_PREFIX) or line.startswith(CHECKED_PREFIX):
            out.open_list()
            mark = CHECKED_MARK if line.startswith(CHECKED_PREFIX) else UNCHECKED_MARK
            body = apply_inline_code(line[len(CHECKED_PREFIX):].strip())
            out.append(f"<li>{mark}{body}</li>")
            continue

        bullet = next(
            (p for p in ("- ",) + GLYPH_BULLETS if line.startswith(p)), None
        )
        if bullet:
            out.open_list()
            out.append(f"<li>{apply_inline_code(line[len(bullet):].strip())}</li>")
            continue

        image = MARKDOWN_IMAGE_PATTERN.fullmatch(line)
        if image:
            out.close_list()
            src = escape_html(image.group(1).strip())
            out.append(f'<p><img src="{src}" alt="image" /></p>')
            continue

        out.close_list()
        out.append(f"<p>{apply_inline_code(line)}</p>")
    return out.finish()


def extract_title(markdown: str, file_path: str) -> str:
    """Uses the first level-one heading, falling back to the file stem."""
    for line in markdown.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("# "):
            return normalize_title(trimmed[2:].strip())
    return normalize_title(strip_extension(file_name(file_path)))


def infer_template_type(markdown: str) -> TemplateType:
    lower = markdown.lower()
    if any(keyword in lower for keyword in WORKLOG_KEYWORDS):
        return TemplateType.WORKLOG
    if any(keyword in lower for keyword in MEETING_KEYWORDS):
        return TemplateType.MEETING
    return TemplateType.FREE
