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

"""
Conversion between the persisted and the displayed form of file links.

Stored HTML always references attachments as `/files/<storedName>`. Editors
display them through the absolute API base URL, and must convert them back
before saving so no environment-specific URL is ever persisted.
"""

import re

FILES_PREFIX = "/files/"

_RELATIVE_FILE_ATTR = re.compile(r'(src|href)="/files/')


def normalize_api_base(api_base: str) -> str:
    return (api_base or "").rstrip("/")


def file_url(stored_name: str) -> str:
    """Returns the persisted (relative) URL of a stored file."""
    return f"{FILES_PREFIX}{stored_name}"


def to_display_html(html: str, api_base: str) -> str:
    """
    Rewrites relative `/files/...` src and href attributes to absolute URLs
    under `api_base`.
    """
    base = normalize_api_base(api_base)
    if not html or not base:
        return html or ""
    return _RELATIVE_FILE_ATTR.sub(lambda m: f'{m.group(1)}="{base}{FILES_PREFIX}', html)


def to_storage_html(html: str, api_base: str) -> str:
    """Rewrites every `{api_base}/files/` occurrence back to `/files/`."""
    base = normalize_api_base(api_base)
    if not html or not base:
        return html or ""
    return re.sub(re.escape(base) + re.escape(FILES_PREFIX), FILES_PREFIX, html)


def to_display_url(url: str, api_base: str) -> str:
    if url and url.startswith(FILES_PREFIX):
        return f"{normalize_api_base(api_base)}{url}"
    return url
