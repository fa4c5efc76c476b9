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

from typing import Dict, Optional
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup, Comment, Tag

from migration_pipeline.text_utils import file_name, normalize_path

# Relaxed allowlist for imported rich text, plus horizontal rules.
ALLOWED_TAGS = {
    "a", "b", "blockquote", "br", "caption", "cite", "code", "col", "colgroup",
    "dd", "div", "dl", "dt", "em", "h1", "h2", "h3", "h4", "h5", "h6", "hr",
    "i", "img", "li", "ol", "p", "pre", "q", "small", "span", "strike",
    "strong", "sub", "sup", "table", "tbody", "td", "tfoot", "th", "thead",
    "tr", "u", "ul",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href", "title"},
    "blockquote": {"cite"},
    "col": {"span", "width"},
    "colgroup": {"span", "width"},
    "img": {"align", "alt", "height", "src", "title", "width"},
    "ol": {"start", "type"},
    "q": {"cite"},
    "table": {"summary", "width"},
    "td": {"abbr", "axis", "colspan", "rowspan", "width"},
    "th": {"abbr", "axis", "colspan", "rowspan", "width"},
    "ul": {"type"},
}
URL_ATTRIBUTES = {"href", "src", "cite"}
ALLOWED_SCHEMES = {"http", "https", "mailto", "ftp"}
# Elements dropped together with their content.
DROPPED_TAGS = {"script", "style", "noscript", "template", "iframe", "object", "embed", "head", "title"}


def _parse_fragment(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _is_safe_url(value: str) -> bool:
    scheme = urlsplit(value.strip()).scheme.lower()
    # Relative references have no scheme and are kept so they can be
    # rewritten to stored files later.
    return not scheme or scheme in ALLOWED_SCHEMES


def body_html(html: str) -> str:
    """Returns the inner HTML of <body> for full documents, else the input."""
    soup = _parse_fragment(html)
    body = soup.find("body")
    if body is None:
        return html or ""
    return body.decode_contents()


def sanitize_html(html: str) -> str:
    """
    Cleans imported HTML down to the allowlist.

    Disallowed elements are unwrapped (their text survives) except for
    script-like elements, which are removed entirely. Disallowed attributes
    and URLs with unsafe schemes are stripped.
    """
    soup = _parse_fragment(body_html(html))
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for element in soup.find_all(True):
        if element.decomposed:
            continue
        name = element.name.lower()
        if name in DROPPED_TAGS:
            element.decompose()
            continue
        if name not in ALLOWED_TAGS:
            element.unwrap()
            continue
        allowed = ALLOWED_ATTRIBUTES.get(name, set())
        for attribute in list(element.attrs):
            value = element.attrs[attribute]
            if attribute not in allowed:
                del element.attrs[attribute]
            elif attribute in URL_ATTRIBUTES and not _is_safe_url(str(value)):
                del element.attrs[attribute]
    return str(soup).strip()


def find_rewrite(value: Optional[str], rewrites: Dict[str, str]) -> Optional[str]:
    """Looks an attribute value up by full path, file name, then ./file name."""
    if not value or not value.strip():
        return None
    normalized = normalize_path(value)
    if normalized in rewrites:
        return rewrites[normalized]
    name = file_name(normalized)
    if name in rewrites:
        return rewrites[name]
    if "./" + name in rewrites:
        return rewrites["./" + name]
    # Exported markdown links are percent-encoded.
    decoded = unquote(normalized)
    if decoded != normalized:
        return find_rewrite(decoded, rewrites)
    return None


def rewrite_asset_urls(html: str, rewrites: Dict[str, str]) -> str:
    """Points img[src] and a[href] at stored files using `rewrites`."""
    soup = _parse_fragment(html)
    for tag_name, attribute in (("img", "src"), ("a", "href")):
        for element in soup.find_all(tag_name):
            if not isinstance(element, Tag) or not element.has_attr(attribute):
                continue
            replaced = find_rewrite(element[attribute], rewrites)
            if replaced is not None:
                element[attribute] = replaced
    return str(soup)
