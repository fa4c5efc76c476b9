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
import html as html_lib
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Union

import requests

from shared.file_urls import normalize_api_base, to_display_html, to_display_url, to_storage_html
from shared.json_utils import convert_keys
from shared.types import BackupImportReport, MigrationReport

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds
CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-TOKEN"
REFRESH_PATH = "/api/auth/refresh"
# A 401 from these endpoints is a real answer, never a stale access token.
NO_REFRESH_PATHS = ("/api/auth/login", "/api/auth/register", REFRESH_PATH)

DateLike = Union[datetime.date, str]


class ApiRequestError(Exception):
    """A non-2xx answer from the server."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


class SessionExpiredError(ApiRequestError):
    """The access token could not be refreshed; the user must log in again."""

    def __init__(self, message: str = "Session expired. Please log in again."):
        super().__init__(401, "SESSION_EXPIRED", message)


def _error_from(response) -> ApiRequestError:
    code = "HTTP_ERROR"
    message = getattr(response, "reason", "") or ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code") or code
        message = body.get("message") or message
    return ApiRequestError(response.status_code, code, message or "")


def _day(value: Optional[DateLike]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, datetime.date) else value


class ScheduleApiClient:
    """
    Client for the schedule manager API.

    Holds the access token in memory and relies on the session's cookie jar
    for the refresh and CSRF cookies. A 401 triggers one token refresh and a
    single replay of the request; concurrent 401s share one refresh.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = normalize_api_base(base_url)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.access_token: Optional[str] = None
        self._refresh_lock = threading.Lock()
        # Bumped every time the token changes or a refresh fails.
        self._generation = 0
        self._expired_generation: Optional[int] = None

    # Transport

    def _headers(self) -> Dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    def _request(self, method: str, path: str, retried: bool = False, **kwargs):
        generation = self._generation
        response = self.session.request(
            method,
            self.base_url + path,
            headers=self._headers(),
            timeout=self.timeout,
            **kwargs,
        )
        if response.status_code == 401 and not retried and path not in NO_REFRESH_PATHS:
            self._refresh(generation)
            return self._request(method, path, retried=True, **kwargs)
        if not 200 <= response.status_code < 300:
            raise _error_from(response)
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        return self._request(method, path, **kwargs).json()

    def _refresh(self, seen_generation: int) -> None:
        """
        Refreshes the access token unless another caller already did so after
        `seen_generation`; waiters of a failed refresh get SessionExpiredError.
        """
        with self._refresh_lock:
            if self._generation != seen_generation:
                if self._expired_generation == seen_generation:
                    raise SessionExpiredError()
                return

            csrf = self.session.cookies.get(CSRF_COOKIE)
            response = self.session.request(
                "POST",
                self.base_url + REFRESH_PATH,
                headers={CSRF_HEADER: csrf or ""},
                timeout=self.timeout,
            )
            self._generation += 1
            if not 200 <= response.status_code < 300:
                logger.info("Token refresh failed with %s", response.status_code)
                self.access_token = None
                self._expired_generation = seen_generation
                raise SessionExpiredError()
            self.access_token = response.json()["accessToken"]

    def _set_token(self, token: Optional[str]) -> None:
        with self._refresh_lock:
            self.access_token = token
            self._generation += 1

    # Auth

    def register(self, email: str, password: str, nickname: Optional[str] = None) -> dict:
        body = {"email": email, "password": password}
        if nickname is not None:
            body["nickname"] = nickname
        return self._json("POST", "/api/auth/register", json=body)

    def login(self, email: str, password: str) -> dict:
        body = self._json("POST", "/api/auth/login", json={"email": email, "password": password})
        self._set_token(body["accessToken"])
        return body

    def logout(self) -> None:
        try:
            self._request("POST", "/api/auth/logout")
        finally:
            self._set_token(None)

    def me(self) -> dict:
        return self._json("GET", "/api/auth/me")

    # Workspace

    def list_items(self, q: Optional[str] = None, due_date: Optional[DateLike] = None) -> List[dict]:
        params = {}
        if q:
            params["q"] = q
        if due_date is not None:
            params["dueDate"] = _day(due_date)
        return self._json("GET", "/api/workspace/items", params=params)

    def create_item(
        self,
        title: str,
        parent_id: Optional[str] = None,
        due_date: Optional[DateLike] = None,
        template_type: Optional[str] = None,
    ) -> dict:
        body = {
            "title": title,
            "parentId": parent_id,
            "dueDate": _day(due_date),
            "templateType": template_type,
        }
        return self._json("POST", "/api/workspace/items", json=body)

    def update_item(self, item_id: str, **changes) -> dict:
        """Sends only the given fields, e.g. `update_item(id, status="done")`."""
        if "due_date" in changes:
            changes["due_date"] = _day(changes["due_date"])
        body = convert_keys(changes, "snake_to_camel")
        return self._json("PATCH", f"/api/workspace/items/{item_id}", json=body)

    def delete_item(self, item_id: str) -> None:
        self._request("DELETE", f"/api/workspace/items/{item_id}")

    def board(self, month: str) -> List[dict]:
        return self._json("GET", "/api/workspace/items/board", params={"month": month})

    def get_day_note(self, date: DateLike) -> dict:
        return self._json("GET", "/api/workspace/items/day-note", params={"date": _day(date)})

    def put_day_note(self, date: DateLike, issue: Optional[str] = None, memo: Optional[str] = None) -> dict:
        return self._json(
            "PUT",
            "/api/workspace/items/day-note",
            params={"date": _day(date)},
            json={"issue": issue, "memo": memo},
        )

    # Content

    def load_blocks(self, item_id: str) -> List[dict]:
        return self._json("GET", f"/api/content/{item_id}/blocks")["blocks"]

    def save_blocks(self, item_id: str, blocks: List[dict]) -> List[dict]:
        return self._json("PUT", f"/api/content/{item_id}/blocks", json={"blocks": blocks})["blocks"]

    def load_html(self, item_id: str) -> str:
        """Returns the document HTML with file links resolved against the API base."""
        blocks = self.load_blocks(item_id)
        if not blocks:
            return ""
        try:
            payload = json.loads(blocks[0]["content"])
        except ValueError:
            return ""
        html = payload.get("html", "") if isinstance(payload, dict) else ""
        return to_display_html(html or "", self.base_url)

    def save_html(self, item_id: str, html: str, **extra: str) -> List[dict]:
        """Persists the document as one block; file links are stored relative."""
        payload = {"html": to_storage_html(html, self.base_url), **extra}
        block = {
            "sortOrder": 0,
            "type": "paragraph",
            "content": json.dumps(payload, ensure_ascii=False),
        }
        return self.save_blocks(item_id, [block])

    # Files

    def upload_file(self, item_id: str, filename: str, data: bytes, mime_type: str) -> dict:
        return self._json(
            "POST",
            "/api/files/upload",
            data={"itemId": item_id},
            files={"file": (filename, data, mime_type)},
        )

    def upload_image_tag(self, item_id: str, filename: str, data: bytes, mime_type: str) -> str:
        asset = self.upload_file(item_id, filename, data, mime_type)
        src = to_display_url(asset["url"], self.base_url)
        return f'<img src="{html_lib.escape(src)}" alt="{html_lib.escape(filename)}">'

    # Backup and migration

    def export_backup(self) -> bytes:
        return self._request("GET", "/api/backup/export").content

    def import_backup(self, data: bytes, filename: str = "backup.zip") -> BackupImportReport:
        body = self._json(
            "POST", "/api/backup/import", files={"file": (filename, data, "application/zip")}
        )
        return BackupImportReport(**convert_keys(body, "camel_to_snake"))

    def import_migration(self, data: bytes, filename: str = "export.zip") -> MigrationReport:
        body = self._json(
            "POST", "/api/migration/import", files={"file": (filename, data, "application/zip")}
        )
        return MigrationReport(**convert_keys(body, "camel_to_snake"))
