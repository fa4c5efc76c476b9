import io
import json
import unittest
import zipfile
from unittest import mock

from sqlalchemy.exc import OperationalError

from api_support import PNG_BYTES, ApiTestCase, make_zip
from migration_pipeline.archive_utils import ExtractionLimits
from schedule_backend.backup import BackupService
from schedule_backend.db import SqlDbClient
from schedule_backend.imports import import_lock_key


class UploadTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth_headers()
        self.item = self.create_item(self.headers)

    def _upload(self, name, data, mime, item_id=None, headers=None):
        return self.client.post(
            "/api/files/upload",
            data={"itemId": item_id or self.item["id"]},
            files={"file": (name, data, mime)},
            headers=headers or self.headers,
        )

    def test_upload_image(self):
        response = self._upload("shot.PNG", PNG_BYTES, "image/png")
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertRegex(body["url"], r"^/files/[0-9a-f-]{36}\.png$")
        self.assertEqual(body["originalName"], "shot.PNG")
        self.assertEqual(body["sizeBytes"], len(PNG_BYTES))

        listed = self.client.get(f"/api/files/item/{self.item['id']}", headers=self.headers)
        self.assertEqual([f["id"] for f in listed.json()], [body["id"]])

    def test_upload_rejections(self):
        self.assertEqual(self._upload("empty.png", b"", "image/png").status_code, 400)
        self.assertEqual(self._upload("doc.pdf", b"%PDF", "application/pdf").status_code, 400)
        self.assertEqual(self._upload("fake.exe", PNG_BYTES, "image/png").status_code, 400)

    def test_upload_to_foreign_item(self):
        intruder = self.auth_headers("intruder@example.com")
        response = self._upload("a.png", PNG_BYTES, "image/png", headers=intruder)
        self.assertEqual(response.status_code, 403)


class BackupTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth_headers()

    def _populate(self):
        parent = self.create_item(self.headers, "Parent", dueDate="2024-06-01")
        child = self.create_item(self.headers, "Child", parentId=parent["id"], status="done")
        upload = self.client.post(
            "/api/files/upload",
            data={"itemId": child["id"]},
            files={"file": ("pic.png", PNG_BYTES, "image/png")},
            headers=self.headers,
        ).json()
        self.save_html(self.headers, child["id"], f'<img src="{upload["url"]}">')
        tag = self.client.post("/api/tags", json={"name": "work"}, headers=self.headers).json()
        self.client.patch(
            f"/api/workspace/items/{child['id']}",
            json={"tagIds": [tag["id"]], "status": "done"},
            headers=self.headers,
        )
        self.client.put(
            "/api/workspace/items/day-note",
            params={"date": "2024-06-01"},
            json={"issue": "outage", "memo": "call vendor"},
            headers=self.headers,
        )
        return parent, child, upload

    def _export(self):
        response = self.client.get("/api/backup/export", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "application/zip")
        self.assertIn("backup.zip", response.headers["content-disposition"])
        return response.content

    def _import(self, data):
        response = self.client.post(
            "/api/backup/import",
            files={"file": ("backup.zip", data, "application/zip")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_export_contents(self):
        _, child, upload = self._populate()
        archive = zipfile.ZipFile(io.BytesIO(self._export()))
        payload = json.loads(archive.read("backup.json"))
        self.assertEqual(payload["version"], 1)
        exported = {item["title"]: item for item in payload["items"]}
        self.assertEqual(exported["Child"]["tagNames"], ["work"])
        self.assertEqual(exported["Child"]["parentId"], exported["Parent"]["id"])
        stored_name = upload["url"].rsplit("/", 1)[1]
        self.assertEqual(exported["Child"]["files"][0]["storedName"], stored_name)
        self.assertEqual(archive.read(f"files/{stored_name}"), PNG_BYTES)
        self.assertEqual(payload["dayNotes"][0]["issue"], "outage")

    def test_restore_replaces_workspace(self):
        self._populate()
        data = self._export()
        self.create_item(self.headers, "Added after export")

        report = self._import(data)
        self.assertEqual(report, {"importedItems": 2, "importedFiles": 1, "errors": []})

        items = self.client.get("/api/workspace/items", headers=self.headers).json()
        by_title = {item["title"]: item for item in items}
        self.assertEqual(set(by_title), {"Parent", "Child"})
        self.assertEqual(by_title["Child"]["parentId"], by_title["Parent"]["id"])
        self.assertEqual(by_title["Child"]["status"], "done")

        blocks = self.client.get(
            f"/api/content/{by_title['Child']['id']}/blocks", headers=self.headers
        ).json()["blocks"]
        url = json.loads(blocks[0]["content"])["html"].split('"')[1]
        self.assertEqual(self.client.get(url).content, PNG_BYTES)

        note = self.client.get(
            "/api/workspace/items/day-note", params={"date": "2024-06-01"}, headers=self.headers
        ).json()
        self.assertEqual(note["memo"], "call vendor")
        self.assertEqual(
            self.db.tag_names_for_items([by_title["Child"]["id"]])[by_title["Child"]["id"]],
            ["work"],
        )

    def test_malformed_items_are_skipped(self):
        payload = {
            "version": 1,
            "items": [
                {"id": "a", "title": "Good", "status": "todo", "blocks": []},
                {"id": "b", "title": "", "status": "todo"},
                {"id": "c", "title": "Bad status", "status": "someday"},
                "not an object",
            ],
        }
        report = self._import(make_zip({"backup.json": json.dumps(payload)}))
        self.assertEqual(report["importedItems"], 1)
        self.assertEqual(len(report["errors"]), 3)

    def test_unreadable_archive_leaves_workspace(self):
        self.create_item(self.headers, "Keep me")
        for data in (b"not a zip", make_zip({"other.json": "{}"}), make_zip({"backup.json": "{"})):
            report = self._import(data)
            self.assertEqual(report["importedItems"], 0)
            self.assertEqual(len(report["errors"]), 1)
        titles = [i["title"] for i in self.client.get("/api/workspace/items", headers=self.headers).json()]
        self.assertEqual(titles, ["Keep me"])

    def test_database_failure_leaves_workspace(self):
        self.create_item(self.headers, "Keep me")
        payload = {"version": 1, "items": [{"id": "a", "title": "New"}]}
        with mock.patch.object(
            SqlDbClient, "replace_workspace", side_effect=OperationalError("stmt", {}, Exception("down"))
        ):
            report = self._import(make_zip({"backup.json": json.dumps(payload)}))
        self.assertEqual(report["importedItems"], 0)
        self.assertEqual(len(report["errors"]), 1)
        titles = [i["title"] for i in self.client.get("/api/workspace/items", headers=self.headers).json()]
        self.assertEqual(titles, ["Keep me"])

    def test_concurrent_import_is_rejected(self):
        user = self.client.get("/api/auth/me", headers=self.headers).json()
        self.kv.acquire_lock(import_lock_key(user["id"]), 60)
        response = self.client.post(
            "/api/backup/import",
            files={"file": ("backup.zip", make_zip({"backup.json": "{}"}), "application/zip")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "CONFLICT")

    def test_lock_is_released_after_import(self):
        user = self.client.get("/api/auth/me", headers=self.headers).json()
        self._import(b"broken")
        self.assertIsNone(self.kv.get(import_lock_key(user["id"])))


class BackupServiceTests(ApiTestCase):
    def test_foreign_stored_name_is_renamed(self):
        owner = self.register("owner@example.com")
        item = self.db.create_item(owner["id"], "Owner item")
        self.db.create_file_asset(owner["id"], item.id, "a.png", "taken.png", "image/png", 3)

        other = self.register("other@example.com")
        payload = {"items": [{
            "id": "x",
            "title": "Copied",
            "blocks": [{"sortOrder": 0, "type": "paragraph",
                        "content": json.dumps({"html": '<img src="/files/taken.png">'})}],
            "files": [{"originalName": "a.png", "storedName": "taken.png", "mimeType": "image/png"}],
        }]}
        data = make_zip({"backup.json": json.dumps(payload), "files/taken.png": b"abc"})
        report = BackupService(self.db, self.storage).import_zip(other["id"], data)

        self.assertEqual(report.errors, [])
        restored = self.db.list_items(other["id"])[0]
        asset = self.db.list_files(restored.id)[0]
        self.assertNotEqual(asset.stored_name, "taken.png")
        self.assertIn(f"/files/{asset.stored_name}", self.db.first_block(restored.id).content)
        self.assertEqual(self.storage.get_bytes(asset.stored_name), b"abc")

    def test_missing_attachment_is_reported(self):
        user = self.register()
        payload = {"items": [{
            "title": "No file",
            "files": [{"storedName": "gone.png", "mimeType": "image/png"}],
        }]}
        report = BackupService(self.db, self.storage).import_zip(
            user["id"], make_zip({"backup.json": json.dumps(payload)})
        )
        self.assertEqual(report.imported_items, 1)
        self.assertEqual(report.imported_files, 0)
        self.assertEqual(len(report.errors), 1)

    def test_oversized_attachment_is_skipped(self):
        user = self.register()
        payload = {"items": [{
            "title": "Big file",
            "files": [
                {"storedName": "big.png", "mimeType": "image/png"},
                {"storedName": "small.png", "mimeType": "image/png"},
            ],
        }]}
        data = make_zip({
            "backup.json": json.dumps(payload),
            "files/big.png": b"x" * 1000,
            "files/small.png": b"y" * 8,
        })
        service = BackupService(self.db, self.storage, ExtractionLimits(max_entry_bytes=300))

        report = service.import_zip(user["id"], data)

        self.assertEqual(report.imported_items, 1)
        self.assertEqual(report.imported_files, 1)
        self.assertEqual(len(report.errors), 1)
        self.assertIn("Item 1 file skipped: entry files/big.png expands beyond 300 bytes", report.errors[0])
        self.assertEqual(self.storage.get_bytes("small.png"), b"y" * 8)

    def test_attachments_beyond_total_limit_are_skipped(self):
        user = self.register()
        payload = {"items": [{
            "title": "Many files",
            "files": [{"storedName": f"f{i}.png", "mimeType": "image/png"} for i in range(3)],
        }]}
        members = {"backup.json": json.dumps(payload)}
        members.update({f"files/f{i}.png": b"z" * 6 for i in range(3)})
        service = BackupService(self.db, self.storage, ExtractionLimits(max_total_bytes=13))

        report = service.import_zip(user["id"], make_zip(members))

        self.assertEqual(report.imported_files, 2)
        self.assertEqual(len(report.errors), 1)
        self.assertIn("total size limit of 13 bytes exceeded", report.errors[0])

    def test_oversized_backup_json_leaves_workspace_unchanged(self):
        user = self.register()
        self.db.create_item(user["id"], "Keep me")
        payload = {"items": [{"title": "t" * 200}]}
        service = BackupService(self.db, self.storage, ExtractionLimits(max_entry_bytes=100))

        report = service.import_zip(user["id"], make_zip({"backup.json": json.dumps(payload)}))

        self.assertEqual(report.imported_items, 0)
        self.assertIn("expands beyond 100 bytes", report.errors[0])
        self.assertEqual([i.title for i in self.db.list_items(user["id"])], ["Keep me"])


if __name__ == "__main__":
    unittest.main()
