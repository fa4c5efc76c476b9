import datetime
import json
import unittest

from api_support import ApiTestCase
from schedule_backend.workspace import parse_month, summarize_block, summarize_html
from schedule_backend.errors import ValidationError


def _parse_time(value):
    return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))


class ItemTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth_headers()

    def test_create_defaults(self):
        item = self.create_item(self.headers, "Plan", templateType="WORKLOG")
        self.assertEqual(item["status"], "todo")
        self.assertEqual(item["templateType"], "worklog")
        self.assertIsNone(item["parentId"])

        other = self.create_item(self.headers, "Other", templateType="unknown")
        self.assertEqual(other["templateType"], "free")

    def test_blank_title_is_rejected(self):
        response = self.client.post(
            "/api/workspace/items", json={"title": "   "}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)

    def test_patch_partial_update(self):
        parent = self.create_item(self.headers, "Parent")
        item = self.create_item(self.headers, "Child", parentId=parent["id"])

        response = self.client.patch(
            f"/api/workspace/items/{item['id']}",
            json={"title": " ", "status": "done"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["title"], "Child")
        self.assertEqual(body["status"], "done")
        self.assertEqual(body["parentId"], parent["id"])

        cleared = self.client.patch(
            f"/api/workspace/items/{item['id']}", json={"parentId": None}, headers=self.headers
        )
        self.assertIsNone(cleared.json()["parentId"])

    def test_patch_rejects_unknown_status(self):
        item = self.create_item(self.headers)
        response = self.client.patch(
            f"/api/workspace/items/{item['id']}", json={"status": "later"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)

    def test_ownership(self):
        item = self.create_item(self.headers)
        intruder = self.auth_headers("intruder@example.com")
        forbidden = self.client.patch(
            f"/api/workspace/items/{item['id']}", json={"title": "x"}, headers=intruder
        )
        self.assertEqual(forbidden.status_code, 403)
        missing = self.client.delete("/api/workspace/items/nope", headers=intruder)
        self.assertEqual(missing.status_code, 404)

    def test_delete_removes_item(self):
        item = self.create_item(self.headers)
        response = self.client.delete(f"/api/workspace/items/{item['id']}", headers=self.headers)
        self.assertEqual(response.status_code, 204)
        items = self.client.get("/api/workspace/items", headers=self.headers).json()
        self.assertEqual(items, [])

    def test_list_by_due_date_and_search(self):
        first = self.create_item(self.headers, "Weekly sync", dueDate="2024-05-01")
        second = self.create_item(self.headers, "Deploy", dueDate="2024-05-02")
        self.create_item(self.headers, "Undated")
        self.save_html(self.headers, second["id"], "<p>회의 후 sync 정리</p>")

        by_day = self.client.get(
            "/api/workspace/items", params={"dueDate": "2024-05-01"}, headers=self.headers
        ).json()
        self.assertEqual([i["id"] for i in by_day], [first["id"]])

        found = self.client.get(
            "/api/workspace/items", params={"q": "SYNC"}, headers=self.headers
        ).json()
        self.assertEqual([i["id"] for i in found], [second["id"], first["id"]])

        korean = self.client.get(
            "/api/workspace/items", params={"q": "회의"}, headers=self.headers
        ).json()
        self.assertEqual([i["id"] for i in korean], [second["id"]])

        restricted = self.client.get(
            "/api/workspace/items",
            params={"q": "sync", "dueDate": "2024-05-01"},
            headers=self.headers,
        ).json()
        self.assertEqual([i["id"] for i in restricted], [first["id"]])

    def test_recent_is_capped(self):
        for index in range(12):
            self.create_item(self.headers, f"Item {index}")
        recent = self.client.get("/api/workspace/items/recent", headers=self.headers).json()
        self.assertEqual(len(recent), 10)


class ContentTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth_headers()

    def test_replace_blocks_orders_and_bumps_item(self):
        item = self.create_item(self.headers)
        response = self.client.put(
            f"/api/content/{item['id']}/blocks",
            json={"blocks": [
                {"sortOrder": 2, "type": "paragraph", "content": "{\"html\": \"b\"}"},
                {"sortOrder": 1, "type": "paragraph", "content": "{\"html\": \"a\"}"},
            ]},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)

        loaded = self.client.get(f"/api/content/{item['id']}/blocks", headers=self.headers).json()
        self.assertEqual(loaded["itemId"], item["id"])
        self.assertEqual([b["sortOrder"] for b in loaded["blocks"]], [1, 2])

        refreshed = self.client.get("/api/workspace/items", headers=self.headers).json()[0]
        self.assertGreater(_parse_time(refreshed["updatedAt"]), _parse_time(item["updatedAt"]))

    def test_blank_block_content_is_rejected(self):
        item = self.create_item(self.headers)
        response = self.client.put(
            f"/api/content/{item['id']}/blocks",
            json={"blocks": [{"sortOrder": 0, "type": "paragraph", "content": " "}]},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)


class BoardAndDayNoteTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth_headers()

    def test_board_summaries(self):
        html_item = self.create_item(self.headers, "Html", dueDate="2024-03-05")
        worklog_item = self.create_item(self.headers, "Worklog", dueDate="2024-03-20")
        self.create_item(self.headers, "April", dueDate="2024-04-01")
        self.save_html(
            self.headers,
            html_item["id"],
            "<h3>요청내용</h3><p>배포 준비</p><h3>이슈</h3><p>서버 지연</p>"
            "<ul><li>[x] 테스트</li><li>[ ] 리뷰</li></ul>",
        )
        worklog = json.dumps({"worklog": {
            "requestContent": "[ ] a [x] b",
            "requestChannel": "email",
            "processContent1": "[ ] c",
        }})
        self.client.put(
            f"/api/content/{worklog_item['id']}/blocks",
            json={"blocks": [{"sortOrder": 0, "type": "paragraph", "content": worklog}]},
            headers=self.headers,
        )
        self.client.put(
            "/api/workspace/items/day-note",
            params={"date": "2024-03-05"},
            json={"issue": "DB 장애", "memo": None},
            headers=self.headers,
        )

        rows = self.client.get(
            "/api/workspace/items/board", params={"month": "2024-03"}, headers=self.headers
        ).json()
        self.assertEqual([row["id"] for row in rows], [worklog_item["id"], html_item["id"]])

        worklog_row, html_row = rows
        self.assertEqual(worklog_row["issue"], "email")
        self.assertEqual(worklog_row["checklistTotal"], 2)
        self.assertEqual(worklog_row["checklistDone"], 1)

        self.assertEqual(html_row["todayWork"], "배포 준비")
        self.assertEqual(html_row["issue"], "DB 장애")
        self.assertEqual(html_row["checklistTotal"], 2)
        self.assertEqual(html_row["checklistDone"], 1)

    def test_board_rejects_bad_month(self):
        response = self.client.get(
            "/api/workspace/items/board", params={"month": "2024-13"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_day_note_roundtrip(self):
        empty = self.client.get(
            "/api/workspace/items/day-note", params={"date": "2024-01-02"}, headers=self.headers
        ).json()
        self.assertEqual(empty, {"dueDate": "2024-01-02", "issue": "", "memo": ""})

        saved = self.client.put(
            "/api/workspace/items/day-note",
            params={"date": "2024-01-02"},
            json={"issue": "late train"},
            headers=self.headers,
        ).json()
        self.assertEqual(saved["issue"], "late train")
        self.assertEqual(saved["memo"], "")


class TagTests(ApiTestCase):
    def test_tags_and_item_assignment(self):
        headers = self.auth_headers()
        beta = self.client.post("/api/tags", json={"name": "beta"}, headers=headers).json()
        alpha = self.client.post("/api/tags", json={"name": "alpha"}, headers=headers).json()
        duplicate = self.client.post("/api/tags", json={"name": "alpha"}, headers=headers)
        self.assertEqual(duplicate.status_code, 400)

        tags = self.client.get("/api/tags", headers=headers).json()
        self.assertEqual([t["name"] for t in tags], ["alpha", "beta"])

        item = self.create_item(headers)
        ok = self.client.patch(
            f"/api/workspace/items/{item['id']}",
            json={"tagIds": [alpha["id"], beta["id"]]},
            headers=headers,
        )
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(
            self.db.tag_names_for_items([item["id"]])[item["id"]], ["alpha", "beta"]
        )

        unknown = self.client.patch(
            f"/api/workspace/items/{item['id']}", json={"tagIds": ["nope"]}, headers=headers
        )
        self.assertEqual(unknown.status_code, 400)


class SummaryTests(unittest.TestCase):
    def test_parse_month(self):
        start, end = parse_month("2024-02")
        self.assertEqual((start.day, end.day), (1, 29))
        with self.assertRaises(ValidationError):
            parse_month("2024/02")

    def test_summary_fallback_and_truncation(self):
        summary = summarize_html("<p>" + "가" * 130 + "</p>")
        self.assertEqual(summary.today_work, "가" * 120 + "...")

    def test_payload_overrides_html_sections(self):
        content = json.dumps({"html": "<h2>메모</h2><p>from html</p>", "memo": "payload memo"})
        self.assertEqual(summarize_block(content).memo, "payload memo")

    def test_non_json_content(self):
        self.assertEqual(summarize_block("not json").today_work, "")


if __name__ == "__main__":
    unittest.main()
