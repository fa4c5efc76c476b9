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
import io
import json
import unittest
import zipfile

from migration_pipeline.archive_utils_test import corrupt_member
from migration_pipeline.migration import MANUAL_FIX_HINTS, MigrationImporter
from shared.types import TemplateType

NOTION_ID = "0123456789abcdef0123456789abcdef"


def make_zip(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


class FakeTarget:
    """Keeps everything the importer writes in dictionaries."""

    def __init__(self):
        self.items = {}
        self.blocks = {}
        self.day_notes = {}
        self.files = {}
        self._counter = 0

    def _next_id(self, prefix):
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def create_item(self, title, template_type, due_date, parent_id):
        item_id = self._next_id("item")
        self.items[item_id] = {
            "title": title,
            "template_type": template_type,
            "due_date": due_date,
            "parent_id": parent_id,
            "order": self._counter,
        }
        return item_id

    def find_item_by_due_date(self, due_date):
        matches = [i for i, item in self.items.items() if item["due_date"] == due_date]
        if not matches:
            return None
        return max(matches, key=lambda i: self.items[i]["order"])

    def item_due_date(self, item_id):
        return self.items[item_id]["due_date"]

    def list_blocks(self, item_id):
        return [(block_id, content) for block_id, (owner, content) in self.blocks.items() if owner == item_id]

    def add_block(self, item_id, content):
        self.blocks[self._next_id("block")] = (item_id, content)

    def update_block(self, block_id, content):
        owner, _ = self.blocks[block_id]
        self.blocks[block_id] = (owner, content)

    def merge_day_note(self, due_date, issue, memo):
        note = self.day_notes.setdefault(due_date, {"issue": "", "memo": ""})
        if issue.strip():
            note["issue"] = issue
        if memo.strip():
            note["memo"] = memo

    def store_file(self, item_id, original_name, mime_type, data):
        stored_name = f"{self._next_id('file')}-{original_name}"
        self.files[stored_name] = (item_id, original_name, mime_type, data)
        return stored_name

    def item_by_title(self, title):
        for item_id, item in self.items.items():
            if item["title"] == title:
                return item_id, item
        raise KeyError(title)

    def html_of(self, item_id):
        blocks = self.list_blocks(item_id)
        return json.loads(blocks[0][1])["html"]


class MigrationImporterTest(unittest.TestCase):

    def setUp(self):
        self.target = FakeTarget()
        self.importer = MigrationImporter(self.target)

    def test_csv_documents_and_assets(self):
        csv_text = (
            "날짜,오늘의 업무,이슈,메모\n"
            "2024-03-05,작업 A,이슈 1,메모 1\n"
            "2024-03-05,작업 B,이슈 1,메모 2\n"
            "2024-03-06,x,y,z,surplus\n"
        )
        archive = make_zip({
            "worklog.csv": csv_text.encode("utf-8"),
            "worklog_all.csv": csv_text.encode("utf-8"),
            f"Project {NOTION_ID}.md": "# Project\n\n![shot](Project/shot.png)".encode("utf-8"),
            "Project/shot.png": b"\x89PNG",
            "Project/Child.md": "요청자: 김\n본문".encode("utf-8"),
            "broken.md": b"\xff\xfe\x00bad",
        })

        report = self.importer.run("export.zip", archive)

        self.assertEqual(report.persisted_items, 4)
        self.assertEqual(report.persisted_files, 1)
        self.assertEqual(len(report.failures), 2)
        self.assertIn("CSV row parse failed(export.zip/worklog.csv, row 4)", report.failures[0])
        self.assertIn("Markdown parse failed(export.zip/broken.md)", report.failures[1])
        self.assertIn("csv:export.zip/worklog.csv", report.detected_patterns)
        self.assertIn("csv-skip-all:export.zip/worklog_all.csv", report.detected_patterns)
        self.assertIn(f"markdown:export.zip/Project {NOTION_ID}.md", report.detected_patterns)
        self.assertEqual(report.manual_fix_hints, list(MANUAL_FIX_HINTS))

        row_id, row_item = self.target.item_by_title("2024-03-05")
        self.assertEqual(row_item["template_type"], TemplateType.WORKLOG)
        payload = json.loads(self.target.list_blocks(row_id)[0][1])
        self.assertEqual(payload["issue"], "이슈 1")
        self.assertIn("<h3>요청내용</h3><p>작업 A</p>", payload["html"])

        note = self.target.day_notes[datetime.date(2024, 3, 5)]
        self.assertEqual(note, {"issue": "이슈 1", "memo": "메모 1\n메모 2"})

        project_id, _ = self.target.item_by_title("Project")
        child_id, child = self.target.item_by_title("Child")
        self.assertEqual(child["parent_id"], project_id)
        self.assertEqual(child["template_type"], TemplateType.WORKLOG)

        stored_name = next(iter(self.target.files))
        self.assertEqual(self.target.files[stored_name][0], project_id)
        self.assertIn(f'src="/files/{stored_name}"', self.target.html_of(project_id))

    def test_dated_document_merges_into_anchor(self):
        archive = make_zip({
            "days.csv": "date,task\n2024-03-05,standup\n".encode("utf-8"),
            "2024-03-05 회의.md": "# 2024-03-05 회의\n회의 메모".encode("utf-8"),
        })

        report = self.importer.run("export.zip", archive)

        self.assertEqual(report.persisted_items, 1)
        self.assertEqual(len(self.target.items), 1)
        anchor_id, _ = self.target.item_by_title("2024-03-05")
        html = self.target.html_of(anchor_id)
        self.assertIn("<p>standup</p>", html)
        self.assertIn("<hr /><h3>2024-03-05 회의</h3>", html)

    def test_deep_pages_below_a_dated_folder_merge_into_parent(self):
        archive = make_zip({
            "Daily/2024-03-05.md": b"# Day\nbody",
            "Daily/2024-03-05/b.md": b"child page",
            "Daily/2024-03-05/Notes/a.md": b"folded",
        })

        report = self.importer.run("export.zip", archive)

        self.assertEqual(report.persisted_items, 2)
        day_id, day = self.target.item_by_title("Day")
        self.assertEqual(day["due_date"], datetime.date(2024, 3, 5))
        self.assertIn("<hr /><h3>a</h3><p>folded</p>", self.target.html_of(day_id))
        _, child = self.target.item_by_title("b")
        self.assertEqual(child["parent_id"], day_id)
        self.assertEqual(child["due_date"], datetime.date(2024, 3, 5))

    def test_html_pages_are_sanitized(self):
        archive = make_zip({
            "Page.html": b"<html><body><h1>T</h1><script>x()</script><p>ok</p></body></html>",
        })

        report = self.importer.run(None, archive)

        self.assertEqual(report.detected_patterns, ["html:upload.zip/Page.html"])
        page_id, page = self.target.item_by_title("Page")
        self.assertEqual(page["template_type"], TemplateType.FREE)
        html = self.target.html_of(page_id)
        self.assertIn("<p>ok</p>", html)
        self.assertNotIn("script", html)

    def test_valid_and_malformed_entries_are_counted_separately(self):
        members = {f"ok{i}.md": f"# ok {i}".encode("utf-8") for i in range(3)}
        members.update({f"bad{i}.md": b"\xc3\x28" for i in range(2)})

        report = self.importer.run("export.zip", make_zip(members))

        self.assertEqual(report.persisted_items, 3)
        self.assertEqual(len(report.failures), 2)

    def test_corrupt_member_does_not_stop_the_import(self):
        members = {"a.md": b"# A", "b.md": b"# B", "c.md": b"# C"}
        archive = corrupt_member(make_zip(members), "b.md")

        report = self.importer.run("export.zip", archive)

        self.assertEqual(report.persisted_items, 2)
        self.assertEqual(len(report.failures), 1)
        self.assertTrue(report.failures[0].startswith("ZIP entry read failed(export.zip/b.md)"))
        self.assertEqual({item["title"] for item in self.target.items.values()}, {"A", "C"})

    def test_unreadable_archive(self):
        report = self.importer.run("export.zip", b"definitely not a zip")
        self.assertEqual(report.persisted_items, 0)
        self.assertEqual(len(report.failures), 1)
        self.assertTrue(report.failures[0].startswith("ZIP extraction failed(export.zip)"))


if __name__ == "__main__":
    unittest.main()
