import datetime
import unittest

from schedule_backend.db import (
    BlockRecord,
    DayNoteRecord,
    FileAssetRecord,
    ItemRecord,
    NewBlock,
    SqlDbClient,
    WorkspaceSnapshot,
)
from shared.types import ItemStatus, TemplateType, UserRole


class SqlDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the client logic.
    """

    def setUp(self):
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")
        self.user = self.db.create_user("a@example.com", "a", "hash")

    def test_user_roundtrip(self):
        fetched = self.db.get_user_by_email("a@example.com")
        self.assertEqual(fetched.id, self.user.id)
        self.assertEqual(fetched.role, UserRole.USER)

        locked = datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc)
        updated = self.db.update_user(self.user.id, locked_until=locked, role=UserRole.ADMIN)
        self.assertEqual(updated.role, UserRole.ADMIN)
        self.assertEqual(self.db.get_user(self.user.id).locked_until, locked)

        with self.assertRaises(ValueError):
            self.db.update_user(self.user.id, email="other@example.com")

    def test_item_update_bumps_timestamp(self):
        item = self.db.create_item(self.user.id, "Title", template_type=TemplateType.MEETING)
        updated = self.db.update_item(item.id, status=ItemStatus.DOING)
        self.assertEqual(updated.status, ItemStatus.DOING)
        self.assertEqual(updated.template_type, TemplateType.MEETING)
        self.assertGreater(updated.updated_at, item.updated_at)

    def test_delete_item_detaches_children(self):
        parent = self.db.create_item(self.user.id, "Parent")
        child = self.db.create_item(self.user.id, "Child", parent_id=parent.id)
        self.db.add_block(parent.id, 0, "paragraph", "{}")
        self.db.create_file_asset(self.user.id, parent.id, "a.png", "s.png", "image/png", 1)

        self.db.delete_item(parent.id)
        self.assertIsNone(self.db.get_item(parent.id))
        self.assertIsNone(self.db.get_item(child.id).parent_id)
        self.assertEqual(self.db.list_blocks(parent.id), [])
        self.assertIsNone(self.db.get_file_by_stored_name("s.png"))

    def test_items_between_orders_by_due_date(self):
        early = self.db.create_item(self.user.id, "Early", due_date=datetime.date(2024, 1, 2))
        late = self.db.create_item(self.user.id, "Late", due_date=datetime.date(2024, 1, 30))
        self.db.create_item(self.user.id, "Out", due_date=datetime.date(2024, 2, 1))
        items = self.db.list_items_between(
            self.user.id, datetime.date(2024, 1, 1), datetime.date(2024, 1, 31)
        )
        self.assertEqual([i.id for i in items], [late.id, early.id])

    def test_search_escapes_wildcards(self):
        self.db.create_item(self.user.id, "100% done")
        self.db.create_item(self.user.id, "1000 things")
        self.assertEqual([i.title for i in self.db.search_items(self.user.id, "100%")], ["100% done"])

    def test_replace_blocks_and_first_blocks(self):
        item = self.db.create_item(self.user.id, "Doc")
        self.db.replace_blocks(item.id, [
            NewBlock(sort_order=3, type="paragraph", content="later"),
            NewBlock(sort_order=1, type="paragraph", content="first"),
        ])
        self.assertEqual(self.db.first_block(item.id).content, "first")
        self.assertEqual(self.db.first_blocks([item.id])[item.id].content, "first")
        self.assertEqual(self.db.count_blocks_by_item(self.user.id), {item.id: 2})

    def test_upsert_day_note_keeps_unset_fields(self):
        day = datetime.date(2024, 5, 1)
        self.db.upsert_day_note(self.user.id, day, issue="a", memo="b")
        note = self.db.upsert_day_note(self.user.id, day, memo="c")
        self.assertEqual((note.issue, note.memo), ("a", "c"))
        self.assertEqual(self.db.day_notes_for_dates(self.user.id, [day, None])[day].memo, "c")

    def test_replace_workspace(self):
        old = self.db.create_item(self.user.id, "Old")
        tag = self.db.create_tag(self.user.id, "keep")
        self.db.set_item_tags(old.id, [tag.id])
        self.db.upsert_day_note(self.user.id, datetime.date(2024, 1, 1), issue="old")

        snapshot = WorkspaceSnapshot(
            items=[
                ItemRecord(id="p", user_id=self.user.id, title="Parent"),
                ItemRecord(id="c", user_id=self.user.id, title="Child", parent_id="p"),
            ],
            blocks=[BlockRecord(id="b", item_id="c", sort_order=0, type="paragraph", content="{}")],
            day_notes=[DayNoteRecord(id="d", user_id=self.user.id, due_date=datetime.date(2024, 2, 2))],
            files=[FileAssetRecord(
                id="f", user_id=self.user.id, item_id="c", original_name="a.png",
                stored_name="x.png", mime_type="image/png", size_bytes=1,
            )],
            tag_names={"c": ["keep", "new"]},
        )
        self.db.replace_workspace(self.user.id, snapshot)

        self.assertEqual({i.title for i in self.db.list_items(self.user.id)}, {"Parent", "Child"})
        self.assertIsNone(self.db.get_item(old.id))
        self.assertEqual(self.db.tag_names_for_items(["c"]), {"c": ["keep", "new"]})
        self.assertEqual([t.name for t in self.db.list_tags(self.user.id)], ["keep", "new"])
        self.assertEqual(
            [n.due_date for n in self.db.list_day_notes(self.user.id)], [datetime.date(2024, 2, 2)]
        )
        self.assertEqual(self.db.get_file_by_stored_name("x.png").user_id, self.user.id)

    def test_delete_user_removes_everything(self):
        item = self.db.create_item(self.user.id, "Item")
        self.db.add_block(item.id, 0, "paragraph", "{}")
        self.db.create_tag(self.user.id, "t")
        self.assertTrue(self.db.delete_user(self.user.id))
        self.assertEqual(self.db.stats(), {"users": 0, "items": 0, "blocks": 0, "files": 0})
        self.assertFalse(self.db.delete_user(self.user.id))


if __name__ == "__main__":
    unittest.main()
