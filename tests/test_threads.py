import unittest

from constants import DEFAULT_THREAD_ID
from errors import Forbidden, InvalidArgument, NotFound
from models import THREAD, Scope
from tests.helpers import ServiceCase


class ThreadRegistryTests(ServiceCase, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.owner = self.make_user("owner")
        self.guest = self.make_user("guest")

    def test_hub_thread_is_seeded_without_creator(self):
        hub = self.threads.get(DEFAULT_THREAD_ID)
        self.assertIsNone(hub["creator_id"])
        with self.assertRaises(Forbidden):
            self.threads.update(self.owner, DEFAULT_THREAD_ID, {"title": "Mine"})

    def test_create_applies_defaults(self):
        thread = self.threads.create(self.owner, "  Book club  ")
        self.assertEqual(thread["title"], "Book club")
        self.assertEqual(thread["creator_id"], self.owner.id)
        self.assertEqual(thread["visibility"], "public")
        self.assertTrue(thread["allow_msg_delete"])
        self.assertTrue(thread["allow_attachments"])
        self.assertFalse(thread["spam_check"])
        self.assertEqual([t["id"] for t in self.threads.list()], [DEFAULT_THREAD_ID, thread["id"]])

    def test_create_validation(self):
        with self.assertRaises(InvalidArgument):
            self.threads.create(self.owner, "   ")
        with self.assertRaises(InvalidArgument):
            self.threads.create(self.owner, "x" * 101)
        with self.assertRaises(InvalidArgument):
            self.threads.create(self.owner, "ok", visibility="secret")
        with self.assertRaises(InvalidArgument):
            self.threads.create(self.owner, "ok", flags={"allow_msg_delete": "yes"})
        with self.assertRaises(InvalidArgument):
            self.threads.create(self.owner, "ok", flags={"bogus": True})

    def test_wrongly_typed_input_is_invalid(self):
        for title, flags in ((42, None), ({"t": 1}, None), ("ok", ["allow_msg_delete"]), ("ok", "spam_check")):
            with self.assertRaises(InvalidArgument):
                self.threads.create(self.owner, title, flags=flags)
        thread = self.threads.create(self.owner, "Plans")
        with self.assertRaises(InvalidArgument) as ctx:
            self.threads.update(self.owner, thread["id"], [("title", "x")])
        self.assertEqual(ctx.exception.reason, "invalid_body")

    def test_update_is_creator_only(self):
        thread = self.threads.create(self.owner, "Plans")
        with self.assertRaises(Forbidden) as ctx:
            self.threads.update(self.guest, thread["id"], {"title": "Hijack"})
        self.assertEqual(ctx.exception.reason, "not_thread_creator")

        updated = self.threads.update(self.owner, thread["id"], {"title": "Trips", "allow_msg_delete": False})
        self.assertEqual(updated["title"], "Trips")
        self.assertFalse(updated["allow_msg_delete"])
        with self.assertRaises(InvalidArgument):
            self.threads.update(self.owner, thread["id"], {"creator_id": self.guest.id})

    def test_missing_thread(self):
        with self.assertRaises(NotFound):
            self.threads.get(999)
        with self.assertRaises(NotFound):
            self.threads.delete(self.owner, 999)

    def test_delete_cascades_messages_and_history(self):
        thread = self.threads.create(self.owner, "Temp")
        scope = Scope.thread(thread["id"])
        msg = self.messages.post(self.guest, scope, "first")
        self.messages.edit(self.guest, THREAD, msg["id"], "second")
        survivor = self.messages.post(self.guest, Scope.thread(DEFAULT_THREAD_ID), "elsewhere")

        with self.assertRaises(Forbidden):
            self.threads.delete(self.guest, thread["id"])
        self.threads.delete(self.owner, thread["id"])

        with self.assertRaises(NotFound):
            self.threads.get(thread["id"])
        with self.store.transaction() as tx:
            self.assertIsNone(tx.get_message(THREAD, msg["id"]))
            self.assertEqual(tx.list_message_edits(THREAD, msg["id"]), [])
            self.assertIsNotNone(tx.get_message(THREAD, survivor["id"]))
        self.assertEqual(self.publisher.of("thread-deleted"), [(f"thread:{thread['id']}", {"id": thread["id"]})])


if __name__ == "__main__":
    unittest.main()
