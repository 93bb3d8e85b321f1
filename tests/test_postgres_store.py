"""Service tests against a real PostgreSQL database.

Set CHATTERBOX_TEST_DATABASE_URL to a throwaway database to run them; every
test truncates all Chatterbox tables.
"""

import os
import threading
import unittest

from constants import DEFAULT_THREAD_ID
from database import PostgresStore
from errors import Conflict
from models import THREAD, Scope
from tests.helpers import ServiceCase

TEST_DSN = os.environ.get("CHATTERBOX_TEST_DATABASE_URL", "").strip()

_TABLES = (
    "dm_message_edits, dm_messages, dm_participants, dm_channels, message_edits, "
    "messages, threads, blocks, friendships, friend_requests, users"
)


@unittest.skipUnless(TEST_DSN, "CHATTERBOX_TEST_DATABASE_URL not set")
class PostgresStoreTests(ServiceCase, unittest.TestCase):
    def make_store(self):
        store = PostgresStore(TEST_DSN, minconn=1, maxconn=12)
        self.addCleanup(store.close)
        store.init_schema()
        with store.transaction() as tx:
            tx.cur.execute(f"TRUNCATE {_TABLES} RESTART IDENTITY CASCADE;")
        store.init_schema()
        return store

    def _scalar(self, sql):
        with self.store.transaction() as tx:
            tx.cur.execute(sql)
            return next(iter(tx.cur.fetchone().values()))

    def test_hub_thread_is_seeded(self):
        self.assertIsNone(self.threads.get(DEFAULT_THREAD_ID)["creator_id"])
        owner = self.make_user("owner")
        self.assertNotEqual(self.threads.create(owner, "Second")["id"], DEFAULT_THREAD_ID)

    def test_unique_violation_maps_to_conflict(self):
        self.make_user("dana")
        with self.assertRaises(Conflict) as ctx:
            self.make_user("dana")
        self.assertEqual(ctx.exception.reason, "username_taken")

    def test_concurrent_get_or_create_yields_one_channel(self):
        alice = self.make_user("alice")
        bob = self.make_user("bob")
        self.befriend(alice, bob)
        results, errors = [], []

        def worker(actor, other):
            try:
                results.append(self.dms.get_or_create(actor, other)["channel_id"])
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        pool = [
            threading.Thread(target=worker, args=(alice, "bob") if i % 2 else (bob, "alice"))
            for i in range(8)
        ]
        for t in pool:
            t.start()
        for t in pool:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(set(results)), 1)
        self.assertEqual(self._scalar("SELECT COUNT(*) FROM dm_channels;"), 1)
        self.assertEqual(self._scalar("SELECT COUNT(*) FROM dm_participants;"), 2)

    def test_listing_is_pinned_first_then_chronological(self):
        owner = self.make_user("owner")
        ann = self.make_user("ann")
        scope = Scope.thread(self.threads.create(owner, "Chat")["id"])
        m1 = self.messages.post(ann, scope, "one")
        m2 = self.messages.post(ann, scope, "two")
        self.messages.set_pinned(owner, m2["id"], True)
        self.assertEqual([m["id"] for m in self.messages.list(scope)], [m2["id"], m1["id"]])

    def test_edit_history_and_thread_cascade(self):
        owner = self.make_user("owner")
        thread = self.threads.create(owner, "Short lived")
        msg = self.messages.post(owner, Scope.thread(thread["id"]), "v1")
        self.messages.edit(owner, THREAD, msg["id"], "v2")
        self.assertEqual([h["content"] for h in self.messages.list_edit_history(owner, THREAD, msg["id"])], ["v1"])

        self.threads.delete(owner, thread["id"])
        self.assertEqual(self._scalar("SELECT COUNT(*) FROM messages;"), 0)
        self.assertEqual(self._scalar("SELECT COUNT(*) FROM message_edits;"), 0)


if __name__ == "__main__":
    unittest.main()
