import threading
import unittest

from errors import Forbidden, InvalidArgument, NotFound, Unauthenticated
from models import DM, Scope
from tests.helpers import ServiceCase


class DMChannelResolverTests(ServiceCase, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("alice")
        self.bob = self.make_user("bob")
        self.carol = self.make_user("carol")

    def test_requires_friendship(self):
        with self.assertRaises(Forbidden) as ctx:
            self.dms.get_or_create(self.alice, "bob")
        self.assertEqual(ctx.exception.reason, "not_friends")
        with self.assertRaises(InvalidArgument):
            self.dms.get_or_create(self.alice, "alice")

    def test_idempotent_from_either_side(self):
        self.befriend(self.alice, self.bob)
        first = self.dms.get_or_create(self.alice, "bob")
        again = self.dms.get_or_create(self.alice, "bob")
        other_side = self.dms.get_or_create(self.bob, "alice")
        self.assertTrue(first["created"])
        self.assertFalse(again["created"])
        self.assertEqual({first["channel_id"], again["channel_id"], other_side["channel_id"]}, {first["channel_id"]})
        self.assertEqual(self.dms.participants(self.bob, first["channel_id"]), sorted([self.alice.id, self.bob.id]))

    def test_concurrent_get_or_create_yields_one_channel(self):
        self.befriend(self.alice, self.bob)
        results, errors = [], []

        def worker(actor, other):
            try:
                results.append(self.dms.get_or_create(actor, other)["channel_id"])
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        pool = [
            threading.Thread(target=worker, args=(self.alice, "bob") if i % 2 else (self.bob, "alice"))
            for i in range(8)
        ]
        for t in pool:
            t.start()
        for t in pool:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(set(results)), 1)
        with self.store.transaction() as tx:
            self.assertEqual(len(tx._t("dm_channels")), 1)
            self.assertEqual(len(tx._t("dm_participants")), 2)

    def test_block_forbids_channel_creation(self):
        self.befriend(self.alice, self.bob)
        self.social.block(self.bob, "alice")
        with self.assertRaises(Forbidden) as ctx:
            self.dms.get_or_create(self.alice, "bob")
        self.assertEqual(ctx.exception.reason, "blocked")

    def test_list_channels_orders_by_recency_with_last_message(self):
        self.befriend(self.alice, self.bob)
        self.befriend(self.alice, self.carol)
        with_bob = self.dms.get_or_create(self.alice, "bob")["channel_id"]
        with_carol = self.dms.get_or_create(self.alice, "carol")["channel_id"]
        self.messages.post(self.bob, Scope.dm(with_bob), "ping")

        listed = self.dms.list_channels(self.alice)
        self.assertEqual([c["id"] for c in listed], [with_bob, with_carol])
        self.assertEqual(listed[0]["user"]["username"], "bob")
        self.assertEqual(listed[0]["last_message"]["content"], "ping")
        self.assertIsNone(listed[1]["last_message"])
        self.assertEqual([c["id"] for c in self.dms.list_channels(self.carol)], [with_carol])


class DMMessageTests(ServiceCase, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("alice")
        self.bob = self.make_user("bob")
        self.eve = self.make_user("eve")
        self.befriend(self.alice, self.bob)
        self.channel_id = self.dms.get_or_create(self.alice, "bob")["channel_id"]
        self.scope = Scope.dm(self.channel_id)

    def test_post_list_and_fanout(self):
        msg = self.messages.post(self.alice, self.scope, "hi bob")
        self.assertEqual(msg["channel_id"], self.channel_id)
        self.assertEqual(self.publisher.of("dm-message-posted"), [(f"dm:{self.channel_id}", msg)])
        self.assertEqual([m["id"] for m in self.messages.list(self.scope, self.bob)], [msg["id"]])

    def test_non_participant_is_forbidden(self):
        msg = self.messages.post(self.alice, self.scope, "private")
        with self.assertRaises(Forbidden) as ctx:
            self.messages.list(self.scope, self.eve)
        self.assertEqual(ctx.exception.reason, "not_channel_participant")
        with self.assertRaises(Forbidden):
            self.messages.post(self.eve, self.scope, "let me in")
        with self.assertRaises(Forbidden):
            self.messages.list_edit_history(self.eve, DM, msg["id"])
        with self.assertRaises(Unauthenticated):
            self.messages.list(self.scope)

    def test_missing_channel(self):
        with self.assertRaises(NotFound):
            self.messages.post(self.alice, Scope.dm(999), "anyone?")

    def test_block_after_channel_exists_stops_sending_both_ways(self):
        self.messages.post(self.bob, self.scope, "before")
        self.social.block(self.alice, "bob")
        for sender in (self.alice, self.bob):
            with self.assertRaises(Forbidden) as ctx:
                self.messages.post(sender, self.scope, "after")
            self.assertEqual(ctx.exception.reason, "blocked")
        # History stays readable to participants.
        self.assertEqual(len(self.messages.list(self.scope, self.alice)), 1)

    def test_edit_and_delete_are_sender_only(self):
        msg = self.messages.post(self.alice, self.scope, "draft")
        with self.assertRaises(Forbidden):
            self.messages.edit(self.bob, DM, msg["id"], "nope")
        with self.assertRaises(Forbidden):
            self.messages.delete(self.bob, DM, msg["id"])

        self.messages.edit(self.alice, DM, msg["id"], "final")
        self.assertEqual([h["content"] for h in self.messages.list_edit_history(self.bob, DM, msg["id"])], ["draft"])
        self.messages.delete(self.alice, DM, msg["id"], container_id=self.channel_id)
        self.assertEqual(self.publisher.of("dm-message-deleted"), [(self.scope.room, {"id": msg["id"]})])
        self.assertEqual(self.messages.list(self.scope, self.alice), [])


if __name__ == "__main__":
    unittest.main()
