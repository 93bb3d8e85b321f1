"""Shared fixtures for the service-level tests."""

from __future__ import annotations

from dm_channels import DMChannelResolver
from memory_store import MemoryStore
from messages import MessageStore
from models import Principal
from social_graph import SocialGraph
from threads import ThreadRegistry
from users import UserDirectory


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, room, event, payload):
        self.events.append((room, event, payload))

    def of(self, event):
        return [(room, payload) for room, e, payload in self.events if e == event]


class ServiceCase:
    """Mixin: fresh memory store, publisher and services per test."""

    def setUp(self):
        super().setUp()
        self.store = self.make_store()
        self.publisher = RecordingPublisher()
        self.users = UserDirectory(self.store)
        self.social = SocialGraph(self.store, self.users)
        self.threads = ThreadRegistry(self.store, self.publisher)
        self.messages = MessageStore(self.store, self.publisher)
        self.dms = DMChannelResolver(self.store, self.users)

    def make_store(self):
        return MemoryStore()

    def make_user(self, username: str) -> Principal:
        # Placeholder hash: these users never log in.
        with self.store.transaction() as tx:
            row = tx.insert_user(
                username=username,
                email=f"{username}@example.com",
                handle=f"h{username}"[:8],
                password_hash="x",
            )
        return Principal(id=row["id"], handle=row["handle"], username=row["username"])

    def befriend(self, a: Principal, b: Principal) -> None:
        req = self.social.send_friend_request(a, b.username)
        self.social.approve_friend_request(b, req["id"])
