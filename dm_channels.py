"""dm_channels.py

Resolves the single DM channel between two friends.

A pair of users has at most one channel; its key is the canonical
"low:high" id pair, so get_or_create() from either side (or from both at
once) lands on the same row.
"""

from __future__ import annotations

import logging

from errors import InvalidArgument
from messages import channel_participants
from models import Principal, to_json, user_ref
from permissions import ensure_can_create_dm_channel, ensure_channel_participant
from social_graph import are_friends, blocked_either_way, canonical_pair


class DMChannelResolver:
    def __init__(self, store, users):
        self.store = store
        self.users = users

    def get_or_create(self, principal: Principal, other_lookup) -> dict:
        with self.store.transaction() as tx:
            other = self.users.resolve(tx, other_lookup)
            if other["id"] == principal.id:
                raise InvalidArgument("You cannot message yourself", reason="self_target")
            ensure_can_create_dm_channel(
                are_friends=are_friends(tx, principal.id, other["id"]),
                blocked_either_way=blocked_either_way(tx, principal.id, other["id"]),
            )
            channel_id, created = tx.create_dm_channel(*canonical_pair(principal.id, other["id"]))
        if created:
            logging.info("DM channel %s opened between %s and %s", channel_id, principal.id, other["id"])
        return {"channel_id": channel_id, "created": created}

    def list_channels(self, principal: Principal) -> list[dict]:
        with self.store.transaction() as tx:
            rows = tx.list_dm_channels(principal.id)
        return [
            to_json(
                {
                    "id": r["id"],
                    "user": user_ref(r),
                    "updated_at": r["updated_at"],
                    "last_message": (
                        {"content": r["last_message_content"], "created_at": r["last_message_at"]}
                        if r.get("last_message_at") is not None
                        else None
                    ),
                }
            )
            for r in rows
        ]

    def participants(self, principal: Principal, channel_id: int) -> list[int]:
        """Participant ids of a channel the principal belongs to."""
        with self.store.transaction() as tx:
            members = channel_participants(tx, channel_id)
        ensure_channel_participant(principal.id, members)
        return members
