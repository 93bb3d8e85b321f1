"""social_graph.py

Friend requests, friendships and blocks. This is the only place that
decides whether two users may interact.

Friendships are stored once per pair with the smaller user id first; every
lookup goes through canonical_pair(). A block in either direction wipes any
friendship and pending request between the pair in the same transaction.
"""

from __future__ import annotations

import logging

from errors import Conflict, Forbidden, InvalidArgument, NotFound
from models import Principal, to_json, user_ref
from permissions import BLOCKED


def canonical_pair(a: int, b: int) -> tuple[int, int]:
    a, b = int(a), int(b)
    return (a, b) if a < b else (b, a)


def blocked_either_way(tx, a: int, b: int) -> bool:
    return tx.get_block(a, b) is not None or tx.get_block(b, a) is not None


def are_friends(tx, a: int, b: int) -> bool:
    return tx.get_friendship(*canonical_pair(a, b)) is not None


def _ref(user: dict) -> dict:
    return {
        "id": user["id"],
        "handle": user["handle"],
        "username": user["username"],
        "display_name": user.get("display_name"),
        "avatar_url": user.get("avatar_url"),
        "name_color": user.get("name_color"),
    }


def _request_view(row: dict, other: dict | None = None) -> dict:
    return to_json(
        {
            "id": row["id"],
            "sender_id": row["sender_id"],
            "receiver_id": row["receiver_id"],
            "created_at": row["created_at"],
            "user": _ref(other) if other else user_ref(row),
        }
    )


class SocialGraph:
    def __init__(self, store, users):
        self.store = store
        self.users = users

    # ------------------------------------------------------------------
    # Friend requests
    # ------------------------------------------------------------------
    def send_friend_request(self, sender: Principal, target_lookup) -> dict:
        with self.store.transaction() as tx:
            target = self.users.resolve(tx, target_lookup)
            if target["id"] == sender.id:
                raise InvalidArgument("You cannot befriend yourself", reason="self_target")
            if blocked_either_way(tx, sender.id, target["id"]):
                raise Forbidden("Friend requests are blocked between these users", reason=BLOCKED)
            if are_friends(tx, sender.id, target["id"]):
                raise Conflict("Already friends", reason="already_friends")
            if tx.find_friend_request(sender.id, target["id"]):
                raise Conflict("Friend request already pending", reason="request_pending")
            row = tx.insert_friend_request(sender.id, target["id"])
        return _request_view(row, target)

    def approve_friend_request(self, approver: Principal, request_id: int) -> dict:
        with self.store.transaction() as tx:
            req = tx.get_friend_request(request_id)
            if not req or req["receiver_id"] != approver.id:
                raise NotFound("No pending request", reason="request_not_found")
            low, high = canonical_pair(req["sender_id"], req["receiver_id"])
            friendship = tx.get_friendship(low, high) or tx.insert_friendship(low, high)
            # Clears the approved request and a crossing one from the other side.
            tx.delete_friend_requests_between(req["sender_id"], req["receiver_id"])
            sender = tx.get_user(req["sender_id"])
        logging.info("Friendship %s<->%s created (request %s)", low, high, request_id)
        return to_json({"user": _ref(sender), "since": friendship["created_at"]})

    def cancel_or_reject(self, actor: Principal, request_id: int) -> None:
        with self.store.transaction() as tx:
            req = tx.get_friend_request(request_id)
            if not req:
                raise NotFound("No pending request", reason="request_not_found")
            if actor.id not in (req["sender_id"], req["receiver_id"]):
                raise Forbidden("Not your friend request", reason="not_request_party")
            tx.delete_friend_request(request_id)

    def list_incoming(self, principal: Principal) -> list[dict]:
        with self.store.transaction() as tx:
            rows = tx.list_incoming_requests(principal.id)
        return [_request_view(r) for r in rows]

    def list_outgoing(self, principal: Principal) -> list[dict]:
        with self.store.transaction() as tx:
            rows = tx.list_outgoing_requests(principal.id)
        return [_request_view(r) for r in rows]

    # ------------------------------------------------------------------
    # Friendships
    # ------------------------------------------------------------------
    def remove_friendship(self, actor: Principal, other_lookup) -> None:
        with self.store.transaction() as tx:
            other = self.users.resolve(tx, other_lookup)
            if not tx.delete_friendship(*canonical_pair(actor.id, other["id"])):
                raise NotFound("Friendship not found", reason="friendship_not_found")

    def list_friends(self, principal: Principal) -> list[dict]:
        with self.store.transaction() as tx:
            rows = tx.list_friends(principal.id)
        return [to_json({"user": user_ref(r), "since": r["since"]}) for r in rows]

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------
    def block(self, blocker: Principal, target_lookup) -> dict:
        with self.store.transaction() as tx:
            target = self.users.resolve(tx, target_lookup)
            if target["id"] == blocker.id:
                raise InvalidArgument("You cannot block yourself", reason="self_target")
            if tx.get_block(blocker.id, target["id"]):
                raise Conflict("User already blocked", reason="already_blocked")
            row = tx.insert_block(blocker.id, target["id"])
            tx.delete_friendship(*canonical_pair(blocker.id, target["id"]))
            tx.delete_friend_requests_between(blocker.id, target["id"])
        logging.info("User %s blocked %s", blocker.id, target["id"])
        return to_json({"user": _ref(target), "created_at": row["created_at"]})

    def unblock(self, blocker: Principal, target_lookup) -> None:
        with self.store.transaction() as tx:
            target = self.users.resolve(tx, target_lookup)
            if not tx.delete_block(blocker.id, target["id"]):
                raise NotFound("User is not blocked", reason="block_not_found")
        logging.info("User %s unblocked %s", blocker.id, target["id"])

    def list_blocked(self, principal: Principal) -> list[dict]:
        with self.store.transaction() as tx:
            rows = tx.list_blocked(principal.id)
        return [to_json({"user": user_ref(r), "created_at": r["created_at"]}) for r in rows]
