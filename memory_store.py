"""memory_store.py

In-process store with the same transactional interface as the PostgreSQL
store in database.py. Used by the test-suite and for quick local runs
(``storage_backend = "memory"``); state is lost on restart.

A single re-entrant lock serialises every unit of work, and a unit that
raises is rolled back to the snapshot taken when it began.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from constants import DEFAULT_THREAD_FLAGS, DEFAULT_THREAD_ID, DEFAULT_THREAD_TITLE
from errors import Conflict, InvalidArgument
from models import DM, SENDER_FIELDS, THREAD

TABLES = (
    "users",
    "friend_requests",
    "friendships",
    "blocks",
    "threads",
    "messages",
    "message_edits",
    "dm_channels",
    "dm_participants",
    "dm_messages",
    "dm_message_edits",
)

# kind -> (message table, edit table, container column)
_MESSAGE_TABLES = {
    THREAD: ("messages", "message_edits", "thread_id"),
    DM: ("dm_messages", "dm_message_edits", "channel_id"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _tables(kind: str) -> tuple[str, str, str]:
    try:
        return _MESSAGE_TABLES[kind]
    except KeyError:
        raise InvalidArgument(f"Unknown message scope {kind!r}") from None


class MemoryStore:
    backend = "memory"

    def __init__(self, seed_default_thread: bool = True):
        self._lock = threading.RLock()
        self._data: dict[str, dict[int, dict]] = {t: {} for t in TABLES}
        self._seq: dict[str, int] = {t: 0 for t in TABLES}
        if seed_default_thread:
            self.init_schema()

    def init_schema(self) -> None:
        """Seed the default hub thread (idempotent)."""
        with self.transaction():
            if DEFAULT_THREAD_ID not in self._data["threads"]:
                row = {
                    "id": DEFAULT_THREAD_ID,
                    "title": DEFAULT_THREAD_TITLE,
                    "creator_id": None,
                    "visibility": "public",
                    "created_at": _utcnow(),
                }
                row.update(DEFAULT_THREAD_FLAGS)
                self._data["threads"][DEFAULT_THREAD_ID] = row
                self._seq["threads"] = max(self._seq["threads"], DEFAULT_THREAD_ID)

    def close(self) -> None:
        pass

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = copy.deepcopy((self._data, self._seq))
            try:
                yield _MemoryTx(self)
            except BaseException:
                self._data, self._seq = snapshot
                raise


class _MemoryTx:
    def __init__(self, store: MemoryStore):
        self._store = store

    # ------------------------------------------------------------------
    # Table helpers
    # ------------------------------------------------------------------
    def _t(self, name: str) -> dict[int, dict]:
        return self._store._data[name]

    def _insert(self, table: str, row: dict) -> dict:
        self._store._seq[table] += 1
        row = dict(row, id=self._store._seq[table])
        self._t(table)[row["id"]] = row
        return dict(row)

    def _get(self, table: str, row_id) -> dict | None:
        row = self._t(table).get(int(row_id)) if row_id is not None else None
        return dict(row) if row else None

    def _find(self, table: str, **match) -> dict | None:
        for row in self._t(table).values():
            if all(row.get(k) == v for k, v in match.items()):
                return dict(row)
        return None

    def _delete_where(self, table: str, predicate) -> int:
        rows = self._t(table)
        doomed = [rid for rid, row in rows.items() if predicate(row)]
        for rid in doomed:
            del rows[rid]
        return len(doomed)

    def _with_user(self, row: dict, user_id, prefix: str) -> dict:
        out = dict(row)
        user = self._t("users").get(user_id) or {}
        out[f"{prefix}id"] = user_id
        for f in SENDER_FIELDS:
            out[f"{prefix}{f}"] = user.get(f)
        return out

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def insert_user(self, *, username, email, handle, password_hash, display_name=None) -> dict:
        for field, value, reason in (
            ("username", username, "username_taken"),
            ("email", email, "email_taken"),
            ("handle", handle, "handle_taken"),
        ):
            if self._find("users", **{field: value}):
                raise Conflict(f"{field} already in use", reason=reason)
        return self._insert(
            "users",
            {
                "handle": handle,
                "username": username,
                "email": email,
                "password_hash": password_hash,
                "display_name": display_name or username,
                "bio": "",
                "avatar_url": "",
                "name_color": "",
                "created_at": _utcnow(),
            },
        )

    def get_user(self, user_id) -> dict | None:
        return self._get("users", user_id)

    def get_user_by_handle(self, handle: str) -> dict | None:
        return self._find("users", handle=handle)

    def get_user_by_username(self, username: str) -> dict | None:
        return self._find("users", username=username)

    def update_user(self, user_id, fields: dict) -> dict:
        row = self._t("users")[int(user_id)]
        row.update(fields)
        return dict(row)

    # ------------------------------------------------------------------
    # Friend requests / friendships / blocks
    # ------------------------------------------------------------------
    def get_friend_request(self, request_id) -> dict | None:
        return self._get("friend_requests", request_id)

    def find_friend_request(self, sender_id, receiver_id) -> dict | None:
        return self._find("friend_requests", sender_id=sender_id, receiver_id=receiver_id)

    def insert_friend_request(self, sender_id, receiver_id) -> dict:
        if self.find_friend_request(sender_id, receiver_id):
            raise Conflict("Friend request already pending", reason="request_pending")
        return self._insert(
            "friend_requests",
            {"sender_id": sender_id, "receiver_id": receiver_id, "created_at": _utcnow()},
        )

    def delete_friend_request(self, request_id) -> int:
        return self._delete_where("friend_requests", lambda r: r["id"] == int(request_id))

    def delete_friend_requests_between(self, a, b) -> int:
        pair = {a, b}
        return self._delete_where("friend_requests", lambda r: {r["sender_id"], r["receiver_id"]} == pair)

    def _request_views(self, key: str, user_id, other_key: str) -> list[dict]:
        rows = sorted(
            (r for r in self._t("friend_requests").values() if r[key] == user_id),
            key=lambda r: (r["created_at"], r["id"]),
            reverse=True,
        )
        return [self._with_user(r, r[other_key], "user_") for r in rows]

    def list_incoming_requests(self, user_id) -> list[dict]:
        return self._request_views("receiver_id", user_id, "sender_id")

    def list_outgoing_requests(self, user_id) -> list[dict]:
        return self._request_views("sender_id", user_id, "receiver_id")

    def get_friendship(self, low, high) -> dict | None:
        return self._find("friendships", user_low_id=low, user_high_id=high)

    def insert_friendship(self, low, high) -> dict:
        if low >= high:
            raise InvalidArgument("Friendship pair must be ordered (low, high)")
        if self.get_friendship(low, high):
            raise Conflict("Already friends", reason="already_friends")
        return self._insert("friendships", {"user_low_id": low, "user_high_id": high, "created_at": _utcnow()})

    def delete_friendship(self, low, high) -> int:
        return self._delete_where(
            "friendships", lambda r: r["user_low_id"] == low and r["user_high_id"] == high
        )

    def list_friends(self, user_id) -> list[dict]:
        out = []
        for r in sorted(self._t("friendships").values(), key=lambda r: (r["created_at"], r["id"])):
            if user_id not in (r["user_low_id"], r["user_high_id"]):
                continue
            other = r["user_high_id"] if r["user_low_id"] == user_id else r["user_low_id"]
            out.append(self._with_user({"since": r["created_at"]}, other, "user_"))
        return out

    def get_block(self, blocker_id, blocked_id) -> dict | None:
        return self._find("blocks", blocker_id=blocker_id, blocked_id=blocked_id)

    def insert_block(self, blocker_id, blocked_id) -> dict:
        if self.get_block(blocker_id, blocked_id):
            raise Conflict("User already blocked", reason="already_blocked")
        return self._insert("blocks", {"blocker_id": blocker_id, "blocked_id": blocked_id, "created_at": _utcnow()})

    def delete_block(self, blocker_id, blocked_id) -> int:
        return self._delete_where(
            "blocks", lambda r: r["blocker_id"] == blocker_id and r["blocked_id"] == blocked_id
        )

    def list_blocked(self, blocker_id) -> list[dict]:
        rows = sorted(
            (r for r in self._t("blocks").values() if r["blocker_id"] == blocker_id),
            key=lambda r: (r["created_at"], r["id"]),
        )
        return [self._with_user({"created_at": r["created_at"]}, r["blocked_id"], "user_") for r in rows]

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------
    def insert_thread(self, *, title, creator_id, visibility, flags: dict) -> dict:
        row = {"title": title, "creator_id": creator_id, "visibility": visibility, "created_at": _utcnow()}
        row.update(flags)
        return self._insert("threads", row)

    def get_thread(self, thread_id) -> dict | None:
        return self._get("threads", thread_id)

    def list_threads(self) -> list[dict]:
        return [dict(r) for r in sorted(self._t("threads").values(), key=lambda r: r["id"])]

    def update_thread(self, thread_id, fields: dict) -> dict:
        row = self._t("threads")[int(thread_id)]
        row.update(fields)
        return dict(row)

    def delete_thread(self, thread_id) -> int:
        return self._delete_where("threads", lambda r: r["id"] == int(thread_id))

    # ------------------------------------------------------------------
    # Messages (thread + DM)
    # ------------------------------------------------------------------
    def insert_message(self, kind, container_id, *, sender_id, content, parent_id=None,
                       attachment_url=None, attachment_name=None) -> int:
        table, _, container = _tables(kind)
        now = _utcnow()
        row = {
            container: int(container_id),
            "sender_id": sender_id,
            "content": content,
            "parent_id": parent_id,
            "attachment_url": attachment_url,
            "attachment_name": attachment_name,
            "created_at": now,
            "updated_at": now,
        }
        if kind == THREAD:
            row["pinned"] = False
        return self._insert(table, row)["id"]

    def get_message(self, kind, message_id) -> dict | None:
        table, _, _ = _tables(kind)
        return self._get(table, message_id)

    def get_message_view(self, kind, message_id) -> dict | None:
        row = self.get_message(kind, message_id)
        return self._with_user(row, row["sender_id"], "sender_") if row else None

    def list_messages(self, kind, container_id) -> list[dict]:
        table, _, container = _tables(kind)
        rows = [r for r in self._t(table).values() if r[container] == int(container_id)]
        if kind == THREAD:
            rows.sort(key=lambda r: (not r["pinned"], r["created_at"], r["id"]))
        else:
            rows.sort(key=lambda r: (r["created_at"], r["id"]))
        return [self._with_user(r, r["sender_id"], "sender_") for r in rows]

    def update_message_content(self, kind, message_id, content: str) -> None:
        table, _, _ = _tables(kind)
        row = self._t(table)[int(message_id)]
        row["content"] = content
        row["updated_at"] = _utcnow()

    def set_message_pinned(self, message_id, pinned: bool) -> None:
        row = self._t("messages")[int(message_id)]
        row["pinned"] = bool(pinned)
        row["updated_at"] = _utcnow()

    def delete_message(self, kind, message_id) -> int:
        table, edits, _ = _tables(kind)
        self._delete_where(edits, lambda r: r["message_id"] == int(message_id))
        return self._delete_where(table, lambda r: r["id"] == int(message_id))

    def delete_thread_messages(self, thread_id) -> int:
        doomed = {r["id"] for r in self._t("messages").values() if r["thread_id"] == int(thread_id)}
        self._delete_where("message_edits", lambda r: r["message_id"] in doomed)
        return self._delete_where("messages", lambda r: r["id"] in doomed)

    def insert_message_edit(self, kind, message_id, content: str) -> dict:
        _, edits, _ = _tables(kind)
        return self._insert(edits, {"message_id": int(message_id), "content": content, "created_at": _utcnow()})

    def list_message_edits(self, kind, message_id) -> list[dict]:
        _, edits, _ = _tables(kind)
        rows = [dict(r) for r in self._t(edits).values() if r["message_id"] == int(message_id)]
        rows.sort(key=lambda r: (r["created_at"], r["id"]), reverse=True)
        return rows

    # ------------------------------------------------------------------
    # DM channels
    # ------------------------------------------------------------------
    def find_dm_channel(self, low, high) -> int | None:
        row = self._find("dm_channels", pair_key=f"{low}:{high}")
        return row["id"] if row else None

    def create_dm_channel(self, low, high) -> tuple[int, bool]:
        existing = self.find_dm_channel(low, high)
        if existing is not None:
            return existing, False
        channel = self._insert("dm_channels", {"pair_key": f"{low}:{high}", "updated_at": _utcnow()})
        for user_id in (low, high):
            self._insert("dm_participants", {"channel_id": channel["id"], "user_id": user_id})
        return channel["id"], True

    def get_dm_channel(self, channel_id) -> dict | None:
        return self._get("dm_channels", channel_id)

    def list_dm_participants(self, channel_id) -> list[int]:
        return sorted(r["user_id"] for r in self._t("dm_participants").values() if r["channel_id"] == int(channel_id))

    def touch_dm_channel(self, channel_id) -> None:
        self._t("dm_channels")[int(channel_id)]["updated_at"] = _utcnow()

    def list_dm_channels(self, user_id) -> list[dict]:
        out = []
        mine = [r["channel_id"] for r in self._t("dm_participants").values() if r["user_id"] == user_id]
        for channel_id in mine:
            channel = self._t("dm_channels")[channel_id]
            other = next(u for u in self.list_dm_participants(channel_id) if u != user_id)
            msgs = [r for r in self._t("dm_messages").values() if r["channel_id"] == channel_id]
            last = max(msgs, key=lambda r: (r["created_at"], r["id"]), default=None)
            row = {
                "id": channel_id,
                "updated_at": channel["updated_at"],
                "last_message_content": last["content"] if last else None,
                "last_message_at": last["created_at"] if last else None,
            }
            out.append(self._with_user(row, other, "user_"))
        out.sort(key=lambda r: (r["updated_at"], r["id"]), reverse=True)
        return out
