"""models.py

Value types passed between the action surface and the services, plus the
helpers that turn flat store rows into the JSON payloads clients receive.

Store rows are plain dicts. Joined rows carry the related user's public
fields under a prefix (``sender_handle``, ``user_username``...); the view
helpers below fold those into nested profile objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from constants import dm_room, thread_room

THREAD = "thread"
DM = "dm"
SCOPE_KINDS = (THREAD, DM)

PROFILE_FIELDS = ("id", "handle", "username", "display_name", "bio", "avatar_url", "name_color", "created_at")
SENDER_FIELDS = ("handle", "username", "display_name", "avatar_url", "name_color")
EDITABLE_PROFILE_FIELDS = ("display_name", "bio", "avatar_url", "name_color")


@dataclass(frozen=True)
class Principal:
    """The authenticated identity an action runs as."""

    id: int
    handle: str
    username: str


@dataclass(frozen=True)
class Scope:
    """Where a message lives: a group thread or a DM channel."""

    kind: str
    id: int

    @classmethod
    def thread(cls, thread_id: int) -> "Scope":
        return cls(THREAD, int(thread_id))

    @classmethod
    def dm(cls, channel_id: int) -> "Scope":
        return cls(DM, int(channel_id))

    @property
    def room(self) -> str:
        return thread_room(self.id) if self.kind == THREAD else dm_room(self.id)


@dataclass(frozen=True)
class Attachment:
    url: str
    name: str


def to_json(value: Any) -> Any:
    """Make store output safe for jsonify() and Socket.IO emits."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value


def public_profile(user: dict) -> dict:
    return to_json({k: user.get(k) for k in PROFILE_FIELDS})


def _nest(row: dict, prefix: str, fields: tuple[str, ...]) -> dict:
    return {f: row.get(f"{prefix}{f}") for f in fields}


def user_ref(row: dict, prefix: str = "user_") -> dict:
    """Profile of the *other* party on a joined social/channel row."""
    out = {"id": row.get(f"{prefix}id")}
    out.update(_nest(row, prefix, SENDER_FIELDS))
    return out


def message_view(row: dict, kind: str) -> dict:
    view = {
        "id": row["id"],
        "sender_id": row["sender_id"],
        "content": row["content"],
        "parent_id": row.get("parent_id"),
        "attachment": None,
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
        "sender": _nest(row, "sender_", SENDER_FIELDS),
    }
    view["sender"]["id"] = row["sender_id"]
    if row.get("attachment_url"):
        view["attachment"] = {"url": row["attachment_url"], "name": row.get("attachment_name") or ""}
    if kind == THREAD:
        view["thread_id"] = row["thread_id"]
        view["pinned"] = bool(row.get("pinned"))
    else:
        view["channel_id"] = row["channel_id"]
    return to_json(view)


def thread_view(row: dict) -> dict:
    return to_json(
        {
            "id": row["id"],
            "title": row["title"],
            "creator_id": row.get("creator_id"),
            "visibility": row["visibility"],
            "spam_check": bool(row["spam_check"]),
            "mod_enabled": bool(row["mod_enabled"]),
            "allow_msg_delete": bool(row["allow_msg_delete"]),
            "allow_attachments": bool(row["allow_attachments"]),
            "created_at": row.get("created_at"),
        }
    )


def edit_view(row: dict) -> dict:
    return to_json({"id": row["id"], "message_id": row["message_id"], "content": row["content"], "created_at": row["created_at"]})
