#!/usr/bin/env python3
"""permissions.py

Authorization decisions for Chatterbox.

Every function here is pure: callers pass the rows and relationship facts
they just read inside their own transaction, so nothing is cached between
actions. The ``can_*`` functions answer yes/no; the ``ensure_*`` guards raise
Forbidden with a reason that is distinct per denial.
"""

from __future__ import annotations

from errors import Forbidden

NOT_MESSAGE_OWNER = "not_message_owner"
MESSAGE_DELETE_NOT_ALLOWED = "message_delete_not_allowed"
NOT_THREAD_CREATOR = "not_thread_creator"
NOT_FRIENDS = "not_friends"
BLOCKED = "blocked"
NOT_CHANNEL_PARTICIPANT = "not_channel_participant"
ATTACHMENTS_DISABLED = "attachments_disabled"


def is_thread_creator(actor_id: int, thread: dict) -> bool:
    creator = thread.get("creator_id")
    return creator is not None and creator == actor_id


def can_delete_thread_message(actor_id: int, message: dict, thread: dict) -> bool:
    """Creator may always remove; a sender only while the thread allows it."""
    if is_thread_creator(actor_id, thread):
        return True
    return message["sender_id"] == actor_id and bool(thread.get("allow_msg_delete"))


def can_delete_dm_message(actor_id: int, message: dict) -> bool:
    return message["sender_id"] == actor_id


def can_edit_message(actor_id: int, message: dict) -> bool:
    # Thread policy does not apply to edits.
    return message["sender_id"] == actor_id


def can_mutate_thread(actor_id: int, thread: dict) -> bool:
    return is_thread_creator(actor_id, thread)


def can_create_dm_channel(are_friends: bool, blocked_either_way: bool) -> bool:
    return are_friends and not blocked_either_way


def can_send_dm_message(sender_id: int, participants: list[int], blocked_either_way: bool) -> bool:
    return sender_id in participants and not blocked_either_way


# ----------------------------------------------------------------------
# Guards
# ----------------------------------------------------------------------
def ensure_can_delete_thread_message(actor_id: int, message: dict, thread: dict) -> None:
    if can_delete_thread_message(actor_id, message, thread):
        return
    if message["sender_id"] != actor_id:
        raise Forbidden("Not your message", reason=NOT_MESSAGE_OWNER)
    raise Forbidden("Message deletion is disabled in this thread", reason=MESSAGE_DELETE_NOT_ALLOWED)


def ensure_can_delete_dm_message(actor_id: int, message: dict) -> None:
    if not can_delete_dm_message(actor_id, message):
        raise Forbidden("Only the sender may delete a direct message", reason=NOT_MESSAGE_OWNER)


def ensure_can_edit_message(actor_id: int, message: dict) -> None:
    if not can_edit_message(actor_id, message):
        raise Forbidden("Only the sender may edit a message", reason=NOT_MESSAGE_OWNER)


def ensure_can_mutate_thread(actor_id: int, thread: dict) -> None:
    if not can_mutate_thread(actor_id, thread):
        raise Forbidden("Only the thread creator may do that", reason=NOT_THREAD_CREATOR)


def ensure_can_create_dm_channel(are_friends: bool, blocked_either_way: bool) -> None:
    if blocked_either_way:
        raise Forbidden("Direct messages are blocked between these users", reason=BLOCKED)
    if not are_friends:
        raise Forbidden("Direct messages require a friendship", reason=NOT_FRIENDS)


def ensure_can_send_dm_message(sender_id: int, participants: list[int], blocked_either_way: bool) -> None:
    if sender_id not in participants:
        raise Forbidden("Not a participant of this channel", reason=NOT_CHANNEL_PARTICIPANT)
    if blocked_either_way:
        raise Forbidden("Direct message blocked", reason=BLOCKED)


def ensure_channel_participant(user_id: int, participants: list[int]) -> None:
    if user_id not in participants:
        raise Forbidden("Not a participant of this channel", reason=NOT_CHANNEL_PARTICIPANT)


def ensure_attachments_allowed(thread: dict) -> None:
    if not thread.get("allow_attachments"):
        raise Forbidden("Attachments are disabled in this thread", reason=ATTACHMENTS_DISABLED)
