"""messages.py

Message lifecycle for both group threads and DM channels.

One code path serves both scopes; the differences are confined to the
authorization step (thread policy vs. channel membership and blocks), list
ordering (pinned-first for threads) and the fanout event names. Every
mutation authorizes, validates and writes inside one transaction, and only
publishes after that transaction has committed.

Sender profiles are joined in at read time, so profile edits show up in
every past message view.
"""

from __future__ import annotations

from constants import MAX_ATTACHMENT_NAME_LENGTH, MAX_ATTACHMENT_URL_LENGTH, MAX_MESSAGE_LENGTH
from errors import InvalidArgument, NotFound, Unauthenticated
from models import DM, SCOPE_KINDS, THREAD, Attachment, Principal, Scope, edit_view, message_view
from permissions import (
    ensure_attachments_allowed,
    ensure_can_delete_dm_message,
    ensure_can_delete_thread_message,
    ensure_can_edit_message,
    ensure_can_mutate_thread,
    ensure_can_send_dm_message,
    ensure_channel_participant,
)
from realtime import fanout
from social_graph import blocked_either_way
from threads import get_thread_or_404

_EVENTS = {
    THREAD: {
        "posted": fanout.MESSAGE_POSTED,
        "edited": fanout.MESSAGE_EDITED,
        "deleted": fanout.MESSAGE_DELETED,
    },
    DM: {
        "posted": fanout.DM_MESSAGE_POSTED,
        "edited": fanout.DM_MESSAGE_EDITED,
        "deleted": fanout.DM_MESSAGE_DELETED,
    },
}

_CONTAINER = {THREAD: "thread_id", DM: "channel_id"}


def _check_kind(kind: str) -> str:
    if kind not in SCOPE_KINDS:
        raise InvalidArgument(f"Unknown message scope {kind!r}", reason="invalid_scope")
    return kind


def channel_participants(tx, channel_id) -> list[int]:
    if not tx.get_dm_channel(channel_id):
        raise NotFound("Channel not found", reason="channel_not_found")
    return tx.list_dm_participants(channel_id)


class MessageStore:
    def __init__(self, store, publisher, max_length: int | None = MAX_MESSAGE_LENGTH):
        self.store = store
        self.publisher = publisher
        self.max_length = int(max_length or MAX_MESSAGE_LENGTH)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _clean_content(self, content) -> str:
        if not isinstance(content, str):
            raise InvalidArgument("Message content must be text", reason="invalid_content")
        content = content.strip()
        if not content:
            raise InvalidArgument("Message is empty", reason="empty_content")
        if len(content) > self.max_length:
            raise InvalidArgument(f"Message too long (max {self.max_length})", reason="content_too_long")
        return content

    @staticmethod
    def _clean_attachment(attachment) -> Attachment | None:
        if attachment is None:
            return None
        if isinstance(attachment, Attachment):
            url, name = attachment.url, attachment.name
        elif isinstance(attachment, dict):
            url, name = attachment.get("url"), attachment.get("name") or ""
        else:
            raise InvalidArgument("Attachment must be an object with url and name", reason="invalid_attachment")
        if not isinstance(url, str) or not url.strip() or not isinstance(name, str):
            raise InvalidArgument("Attachment needs a url", reason="invalid_attachment")
        if len(url) > MAX_ATTACHMENT_URL_LENGTH or len(name) > MAX_ATTACHMENT_NAME_LENGTH:
            raise InvalidArgument("Attachment descriptor too long", reason="invalid_attachment")
        return Attachment(url=url.strip(), name=name.strip())

    # ------------------------------------------------------------------
    # Lookups shared by the mutations
    # ------------------------------------------------------------------
    @staticmethod
    def _get_message(tx, kind: str, message_id, container_id=None) -> dict:
        msg = tx.get_message(kind, message_id)
        if not msg or (container_id is not None and msg[_CONTAINER[kind]] != int(container_id)):
            raise NotFound("Message not found", reason="message_not_found")
        return msg

    @staticmethod
    def _authorize_dm_send(tx, principal: Principal, channel_id) -> None:
        participants = channel_participants(tx, channel_id)
        blocked = principal.id in participants and any(
            blocked_either_way(tx, principal.id, other) for other in participants if other != principal.id
        )
        ensure_can_send_dm_message(principal.id, participants, blocked)

    def _publish(self, scope: Scope, what: str, payload: dict) -> None:
        self.publisher.publish(scope.room, _EVENTS[scope.kind][what], payload)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def post(self, principal: Principal, scope: Scope, content, parent_id=None, attachment=None) -> dict:
        kind = _check_kind(scope.kind)
        content = self._clean_content(content)
        attachment = self._clean_attachment(attachment)

        with self.store.transaction() as tx:
            if kind == THREAD:
                thread = get_thread_or_404(tx, scope.id)
                if attachment:
                    ensure_attachments_allowed(thread)
            else:
                self._authorize_dm_send(tx, principal, scope.id)

            if parent_id is not None:
                parent = tx.get_message(kind, parent_id)
                if not parent or parent[_CONTAINER[kind]] != scope.id:
                    raise InvalidArgument("Reply target is not in this conversation", reason="invalid_parent")
                parent_id = parent["id"]

            message_id = tx.insert_message(
                kind,
                scope.id,
                sender_id=principal.id,
                content=content,
                parent_id=parent_id,
                attachment_url=attachment.url if attachment else None,
                attachment_name=attachment.name if attachment else None,
            )
            if kind == DM:
                tx.touch_dm_channel(scope.id)
            row = tx.get_message_view(kind, message_id)

        view = message_view(row, kind)
        self._publish(scope, "posted", view)
        return view

    def edit(self, principal: Principal, kind: str, message_id, content, container_id=None) -> dict:
        kind = _check_kind(kind)
        content = self._clean_content(content)

        with self.store.transaction() as tx:
            msg = self._get_message(tx, kind, message_id, container_id)
            ensure_can_edit_message(principal.id, msg)
            # History first: the pre-edit text is captured before overwrite.
            tx.insert_message_edit(kind, msg["id"], msg["content"])
            tx.update_message_content(kind, msg["id"], content)
            row = tx.get_message_view(kind, msg["id"])

        view = message_view(row, kind)
        self._publish(Scope(kind, msg[_CONTAINER[kind]]), "edited", view)
        return view

    def delete(self, principal: Principal, kind: str, message_id, container_id=None) -> None:
        kind = _check_kind(kind)
        with self.store.transaction() as tx:
            msg = self._get_message(tx, kind, message_id, container_id)
            if kind == THREAD:
                thread = get_thread_or_404(tx, msg["thread_id"])
                ensure_can_delete_thread_message(principal.id, msg, thread)
            else:
                ensure_can_delete_dm_message(principal.id, msg)
            # Replies keep pointing at the removed id.
            tx.delete_message(kind, msg["id"])

        self._publish(Scope(kind, msg[_CONTAINER[kind]]), "deleted", {"id": msg["id"]})

    def set_pinned(self, principal: Principal, message_id, pinned: bool, thread_id=None) -> dict:
        if not isinstance(pinned, bool):
            raise InvalidArgument("pinned must be true or false", reason="invalid_flag")
        with self.store.transaction() as tx:
            msg = self._get_message(tx, THREAD, message_id, thread_id)
            thread = get_thread_or_404(tx, msg["thread_id"])
            ensure_can_mutate_thread(principal.id, thread)
            tx.set_message_pinned(msg["id"], pinned)
            row = tx.get_message_view(THREAD, msg["id"])

        view = message_view(row, THREAD)
        self.publisher.publish(Scope.thread(msg["thread_id"]).room, fanout.MESSAGE_PINNED, view)
        return view

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list(self, scope: Scope, principal: Principal | None = None) -> list[dict]:
        kind = _check_kind(scope.kind)
        with self.store.transaction() as tx:
            if kind == THREAD:
                get_thread_or_404(tx, scope.id)
            else:
                if principal is None:
                    raise Unauthenticated("Authentication required")
                ensure_channel_participant(principal.id, channel_participants(tx, scope.id))
            rows = tx.list_messages(kind, scope.id)
        return [message_view(r, kind) for r in rows]

    def get(self, kind: str, message_id, container_id=None, principal: Principal | None = None) -> dict:
        kind = _check_kind(kind)
        with self.store.transaction() as tx:
            msg = self._get_message(tx, kind, message_id, container_id)
            if kind == DM:
                if principal is None:
                    raise Unauthenticated("Authentication required")
                ensure_channel_participant(principal.id, channel_participants(tx, msg["channel_id"]))
            row = tx.get_message_view(kind, msg["id"])
        return message_view(row, kind)

    def list_edit_history(self, principal: Principal, kind: str, message_id, container_id=None) -> list[dict]:
        kind = _check_kind(kind)
        with self.store.transaction() as tx:
            msg = self._get_message(tx, kind, message_id, container_id)
            if kind == DM:
                ensure_channel_participant(principal.id, channel_participants(tx, msg["channel_id"]))
            rows = tx.list_message_edits(kind, msg["id"])
        return [edit_view(r) for r in rows]
