"""threads.py

Group threads and their creator-set policy flags.

Listing and reading threads needs no principal; creating one does, and only
the creator may update or delete it. Deleting a thread removes its messages
(and their edit history) before the thread row, in one transaction.
"""

from __future__ import annotations

import logging

from constants import DEFAULT_THREAD_FLAGS, MAX_THREAD_TITLE_LENGTH, THREAD_FLAGS, THREAD_VISIBILITIES, thread_room
from errors import InvalidArgument, NotFound
from models import Principal, thread_view
from permissions import ensure_can_mutate_thread
from realtime.fanout import THREAD_DELETED

_UPDATABLE = ("title", "visibility") + THREAD_FLAGS


def _clean_title(title) -> str:
    if title is not None and not isinstance(title, str):
        raise InvalidArgument("Thread title must be text", reason="invalid_title")
    title = (title or "").strip()
    if not title:
        raise InvalidArgument("Thread title required", reason="invalid_title")
    if len(title) > MAX_THREAD_TITLE_LENGTH:
        raise InvalidArgument(f"Thread title too long (max {MAX_THREAD_TITLE_LENGTH})", reason="invalid_title")
    return title


def _clean_visibility(visibility) -> str:
    if visibility not in THREAD_VISIBILITIES:
        raise InvalidArgument(
            f"visibility must be one of {', '.join(THREAD_VISIBILITIES)}", reason="invalid_visibility"
        )
    return visibility


def _clean_flag(name: str, value) -> bool:
    if not isinstance(value, bool):
        raise InvalidArgument(f"{name} must be true or false", reason="invalid_flag")
    return value


def get_thread_or_404(tx, thread_id) -> dict:
    thread = tx.get_thread(thread_id)
    if not thread:
        raise NotFound("Thread not found", reason="thread_not_found")
    return thread


class ThreadRegistry:
    def __init__(self, store, publisher):
        self.store = store
        self.publisher = publisher

    def create(self, principal: Principal, title, visibility=None, flags: dict | None = None) -> dict:
        title = _clean_title(title)
        visibility = _clean_visibility(visibility or "public")
        if flags is not None and not isinstance(flags, dict):
            raise InvalidArgument("flags must be an object", reason="invalid_flag")
        clean_flags = dict(DEFAULT_THREAD_FLAGS)
        for name, value in (flags or {}).items():
            if name not in THREAD_FLAGS:
                raise InvalidArgument(f"Unknown thread flag {name!r}", reason="invalid_flag")
            clean_flags[name] = _clean_flag(name, value)

        with self.store.transaction() as tx:
            row = tx.insert_thread(title=title, creator_id=principal.id, visibility=visibility, flags=clean_flags)
        return thread_view(row)

    def list(self) -> list[dict]:
        with self.store.transaction() as tx:
            rows = tx.list_threads()
        return [thread_view(r) for r in rows]

    def get(self, thread_id: int) -> dict:
        with self.store.transaction() as tx:
            return thread_view(get_thread_or_404(tx, thread_id))

    def update(self, principal: Principal, thread_id: int, fields: dict) -> dict:
        if fields is not None and not isinstance(fields, dict):
            raise InvalidArgument("Thread update must be an object", reason="invalid_body")
        fields = dict(fields or {})
        unknown = set(fields) - set(_UPDATABLE)
        if unknown:
            raise InvalidArgument(f"Not updatable: {', '.join(sorted(unknown))}", reason="invalid_field")
        clean = {}
        for name, value in fields.items():
            if name == "title":
                clean[name] = _clean_title(value)
            elif name == "visibility":
                clean[name] = _clean_visibility(value)
            else:
                clean[name] = _clean_flag(name, value)

        with self.store.transaction() as tx:
            thread = get_thread_or_404(tx, thread_id)
            ensure_can_mutate_thread(principal.id, thread)
            row = tx.update_thread(thread_id, clean) if clean else thread
        return thread_view(row)

    def delete(self, principal: Principal, thread_id: int) -> None:
        with self.store.transaction() as tx:
            thread = get_thread_or_404(tx, thread_id)
            ensure_can_mutate_thread(principal.id, thread)
            removed = tx.delete_thread_messages(thread_id)
            tx.delete_thread(thread_id)
        logging.info("Thread %s deleted by %s (%s messages removed)", thread_id, principal.id, removed)
        self.publisher.publish(thread_room(thread_id), THREAD_DELETED, {"id": int(thread_id)})
