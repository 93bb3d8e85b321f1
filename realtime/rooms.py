"""Socket.IO handlers: room subscription.

A connection subscribes to nothing until it joins a room key explicitly.
Thread rooms are readable by anyone, so joining one only needs the thread to
exist. DM rooms need an authenticated participant.
"""

import logging

from flask import request
from flask_socketio import join_room, leave_room

from constants import DM_ROOM_PREFIX, THREAD_ROOM_PREFIX
from errors import ChatError, InvalidArgument
from models import THREAD, Scope


def parse_room_key(room) -> Scope:
    """Turn ``thread:<id>`` / ``dm:<id>`` into a Scope."""
    room = str(room or "").strip()
    if not room:
        raise InvalidArgument("Room name missing", reason="missing_room")
    prefix, _, raw = room.partition(":")
    make = {THREAD_ROOM_PREFIX: Scope.thread, DM_ROOM_PREFIX: Scope.dm}.get(prefix)
    if make is None or not raw.isdigit() or int(raw) <= 0:
        raise InvalidArgument("Invalid room key", reason="invalid_room")
    return make(int(raw))


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    services = ctx.services

    def _authorize_join(scope: Scope) -> None:
        if scope.kind == THREAD:
            services.threads.get(scope.id)
        else:
            services.dm_channels.participants(ctx._principal(), scope.id)

    @socketio.on("join")
    def handle_join(data=None):
        sid = request.sid
        try:
            scope = parse_room_key(ctx._payload(data).get("room"))
            _authorize_join(scope)
        except ChatError as exc:
            return ctx._ack_error(exc)
        join_room(scope.room)
        logging.debug("sid %s joined %s", sid, scope.room)
        return {"success": True, "room": scope.room}

    @socketio.on("leave")
    def handle_leave(data=None):
        try:
            scope = parse_room_key(ctx._payload(data).get("room"))
        except ChatError as exc:
            return ctx._ack_error(exc)
        leave_room(scope.room)
        return {"success": True, "room": scope.room}
