#!/usr/bin/env python3
"""
socket_handlers.py

Socket.IO event handlers for the Chatterbox server.

Handlers are grouped by concern under realtime/; each module exposes
register(socketio, settings, ctx) and receives the shared helpers below
through ctx.
"""

import logging
from types import SimpleNamespace

from flask import request

from errors import ChatError, Internal, InvalidArgument
from security import current_principal


def register_socketio_handlers(socketio, settings, services):
    """
    Registers all Socket.IO event handlers against the given service bundle.
    """

    def _principal(optional: bool = False):
        """Principal for the current Socket.IO event (handshake cookie or header)."""
        return current_principal(optional=optional)

    def _payload(data) -> dict:
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise InvalidArgument("Event payload must be an object", reason="invalid_body")
        return data

    def _ack_error(exc: ChatError) -> dict:
        if isinstance(exc, Internal):
            logging.error("Socket.IO event failed for sid %s: %s", request.sid, exc.message)
        return {"success": False, "error": exc.reason, "message": exc.message}

    @socketio.on("connect")
    def handle_connect(auth=None):
        # Anonymous connections are allowed: thread rooms need no principal.
        try:
            principal = _principal(optional=True)
        except ChatError:
            logging.info("Rejected socket connection with an invalid token (sid %s)", request.sid)
            return False
        logging.debug("Socket connected sid=%s user=%s", request.sid, principal.id if principal else None)
        return None

    @socketio.on("disconnect")
    def handle_disconnect(*args, **kwargs):
        # Flask-SocketIO drops the sid from every room on its own.
        logging.debug("Socket disconnected sid=%s", request.sid)

    ctx = SimpleNamespace(services=services, _principal=_principal, _payload=_payload, _ack_error=_ack_error)
    from realtime import messaging, rooms
    rooms.register(socketio, settings, ctx)
    messaging.register(socketio, settings, ctx)
