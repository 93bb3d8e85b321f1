"""Socket.IO handlers: posting messages.

Same rules and fanout as the HTTP actions; the result comes back in the ack
and the room sees the usual message-posted / dm-message-posted event.
"""

from errors import ChatError, InvalidArgument
from models import Scope


def _int_field(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        raise InvalidArgument(f"{key} required", reason=f"missing_{key}")
    # bool is an int subclass; 1.9 would truncate silently.
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidArgument(f"{key} must be an integer", reason=f"invalid_{key}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{key} must be an integer", reason=f"invalid_{key}") from None


def _optional_int(data: dict, key: str):
    if data.get(key) is None:
        return None
    return _int_field(data, key)


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    services = ctx.services

    def _post(data, scope_for, key):
        data = ctx._payload(data)
        principal = ctx._principal()
        return services.messages.post(
            principal,
            scope_for(_int_field(data, key)),
            data.get("content"),
            parent_id=_optional_int(data, "parent_id"),
            attachment=data.get("attachment"),
        )

    @socketio.on("send_message")
    def handle_send_message(data=None):
        try:
            message = _post(data, Scope.thread, "thread_id")
        except ChatError as exc:
            return ctx._ack_error(exc)
        return {"success": True, "message": message}

    @socketio.on("send_dm_message")
    def handle_send_dm_message(data=None):
        try:
            message = _post(data, Scope.dm, "channel_id")
        except ChatError as exc:
            return ctx._ack_error(exc)
        return {"success": True, "message": message}
