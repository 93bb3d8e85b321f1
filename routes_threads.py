#!/usr/bin/env python3
"""
routes_threads.py

Group threads and thread messages.

Reading threads and their messages needs no token; everything that writes
does.
"""

from flask import jsonify

from errors import InvalidArgument
from models import THREAD, Scope
from security import current_principal, json_body


def optional_id(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidArgument(f"{key} must be an integer", reason=f"invalid_{key}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{key} must be an integer", reason=f"invalid_{key}") from None


def register_thread_routes(app, settings, services):
    threads = services.threads
    messages = services.messages

    # ───────────────────────────────────────────────────────────────────────
    # Threads
    # ───────────────────────────────────────────────────────────────────────
    @app.route("/api/threads", methods=["GET"])
    def api_list_threads():
        return jsonify({"threads": threads.list()})

    @app.route("/api/threads", methods=["POST"])
    def api_create_thread():
        principal = current_principal()
        data = json_body()
        thread = threads.create(
            principal,
            data.get("title"),
            visibility=data.get("visibility"),
            flags=data.get("flags"),
        )
        return jsonify(thread), 201

    @app.route("/api/threads/<int:thread_id>", methods=["GET"])
    def api_get_thread(thread_id):
        return jsonify(threads.get(thread_id))

    @app.route("/api/threads/<int:thread_id>", methods=["PATCH"])
    def api_update_thread(thread_id):
        principal = current_principal()
        return jsonify(threads.update(principal, thread_id, json_body()))

    @app.route("/api/threads/<int:thread_id>", methods=["DELETE"])
    def api_delete_thread(thread_id):
        threads.delete(current_principal(), thread_id)
        return jsonify({"success": True})

    # ───────────────────────────────────────────────────────────────────────
    # Thread messages
    # ───────────────────────────────────────────────────────────────────────
    @app.route("/api/threads/<int:thread_id>/messages", methods=["GET"])
    def api_list_thread_messages(thread_id):
        return jsonify({"messages": messages.list(Scope.thread(thread_id))})

    @app.route("/api/threads/<int:thread_id>/messages", methods=["POST"])
    def api_post_thread_message(thread_id):
        principal = current_principal()
        data = json_body()
        message = messages.post(
            principal,
            Scope.thread(thread_id),
            data.get("content"),
            parent_id=optional_id(data, "parent_id"),
            attachment=data.get("attachment"),
        )
        return jsonify(message), 201

    @app.route("/api/threads/<int:thread_id>/messages/<int:message_id>", methods=["GET"])
    def api_get_thread_message(thread_id, message_id):
        return jsonify(messages.get(THREAD, message_id, container_id=thread_id))

    @app.route("/api/threads/<int:thread_id>/messages/<int:message_id>", methods=["PATCH"])
    def api_edit_thread_message(thread_id, message_id):
        principal = current_principal()
        data = json_body()
        return jsonify(messages.edit(principal, THREAD, message_id, data.get("content"), container_id=thread_id))

    @app.route("/api/threads/<int:thread_id>/messages/<int:message_id>", methods=["DELETE"])
    def api_delete_thread_message(thread_id, message_id):
        messages.delete(current_principal(), THREAD, message_id, container_id=thread_id)
        return jsonify({"success": True})

    @app.route("/api/threads/<int:thread_id>/messages/<int:message_id>/pin", methods=["PUT"])
    def api_pin_thread_message(thread_id, message_id):
        principal = current_principal()
        pinned = json_body().get("pinned", True)
        return jsonify(messages.set_pinned(principal, message_id, pinned, thread_id=thread_id))

    @app.route("/api/threads/<int:thread_id>/messages/<int:message_id>/edits", methods=["GET"])
    def api_thread_message_edits(thread_id, message_id):
        principal = current_principal()
        return jsonify({"edits": messages.list_edit_history(principal, THREAD, message_id, container_id=thread_id)})
