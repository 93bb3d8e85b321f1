#!/usr/bin/env python3
"""
routes_dm.py

Direct-message channels between friends and their messages. Every route
needs a token; message routes additionally need channel membership.
"""

from flask import jsonify

from models import DM, Scope
from routes_threads import optional_id
from security import current_principal, json_body


def register_dm_routes(app, settings, services):
    channels = services.dm_channels
    messages = services.messages

    @app.route("/api/dm/channels", methods=["POST"])
    def api_open_dm_channel():
        principal = current_principal()
        data = json_body()
        result = channels.get_or_create(principal, data.get("user"))
        return jsonify(result), (201 if result["created"] else 200)

    @app.route("/api/dm/channels", methods=["GET"])
    def api_list_dm_channels():
        return jsonify({"channels": channels.list_channels(current_principal())})

    @app.route("/api/dm/channels/<int:channel_id>/messages", methods=["GET"])
    def api_list_dm_messages(channel_id):
        principal = current_principal()
        return jsonify({"messages": messages.list(Scope.dm(channel_id), principal)})

    @app.route("/api/dm/channels/<int:channel_id>/messages", methods=["POST"])
    def api_post_dm_message(channel_id):
        principal = current_principal()
        data = json_body()
        message = messages.post(
            principal,
            Scope.dm(channel_id),
            data.get("content"),
            parent_id=optional_id(data, "parent_id"),
            attachment=data.get("attachment"),
        )
        return jsonify(message), 201

    @app.route("/api/dm/channels/<int:channel_id>/messages/<int:message_id>", methods=["PATCH"])
    def api_edit_dm_message(channel_id, message_id):
        principal = current_principal()
        data = json_body()
        return jsonify(messages.edit(principal, DM, message_id, data.get("content"), container_id=channel_id))

    @app.route("/api/dm/channels/<int:channel_id>/messages/<int:message_id>", methods=["DELETE"])
    def api_delete_dm_message(channel_id, message_id):
        messages.delete(current_principal(), DM, message_id, container_id=channel_id)
        return jsonify({"success": True})

    @app.route("/api/dm/channels/<int:channel_id>/messages/<int:message_id>/edits", methods=["GET"])
    def api_dm_message_edits(channel_id, message_id):
        principal = current_principal()
        return jsonify({"edits": messages.list_edit_history(principal, DM, message_id, container_id=channel_id)})
