#!/usr/bin/env python3
"""
routes_social.py

Friend requests, friendships and blocks.

Users are addressed by handle or username in bodies and paths; requests by
their numeric id.
"""

from flask import jsonify

from security import current_principal, json_body


def register_social_routes(app, settings, services):
    social = services.social

    # ───────────────────────────────────────────────────────────────────────
    # Friend requests
    # ───────────────────────────────────────────────────────────────────────
    @app.route("/api/friends/requests", methods=["POST"])
    def api_send_friend_request():
        principal = current_principal()
        data = json_body()
        return jsonify(social.send_friend_request(principal, data.get("user"))), 201

    @app.route("/api/friends/requests/incoming", methods=["GET"])
    def api_incoming_requests():
        return jsonify({"requests": social.list_incoming(current_principal())})

    @app.route("/api/friends/requests/outgoing", methods=["GET"])
    def api_outgoing_requests():
        return jsonify({"requests": social.list_outgoing(current_principal())})

    @app.route("/api/friends/requests/<int:request_id>/approve", methods=["POST"])
    def api_approve_request(request_id):
        return jsonify(social.approve_friend_request(current_principal(), request_id))

    @app.route("/api/friends/requests/<int:request_id>", methods=["DELETE"])
    def api_reject_request(request_id):
        # Receiver rejects, sender cancels; both remove the row.
        social.cancel_or_reject(current_principal(), request_id)
        return jsonify({"success": True})

    # ───────────────────────────────────────────────────────────────────────
    # Friendships
    # ───────────────────────────────────────────────────────────────────────
    @app.route("/api/friends", methods=["GET"])
    def api_list_friends():
        return jsonify({"friends": social.list_friends(current_principal())})

    @app.route("/api/friends/<lookup>", methods=["DELETE"])
    def api_remove_friend(lookup):
        social.remove_friendship(current_principal(), lookup)
        return jsonify({"success": True})

    # ───────────────────────────────────────────────────────────────────────
    # Blocks
    # ───────────────────────────────────────────────────────────────────────
    @app.route("/api/blocks", methods=["GET"])
    def api_list_blocked():
        return jsonify({"blocked": social.list_blocked(current_principal())})

    @app.route("/api/blocks", methods=["POST"])
    def api_block_user():
        principal = current_principal()
        data = json_body()
        return jsonify(social.block(principal, data.get("user"))), 201

    @app.route("/api/blocks/<lookup>", methods=["DELETE"])
    def api_unblock_user(lookup):
        social.unblock(current_principal(), lookup)
        return jsonify({"success": True})
