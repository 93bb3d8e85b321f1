#!/usr/bin/env python3
"""
routes_auth.py

Signup, login, logout and profile routes.

Access tokens are set as cookies (browser clients) and also returned in the
body for clients that send an Authorization header instead.
"""

import logging

from flask import jsonify
from flask_jwt_extended import set_access_cookies, unset_jwt_cookies

from security import current_principal, issue_access_token, json_body
from models import public_profile


def register_auth_routes(app, settings, services):
    users = services.users

    def _session_response(user: dict, status: int = 200):
        access_token = issue_access_token(user)
        resp = jsonify({"user": public_profile(user), "access_token": access_token})
        set_access_cookies(resp, access_token)
        return resp, status

    @app.route("/api/signup", methods=["POST"])
    def api_signup():
        data = json_body()
        user = users.signup(
            data.get("username"),
            data.get("email"),
            data.get("password"),
            display_name=data.get("display_name"),
        )
        return _session_response(user, 201)

    @app.route("/api/login", methods=["POST"])
    def api_login():
        data = json_body()
        user = users.authenticate(data.get("username"), data.get("password"))
        logging.info("User %s logged in", user["username"])
        return _session_response(user)

    @app.route("/api/logout", methods=["POST"])
    def api_logout():
        resp = jsonify({"msg": "Logout successful"})
        unset_jwt_cookies(resp)
        return resp

    @app.route("/api/me", methods=["GET"])
    def api_me():
        return jsonify(users.me(current_principal()))

    @app.route("/api/me", methods=["PATCH"])
    def api_update_me():
        principal = current_principal()
        return jsonify(users.update_profile(principal, json_body()))

    @app.route("/api/users/<lookup>", methods=["GET"])
    def api_user_profile(lookup):
        return jsonify(users.get_profile(lookup))
