"""users.py

User directory: signup, login verification, lookup by handle or username,
and owner-only profile edits.
"""

from __future__ import annotations

import logging
import re
import secrets
import string

from errors import Conflict, InvalidArgument, NotFound, Unauthenticated
from models import EDITABLE_PROFILE_FIELDS, Principal, public_profile
from security import hash_password, verify_password_and_upgrade

HANDLE_LENGTH = 8
_HANDLE_ALPHABET = string.ascii_lowercase + string.digits
_HANDLE_ATTEMPTS = 8

_USERNAME_RE = re.compile(r"^[a-z0-9_.-]{3,32}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")
MIN_PASSWORD_LENGTH = 8

_PROFILE_LIMITS = {"display_name": 64, "bio": 500, "avatar_url": 500, "name_color": 7}


def _text(value, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidArgument(f"{field} must be text", reason=f"invalid_{field}")
    return value


def new_handle() -> str:
    return "".join(secrets.choice(_HANDLE_ALPHABET) for _ in range(HANDLE_LENGTH))


class UserDirectory:
    def __init__(self, store):
        self.store = store

    def signup(self, username: str, email: str, password: str, display_name: str | None = None) -> dict:
        username = _text(username, "username").strip().lower()
        email = _text(email, "email").strip().lower()
        password = _text(password, "password")
        display_name = _text(display_name, "display_name").strip() or None

        if not _USERNAME_RE.match(username):
            raise InvalidArgument("Username must be 3-32 chars of a-z, 0-9, '_', '.', '-'", reason="invalid_username")
        if not _EMAIL_RE.match(email):
            raise InvalidArgument("Invalid email address", reason="invalid_email")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidArgument(f"Password too short (min {MIN_PASSWORD_LENGTH})", reason="weak_password")
        if display_name and len(display_name) > _PROFILE_LIMITS["display_name"]:
            raise InvalidArgument("Display name too long", reason="invalid_profile")

        password_hash = hash_password(password)
        for _ in range(_HANDLE_ATTEMPTS):
            handle = new_handle()
            try:
                with self.store.transaction() as tx:
                    if tx.get_user_by_handle(handle):
                        continue
                    user = tx.insert_user(
                        username=username,
                        email=email,
                        handle=handle,
                        password_hash=password_hash,
                        display_name=display_name,
                    )
            except Conflict as exc:
                # A concurrent signup took the handle between check and insert.
                if exc.reason == "handle_taken":
                    continue
                raise
            logging.info("New user %s (handle=%s)", username, handle)
            return user
        raise Conflict("Could not allocate a unique handle", reason="handle_taken")

    def authenticate(self, username: str, password: str) -> dict:
        username = _text(username, "username").strip().lower()
        password = _text(password, "password")
        with self.store.transaction() as tx:
            user = tx.get_user_by_username(username)
            ok, upgraded = verify_password_and_upgrade(password, user["password_hash"]) if user else (False, None)
            if not ok:
                raise Unauthenticated("Invalid username or password", reason="invalid_credentials")
            if upgraded:
                user = tx.update_user(user["id"], {"password_hash": upgraded})
        return user

    def resolve(self, tx, lookup) -> dict:
        """Find a user by public handle first, then by username."""
        key = str(lookup or "").strip().lstrip("@").lower()
        if not key:
            raise InvalidArgument("User lookup missing", reason="missing_user")
        user = tx.get_user_by_handle(key) or tx.get_user_by_username(key)
        if not user:
            raise NotFound("No such user", reason="user_not_found")
        return user

    def get_profile(self, lookup) -> dict:
        with self.store.transaction() as tx:
            return public_profile(self.resolve(tx, lookup))

    def me(self, principal: Principal) -> dict:
        with self.store.transaction() as tx:
            user = tx.get_user(principal.id)
        if not user:
            raise NotFound("No such user", reason="user_not_found")
        profile = public_profile(user)
        profile["email"] = user["email"]
        return profile

    def update_profile(self, principal: Principal, fields: dict) -> dict:
        fields = dict(fields or {})
        unknown = set(fields) - set(EDITABLE_PROFILE_FIELDS)
        if unknown:
            raise InvalidArgument(f"Not editable: {', '.join(sorted(unknown))}", reason="invalid_profile")
        clean = {}
        for key, value in fields.items():
            value = "" if value is None else str(value).strip()
            if len(value) > _PROFILE_LIMITS[key]:
                raise InvalidArgument(f"{key} too long (max {_PROFILE_LIMITS[key]})", reason="invalid_profile")
            if key == "name_color" and value and not _COLOR_RE.match(value):
                raise InvalidArgument("name_color must look like #rrggbb", reason="invalid_profile")
            clean[key] = value
        with self.store.transaction() as tx:
            if not tx.get_user(principal.id):
                raise NotFound("No such user", reason="user_not_found")
            user = tx.update_user(principal.id, clean) if clean else tx.get_user(principal.id)
        return public_profile(user)
