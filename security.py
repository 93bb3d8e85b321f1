#!/usr/bin/env python3
"""security.py

Password hashing and principal resolution.

  - New hashes: Argon2id (argon2-cffi)
  - verify_password_and_upgrade() returns a fresh hash when the stored one
    was made with older parameters
  - current_principal() turns the Flask-JWT-Extended access token (cookie or
    Authorization header) into a Principal, or raises Unauthenticated
  - json_body() insists on a JSON object request body
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from flask import request
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from errors import InvalidArgument, Unauthenticated
from models import Principal

# ────────────────────────────────────────────────────────────
# Password hashing utilities
# ────────────────────────────────────────────────────────────

_PWH = PasswordHasher(
    time_cost=3,
    memory_cost=65536,  # KiB (64 MiB)
    parallelism=1,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    """Hash plaintext password using Argon2id."""
    return _PWH.hash(password)


def verify_password_and_upgrade(password: str, stored_hash: str) -> Tuple[bool, Optional[str]]:
    """Verify password; if the stored hash needs a rehash, return the new one.

    Returns: (ok, upgraded_hash_or_None)
    """
    if not stored_hash:
        return False, None
    try:
        _PWH.verify(stored_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False, None
    if _PWH.check_needs_rehash(stored_hash):
        return True, _PWH.hash(password)
    return True, None


# ────────────────────────────────────────────────────────────
# Tokens / principals
# ────────────────────────────────────────────────────────────

def issue_access_token(user: dict) -> str:
    return create_access_token(
        identity=str(user["id"]),
        additional_claims={"handle": user["handle"], "username": user["username"]},
    )


def current_principal(optional: bool = False) -> Principal | None:
    """Resolve the principal for the current request.

    With optional=True an absent token yields None; a present but invalid
    token is still rejected.
    """
    try:
        verify_jwt_in_request(optional=optional)
        identity = get_jwt_identity()
    except (JWTExtendedException, PyJWTError) as exc:
        logging.debug("Token rejected: %s", exc)
        raise Unauthenticated("Authentication required") from exc
    if identity is None:
        if optional:
            return None
        raise Unauthenticated("Authentication required")

    claims = get_jwt()
    try:
        return Principal(id=int(identity), handle=str(claims["handle"]), username=str(claims["username"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise Unauthenticated("Malformed token") from exc


def json_body() -> dict:
    """The request's JSON object body; anything else is InvalidArgument."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgument("Expected a JSON object body", reason="invalid_body")
    return data
