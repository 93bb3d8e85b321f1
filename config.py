#!/usr/bin/env python3
"""config.py

Settings for the Chatterbox server.

``server_config.json`` is a plaintext JSON file merged over
get_default_settings(); environment variables win over both. Secrets
(secret keys, the DB DSN) may be kept out of the file entirely:

  export CHATTERBOX_PERSIST_SECRETS=0
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from constants import DEFAULT_DB_CONNECTION_STRING, MAX_MESSAGE_LENGTH, sanitize_postgres_dsn

STORAGE_BACKENDS = ("postgres", "memory")
SOCKETIO_ASYNC_MODES = ("threading", "eventlet")

# Top-level keys in server_config.json that are treated as secrets.
SECRET_SETTING_KEYS = {
    "secret_key",
    "jwt_secret",
    "database_url",
}


def get_default_settings() -> Dict[str, Any]:
    """Return the defaults every settings file is merged over."""
    dsn = sanitize_postgres_dsn(
        os.getenv("DATABASE_URL")
        or os.getenv("DB_CONNECTION_STRING")
        or DEFAULT_DB_CONNECTION_STRING
    )

    return {
        # ── Core server ──────────────────────────────────────────────────
        "server_name": "Chatterbox",
        "host": "0.0.0.0",
        "port": 5000,
        "debug": False,

        # Secrets (server_init.py will generate/persist if missing)
        "secret_key": "",
        "jwt_secret": "",

        # ── Storage ──────────────────────────────────────────────────────
        "storage_backend": "postgres",
        "database_url": dsn,
        "db_pool_min": 1,
        "db_pool_max": 10,

        # ── Auth / cookies ───────────────────────────────────────────────
        "cookie_secure": False,
        "cookie_samesite": "Lax",
        "access_token_minutes": 30,
        "jwt_cookie_csrf_protect": True,
        # Never "*": auth cookies are credentialed.
        "cors_allowed_origins": "",

        # ── Chat ─────────────────────────────────────────────────────────
        "max_message_length": MAX_MESSAGE_LENGTH,

        # ── Socket.IO ────────────────────────────────────────────────────
        "socketio_async_mode": "threading",
        "socketio_message_queue": "",

        # ── Logging ──────────────────────────────────────────────────────
        "log_level": "INFO",
        "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "log_file_path": "logs/server.log",
    }


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return default


def persist_secrets_enabled() -> bool:
    """Whether secret values may be written into server_config.json."""
    return _env_bool("CHATTERBOX_PERSIST_SECRETS", True)


def scrub_secrets_for_persist(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of settings with secret keys removed if persistence is disabled."""
    out = dict(settings)
    if persist_secrets_enabled():
        return out
    for k in SECRET_SETTING_KEYS:
        out.pop(k, None)
    return out


def load_settings(path: Path) -> Dict[str, Any]:
    """Load settings from JSON, merged over defaults. Returns defaults if missing."""
    settings = get_default_settings()
    if not path.exists():
        return settings

    try:
        with path.open("r", encoding="utf-8") as fp:
            loaded = json.load(fp)
    except (OSError, ValueError) as exc:
        logging.warning("Could not parse %s as JSON: %s", path, exc)
        # Keep the broken file around so generated secrets can go to a fresh one.
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        bad_path = path.with_suffix(path.suffix + f".bad-{ts}")
        try:
            path.rename(bad_path)
            logging.warning("Backed up invalid settings file to: %s", bad_path)
        except OSError as e2:
            logging.warning("Could not back up invalid settings file: %s", e2)
        return settings

    if not isinstance(loaded, dict):
        logging.warning("Ignoring %s: top level is not a JSON object", path)
        return settings
    settings.update(loaded)
    return settings


def save_settings(path: Path, settings: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    to_save = scrub_secrets_for_persist(settings)
    with path.open("w", encoding="utf-8") as fp:
        json.dump(to_save, fp, indent=2)


def apply_env_overrides(settings: Dict[str, Any]) -> None:
    """Apply env overrides for secrets and runtime deployment."""

    def _str_env(*names: str) -> str | None:
        for n in names:
            v = os.getenv(n)
            if v is not None and v.strip() != "":
                return v.strip()
        return None

    # Prefer DB env vars for safety.
    db = _str_env("DB_CONNECTION_STRING", "DATABASE_URL")
    if db:
        settings["database_url"] = str(sanitize_postgres_dsn(db))

    secret = _str_env("SECRET_KEY")
    if secret:
        settings["secret_key"] = secret

    jwt_secret = _str_env("JWT_SECRET_KEY", "CHATTERBOX_JWT_SECRET")
    if jwt_secret:
        settings["jwt_secret"] = jwt_secret

    storage = _str_env("CHATTERBOX_STORAGE")
    if storage:
        storage = storage.lower()
        if storage in STORAGE_BACKENDS:
            settings["storage_backend"] = storage
        else:
            logging.warning("Ignoring CHATTERBOX_STORAGE=%s (expected one of %s)", storage, STORAGE_BACKENDS)

    async_mode = _str_env("CHATTERBOX_SOCKETIO_ASYNC")
    if async_mode:
        async_mode = async_mode.lower()
        if async_mode in SOCKETIO_ASYNC_MODES:
            settings["socketio_async_mode"] = async_mode
        else:
            logging.warning("Ignoring CHATTERBOX_SOCKETIO_ASYNC=%s", async_mode)

    queue = _str_env("CHATTERBOX_SOCKETIO_MESSAGE_QUEUE", "REDIS_URL")
    if queue:
        settings["socketio_message_queue"] = queue

    log_level = _str_env("CHATTERBOX_LOG_LEVEL")
    if log_level:
        settings["log_level"] = log_level.upper()
