#!/usr/bin/env python3
"""
server_init.py
Builds the Chatterbox Flask + Socket.IO application.

create_app() wires the store, the realtime publisher and the services
together and registers routes and Socket.IO handlers. It does not start a
server, so it is safe to import from wsgi.py and from tests.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from config import persist_secrets_enabled, scrub_secrets_for_persist
from constants import APP_VERSION, get_db_connection_string, postgres_dsn_parts, redact_postgres_dsn
from dm_channels import DMChannelResolver
from errors import ChatError, Internal
from messages import MessageStore
from realtime.fanout import SocketIOPublisher
from routes_auth import register_auth_routes
from routes_dm import register_dm_routes
from routes_social import register_social_routes
from routes_threads import register_thread_routes
from social_graph import SocialGraph
from socket_handlers import register_socketio_handlers
from threads import ThreadRegistry
from users import UserDirectory


def _get_socketio_message_queue(settings: Dict[str, Any]) -> Optional[str]:
    v = str(settings.get("socketio_message_queue") or "").strip()
    return v or None


def _require_redis_connectivity(redis_url: str) -> None:
    """Fail fast if a Redis message queue is configured but not reachable."""
    if not (redis_url.startswith("redis://") or redis_url.startswith("rediss://")):
        return

    try:
        import redis
    except ImportError:
        logging.critical(
            "[socketio] Redis message queue configured (%s) but python package 'redis' is not installed. "
            "Install with: pip install 'chatterbox[server]'",
            redis_url.split("@")[-1],
        )
        raise SystemExit(2)

    try:
        client = redis.Redis.from_url(redis_url, socket_connect_timeout=1, socket_timeout=1)
        client.ping()
        logging.info("[socketio] Redis message queue reachable")
    except redis.RedisError as exc:
        logging.critical("[socketio] Redis message queue configured but not reachable: %s", exc)
        raise SystemExit(2)


def open_store(settings: Dict[str, Any]):
    """Open the configured store and make sure its schema exists."""
    backend = str(settings.get("storage_backend") or "postgres").lower()
    if backend == "memory":
        from memory_store import MemoryStore

        store = MemoryStore()
    else:
        from database import PostgresStore

        store = PostgresStore.from_settings(settings)
    store.init_schema()
    return store


def build_services(store, publisher, settings: Dict[str, Any]) -> SimpleNamespace:
    users = UserDirectory(store)
    return SimpleNamespace(
        store=store,
        publisher=publisher,
        users=users,
        social=SocialGraph(store, users),
        threads=ThreadRegistry(store, publisher),
        messages=MessageStore(store, publisher, max_length=settings.get("max_message_length")),
        dm_channels=DMChannelResolver(store, users),
    )


def _log_startup_banner(settings: Dict[str, Any], settings_file: Optional[Path], store) -> None:
    """Log a boot banner that makes 'wrong DB / wrong config' obvious."""
    cfg_exists = bool(settings_file and settings_file.exists())
    logging.info("==================== Chatterbox Boot ====================")
    logging.info("Chatterbox version: %s", APP_VERSION)
    logging.info("Settings file: %s (exists=%s)", str(settings_file) if settings_file else "<none>", cfg_exists)
    logging.info("Storage backend: %s", store.backend)
    if store.backend == "postgres":
        dsn = get_db_connection_string(settings)
        parts = postgres_dsn_parts(dsn)
        logging.info(
            "Configured DB: host=%s port=%s db=%s user=%s",
            parts.get("host"), parts.get("port"), parts.get("db"), parts.get("user"),
        )
        logging.info("Configured DSN: %s", redact_postgres_dsn(dsn))
        try:
            ident = store.get_db_identity()
            logging.info("Connected as %s to %s", ident.get("current_user"), ident.get("current_database"))
        except ChatError as exc:
            logging.warning("Could not read DB identity: %s", exc.message)
    logging.info("=========================================================")


def _normalize_cors_origins(val):
    if val is None:
        return None
    if isinstance(val, str):
        raw = val.strip()
        if not raw:
            return None
        if "," in raw:
            items = [x.strip() for x in raw.split(",") if x.strip()]
            return items or None
        return raw
    if isinstance(val, (list, tuple, set)):
        items = [str(x).strip() for x in val if str(x).strip()]
        return items or None
    return None


def create_app(
    settings: Dict[str, Any],
    store=None,
    publisher=None,
    settings_file: Optional[Path] | None = None,
) -> tuple[Flask, SocketIO]:
    """Create and configure the Flask + Socket.IO application.

    ``store`` and ``publisher`` default to the configured backend and to a
    Socket.IO publisher on the new app.
    """
    settings_file = Path(settings_file) if isinstance(settings_file, str) else settings_file

    # ───── Flask App Core ─────
    app = Flask(__name__)
    app.config["CHATTERBOX_SETTINGS"] = settings
    app.secret_key = _ensure_secret_key(settings, settings_file)

    cookie_secure = bool(settings.get("cookie_secure", False))
    cookie_samesite = settings.get("cookie_samesite") or "Lax"

    app.config.update(
        SECRET_KEY=app.secret_key,
        JWT_SECRET_KEY=_ensure_jwt_secret(settings, settings_file),
        # Headers first: an explicit bearer token wins over a stale cookie.
        JWT_TOKEN_LOCATION=["headers", "cookies"],
        JWT_ACCESS_COOKIE_NAME="chatterbox_access",
        JWT_ACCESS_COOKIE_PATH="/",
        JWT_ACCESS_CSRF_COOKIE_PATH="/",
        JWT_COOKIE_SECURE=cookie_secure,
        JWT_COOKIE_SAMESITE=cookie_samesite,
        JWT_COOKIE_CSRF_PROTECT=bool(settings.get("jwt_cookie_csrf_protect", True)),
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(minutes=int(settings.get("access_token_minutes", 30))),
    )
    JWTManager(app)

    @app.after_request
    def _add_security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        return resp

    # ───── Errors ─────
    @app.errorhandler(ChatError)
    def _chat_error(exc: ChatError):
        if isinstance(exc, Internal):
            logging.error("%s %s failed: %s", request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.status

    @app.errorhandler(Exception)
    def _unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        logging.exception("Unhandled error on %s %s", request.method, request.path)
        err = Internal("Internal server error")
        return jsonify(err.to_dict()), err.status

    # ───── CORS (hardened defaults) ─────
    # Off unless explicitly configured; "*" is refused because auth rides on cookies.
    cors_origins = _normalize_cors_origins(settings.get("cors_allowed_origins"))
    if cors_origins == "*" or (isinstance(cors_origins, list) and "*" in cors_origins):
        logging.warning("CORS origins includes '*'. Disabling CORS because Chatterbox uses credentialed cookies.")
        cors_origins = None
    if cors_origins is not None:
        CORS(app, supports_credentials=True, origins=cors_origins)

    # ───── SocketIO Setup ─────
    async_mode = str(settings.get("socketio_async_mode") or "threading").lower()
    message_queue = _get_socketio_message_queue(settings)
    if message_queue:
        _require_redis_connectivity(message_queue)

    socketio = SocketIO(
        app,
        async_mode=async_mode,
        cors_allowed_origins=cors_origins,
        # Must not collide with the JWT cookie name.
        cookie="chatterbox_io",
        logger=False,
        engineio_logger=False,
        ping_interval=20,
        ping_timeout=15,
        message_queue=message_queue,
    )
    app.config["CHATTERBOX_SOCKETIO_ASYNC_MODE"] = async_mode

    @socketio.on_error_default
    def _socketio_default_error_handler(e):
        logging.error("Socket.IO handler error: %s", e, exc_info=e)
        return {"success": False, "error": Internal.default_reason}

    # ───── Services ─────
    if store is None:
        store = open_store(settings)
    if publisher is None:
        publisher = SocketIOPublisher(socketio)
    services = build_services(store, publisher, settings)
    app.config["CHATTERBOX_SERVICES"] = services

    _log_startup_banner(settings, settings_file, store)

    # ───── Routes ─────
    register_auth_routes(app, settings, services)
    register_social_routes(app, settings, services)
    register_thread_routes(app, settings, services)
    register_dm_routes(app, settings, services)

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return jsonify({"status": "ok", "version": APP_VERSION, "storage": store.backend})

    register_socketio_handlers(socketio, settings, services)

    return app, socketio


def run_web_server(settings: Dict[str, Any], settings_file: Optional[Path] | None = None) -> None:
    """Bootstrap the Flask-SocketIO app and run it (dev / single-process)."""
    app, socketio = create_app(settings, settings_file=settings_file)

    host = settings.get("host") or "0.0.0.0"
    port = int(settings.get("port") or 5000)
    debug = bool(settings.get("debug", False))
    logging.info("🚀  Starting Chatterbox on http://%s:%s (debug=%s)", host, port, debug)

    class _SocketIOAccessFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            return "/socket.io/" not in record.getMessage()

    # Long-polling floods the werkzeug access log otherwise.
    logging.getLogger("werkzeug").addFilter(_SocketIOAccessFilter())

    try:
        socketio.run(app, host=host, port=port, debug=debug, use_reloader=False, log_output=False)
    finally:
        app.config["CHATTERBOX_SERVICES"].store.close()


# ───── Helpers ─────
def _ensure_secret_key(settings: Dict[str, Any], settings_file: Optional[Path]) -> str:
    key = settings.get("secret_key") or os.getenv("SECRET_KEY")
    if key:
        return str(key)

    key = secrets.token_urlsafe(64)
    settings["secret_key"] = key
    if _persist_generated_key(settings, settings_file):
        logging.info("secret_key generated and saved to settings.")
    else:
        logging.warning("Generated a one-off secret_key (NOT saved). Sessions may break on restart.")
    return key


def _ensure_jwt_secret(settings: Dict[str, Any], settings_file: Optional[Path]) -> str:
    key = settings.get("jwt_secret")
    if key:
        return str(key)

    env_key = os.getenv("JWT_SECRET_KEY")
    if env_key and env_key.strip():
        return env_key.strip()

    key = secrets.token_hex(32)
    settings["jwt_secret"] = key
    if _persist_generated_key(settings, settings_file):
        logging.info("jwt_secret generated and saved to settings.")
    else:
        logging.warning("Generated a one-off jwt_secret (NOT saved). Logins may break on restart.")
    return key


def _persist_generated_key(settings: Dict[str, Any], settings_file: Optional[Path]) -> bool:
    # If persistence is disabled, never write secrets into server_config.json.
    if not persist_secrets_enabled() or not settings_file:
        return False
    if settings_file.suffix.lower() != ".json":
        logging.warning("Unsupported settings file format: %s", settings_file)
        return False

    try:
        existing: dict = {}
        if settings_file.exists():
            try:
                with settings_file.open("r", encoding="utf-8") as fp:
                    existing = json.load(fp)
            except ValueError:
                # Back up a corrupt file instead of overwriting it.
                ts = datetime.now().strftime("%Y%m%d-%H%M%S")
                bad_path = settings_file.with_suffix(settings_file.suffix + f".bad-{ts}")
                settings_file.rename(bad_path)
                logging.warning("Backed up invalid settings file to: %s", bad_path)
                existing = {}

        merged = dict(existing if isinstance(existing, dict) else {})
        merged.update(scrub_secrets_for_persist(settings))
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        with settings_file.open("w", encoding="utf-8") as fp:
            json.dump(merged, fp, indent=2)
    except OSError as exc:
        logging.error("Could not persist generated secret to %s: %s", settings_file, exc)
        return False

    return True
