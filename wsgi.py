"""wsgi.py

Gunicorn entrypoint for Chatterbox.

Run (example):
  CHATTERBOX_SOCKETIO_ASYNC=eventlet \
  CHATTERBOX_SOCKETIO_MESSAGE_QUEUE=redis://127.0.0.1:6379/0 \
  gunicorn -c gunicorn_conf.py wsgi:app

For multi-worker Socket.IO a Redis message queue is required.
"""

from __future__ import annotations

import os

# ---- eventlet monkey_patch must happen as early as possible ----
if (os.environ.get("CHATTERBOX_SOCKETIO_ASYNC") or "").strip().lower() == "eventlet":
    import eventlet

    eventlet.monkey_patch()

import logging
from pathlib import Path

from config import apply_env_overrides, load_settings
from constants import CONFIG_FILE
from server_init import create_app


def _resolve_config_path() -> Path:
    # Prefer explicit env path when running under systemd.
    return Path(os.environ.get("CHATTERBOX_CONFIG") or CONFIG_FILE)


_settings_path = _resolve_config_path()
_settings = load_settings(_settings_path)
apply_env_overrides(_settings)
logging.basicConfig(level=getattr(logging, str(_settings.get("log_level", "INFO")).upper(), logging.INFO))

app, socketio = create_app(_settings, settings_file=_settings_path)

app.config["CHATTERBOX_GUNICORN"] = True
app.config["CHATTERBOX_SETTINGS_PATH"] = str(_settings_path)
