#!/usr/bin/env python3
"""main.py

Chatterbox server entrypoint (single process, development and small
deployments). Under Gunicorn use wsgi.py instead.

Settings come from ``server_config.json`` (or ``--config``); environment
variables such as ``DATABASE_URL`` and ``SECRET_KEY`` override the file.
"""

from __future__ import annotations

import os

# eventlet must patch the stdlib before anything imports socket/threading.
if (os.environ.get("CHATTERBOX_SOCKETIO_ASYNC") or "").strip().lower() == "eventlet":
    import eventlet

    eventlet.monkey_patch()

import argparse
import logging
import sys
from pathlib import Path

from config import apply_env_overrides, load_settings, save_settings
from constants import CONFIG_FILE
from server_init import run_web_server


def configure_logging(settings: dict) -> None:
    """Configure file + stdout logging."""
    log_level_str = str(settings.get("log_level", "INFO")).upper()
    log_format = settings.get(
        "log_format",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    log_file_path = settings.get("log_file_path", "logs/server.log")

    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    log_level = getattr(logging, log_level_str, logging.INFO)
    logging.basicConfig(level=log_level, format=log_format, filename=log_file_path, filemode="a")
    logging.getLogger().addHandler(logging.StreamHandler(sys.stdout))
    logging.info("Logging configured (level=%s)", log_level_str)


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Chatterbox server")
    p.add_argument("--config", default=CONFIG_FILE, help="path to server config JSON")
    p.add_argument("--init-config", action="store_true", help="write the merged settings to --config and exit")
    p.add_argument("--storage", choices=("postgres", "memory"), help="override storage_backend")
    return p.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    settings_path = Path(args.config)

    settings = load_settings(settings_path)
    apply_env_overrides(settings)
    if args.storage:
        settings["storage_backend"] = args.storage

    configure_logging(settings)

    if args.init_config:
        save_settings(settings_path, settings)
        logging.info("Saved settings to %s", settings_path)
        return

    run_web_server(settings, settings_file=settings_path)


if __name__ == "__main__":
    main()
