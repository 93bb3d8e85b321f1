"""gunicorn_conf.py

Default Gunicorn config for Chatterbox + Flask-SocketIO using Eventlet.

Environment variables:
  CHATTERBOX_BIND=0.0.0.0:5000
  CHATTERBOX_WORKERS=2
  CHATTERBOX_GUNICORN_LOGLEVEL=info
  CHATTERBOX_GUNICORN_TIMEOUT=60

Required with more than one worker:
  CHATTERBOX_SOCKETIO_ASYNC=eventlet
  REDIS_URL=redis://127.0.0.1:6379/0
"""

from __future__ import annotations

import os

bind = os.environ.get("CHATTERBOX_BIND", "0.0.0.0:5000")
workers = int(os.environ.get("CHATTERBOX_WORKERS", "2"))
worker_class = "eventlet"

# WebSockets keep connections open; avoid overly low timeouts.
timeout = int(os.environ.get("CHATTERBOX_GUNICORN_TIMEOUT", "60"))
keepalive = int(os.environ.get("CHATTERBOX_GUNICORN_KEEPALIVE", "5"))

loglevel = os.environ.get("CHATTERBOX_GUNICORN_LOGLEVEL", "info")
accesslog = os.environ.get("CHATTERBOX_GUNICORN_ACCESSLOG", "-")
errorlog = os.environ.get("CHATTERBOX_GUNICORN_ERRORLOG", "-")

# Socket.IO upgrades through reverse proxies.
forwarded_allow_ips = os.environ.get("CHATTERBOX_FORWARDED_ALLOW_IPS", "*")

# The app reads the async mode from the environment; match the worker class.
raw_env = ["CHATTERBOX_SOCKETIO_ASYNC=eventlet"]
