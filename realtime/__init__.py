"""Realtime fanout and Socket.IO room handlers."""
