#!/usr/bin/env python3
"""
Chatterbox – database helpers (PostgreSQL version)

• psycopg2 ThreadedConnectionPool owned by a PostgresStore instance
• Full schema bootstrap (idempotent CREATE TABLE IF NOT EXISTS)
• Seeds the default hub thread (id=1) on first boot
• One transaction per unit of work: store.transaction() yields a PostgresTx
  whose methods all run on the same cursor; commit on success, rollback on
  any exception.
"""

import logging
from contextlib import contextmanager

import psycopg2
import psycopg2.errors
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from constants import (
    DEFAULT_THREAD_FLAGS,
    DEFAULT_THREAD_ID,
    DEFAULT_THREAD_TITLE,
    get_db_connection_string,
    redact_postgres_dsn,
    sanitize_postgres_dsn,
)
from errors import ChatError, Conflict, InvalidArgument, Internal
from models import DM, THREAD

# kind -> (message table, edit table, container column)
_MESSAGE_TABLES = {
    THREAD: ("messages", "message_edits", "thread_id"),
    DM: ("dm_messages", "dm_message_edits", "channel_id"),
}

# Unique constraint name -> Conflict reason
_CONSTRAINT_REASONS = {
    "users_username_key": "username_taken",
    "users_email_key": "email_taken",
    "users_handle_key": "handle_taken",
    "friend_requests_pair_key": "request_pending",
    "friendships_pair_key": "already_friends",
    "blocks_pair_key": "already_blocked",
    "dm_channels_pair_key_key": "channel_exists",
}

_SENDER_COLUMNS = """
       {a}.handle       AS {p}handle,
       {a}.username     AS {p}username,
       {a}.display_name AS {p}display_name,
       {a}.avatar_url   AS {p}avatar_url,
       {a}.name_color   AS {p}name_color"""


def _profile_cols(alias: str, prefix: str) -> str:
    return _SENDER_COLUMNS.format(a=alias, p=prefix)


def _tables(kind: str) -> tuple[str, str, str]:
    try:
        return _MESSAGE_TABLES[kind]
    except KeyError:
        raise InvalidArgument(f"Unknown message scope {kind!r}") from None


SCHEMA_SQL = """
/* ── Users ─────────────────────────────────────────────────── */
CREATE TABLE IF NOT EXISTS users (
    id              SERIAL PRIMARY KEY,
    handle          TEXT UNIQUE NOT NULL,
    username        TEXT UNIQUE NOT NULL,
    email           TEXT UNIQUE NOT NULL,
    password_hash   TEXT NOT NULL,
    display_name    TEXT NOT NULL DEFAULT '',
    bio             TEXT NOT NULL DEFAULT '',
    avatar_url      TEXT NOT NULL DEFAULT '',
    name_color      TEXT NOT NULL DEFAULT '',
    created_at      TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

/* ── Social graph ──────────────────────────────────────────── */
CREATE TABLE IF NOT EXISTS friend_requests (
    id           SERIAL PRIMARY KEY,
    sender_id    INTEGER NOT NULL REFERENCES users(id),
    receiver_id  INTEGER NOT NULL REFERENCES users(id),
    created_at   TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT friend_requests_pair_key UNIQUE (sender_id, receiver_id)
);

CREATE TABLE IF NOT EXISTS friendships (
    id            SERIAL PRIMARY KEY,
    user_low_id   INTEGER NOT NULL REFERENCES users(id),
    user_high_id  INTEGER NOT NULL REFERENCES users(id),
    created_at    TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT friendships_pair_key UNIQUE (user_low_id, user_high_id),
    CONSTRAINT friendships_ordered CHECK (user_low_id < user_high_id)
);

CREATE TABLE IF NOT EXISTS blocks (
    id           SERIAL PRIMARY KEY,
    blocker_id   INTEGER NOT NULL REFERENCES users(id),
    blocked_id   INTEGER NOT NULL REFERENCES users(id),
    created_at   TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT blocks_pair_key UNIQUE (blocker_id, blocked_id)
);

/* ── Threads ───────────────────────────────────────────────── */
CREATE TABLE IF NOT EXISTS threads (
    id                 SERIAL PRIMARY KEY,
    title              TEXT NOT NULL,
    creator_id         INTEGER REFERENCES users(id),
    visibility         TEXT NOT NULL DEFAULT 'public',
    spam_check         BOOLEAN NOT NULL DEFAULT FALSE,
    mod_enabled        BOOLEAN NOT NULL DEFAULT FALSE,
    allow_msg_delete   BOOLEAN NOT NULL DEFAULT TRUE,
    allow_attachments  BOOLEAN NOT NULL DEFAULT TRUE,
    created_at         TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

/* parent_id is a weak pointer: no FK, replies survive their parent */
CREATE TABLE IF NOT EXISTS messages (
    id               SERIAL PRIMARY KEY,
    thread_id        INTEGER NOT NULL REFERENCES threads(id),
    sender_id        INTEGER NOT NULL REFERENCES users(id),
    content          TEXT NOT NULL,
    parent_id        INTEGER,
    pinned           BOOLEAN NOT NULL DEFAULT FALSE,
    attachment_url   TEXT,
    attachment_name  TEXT,
    created_at       TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp(),
    updated_at       TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp()
);
CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id, created_at);

CREATE TABLE IF NOT EXISTS message_edits (
    id          SERIAL PRIMARY KEY,
    message_id  INTEGER NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
    content     TEXT NOT NULL,
    created_at  TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp()
);

/* ── Direct messages ───────────────────────────────────────── */
CREATE TABLE IF NOT EXISTS dm_channels (
    id          SERIAL PRIMARY KEY,
    pair_key    TEXT UNIQUE NOT NULL,
    updated_at  TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp()
);

CREATE TABLE IF NOT EXISTS dm_participants (
    id          SERIAL PRIMARY KEY,
    channel_id  INTEGER NOT NULL REFERENCES dm_channels(id) ON DELETE CASCADE,
    user_id     INTEGER NOT NULL REFERENCES users(id),
    UNIQUE (channel_id, user_id)
);
CREATE INDEX IF NOT EXISTS idx_dm_participants_user ON dm_participants(user_id);

CREATE TABLE IF NOT EXISTS dm_messages (
    id               SERIAL PRIMARY KEY,
    channel_id       INTEGER NOT NULL REFERENCES dm_channels(id) ON DELETE CASCADE,
    sender_id        INTEGER NOT NULL REFERENCES users(id),
    content          TEXT NOT NULL,
    parent_id        INTEGER,
    attachment_url   TEXT,
    attachment_name  TEXT,
    created_at       TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp(),
    updated_at       TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp()
);
CREATE INDEX IF NOT EXISTS idx_dm_messages_channel ON dm_messages(channel_id, created_at);

CREATE TABLE IF NOT EXISTS dm_message_edits (
    id          SERIAL PRIMARY KEY,
    message_id  INTEGER NOT NULL REFERENCES dm_messages(id) ON DELETE CASCADE,
    content     TEXT NOT NULL,
    created_at  TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp()
);
"""


class PostgresStore:
    backend = "postgres"

    def __init__(self, dsn: str | None = None, minconn: int = 1, maxconn: int = 10):
        self.dsn = str(sanitize_postgres_dsn(dsn or get_db_connection_string()))
        self._pool = ThreadedConnectionPool(minconn=int(minconn), maxconn=int(maxconn), dsn=self.dsn)
        logging.info("✅  Postgres connection pool ready (min=%s max=%s)", minconn, maxconn)

    @classmethod
    def from_settings(cls, settings: dict) -> "PostgresStore":
        return cls(
            dsn=get_db_connection_string(settings),
            minconn=int(settings.get("db_pool_min", 1)),
            maxconn=int(settings.get("db_pool_max", 10)),
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def transaction(self):
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield PostgresTx(cur)
            conn.commit()
        except ChatError:
            conn.rollback()
            raise
        except psycopg2.errors.UniqueViolation as exc:
            conn.rollback()
            constraint = getattr(exc.diag, "constraint_name", None)
            raise Conflict("Duplicate entry", reason=_CONSTRAINT_REASONS.get(constraint, "conflict")) from exc
        except psycopg2.Error as exc:
            conn.rollback()
            logging.error("DB error: %s", exc)
            raise Internal("Storage failure") from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def init_schema(self) -> None:
        """Create or patch the schema and seed the default hub thread."""
        logging.info("🔧  Initialising DB…")
        with self.transaction() as tx:
            tx.cur.execute(SCHEMA_SQL)
            tx.cur.execute(
                """
                INSERT INTO threads (id, title, creator_id, visibility,
                                     spam_check, mod_enabled, allow_msg_delete, allow_attachments)
                VALUES (%s, %s, NULL, 'public', %s, %s, %s, %s)
                ON CONFLICT (id) DO NOTHING;
                """,
                (
                    DEFAULT_THREAD_ID,
                    DEFAULT_THREAD_TITLE,
                    DEFAULT_THREAD_FLAGS["spam_check"],
                    DEFAULT_THREAD_FLAGS["mod_enabled"],
                    DEFAULT_THREAD_FLAGS["allow_msg_delete"],
                    DEFAULT_THREAD_FLAGS["allow_attachments"],
                ),
            )
            # The explicit id above does not advance the SERIAL sequence.
            tx.cur.execute(
                "SELECT setval(pg_get_serial_sequence('threads', 'id'), "
                "GREATEST((SELECT MAX(id) FROM threads), 1));"
            )
        logging.info("✅  DB ready at %s", redact_postgres_dsn(self.dsn))

    def get_db_identity(self) -> dict:
        with self.transaction() as tx:
            tx.cur.execute(
                "SELECT current_user, current_database(), inet_server_addr() AS server_addr, "
                "inet_server_port() AS server_port;"
            )
            return dict(tx.cur.fetchone() or {})


class PostgresTx:
    def __init__(self, cur):
        self.cur = cur

    def _one(self, sql: str, params=()) -> dict | None:
        self.cur.execute(sql, params)
        row = self.cur.fetchone()
        return dict(row) if row else None

    def _all(self, sql: str, params=()) -> list[dict]:
        self.cur.execute(sql, params)
        return [dict(r) for r in self.cur.fetchall()]

    def _count(self, sql: str, params=()) -> int:
        self.cur.execute(sql, params)
        return int(self.cur.rowcount or 0)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def insert_user(self, *, username, email, handle, password_hash, display_name=None) -> dict:
        return self._one(
            """
            INSERT INTO users (handle, username, email, password_hash, display_name)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *;
            """,
            (handle, username, email, password_hash, display_name or username),
        )

    def get_user(self, user_id) -> dict | None:
        return self._one("SELECT * FROM users WHERE id = %s;", (user_id,))

    def get_user_by_handle(self, handle: str) -> dict | None:
        return self._one("SELECT * FROM users WHERE handle = %s;", (handle,))

    def get_user_by_username(self, username: str) -> dict | None:
        return self._one("SELECT * FROM users WHERE username = %s;", (username,))

    def update_user(self, user_id, fields: dict) -> dict:
        # Column names come from a fixed whitelist in users.py
        assignments = ", ".join(f"{col} = %s" for col in fields)
        return self._one(
            f"UPDATE users SET {assignments} WHERE id = %s RETURNING *;",
            (*fields.values(), user_id),
        )

    # ------------------------------------------------------------------
    # Friend requests / friendships / blocks
    # ------------------------------------------------------------------
    def get_friend_request(self, request_id) -> dict | None:
        return self._one("SELECT * FROM friend_requests WHERE id = %s;", (request_id,))

    def find_friend_request(self, sender_id, receiver_id) -> dict | None:
        return self._one(
            "SELECT * FROM friend_requests WHERE sender_id = %s AND receiver_id = %s;",
            (sender_id, receiver_id),
        )

    def insert_friend_request(self, sender_id, receiver_id) -> dict:
        return self._one(
            "INSERT INTO friend_requests (sender_id, receiver_id) VALUES (%s, %s) RETURNING *;",
            (sender_id, receiver_id),
        )

    def delete_friend_request(self, request_id) -> int:
        return self._count("DELETE FROM friend_requests WHERE id = %s;", (request_id,))

    def delete_friend_requests_between(self, a, b) -> int:
        return self._count(
            """
            DELETE FROM friend_requests
             WHERE (sender_id = %s AND receiver_id = %s)
                OR (sender_id = %s AND receiver_id = %s);
            """,
            (a, b, b, a),
        )

    def list_incoming_requests(self, user_id) -> list[dict]:
        return self._all(
            f"""
            SELECT fr.*, u.id AS user_id, {_profile_cols('u', 'user_')}
              FROM friend_requests fr
              JOIN users u ON u.id = fr.sender_id
             WHERE fr.receiver_id = %s
             ORDER BY fr.created_at DESC, fr.id DESC;
            """,
            (user_id,),
        )

    def list_outgoing_requests(self, user_id) -> list[dict]:
        return self._all(
            f"""
            SELECT fr.*, u.id AS user_id, {_profile_cols('u', 'user_')}
              FROM friend_requests fr
              JOIN users u ON u.id = fr.receiver_id
             WHERE fr.sender_id = %s
             ORDER BY fr.created_at DESC, fr.id DESC;
            """,
            (user_id,),
        )

    def get_friendship(self, low, high) -> dict | None:
        return self._one(
            "SELECT * FROM friendships WHERE user_low_id = %s AND user_high_id = %s;",
            (low, high),
        )

    def insert_friendship(self, low, high) -> dict:
        return self._one(
            "INSERT INTO friendships (user_low_id, user_high_id) VALUES (%s, %s) RETURNING *;",
            (low, high),
        )

    def delete_friendship(self, low, high) -> int:
        return self._count(
            "DELETE FROM friendships WHERE user_low_id = %s AND user_high_id = %s;",
            (low, high),
        )

    def list_friends(self, user_id) -> list[dict]:
        return self._all(
            f"""
            SELECT f.created_at AS since, u.id AS user_id, {_profile_cols('u', 'user_')}
              FROM friendships f
              JOIN users u
                ON u.id = CASE WHEN f.user_low_id = %s THEN f.user_high_id ELSE f.user_low_id END
             WHERE f.user_low_id = %s OR f.user_high_id = %s
             ORDER BY f.created_at, f.id;
            """,
            (user_id, user_id, user_id),
        )

    def get_block(self, blocker_id, blocked_id) -> dict | None:
        return self._one(
            "SELECT * FROM blocks WHERE blocker_id = %s AND blocked_id = %s;",
            (blocker_id, blocked_id),
        )

    def insert_block(self, blocker_id, blocked_id) -> dict:
        return self._one(
            "INSERT INTO blocks (blocker_id, blocked_id) VALUES (%s, %s) RETURNING *;",
            (blocker_id, blocked_id),
        )

    def delete_block(self, blocker_id, blocked_id) -> int:
        return self._count(
            "DELETE FROM blocks WHERE blocker_id = %s AND blocked_id = %s;",
            (blocker_id, blocked_id),
        )

    def list_blocked(self, blocker_id) -> list[dict]:
        return self._all(
            f"""
            SELECT b.created_at, u.id AS user_id, {_profile_cols('u', 'user_')}
              FROM blocks b
              JOIN users u ON u.id = b.blocked_id
             WHERE b.blocker_id = %s
             ORDER BY b.created_at, b.id;
            """,
            (blocker_id,),
        )

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------
    def insert_thread(self, *, title, creator_id, visibility, flags: dict) -> dict:
        return self._one(
            """
            INSERT INTO threads (title, creator_id, visibility,
                                 spam_check, mod_enabled, allow_msg_delete, allow_attachments)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *;
            """,
            (
                title,
                creator_id,
                visibility,
                flags["spam_check"],
                flags["mod_enabled"],
                flags["allow_msg_delete"],
                flags["allow_attachments"],
            ),
        )

    def get_thread(self, thread_id) -> dict | None:
        return self._one("SELECT * FROM threads WHERE id = %s;", (thread_id,))

    def list_threads(self) -> list[dict]:
        return self._all("SELECT * FROM threads ORDER BY id;")

    def update_thread(self, thread_id, fields: dict) -> dict:
        # Column names come from a fixed whitelist in threads.py
        assignments = ", ".join(f"{col} = %s" for col in fields)
        return self._one(
            f"UPDATE threads SET {assignments} WHERE id = %s RETURNING *;",
            (*fields.values(), thread_id),
        )

    def delete_thread(self, thread_id) -> int:
        return self._count("DELETE FROM threads WHERE id = %s;", (thread_id,))

    # ------------------------------------------------------------------
    # Messages (thread + DM)
    # ------------------------------------------------------------------
    def insert_message(self, kind, container_id, *, sender_id, content, parent_id=None,
                       attachment_url=None, attachment_name=None) -> int:
        table, _, container = _tables(kind)
        row = self._one(
            f"""
            INSERT INTO {table} ({container}, sender_id, content, parent_id, attachment_url, attachment_name)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (container_id, sender_id, content, parent_id, attachment_url, attachment_name),
        )
        return int(row["id"])

    def get_message(self, kind, message_id) -> dict | None:
        table, _, _ = _tables(kind)
        return self._one(f"SELECT * FROM {table} WHERE id = %s;", (message_id,))

    def get_message_view(self, kind, message_id) -> dict | None:
        table, _, _ = _tables(kind)
        return self._one(
            f"""
            SELECT m.*, {_profile_cols('u', 'sender_')}
              FROM {table} m
              JOIN users u ON u.id = m.sender_id
             WHERE m.id = %s;
            """,
            (message_id,),
        )

    def list_messages(self, kind, container_id) -> list[dict]:
        table, _, container = _tables(kind)
        order = "m.pinned DESC, m.created_at, m.id" if kind == THREAD else "m.created_at, m.id"
        return self._all(
            f"""
            SELECT m.*, {_profile_cols('u', 'sender_')}
              FROM {table} m
              JOIN users u ON u.id = m.sender_id
             WHERE m.{container} = %s
             ORDER BY {order};
            """,
            (container_id,),
        )

    def update_message_content(self, kind, message_id, content: str) -> None:
        table, _, _ = _tables(kind)
        self.cur.execute(
            f"UPDATE {table} SET content = %s, updated_at = clock_timestamp() WHERE id = %s;",
            (content, message_id),
        )

    def set_message_pinned(self, message_id, pinned: bool) -> None:
        self.cur.execute(
            "UPDATE messages SET pinned = %s, updated_at = clock_timestamp() WHERE id = %s;",
            (bool(pinned), message_id),
        )

    def delete_message(self, kind, message_id) -> int:
        table, _, _ = _tables(kind)
        return self._count(f"DELETE FROM {table} WHERE id = %s;", (message_id,))

    def delete_thread_messages(self, thread_id) -> int:
        return self._count("DELETE FROM messages WHERE thread_id = %s;", (thread_id,))

    def insert_message_edit(self, kind, message_id, content: str) -> dict:
        _, edits, _ = _tables(kind)
        return self._one(
            f"INSERT INTO {edits} (message_id, content) VALUES (%s, %s) RETURNING *;",
            (message_id, content),
        )

    def list_message_edits(self, kind, message_id) -> list[dict]:
        _, edits, _ = _tables(kind)
        return self._all(
            f"SELECT * FROM {edits} WHERE message_id = %s ORDER BY created_at DESC, id DESC;",
            (message_id,),
        )

    # ------------------------------------------------------------------
    # DM channels
    # ------------------------------------------------------------------
    def create_dm_channel(self, low, high) -> tuple[int, bool]:
        # pair_key is UNIQUE: a concurrent creator either wins the insert or
        # waits on it and falls through to the existing row.
        row = self._one(
            """
            INSERT INTO dm_channels (pair_key) VALUES (%s)
            ON CONFLICT (pair_key) DO NOTHING
            RETURNING id;
            """,
            (f"{low}:{high}",),
        )
        if row is None:
            existing = self._one("SELECT id FROM dm_channels WHERE pair_key = %s;", (f"{low}:{high}",))
            return int(existing["id"]), False
        channel_id = int(row["id"])
        self.cur.execute(
            "INSERT INTO dm_participants (channel_id, user_id) VALUES (%s, %s), (%s, %s);",
            (channel_id, low, channel_id, high),
        )
        return channel_id, True

    def get_dm_channel(self, channel_id) -> dict | None:
        return self._one("SELECT * FROM dm_channels WHERE id = %s;", (channel_id,))

    def list_dm_participants(self, channel_id) -> list[int]:
        rows = self._all(
            "SELECT user_id FROM dm_participants WHERE channel_id = %s ORDER BY user_id;",
            (channel_id,),
        )
        return [int(r["user_id"]) for r in rows]

    def touch_dm_channel(self, channel_id) -> None:
        self.cur.execute("UPDATE dm_channels SET updated_at = clock_timestamp() WHERE id = %s;", (channel_id,))

    def list_dm_channels(self, user_id) -> list[dict]:
        return self._all(
            f"""
            SELECT c.id, c.updated_at,
                   u.id AS user_id, {_profile_cols('u', 'user_')},
                   last.content    AS last_message_content,
                   last.created_at AS last_message_at
              FROM dm_participants me
              JOIN dm_channels c ON c.id = me.channel_id
              JOIN dm_participants other
                ON other.channel_id = c.id AND other.user_id <> me.user_id
              JOIN users u ON u.id = other.user_id
              LEFT JOIN LATERAL (
                    SELECT dm.content, dm.created_at
                      FROM dm_messages dm
                     WHERE dm.channel_id = c.id
                     ORDER BY dm.created_at DESC, dm.id DESC
                     LIMIT 1
              ) last ON TRUE
             WHERE me.user_id = %s
             ORDER BY c.updated_at DESC, c.id DESC;
            """,
            (user_id,),
        )
