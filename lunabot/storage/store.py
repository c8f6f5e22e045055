"""
sqlite persistence for the bot: guild key/value records, per-user timezones
and reminders. Every write is a single statement, so no explicit
transactions are needed beyond the commit that follows it.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, List, Optional

import aiosqlite

from .models import KVEntry, Reminder

SCHEMA_VERSION = 1

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS kv (
    guild_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    author_id TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (guild_id, key)
);

CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    tz TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reminders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    guild_id TEXT,
    text TEXT NOT NULL,
    run_at_utc TEXT NOT NULL,
    delivered INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_reminders_due ON reminders (delivered, run_at_utc);
"""

_REMINDER_COLUMNS = "id, user_id, channel_id, guild_id, text, run_at_utc, delivered, created_at, attempts"


def format_utc(dt: datetime) -> str:
    """Fixed-width UTC ISO string so that text comparison matches time order."""
    if dt.tzinfo is None:
        raise ValueError("naive datetime; pass an aware datetime")
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_utc(value: str) -> datetime:
    return datetime.fromisoformat(value).astimezone(timezone.utc)


def _row_to_reminder(row: Any) -> Reminder:
    return Reminder(
        id=row[0],
        user_id=row[1],
        channel_id=row[2],
        guild_id=row[3],
        text=row[4],
        run_at=parse_utc(row[5]),
        delivered=bool(row[6]),
        created_at=parse_utc(row[7]),
        attempts=row[8],
    )


class Store:
    def __init__(self, path: str) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    async def open(self) -> "Store":
        db_dir = os.path.dirname(self.path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
        self._conn = await aiosqlite.connect(self.path)

        async with self._conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
            user_version = row[0]

        if user_version < 1:
            await self._conn.executescript(_SCHEMA_V1)
            await self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await self._conn.commit()
        logging.info("Store opened at %s (schema v%d)", self.path, SCHEMA_VERSION)
        return self

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Store":
        return await self.open()

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Store is not open; call open() first")
        return self._conn

    # ── Key/value ─────────────────────────────────────────────────────────

    async def kv_set(self, guild_id: str, key: str, value: str, author_id: str) -> None:
        await self.conn.execute(
            """
            INSERT INTO kv (guild_id, key, value, author_id, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, key) DO UPDATE SET
                value=excluded.value,
                author_id=excluded.author_id,
                updated_at=excluded.updated_at
            """,
            (guild_id, key, value, author_id, format_utc(datetime.now(timezone.utc))),
        )
        await self.conn.commit()

    async def kv_get(self, guild_id: str, key: str) -> Optional[KVEntry]:
        async with self.conn.execute(
            "SELECT guild_id, key, value, author_id, updated_at FROM kv WHERE guild_id=? AND key=?",
            (guild_id, key),
        ) as cursor:
            row = await cursor.fetchone()
        return KVEntry(*row) if row else None

    async def kv_delete(self, guild_id: str, key: str) -> bool:
        async with self.conn.execute("DELETE FROM kv WHERE guild_id=? AND key=?", (guild_id, key)) as cursor:
            changed = cursor.rowcount
        await self.conn.commit()
        return changed > 0

    async def kv_list(self, guild_id: str, prefix: Optional[str] = None) -> List[KVEntry]:
        async with self.conn.execute(
            "SELECT guild_id, key, value, author_id, updated_at FROM kv WHERE guild_id=? ORDER BY key",
            (guild_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        entries = [KVEntry(*row) for row in rows]
        if prefix:
            entries = [e for e in entries if e.key.startswith(prefix)]
        return entries

    # ── Timezones ─────────────────────────────────────────────────────────

    async def set_timezone(self, user_id: str, tz: str) -> None:
        await self.conn.execute(
            "INSERT INTO users (user_id, tz) VALUES (?, ?) ON CONFLICT(user_id) DO UPDATE SET tz=excluded.tz",
            (user_id, tz),
        )
        await self.conn.commit()

    async def get_timezone(self, user_id: str) -> Optional[str]:
        async with self.conn.execute("SELECT tz FROM users WHERE user_id=?", (user_id,)) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    # ── Reminders ─────────────────────────────────────────────────────────

    async def add_reminder(
        self,
        user_id: str,
        channel_id: str,
        guild_id: Optional[str],
        text: str,
        run_at: datetime,
        created_at: Optional[datetime] = None,
    ) -> Reminder:
        created_at = created_at or datetime.now(timezone.utc)
        async with self.conn.execute(
            "INSERT INTO reminders (user_id, channel_id, guild_id, text, run_at_utc, delivered, created_at) "
            "VALUES (?, ?, ?, ?, ?, 0, ?)",
            (user_id, channel_id, guild_id, text, format_utc(run_at), format_utc(created_at)),
        ) as cursor:
            reminder_id = cursor.lastrowid
        await self.conn.commit()
        logging.debug("Reminder %s stored for user %s at %s", reminder_id, user_id, format_utc(run_at))
        return Reminder(
            id=reminder_id,
            user_id=user_id,
            channel_id=channel_id,
            guild_id=guild_id,
            text=text,
            run_at=run_at.astimezone(timezone.utc),
            delivered=False,
            created_at=created_at.astimezone(timezone.utc),
        )

    async def get_reminder(self, reminder_id: int) -> Optional[Reminder]:
        async with self.conn.execute(
            f"SELECT {_REMINDER_COLUMNS} FROM reminders WHERE id=?", (reminder_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_reminder(row) if row else None

    async def due_reminders(self, now: datetime, max_attempts: Optional[int] = None) -> List[Reminder]:
        """Undelivered reminders with run_at <= now, oldest first."""
        sql = f"SELECT {_REMINDER_COLUMNS} FROM reminders WHERE delivered=0 AND run_at_utc <= ?"
        params: list[Any] = [format_utc(now)]
        if max_attempts is not None:
            sql += " AND attempts < ?"
            params.append(max_attempts)
        sql += " ORDER BY run_at_utc ASC, id ASC"
        async with self.conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_reminder(row) for row in rows]

    async def mark_delivered(self, reminder_id: int) -> bool:
        """Flip delivered to true. Returns False if it was already delivered."""
        async with self.conn.execute(
            "UPDATE reminders SET delivered=1 WHERE id=? AND delivered=0", (reminder_id,)
        ) as cursor:
            changed = cursor.rowcount
        await self.conn.commit()
        return changed > 0

    async def record_failure(self, reminder_id: int) -> None:
        await self.conn.execute(
            "UPDATE reminders SET attempts=attempts+1 WHERE id=? AND delivered=0", (reminder_id,)
        )
        await self.conn.commit()
