"""
Command logic behind the Discord surface.

Kept free of discord.py objects so every command can be exercised with plain
ids and strings; lunabot.discord.client only translates events into these
calls and sends back what they return.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from lunabot.llm import Relay
from lunabot.reminders import MissingField, ReminderScheduler, format_local, resolve_zone
from lunabot.storage import Store

from .chunking import DISCORD_SAFE_LENGTH, chunk_message

EMPTY_REPLY_PLACEHOLDER = "(No response)"


def scope_for(guild_id: Optional[int | str], user_id: int | str) -> str:
    """Guild id, or a per-user DM scope outside guilds."""
    return str(guild_id) if guild_id else f"DM-{user_id}"


class Dispatcher:
    def __init__(
        self,
        store: Store,
        scheduler: ReminderScheduler,
        relay: Relay,
        prefix: str = "!",
        default_timezone: str = "UTC",
        max_len: int = DISCORD_SAFE_LENGTH,
    ):
        self.store = store
        self.scheduler = scheduler
        self.relay = relay
        self.prefix = prefix
        self.default_timezone = default_timezone
        self.max_len = max_len

    # ── Key/value ───────────────────────────────────────────────────────────

    async def kv_set(self, scope: str, key: Optional[str], value: Optional[str], author_id: str) -> str:
        if not key:
            return f"Usage: {self.prefix}set <key> <value>"
        if not value:
            return f'Provide a value. Example: {self.prefix}set motto "Ship fast."'
        await self.store.kv_set(scope, key, value, author_id)
        return f"Saved **{key}** ✅"

    async def kv_get(self, scope: str, key: Optional[str]) -> str:
        if not key:
            return f"Usage: {self.prefix}get <key>"
        entry = await self.store.kv_get(scope, key)
        return f"**{key}** = {entry.value}" if entry else f"No value for **{key}**."

    async def kv_delete(self, scope: str, key: Optional[str]) -> str:
        if not key:
            return f"Usage: {self.prefix}del <key>"
        deleted = await self.store.kv_delete(scope, key)
        return f"Deleted **{key}** 🗑️" if deleted else f"Nothing to delete for **{key}**."

    async def kv_all(self, scope: str, key_prefix: Optional[str] = None) -> str:
        entries = await self.store.kv_list(scope, key_prefix)
        if not entries:
            return "No entries yet."
        lines = [f"• **{e.key}**: {e.value}" for e in entries]
        return "\n".join(lines)[: self.max_len]

    def help_text(self) -> str:
        p = self.prefix
        return "\n".join(
            [
                "Commands:",
                f"{p}set <key> <value>",
                f"{p}get <key>",
                f"{p}del <key>",
                f"{p}all [keyPrefix]",
                f"{p}help",
                "/settz <timezone>, /mytime, /remind <text> <when>, /luna <message>",
            ]
        )

    # ── Timezones ───────────────────────────────────────────────────────────

    async def user_zone(self, user_id: str) -> str:
        return await self.store.get_timezone(user_id) or self.default_timezone

    async def set_timezone(self, user_id: str, tz: str) -> str:
        zone = resolve_zone(tz)
        await self.store.set_timezone(user_id, zone.key)
        return f"Timezone set to **{zone.key}** 🌍"

    async def my_time(self, user_id: str, now: Optional[datetime] = None) -> str:
        zone = await self.user_zone(user_id)
        now = now or datetime.now(timezone.utc)
        return f"Your timezone is **{zone}**, local time {format_local(now, zone)}."

    # ── Reminders ───────────────────────────────────────────────────────────

    async def remind(self, user_id: str, channel_id: str, guild_id: Optional[str], text: str, when: str) -> str:
        zone = await self.user_zone(user_id)
        scheduled = await self.scheduler.schedule(user_id, channel_id, guild_id, text, when, zone)
        return (
            f"⏰ Got it! I'll remind you at **{scheduled.local_echo}** "
            f"(`{scheduled.reminder.run_at.strftime('%Y-%m-%d %H:%M')} UTC`): {scheduled.reminder.text}"
        )

    # ── LLM ─────────────────────────────────────────────────────────────────

    async def ask(
        self,
        *,
        user_id: str,
        user_name: Optional[str] = None,
        guild_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        text: Optional[str] = None,
        messages: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """Relay a prompt to the LLM and return Discord-sized reply segments."""
        if not messages and not (text or "").strip():
            raise MissingField("Give me a message to answer.")
        zone = await self.store.get_timezone(user_id)
        meta = {"channel_id": channel_id, **(metadata or {})}
        reply = await self.relay.collect(
            messages=messages,
            text=text,
            user_id=user_id,
            user_name=user_name,
            guild_id=guild_id,
            user_tz=zone,
            metadata=meta,
        )
        logging.info(f"LLM reply for uid:{user_id} ({len(reply)} chars)")
        segments = chunk_message(reply.strip(), self.max_len)
        return [s if s.strip() else EMPTY_REPLY_PLACEHOLDER for s in segments]
