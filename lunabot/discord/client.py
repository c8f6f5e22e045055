"""
discord.py wiring: prefix commands, slash commands, the "Ask Luna" context
menu and the reminder delivery callback. Command logic lives in Dispatcher.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from lunabot.llm import Relay, build_relay
from lunabot.reminders import DeliveryError, ReminderScheduler
from lunabot.storage import Reminder, Store

from .chunking import chunk_message
from .dispatcher import Dispatcher, scope_for
from .errors import (
    handle_app_command_error,
    notify_admin_error,
    should_notify_admins,
    user_facing_message,
)

ASK_COMMAND = "luna"
CONTEXT_MENU_NAME = "Ask Luna"


def format_reminder(reminder: Reminder) -> str:
    return f"⏰ <@{reminder.user_id}> reminder: {reminder.text}"


class LunaBot(commands.Bot):
    def __init__(self, config: dict[str, Any], store: Optional[Store] = None, relay: Optional[Relay] = None):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.dm_messages = True
        super().__init__(command_prefix=config["prefix"], intents=intents, help_command=None)

        self.config = config
        self.store = store or Store(config["database_path"])
        self.relay = relay or build_relay(config)
        reminders_cfg = config.get("reminders", {})
        self.reminders = ReminderScheduler(
            self.store,
            self.deliver_reminder,
            poll_interval=reminders_cfg.get("poll_interval_seconds", 20),
            max_attempts=reminders_cfg.get("max_attempts"),
        )
        self.dispatcher = Dispatcher(
            self.store,
            self.reminders,
            self.relay,
            prefix=config["prefix"],
            default_timezone=config["default_timezone"],
        )
        register_commands(self)

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def setup_hook(self) -> None:
        await self.store.open()

    async def on_ready(self) -> None:
        logging.info(f"Logged in as {self.user} (id {getattr(self.user, 'id', '?')})")
        if client_id := self.config.get("client_id"):
            logging.info(
                f"\n\nBOT INVITE URL:\nhttps://discord.com/oauth2/authorize?client_id={client_id}"
                "&permissions=412317191168&scope=bot%20applications.commands\n"
            )
        await self.sync_commands()
        if not self.reminders.running:
            self.reminders.start()

    async def sync_commands(self) -> None:
        if guild_id := self.config.get("guild_id"):
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logging.info(f"Synced {len(synced)} commands to guild {guild_id}")
        else:
            synced = await self.tree.sync()
            logging.info(f"Synced {len(synced)} global commands")

    async def close(self) -> None:
        await self.reminders.stop(wait=False)
        await self.relay.aclose()
        await self.store.close()
        await super().close()

    # ── Reminder delivery ───────────────────────────────────────────────────

    async def deliver_reminder(self, reminder: Reminder) -> bool:
        return await send_reminder(self, reminder)

    # ── Error boundary ──────────────────────────────────────────────────────

    async def report_failure(self, error: Exception, context: str) -> str:
        if should_notify_admins(error):
            logging.exception("%s failed", context, exc_info=error)
            await notify_admin_error(self, self.config, error, context)
        return user_facing_message(error)

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        error = getattr(error, "original", error)
        message = await self.report_failure(error, f"Command {ctx.command} in #{getattr(ctx.channel, 'name', 'DM')}")
        try:
            await ctx.reply(message)
        except discord.HTTPException as e:
            logging.warning("Could not report command error: %s", e)


async def send_reminder(client: Any, reminder: Reminder) -> bool:
    """
    Post a due reminder to its channel, mentioning the owner.

    Any failure to resolve the channel or send to it surfaces as DeliveryError
    so the scheduler leaves the reminder pending.
    """
    try:
        channel_id = int(reminder.channel_id)
        channel = client.get_channel(channel_id) or await client.fetch_channel(channel_id)
        for segment in chunk_message(format_reminder(reminder)):
            await channel.send(segment, allowed_mentions=discord.AllowedMentions(users=True))
    except (discord.HTTPException, discord.InvalidData, ValueError) as e:
        raise DeliveryError(f"channel {reminder.channel_id}: {e}") from e
    return True


async def send_threaded(first: Any, segments: List[str]) -> List[discord.Message]:
    """
    Post segments so that each one replies to the previous.

    ``first`` is an async callable sending the opening segment (a reply to the
    user's message, or an interaction follow-up) and returning the Message.
    """
    sent = [await first(segments[0])]
    for segment in segments[1:]:
        sent.append(await sent[-1].reply(segment, mention_author=False))
    return sent


def register_commands(bot: LunaBot) -> None:
    d = bot.dispatcher

    # ── Prefix commands ─────────────────────────────────────────────────────

    @bot.command(name="set")
    async def set_command(ctx: commands.Context, key: Optional[str] = None, *, value: Optional[str] = None) -> None:
        scope = scope_for(getattr(ctx.guild, "id", None), ctx.author.id)
        await ctx.reply(await d.kv_set(scope, key, value, str(ctx.author.id)))

    @bot.command(name="get")
    async def get_command(ctx: commands.Context, key: Optional[str] = None) -> None:
        scope = scope_for(getattr(ctx.guild, "id", None), ctx.author.id)
        await ctx.reply(await d.kv_get(scope, key))

    @bot.command(name="del")
    async def del_command(ctx: commands.Context, key: Optional[str] = None) -> None:
        scope = scope_for(getattr(ctx.guild, "id", None), ctx.author.id)
        await ctx.reply(await d.kv_delete(scope, key))

    @bot.command(name="all")
    async def all_command(ctx: commands.Context, key_prefix: Optional[str] = None) -> None:
        scope = scope_for(getattr(ctx.guild, "id", None), ctx.author.id)
        await ctx.reply(await d.kv_all(scope, key_prefix))

    @bot.command(name="help")
    async def help_command(ctx: commands.Context) -> None:
        await ctx.reply(d.help_text())

    # ── Slash commands ──────────────────────────────────────────────────────

    @bot.tree.error
    async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        await handle_app_command_error(interaction, error, bot, bot.config)

    @bot.tree.command(name="settz", description="Set your timezone (IANA name, e.g. Europe/London)")
    @app_commands.describe(tz="IANA timezone name")
    async def settz_command(interaction: discord.Interaction, tz: str) -> None:
        out = await d.set_timezone(str(interaction.user.id), tz)
        await interaction.response.send_message(out, ephemeral=True)

    @bot.tree.command(name="mytime", description="Show your timezone and current local time")
    async def mytime_command(interaction: discord.Interaction) -> None:
        await interaction.response.send_message(await d.my_time(str(interaction.user.id)), ephemeral=True)

    @bot.tree.command(name="remind", description="Schedule a reminder in your timezone")
    @app_commands.describe(text="What to remind you about", when="When, e.g. 2025-12-31 18:30 or 'tomorrow 9am'")
    async def remind_command(interaction: discord.Interaction, text: str, when: str) -> None:
        out = await d.remind(
            str(interaction.user.id),
            str(interaction.channel_id),
            str(interaction.guild_id) if interaction.guild_id else None,
            text,
            when,
        )
        await interaction.response.send_message(out)

    async def answer_interaction(interaction: discord.Interaction, text: str, metadata: dict[str, Any]) -> None:
        await interaction.response.defer(thinking=True)
        segments = await d.ask(
            user_id=str(interaction.user.id),
            user_name=interaction.user.display_name,
            guild_id=str(interaction.guild_id) if interaction.guild_id else None,
            channel_id=str(interaction.channel_id),
            text=text,
            metadata=metadata,
        )
        await send_threaded(lambda s: interaction.followup.send(s, wait=True), segments)

    @bot.tree.command(name=ASK_COMMAND, description="Chat with Luna")
    @app_commands.describe(message="Your message")
    async def ask_command(interaction: discord.Interaction, message: str) -> None:
        await answer_interaction(interaction, message, {"source": "slash"})

    @bot.tree.context_menu(name=CONTEXT_MENU_NAME)
    async def ask_about_message(interaction: discord.Interaction, message: discord.Message) -> None:
        await answer_interaction(
            interaction,
            message.content,
            {"source": "context_menu", "message_id": str(message.id), "author_id": str(message.author.id)},
        )
