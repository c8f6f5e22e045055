from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

import discord

from lunabot.llm.errors import LLMError, error_messages
from lunabot.reminders.errors import ValidationError

GENERIC_FAILURE = "Error processing command."


async def notify_admin_error(
    discord_bot: discord.Client,
    config: dict[str, Any],
    error: Exception,
    context: str = "",
) -> None:
    """
    Send a concise error notification to all configured admins.
    """
    try:
        admin_ids = config.get("permissions", {}).get("users", {}).get("admin_ids", [])
        if not admin_ids:
            return

        admin_msg, _ = error_messages(error)
        msg = (
            "🤖 **Bot Error Notification**\n"
            f"⏰ Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"📝 Context: {context}\n\nError: {admin_msg}"
        )
        for admin_id in admin_ids:
            try:
                user = discord_bot.get_user(admin_id) or await discord_bot.fetch_user(admin_id)
                await user.send(msg)
            except Exception as e:  # noqa: BLE001
                logging.warning("Could not notify admin %s: %s", admin_id, e)
    except Exception as e:  # noqa: BLE001
        logging.warning("Failed to notify admins: %s", e)


def user_facing_message(error: Exception) -> str:
    """
    What to tell the user when a command fails.

    Validation errors carry their own corrective hint; upstream failures get a
    short explanation; anything else gets the generic notice.
    """
    if isinstance(error, ValidationError):
        return error.user_message()
    if isinstance(error, LLMError):
        return error_messages(error)[1]
    return GENERIC_FAILURE


def should_notify_admins(error: Exception) -> bool:
    return not isinstance(error, ValidationError)


async def handle_app_command_error(
    interaction: discord.Interaction,
    error: Exception,
    discord_bot: discord.Client,
    config: dict[str, Any],
) -> None:
    """
    Standard handler for slash command errors.
    """
    error = getattr(error, "original", error)
    if should_notify_admins(error):
        logging.exception("App command error: %s", error, exc_info=error)
        await notify_admin_error(
            discord_bot,
            config,
            error,
            f"App command error: {getattr(interaction.command, 'name', 'unknown')}",
        )
    try:
        if not interaction.response.is_done():
            await interaction.response.send_message(user_facing_message(error), ephemeral=True)
        else:
            await interaction.followup.send(user_facing_message(error), ephemeral=True)
    except discord.HTTPException as e:
        logging.warning("Could not report command error to user: %s", e)
