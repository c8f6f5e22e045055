"""
Configuration validator.

Validates structure, required fields, and common misconfigurations after
defaults, config.yaml and environment overrides have been merged.
"""

from __future__ import annotations

import logging
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


logger = logging.getLogger(__name__)

VALID_PROVIDERS = ("lunacore", "ollama")


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(cfg: dict[str, Any], config_path: str = "config.yaml") -> None:
    """
    Validation of the merged configuration.

    Raises ConfigValidationError if validation fails.
    Logs detailed error messages before raising.

    Args:
        cfg: The merged config dictionary
        config_path: Path to config file (for error messages)

    Raises:
        ConfigValidationError: If validation fails
    """
    errors = []
    warnings = []

    # ── Check root structure ────────────────────────────────────────────────
    if not isinstance(cfg, dict):
        errors.append(f"Config root must be a mapping, got {type(cfg).__name__}")
        cfg = {}

    # ── Discord ─────────────────────────────────────────────────────────────
    if not cfg.get("bot_token"):
        errors.append("Missing 'bot_token' (or DISCORD_TOKEN in the environment)")

    prefix = cfg.get("prefix")
    if not isinstance(prefix, str) or not prefix.strip():
        errors.append("'prefix' must be a non-empty string")

    for key in ("client_id", "guild_id"):
        value = cfg.get(key)
        if value is not None and not isinstance(value, int):
            errors.append(f"'{key}' must be an integer Discord ID, got {type(value).__name__}")

    tz = cfg.get("default_timezone")
    try:
        ZoneInfo(str(tz))
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"'default_timezone' is not a valid IANA zone: {tz!r}")

    # ── LLM section ─────────────────────────────────────────────────────────
    llm = cfg.get("llm")
    if not isinstance(llm, dict):
        errors.append(f"'llm' must be a mapping, got {type(llm).__name__}")
    else:
        provider = llm.get("provider")
        if provider not in VALID_PROVIDERS:
            errors.append(
                f"'llm.provider' must be one of {', '.join(VALID_PROVIDERS)}, got {provider!r}"
            )
        if provider == "lunacore" and not llm.get("base_url"):
            errors.append("'llm.base_url' is required for the lunacore provider")
        if not isinstance(llm.get("use_server_memory"), bool):
            errors.append(
                f"'llm.use_server_memory' must be boolean, "
                f"got {type(llm.get('use_server_memory')).__name__}"
            )
        timeout = llm.get("timeout_seconds")
        if timeout is not None and (not _is_number(timeout) or timeout < 0):
            errors.append(f"'llm.timeout_seconds' must be a non-negative number, got {timeout!r}")
        if provider == "lunacore" and not llm.get("api_key"):
            warnings.append("'llm.api_key' is empty; requests will be sent without Authorization")

    # ── Ollama section ──────────────────────────────────────────────────────
    ollama = cfg.get("ollama")
    if ollama is not None:
        if not isinstance(ollama, dict):
            errors.append(f"'ollama' must be a mapping, got {type(ollama).__name__}")
        else:
            if not isinstance(ollama.get("options", {}), dict):
                errors.append(
                    f"'ollama.options' must be a mapping, got {type(ollama.get('options')).__name__}"
                )
            retries = ollama.get("retries", 0)
            if not isinstance(retries, int) or isinstance(retries, bool) or retries < 0:
                errors.append(f"'ollama.retries' must be a non-negative integer, got {retries!r}")
            if isinstance(llm, dict) and llm.get("provider") == "ollama" and not ollama.get("base_url"):
                errors.append("'ollama.base_url' is required for the ollama provider")

    # ── Reminders section ───────────────────────────────────────────────────
    reminders = cfg.get("reminders")
    if not isinstance(reminders, dict):
        errors.append(f"'reminders' must be a mapping, got {type(reminders).__name__}")
    else:
        interval = reminders.get("poll_interval_seconds")
        if not _is_number(interval) or interval <= 0:
            errors.append(f"'reminders.poll_interval_seconds' must be a positive number, got {interval!r}")
        max_attempts = reminders.get("max_attempts")
        if max_attempts is not None and (
            not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1
        ):
            errors.append(f"'reminders.max_attempts' must be null or a positive integer, got {max_attempts!r}")

    # ── Validate permissions section ───────────────────────────────────────
    if "permissions" in cfg:
        perms = cfg["permissions"]
        if not isinstance(perms, dict):
            errors.append(
                f"'permissions' must be a mapping, got {type(perms).__name__}"
            )
        else:
            users = perms.get("users", {})
            if not isinstance(users, dict):
                errors.append(
                    f"'permissions.users' must be a mapping, got {type(users).__name__}"
                )
            elif not isinstance(users.get("admin_ids", []), list):
                errors.append(
                    f"'permissions.users.admin_ids' must be a list, "
                    f"got {type(users.get('admin_ids')).__name__}"
                )

    # ── Log warnings ────────────────────────────────────────────────────────
    for warning in warnings:
        logger.warning("Config warning: %s", warning)

    # ── Log errors and exit if any ──────────────────────────────────────────
    if errors:
        logger.error("=" * 70)
        logger.error("CONFIG VALIDATION FAILED (%s)", config_path)
        logger.error("=" * 70)
        for i, error in enumerate(errors, 1):
            logger.error("[%d] %s", i, error)
        logger.error("=" * 70)
        logger.error("Please fix the errors above and restart the bot.")
        logger.error("=" * 70)
        raise ConfigValidationError(f"Config validation failed with {len(errors)} error(s)")
