from __future__ import annotations

import copy
import logging
import os
import sys
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

from lunabot.llm.ollama_service import parse_options_json

from .validator import validate_config, ConfigValidationError


DEFAULT_CONFIG_FILE = "config.yaml"
CONFIG_ENV_VAR = "CONFIG_PATH"

DEFAULTS: dict[str, Any] = {
    "bot_token": "",
    "client_id": None,
    "guild_id": None,
    "prefix": "!",
    "default_timezone": "UTC",
    "database_path": "kv.db",
    "llm": {
        "provider": "lunacore",
        "base_url": "http://127.0.0.1:8000",
        "stream_path": "/discord/chat/stream",
        "api_key": "",
        "model": "luna",
        "use_server_memory": True,
        "timeout_seconds": 0,
        "fallback_message": None,
    },
    "ollama": {
        "base_url": "http://127.0.0.1:11434",
        "model": "luna",
        "options": {},
        "retries": 2,
    },
    "reminders": {
        "poll_interval_seconds": 20,
        "max_attempts": None,
    },
    "permissions": {
        "users": {"admin_ids": []},
    },
}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var -> (path in config, converter)
ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], Callable[[str], Any]]] = {
    "DISCORD_TOKEN": (("bot_token",), str),
    "DISCORD_CLIENT_ID": (("client_id",), int),
    "DISCORD_GUILD_ID": (("guild_id",), int),
    "PREFIX": (("prefix",), str),
    "DEFAULT_TZ": (("default_timezone",), str),
    "DATABASE_PATH": (("database_path",), str),
    "LLM_PROVIDER": (("llm", "provider"), str),
    "LUNACORE_BASE_URL": (("llm", "base_url"), str),
    "LUNA_API_KEY": (("llm", "api_key"), str),
    "LUNA_MODEL": (("llm", "model"), str),
    "LUNA_USE_SERVER_MEMORY": (("llm", "use_server_memory"), _as_bool),
    "LUNA_TIMEOUT_SECONDS": (("llm", "timeout_seconds"), float),
    "OLLAMA_BASE_URL": (("ollama", "base_url"), str),
    "OLLAMA_MODEL": (("ollama", "model"), str),
    "OLLAMA_OPTIONS_JSON": (("ollama", "options"), parse_options_json),
    "REMINDER_POLL_SECONDS": (("reminders", "poll_interval_seconds"), float),
}


def get_config_path() -> str:
    """
    Resolve the config path, preferring an explicit environment override.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return env_path
    return DEFAULT_CONFIG_FILE


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _load_raw_config(path: str, required: bool) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        if required:
            logging.error("Config file not found: %s", path)
            sys.exit(1)
        logging.info("No %s found, using defaults and environment", path)
        return {}
    except yaml.YAMLError as e:
        logging.error("YAML parsing error in %s: %s", path, e)
        sys.exit(1)

    if not isinstance(data, dict):
        logging.error("Config root must be a mapping, got %s", type(data).__name__)
        sys.exit(1)

    return data


def apply_env_overrides(cfg: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    environ = os.environ if environ is None else environ
    for var, (path, convert) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError:
            logging.warning("Ignoring %s=%r (invalid value)", var, raw)
            continue
        node = cfg
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return cfg


def build_config(raw: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Defaults <- YAML <- environment, without validation."""
    return apply_env_overrides(_deep_merge(DEFAULTS, raw), environ)


def get_config(path: str | None = None) -> dict[str, Any]:
    """
    Public helper for loading configuration.

    - Loads .env, then the YAML file (CONFIG_PATH or config.yaml).
    - A missing file is only fatal when the path was given explicitly.
    - Environment variables override YAML values.
    - Exits with error code 1 if validation fails.
    """
    load_dotenv()
    explicit = path is not None or CONFIG_ENV_VAR in os.environ
    cfg_path = path or get_config_path()
    cfg = build_config(_load_raw_config(cfg_path, required=explicit))

    try:
        validate_config(cfg, cfg_path)
    except ConfigValidationError:
        sys.exit(1)

    return cfg
