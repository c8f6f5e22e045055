"""
Entrypoint: `python -m lunabot.main` or the `lunabot` console script.
"""

import asyncio
import logging
import os
from typing import Any

from lunabot.config import get_config
from lunabot.discord.client import LunaBot


def setup_logging() -> None:
    if os.environ.get("DEBUG"):
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s: %(message)s")
        logging.getLogger("httpx").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s: %(message)s")
        logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


async def run_bot(config: dict[str, Any] | None = None) -> None:
    config = config or get_config()
    logging.info(
        f"🚀 Bot starting | provider: {config['llm']['provider']} | prefix: {config['prefix']} "
        f"| db: {config['database_path']}"
    )
    bot = LunaBot(config)
    async with bot:
        await bot.start(config["bot_token"])


def main() -> None:
    setup_logging()
    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
