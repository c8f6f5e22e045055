from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Reminder:
    id: int
    user_id: str
    channel_id: str
    guild_id: Optional[str]
    text: str
    run_at: datetime            # aware, UTC
    delivered: bool
    created_at: datetime        # aware, UTC
    attempts: int = 0


@dataclass
class KVEntry:
    guild_id: str
    key: str
    value: str
    author_id: str
    updated_at: str
