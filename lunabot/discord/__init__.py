from .chunking import DISCORD_SAFE_LENGTH, chunk_message
from .dispatcher import Dispatcher, scope_for

__all__ = ["chunk_message", "DISCORD_SAFE_LENGTH", "Dispatcher", "scope_for"]
