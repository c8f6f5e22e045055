from .models import KVEntry, Reminder
from .store import Store, format_utc, parse_utc

__all__ = ["Store", "Reminder", "KVEntry", "format_utc", "parse_utc"]
