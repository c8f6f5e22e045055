from .errors import DeliveryError, InvalidTimeFormat, InvalidTimezone, MissingField, PastTime, ValidationError
from .scheduler import DEFAULT_POLL_INTERVAL_SECONDS, ReminderScheduler, ScheduledReminder
from .timeparse import format_local, parse_local_time, resolve_zone

__all__ = [
    "ReminderScheduler",
    "ScheduledReminder",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "ValidationError",
    "InvalidTimeFormat",
    "InvalidTimezone",
    "MissingField",
    "PastTime",
    "DeliveryError",
    "parse_local_time",
    "format_local",
    "resolve_zone",
]
