from __future__ import annotations


class ValidationError(Exception):
    """Bad user input. The message is shown to the user as-is."""

    hint = ""

    def user_message(self) -> str:
        return f"{self} {self.hint}".strip()


class InvalidTimeFormat(ValidationError):
    hint = "Try something like `2025-12-31 18:30` or `tomorrow 9am`."


class PastTime(ValidationError):
    hint = "Pick a time in the future."


class InvalidTimezone(ValidationError):
    hint = "Use an IANA zone name such as `Europe/London` or `America/New_York`."


class MissingField(ValidationError):
    pass


class DeliveryError(Exception):
    """A reminder could not be sent. It stays undelivered and is retried next tick."""
