from __future__ import annotations

from typing import Optional, Tuple

BODY_SNIPPET_CHARS = 300


class LLMError(Exception):
    """Base error for LLM-related failures."""


class UpstreamError(LLMError):
    """Non-2xx response or transport failure from the LLM service."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        self.status = status
        self.body = body[:BODY_SNIPPET_CHARS]
        if status is not None:
            message = f"{message} {status} {self.body}".rstrip()
        super().__init__(message)


class UpstreamTimeout(UpstreamError):
    """The request (or a read on its stream) exceeded the configured timeout."""


def parse_error_message(error: Exception) -> str:
    """
    Map raw exceptions into short, human-readable messages.
    Used for admin notifications and logs.
    """
    s, t = str(error), type(error).__name__
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if status == 429 or "429" in s:
        return "⚠️ Rate Limited: the LLM service is temporarily rate-limited."
    if status == 401 or "Unauthorized" in s:
        return "❌ Authentication Error: invalid API key or credentials."
    if status == 404:
        return "❌ Not Found: the requested model or endpoint was not found."
    if status == 403:
        return "❌ Forbidden: no permission to access this resource."
    if isinstance(error, (UpstreamTimeout, TimeoutError)) or "Timeout" in t:
        return "⏱️ Timeout: the LLM service did not answer in time."
    if "Connect" in t or "ECONNREFUSED" in s:
        return "❌ Connection Error: unable to reach the LLM service."
    return f"❌ {t}: {s.split(chr(10))[0][:100]}"


def format_user_friendly_error(error: Exception) -> str:
    """
    Short, safe error message suitable for end users.
    """
    s, t = str(error), type(error).__name__
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if status == 429 or "429" in s:
        return "Luna is getting a lot of traffic right now, please try again shortly."
    if status in (401, 403):
        return "I can't reach the model service right now, an admin needs to check the credentials."
    if isinstance(error, (UpstreamTimeout, TimeoutError)) or "Timeout" in t:
        return "The model took too long to answer, please try again."
    if isinstance(error, UpstreamError) or "Connect" in t:
        return "I couldn't get a response from the model service, please try again later."
    return "Something went wrong while processing that, the admins have been notified."


def error_messages(error: Exception) -> Tuple[str, str]:
    """
    Convenience helper returning (admin_message, user_message).
    """
    return parse_error_message(error), format_user_friendly_error(error)
