from __future__ import annotations

from typing import Any, Union

from .errors import LLMError, UpstreamError, UpstreamTimeout, error_messages
from .lunacore import FALLBACK_MESSAGE, LunaCoreClient
from .ollama_service import OllamaService
from .sse import DoneFrame, ErrorFrame, Frame, FrameDecoder, MessageFrame, parse_frame

Relay = Union[LunaCoreClient, OllamaService]


def build_relay(config: dict[str, Any]) -> Relay:
    """Instantiate the configured LLM backend."""
    llm = config["llm"]
    timeout = llm.get("timeout_seconds") or None
    if llm.get("provider") == "ollama":
        ollama = config.get("ollama", {})
        return OllamaService(
            host=ollama["base_url"],
            model=ollama.get("model") or llm.get("model"),
            options=ollama.get("options"),
            api_key=llm.get("api_key", ""),
            timeout=timeout,
            retries=ollama.get("retries", 2),
        )
    return LunaCoreClient(
        base_url=llm["base_url"],
        api_key=llm.get("api_key", ""),
        model=llm.get("model", "luna"),
        stream_path=llm.get("stream_path") or "/discord/chat/stream",
        use_server_memory=llm.get("use_server_memory", True),
        timeout=timeout,
        fallback_message=llm.get("fallback_message") or FALLBACK_MESSAGE,
    )


__all__ = [
    "build_relay",
    "Relay",
    "LunaCoreClient",
    "OllamaService",
    "LLMError",
    "UpstreamError",
    "UpstreamTimeout",
    "error_messages",
    "Frame",
    "MessageFrame",
    "ErrorFrame",
    "DoneFrame",
    "FrameDecoder",
    "parse_frame",
]
