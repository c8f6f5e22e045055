"""
lunabot/llm/lunacore.py

Streaming relay to the LunaCore chat server.

One POST per call; the response body is read as server-sent events and
turned into plain text fragments. Nothing is kept between calls: to "retry",
call stream() again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .errors import UpstreamError, UpstreamTimeout
from .sse import DoneFrame, ErrorFrame, FrameDecoder

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_STREAM_PATH = "/discord/chat/stream"
DEFAULT_MODEL = "luna"
FALLBACK_MESSAGE = "I'm having trouble connecting to the main server, can someone help me ping Skeath?"


def build_messages(messages: Optional[List[Dict[str, Any]]], text: Optional[str]) -> List[Dict[str, Any]]:
    """Use the given history, or wrap a single prompt as one user message."""
    if messages:
        return list(messages)
    return [{"role": "user", "content": str(text or "").strip()}]


class LunaCoreClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        stream_path: str = DEFAULT_STREAM_PATH,
        use_server_memory: bool = True,
        timeout: Optional[float] = None,
        fallback_message: str = FALLBACK_MESSAGE,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.stream_path = stream_path if stream_path.startswith("/") else f"/{stream_path}"
        self.use_server_memory = use_server_memory
        self.timeout = timeout
        self.fallback_message = fallback_message
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.stream_path}"

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_payload(
        self,
        *,
        messages: Optional[List[Dict[str, Any]]] = None,
        text: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
        guild_id: Optional[str] = None,
        user_tz: Optional[str] = None,
        use_server_memory: Optional[bool] = None,
        model: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body = {
            "model": model or self.model,
            "messages": build_messages(messages, text),
            "user_id": user_id,
            "user_name": user_name,
            "conversation_id": str(guild_id or "DM"),
            "use_server_memory": self.use_server_memory if use_server_memory is None else use_server_memory,
            "user_tz": user_tz,
            "metadata": metadata or {},
        }
        return {k: v for k, v in body.items() if v is not None}

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream(
        self,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
        **context: Any,
    ) -> AsyncIterator[str]:
        """
        Yield text fragments as the server produces them.

        ``context`` is forwarded to build_payload(). ``cancel`` is checked
        before each network read; once set, the stream ends quietly.
        Raises UpstreamError for non-2xx or transport failures and
        UpstreamTimeout when a read exceeds ``timeout`` seconds.
        """
        body = self.build_payload(**context)
        timeout = self.timeout if timeout is None else timeout
        http_timeout = httpx.Timeout(timeout) if timeout and timeout > 0 else httpx.Timeout(None)

        try:
            async with self.client.stream(
                "POST", self.url, json=body, headers=self._headers(), timeout=http_timeout
            ) as response:
                if not response.is_success:
                    raw = await response.aread()
                    raise UpstreamError(
                        f"[LunaCore] {self.stream_path}",
                        status=response.status_code,
                        body=raw.decode("utf-8", errors="replace"),
                    )

                decoder = FrameDecoder()
                async for chunk in response.aiter_text():
                    for frame in decoder.feed(chunk):
                        if isinstance(frame, ErrorFrame):
                            logging.warning("LunaCore stream error event: %s", frame.payload[:200])
                            yield self.fallback_message
                            return
                        if isinstance(frame, DoneFrame):
                            return
                        if frame.payload:
                            yield frame.payload
                    if cancel is not None and cancel.is_set():
                        logging.info("LunaCore stream cancelled by caller")
                        return

                if decoder.pending.strip():
                    logging.debug("LunaCore: dropping truncated frame (%d chars)", len(decoder.pending))
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"[LunaCore] timed out after {timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"[LunaCore] transport error: {type(e).__name__}: {e}") from e

    async def collect(self, **kwargs: Any) -> str:
        """Consume the stream and return a single concatenated string."""
        out = []
        async for fragment in self.stream(**kwargs):
            out.append(fragment)
        return "".join(out)
