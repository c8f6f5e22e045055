"""
lunabot/llm/ollama_service.py

Direct Ollama backend, used when `llm.provider: ollama`.

- chat():   non-streaming, returns the full reply; retries transient errors
- stream(): yields content deltas as they arrive
- collect(): consume stream() into one string

Accepts the same keyword context as LunaCoreClient so the Discord layer can
use either backend; identity/memory fields are LunaCore-only and ignored here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from ollama import AsyncClient, ResponseError

from .errors import UpstreamError, UpstreamTimeout
from .lunacore import build_messages

DEFAULT_HOST = "http://127.0.0.1:11434"
RETRY_BASE_DELAY = 0.3
RETRYABLE_STATUS = (408, 429)


def parse_options_json(raw: Optional[str]) -> Dict[str, Any]:
    """Parse OLLAMA_OPTIONS_JSON; a bad value falls back to {} with a warning."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logging.warning("[ollama] Failed parsing OLLAMA_OPTIONS_JSON, using {}.")
        return {}
    if not isinstance(data, dict):
        logging.warning("[ollama] OLLAMA_OPTIONS_JSON must be an object, using {}.")
        return {}
    return data


def should_retry(error: Exception) -> bool:
    """Timeouts, rate limits, transient server/network errors."""
    if isinstance(error, ResponseError):
        status = error.status_code
        return status in RETRYABLE_STATUS or 500 <= status < 600
    return isinstance(error, (httpx.TransportError, ConnectionError, asyncio.TimeoutError))


def _wrap(error: Exception) -> UpstreamError:
    if isinstance(error, UpstreamError):
        return error
    if isinstance(error, ResponseError):
        return UpstreamError("[ollama] HTTP", status=error.status_code, body=str(error.error))
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return UpstreamTimeout(f"[ollama] timed out: {error}")
    return UpstreamError(f"[ollama] {type(error).__name__}: {error}")


class OllamaService:
    def __init__(
        self,
        host: str = DEFAULT_HOST,
        model: str = "luna",
        options: Optional[Dict[str, Any]] = None,
        api_key: str = "",
        timeout: Optional[float] = 60.0,
        retries: int = 2,
        client: Optional[AsyncClient] = None,
    ):
        """
        host     — Ollama server URL
        options  — default model options merged under per-call overrides
        retries  — extra attempts for chat() on transient failures
        """
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = client or AsyncClient(host=host, headers=headers, timeout=timeout)
        self._owns_client = client is None
        self.model = model
        self.options = dict(options or {})
        self.timeout = timeout
        self.retries = retries

    def _merge_options(self, override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {**self.options, **(override or {})}

    async def chat(
        self,
        *,
        messages: Optional[List[Dict[str, Any]]] = None,
        text: Optional[str] = None,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        **_context: Any,
    ) -> str:
        msgs = build_messages(messages, text)
        for attempt in range(self.retries + 1):
            try:
                response = await self.client.chat(
                    model=model or self.model,
                    messages=msgs,
                    stream=False,
                    options=self._merge_options(options),
                )
                return response.message.content or ""
            except (ResponseError, httpx.HTTPError, ConnectionError, asyncio.TimeoutError) as e:
                if attempt < self.retries and should_retry(e):
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logging.warning(
                        "OllamaService: attempt %d failed (%s), retrying in %.1fs", attempt + 1, e, delay
                    )
                    await asyncio.sleep(delay)
                    continue
                raise _wrap(e) from e
        return ""

    async def stream(
        self,
        *,
        messages: Optional[List[Dict[str, Any]]] = None,
        text: Optional[str] = None,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        cancel: Optional[asyncio.Event] = None,
        **_context: Any,
    ) -> AsyncIterator[str]:
        msgs = build_messages(messages, text)
        try:
            parts = await self.client.chat(
                model=model or self.model,
                messages=msgs,
                stream=True,
                options=self._merge_options(options),
            )
            async for part in parts:
                delta = part.message.content or ""
                if delta:
                    yield delta
                if part.done or (cancel is not None and cancel.is_set()):
                    return
        except (ResponseError, httpx.HTTPError, ConnectionError, asyncio.TimeoutError) as e:
            raise _wrap(e) from e

    async def collect(self, **kwargs: Any) -> str:
        out = []
        async for fragment in self.stream(**kwargs):
            out.append(fragment)
        return "".join(out)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.close()
