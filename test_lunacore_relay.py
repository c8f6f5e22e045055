import asyncio
import json
import unittest

import httpx

from lunabot.llm.errors import UpstreamError, UpstreamTimeout
from lunabot.llm.lunacore import FALLBACK_MESSAGE, LunaCoreClient


def make_relay(handler, **kwargs) -> LunaCoreClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LunaCoreClient(base_url="http://luna.test", http_client=http_client, **kwargs)


def sse_response(body: bytes, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=body, headers={"Content-Type": "text/event-stream"})
    return handler


async def drain(relay: LunaCoreClient, **kwargs) -> list:
    return [fragment async for fragment in relay.stream(**kwargs)]


class TestLunaCoreStream(unittest.IsolatedAsyncioTestCase):
    async def test_yields_message_fragments_until_done(self):
        relay = make_relay(sse_response(
            b"event: message\ndata: hello\n\ndata:  world\n\nevent: done\n\ndata: after done\n\n"
        ))
        self.assertEqual(await drain(relay, text="hi"), ["hello", " world"])

    async def test_error_event_yields_fallback_and_stops(self):
        relay = make_relay(sse_response(b"event: error\ndata: boom\n\ndata: more\n\n"))
        self.assertEqual(await drain(relay, text="hi"), [FALLBACK_MESSAGE])

    async def test_custom_fallback_message(self):
        relay = make_relay(sse_response(b"event: error\ndata: boom\n\n"), fallback_message="server down")
        self.assertEqual(await drain(relay, text="hi"), ["server down"])

    async def test_truncated_trailing_frame_is_dropped(self):
        relay = make_relay(sse_response(b"data: a\n\ndata: partial"))
        self.assertEqual(await drain(relay, text="hi"), ["a"])

    async def test_empty_payloads_are_skipped(self):
        relay = make_relay(sse_response(b"data:\n\n: comment\n\ndata: x\n\n"))
        self.assertEqual(await drain(relay, text="hi"), ["x"])

    async def test_non_2xx_raises_upstream_error(self):
        relay = make_relay(sse_response(b"overloaded", status=503))
        with self.assertRaises(UpstreamError) as ctx:
            await drain(relay, text="hi")
        self.assertEqual(ctx.exception.status, 503)
        self.assertIn("overloaded", ctx.exception.body)

    async def test_timeout_raises_upstream_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        relay = make_relay(handler, timeout=0.5)
        with self.assertRaises(UpstreamTimeout):
            await drain(relay, text="hi")

    async def test_transport_failure_raises_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        relay = make_relay(handler)
        with self.assertRaises(UpstreamError) as ctx:
            await drain(relay, text="hi")
        self.assertNotIsInstance(ctx.exception, UpstreamTimeout)

    async def test_request_payload_and_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"event: done\n\n")

        relay = make_relay(handler, api_key="secret", model="luna-test", use_server_memory=False)
        await drain(relay, text="  what time is it?  ", user_id="42", user_name="ana", user_tz="Europe/Paris")

        self.assertEqual(seen["url"], "http://luna.test/discord/chat/stream")
        self.assertEqual(seen["headers"]["authorization"], "Bearer secret")
        body = seen["body"]
        self.assertEqual(body["model"], "luna-test")
        self.assertEqual(body["messages"], [{"role": "user", "content": "what time is it?"}])
        self.assertEqual(body["user_id"], "42")
        self.assertEqual(body["user_name"], "ana")
        self.assertEqual(body["conversation_id"], "DM")
        self.assertIs(body["use_server_memory"], False)
        self.assertEqual(body["user_tz"], "Europe/Paris")
        self.assertEqual(body["metadata"], {})

    async def test_history_and_overrides_are_forwarded(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"")

        history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        relay = make_relay(handler)
        await drain(relay, messages=history, guild_id="99", use_server_memory=True, metadata={"k": "v"})

        self.assertNotIn("authorization", seen["headers"])
        self.assertEqual(seen["body"]["messages"], history)
        self.assertEqual(seen["body"]["conversation_id"], "99")
        self.assertIs(seen["body"]["use_server_memory"], True)
        self.assertNotIn("user_tz", seen["body"])
        self.assertEqual(seen["body"]["metadata"], {"k": "v"})

    async def test_cancel_stops_between_reads(self):
        async def body():
            yield b"data: one\n\n"
            yield b"data: two\n\n"

        def handler(request):
            return httpx.Response(200, content=body())

        relay = make_relay(handler)
        cancel = asyncio.Event()
        got = []
        async for fragment in relay.stream(text="hi", cancel=cancel):
            got.append(fragment)
            cancel.set()
        self.assertEqual(got, ["one"])

    async def test_collect_joins_fragments(self):
        relay = make_relay(sse_response(b"data: Hello\n\ndata:  there\n\nevent: done\n\n"))
        self.assertEqual(await relay.collect(text="hi"), "Hello there")


if __name__ == "__main__":
    unittest.main()
