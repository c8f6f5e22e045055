import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from ollama import ResponseError

from lunabot.llm.errors import UpstreamError
from lunabot.llm.ollama_service import OllamaService, parse_options_json, should_retry


def part(content: str, done: bool = False):
    return SimpleNamespace(message=SimpleNamespace(content=content), done=done)


class FakeOllama:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def chat(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if kwargs.get("stream"):
            async def gen():
                for p in reply:
                    yield p
            return gen()
        return part(reply, done=True)


class TestOllamaService(unittest.IsolatedAsyncioTestCase):
    async def test_chat_merges_options_and_wraps_prompt(self):
        fake = FakeOllama(["hi there"])
        service = OllamaService(model="luna", options={"temperature": 0.2, "top_k": 10}, client=fake)

        out = await service.chat(text=" hello ", options={"temperature": 0.9}, user_id="ignored")

        self.assertEqual(out, "hi there")
        call = fake.calls[0]
        self.assertEqual(call["model"], "luna")
        self.assertEqual(call["messages"], [{"role": "user", "content": "hello"}])
        self.assertEqual(call["options"], {"temperature": 0.9, "top_k": 10})
        self.assertFalse(call["stream"])

    async def test_chat_retries_transient_errors(self):
        fake = FakeOllama([ResponseError("busy", 503), ResponseError("slow down", 429), "ok"])
        service = OllamaService(client=fake, retries=2)

        with patch("lunabot.llm.ollama_service.asyncio.sleep", new=AsyncMock()) as sleep:
            self.assertEqual(await service.chat(text="hi"), "ok")

        self.assertEqual(len(fake.calls), 3)
        self.assertEqual([c.args[0] for c in sleep.await_args_list], [0.3, 0.6])

    async def test_chat_does_not_retry_client_errors(self):
        fake = FakeOllama([ResponseError("model not found", 404), "never"])
        service = OllamaService(client=fake, retries=2)

        with self.assertRaises(UpstreamError) as ctx:
            await service.chat(text="hi")
        self.assertEqual(ctx.exception.status, 404)
        self.assertEqual(len(fake.calls), 1)

    async def test_chat_gives_up_after_retries(self):
        fake = FakeOllama([ResponseError("busy", 500)] * 3)
        service = OllamaService(client=fake, retries=2)

        with patch("lunabot.llm.ollama_service.asyncio.sleep", new=AsyncMock()):
            with self.assertRaises(UpstreamError):
                await service.chat(text="hi")
        self.assertEqual(len(fake.calls), 3)

    async def test_stream_yields_deltas(self):
        fake = FakeOllama([[part("Hel"), part(""), part("lo"), part("", done=True), part("late")]])
        service = OllamaService(client=fake)

        self.assertEqual([d async for d in service.stream(text="hi")], ["Hel", "lo"])
        self.assertTrue(fake.calls[0]["stream"])

    async def test_collect(self):
        fake = FakeOllama([[part("a"), part(" b", done=True)]])
        self.assertEqual(await OllamaService(client=fake).collect(text="hi"), "a b")

    async def test_aclose_leaves_injected_client_open(self):
        fake = FakeOllama([])
        fake.close = AsyncMock()
        await OllamaService(client=fake).aclose()
        fake.close.assert_not_awaited()

    async def test_aclose_closes_own_client(self):
        service = OllamaService(host="http://ollama.invalid:11434")
        with patch.object(service.client, "close", new=AsyncMock()) as close:
            await service.aclose()
        close.assert_awaited_once()


class TestHelpers(unittest.TestCase):
    def test_parse_options_json(self):
        self.assertEqual(parse_options_json('{"num_ctx": 4096}'), {"num_ctx": 4096})
        self.assertEqual(parse_options_json("{not json"), {})
        self.assertEqual(parse_options_json("[1, 2]"), {})
        self.assertEqual(parse_options_json(None), {})

    def test_should_retry(self):
        self.assertTrue(should_retry(ResponseError("x", 408)))
        self.assertTrue(should_retry(ResponseError("x", 502)))
        self.assertFalse(should_retry(ResponseError("x", 400)))
        self.assertTrue(should_retry(ConnectionError("down")))
        self.assertFalse(should_retry(ValueError("bug")))


if __name__ == "__main__":
    unittest.main()
