"""Unit tests for the turn loop with a scripted provider."""
from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path

from src.brain_proxy.cache_policy import CacheDecision, plan_cache
from src.brain_proxy.errors import ToolRoundLimitExceeded, TransportError
from src.brain_proxy.loop import (
    EMPTY_RESPONSE_WARNING,
    LoopOptions,
    ToolCallsEvent,
    TurnCompleted,
    TurnLoop,
    finalize_text,
)
from src.brain_proxy.models import CanonicalRequest, Turn
from src.brain_proxy.pricing import CostMeter, CostRecord
from src.brain_proxy.providers import ProviderTurn
from src.brain_proxy.session_store import SessionStore
from src.brain_proxy.tools import ToolExecutor

from stubs import ScriptedProvider, call_turn, image_turn, text_turn

NO_CACHE = CacheDecision(reference=None, attached=False)


def _request(message: str = "hi", session_id: str = "s1", agentic: bool = False) -> CanonicalRequest:
    return CanonicalRequest(session_id=session_id, model="gemini-2.0-flash", message=message, use_agentic=agentic)


class LoopTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.sessions = SessionStore()
        self.costs = CostMeter()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def make_loop(self, provider: ScriptedProvider, max_rounds: int = 10) -> TurnLoop:
        return TurnLoop(provider, self.sessions, self.costs, ToolExecutor(self.root), LoopOptions(max_rounds))


class TestHistory(LoopTestCase):
    async def test_history_grows_by_two_per_plain_turn(self) -> None:
        provider = ScriptedProvider([text_turn("one"), text_turn("two"), text_turn("three")])
        loop = self.make_loop(provider)
        for expected in (2, 4, 6):
            await loop.run(_request(), NO_CACHE)
            history = self.sessions.history("s1")
            self.assertEqual(len(history), expected)
            self.assertEqual([t.role for t in history[-2:]], ["user", "model"])

    async def test_prior_history_is_sent_upstream(self) -> None:
        provider = ScriptedProvider([text_turn("one"), text_turn("two")])
        loop = self.make_loop(provider)
        await loop.run(_request("first"), NO_CACHE)
        await loop.run(_request("second"), NO_CACHE)
        _, sent, _ = provider.calls[1]
        self.assertEqual([t.text for t in sent], ["first", "one", "second"])

    async def test_empty_message_defaults_to_hello(self) -> None:
        provider = ScriptedProvider([text_turn("hey")])
        await self.make_loop(provider).run(_request(""), NO_CACHE)
        self.assertEqual(provider.calls[0][1][0].text, "Hello")


class TestToolRounds(LoopTestCase):
    async def test_k_rounds_then_done(self) -> None:
        k = 3
        script = [call_turn("list_files", {"path": "."}) for _ in range(k)] + [text_turn("finished")]
        provider = ScriptedProvider(script)
        events = [e async for e in self.make_loop(provider).iterate(_request(agentic=True), NO_CACHE)]

        self.assertEqual([e.round for e in events if isinstance(e, ToolCallsEvent)], [1, 2, 3])
        self.assertIsInstance(events[-1], TurnCompleted)
        result = events[-1].result
        self.assertEqual(result.rounds, k)
        self.assertEqual(result.text, "finished")
        self.assertEqual(result.tool_calls, ["Executed: list_files"] * k)
        self.assertEqual(len(provider.calls), k + 1)

        history = self.sessions.history("s1")
        self.assertEqual([t.role for t in history], ["user"] + ["model", "tool"] * k + ["model"])
        for model_turn, tool_turn in zip(history[1::2], history[2::2]):
            if tool_turn.role == "tool":
                self.assertEqual(len(model_turn.function_calls), len(tool_turn.parts))

    async def test_round_cap(self) -> None:
        provider = ScriptedProvider([call_turn("list_files") for _ in range(5)])
        with self.assertRaises(ToolRoundLimitExceeded):
            await self.make_loop(provider, max_rounds=2).run(_request(agentic=True), NO_CACHE)
        self.assertEqual(len(provider.calls), 3)
        self.assertEqual(self.sessions.history("s1"), [])

    async def test_tool_results_flow_back(self) -> None:
        (self.root / "notes.md").write_text("remember", encoding="utf-8")
        provider = ScriptedProvider([call_turn("read_file", {"path": "notes.md"}), text_turn("ok")])
        await self.make_loop(provider).run(_request(agentic=True), NO_CACHE)
        tool_turn = provider.calls[1][1][-1]
        self.assertEqual(tool_turn.role, "tool")
        self.assertEqual(tool_turn.parts[0].function_response.response, {"content": "remember"})

    async def test_agentic_declarations_depend_on_cache(self) -> None:
        loop = self.make_loop(ScriptedProvider())
        uncached = loop.build_config(_request(agentic=True), NO_CACHE)
        self.assertEqual(len(uncached.functions), 3)
        cached = loop.build_config(_request(agentic=True), CacheDecision(None, attached=False, active="cachedContents/x"))
        self.assertEqual([f.name for f in cached.functions], ["write_file"])
        self.assertIsNone(cached.cached_content)

    async def test_server_cache_limits_agentic_tools(self) -> None:
        provider = ScriptedProvider([text_turn("ok")])
        decision = plan_cache("gemini-2.0-flash", None, "cachedContents/srv", "gemini-2.0-flash-001", False, True)
        await self.make_loop(provider).run(_request(agentic=True), decision)
        _, _, config = provider.calls[0]
        self.assertEqual([f.name for f in config.functions], ["write_file"])
        self.assertIsNone(config.cached_content)

    async def test_incompatible_server_cache_keeps_read_tools(self) -> None:
        decision = plan_cache("gemini-1.5-pro", None, "cachedContents/srv", "gemini-2.0-flash-001", False, True)
        config = self.make_loop(ScriptedProvider()).build_config(_request(agentic=True), decision)
        self.assertEqual(len(config.functions), 3)


class TestFailures(LoopTestCase):
    async def test_first_call_failure_propagates_and_stores_nothing(self) -> None:
        provider = ScriptedProvider([TransportError("503 unavailable")])
        with self.assertRaises(TransportError):
            await self.make_loop(provider).run(_request(), NO_CACHE)
        self.assertEqual(self.sessions.history("s1"), [])

    async def test_failure_after_tool_round_degrades(self) -> None:
        provider = ScriptedProvider([call_turn("list_files"), TransportError("quota")])
        result = await self.make_loop(provider).run(_request(agentic=True), NO_CACHE)
        self.assertTrue(result.degraded)
        self.assertEqual(result.text, "Error after tool execution: quota")
        history = self.sessions.history("s1")
        self.assertEqual([t.role for t in history], ["user", "model", "tool", "model"])


class TestResultShaping(LoopTestCase):
    async def test_empty_output_sentinel(self) -> None:
        provider = ScriptedProvider([ProviderTurn(parts=[])])
        result = await self.make_loop(provider).run(_request(), NO_CACHE)
        self.assertEqual(result.text, EMPTY_RESPONSE_WARNING)

    async def test_tool_summary_sentinel(self) -> None:
        provider = ScriptedProvider([call_turn("list_files"), ProviderTurn(parts=[])])
        result = await self.make_loop(provider).run(_request(agentic=True), NO_CACHE)
        self.assertEqual(result.text, "[Executed 1 tool(s) but model provided no summary.]")

    async def test_images_are_base64(self) -> None:
        provider = ScriptedProvider([image_turn(b"abc")])
        result = await self.make_loop(provider).run(_request(), NO_CACHE)
        self.assertEqual(result.text, "[Generated 1 image(s)]")
        self.assertEqual(result.images[0].data, "YWJj")

    async def test_token_accounting(self) -> None:
        provider = ScriptedProvider([call_turn("list_files", prompt=100, out=7), text_turn("done", prompt=150, out=3)])
        result = await self.make_loop(provider).run(_request(agentic=True), NO_CACHE)
        self.assertEqual(result.prompt_tokens, 100)
        self.assertEqual(result.response_tokens, 10)
        self.assertEqual(result.total_tokens, 153)

    async def test_cost_charged_per_call(self) -> None:
        self.costs = CostMeter({"gemini-2.0-flash": CostRecord(1.0, 2.0)})
        provider = ScriptedProvider([text_turn("x", prompt=1_000_000, out=1_000_000)])
        result = await self.make_loop(provider).run(_request(), NO_CACHE)
        self.assertAlmostEqual(result.cost, 3.0)
        self.assertAlmostEqual(self.costs.total, 3.0)

    def test_finalize_text(self) -> None:
        self.assertEqual(finalize_text("  hi  ", 0, 0), "hi")
        self.assertEqual(finalize_text("", 2, 1), "[Executed 2 tool(s) but model provided no summary.]")


class SlowProvider(ScriptedProvider):
    async def create_turn(self, model, history, config):
        await asyncio.sleep(0.01)
        return await super().create_turn(model, history, config)


class TestSerialization(LoopTestCase):
    async def test_concurrent_turns_on_one_session_both_land(self) -> None:
        provider = SlowProvider([text_turn("a"), text_turn("b")])
        loop = self.make_loop(provider)
        await asyncio.gather(loop.run(_request("one"), NO_CACHE), loop.run(_request("two"), NO_CACHE))
        history = self.sessions.history("s1")
        self.assertEqual(len(history), 4)
        self.assertIsInstance(history[0], Turn)

    async def test_reset_during_turn_is_not_undone(self) -> None:
        sessions = self.sessions

        class ResettingProvider(ScriptedProvider):
            async def create_turn(self, model, history, config):
                sessions.reset("s1")
                return await super().create_turn(model, history, config)

        loop = self.make_loop(ScriptedProvider([text_turn("a")]))
        await loop.run(_request("before"), NO_CACHE)
        self.assertEqual(len(self.sessions.history("s1")), 2)

        loop = self.make_loop(ResettingProvider([text_turn("b")]))
        result = await loop.run(_request("during"), NO_CACHE)
        self.assertEqual(result.text, "b")
        self.assertEqual(self.sessions.history("s1"), [])

        loop = self.make_loop(ScriptedProvider([text_turn("c")]))
        await loop.run(_request("after"), NO_CACHE)
        self.assertEqual([t.text for t in self.sessions.history("s1")], ["after", "c"])


if __name__ == "__main__":
    unittest.main()
