"""Turn loop: drives one user turn through model <-> tool round trips."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum

from .cache_policy import CacheDecision
from .config import DEFAULT_MAX_TOOL_ROUNDS
from .errors import ToolRoundLimitExceeded, TransportError
from .models import (
    CanonicalRequest,
    FunctionCall,
    FunctionResponse,
    ImageData,
    Part,
    Turn,
    TurnResult,
)
from .pricing import CostMeter
from .providers import ModelProvider, ProviderTurn, TurnConfig
from .session_store import SessionStore
from .tools import ToolExecutor, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Hello"
EMPTY_RESPONSE_WARNING = (
    "[System Warning: Model returned empty content. This may be a safety block or API glitch.]"
)


class TurnState(str, Enum):
    SENDING = "sending"
    AWAITING_TOOL_RESOLUTION = "awaiting_tool_resolution"
    DONE = "done"


@dataclass
class LoopOptions:
    """Options for the turn loop."""

    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS


@dataclass
class ToolCallsEvent:
    """One tool-resolution round finished (calls executed, results pending upload)."""

    round: int
    calls: list[FunctionCall]
    results: list[ToolResult] = field(default_factory=list)


@dataclass
class TurnCompleted:
    """Terminal event; the session has already been written."""

    result: TurnResult


TurnEvent = ToolCallsEvent | TurnCompleted


def finalize_text(text: str, tool_count: int, image_count: int) -> str:
    """Never hand back bare emptiness: substitute a labelled summary instead."""
    text = text.strip()
    if text:
        return text
    if tool_count == 0 and image_count == 0:
        return EMPTY_RESPONSE_WARNING
    if tool_count > 0:
        return f"[Executed {tool_count} tool(s) but model provided no summary.]"
    return f"[Generated {image_count} image(s)]"


class TurnLoop:
    """
    State machine ``SENDING -> AWAITING_TOOL_RESOLUTION -> SENDING ... -> DONE``.

    Session history is read at the start of the turn and written once, after
    the final response; the upstream calls run outside every lock.
    """

    def __init__(
        self,
        provider: ModelProvider,
        sessions: SessionStore,
        costs: CostMeter,
        tools: ToolExecutor,
        options: LoopOptions | None = None,
    ) -> None:
        self.provider = provider
        self.sessions = sessions
        self.costs = costs
        self.tools = tools
        self.options = options or LoopOptions()

    def build_config(self, request: CanonicalRequest, decision: CacheDecision) -> TurnConfig:
        """Upstream configuration for every round of this turn."""
        functions = []
        if request.use_agentic:
            # A project cache already embeds the file contents
            functions = self.tools.declarations(include_read_tools=decision.active is None)
        return TurnConfig(
            use_search=request.use_search,
            functions=functions,
            cached_content=decision.attached_reference,
            temperature=request.temperature,
        )

    async def _resolve(self, calls: list[FunctionCall]) -> tuple[list[ToolResult], Turn]:
        results: list[ToolResult] = []
        parts: list[Part] = []
        for call in calls:
            result = await asyncio.to_thread(self.tools.dispatch, call.name, call.args)
            results.append(result)
            parts.append(
                Part(function_response=FunctionResponse(name=call.name, response=result.to_response(), id=call.id))
            )
        return results, Turn(role="tool", parts=parts)

    async def iterate(self, request: CanonicalRequest, decision: CacheDecision) -> AsyncIterator[TurnEvent]:
        """
        Run one turn, yielding a ``ToolCallsEvent`` per tool round and a final
        ``TurnCompleted``.

        Raises:
            TransportError: the first upstream call failed (nothing is stored).
            ToolRoundLimitExceeded: the model kept asking for tools.
        """
        async with self.sessions.turn_guard(request.session_id):
            history, version = self.sessions.snapshot(request.session_id)
            config = self.build_config(request, decision)
            pending: list[Turn] = [Turn.user_text(request.message or DEFAULT_MESSAGE)]
            result = TurnResult(text="")
            response: ProviderTurn | None = None
            degraded_text: str | None = None
            state = TurnState.SENDING

            while state is not TurnState.DONE:
                try:
                    response = await self.provider.create_turn(request.model, history + pending, config)
                except TransportError as e:
                    if result.rounds == 0:
                        raise
                    logger.warning("Upstream failed after %d tool round(s): %s", result.rounds, e)
                    degraded_text = f"Error after tool execution: {e}"
                    pending.append(Turn.model_text(degraded_text))
                    state = TurnState.DONE
                    break

                result.cost += self.costs.charge(request.model, response.usage)
                if response.usage is not None:
                    if result.rounds == 0:
                        result.prompt_tokens = response.usage.prompt_tokens
                    result.response_tokens += response.usage.candidate_tokens
                    result.total_tokens = response.usage.total_tokens
                pending.append(response.as_turn())

                calls = response.function_calls
                if not calls:
                    state = TurnState.DONE
                    break

                state = TurnState.AWAITING_TOOL_RESOLUTION
                if result.rounds >= self.options.max_tool_rounds:
                    raise ToolRoundLimitExceeded(self.options.max_tool_rounds)
                result.rounds += 1
                for call in calls:
                    logger.info("[TOOL] round %d: %s %s", result.rounds, call.name, sorted(call.args))
                    result.tool_calls.append(f"Executed: {call.name}")
                results, tool_turn = await self._resolve(calls)
                pending.append(tool_turn)
                yield ToolCallsEvent(round=result.rounds, calls=calls, results=results)
                state = TurnState.SENDING

            if degraded_text is not None:
                result.text = degraded_text
                result.degraded = True
            else:
                blobs = response.binary_parts if response is not None else []
                result.images = [ImageData.from_inline(b) for b in blobs]
                text = response.text if response is not None else ""
                result.text = finalize_text(text, len(result.tool_calls), len(result.images))

            if not self.sessions.commit(request.session_id, history + pending, version):
                logger.info("Session %s was reset during the turn; history not stored", request.session_id)

        yield TurnCompleted(result=result)

    async def run(self, request: CanonicalRequest, decision: CacheDecision) -> TurnResult:
        """Run the turn to completion and return its result."""
        async for event in self.iterate(request, decision):
            if isinstance(event, TurnCompleted):
                return event.result
        raise RuntimeError("turn loop ended without a result")
