"""OpenAI-compatible adapter: /v1/models and /v1/chat/completions."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from openai.types import CompletionUsage
from openai.types.chat import ChatCompletion, ChatCompletionChunk, ChatCompletionMessage
from openai.types.chat.chat_completion import Choice
from openai.types.chat.chat_completion_chunk import (
    Choice as ChunkChoice,
    ChoiceDelta,
    ChoiceDeltaToolCall,
    ChoiceDeltaToolCallFunction,
)
from pydantic import BaseModel, Field

from src.brain_proxy import (
    CanonicalRequest,
    Orchestrator,
    ProxyError,
    ToolCallsEvent,
    TurnCompleted,
)
from src.brain_proxy.errors import TransportError
from src.brain_proxy.streaming import DONE_FRAME, encode_sse, error_frame, iter_chunks

from .deps import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["openai"])

BUFFERED_SESSION = "openai-compat"
STREAM_SESSION = "openai-stream"
OWNED_BY = "gemini-proxy"


class OpenAIMessage(BaseModel):
    role: str
    content: str | list[dict[str, Any]] | None = None


class OpenAIChatRequest(BaseModel):
    """Subset of the OpenAI chat completion request the proxy understands."""

    model: str = ""
    messages: list[OpenAIMessage] = Field(default_factory=list)
    stream: bool = False
    user: str | None = Field(None, description="End-user id; scopes the conversation when present")


def _content_text(content: str | list[dict[str, Any]] | None) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(
        str(item.get("text", "")) for item in content if isinstance(item, dict) and item.get("type") == "text"
    )


def last_user_message(messages: list[OpenAIMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return _content_text(message.content)
    return ""


def session_for(base: str, user: str | None) -> str:
    return f"{base}:{user}" if user else base


def _completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def _to_canonical(body: OpenAIChatRequest, orchestrator: Orchestrator, base_session: str) -> CanonicalRequest:
    return CanonicalRequest(
        session_id=session_for(base_session, body.user),
        model=orchestrator.resolve_model(body.model),
        message=last_user_message(body.messages),
        use_agentic=True,
    )


@router.get("/models")
async def list_models(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    created = int(time.time())
    try:
        ids = await orchestrator.catalog().ids()
    except TransportError as e:
        logger.warning("Model listing failed: %s", e)
        ids = []
    if not ids:
        ids = [orchestrator.default_model()]
    return {
        "object": "list",
        "data": [{"id": model_id, "object": "model", "created": created, "owned_by": OWNED_BY} for model_id in ids],
    }


@router.post("/chat/completions", response_model=None)
async def chat_completions(
    body: OpenAIChatRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict | StreamingResponse:
    if body.stream:
        request = _to_canonical(body, orchestrator, STREAM_SESSION)
        return StreamingResponse(
            _stream_completion(request, orchestrator),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    request = _to_canonical(body, orchestrator, BUFFERED_SESSION)
    try:
        result, _ = await orchestrator.chat(request, label="OpenAI /v1/chat/completions")
    except ProxyError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    completion = ChatCompletion(
        id=_completion_id(),
        object="chat.completion",
        created=int(time.time()),
        model=request.model,
        choices=[
            Choice(
                index=0,
                message=ChatCompletionMessage(role="assistant", content=result.text),
                finish_reason="stop",
            )
        ],
        usage=CompletionUsage(
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.response_tokens,
            total_tokens=result.total_tokens,
        ),
    )
    return completion.model_dump(exclude_none=True)


def _chunk(completion_id: str, created: int, model: str, delta: ChoiceDelta, finish_reason: Any = None) -> bytes:
    chunk = ChatCompletionChunk(
        id=completion_id,
        object="chat.completion.chunk",
        created=created,
        model=model,
        choices=[ChunkChoice(index=0, delta=delta, finish_reason=finish_reason)],
    )
    return encode_sse(chunk.model_dump(exclude_none=True))


def _tool_call_delta(event: ToolCallsEvent) -> ChoiceDelta:
    return ChoiceDelta(
        role="assistant",
        tool_calls=[
            ChoiceDeltaToolCall(
                index=i,
                id=call.id or f"call_{event.round}_{i}",
                type="function",
                function=ChoiceDeltaToolCallFunction(name=call.name, arguments=json.dumps(call.args)),
            )
            for i, call in enumerate(event.calls)
        ],
    )


async def _stream_completion(request: CanonicalRequest, orchestrator: Orchestrator) -> AsyncIterator[bytes]:
    """Tool-call frames as rounds finish, then the final text re-streamed, then ``[DONE]``."""
    completion_id = _completion_id()
    created = int(time.time())
    settings = orchestrator.settings
    text = ""
    try:
        async for event in orchestrator.iterate_chat(request, label="OpenAI Stream"):
            if isinstance(event, ToolCallsEvent):
                yield _chunk(completion_id, created, request.model, _tool_call_delta(event), "tool_calls")
            elif isinstance(event, TurnCompleted):
                text = event.result.text
    except ProxyError as e:
        logger.error("OpenAI stream failed: %s", e)
        yield error_frame(str(e))
        yield DONE_FRAME
        return

    # The session is already committed; a disconnect from here on loses nothing
    for piece in iter_chunks(text, settings.stream_chunking, settings.stream_chunk_size):
        yield _chunk(completion_id, created, request.model, ChoiceDelta(content=piece))
    yield _chunk(completion_id, created, request.model, ChoiceDelta(), "stop")
    yield DONE_FRAME
