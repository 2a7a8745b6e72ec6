"""Gemini passthrough adapter: /v1beta/models/{model}:generateContent and :streamGenerateContent."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from src.brain_proxy import Orchestrator, ProxyError
from src.brain_proxy.model_names import is_blocked, model_from_resource_path
from src.brain_proxy.streaming import encode_sse, error_frame

from .deps import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1beta", tags=["gemini"])

STREAM_ACTION = "streamGenerateContent"


class GeminiContent(BaseModel):
    role: str | None = None
    parts: list[dict[str, Any]] = Field(default_factory=list)


class GeminiRequest(BaseModel):
    """The parts of a generateContent body the proxy reads; the rest is ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    contents: list[GeminiContent] = Field(default_factory=list)
    cached_content: str | None = Field(None, alias="cachedContent")


def first_user_text(contents: list[GeminiContent]) -> str:
    for content in contents:
        if content.role in (None, "user"):
            for part in content.parts:
                text = part.get("text")
                if isinstance(text, str):
                    return text
            return ""
    return ""


def _text_candidate(text: str, finish_reason: str | None = None) -> dict[str, Any]:
    candidate: dict[str, Any] = {"content": {"parts": [{"text": text}], "role": "model"}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return candidate


@router.post("/models/{model_action:path}", response_model=None)
async def generate_content(
    model_action: str,
    body: GeminiRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict | StreamingResponse:
    model = model_from_resource_path(f"/models/{model_action}", orchestrator.settings.model)
    if is_blocked(model):
        logger.info("Blocked model %s replaced by %s", model, orchestrator.settings.model)
        model = orchestrator.settings.model
    message = first_user_text(body.contents)
    override = body.cached_content or None

    if model_action.endswith(f":{STREAM_ACTION}"):
        return StreamingResponse(
            _relay(orchestrator, model, message, override),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    try:
        response = await orchestrator.complete(model, message, override)
    except ProxyError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    payload: dict[str, Any] = {
        "candidates": [_text_candidate(response.text, response.finish_reason)],
        "modelVersion": model,
    }
    if response.usage is not None:
        payload["usageMetadata"] = {
            "promptTokenCount": response.usage.prompt_tokens,
            "candidatesTokenCount": response.usage.candidate_tokens,
            "totalTokenCount": response.usage.total_tokens,
        }
    return payload


async def _relay(orchestrator: Orchestrator, model: str, message: str, override: str | None) -> AsyncIterator[bytes]:
    try:
        async for fragment in orchestrator.stream_complete(model, message, override):
            yield encode_sse({"candidates": [_text_candidate(fragment)]})
    except ProxyError as e:
        logger.error("Gemini stream failed: %s", e)
        yield error_frame(str(e))
