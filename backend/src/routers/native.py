"""Native adapter: stateful /chat plus the admin endpoints used by the web UI."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from src.brain_proxy import (
    CanonicalRequest,
    ModelNotAllowed,
    Orchestrator,
    ProxyError,
)
from src.brain_proxy.config import DEFAULT_MODEL, NATIVE_TEMPERATURE
from src.brain_proxy.errors import TransportError
from src.brain_proxy.models import ImageData
from src.brain_proxy.tools import AccessDenied

from .deps import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["native"])

DEFAULT_SESSION = "default"


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    session_id: str = Field("", description="Conversation id (defaults to 'default')")
    model: str = Field("", description=f"Gemini model id (defaults to {DEFAULT_MODEL})")
    message: str = Field("", description="User message")
    cache_id: str | None = Field(None, description="Explicit context cache reference")
    use_search: bool = False
    use_agentic: bool = False


class ChatResponse(BaseModel):
    """Response for POST /chat."""

    text: str
    images: list[ImageData] = Field(default_factory=list)
    tool_calls: list[str] = Field(default_factory=list)
    prompt_tokens: int = 0
    response_tokens: int = 0
    total_tokens: int = 0
    request_cost_brl: float = 0.0
    session_total_brl: float = 0.0


async def _run_chat(body: ChatRequest, orchestrator: Orchestrator) -> ChatResponse:
    model = body.model or DEFAULT_MODEL
    try:
        orchestrator.ensure_allowed(model)
    except ModelNotAllowed as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    request = CanonicalRequest(
        session_id=body.session_id or DEFAULT_SESSION,
        model=model,
        message=body.message,
        use_search=body.use_search,
        use_agentic=body.use_agentic,
        cache_override=body.cache_id or None,
        temperature=NATIVE_TEMPERATURE,
    )
    try:
        result, total = await orchestrator.chat(request)
    except TransportError as e:
        logger.error("Gemini API error: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e
    except ProxyError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return ChatResponse(
        text=result.text,
        images=result.images,
        tool_calls=result.tool_calls,
        prompt_tokens=result.prompt_tokens,
        response_tokens=result.response_tokens,
        total_tokens=result.total_tokens,
        request_cost_brl=result.cost,
        session_total_brl=total,
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Run one stateful turn (tool loop included) and return the final answer."""
    return await _run_chat(body or ChatRequest(), orchestrator)


@router.get("/chat", response_model=ChatResponse)
async def chat_defaults(orchestrator: Orchestrator = Depends(get_orchestrator)) -> ChatResponse:
    return await _run_chat(ChatRequest(), orchestrator)


@router.api_route("/reset", methods=["GET", "POST"], response_class=PlainTextResponse)
async def reset(
    session_id: str | None = Query(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> str:
    orchestrator.reset(session_id)
    if session_id:
        return f"Session {session_id} cleared."
    return "All sessions cleared."


@router.get("/status")
async def status(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    return orchestrator.status()


@router.get("/models")
async def models(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    """Upstream models usable for chat, with their price label."""
    try:
        listed = await orchestrator.priced_models()
    except TransportError as e:
        logger.warning("Model listing failed: %s", e)
        listed = []
    return {"models": listed}


@router.get("/files")
async def files(
    path: str | None = Query(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        listing = orchestrator.list_files_for_ui(path)
    except AccessDenied as e:
        raise HTTPException(status_code=403, detail="Access denied") from e
    except OSError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"files": listing}
