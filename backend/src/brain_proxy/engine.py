"""Orchestrator: wires sessions, cache, tools, costs and the turn loop for the adapters."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any, Mapping

from .cache_policy import CacheDecision, plan_cache
from .context_cache import CacheSnapshot, CacheState, initialize_cache
from .config import ProxySettings
from .errors import ModelNotAllowed
from .logging_config import write_debug_response
from .loop import LoopOptions, TurnCompleted, TurnEvent, TurnLoop
from .model_names import ModelCatalog, is_blocked, resolve_client_model
from .models import CanonicalRequest, Turn, TurnResult
from .pricing import CostMeter, CostRecord, price_label
from .providers import ModelProvider, ProviderTurn, TurnConfig
from .session_store import SessionStore
from .tools import ToolExecutor, confine

logger = logging.getLogger(__name__)

# Directories hidden from the UI file browser
UI_SKIP_DIRS = frozenset(
    {"node_modules", "vendor", ".git", "dist", "build", ".next", "target", "__pycache__", "venv", ".venv"}
)


def _preview(text: str, limit: int = 50) -> str:
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


class Orchestrator:
    """Process-wide engine shared by every protocol adapter."""

    def __init__(
        self,
        settings: ProxySettings,
        provider: ModelProvider,
        cost_table: Mapping[str, CostRecord] | None = None,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.sessions = SessionStore(serialize=settings.serialize_sessions)
        self.costs = CostMeter(cost_table)
        self.cache = CacheState()
        self.tools = ToolExecutor(settings.project_root)
        self.loop = TurnLoop(
            provider,
            self.sessions,
            self.costs,
            self.tools,
            LoopOptions(max_tool_rounds=settings.max_tool_rounds),
        )

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def initialize_cache(self) -> CacheSnapshot:
        cache_root = Path(self.settings.cache_path).resolve() if self.settings.cache_path else None
        return await initialize_cache(
            self.provider,
            self.cache,
            self.settings.model,
            self.settings.cache_id,
            cache_root,
        )

    # ------------------------------------------------------------------
    # Policy helpers
    # ------------------------------------------------------------------

    @staticmethod
    def ensure_allowed(model: str) -> None:
        if is_blocked(model):
            raise ModelNotAllowed(model)

    def default_model(self) -> str:
        """Cache-bound model when a cache is active, else the configured default."""
        snapshot = self.cache.snapshot()
        if snapshot.active and snapshot.model:
            return snapshot.model
        return self.settings.model

    def resolve_model(self, requested: str | None) -> str:
        """Map a foreign or blocked model id onto one the upstream will serve."""
        return resolve_client_model(requested, self.default_model())

    def plan(self, model: str, override: str | None, use_search: bool, use_agentic: bool) -> CacheDecision:
        snapshot = self.cache.snapshot()
        return plan_cache(
            model,
            override,
            snapshot.reference or None,
            snapshot.model or None,
            use_search,
            use_agentic,
        )

    def _dump(self, text: str) -> None:
        if self.settings.debug:
            write_debug_response(self.settings.debug_response_path, text)

    # ------------------------------------------------------------------
    # Stateful turns
    # ------------------------------------------------------------------

    async def iterate_chat(self, request: CanonicalRequest, label: str = "/chat") -> AsyncIterator[TurnEvent]:
        """Run one stateful turn, relaying loop events."""
        logger.info(
            ">>> %s | Model: %s | Session: %s | Search: %s | Agentic: %s | Msg: %s",
            label,
            request.model,
            request.session_id,
            request.use_search,
            request.use_agentic,
            _preview(request.message),
        )
        decision = self.plan(request.model, request.cache_override, request.use_search, request.use_agentic)
        if decision.active and not decision.attached:
            logger.debug("Cache %s not attached: tools requested", decision.active)
        async for event in self.loop.iterate(request, decision):
            if isinstance(event, TurnCompleted):
                result = event.result
                logger.info(
                    "<<< %s | Tokens: %din/%dout (%d total) | Tools: %d | Images: %d | Cost: $%.6f | Resp: %s",
                    label,
                    result.prompt_tokens,
                    result.response_tokens,
                    result.total_tokens,
                    len(result.tool_calls),
                    len(result.images),
                    result.cost,
                    _preview(result.text),
                )
                self._dump(result.text)
            yield event

    async def chat(self, request: CanonicalRequest, label: str = "/chat") -> tuple[TurnResult, float]:
        """Run one stateful turn; returns the result and the running cost total."""
        async for event in self.iterate_chat(request, label):
            if isinstance(event, TurnCompleted):
                return event.result, self.costs.total
        raise RuntimeError("turn loop ended without a result")

    # ------------------------------------------------------------------
    # Stateless passthrough
    # ------------------------------------------------------------------

    def _passthrough_config(self, model: str, override: str | None) -> TurnConfig:
        decision = self.plan(model, override, False, False)
        return TurnConfig(cached_content=decision.attached_reference)

    async def complete(self, model: str, message: str, override: str | None = None) -> ProviderTurn:
        """One upstream call with no tools and no session history."""
        logger.info(">>> Gemini | Model: %s | Msg: %s", model, _preview(message))
        response = await self.provider.create_turn(
            model, [Turn.user_text(message)], self._passthrough_config(model, override)
        )
        cost = self.costs.charge(model, response.usage)
        logger.info("<<< Gemini | Cost: $%.6f | Resp: %s", cost, _preview(response.text))
        self._dump(response.text)
        return response

    async def stream_complete(self, model: str, message: str, override: str | None = None) -> AsyncIterator[str]:
        """Relay upstream text fragments as they arrive."""
        logger.info(">>> Gemini Stream | Model: %s | Msg: %s", model, _preview(message))
        collected: list[str] = []
        async for fragment in self.provider.create_turn_stream(
            model, [Turn.user_text(message)], self._passthrough_config(model, override)
        ):
            collected.append(fragment)
            yield fragment
        full = "".join(collected)
        logger.info("<<< Gemini Stream Complete | Resp: %s", _preview(full))
        self._dump(full)

    # ------------------------------------------------------------------
    # Catalogue and admin
    # ------------------------------------------------------------------

    def catalog(self) -> ModelCatalog:
        return ModelCatalog(self.provider.list_models)

    async def priced_models(self) -> list[dict[str, str]]:
        return [
            {"id": model_id, "name": model_id, "cost": price_label(model_id, self.costs.table)}
            async for model_id in self.catalog()
        ]

    def list_files_for_ui(self, sub_path: str | None = None) -> list[str]:
        """Project listing for the UI file browser.

        Raises:
            AccessDenied: ``sub_path`` escapes the project root.
            OSError: the directory cannot be read.
        """
        target = confine(self.tools.root, sub_path or ".")
        files: list[str] = []
        with os.scandir(target) as it:
            for entry in sorted(it, key=lambda e: e.name):
                if entry.name.startswith("."):
                    continue
                if entry.is_dir():
                    if entry.name in UI_SKIP_DIRS:
                        continue
                    files.append(entry.name + "/")
                else:
                    files.append(entry.name)
        return files

    def status(self) -> dict[str, Any]:
        snapshot = self.cache.snapshot()
        return {
            "mode": "CACHED" if snapshot.active else "CLEAN",
            "cache_id": snapshot.reference,
            "cache_model": snapshot.model if snapshot.active else "",
            "project_root": str(self.tools.root),
            "server_port": self.settings.port,
            "debug_mode": self.settings.debug,
            "total_cost": self.costs.total,
            "sessions": len(self.sessions),
        }

    def reset(self, session_id: str | None = None) -> int:
        cleared = self.sessions.reset(session_id)
        logger.info("Reset %s (%d cleared)", session_id or "all sessions", cleared)
        return cleared

