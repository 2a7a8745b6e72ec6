"""Google Gemini provider implementation for the orchestrator."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types as genai_types

from ..errors import CacheCreationError, TransportError
from ..models import FunctionCall, FunctionResponse, InlineData, Part, Turn, Usage
from .base import FunctionDeclaration, ModelInfo, ModelProvider, ProviderTurn, TurnConfig

logger = logging.getLogger(__name__)

# Gemini has no "tool" role: function responses travel as user content
_ROLE_MAP = {"user": "user", "model": "model", "tool": "user"}


def _to_schema(schema: dict[str, Any]) -> genai_types.Schema:
    """Convert a JSON Schema fragment into a Gemini Schema."""
    args: dict[str, Any] = {}
    if "type" in schema:
        args["type"] = genai_types.Type(str(schema["type"]).upper())
    if schema.get("description"):
        args["description"] = schema["description"]
    if schema.get("properties"):
        args["properties"] = {name: _to_schema(sub) for name, sub in schema["properties"].items()}
    if schema.get("required"):
        args["required"] = list(schema["required"])
    if schema.get("items"):
        args["items"] = _to_schema(schema["items"])
    return genai_types.Schema(**args)


class GeminiProvider(ModelProvider):
    """Gemini provider using the google-genai SDK."""

    def __init__(self, api_key: str | None = None) -> None:
        self.api_key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", "")
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if not self._client:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options={"api_version": "v1beta"},
            )
        return self._client

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    @staticmethod
    def _to_gemini_part(part: Part) -> genai_types.Part:
        if part.function_call is not None:
            fc = part.function_call
            return genai_types.Part(
                function_call=genai_types.FunctionCall(name=fc.name, args=fc.args, id=fc.id),
                thought_signature=part.thought_signature,
            )
        if part.function_response is not None:
            fr = part.function_response
            return genai_types.Part(
                function_response=genai_types.FunctionResponse(name=fr.name, response=fr.response, id=fr.id)
            )
        if part.inline_data is not None:
            return genai_types.Part(
                inline_data=genai_types.Blob(mime_type=part.inline_data.mime_type, data=part.inline_data.data)
            )
        return genai_types.Part(text=part.text or "")

    @classmethod
    def _to_gemini_contents(cls, history: list[Turn]) -> list[genai_types.Content]:
        return [
            genai_types.Content(role=_ROLE_MAP[turn.role], parts=[cls._to_gemini_part(p) for p in turn.parts])
            for turn in history
            if turn.parts
        ]

    @staticmethod
    def _to_gemini_tools(config: TurnConfig) -> list[genai_types.Tool] | None:
        tools: list[genai_types.Tool] = []
        if config.use_search:
            tools.append(genai_types.Tool(google_search=genai_types.GoogleSearch()))
        if config.functions:
            tools.append(
                genai_types.Tool(
                    function_declarations=[_declaration(fn) for fn in config.functions],
                )
            )
        return tools or None

    @classmethod
    def _to_gemini_config(cls, config: TurnConfig) -> genai_types.GenerateContentConfig:
        config_args: dict[str, Any] = {
            "safety_settings": [
                genai_types.SafetySetting(
                    category=genai_types.HarmCategory(category),
                    threshold=genai_types.HarmBlockThreshold(config.safety.threshold),
                )
                for category in config.safety.categories
            ],
        }
        tools = cls._to_gemini_tools(config)
        if tools:
            config_args["tools"] = tools
            # Function calls come back to the turn loop, never run inside the SDK
            config_args["automatic_function_calling"] = genai_types.AutomaticFunctionCallingConfig(disable=True)
        if config.cached_content:
            config_args["cached_content"] = config.cached_content
        if config.temperature is not None:
            config_args["temperature"] = config.temperature
        return genai_types.GenerateContentConfig(**config_args)

    @staticmethod
    def _from_gemini_parts(parts: list[genai_types.Part] | None) -> list[Part]:
        out: list[Part] = []
        for part in parts or []:
            if part.function_call is not None:
                fc = part.function_call
                out.append(
                    Part(
                        function_call=FunctionCall(name=fc.name or "", args=dict(fc.args or {}), id=fc.id),
                        thought_signature=part.thought_signature,
                    )
                )
            elif part.inline_data is not None and part.inline_data.data:
                out.append(
                    Part(
                        inline_data=InlineData(
                            mime_type=part.inline_data.mime_type or "application/octet-stream",
                            data=part.inline_data.data,
                        )
                    )
                )
            elif part.text and not part.thought:
                out.append(Part(text=part.text))
        return out

    @staticmethod
    def _from_gemini_usage(meta: Any) -> Usage | None:
        if meta is None:
            return None
        return Usage(
            prompt_tokens=meta.prompt_token_count or 0,
            candidate_tokens=meta.candidates_token_count or 0,
            total_tokens=meta.total_token_count or 0,
        )

    # ------------------------------------------------------------------
    # ModelProvider
    # ------------------------------------------------------------------

    async def create_turn(self, model: str, history: list[Turn], config: TurnConfig) -> ProviderTurn:
        """Non-streaming generate_content call."""
        client = self._get_client()
        try:
            resp = await client.aio.models.generate_content(
                model=model,
                contents=self._to_gemini_contents(history),
                config=self._to_gemini_config(config),
            )
        except Exception as exc:  # noqa: BLE001
            raise TransportError(str(exc)) from exc

        parts: list[Part] = []
        finish_reason: str | None = None
        if resp.candidates:
            candidate = resp.candidates[0]
            if candidate.content is not None:
                parts = self._from_gemini_parts(candidate.content.parts)
            if candidate.finish_reason is not None:
                finish_reason = str(candidate.finish_reason.value)
        return ProviderTurn(
            parts=parts,
            usage=self._from_gemini_usage(resp.usage_metadata),
            finish_reason=finish_reason,
        )

    async def create_turn_stream(self, model: str, history: list[Turn], config: TurnConfig) -> AsyncIterator[str]:
        """Relay text fragments from generate_content_stream as they arrive."""
        client = self._get_client()
        try:
            stream = await client.aio.models.generate_content_stream(
                model=model,
                contents=self._to_gemini_contents(history),
                config=self._to_gemini_config(config),
            )
            async for chunk in stream:
                for cand in chunk.candidates or []:
                    if cand.content is None:
                        continue
                    text = "".join(p.text for p in self._from_gemini_parts(cand.content.parts) if p.text)
                    if text:
                        yield text
        except Exception as exc:  # noqa: BLE001
            raise TransportError(str(exc)) from exc

    async def build_cached_context(
        self,
        model: str,
        display_name: str,
        system_prompt: str,
        content: str,
        ttl_seconds: int,
    ) -> str:
        client = self._get_client()
        try:
            cache = await client.aio.caches.create(
                model=model,
                config=genai_types.CreateCachedContentConfig(
                    display_name=display_name,
                    system_instruction=genai_types.Content(
                        role="user",
                        parts=[genai_types.Part(text=system_prompt)],
                    ),
                    contents=[
                        genai_types.Content(role="user", parts=[genai_types.Part(text=content)]),
                    ],
                    ttl=f"{ttl_seconds}s",
                ),
            )
        except Exception as exc:  # noqa: BLE001
            raise CacheCreationError(str(exc)) from exc
        if not cache.name:
            raise CacheCreationError("upstream returned a cache without a name")
        return cache.name

    async def list_models(self) -> AsyncIterator[ModelInfo]:
        client = self._get_client()
        try:
            pager = await client.aio.models.list()
            async for m in pager:
                yield ModelInfo(name=m.name or "", supported_actions=list(m.supported_actions or []))
        except Exception as exc:  # noqa: BLE001
            raise TransportError(str(exc)) from exc


def _declaration(fn: FunctionDeclaration) -> genai_types.FunctionDeclaration:
    return genai_types.FunctionDeclaration(
        name=fn.name,
        description=fn.description,
        parameters=_to_schema(fn.parameters),
    )
