"""Abstract upstream model capability consumed by the turn loop."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from ..models import FunctionCall, InlineData, Part, Turn, Usage


@dataclass(frozen=True)
class SafetyPolicy:
    """Harm categories and the threshold applied to each of them."""

    categories: tuple[str, ...] = (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
    threshold: str = "BLOCK_NONE"


# Permissive for every category is a product decision
PERMISSIVE_SAFETY = SafetyPolicy()


@dataclass
class FunctionDeclaration:
    """A callable tool advertised to the model (JSON Schema parameters)."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class TurnConfig:
    """Upstream call configuration for one round of a turn."""

    safety: SafetyPolicy = PERMISSIVE_SAFETY
    use_search: bool = False
    functions: list[FunctionDeclaration] = field(default_factory=list)
    cached_content: str | None = None
    temperature: float | None = None


@dataclass
class ProviderTurn:
    """One upstream response."""

    parts: list[Part] = field(default_factory=list)
    usage: Usage | None = None
    finish_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text)

    @property
    def function_calls(self) -> list[FunctionCall]:
        return [p.function_call for p in self.parts if p.function_call is not None]

    @property
    def binary_parts(self) -> list[InlineData]:
        return [p.inline_data for p in self.parts if p.inline_data is not None]

    def as_turn(self) -> Turn:
        return Turn(role="model", parts=list(self.parts))


@dataclass
class ModelInfo:
    """Upstream model listing entry."""

    name: str
    supported_actions: list[str] = field(default_factory=list)


class ModelProvider(ABC):
    """
    Upstream model provider. The orchestrator only depends on this interface;
    ``GeminiProvider`` is the production implementation and tests plug in
    scripted stubs.
    """

    @abstractmethod
    async def create_turn(self, model: str, history: list[Turn], config: TurnConfig) -> ProviderTurn:
        """Generate the next model turn given the full history.

        Raises:
            TransportError: the upstream call failed.
        """
        ...

    @abstractmethod
    def create_turn_stream(self, model: str, history: list[Turn], config: TurnConfig) -> AsyncIterator[str]:
        """Stream text fragments of the next model turn."""
        ...

    @abstractmethod
    async def build_cached_context(
        self,
        model: str,
        display_name: str,
        system_prompt: str,
        content: str,
        ttl_seconds: int,
    ) -> str:
        """Upload a context cache and return its reference.

        Raises:
            CacheCreationError: the upstream rejected the cache.
        """
        ...

    @abstractmethod
    def list_models(self) -> AsyncIterator[ModelInfo]:
        """Iterate over upstream models (may paginate lazily)."""
        ...
