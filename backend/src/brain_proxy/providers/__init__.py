"""Upstream model providers: pluggable backends for the orchestrator."""

from .base import (
    PERMISSIVE_SAFETY,
    FunctionDeclaration,
    ModelInfo,
    ModelProvider,
    ProviderTurn,
    SafetyPolicy,
    TurnConfig,
)
from .gemini_provider import GeminiProvider

__all__ = [
    "PERMISSIVE_SAFETY",
    "FunctionDeclaration",
    "ModelInfo",
    "ModelProvider",
    "ProviderTurn",
    "SafetyPolicy",
    "TurnConfig",
    "GeminiProvider",
]
