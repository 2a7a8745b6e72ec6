"""Brain proxy: stateful Gemini proxy with session history, tool loop and context cache."""

from .config import ProxySettings
from .engine import Orchestrator
from .errors import (
    CacheCreationError,
    ConfigurationError,
    ModelNotAllowed,
    ProxyError,
    ToolRoundLimitExceeded,
    TransportError,
)
from .loop import ToolCallsEvent, TurnCompleted, TurnLoop
from .models import CanonicalRequest, Turn, TurnResult
from .providers import GeminiProvider, ModelProvider

__all__ = [
    "Orchestrator",
    "ProxySettings",
    "CanonicalRequest",
    "Turn",
    "TurnResult",
    "TurnLoop",
    "ToolCallsEvent",
    "TurnCompleted",
    "ModelProvider",
    "GeminiProvider",
    "ProxyError",
    "ConfigurationError",
    "TransportError",
    "CacheCreationError",
    "ToolRoundLimitExceeded",
    "ModelNotAllowed",
]
