"""Model-name policy: blocklist, client model mapping and the model catalogue."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

from .config import DEFAULT_MODEL

if TYPE_CHECKING:
    from .providers.base import ModelInfo

NATIVE_MODEL_PREFIX = "gemini-"

# Standing product policy, not configurable per request
BLOCKED_MARKERS: tuple[str, ...] = ("-exp", "experimental", "preview")
HIDDEN_FROM_LISTING: tuple[str, ...] = ("image-generation",)


def is_blocked(model: str) -> bool:
    """True for experimental / preview model ids."""
    return any(marker in model for marker in BLOCKED_MARKERS)


def fallback_model(cache_model: str | None) -> str:
    return cache_model or DEFAULT_MODEL


def resolve_client_model(requested: str | None, cache_model: str | None) -> str:
    """Map a client-supplied model id onto one the upstream will serve.

    Native ids that are not blocked pass through verbatim; anything else
    (``gpt-4``, blocked ids, empty) becomes the cache-bound or default model.
    """
    requested = (requested or "").strip()
    if requested.startswith(NATIVE_MODEL_PREFIX) and not is_blocked(requested):
        return requested
    return fallback_model(cache_model)


def model_from_resource_path(path: str, default: str = DEFAULT_MODEL) -> str:
    """``/v1beta/models/gemini-2.0-flash:streamGenerateContent`` -> ``gemini-2.0-flash``."""
    if "/models/" not in path:
        return default
    segment = path.split("/models/", 1)[1]
    model = segment.split(":", 1)[0].strip("/")
    return model or default


def strip_resource_prefix(name: str) -> str:
    return name[len("models/"):] if name.startswith("models/") else name


def is_listable(info: ModelInfo) -> bool:
    """Catalogue filter: generateContent support, not blocked, not hidden."""
    if "generateContent" not in info.supported_actions:
        return False
    model_id = strip_resource_prefix(info.name)
    if is_blocked(model_id):
        return False
    return not any(marker in model_id for marker in HIDDEN_FROM_LISTING)


class ModelCatalog:
    """Lazy, restartable view over the upstream model listing.

    Each ``async for`` starts a fresh upstream listing, so pagination stays
    with the provider and nothing is materialized eagerly.
    """

    def __init__(self, source: Callable[[], AsyncIterator[ModelInfo]]) -> None:
        self._source = source

    async def __aiter__(self) -> AsyncIterator[str]:
        async for info in self._source():
            if is_listable(info):
                yield strip_resource_prefix(info.name)

    async def ids(self) -> list[str]:
        return [model_id async for model_id in self]
