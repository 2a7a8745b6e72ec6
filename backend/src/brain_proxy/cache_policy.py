"""Cache eligibility: may a context cache reference accompany this call?

The upstream rejects a cached-content reference together with any tool
declaration, so the two are mutually exclusive for one outbound call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_VERSION_SUFFIX = re.compile(r"-\d{3}$")


def model_family(model: str) -> str:
    """Strip a trailing version suffix (``gemini-1.5-flash-001`` -> ``gemini-1.5-flash``)."""
    return _VERSION_SUFFIX.sub("", model)


def is_image_model(model: str) -> bool:
    return "image" in model


def decide(
    request_model: str,
    explicit_override: str | None,
    active_cache: str | None,
    active_cache_model: str | None,
    wants_search: bool,
    wants_agentic: bool,
) -> str | None:
    """Return the cache reference this request may use, or None."""
    if explicit_override:
        return explicit_override
    if not active_cache:
        return None
    if wants_search or wants_agentic:
        return None
    if not request_model.startswith(model_family(active_cache_model or "")):
        return None
    if is_image_model(request_model):
        return None
    return active_cache


@dataclass(frozen=True)
class CacheDecision:
    """``reference`` is what the eligibility rules pick for the turn; ``attached``
    says whether it actually goes on the outbound call.

    ``active`` is the cache usable with this model whatever tools are
    requested. Agentic turns with an active cache declare only ``write_file``.
    """

    reference: str | None
    attached: bool
    active: str | None = None

    @property
    def attached_reference(self) -> str | None:
        return self.reference if self.attached else None


def plan_cache(
    request_model: str,
    explicit_override: str | None,
    active_cache: str | None,
    active_cache_model: str | None,
    wants_search: bool,
    wants_agentic: bool,
) -> CacheDecision:
    reference = decide(
        request_model,
        explicit_override,
        active_cache,
        active_cache_model,
        wants_search,
        wants_agentic,
    )
    active = decide(request_model, explicit_override, active_cache, active_cache_model, False, False)
    attached = reference is not None and not (wants_search or wants_agentic)
    return CacheDecision(reference=reference, attached=attached, active=active)
