"""Per-call cost computation and the process-wide running total."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Mapping

from .models import Usage

TOKENS_PER_UNIT = 1_000_000


@dataclass(frozen=True)
class CostRecord:
    """Price per million tokens."""

    price_in: float
    price_out: float

    @property
    def is_free(self) -> bool:
        return self.price_in == 0 and self.price_out == 0


MODEL_COSTS: dict[str, CostRecord] = {
    "gemini-1.5-flash": CostRecord(0.075, 0.30),
    "gemini-1.5-flash-8b": CostRecord(0.0375, 0.15),
    "gemini-1.5-pro": CostRecord(1.25, 5.00),
    "gemini-2.0-flash": CostRecord(0.10, 0.40),
    "gemini-2.0-flash-exp": CostRecord(0.00, 0.00),
    "gemini-2.0-flash-lite-preview-02-05": CostRecord(0.075, 0.30),
    "gemini-exp-1206": CostRecord(0.00, 0.00),
    "gemini-2.0-pro-exp-02-05": CostRecord(0.00, 0.00),
}


def lookup_price(model: str, table: Mapping[str, CostRecord] = MODEL_COSTS) -> CostRecord | None:
    """Exact match first, then the longest table key that prefixes ``model``."""
    if model in table:
        return table[model]
    matches = [key for key in table if model.startswith(key)]
    if not matches:
        return None
    return table[max(matches, key=len)]


def compute_cost(model: str, usage: Usage | None, table: Mapping[str, CostRecord] = MODEL_COSTS) -> float:
    """Cost of one upstream call. Unknown and free models cost nothing."""
    record = lookup_price(model, table)
    if record is None or record.is_free or usage is None:
        return 0.0
    cost_in = usage.prompt_tokens / TOKENS_PER_UNIT * record.price_in
    cost_out = usage.candidate_tokens / TOKENS_PER_UNIT * record.price_out
    return cost_in + cost_out


def price_label(model: str, table: Mapping[str, CostRecord] = MODEL_COSTS) -> str:
    """Human readable price used by the model listing."""
    record = lookup_price(model, table)
    if record is None:
        return "Price: Variable"
    if record.is_free:
        return "Price: Free (Beta)"
    return f"${record.price_in:.2f}/1M tokens"


class CostMeter:
    """Running total across all requests, updated atomically per call."""

    def __init__(self, table: Mapping[str, CostRecord] | None = None) -> None:
        self._lock = threading.Lock()
        self._total = 0.0
        self.table: Mapping[str, CostRecord] = table if table is not None else MODEL_COSTS

    def charge(self, model: str, usage: Usage | None) -> float:
        """Compute the cost of one call, add it to the total and return it."""
        cost = compute_cost(model, usage, self.table)
        if cost:
            with self._lock:
                self._total += cost
        return cost

    @property
    def total(self) -> float:
        with self._lock:
            return self._total
