"""Data models for turns, sessions and canonical requests."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


class FunctionCall(BaseModel):
    """A function-call request emitted by the model."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class FunctionResponse(BaseModel):
    """The result of one function call, sent back to the model."""

    name: str
    response: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class InlineData(BaseModel):
    """Inline binary blob (e.g. a generated image)."""

    mime_type: str
    data: bytes


class Part(BaseModel):
    """One element of a turn. Exactly one payload field is set."""

    text: str | None = None
    inline_data: InlineData | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None
    # Opaque upstream signature that must be echoed with its function call
    thought_signature: bytes | None = None

    @model_validator(mode="after")
    def _one_payload(self) -> Part:
        payloads = [self.text, self.inline_data, self.function_call, self.function_response]
        if sum(p is not None for p in payloads) != 1:
            raise ValueError("a part carries exactly one of text, inline_data, function_call, function_response")
        return self

    @classmethod
    def from_text(cls, text: str) -> Part:
        return cls(text=text)


Role = Literal["user", "model", "tool"]


class Turn(BaseModel):
    """A role-tagged exchange unit within a session's history."""

    role: Role
    parts: list[Part] = Field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> Turn:
        return cls(role="user", parts=[Part.from_text(text)])

    @classmethod
    def model_text(cls, text: str) -> Turn:
        return cls(role="model", parts=[Part.from_text(text)])

    @property
    def function_calls(self) -> list[FunctionCall]:
        return [p.function_call for p in self.parts if p.function_call is not None]

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text)


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------


class CanonicalRequest(BaseModel):
    """Protocol-agnostic representation of one user turn."""

    session_id: str
    model: str
    message: str
    use_search: bool = False
    use_agentic: bool = False
    cache_override: str | None = None
    temperature: float | None = None


class Usage(BaseModel):
    """Token counts reported by the upstream for one call."""

    prompt_tokens: int = 0
    candidate_tokens: int = 0
    total_tokens: int = 0


class ImageData(BaseModel):
    """Binary output as exposed to clients (base64 encoded)."""

    mime_type: str
    data: str

    @classmethod
    def from_inline(cls, blob: InlineData) -> ImageData:
        return cls(mime_type=blob.mime_type, data=base64.b64encode(blob.data).decode("ascii"))


@dataclass
class TurnResult:
    """Outcome of one user turn after the loop reached ``DONE``."""

    text: str
    images: list[ImageData] = field(default_factory=list)
    tool_calls: list[str] = field(default_factory=list)
    prompt_tokens: int = 0
    response_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    rounds: int = 0
    degraded: bool = False
