"""Proxy configuration: defaults, paths and process settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from main_config import (
    BASE_DIR as _BASE_DIR,
    DEBUG_RESPONSE_PATH as _DEBUG_RESPONSE_PATH,
    HISTORY_FILE_NAME,
    LOGS_DIR as _LOGS_DIR,
)

# Path objects for use in this package (main_config uses os.path strings)
SERVER_HOME = Path(_BASE_DIR)
LOGS_DIR = Path(_LOGS_DIR)
DEBUG_RESPONSE_PATH = Path(_DEBUG_RESPONSE_PATH)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_MAX_TOOL_ROUNDS = 10
NATIVE_TEMPERATURE = 0.2

# Context cache
CACHE_TTL_MINUTES = 120
CACHE_DISPLAY_NAME = "Unified_Project_Brain"
CACHE_SYSTEM_PROMPT = (
    "You are Antigravity Brain, a powerful project assistant. You have access to the "
    "project's history and source code via your context cache. Always identify as "
    "Antigravity Brain / Gemini."
)
CACHE_MAX_FILE_BYTES = 256 * 1024
CACHE_MAX_TOTAL_CHARS = 4_000_000
CACHE_MIN_CHARS = 32768
CACHE_PAD_TARGET = 33000

# Tools
TOOL_MAX_READ_BYTES = 1024 * 1024

ChunkingMode = Literal["chars", "words", "bytes"]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class ProxySettings(BaseModel):
    """Process-wide settings, resolved once at startup."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    model: str = DEFAULT_MODEL
    cache_path: str | None = Field(None, description="Directory to build a context cache from")
    cache_id: str | None = Field(None, description="Existing cache reference to use as-is")
    debug: bool = False
    project_root: Path = Field(default_factory=Path.cwd)
    server_home: Path = SERVER_HOME
    log_dir: Path | None = None
    api_key: str = ""
    max_tool_rounds: int = Field(
        default_factory=lambda: int(os.getenv("BRAIN_PROXY_MAX_TOOL_ROUNDS", DEFAULT_MAX_TOOL_ROUNDS))
    )
    stream_chunking: ChunkingMode = Field(
        default_factory=lambda: os.getenv("BRAIN_PROXY_STREAM_CHUNKING", "chars")  # type: ignore[arg-type]
    )
    stream_chunk_size: int = Field(
        default_factory=lambda: int(os.getenv("BRAIN_PROXY_STREAM_CHUNK_SIZE", "1"))
    )
    serialize_sessions: bool = Field(
        default_factory=lambda: _env_bool("BRAIN_PROXY_SERIALIZE_SESSIONS", True)
    )

    @field_validator("max_tool_rounds", "stream_chunk_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def mode_label(self) -> str:
        if self.cache_id:
            return "EXPLICIT CACHE"
        if self.cache_path:
            return "CACHE BUILD"
        return "CLEAN (Stateless)"

    @property
    def debug_response_path(self) -> Path:
        return self.server_home / DEBUG_RESPONSE_PATH.name
