"""Server-side context cache: process state and the startup cache builder."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import (
    CACHE_DISPLAY_NAME,
    CACHE_MAX_FILE_BYTES,
    CACHE_MAX_TOTAL_CHARS,
    CACHE_MIN_CHARS,
    CACHE_PAD_TARGET,
    CACHE_SYSTEM_PROMPT,
    CACHE_TTL_MINUTES,
    HISTORY_FILE_NAME,
)
from .errors import CacheCreationError
from .providers import ModelProvider

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset(
    {
        ".git", "node_modules", "venv", ".venv", "dist", "build", ".next", ".DS_Store",
        "target", "out", "images", "img", "media", "photos", "videos",
    }
)
ALLOWED_EXTENSIONS = frozenset({".md", ".txt", ".go", ".js", ".ts", ".json", ".lua", ".css", ".html"})
BACKUP_MARKERS = ("backup", "bkup")
BINARY_SNIFF_BYTES = 1024
PADDING_LINE = "\n// CACHE_PADDING_TOKEN_REDUNDANCY_FOR_COST_SAVINGS_PROTOCOL\n"


class CacheMode(str, Enum):
    EXPLICIT = "explicit"
    BUILT = "built"
    NONE = "none"


@dataclass(frozen=True)
class CacheSnapshot:
    reference: str
    model: str
    mode: CacheMode

    @property
    def active(self) -> bool:
        return bool(self.reference)


class CacheState:
    """The process's active cache reference and the model it is bound to.

    Set at startup; replaced only when a new cache is built.
    """

    def __init__(self, reference: str = "", model: str = "", mode: CacheMode = CacheMode.NONE) -> None:
        self._lock = threading.Lock()
        self._snapshot = CacheSnapshot(reference, model, mode)

    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return self._snapshot

    def set(self, reference: str, model: str, mode: CacheMode) -> None:
        with self._lock:
            self._snapshot = CacheSnapshot(reference, model, mode)


def _is_backup(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in BACKUP_MARKERS)


def _looks_binary(data: bytes) -> bool:
    return b"\x00" in data[:BINARY_SNIFF_BYTES]


@dataclass
class ProjectDigest:
    content: str
    file_count: int
    padded: bool


def collect_project_content(root: Path) -> ProjectDigest:
    """Concatenate the project's text sources into one cacheable document."""
    chunks: list[str] = []
    size = 0

    history = root / HISTORY_FILE_NAME
    if history.is_file():
        text = "\n=== PROJECT HISTORY LOG ===\n" + history.read_text(encoding="utf-8", errors="replace")
        chunks.append(text)
        size += len(text)

    file_count = 0
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS and not _is_backup(d))
        if size > CACHE_MAX_TOTAL_CHARS:
            break
        for filename in sorted(filenames):
            if _is_backup(filename) or Path(filename).suffix not in ALLOWED_EXTENSIONS:
                continue
            if size > CACHE_MAX_TOTAL_CHARS:
                break
            path = Path(dirpath) / filename
            try:
                if path.stat().st_size > CACHE_MAX_FILE_BYTES:
                    continue
                data = path.read_bytes()
            except OSError as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            if _looks_binary(data):
                continue
            text = f"\n\n--- FILE: {path} ---\n" + data.decode("utf-8", errors="replace")
            chunks.append(text)
            size += len(text)
            file_count += 1

    padded = False
    if size < CACHE_MIN_CHARS:
        padded = True
        chunks.append(PADDING_LINE * ((CACHE_PAD_TARGET - size) // len(PADDING_LINE)))
    return ProjectDigest(content="".join(chunks), file_count=file_count, padded=padded)


async def build_context_cache(provider: ModelProvider, root: Path, model: str) -> str:
    """Collect ``root`` and upload it as a context cache bound to ``model``.

    Raises:
        CacheCreationError: the upstream refused the cache (unsupported model,
            size limits, ...).
    """
    digest = collect_project_content(root)
    logger.info("Compiled %d files (%d chars)", digest.file_count, len(digest.content))
    if digest.padded:
        logger.info("Content below the cache threshold, padding added")
    logger.info("Uploading to context cache...")
    return await provider.build_cached_context(
        model=model,
        display_name=CACHE_DISPLAY_NAME,
        system_prompt=CACHE_SYSTEM_PROMPT,
        content=digest.content,
        ttl_seconds=CACHE_TTL_MINUTES * 60,
    )


async def initialize_cache(
    provider: ModelProvider,
    state: CacheState,
    model: str,
    cache_id: str | None,
    cache_root: Path | None,
) -> CacheSnapshot:
    """Resolve the startup cache mode: explicit id, build from a path, or none.

    A failed build is not fatal: the server keeps running uncached.
    """
    if cache_id:
        state.set(cache_id, model, CacheMode.EXPLICIT)
        logger.info("--- Using Explicit Cache ID: %s ---", cache_id)
    elif cache_root is not None:
        logger.info("--- Building Context Cache for: %s ---", cache_root)
        try:
            reference = await build_context_cache(provider, cache_root, model)
        except CacheCreationError as e:
            logger.warning("Cache Creation Failed (likely model unsupported or size limit): %s", e)
            state.set("", "", CacheMode.NONE)
        else:
            state.set(reference, model, CacheMode.BUILT)
            os.environ["GEMINI_CACHE"] = reference
            logger.info("--- Exported Environment Variable: GEMINI_CACHE=%s ---", reference)
    else:
        state.set("", model, CacheMode.NONE)
        logger.info("--- Running in Clean Mode (no cache) ---")
    return state.snapshot()
