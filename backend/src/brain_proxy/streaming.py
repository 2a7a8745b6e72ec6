"""SSE framing and re-streaming of buffered text."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from typing import Any

from .config import ChunkingMode

DONE_FRAME = b"data: [DONE]\n\n"

_WORD = re.compile(r"\S+\s*|\s+")


def encode_sse(payload: Any) -> bytes:
    """One ``data: <json>`` server-sent event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def error_frame(message: str) -> bytes:
    return encode_sse({"error": message})


def _byte_windows(text: str, size: int) -> Iterator[str]:
    # Windows close on character boundaries so no UTF-8 sequence is split
    window: list[str] = []
    used = 0
    for ch in text:
        width = len(ch.encode("utf-8"))
        if window and used + width > size:
            yield "".join(window)
            window, used = [], 0
        window.append(ch)
        used += width
    if window:
        yield "".join(window)


def iter_chunks(text: str, mode: ChunkingMode = "chars", size: int = 1) -> Iterator[str]:
    """Split ``text`` into delta fragments.

    ``chars`` yields ``size`` characters at a time, ``words`` yields ``size``
    words (each keeping its trailing whitespace) and ``bytes`` yields at most
    ``size`` UTF-8 bytes per fragment. Concatenating the fragments always gives
    back ``text``.
    """
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    if mode == "chars":
        for i in range(0, len(text), size):
            yield text[i : i + size]
    elif mode == "words":
        words = _WORD.findall(text)
        for i in range(0, len(words), size):
            yield "".join(words[i : i + size])
    elif mode == "bytes":
        yield from _byte_windows(text, size)
    else:
        raise ValueError(f"unknown chunking mode: {mode}")
