"""Unit tests for the project cache builder and startup cache modes."""
from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from src.brain_proxy.config import CACHE_DISPLAY_NAME, CACHE_MIN_CHARS, CACHE_TTL_MINUTES
from src.brain_proxy.context_cache import (
    PADDING_LINE,
    CacheMode,
    CacheState,
    collect_project_content,
    initialize_cache,
)
from src.brain_proxy.errors import CacheCreationError

from stubs import ScriptedProvider


class TestCollectProjectContent(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write(self, rel: str, data: str | bytes) -> None:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, bytes):
            path.write_bytes(data)
        else:
            path.write_text(data, encoding="utf-8")

    def test_filters(self) -> None:
        self.write("README.md", "readme body")
        self.write("src/app.ts", "export const a = 1")
        self.write("src/app.py", "print('skipped extension')")
        self.write("node_modules/lib/index.js", "skipped dir")
        self.write("old_backup/notes.md", "skipped backup dir")
        self.write("notes.bkup.md", "skipped backup file")
        self.write("blob.json", b"{\x00}")
        self.write("huge.txt", "x" * (256 * 1024 + 1))

        digest = collect_project_content(self.root)
        self.assertEqual(digest.file_count, 2)
        self.assertIn("readme body", digest.content)
        self.assertIn("export const a = 1", digest.content)
        self.assertIn(f"--- FILE: {self.root / 'README.md'} ---", digest.content)
        for skipped in ("skipped extension", "skipped dir", "skipped backup", "xxxxxxxx"):
            self.assertNotIn(skipped, digest.content)

    def test_history_first(self) -> None:
        self.write(".history", "decided to use sqlite")
        self.write("a.md", "alpha")
        content = collect_project_content(self.root).content
        self.assertTrue(content.startswith("\n=== PROJECT HISTORY LOG ===\ndecided to use sqlite"))
        self.assertLess(content.index("sqlite"), content.index("alpha"))

    def test_small_projects_are_padded(self) -> None:
        self.write("a.md", "tiny")
        digest = collect_project_content(self.root)
        self.assertTrue(digest.padded)
        self.assertIn(PADDING_LINE, digest.content)
        self.assertGreaterEqual(len(digest.content), CACHE_MIN_CHARS)

    def test_large_projects_are_not_padded(self) -> None:
        self.write("a.md", "y" * 40_000)
        digest = collect_project_content(self.root)
        self.assertFalse(digest.padded)
        self.assertNotIn(PADDING_LINE, digest.content)


class TestInitializeCache(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "a.md").write_text("alpha", encoding="utf-8")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_explicit_id_skips_upload(self) -> None:
        provider = ScriptedProvider()
        state = CacheState()
        snapshot = await initialize_cache(provider, state, "gemini-1.5-flash", "cachedContents/given", self.root)
        self.assertEqual(snapshot.reference, "cachedContents/given")
        self.assertEqual(snapshot.mode, CacheMode.EXPLICIT)
        self.assertEqual(provider.cache_builds, [])

    async def test_build_from_directory(self) -> None:
        provider = ScriptedProvider(cache_reference="cachedContents/built")
        state = CacheState()
        snapshot = await initialize_cache(provider, state, "gemini-1.5-flash-001", None, self.root)
        self.assertEqual(snapshot.reference, "cachedContents/built")
        self.assertEqual(snapshot.model, "gemini-1.5-flash-001")
        self.assertEqual(snapshot.mode, CacheMode.BUILT)
        build = provider.cache_builds[0]
        self.assertEqual(build["display_name"], CACHE_DISPLAY_NAME)
        self.assertEqual(build["ttl_seconds"], CACHE_TTL_MINUTES * 60)
        self.assertIn("alpha", build["content"])

    async def test_build_failure_leaves_server_uncached(self) -> None:
        provider = ScriptedProvider(cache_error=CacheCreationError("model does not support caching"))
        state = CacheState()
        with self.assertLogs("src.brain_proxy.context_cache", level="WARNING"):
            snapshot = await initialize_cache(provider, state, "gemini-2.0-flash", None, self.root)
        self.assertFalse(snapshot.active)
        self.assertEqual(snapshot.mode, CacheMode.NONE)

    async def test_clean_mode(self) -> None:
        snapshot = await initialize_cache(ScriptedProvider(), CacheState(), "gemini-2.0-flash", None, None)
        self.assertFalse(snapshot.active)


if __name__ == "__main__":
    unittest.main()
