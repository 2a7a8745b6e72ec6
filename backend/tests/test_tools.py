"""Unit tests for the confined file tools."""
from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from src.brain_proxy.tools import (
    AccessDenied,
    ToolErrorKind,
    ToolExecutor,
    ToolName,
    ToolResult,
    confine,
)


class TestConfine(unittest.TestCase):
    def test_inside_root(self) -> None:
        root = Path("/srv/project")
        self.assertEqual(confine(root, "a/b.txt"), Path("/srv/project/a/b.txt"))
        self.assertEqual(confine(root, "a/../b.txt"), Path("/srv/project/b.txt"))
        self.assertEqual(confine(root, "."), root)

    def test_escapes_are_refused(self) -> None:
        root = Path("/srv/project")
        for rel in ("../x", "../../etc/passwd", "/etc/passwd", "a/../../x", "../project-other/x"):
            with self.assertRaises(AccessDenied, msg=rel):
                confine(root, rel)


class TestToolExecutor(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.root = self.base / "project"
        self.root.mkdir()
        (self.base / "secret.txt").write_text("top secret", encoding="utf-8")
        self.tools = ToolExecutor(self.root, max_read_bytes=64)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_traversal_denied_for_every_tool(self) -> None:
        for name, args in (
            ("list_files", {"path": "../"}),
            ("read_file", {"path": "../secret.txt"}),
            ("write_file", {"path": "../evil.txt", "content": "x"}),
        ):
            result = self.tools.dispatch(name, args)
            self.assertFalse(result.success, name)
            self.assertEqual(result.kind, ToolErrorKind.ACCESS_DENIED, name)
        self.assertFalse((self.base / "evil.txt").exists())

    def test_write_then_read(self) -> None:
        result = self.tools.dispatch("write_file", {"path": "sub/out.txt", "content": "héllo"})
        self.assertEqual(
            result.to_response(), {"status": "OK", "path": "sub/out.txt", "bytes_written": len("héllo".encode())}
        )
        self.assertEqual((self.root / "sub" / "out.txt").read_text(encoding="utf-8"), "héllo")
        self.assertEqual(self.tools.dispatch("read_file", {"path": "sub/out.txt"}).to_response(), {"content": "héllo"})

    def test_list_marks_directories(self) -> None:
        (self.root / "b.txt").write_text("b", encoding="utf-8")
        (self.root / "a").mkdir()
        self.assertEqual(self.tools.dispatch("list_files", {}).to_response(), {"files": ["a/", "b.txt"]})

    def test_read_errors(self) -> None:
        missing = self.tools.dispatch("read_file", {"path": "nope.txt"})
        self.assertEqual(missing.kind, ToolErrorKind.NOT_FOUND)
        (self.root / "big.txt").write_text("x" * 65, encoding="utf-8")
        too_large = self.tools.dispatch("read_file", {"path": "big.txt"})
        self.assertEqual(too_large.kind, ToolErrorKind.TOO_LARGE)
        self.assertEqual(too_large.to_response(), {"error": "TooLarge: File too large"})

    def test_unknown_tool(self) -> None:
        result = self.tools.dispatch("delete_everything", {})
        self.assertEqual(result.kind, ToolErrorKind.UNKNOWN_TOOL)
        self.assertIn("error", result.to_response())

    def test_declarations(self) -> None:
        names = [d.name for d in self.tools.declarations(include_read_tools=False)]
        self.assertEqual(names, [ToolName.WRITE_FILE.value])
        names = [d.name for d in self.tools.declarations(include_read_tools=True)]
        self.assertEqual(sorted(names), ["list_files", "read_file", "write_file"])

    def test_result_shapes(self) -> None:
        self.assertEqual(ToolResult.ok(files=[]).to_response(), {"files": []})
        self.assertEqual(
            ToolResult.fail(ToolErrorKind.IO_ERROR, "disk full").to_response(), {"error": "IOError: disk full"}
        )


if __name__ == "__main__":
    unittest.main()
