"""File tools confined to the project root, and their dispatcher."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .config import TOOL_MAX_READ_BYTES
from .providers.base import FunctionDeclaration

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """The closed set of tools the model may call."""

    LIST_FILES = "list_files"
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"


class ToolErrorKind(str, Enum):
    ACCESS_DENIED = "AccessDenied"
    NOT_FOUND = "NotFound"
    TOO_LARGE = "TooLarge"
    IO_ERROR = "IOError"
    UNKNOWN_TOOL = "UnknownTool"
    EXECUTION_ERROR = "ToolExecutionError"


@dataclass
class ToolResult:
    """Result of a single tool execution: an ok payload or an error."""

    success: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    kind: ToolErrorKind | None = None

    @classmethod
    def ok(cls, **payload: Any) -> ToolResult:
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, kind: ToolErrorKind, message: str) -> ToolResult:
        return cls(success=False, error=message, kind=kind)

    def to_response(self) -> dict[str, Any]:
        """Function-response body sent back to the model."""
        if self.success:
            return dict(self.payload)
        kind = self.kind.value if self.kind else ToolErrorKind.EXECUTION_ERROR.value
        return {"error": f"{kind}: {self.error}"}


class AccessDenied(Exception):
    """A path resolved outside the project root."""


def confine(root: Path, rel_path: str) -> Path:
    """Lexically join ``rel_path`` onto ``root`` and refuse anything outside it.

    No filesystem access happens here: ``..`` is collapsed on the string, so
    the check runs before any stat/open.
    """
    root_str = os.path.normpath(str(root))
    joined = os.path.normpath(os.path.join(root_str, rel_path or "."))
    if joined != root_str and not joined.startswith(root_str.rstrip(os.sep) + os.sep):
        raise AccessDenied("Access denied: outside project root")
    return Path(joined)


class BaseTool(ABC):
    """Base class for file tools bound to a project root."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @property
    @abstractmethod
    def name(self) -> ToolName:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for parameters."""
        ...

    @abstractmethod
    def execute(self, params: dict[str, Any]) -> ToolResult:
        ...

    def to_declaration(self) -> FunctionDeclaration:
        return FunctionDeclaration(name=self.name.value, description=self.description, parameters=self.parameters)

    @staticmethod
    def _path_arg(params: dict[str, Any]) -> str:
        value = params.get("path")
        return value if isinstance(value, str) else ""


class ListFilesTool(BaseTool):
    """Directory listing; subdirectories carry a trailing ``/``."""

    @property
    def name(self) -> ToolName:
        return ToolName.LIST_FILES

    @property
    def description(self) -> str:
        return "List files in the current directory or subdirectory"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to list (use '.' for current)"},
            },
        }

    def execute(self, params: dict[str, Any]) -> ToolResult:
        try:
            target = confine(self.root, self._path_arg(params) or ".")
        except AccessDenied as e:
            return ToolResult.fail(ToolErrorKind.ACCESS_DENIED, str(e))
        try:
            with os.scandir(target) as it:
                entries = sorted(it, key=lambda e: e.name)
        except FileNotFoundError as e:
            return ToolResult.fail(ToolErrorKind.NOT_FOUND, str(e))
        except OSError as e:
            return ToolResult.fail(ToolErrorKind.IO_ERROR, str(e))
        files = [e.name + "/" if e.is_dir() else e.name for e in entries]
        return ToolResult.ok(files=files)


class ReadFileTool(BaseTool):
    """Read a text file up to ``max_bytes``."""

    def __init__(self, root: Path, max_bytes: int = TOOL_MAX_READ_BYTES) -> None:
        super().__init__(root)
        self.max_bytes = max_bytes

    @property
    def name(self) -> ToolName:
        return ToolName.READ_FILE

    @property
    def description(self) -> str:
        return "Read the contents of a specific file"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to the file"},
            },
            "required": ["path"],
        }

    def execute(self, params: dict[str, Any]) -> ToolResult:
        try:
            target = confine(self.root, self._path_arg(params))
        except AccessDenied as e:
            return ToolResult.fail(ToolErrorKind.ACCESS_DENIED, str(e))
        try:
            size = target.stat().st_size
            if size > self.max_bytes:
                return ToolResult.fail(ToolErrorKind.TOO_LARGE, "File too large")
            content = target.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError as e:
            return ToolResult.fail(ToolErrorKind.NOT_FOUND, str(e))
        except OSError as e:
            return ToolResult.fail(ToolErrorKind.IO_ERROR, str(e))
        return ToolResult.ok(content=content)


class WriteFileTool(BaseTool):
    """Create or overwrite a file, creating parent directories."""

    @property
    def name(self) -> ToolName:
        return ToolName.WRITE_FILE

    @property
    def description(self) -> str:
        return "Write or create a file with the specified content"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to the file"},
                "content": {"type": "string", "description": "Content to write to the file"},
            },
            "required": ["path", "content"],
        }

    def execute(self, params: dict[str, Any]) -> ToolResult:
        rel_path = self._path_arg(params)
        content = params.get("content")
        if not isinstance(content, str):
            content = ""
        try:
            target = confine(self.root, rel_path)
        except AccessDenied as e:
            return ToolResult.fail(ToolErrorKind.ACCESS_DENIED, str(e))
        data = content.encode("utf-8")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            return ToolResult.fail(ToolErrorKind.IO_ERROR, str(e))
        logger.info("[TOOL] write_file: %s (%d bytes)", rel_path, len(data))
        return ToolResult.ok(status="OK", path=rel_path, bytes_written=len(data))


class ToolExecutor:
    """Single dispatch point over the closed ``ToolName`` set."""

    def __init__(self, root: Path, max_read_bytes: int = TOOL_MAX_READ_BYTES) -> None:
        self.root = Path(os.path.normpath(str(Path(root).resolve())))
        self._tools: dict[ToolName, BaseTool] = {
            ToolName.LIST_FILES: ListFilesTool(self.root),
            ToolName.READ_FILE: ReadFileTool(self.root, max_read_bytes),
            ToolName.WRITE_FILE: WriteFileTool(self.root),
        }

    def dispatch(self, name: str, args: dict[str, Any] | None) -> ToolResult:
        """Run one tool call. Never raises."""
        try:
            tool_name = ToolName(name)
        except ValueError:
            return ToolResult.fail(ToolErrorKind.UNKNOWN_TOOL, f"unknown tool: {name}")
        try:
            return self._tools[tool_name].execute(args or {})
        except Exception as e:  # noqa: BLE001
            logger.exception("Tool %s failed", name)
            return ToolResult.fail(ToolErrorKind.EXECUTION_ERROR, str(e))

    def declarations(self, include_read_tools: bool) -> list[FunctionDeclaration]:
        """``write_file`` always; ``list_files``/``read_file`` only when asked."""
        names = [ToolName.WRITE_FILE]
        if include_read_tools:
            names += [ToolName.LIST_FILES, ToolName.READ_FILE]
        return [self._tools[n].to_declaration() for n in names]
