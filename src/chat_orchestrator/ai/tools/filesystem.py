"""Sandboxed file system tools: notes, todo lists and documents for the user."""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from chat_orchestrator.ai.tools.base import ToolExecutionError

MAX_READ_BYTES = 500_000


class PathInput(BaseModel):
    path: str = Field(description="Path relative to the sandbox root")


class WriteFileInput(BaseModel):
    path: str = Field(description="File path relative to the sandbox root")
    content: str = Field(description="Full text content to write (UTF-8)")


class ListDirectoryInput(BaseModel):
    path: str = Field(default=".", description="Directory relative to the sandbox root")


class SearchFilesInput(BaseModel):
    pattern: str = Field(description="File name or relative path pattern; '*' matches anything")
    directory: str = Field(default=".", description="Directory to search, relative to the sandbox root")


class SandboxFileSystem:
    """File operations confined to one root directory.

    Every method returns a structured result dict with ``success``,
    ``message`` and ``path``. Missing targets are reported as
    ``success=False``; escaping the root or an OS failure raises
    ToolExecutionError.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def write_file(self, path: str, content: str) -> dict[str, Any]:
        full_path = self._resolve(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ToolExecutionError(f"Error writing file: {e.strerror or e}") from e
        return self._result(True, "File written successfully", full_path)

    def read_file(self, path: str) -> dict[str, Any]:
        full_path = self._resolve(path)
        if not full_path.exists():
            return self._result(False, "File not found", full_path)
        if not full_path.is_file():
            return self._result(False, "Path is not a file", full_path)

        try:
            size = full_path.stat().st_size
            if size > MAX_READ_BYTES:
                return self._result(
                    False,
                    f"File is too large ({_format_size(size)}, max {_format_size(MAX_READ_BYTES)})",
                    full_path,
                )
            content = full_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ToolExecutionError(
                f"Error reading file: '{self._relative(full_path)}' is a binary file"
            ) from e
        except OSError as e:
            raise ToolExecutionError(f"Error reading file: {e.strerror or e}") from e

        result = self._result(True, "File read successfully", full_path)
        result["content"] = content
        return result

    def delete_path(self, path: str) -> dict[str, Any]:
        full_path = self._resolve(path)
        if full_path == self._root:
            raise ToolExecutionError("Access denied: the sandbox root cannot be deleted")
        if not full_path.exists():
            return self._result(False, "Path not found", full_path)

        try:
            if full_path.is_dir():
                shutil.rmtree(full_path)
                return self._result(True, "Directory deleted successfully", full_path)
            if full_path.is_file():
                full_path.unlink()
                return self._result(True, "File deleted successfully", full_path)
        except OSError as e:
            raise ToolExecutionError(f"Error deleting path: {e.strerror or e}") from e
        return self._result(False, "Path is neither a file nor directory", full_path)

    def list_directory(self, path: str = ".") -> dict[str, Any]:
        full_path = self._resolve(path)
        if not full_path.exists():
            return self._result(False, "Directory not found", full_path)
        if not full_path.is_dir():
            return self._result(False, "Path is not a directory", full_path)

        items = []
        try:
            for entry in sorted(full_path.iterdir()):
                item: dict[str, Any] = {
                    "name": entry.name,
                    "type": "directory" if entry.is_dir() else "file",
                }
                if entry.is_file():
                    item["size"] = entry.stat().st_size
                items.append(item)
        except OSError as e:
            raise ToolExecutionError(f"Error listing directory: {e.strerror or e}") from e

        result = self._result(True, "Directory listed successfully", full_path)
        result["items"] = items
        return result

    def create_directory(self, path: str) -> dict[str, Any]:
        full_path = self._resolve(path)
        if full_path.exists():
            return self._result(False, "Directory already exists", full_path)
        try:
            full_path.mkdir(parents=True)
        except OSError as e:
            raise ToolExecutionError(f"Error creating directory: {e.strerror or e}") from e
        return self._result(True, "Directory created successfully", full_path)

    def exists(self, path: str) -> dict[str, Any]:
        full_path = self._resolve(path)
        found = full_path.exists()
        result = self._result(True, "Path exists" if found else "Path does not exist", full_path)
        result["exists"] = found
        return result

    def search_files(self, pattern: str, directory: str = ".") -> dict[str, Any]:
        full_dir = self._resolve(directory)
        if not full_dir.exists():
            return self._result(False, "Search directory not found", full_dir)
        if not full_dir.is_dir():
            return self._result(False, "Search path is not a directory", full_dir)

        regex = re.compile(re.escape(pattern).replace(r"\*", ".*"))
        found: list[str] = []
        try:
            for current, dirs, files in os.walk(full_dir):
                dirs.sort()
                for name in sorted(files):
                    relative = self._relative(Path(current) / name)
                    if regex.fullmatch(name) or regex.fullmatch(relative):
                        found.append(relative)
        except OSError as e:
            raise ToolExecutionError(f"Error searching files: {e.strerror or e}") from e

        result = self._result(
            True, f'Found {len(found)} files matching pattern "{pattern}"', full_dir
        )
        result["files"] = found
        return result

    def _resolve(self, path: str) -> Path:
        """Resolve *path* under the root, rejecting anything outside it."""
        self._root.mkdir(parents=True, exist_ok=True)
        full_path = (self._root / os.path.normpath(path)).resolve()
        if full_path != self._root and self._root not in full_path.parents:
            raise ToolExecutionError(
                f'Access denied: Path "{path}" is outside the allowed directory'
            )
        return full_path

    def _relative(self, full_path: Path) -> str:
        return full_path.relative_to(self._root).as_posix()

    def _result(self, success: bool, message: str, full_path: Path) -> dict[str, Any]:
        relative = self._relative(full_path)
        return {"success": success, "message": f"{message}: {relative}", "path": relative}


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024  # type: ignore[assignment]
    return f"{size:.1f}TB"
