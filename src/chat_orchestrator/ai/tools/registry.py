"""Tool registry: the closed set of tools and their single dispatch point."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ValidationError

from chat_orchestrator.ai.tools.base import ToolExecutionError, ToolKind, ToolSpec
from chat_orchestrator.ai.tools.filesystem import (
    ListDirectoryInput,
    PathInput,
    SandboxFileSystem,
    SearchFilesInput,
    WriteFileInput,
)
from chat_orchestrator.ai.tools.reference import ReferenceLibrary, ReferenceQuestionInput
from chat_orchestrator.log import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of the tools offered to the model."""

    def __init__(
        self,
        filesystem: SandboxFileSystem,
        reference: ReferenceLibrary,
        enabled: Iterable[str] | None = None,
    ):
        self._fs = filesystem
        self._reference = reference
        specs = self._build_specs()

        if enabled is None:
            self._tools = specs
        else:
            self._tools = {}
            for name in enabled:
                try:
                    kind = ToolKind(name)
                except ValueError:
                    logger.warning("unknown_tool_configured", tool_name=name)
                    continue
                self._tools[kind] = specs[kind]

        for kind in self._tools:
            logger.debug("tool_registered", tool_name=kind.value)

    def _build_specs(self) -> dict[ToolKind, ToolSpec]:
        return {
            spec.kind: spec
            for spec in (
                ToolSpec(ToolKind.REFERENCE_QA, self._reference.description, ReferenceQuestionInput),
                ToolSpec(
                    ToolKind.READ_FILE,
                    "Read the content of a file in the sandbox.",
                    PathInput,
                ),
                ToolSpec(
                    ToolKind.WRITE_FILE,
                    "Write text content to a file in the sandbox, creating parent "
                    "directories and replacing any existing content.",
                    WriteFileInput,
                ),
                ToolSpec(
                    ToolKind.CREATE_DIRECTORY,
                    "Create a directory (and missing parents) in the sandbox.",
                    PathInput,
                ),
                ToolSpec(
                    ToolKind.DELETE_PATH,
                    "Delete a file, or a directory with everything in it, from the sandbox.",
                    PathInput,
                ),
                ToolSpec(
                    ToolKind.LIST_DIRECTORY,
                    "List the files and directories of a sandbox directory.",
                    ListDirectoryInput,
                ),
                ToolSpec(
                    ToolKind.EXISTS,
                    "Check whether a file or directory exists in the sandbox.",
                    PathInput,
                ),
                ToolSpec(
                    ToolKind.SEARCH_FILES,
                    "Search the sandbox recursively for files whose name or relative "
                    "path matches a pattern ('*' is a wildcard).",
                    SearchFilesInput,
                ),
            )
        }

    def get(self, name: str) -> ToolSpec | None:
        try:
            return self._tools.get(ToolKind(name))
        except ValueError:
            return None

    def all_tools(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def api_definitions(self) -> list[dict[str, Any]]:
        return [spec.to_api_dict() for spec in self._tools.values()]

    async def execute(self, name: str, raw_input: dict[str, Any] | None) -> Any:
        """Validate the input and run one tool call.

        Raises ToolExecutionError for unknown tools, invalid input, and
        failures inside the tool.
        """
        spec = self.get(name)
        if spec is None:
            raise ToolExecutionError(f"Unknown tool '{name}'")

        try:
            args = spec.input_model.model_validate(raw_input or {})
        except ValidationError as e:
            raise ToolExecutionError(f"Invalid input for {name}: {_summarize(e)}") from e

        return await self._dispatch(spec.kind, args)

    async def _dispatch(self, kind: ToolKind, args: BaseModel) -> Any:
        fs = self._fs
        match kind:
            case ToolKind.REFERENCE_QA:
                return await self._reference.answer(args.question)
            case ToolKind.READ_FILE:
                return await asyncio.to_thread(fs.read_file, args.path)
            case ToolKind.WRITE_FILE:
                return await asyncio.to_thread(fs.write_file, args.path, args.content)
            case ToolKind.CREATE_DIRECTORY:
                return await asyncio.to_thread(fs.create_directory, args.path)
            case ToolKind.DELETE_PATH:
                return await asyncio.to_thread(fs.delete_path, args.path)
            case ToolKind.LIST_DIRECTORY:
                return await asyncio.to_thread(fs.list_directory, args.path)
            case ToolKind.EXISTS:
                return await asyncio.to_thread(fs.exists, args.path)
            case ToolKind.SEARCH_FILES:
                return await asyncio.to_thread(fs.search_files, args.pattern, args.directory)
            case _:
                raise ToolExecutionError(f"Unknown tool '{kind}'")


def _summarize(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in error.errors()
    )
