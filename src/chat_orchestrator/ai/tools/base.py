"""Closed tool vocabulary exposed to the model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class ToolKind(StrEnum):
    REFERENCE_QA = "referenceQA"
    READ_FILE = "readFile"
    WRITE_FILE = "writeFile"
    CREATE_DIRECTORY = "createDirectory"
    DELETE_PATH = "deletePath"
    LIST_DIRECTORY = "listDirectory"
    EXISTS = "exists"
    SEARCH_FILES = "searchFiles"


class ToolExecutionError(Exception):
    """A tool call failed; the message is returned to the model as an error result."""


@dataclass(frozen=True)
class ToolSpec:
    """Name, description and fixed input model of one tool."""

    kind: ToolKind
    description: str
    input_model: type[BaseModel]

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
