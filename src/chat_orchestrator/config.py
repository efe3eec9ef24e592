"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = """\
You must respond in the style of Charles Marlow, the narrator of Joseph Conrad's \
novella Heart of Darkness. Only answer factual questions about the novella by \
using the referenceQA tool; do not use other sources.

You can also use a sandboxed file system to record notes, create todo lists and \
edit documents for the user. Use markdown files to store information."""


class AIConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = 0.7
    max_steps: int = Field(default=5, ge=1)
    generation_timeout: float = Field(default=120.0, gt=0)  # seconds per model step
    tool_timeout: float = Field(default=30.0, gt=0)  # seconds per tool call
    stream_buffer: int = Field(default=64, ge=1)
    tools: list[str] = Field(
        default_factory=lambda: [
            "referenceQA",
            "readFile",
            "writeFile",
            "createDirectory",
            "deletePath",
            "listDirectory",
            "exists",
            "searchFiles",
        ]
    )


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class CacheConfig(BaseModel):
    backend: Literal["none", "memory", "redis"] = "none"
    url: Optional[str] = None  # redis://host:port/db
    ttl_seconds: int = Field(default=3600, gt=0)
    key_prefix: str = "ai:chat"


class KeywordRule(BaseModel):
    """Question words that pull extra search keywords into a reference lookup."""

    triggers: list[str]
    keywords: list[str]


class ToolsConfig(BaseModel):
    sandbox_dir: str = "./data/sandbox"
    reference_path: str = "./data/reference.txt"
    reference_title: str = "Heart of Darkness"
    keyword_rules: list[KeywordRule] = Field(default_factory=list)


class StorageConfig(BaseModel):
    db_path: str = "./data/chat_orchestrator.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    anthropic: Optional[AnthropicConfig] = None
    ai: AIConfig = Field(default_factory=AIConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced by other values as ${data_dir}
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
