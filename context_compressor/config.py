"""Pydantic models for compressor configuration and config file loading."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from context_compressor import constants

# --- Config File Loading ---

CONFIG_PATH = Path.home() / ".config" / "context-compressor" / "config.toml"
CONFIG_PATH_2 = Path("context-compressor.toml")


class ConfigError(ValueError):
    """Raised when a config file cannot be parsed."""


def _replace_dashed_keys_recursive(d: dict[str, Any]) -> dict[str, Any]:
    """Recursively replace dashed keys with underscores in a dictionary."""
    new_dict = {}
    for k, v in d.items():
        new_key = k.replace("-", "_")
        if isinstance(v, dict):
            new_dict[new_key] = _replace_dashed_keys_recursive(v)
        else:
            new_dict[new_key] = v
    return new_dict


def load_config(config_path_str: str | None = None) -> dict[str, Any]:
    """Load the TOML configuration file and process it for nested structures.

    An explicitly given path that does not exist raises ``FileNotFoundError``;
    the default locations are optional. A file that is not valid TOML raises
    ``ConfigError``.
    """
    if config_path_str:
        config_path = Path(config_path_str).expanduser()
        if not config_path.exists():
            msg = f"Config file not found at {config_path}"
            raise FileNotFoundError(msg)
    elif CONFIG_PATH.exists():
        config_path = CONFIG_PATH
    elif CONFIG_PATH_2.exists():
        config_path = CONFIG_PATH_2
    else:
        return {}

    try:
        with config_path.open("rb") as f:
            cfg = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Error parsing config file {config_path}: {e}"
        raise ConfigError(msg) from e
    return _replace_dashed_keys_recursive(cfg)


# --- Compression Options ---


class CompressionLevel(str, Enum):
    """Named presets for how much history to hand downstream."""

    MINIMAL = "MINIMAL"
    BALANCED = "BALANCED"
    COMPREHENSIVE = "COMPREHENSIVE"


class CompressionOptions(BaseModel):
    """Limits and toggles for one compression request.

    Defaults are the BALANCED preset. Use :meth:`for_level` to start from
    another preset.
    """

    level: CompressionLevel = CompressionLevel.BALANCED
    max_recent_messages: int = Field(10, ge=0)
    max_summaries: int = Field(5, ge=0)
    max_context_items: int = Field(8, ge=0)
    relevance_threshold: float = Field(0.4, ge=0.0, le=1.0)
    time_range_hours: float = Field(24, gt=0)
    include_store_context: bool = True
    force_refresh: bool = False

    PRESETS: ClassVar[dict[CompressionLevel, dict[str, Any]]] = {
        CompressionLevel.MINIMAL: {
            "max_recent_messages": 5,
            "max_summaries": 2,
            "max_context_items": 5,
            "relevance_threshold": 0.6,
            "time_range_hours": 12,
        },
        CompressionLevel.BALANCED: {
            "max_recent_messages": 10,
            "max_summaries": 5,
            "max_context_items": 8,
            "relevance_threshold": 0.4,
            "time_range_hours": 24,
        },
        CompressionLevel.COMPREHENSIVE: {
            "max_recent_messages": 15,
            "max_summaries": 8,
            "max_context_items": 12,
            "relevance_threshold": 0.3,
            "time_range_hours": 48,
        },
    }

    @classmethod
    def for_level(
        cls,
        level: CompressionLevel | str,
        **overrides: Any,
    ) -> CompressionOptions:
        """Build options from a named preset, then apply ``overrides``."""
        level = CompressionLevel(level)
        values = {"level": level, **cls.PRESETS[level], **overrides}
        return cls(**values)

    @classmethod
    def from_partial(
        cls,
        options: CompressionOptions | dict[str, Any] | None,
    ) -> CompressionOptions:
        """Merge a partial mapping over the defaults (or its level's preset).

        A ``CompressionOptions`` instance is returned unchanged: its numbers
        are taken as given, so ``CompressionOptions(level=MINIMAL)`` keeps the
        BALANCED defaults. Use ``for_level`` or a mapping with a ``level`` key
        to get a preset.
        """
        if options is None:
            return cls()
        if isinstance(options, CompressionOptions):
            return options
        partial = dict(options)
        level = partial.pop("level", CompressionLevel.BALANCED)
        return cls.for_level(level, **partial)


# --- Language-generation collaborator ---


@dataclass
class LLMConfig:
    """Connection settings for the OpenAI-compatible summarization endpoint.

    Example:
        config = LLMConfig(
            openai_base_url="http://localhost:8000/v1",
            model="gpt-4o-mini",
        )
        generator = OpenAITextGenerator(config)

    """

    openai_base_url: str
    model: str
    api_key: str | None = None
    temperature: float = 0.1
    max_tokens: int = 500
    timeout: float = constants.DEFAULT_SUMMARY_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        """Normalize the base URL."""
        self.openai_base_url = self.openai_base_url.rstrip("/")
        if self.api_key is None:
            self.api_key = "not-needed"

    @classmethod
    def from_env(cls, model: str, **kwargs: Any) -> LLMConfig:
        """Build a config from ``OPENAI_BASE_URL`` and ``OPENAI_API_KEY``."""
        return cls(
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            model=model,
            api_key=os.environ.get("OPENAI_API_KEY"),
            **kwargs,
        )


# --- Cache ---


class CacheConfig(BaseModel):
    """Configuration for the process-local context cache."""

    ttl_seconds: float = Field(constants.DEFAULT_CACHE_TTL_SECONDS, gt=0)
    sweep_interval_seconds: float | None = Field(
        None,
        gt=0,
        description="Run a background purge at this interval (None disables it)",
    )
