"""Configuration management for the convo engine.

Loads settings from YAML config file with Pydantic validation.
Config file location: ~/.convo/config.yaml
"""

from __future__ import annotations

import math
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from convo.core.errors import InvalidArgument


# === Default paths ===

def get_convo_home() -> Path:
    """Get the convo data directory (~/.convo)."""
    return Path(os.environ.get("CONVO_HOME", Path.home() / ".convo"))


DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant"

TEMPERATURE_RANGE = (0.0, 2.0)


def clamp_temperature(value: float) -> float:
    """Clamp a sampling temperature into the range the API accepts.

    Raises:
        InvalidArgument: for NaN or infinite values, which have no place
                         in the range.
    """
    value = float(value)
    if not math.isfinite(value):
        raise InvalidArgument(f"temperature must be a finite number, got {value}")
    low, high = TEMPERATURE_RANGE
    return min(max(value, low), high)


# === Configuration Models ===


class ApiConfig(BaseModel):
    """Remote chat-completions endpoint."""

    base_url: str = "https://api.openai.com/v1"
    api_key_env: str | None = "OPENAI_API_KEY"  # Environment variable name for API key
    api_key: str | None = None  # Direct API key (not recommended)
    timeout: float = 60.0  # seconds

    def get_api_key(self) -> str | None:
        """Resolve API key from env var or direct value."""
        if self.api_key_env:
            key = os.environ.get(self.api_key_env)
            if key:
                return key
        return self.api_key


class ChatConfig(BaseModel):
    """Per-engine chat defaults."""

    model: str = "gpt-3.5-turbo"
    temperature: float = 0.8
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tokens: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    @field_validator("temperature")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_temperature(value)


class TruncationConfig(BaseModel):
    """Outgoing history budget (characters = token_limit * chars_per_token)."""

    token_limit: int = 4000
    chars_per_token: int = 4


class StorageConfig(BaseModel):
    """Conversation snapshot backend."""

    backend: str = "sqlite"  # sqlite | json | memory
    path: str | None = None  # Defaults to a file under ~/.convo


class ConvoConfig(BaseModel):
    """Root configuration."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    truncation: TruncationConfig = Field(default_factory=TruncationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = "info"


# === Config Loading ===


def load_config(config_path: Path | None = None) -> ConvoConfig:
    """Load configuration from YAML file.

    Falls back to defaults if the config file doesn't exist.
    """
    if config_path is None:
        config_path = get_convo_home() / "config.yaml"

    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return ConvoConfig(**raw)
    return ConvoConfig()


def save_default_config(config_path: Path | None = None) -> Path:
    """Save the default configuration to a YAML file.

    Creates parent directories if needed. Returns the path.
    """
    if config_path is None:
        config_path = get_convo_home() / "config.yaml"

    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = ConvoConfig().model_dump()

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    return config_path
