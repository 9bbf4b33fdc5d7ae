"""Configuration management for Mermaid Documenter."""

from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.types import RunConfig
from .errors import ApiKeyNotConfiguredError, ConfigurationError
from .providers import SUPPORTED_PROVIDERS

DEFAULT_HOME = Path("~/mermaid-agent-documenter")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="MAD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    DEFAULT_MODELS: ClassVar[dict[str, str]] = {
        "openai": "gpt-5-mini",
        "anthropic": "claude-3-5-sonnet-latest",
        "google": "gemini-2.5-flash",
    }
    API_KEY_ENV: ClassVar[dict[str, str]] = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "google": "GOOGLE_API_KEY",
    }

    # Model
    provider: str = Field(default="openai", description="LLM provider (openai, anthropic, google)")
    model: str | None = Field(default=None, description="Model name; defaults per provider")
    api_key: str | None = Field(default=None, description="API key for the provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    max_tokens: int = Field(default=4096, ge=1, description="Maximum tokens per completion")

    # Filesystem
    home: Path = Field(default=DEFAULT_HOME, description="Private working area")
    out_dir: Path | None = Field(default=None, description="Output directory for generated documents")
    logs_dir: Path | None = Field(default=None, description="Directory for run logs")
    project_root: Path | None = Field(default=None, description="Active project root")

    # Limits
    max_steps: int = Field(default=25, ge=1, description="Maximum controller iterations per run")
    run_timeout_seconds: int = Field(default=300, ge=0, description="Wall-clock limit per run, 0 disables it")
    confidence_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    charge_low_confidence: bool = Field(default=True, description="Low-confidence replies consume a step")

    # Logging
    store_chain_of_thought: bool = Field(default=False, description="Store transcripts and raw replies in run logs")
    log_level: str = Field(default="INFO", description="Log level")

    documentation_types: list[str] = Field(default_factory=list)

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SUPPORTED_PROVIDERS:
            raise ValueError(f"unsupported provider '{value}', expected one of: {', '.join(SUPPORTED_PROVIDERS)}")
        return normalized

    def resolve_home(self) -> Path:
        return self.home.expanduser().resolve()

    def resolve_out_dir(self) -> Path:
        if self.out_dir is not None:
            return self.out_dir.expanduser().resolve()
        if self.project_root is not None:
            return self.project_root.expanduser().resolve() / "out"
        return self.resolve_home() / "output"

    def resolve_logs_dir(self) -> Path:
        if self.logs_dir is not None:
            return self.logs_dir.expanduser().resolve()
        if self.project_root is not None:
            return self.project_root.expanduser().resolve() / "logs"
        return self.resolve_home() / "logs"

    def resolve_project_root(self) -> Path | None:
        if self.project_root is None:
            return None
        root = self.project_root.expanduser().resolve()
        if not root.is_dir():
            raise ConfigurationError(f"project root does not exist: {root}")
        return root

    @property
    def resolved_model(self) -> str:
        return self.model or self.DEFAULT_MODELS[self.provider]

    @property
    def resolved_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        return os.getenv(self.API_KEY_ENV[self.provider]) or None

    def to_run_config(self, *, verbose: bool | None = None) -> RunConfig:
        api_key = self.resolved_api_key
        if not api_key:
            raise ApiKeyNotConfiguredError(
                f"API key for provider '{self.provider}' not found. "
                f"Set MAD_API_KEY or {self.API_KEY_ENV[self.provider]}."
            )
        return RunConfig(
            provider=self.provider,
            model=self.resolved_model,
            api_key=api_key,
            output_dir=self.resolve_out_dir(),
            logs_dir=self.resolve_logs_dir(),
            home=self.resolve_home(),
            max_steps=self.max_steps,
            timeout_seconds=self.run_timeout_seconds or None,
            confidence_threshold=self.confidence_threshold,
            project_root=self.resolve_project_root(),
            verbose=self.store_chain_of_thought if verbose is None else verbose,
            documentation_types=tuple(self.documentation_types),
            charge_low_confidence=self.charge_low_confidence,
            api_base=self.api_base,
            max_tokens=self.max_tokens,
        )
