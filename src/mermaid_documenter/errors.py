"""Application-level exception types for Mermaid Documenter."""

from __future__ import annotations


class MermaidDocumenterError(Exception):
    """Base exception for Mermaid Documenter."""


class ConfigurationError(MermaidDocumenterError):
    """Base exception for configuration and startup validation errors."""


class ApiKeyNotConfiguredError(ConfigurationError):
    """Raised when an API key is required but missing."""


class TranscriptNotFoundError(ConfigurationError):
    """Raised when the transcript file cannot be located."""


class UpstreamError(MermaidDocumenterError):
    """Raised when the model provider reports a transport or account failure."""


class DecodeError(MermaidDocumenterError):
    """Raised when model output cannot be repaired into a decision."""

    def __init__(self, message: str, *, preview: str = "", cause: str | None = None) -> None:
        self.preview = preview
        self.cause = cause
        detail = message
        if cause:
            detail = f"{detail}: {cause}"
        if preview:
            detail = f"{detail}. First object: {preview}"
        super().__init__(detail)


class ToolError(MermaidDocumenterError):
    """Raised inside a tool handler; the registry turns it into a failed result."""


class SandboxViolation(ToolError):
    """Raised when a tool argument resolves outside every sandbox root."""


class RendererError(ToolError):
    """Raised when the external diagram renderer fails."""

    def __init__(self, message: str, *, category: str) -> None:
        self.category = category
        super().__init__(message)
