"""Shared core types."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class Turn:
    """One message of the run transcript."""

    role: Role
    content: str

    def render(self) -> str:
        return f"{self.role}: {self.content}"


class _Decision(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    kind: ClassVar[str]

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    rationale: str = ""

    @field_validator("rationale", mode="before")
    @classmethod
    def _none_rationale(cls, value: Any) -> Any:
        return "" if value is None else value


class ToolCall(_Decision):
    """Request to execute one tool."""

    kind: ClassVar[str] = "tool_call"

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)

    @field_validator("args", mode="before")
    @classmethod
    def _none_args(cls, value: Any) -> Any:
        return {} if value is None else value


class FinalAnswer(_Decision):
    """Terminal manifest of produced artifacts."""

    kind: ClassVar[str] = "final"

    manifest: dict[str, Any] = Field(default_factory=dict)

    @field_validator("manifest", mode="before")
    @classmethod
    def _none_manifest(cls, value: Any) -> Any:
        return {} if value is None else value


class Clarification(_Decision):
    """Questions the model cannot resolve without the operator."""

    kind: ClassVar[str] = "clarification"

    questions: list[str] = Field(default_factory=list)

    @field_validator("questions", mode="before")
    @classmethod
    def _none_questions(cls, value: Any) -> Any:
        return [] if value is None else value


class UnknownDecision(_Decision):
    """Decision whose type the runtime does not recognize."""

    kind: ClassVar[str] = "unknown"

    type: str


Decision = ToolCall | FinalAnswer | Clarification | UnknownDecision


@dataclass(frozen=True)
class ToolResult:
    """Normalized outcome of one tool dispatch."""

    succeeded: bool
    payload: Any = None
    error: str = ""

    @classmethod
    def ok(cls, payload: Any = None) -> ToolResult:
        return cls(succeeded=True, payload=payload)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(succeeded=False, error=error)

    def render(self) -> str:
        if not self.succeeded:
            return json.dumps({"success": False, "error": self.error}, ensure_ascii=False)
        return json.dumps({"success": True, "data": self.payload}, ensure_ascii=False, default=str)


class FailureReason(StrEnum):
    BUDGET_EXCEEDED = "budget_exceeded"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    DECODE_ERROR = "decode_error"
    UPSTREAM_ERROR = "upstream_error"
    FAILURE_STREAK = "failure_streak"


@dataclass(frozen=True)
class Completed:
    manifest: dict[str, Any]


@dataclass(frozen=True)
class Failed:
    reason: FailureReason
    detail: str = ""


@dataclass(frozen=True)
class ClarificationNeeded:
    questions: list[str]


RunOutcome = Completed | Failed | ClarificationNeeded


@dataclass
class RunState:
    """Mutable per-run state owned by the controller."""

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    step: int = 0
    consecutive_failures: int = 0
    turns: list[Turn] = field(default_factory=list)

    def append(self, role: Role, content: str) -> None:
        self.turns.append(Turn(role=role, content=content))


@dataclass(frozen=True)
class RunConfig:
    """Everything one run needs to know about its environment."""

    provider: str
    model: str
    api_key: str
    output_dir: Path
    logs_dir: Path
    home: Path
    max_steps: int = 25
    timeout_seconds: float | None = 300
    confidence_threshold: float = 0.90
    project_root: Path | None = None
    verbose: bool = False
    documentation_types: tuple[str, ...] = ()
    charge_low_confidence: bool = True
    max_failure_streak: int = 3
    api_base: str | None = None
    max_tokens: int = 4096
