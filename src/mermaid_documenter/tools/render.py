"""Mermaid CLI renderer."""

from __future__ import annotations

import re
import shutil
import subprocess
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from loguru import logger

from mermaid_documenter.errors import RendererError

MERMAID_CLI = "mmdc"
RENDER_TIMEOUT_SECONDS = 120

_PARSE_LINE_RE = re.compile(r"Parse error on line (\d+)", re.IGNORECASE)
_CHART_COUNT_RE = re.compile(r"Found (\d+) mermaid charts", re.IGNORECASE)


class RenderFailure(StrEnum):
    DIAGRAM_NOT_FOUND = "diagram_not_found"
    MULTIPLE_DIAGRAMS = "multiple_diagrams"
    SYNTAX_ERROR = "syntax_error"
    OUTPUT_NOT_PRODUCED = "output_not_produced"
    RENDERER_NOT_FOUND = "renderer_not_found"
    RENDERER_FAILED = "renderer_failed"


@dataclass(frozen=True)
class RenderDiagnosis:
    category: RenderFailure
    message: str
    line: int | None = None


def classify_render_failure(output: str, input_file: Path | str) -> RenderDiagnosis:
    """Map renderer diagnostics to a failure category and an actionable message."""
    if "No diagram found" in output:
        return RenderDiagnosis(
            RenderFailure.DIAGRAM_NOT_FOUND,
            f"No Mermaid diagrams found in file: {input_file}. "
            "Check that diagrams are properly formatted with ```mermaid code blocks.",
        )

    if (match := _CHART_COUNT_RE.search(output)) and int(match.group(1)) > 1:
        return RenderDiagnosis(
            RenderFailure.MULTIPLE_DIAGRAMS,
            f"Multiple diagram types detected in file: {input_file}. "
            "Split into separate files: one for sequence diagrams, one for ER diagrams, etc.",
        )

    if match := _PARSE_LINE_RE.search(output):
        line = int(match.group(1))
        return RenderDiagnosis(
            RenderFailure.SYNTAX_ERROR,
            f"Mermaid parsing error on line {line}: {output.strip()}. Fix the syntax error on the specified line. "
            "For ER diagrams, ensure attributes are simple names without types.",
            line=line,
        )

    if "Syntax error" in output or "Parser3.parseError" in output:
        return RenderDiagnosis(
            RenderFailure.SYNTAX_ERROR,
            f"Mermaid syntax error: {output.strip()}. Common issues: ER diagram attributes should not have types, "
            "avoid special characters in participant names, ensure proper relationship syntax.",
        )

    if "Output file was not created" in output:
        return RenderDiagnosis(
            RenderFailure.OUTPUT_NOT_PRODUCED,
            "Image generation failed - output file was not created. Try simplifying the diagram "
            "(sequence diagrams are most reliable) or check file permissions.",
        )

    return RenderDiagnosis(RenderFailure.RENDERER_FAILED, f"Mermaid CLI error: {output.strip() or 'unknown failure'}")


class MermaidRenderer:
    """Runs the Mermaid CLI to turn a document into an image."""

    def __init__(self, executable: str = MERMAID_CLI, *, timeout_seconds: float = RENDER_TIMEOUT_SECONDS) -> None:
        self._executable = executable
        self._timeout_seconds = timeout_seconds

    def locate(self) -> str:
        located = shutil.which(self._executable)
        if located is None:
            raise RendererError(
                f"Mermaid CLI ({self._executable}) is not installed. "
                "Install it with: npm install -g @mermaid-js/mermaid-cli",
                category=RenderFailure.RENDERER_NOT_FOUND,
            )
        return located

    def render(self, input_file: Path, output_file: Path) -> str:
        """Render input_file to output_file and return the combined CLI output."""
        executable = self.locate()
        logger.info("render.start input={} output={}", input_file, output_file)
        try:
            completed = subprocess.run(  # noqa: S603
                [executable, "-i", str(input_file), "-o", str(output_file)],
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise RendererError(
                f"Mermaid CLI timed out after {self._timeout_seconds}s", category=RenderFailure.RENDERER_FAILED
            ) from exc

        output = "\n".join(part for part in (completed.stdout, completed.stderr) if part)
        if completed.returncode != 0:
            diagnosis = classify_render_failure(output, input_file)
            logger.warning("render.failed category={} exit={}", diagnosis.category, completed.returncode)
            raise RendererError(diagnosis.message, category=diagnosis.category)

        if not output_file.exists():
            raise RendererError(
                f"Output file was not created: {output_file}", category=RenderFailure.OUTPUT_NOT_PRODUCED
            )
        return output
