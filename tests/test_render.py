import subprocess
from pathlib import Path
from typing import Any

import pytest

from mermaid_documenter.errors import RendererError
from mermaid_documenter.tools.render import MermaidRenderer, RenderFailure, classify_render_failure


@pytest.mark.parametrize(
    ("output", "category"),
    [
        ("Error: No diagram found in input", RenderFailure.DIAGRAM_NOT_FOUND),
        ("Found 3 mermaid charts in Markdown input", RenderFailure.MULTIPLE_DIAGRAMS),
        ("Syntax error in text", RenderFailure.SYNTAX_ERROR),
        ("at Parser3.parseError (mermaid.js:1)", RenderFailure.SYNTAX_ERROR),
        ("Output file was not created", RenderFailure.OUTPUT_NOT_PRODUCED),
        ("Segmentation fault", RenderFailure.RENDERER_FAILED),
    ],
)
def test_classify_render_failure(output: str, category: RenderFailure) -> None:
    assert classify_render_failure(output, "flow.md").category == category


def test_single_chart_count_is_not_multiple_diagrams() -> None:
    diagnosis = classify_render_failure("Found 1 mermaid charts in Markdown input\nboom", "flow.md")
    assert diagnosis.category == RenderFailure.RENDERER_FAILED
    assert diagnosis.message.startswith("Mermaid CLI error: ")


def test_parse_error_reports_line() -> None:
    diagnosis = classify_render_failure("Error: Parse error on line 4:\n...PK string id\n", "er.md")
    assert diagnosis.category == RenderFailure.SYNTAX_ERROR
    assert diagnosis.line == 4
    assert diagnosis.message.startswith("Mermaid parsing error on line 4")


def test_missing_cli_is_reported(monkeypatch: Any) -> None:
    monkeypatch.setattr("mermaid_documenter.tools.render.shutil.which", lambda _name: None)
    with pytest.raises(RendererError) as exc_info:
        MermaidRenderer().render(Path("in.md"), Path("out.svg"))
    assert exc_info.value.category == RenderFailure.RENDERER_NOT_FOUND
    assert "npm install -g @mermaid-js/mermaid-cli" in str(exc_info.value)


def _patch_cli(monkeypatch: Any, returncode: int, stdout: str = "", stderr: str = "", write_output: bool = True):
    observed: dict[str, Any] = {}

    class _Completed:
        pass

    def _fake_run(args: list[str], **kwargs: Any) -> _Completed:
        observed["args"] = args
        observed["kwargs"] = kwargs
        if write_output:
            Path(args[-1]).write_text("<svg/>")
        completed = _Completed()
        completed.returncode = returncode
        completed.stdout = stdout
        completed.stderr = stderr
        return completed

    monkeypatch.setattr("mermaid_documenter.tools.render.shutil.which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr("mermaid_documenter.tools.render.subprocess.run", _fake_run)
    return observed


def test_render_invokes_cli(tmp_path: Path, monkeypatch: Any) -> None:
    observed = _patch_cli(monkeypatch, 0, stdout="Generating single mermaid chart")
    output = tmp_path / "flow.svg"

    result = MermaidRenderer(timeout_seconds=5).render(tmp_path / "flow.md", output)

    assert result == "Generating single mermaid chart"
    assert observed["args"] == ["/usr/bin/mmdc", "-i", str(tmp_path / "flow.md"), "-o", str(output)]
    assert observed["kwargs"]["timeout"] == 5


def test_render_nonzero_exit_is_classified(tmp_path: Path, monkeypatch: Any) -> None:
    _patch_cli(monkeypatch, 1, stderr="Error: No diagram found", write_output=False)
    with pytest.raises(RendererError) as exc_info:
        MermaidRenderer().render(tmp_path / "flow.md", tmp_path / "flow.svg")
    assert exc_info.value.category == RenderFailure.DIAGRAM_NOT_FOUND


def test_render_without_output_file(tmp_path: Path, monkeypatch: Any) -> None:
    _patch_cli(monkeypatch, 0, write_output=False)
    with pytest.raises(RendererError) as exc_info:
        MermaidRenderer().render(tmp_path / "flow.md", tmp_path / "flow.svg")
    assert exc_info.value.category == RenderFailure.OUTPUT_NOT_PRODUCED


def test_render_timeout(tmp_path: Path, monkeypatch: Any) -> None:
    def _slow_run(args: list[str], **kwargs: Any) -> None:
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr("mermaid_documenter.tools.render.shutil.which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr("mermaid_documenter.tools.render.subprocess.run", _slow_run)
    with pytest.raises(RendererError, match="timed out"):
        MermaidRenderer(timeout_seconds=1).render(tmp_path / "flow.md", tmp_path / "flow.svg")
