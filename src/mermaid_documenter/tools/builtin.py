"""Built-in tool definitions."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal
from urllib import error as urllib_error
from urllib.request import Request, urlopen

import html2markdown
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from mermaid_documenter.core.sandbox import PathSandbox
from mermaid_documenter.core.types import ToolResult
from mermaid_documenter.errors import ToolError
from mermaid_documenter.operator import Operator
from mermaid_documenter.tools.registry import ToolRegistry
from mermaid_documenter.tools.render import MermaidRenderer

MERMAID_DOCS_BASE_URL = "https://mermaid.js.org"
MERMAID_DOCS_INDEX = "/config/diagrams-and-syntaxes.html"
WEB_REQUEST_TIMEOUT_SECONDS = 20
MAX_FETCH_BYTES = 1_000_000
WEB_USER_AGENT = "mermaid-documenter/0.1"
EVENTS_FILE = "events.jsonl"


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ReadDirectoriesInput(_ToolInput):
    path: str = Field(..., description="Path to directory to list contents of")


class ReadFileInput(_ToolInput):
    path: str = Field(..., description="Path to the file to read")
    max_bytes: int | None = Field(default=None, alias="maxBytes", description="Maximum number of bytes to read")


class WriteFileInput(_ToolInput):
    path: str = Field(..., description="Path to the file to write")
    content: str = Field(..., description="Content to write to the file")
    create_dirs: bool = Field(default=True, alias="createDirs", description="Create missing parent directories")
    overwrite: Literal["allow", "explicit"] = Field(
        default="allow", description="'explicit' fails when the file exists, 'allow' overwrites it"
    )


class FetchDocumentationInput(_ToolInput):
    topic: str | None = Field(default=None, description="Specific Mermaid topic, e.g. sequenceDiagram")
    version: str | None = Field(default=None, description="Mermaid version (informational)")


class LogEventInput(_ToolInput):
    level: Literal["debug", "info", "warn", "error"] = Field(..., description="Log level")
    message: str = Field(..., description="Log message")
    data: dict[str, Any] | None = Field(default=None, description="Optional additional data to log")


class UserInputInput(_ToolInput):
    prompt: str = Field(..., description="Prompt message to display to the user")


class GenerateImageInput(_ToolInput):
    input_file: str = Field(..., alias="inputFile", description="Markdown file containing Mermaid diagrams")
    output_file: str = Field(..., alias="outputFile", description="Output image name, extension optional")
    format: Literal["svg", "png", "pdf"] = Field(default="svg", description="Output format")
    create_dirs: bool = Field(default=True, alias="createDirs", description="Create missing output directories")


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    sandbox: PathSandbox,
    output_dir: Path,
    events_dir: Path,
    operator: Operator,
    renderer: MermaidRenderer | None = None,
    project_root: Path | None = None,
) -> None:
    """Register built-in tools bound to one run's sandbox."""

    register = registry.register
    renderer = renderer or MermaidRenderer()
    events_lock = threading.Lock()

    @register(name="readDirectories", short_description="List files and directories", model=ReadDirectoriesInput)
    def read_directories(params: ReadDirectoriesInput) -> dict[str, list[str]]:
        """List the directories and files directly under a path."""
        base = sandbox.require(params.path)
        if not base.is_dir():
            raise ToolError(f"not a directory: {base}")
        directories: list[str] = []
        files: list[str] = []
        for entry in sorted(base.iterdir()):
            (directories if entry.is_dir() else files).append(str(entry))
        return {"directories": directories, "files": files}

    @register(name="readFileContents", short_description="Read the contents of a file", model=ReadFileInput)
    def read_file_contents(params: ReadFileInput) -> dict[str, Any]:
        """Read UTF-8 text, optionally bounded to maxBytes."""
        file_path = sandbox.require(params.path)
        limit = params.max_bytes if params.max_bytes is not None and params.max_bytes > 0 else None
        with file_path.open("rb") as handle:
            data = handle.read() if limit is None else handle.read(limit)
            truncated = limit is not None and bool(handle.read(1))
        return {"path": str(file_path), "content": data.decode("utf-8", errors="replace"), "truncated": truncated}

    @register(name="writeFileContents", short_description="Write content to a file", model=WriteFileInput)
    def write_file_contents(params: WriteFileInput) -> dict[str, Any]:
        """Write UTF-8 text, honouring the overwrite policy."""
        file_path = sandbox.require(params.path)
        if params.create_dirs:
            file_path.parent.mkdir(parents=True, exist_ok=True)
        if file_path.exists() and params.overwrite == "explicit":
            raise ToolError("File exists and overwrite is set to 'explicit'. Use overwrite='allow' to overwrite.")
        file_path.write_text(params.content, encoding="utf-8")
        return {"path": str(file_path), "bytesWritten": len(params.content.encode("utf-8"))}

    @register(
        name="fetchMermaidDocumentation",
        short_description="Fetch Mermaid documentation and syntax information",
        model=FetchDocumentationInput,
    )
    def fetch_mermaid_documentation(params: FetchDocumentationInput) -> dict[str, Any]:
        """Fetch the syntax page for a topic, falling back to the diagram index."""
        index_url = MERMAID_DOCS_BASE_URL + MERMAID_DOCS_INDEX
        if params.topic and params.topic.strip():
            topic_url = f"{MERMAID_DOCS_BASE_URL}/syntax/{params.topic.strip().lower()}.html"
            try:
                return _fetch_markdown(topic_url)
            except ToolError as exc:
                logger.info("docs.fetch.fallback topic={} error={}", params.topic, exc)
        return _fetch_markdown(index_url)

    @register(name="logEvent", short_description="Log an event with level and message", model=LogEventInput)
    def log_event(params: LogEventInput) -> dict[str, bool]:
        """Append one structured event to the events log."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": params.level,
            "message": params.message,
        }
        if params.data is not None:
            entry["data"] = params.data
        events_dir.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with events_lock, (events_dir / EVENTS_FILE).open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        return {"logged": True}

    @register(name="getUserInput", short_description="Get interactive input from the user", model=UserInputInput)
    def get_user_input(params: UserInputInput) -> dict[str, str]:
        """Ask the operator one question and return the answer."""
        try:
            answer = operator.ask(params.prompt)
        except (EOFError, KeyboardInterrupt) as exc:
            raise ToolError(f"Failed to read user input: {exc!r}") from exc
        return {"answer": answer}

    @register(
        name="generateMermaidImage",
        short_description="Generate SVG/PNG/PDF images from Mermaid diagram files",
        model=GenerateImageInput,
    )
    def generate_mermaid_image(params: GenerateImageInput) -> ToolResult:
        """Render a Markdown file containing Mermaid diagrams with the Mermaid CLI."""
        input_file = sandbox.require(params.input_file)
        if not input_file.is_file():
            raise ToolError(f"Input file does not exist: {input_file}")

        output_file = sandbox.require(_image_target(params.output_file, params.format, output_dir, project_root))
        if params.create_dirs:
            output_file.parent.mkdir(parents=True, exist_ok=True)

        command_output = renderer.render(input_file, output_file)
        return ToolResult.ok(
            {
                "inputFile": str(input_file),
                "outputFile": str(output_file),
                "format": params.format,
                "commandOutput": command_output,
            }
        )


def _image_target(raw: str, fmt: str, output_dir: Path, project_root: Path | None) -> Path:
    name = Path(raw).expanduser().name
    if not name.endswith(f".{fmt}"):
        name = f"{name}.{fmt}"
    if project_root is not None:
        return project_root / "out" / name
    return output_dir / name


def _fetch_markdown(url: str) -> dict[str, Any]:
    request = Request(  # noqa: S310
        url,
        headers={
            "User-Agent": WEB_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        },
    )
    try:
        with urlopen(request, timeout=WEB_REQUEST_TIMEOUT_SECONDS) as response:  # noqa: S310
            body_bytes = response.read(MAX_FETCH_BYTES + 1)
            truncated = len(body_bytes) > MAX_FETCH_BYTES
            if truncated:
                body_bytes = body_bytes[:MAX_FETCH_BYTES]
            charset = response.headers.get_content_charset() or "utf-8"
    except urllib_error.HTTPError as exc:
        raise ToolError(f"Failed to fetch Mermaid documentation: HTTP {exc.code}") from exc
    except (urllib_error.URLError, OSError) as exc:
        raise ToolError(f"Failed to fetch Mermaid documentation: {exc!s}") from exc

    rendered = _html_to_markdown(body_bytes.decode(charset, errors="replace"))
    if not rendered:
        raise ToolError("Failed to fetch Mermaid documentation: empty response body")
    return {"url": url, "content": rendered, "truncated": truncated}


def _html_to_markdown(content: str) -> str:
    rendered = html2markdown.convert(content)
    lines = [line.rstrip() for line in rendered.splitlines()]
    return "\n".join(line for line in lines if line.strip())
