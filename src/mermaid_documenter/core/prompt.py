"""Prompt construction for the documenter agent."""

from __future__ import annotations

import json
from collections.abc import Sequence

from mermaid_documenter.core.types import Turn

DEFAULT_DOCUMENT_NAME = "summary"

LOW_CONFIDENCE_PROMPT = (
    "Your confidence is below the threshold. Please provide clarification or reconsider your approach."
)
RETRY_INSTRUCTION = (
    "Please fix the issue and try again, or return a final manifest if you cannot resolve it. "
    "You MUST respond with valid JSON tool calls or final manifest."
)
MERMAID_SYNTAX_HINT = (
    "This is likely due to invalid Mermaid syntax. Check your diagram syntax, especially ER diagrams "
    "which should use simple attribute names. "
)

_BASE_PROMPT = """You are Mermaid Documenter Agent.

TASK: Create documentation with Mermaid diagrams and generate SVG images.

REQUIRED SEQUENCE:
1. FIRST: Use writeFileContents to create {document}.md with VALID Mermaid diagrams
2. SECOND: Use generateMermaidImage to convert the Markdown file to SVG images
3. THIRD: Return final manifest ONLY after both files are created

FILE PATH REQUIREMENTS:
- ALWAYS use the EXACT filename you created in writeFileContents (e.g., "{document}.md")
- Use relative file names; they are placed in the output directory for you

MERMAID SYNTAX RULES:
- For ER diagrams: use simple attribute names without types
- For sequence diagrams: use simple participant names without spaces
- Limit files to ONE diagram type to avoid parsing conflicts
- Keep syntax simple and avoid special characters

ERROR HANDLING:
- If generateMermaidImage fails, the error message will contain specific syntax issues
- Fix the identified syntax problems and try again

IMPORTANT: You MUST call generateMermaidImage as a separate tool call after creating the Markdown file.
Do NOT claim image generation in the final manifest unless you actually called generateMermaidImage."""

_OPENAI_PROMPT = """OPENAI-SPECIFIC INSTRUCTIONS:
- ALWAYS follow this EXACT sequence: writeFileContents -> generateMermaidImage -> final manifest
- NEVER call generateMermaidImage before creating the file with writeFileContents
- NEVER combine tool calls in a single response
- Wait for tool results before proceeding to the next step"""

_EXAMPLE_CONTENT = (
    "## Summary\n\nThe transcript describes an application.\n\n```mermaid\ngraph TD\n    A[User] --> B[App]\n```"
)


def _response_contract(document: str) -> str:
    write_call = {
        "type": "tool_call",
        "tool": "writeFileContents",
        "args": {"path": f"{document}.md", "content": _EXAMPLE_CONTENT, "overwrite": "allow"},
        "confidence": 0.95,
        "rationale": "creating documentation",
    }
    render_call = {
        "type": "tool_call",
        "tool": "generateMermaidImage",
        "args": {"inputFile": f"{document}.md", "outputFile": document, "format": "svg"},
        "confidence": 0.95,
        "rationale": "generating SVG images",
    }
    final = {
        "type": "final",
        "manifest": {f"{document}.md": "created", f"{document}.svg": "generated"},
        "confidence": 0.95,
        "rationale": "documentation complete",
    }
    clarification = {
        "type": "clarification",
        "questions": ["Which service owns the checkout flow?"],
        "confidence": 0.5,
        "rationale": "the transcript is ambiguous",
    }
    return "\n\n".join(
        [
            "Return ONLY one JSON object per reply:",
            f"TOOL CALL 1 (create documentation):\n{json.dumps(write_call)}",
            f"TOOL CALL 2 (generate images):\n{json.dumps(render_call)}",
            f"FINAL RESULT (only after both steps complete):\n{json.dumps(final)}",
            f"CLARIFICATION (only when the transcript cannot be documented):\n{json.dumps(clarification)}",
        ]
    )


def build_system_prompt(*, provider: str, tools_block: str, documentation_types: Sequence[str] = ()) -> str:
    """Render the system prompt for one run."""
    document = "_".join(documentation_types) if documentation_types else DEFAULT_DOCUMENT_NAME
    blocks = [_BASE_PROMPT.format(document=document)]
    if provider == "openai":
        blocks.append(_OPENAI_PROMPT)
    if tools_block:
        blocks.append(f"AVAILABLE TOOLS:\n{tools_block}")
    blocks.append(_response_contract(document))
    return "\n\n".join(blocks)


def build_user_prompt(transcript: str) -> str:
    return f"Please analyze this application transcript and generate Mermaid documentation:\n\n{transcript}"


def render_conversation(turns: Sequence[Turn]) -> str:
    """Flatten the transcript into the single prompt string providers receive."""
    return "".join(turn.render() + "\n" for turn in turns)


def tool_failure_prompt(error: str) -> str:
    message = f"Tool execution failed: {error}. "
    if "Mermaid" in error and ("syntax" in error or "parsing" in error or "CLI error" in error):
        message += MERMAID_SYNTAX_HINT
    return message + RETRY_INSTRUCTION
