"""Mermaid Documenter - transcripts in, Mermaid documentation out."""

from .app import run
from .core import ConversationController, PathSandbox, StructuredOutputDecoder
from .tools import ToolRegistry

__version__ = "0.1.0"

__all__ = ["ConversationController", "PathSandbox", "StructuredOutputDecoder", "ToolRegistry", "run"]
