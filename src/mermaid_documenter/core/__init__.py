"""Core module for Mermaid Documenter."""

from .controller import ConversationController
from .decoder import StructuredOutputDecoder
from .sandbox import PathSandbox

__all__ = ["ConversationController", "PathSandbox", "StructuredOutputDecoder"]
