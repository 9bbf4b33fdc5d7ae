"""Tools package for Mermaid Documenter."""

from .registry import ToolDescriptor, ToolRegistry

__all__ = ["ToolDescriptor", "ToolRegistry"]
