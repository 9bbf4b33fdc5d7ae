"""Mermaid Documenter CLI bootstrap."""

from __future__ import annotations

from mermaid_documenter.cli import app

if __name__ == "__main__":
    app()
