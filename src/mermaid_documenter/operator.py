"""Operator prompt/response channel."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from rich.console import Console
from rich.prompt import Prompt


class Operator(Protocol):
    """Line-oriented channel to the human running the agent."""

    def ask(self, prompt: str) -> str: ...

    def show_questions(self, questions: Sequence[str]) -> None: ...


class ConsoleOperator:
    """Operator backed by the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def ask(self, prompt: str) -> str:
        answer = Prompt.ask(prompt, console=self.console, default="", show_default=False)
        return answer.strip()

    def show_questions(self, questions: Sequence[str]) -> None:
        self.console.print("[bold yellow]Agent needs clarification:[/bold yellow]")
        for question in questions:
            self.console.print(f"- {question}", markup=False)
