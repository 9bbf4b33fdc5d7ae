from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from mermaid_documenter.core.types import RunConfig


class ScriptedProvider:
    """Returns canned replies in order and records every prompt."""

    def __init__(self, replies: Sequence[str | Exception]) -> None:
        self._replies = list(replies)
        self.prompts: list[str] = []
        self.on_call: Callable[[int], None] | None = None

    def generate(self, prompt: str, model: str, api_key: str) -> str:
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call(len(self.prompts))
        if not self._replies:
            raise AssertionError("provider called more often than scripted")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeOperator:
    def __init__(self, answers: Sequence[str] = ()) -> None:
        self.answers = list(answers)
        self.asked: list[str] = []
        self.questions: list[str] = []

    def ask(self, prompt: str) -> str:
        self.asked.append(prompt)
        return self.answers.pop(0) if self.answers else ""

    def show_questions(self, questions: Sequence[str]) -> None:
        self.questions.extend(questions)


@pytest.fixture
def run_config(tmp_path: Path) -> RunConfig:
    home = tmp_path / "home"
    home.mkdir()
    return RunConfig(
        provider="openai",
        model="test-model",
        api_key="sk-test",
        output_dir=home / "output",
        logs_dir=home / "logs",
        home=home,
        max_steps=10,
        timeout_seconds=None,
        confidence_threshold=0.9,
    )


@pytest.fixture
def operator() -> FakeOperator:
    return FakeOperator()
