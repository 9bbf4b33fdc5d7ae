import dataclasses
import json
import threading
from typing import Any

import pytest
from conftest import FakeOperator, ScriptedProvider
from pydantic import BaseModel, ConfigDict

from mermaid_documenter.app import create_controller, run
from mermaid_documenter.core.controller import ConversationController
from mermaid_documenter.core.prompt import LOW_CONFIDENCE_PROMPT
from mermaid_documenter.core.run_log import read_run_log, run_log_path
from mermaid_documenter.core.types import (
    ClarificationNeeded,
    Completed,
    Failed,
    FailureReason,
    RunConfig,
)
from mermaid_documenter.errors import ToolError, UpstreamError
from mermaid_documenter.tools.registry import ToolRegistry


class TouchInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str | None = None
    inputFile: str | None = None  # noqa: N815
    fail: bool = False


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class Harness:
    """Controller wired to a recording tool and a scripted provider."""

    def __init__(self, config: RunConfig, replies: list[Any], **controller_kwargs: Any) -> None:
        self.config = config
        self.provider = ScriptedProvider(replies)
        self.operator = FakeOperator()
        self.dispatched: list[TouchInput] = []
        self.on_dispatch = None
        self.registry = ToolRegistry()
        self.registry.register(name="touch", short_description="Record a call", model=TouchInput)(self._touch)
        self.controller = ConversationController(
            config=config,
            provider=self.provider,
            registry=self.registry,
            operator=self.operator,
            **controller_kwargs,
        )

    def _touch(self, params: TouchInput) -> dict[str, Any]:
        self.dispatched.append(params)
        if self.on_dispatch is not None:
            self.on_dispatch(params)
        if params.fail:
            raise ToolError("touch failed")
        return {"touched": params.path}

    def run(self, transcript: str = "User signs up, then logs in."):
        return self.controller.run(transcript)

    def log_entries(self) -> list[dict[str, Any]]:
        return read_run_log(run_log_path(self.config.logs_dir, self.controller.state.run_id))


def tool_call(confidence: float = 0.95, tool: str = "touch", **args: Any) -> str:
    return json.dumps({"type": "tool_call", "tool": tool, "args": args, "confidence": confidence, "rationale": "r"})


def final(confidence: float = 0.95, manifest: dict[str, str] | None = None) -> str:
    manifest = {"summary.md": "created"} if manifest is None else manifest
    return json.dumps({"type": "final", "manifest": manifest, "confidence": confidence, "rationale": "done"})


def test_completed_run_rewrites_relative_paths(run_config: RunConfig) -> None:
    harness = Harness(run_config, [tool_call(path="summary.md"), final()])

    outcome = harness.run()

    assert outcome == Completed(manifest={"summary.md": "created"})
    assert [params.path for params in harness.dispatched] == [str(run_config.output_dir / "summary.md")]
    entries = harness.log_entries()
    assert [entry["output_type"] for entry in entries] == ["tool_call", "final"]
    assert [entry["step"] for entry in entries] == [1, 2]
    assert entries[0]["args"] == {"path": str(run_config.output_dir / "summary.md")}
    assert 'Tool result: {"success": true, "data": {"touched":' in harness.provider.prompts[1]


def test_prompt_starts_with_system_prompt_and_transcript(run_config: RunConfig) -> None:
    harness = Harness(run_config, [final()])
    harness.run("Alice orders a book.")

    prompt = harness.provider.prompts[0]
    assert prompt.startswith("system: You are Mermaid Documenter Agent.")
    assert "- touch: Record a call" in prompt
    assert prompt.endswith("Alice orders a book.\n")


def test_log_entry_is_written_before_dispatch(run_config: RunConfig) -> None:
    harness = Harness(run_config, [tool_call(path="a.md"), tool_call(path="b.md"), final()])
    seen: list[int] = []
    harness.on_dispatch = lambda _params: seen.append(len(harness.log_entries()))

    harness.run()

    assert seen == [1, 2]


def test_absolute_and_home_paths_are_not_rewritten(run_config: RunConfig) -> None:
    controller = Harness(run_config, []).controller
    rewritten = controller.rewrite_paths(
        {"path": "/abs/a.md", "inputFile": "~/b.md", "content": "c.md", "outputFile": "d"}
    )
    assert rewritten == {"path": "/abs/a.md", "inputFile": "~/b.md", "content": "c.md", "outputFile": "d"}
    assert controller.rewrite_paths({"inputFile": "x.md"}) == {"inputFile": str(run_config.output_dir / "x.md")}


@pytest.mark.parametrize("low", [tool_call(confidence=0.5, path="a.md"), final(confidence=0.5)])
def test_low_confidence_reply_is_never_acted_on(run_config: RunConfig, low: str) -> None:
    harness = Harness(run_config, [low, final()])

    outcome = harness.run()

    assert isinstance(outcome, Completed)
    assert harness.dispatched == []
    assert harness.provider.prompts[1].endswith(f"assistant: {low}\nsystem: {LOW_CONFIDENCE_PROMPT}\n")
    assert [entry["confidence"] for entry in harness.log_entries()] == [0.5, 0.95]


def test_confidence_equal_to_threshold_is_acted_on(run_config: RunConfig) -> None:
    harness = Harness(run_config, [tool_call(confidence=0.9, path="a.md"), final(confidence=0.9)])
    assert isinstance(harness.run(), Completed)
    assert len(harness.dispatched) == 1


def test_three_consecutive_failures_abort_the_run(run_config: RunConfig) -> None:
    replies = [tool_call(path="a.md", fail=True) for _ in range(4)]
    harness = Harness(run_config, replies)

    outcome = harness.run()

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.FAILURE_STREAK
    assert "touch failed" in outcome.detail
    assert len(harness.dispatched) == 3
    assert len(harness.provider.prompts) == 3


def test_interleaved_successes_reset_the_failure_streak(run_config: RunConfig) -> None:
    replies = [
        tool_call(path="a", fail=True),
        tool_call(path="a", fail=True),
        tool_call(path="a"),
        tool_call(path="a", fail=True),
        tool_call(path="a", fail=True),
        tool_call(path="a"),
        tool_call(path="a", fail=True),
        final(),
    ]
    harness = Harness(run_config, replies)

    outcome = harness.run()

    assert isinstance(outcome, Completed)
    assert len(harness.dispatched) == 7
    assert "system: Tool execution failed: touch failed." in harness.provider.prompts[1]


def test_budget_exceeded_bounds_dispatches(run_config: RunConfig) -> None:
    config = dataclasses.replace(run_config, max_steps=3)
    harness = Harness(config, [tool_call(path="a.md") for _ in range(5)])

    outcome = harness.run()

    assert outcome == Failed(FailureReason.BUDGET_EXCEEDED, "budget exceeded")
    assert len(harness.dispatched) == 3
    assert len(harness.provider.prompts) == 3


def test_low_confidence_replies_consume_budget(run_config: RunConfig) -> None:
    config = dataclasses.replace(run_config, max_steps=2)
    harness = Harness(config, [final(confidence=0.1) for _ in range(5)])

    outcome = harness.run()

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.BUDGET_EXCEEDED
    assert len(harness.provider.prompts) == 2


def test_uncharged_low_confidence_is_bounded_by_timeout(run_config: RunConfig) -> None:
    config = dataclasses.replace(run_config, max_steps=1, timeout_seconds=10, charge_low_confidence=False)
    clock = FakeClock()
    harness = Harness(config, [final(confidence=0.1) for _ in range(5)], clock=clock)
    harness.provider.on_call = lambda _count: setattr(clock, "now", clock.now + 4)

    outcome = harness.run()

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.TIMEOUT
    assert len(harness.provider.prompts) == 3
    assert harness.controller.state.step == 0


def test_timeout_between_steps(run_config: RunConfig) -> None:
    config = dataclasses.replace(run_config, timeout_seconds=10)
    clock = FakeClock()
    harness = Harness(config, [tool_call(path="a"), tool_call(path="b"), final()], clock=clock)
    harness.provider.on_call = lambda _count: setattr(clock, "now", clock.now + 6)

    outcome = harness.run()

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.TIMEOUT
    assert len(harness.dispatched) == 2


def test_cancellation_during_tool_stops_before_next_call(run_config: RunConfig) -> None:
    cancel = threading.Event()
    harness = Harness(run_config, [tool_call(path="a.md"), final()], cancel=cancel)
    harness.on_dispatch = lambda _params: cancel.set()

    outcome = harness.run()

    assert outcome == Failed(FailureReason.CANCELLED, "run cancelled")
    assert len(harness.dispatched) == 1
    assert len(harness.provider.prompts) == 1
    assert len(harness.log_entries()) == 1


def test_cancellation_is_distinct_from_budget(run_config: RunConfig) -> None:
    cancel = threading.Event()
    cancel.set()
    harness = Harness(run_config, [], cancel=cancel)

    outcome = harness.run()

    assert outcome.reason == FailureReason.CANCELLED
    assert harness.provider.prompts == []


def test_clarification_stops_and_surfaces_questions(run_config: RunConfig) -> None:
    reply = json.dumps({"type": "clarification", "questions": ["Which flow?", "Which actor?"], "confidence": 0.4})
    harness = Harness(run_config, [reply])

    outcome = harness.run()

    assert outcome == ClarificationNeeded(questions=["Which flow?", "Which actor?"])
    assert harness.operator.questions == ["Which flow?", "Which actor?"]
    assert harness.log_entries()[0]["output_type"] == "clarification"


def test_unknown_output_type_warns_and_continues(run_config: RunConfig, monkeypatch: Any) -> None:
    warnings: list[str] = []

    def _capture(message: str, *args: object) -> None:
        warnings.append(message)

    monkeypatch.setattr("mermaid_documenter.core.controller.logger.warning", _capture)
    harness = Harness(run_config, ['{"type": "thinking", "confidence": 0.99}', final()])

    outcome = harness.run()

    assert isinstance(outcome, Completed)
    assert "run.unknown_output type={} step={}" in warnings
    assert [entry["output_type"] for entry in harness.log_entries()] == ["thinking", "final"]


def test_undecodable_reply_fails_the_run(run_config: RunConfig) -> None:
    harness = Harness(run_config, ["I think I should write a file now."])

    outcome = harness.run()

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.DECODE_ERROR
    assert outcome.detail.startswith("failed to parse LLM response: no valid JSON objects found")
    assert harness.log_entries() == []


@pytest.mark.parametrize(
    "reply",
    [
        "Error 400: API key not valid. Please pass a valid API key.",
        UpstreamError("LLM call failed: connection reset"),
        RuntimeError("socket closed"),
    ],
)
def test_upstream_failures_fail_the_run(run_config: RunConfig, reply: Any) -> None:
    harness = Harness(run_config, [reply])

    outcome = harness.run()

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.UPSTREAM_ERROR
    assert harness.dispatched == []


def test_controllers_do_not_share_state(run_config: RunConfig) -> None:
    first = create_controller(run_config, provider=ScriptedProvider([final()]), operator=FakeOperator())
    second = create_controller(run_config, provider=ScriptedProvider([final()]), operator=FakeOperator())

    assert isinstance(first.run("a"), Completed)
    assert isinstance(second.run("b"), Completed)
    assert first.state.run_id != second.state.run_id
    assert first.state.turns is not second.state.turns
    assert len(read_run_log(run_log_path(run_config.logs_dir, first.state.run_id))) == 1
    assert len(read_run_log(run_log_path(run_config.logs_dir, second.state.run_id))) == 1


def test_default_provider_uses_configured_endpoint(run_config: RunConfig, monkeypatch: Any) -> None:
    observed: dict[str, Any] = {}

    class _RecordingProvider(ScriptedProvider):
        def __init__(self, provider: str, **kwargs: Any) -> None:
            super().__init__([final()])
            observed["provider"] = provider
            observed["kwargs"] = kwargs

    monkeypatch.setattr("mermaid_documenter.app.RepublicProvider", _RecordingProvider)
    config = dataclasses.replace(run_config, api_base="https://llm.internal/v1", max_tokens=512)

    outcome = run(config=config, transcript="a", operator=FakeOperator())

    assert isinstance(outcome, Completed)
    assert observed == {"provider": "openai", "kwargs": {"api_base": "https://llm.internal/v1", "max_tokens": 512}}
