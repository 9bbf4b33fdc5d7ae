"""Step-bounded conversation controller."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

from mermaid_documenter.core.decoder import StructuredOutputDecoder
from mermaid_documenter.core.prompt import (
    LOW_CONFIDENCE_PROMPT,
    build_system_prompt,
    build_user_prompt,
    render_conversation,
    tool_failure_prompt,
)
from mermaid_documenter.core.run_log import RunLogger
from mermaid_documenter.core.types import (
    Clarification,
    ClarificationNeeded,
    Completed,
    Decision,
    Failed,
    FailureReason,
    FinalAnswer,
    RunConfig,
    RunOutcome,
    RunState,
    ToolCall,
    UnknownDecision,
)
from mermaid_documenter.errors import DecodeError, UpstreamError
from mermaid_documenter.logging_utils import bind_run
from mermaid_documenter.operator import Operator
from mermaid_documenter.providers import ModelProvider
from mermaid_documenter.tools.registry import ToolRegistry

PATH_ARGUMENTS = ("path", "inputFile")
BUDGET_EXCEEDED = "budget exceeded"


class ConversationController:
    """Drives one run from transcript to a terminal outcome.

    Each iteration makes exactly one model call, decodes one decision, records
    it and then acts on it. Cancellation and the wall-clock deadline are only
    observed between iterations; a tool that has started always finishes.
    """

    def __init__(
        self,
        *,
        config: RunConfig,
        provider: ModelProvider,
        registry: ToolRegistry,
        operator: Operator,
        run_logger: RunLogger | None = None,
        decoder: StructuredOutputDecoder | None = None,
        state: RunState | None = None,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._provider = provider
        self._registry = registry
        self._operator = operator
        self._decoder = decoder or StructuredOutputDecoder()
        self.state = state or RunState()
        self._run_logger = run_logger or RunLogger(
            config.logs_dir,
            self.state.run_id,
            provider=config.provider,
            model=config.model,
            verbose=config.verbose,
        )
        self._cancel = cancel or threading.Event()
        self._clock = clock

    def run(self, transcript: str) -> RunOutcome:
        with bind_run(self.state.run_id):
            outcome = self._run(transcript)
            self._log_outcome(outcome)
            return outcome

    def _run(self, transcript: str) -> RunOutcome:
        config = self._config
        state = self.state
        system_prompt = build_system_prompt(
            provider=config.provider,
            tools_block=self._registry.prompt_block(),
            documentation_types=config.documentation_types,
        )
        state.append("system", system_prompt)
        state.append("user", build_user_prompt(transcript))

        deadline = None if not config.timeout_seconds else self._clock() + config.timeout_seconds
        while state.step < config.max_steps:
            if self._cancel.is_set():
                return Failed(FailureReason.CANCELLED, "run cancelled")
            if deadline is not None and self._clock() >= deadline:
                return Failed(FailureReason.TIMEOUT, f"run exceeded {config.timeout_seconds}s")

            try:
                raw = self._provider.generate(render_conversation(state.turns), config.model, config.api_key)
            except UpstreamError as exc:
                return Failed(FailureReason.UPSTREAM_ERROR, str(exc))
            except Exception as exc:
                logger.exception("model.call.error step={}", state.step + 1)
                return Failed(FailureReason.UPSTREAM_ERROR, f"LLM call failed: {exc!s}")

            try:
                decision = self._decoder.decode(raw)
            except UpstreamError as exc:
                return Failed(FailureReason.UPSTREAM_ERROR, str(exc))
            except DecodeError as exc:
                return Failed(FailureReason.DECODE_ERROR, f"failed to parse LLM response: {exc!s}")

            outcome, charged = self._step(raw, decision)
            if outcome is not None:
                return outcome
            if charged:
                state.step += 1

        logger.warning("run.budget_exceeded max_steps={}", config.max_steps)
        return Failed(FailureReason.BUDGET_EXCEEDED, BUDGET_EXCEEDED)

    def _step(self, raw: str, decision: Decision) -> tuple[RunOutcome | None, bool]:
        """Act on one decision; return a terminal outcome or whether the step counts."""
        threshold = self._config.confidence_threshold
        logger.info(
            "run.step step={} type={} confidence={:.2f}",
            self.state.step + 1,
            getattr(decision, "type", decision.kind),
            decision.confidence,
        )

        match decision:
            case ToolCall() if decision.confidence >= threshold:
                args = self.rewrite_paths(decision.args)
                self._run_logger.record(self.state, raw, decision, args=args)
                return self._dispatch(raw, decision, args), True
            case ToolCall() | FinalAnswer() if decision.confidence < threshold:
                self._run_logger.record(self.state, raw, decision)
                self.state.append("assistant", raw)
                self.state.append("system", LOW_CONFIDENCE_PROMPT)
                return None, self._config.charge_low_confidence
            case FinalAnswer():
                self._run_logger.record(self.state, raw, decision)
                return Completed(manifest=dict(decision.manifest)), True
            case Clarification():
                self._run_logger.record(self.state, raw, decision)
                self._operator.show_questions(decision.questions)
                return ClarificationNeeded(questions=list(decision.questions)), True
            case UnknownDecision():
                self._run_logger.record(self.state, raw, decision)
                logger.warning("run.unknown_output type={} step={}", decision.type, self.state.step + 1)
                return None, True
        raise AssertionError(f"unhandled decision: {decision!r}")

    def _dispatch(self, raw: str, decision: ToolCall, args: dict[str, Any]) -> RunOutcome | None:
        state = self.state
        result = self._registry.dispatch(decision.tool, json.dumps(args))
        if result.succeeded:
            logger.info("run.tool.ok tool={}", decision.tool)
            state.consecutive_failures = 0
        else:
            state.consecutive_failures += 1
            logger.warning(
                "run.tool.failed tool={} streak={} error={}", decision.tool, state.consecutive_failures, result.error
            )
            if state.consecutive_failures >= self._config.max_failure_streak:
                return Failed(
                    FailureReason.FAILURE_STREAK,
                    f"too many consecutive tool failures ({state.consecutive_failures}): {result.error}",
                )
            state.append("system", tool_failure_prompt(result.error))

        state.append("assistant", raw)
        state.append("user", f"Tool result: {result.render()}")
        return None

    def rewrite_paths(self, args: dict[str, Any]) -> dict[str, Any]:
        """Anchor relative path arguments at the run's output directory."""
        rewritten = dict(args)
        for name in PATH_ARGUMENTS:
            value = args.get(name)
            if not isinstance(value, str) or not value:
                continue
            if value.startswith(("/", "~")) or Path(value).is_absolute():
                continue
            rewritten[name] = str(self._config.output_dir / value)
        return rewritten

    def _log_outcome(self, outcome: RunOutcome) -> None:
        match outcome:
            case Completed(manifest=manifest):
                logger.info("run.completed steps={} manifest={}", self.state.step, manifest)
            case ClarificationNeeded(questions=questions):
                logger.info("run.clarification_needed questions={}", len(questions))
            case Failed(reason=reason, detail=detail):
                logger.warning("run.failed reason={} detail={}", reason, detail)
