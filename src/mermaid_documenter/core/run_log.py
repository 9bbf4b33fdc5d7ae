"""Append-only per-run decision log."""

from __future__ import annotations

import json
import threading
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from mermaid_documenter.core.types import Decision, FinalAnswer, RunState, ToolCall

RUN_LOG_SUFFIX = ".jsonl"


def run_log_path(logs_dir: Path, run_id: str) -> Path:
    return logs_dir / f"{run_id}{RUN_LOG_SUFFIX}"


class RunLogger:
    """Writes one JSON line per controller step.

    Each run owns its own file, so concurrent runs never share a log target.
    Full transcripts and raw responses are only stored in verbose mode.
    """

    def __init__(self, logs_dir: Path, run_id: str, *, provider: str, model: str, verbose: bool = False) -> None:
        self.path = run_log_path(logs_dir, run_id)
        self._provider = provider
        self._model = model
        self._verbose = verbose
        self._lock = threading.Lock()

    def record(
        self,
        state: RunState,
        raw_response: str,
        decision: Decision,
        *,
        args: dict[str, Any] | None = None,
    ) -> bool:
        """Append one entry; failures are reported as warnings and return False."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
            "run_id": state.run_id,
            "step": state.step + 1,
            "provider": self._provider,
            "model": self._model,
            "output_type": getattr(decision, "type", decision.kind),
            "confidence": decision.confidence,
            "rationale": decision.rationale,
        }
        if self._verbose:
            entry["conversation"] = [asdict(turn) for turn in state.turns]
            entry["response"] = raw_response
        if isinstance(decision, ToolCall):
            entry["tool"] = decision.tool
            entry["args"] = decision.args if args is None else args
        elif isinstance(decision, FinalAnswer):
            entry["manifest"] = decision.manifest

        try:
            line = json.dumps(entry, ensure_ascii=False, default=str)
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("run.log.write_failed path={} error={}", self.path, exc)
            return False
        return True

    def read(self) -> list[dict[str, Any]]:
        return read_run_log(self.path)


def read_run_log(path: Path) -> list[dict[str, Any]]:
    """Read recorded entries, skipping lines that are not JSON objects."""
    if not path.exists():
        return []
    entries: list[dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                entries.append(payload)
    return entries
