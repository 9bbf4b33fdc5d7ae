"""Filesystem sandbox for tool arguments."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from mermaid_documenter.errors import SandboxViolation


@dataclass(frozen=True)
class SandboxVerdict:
    """Outcome of one path check."""

    allowed: bool
    path: Path
    reason: str = ""


class PathSandbox:
    """Accepts a path only if it resolves under one of the sandbox roots.

    Roots and candidates are both resolved (symlinks followed, `..` collapsed)
    before comparison, and containment is decided on path components, never on
    string prefixes. Relative candidates are anchored at the first root.
    """

    def __init__(self, roots: Iterable[Path | str]) -> None:
        resolved: list[Path] = []
        for root in roots:
            path = Path(root).expanduser().resolve()
            if path not in resolved:
                resolved.append(path)
        if not resolved:
            raise ValueError("sandbox requires at least one root")
        self._roots = tuple(resolved)

    @property
    def roots(self) -> tuple[Path, ...]:
        return self._roots

    def resolve(self, raw: Path | str) -> Path:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = self._roots[0] / path
        return path.resolve()

    def validate(self, raw: Path | str) -> SandboxVerdict:
        text = str(raw)
        if not text.strip() or "\x00" in text:
            return SandboxVerdict(False, Path(text.replace("\x00", "")), "empty or invalid path")
        try:
            resolved = self.resolve(raw)
        except (OSError, RuntimeError) as exc:
            return SandboxVerdict(False, Path(text), f"cannot resolve path: {exc!s}")

        for root in self._roots:
            if resolved == root or resolved.is_relative_to(root):
                return SandboxVerdict(True, resolved)

        allowed = ", ".join(str(root) for root in self._roots)
        return SandboxVerdict(
            False,
            resolved,
            f"path '{raw}' is outside allowed directories. File operations are only allowed within: {allowed}",
        )

    def require(self, raw: Path | str) -> Path:
        """Return the resolved path or raise SandboxViolation."""
        verdict = self.validate(raw)
        if not verdict.allowed:
            raise SandboxViolation(verdict.reason)
        return verdict.path
