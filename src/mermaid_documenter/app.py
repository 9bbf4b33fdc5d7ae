"""Composition root: wires one isolated run."""

from __future__ import annotations

import threading

from mermaid_documenter.core.controller import ConversationController
from mermaid_documenter.core.decoder import StructuredOutputDecoder
from mermaid_documenter.core.sandbox import PathSandbox
from mermaid_documenter.core.types import RunConfig, RunOutcome
from mermaid_documenter.operator import ConsoleOperator, Operator
from mermaid_documenter.providers import ModelProvider, RepublicProvider
from mermaid_documenter.tools.builtin import register_builtin_tools
from mermaid_documenter.tools.registry import ToolRegistry
from mermaid_documenter.tools.render import MermaidRenderer


def build_sandbox(config: RunConfig) -> PathSandbox:
    """Sandbox roots: private working area, output directory, active project."""
    roots = [config.home, config.output_dir]
    if config.project_root is not None:
        roots.append(config.project_root)
    return PathSandbox(roots)


def build_registry(
    config: RunConfig,
    *,
    sandbox: PathSandbox,
    operator: Operator,
    renderer: MermaidRenderer | None = None,
) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(
        registry,
        sandbox=sandbox,
        output_dir=config.output_dir,
        events_dir=config.logs_dir,
        operator=operator,
        renderer=renderer,
        project_root=config.project_root,
    )
    return registry


def create_controller(
    config: RunConfig,
    *,
    provider: ModelProvider | None = None,
    operator: Operator | None = None,
    registry: ToolRegistry | None = None,
    renderer: MermaidRenderer | None = None,
    cancel: threading.Event | None = None,
    strict_kinds: bool = False,
) -> ConversationController:
    """Build a controller that shares no mutable state with any other run."""
    operator = operator or ConsoleOperator()
    if registry is None:
        registry = build_registry(config, sandbox=build_sandbox(config), operator=operator, renderer=renderer)
    return ConversationController(
        config=config,
        provider=provider or RepublicProvider(config.provider, api_base=config.api_base, max_tokens=config.max_tokens),
        registry=registry,
        operator=operator,
        decoder=StructuredOutputDecoder(strict_kinds=strict_kinds),
        cancel=cancel,
    )


def run(
    transcript: str,
    config: RunConfig,
    *,
    provider: ModelProvider | None = None,
    operator: Operator | None = None,
    registry: ToolRegistry | None = None,
    cancel: threading.Event | None = None,
) -> RunOutcome:
    """Run the agent over one transcript and return its terminal outcome."""
    controller = create_controller(config, provider=provider, operator=operator, registry=registry, cancel=cancel)
    return controller.run(transcript)
