"""
Node executor contract.

Every node kind is implemented by a ``BaseNode`` subclass with a single
``execute(ctx)`` coroutine. The context carries both input shapes (the v2
port map and the legacy string list), the upstream flow context bag and
the run's collaborators (LLM, tool simulator, stores).
"""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from agentflow.graph.context import (
    ContextMode,
    extract_text,
    resolve_input_values,
    warn_legacy_mode,
    with_scenario_context,
)
from agentflow.graph.model import FlowGraph, Node
from agentflow.llm.provider import LLMCallOptions, LLMProvider
from agentflow.nodes.stores import NodeStores
from agentflow.schemas.run import RunOptions
from agentflow.simulation.simulator import ToolSimulator

# A node output is a plain string or a dict (``output``/``message``/``content``,
# raw ``llm`` payloads, or typed ``{type, content, meta}`` envelopes).
NodeOutput = str | dict[str, Any]


@dataclass
class NodeContext:
    """Everything an executor may read while running one node."""

    node: Node
    graph: FlowGraph
    node_outputs: Mapping[str, Any]
    llm: LLMProvider
    inputs: dict[str, Any] = field(default_factory=dict)
    flow_context: dict[str, Any] = field(default_factory=dict)
    mode: ContextMode = ContextMode.NAMESPACED
    run_options: RunOptions = field(default_factory=RunOptions)
    simulator: ToolSimulator = field(default_factory=ToolSimulator)
    stores: NodeStores = field(default_factory=NodeStores)
    is_start: bool = False
    use_simulators: bool = False

    @property
    def config(self) -> dict[str, Any]:
        return self.node.config


class BaseNode(ABC):
    """Base class for node executors."""

    def __init__(self, node: Node):
        self.node = node

    @property
    def data(self) -> dict[str, Any]:
        return self.node.config

    @abstractmethod
    async def execute(self, ctx: NodeContext) -> NodeOutput:
        """
        Run the node.

        Args:
            ctx: Inputs, flow context and collaborators for this run

        Returns:
            The node's output. Recoverable failures are returned as
            ``{"error": message}`` rather than raised.
        """

    def validate(self) -> list[str]:
        """Return config problems for this node. Empty means valid."""
        return []

    # --- input helpers ---

    def get_input_values(self, ctx: NodeContext) -> list[str]:
        """Upstream outputs as extracted strings, one per incoming edge."""
        if ctx.mode == ContextMode.LEGACY:
            warn_legacy_mode(self.node.id, self.node.kind_key)
        return resolve_input_values(self.node.id, ctx.node_outputs, ctx.graph)

    def input_texts(self, ctx: NodeContext) -> list[str]:
        """Prefer v2 inputs (edge controls applied); fall back to legacy values."""
        if ctx.inputs:
            return [t for t in (extract_text(v) for v in ctx.inputs.values()) if t]
        return self.get_input_values(ctx)

    def format_input_context(self, ctx: NodeContext) -> str:
        """All inputs joined by blank lines, plus the scenario block on the start node."""
        text = "\n\n".join(self.get_input_values(ctx))
        if ctx.is_start:
            text = with_scenario_context(text, ctx.run_options.scenario_description)
        return text

    # --- LLM helpers ---

    def llm_options(self, ctx: NodeContext, **defaults: Any) -> LLMCallOptions:
        """Node defaults overlaid with the run's model/provider/temperature/seed overrides."""
        overrides = ctx.run_options.overrides
        base = LLMCallOptions(
            model=defaults.pop("model", None) or self.data.get("model"),
            provider=defaults.pop("provider", None) or self.data.get("provider"),
            **defaults,
        )
        return base.merged(
            LLMCallOptions(
                model=overrides.model,
                provider=overrides.provider,
                temperature=overrides.temperature,
                seed=overrides.seed,
            )
        )


def stable_seed(*parts: Any) -> int:
    """Deterministic 31-bit seed from arbitrary JSON-able parts."""
    payload = json.dumps(parts, sort_keys=True, default=str).encode("utf-8")
    return int.from_bytes(hashlib.sha256(payload).digest()[:4], "big") & 0x7FFFFFFF


def typed_output(kind: str, content: Any, meta: dict[str, Any]) -> dict[str, Any]:
    """Build a ``{type, content, meta}`` envelope used by the newer node kinds."""
    return {"type": kind, "content": content, "meta": meta}
