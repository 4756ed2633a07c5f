"""
Flow Engine - executes a flow graph with the node executor registry.

Nodes run one at a time in ``build_order`` order. Each node receives the
v2 port map of its upstream outputs and a namespaced flow context bag.
Branching nodes forward to a subset of their outgoing connections:

- if-else forwards to ``true-path`` or ``false-path``
- decision-tree forwards to the port named by its output
- every other node forwards to all of its outgoing connections

A node whose upstream nodes have all settled without forwarding to it is
skipped, so an untaken branch never runs.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from agentflow.config import get_use_simulators, get_visual_delay_ms
from agentflow.errors import PolicyViolationError
from agentflow.graph.context import ContextMode, resolve_inputs
from agentflow.graph.flow_context import build_flow_context, diff_flow_context, snapshot_node
from agentflow.graph.model import Connection, FlowDocument, FlowGraph, Node, NodeKind
from agentflow.graph.order import build_order
from agentflow.llm.provider import LLMProvider
from agentflow.nodes.base import NodeContext, NodeOutput
from agentflow.nodes.registry import execute_node
from agentflow.nodes.stores import NodeStores
from agentflow.observability.logging import clear_trace_context, set_trace_context
from agentflow.runtime.event_bus import EventBus, EventType
from agentflow.runtime.observed_llm import ObservedLLM
from agentflow.schemas.run import RunManifest, RunOptions, RunStatus
from agentflow.simulation.simulator import ToolSimulator
from agentflow.storage.history import RunHistory, generate_run_id
from agentflow.testing.assertions import evaluate_assertions

logger = logging.getLogger(__name__)

BeforeNodeHook = Callable[[Node], Awaitable[None]]

SUMMARY_LIMIT = 160


# === CONNECTION VALIDATION ===


@dataclass
class ConnectionReport:
    """Connections usable for a run, and why the others were excluded."""

    valid: list[Connection] = field(default_factory=list)
    issues: dict[str, str] = field(default_factory=dict)  # connection id -> message


def validate_connections(nodes: Sequence[Node], connections: Sequence[Connection]) -> ConnectionReport:
    """
    Check every connection against the nodes it joins.

    Ports are only checked on nodes that declare ports; a declared type on
    both ends must match.
    """
    by_id = {n.id: n for n in nodes}
    report = ConnectionReport()
    for conn in connections:
        src = by_id.get(conn.source)
        tgt = by_id.get(conn.target)
        if src is None:
            report.issues[conn.id] = f"Invalid connection {conn.id}: source node '{conn.source}' not found."
            continue
        if tgt is None:
            report.issues[conn.id] = f"Invalid connection {conn.id}: target node '{conn.target}' not found."
            continue

        src_port = next((p for p in src.output_ports if p.id == conn.source_output), None)
        if src.output_ports and conn.source_output and src_port is None:
            report.issues[conn.id] = (
                f"Invalid connection {conn.id}: source output '{conn.source_output}' "
                f"not found on node '{src.id}'."
            )
            continue
        tgt_port = next((p for p in tgt.input_ports if p.id == conn.target_input), None)
        if tgt.input_ports and tgt_port is None:
            report.issues[conn.id] = (
                f"Invalid connection {conn.id}: target input '{conn.target_input}' "
                f"not found on node '{tgt.id}'."
            )
            continue
        if src_port and tgt_port and src_port.type and tgt_port.type and src_port.type != tgt_port.type:
            report.issues[conn.id] = (
                f"Type mismatch on connection {conn.id}: '{src.id}.{src_port.id}:{src_port.type}' "
                f"-> '{tgt.id}.{tgt_port.id}:{tgt_port.type}'."
            )
            continue
        report.valid.append(conn)
    return report


# === BRANCHING ===


def branch_value(output: NodeOutput) -> str:
    if isinstance(output, str):
        return output
    if isinstance(output, dict) and isinstance(output.get("output"), str):
        return output["output"]
    return str(output)


def forwarded_connections(node: Node, output: NodeOutput, outgoing: list[Connection]) -> list[Connection]:
    """The outgoing connections a node's output activates."""
    kind = node.resolved_kind
    if kind == NodeKind.IF_ELSE:
        port = {"true": "true-path", "false": "false-path"}.get(branch_value(output))
        return [c for c in outgoing if port and c.source_output == port]
    if kind == NodeKind.DECISION_TREE:
        value = branch_value(output)
        return [c for c in outgoing if c.source_output == value]
    return list(outgoing)


def generate_summary(node: Node, output: NodeOutput) -> str:
    """Compact, human-readable one-liner for a node's output."""

    def truncate(text: str) -> str:
        return text if len(text) <= SUMMARY_LIMIT else text[: SUMMARY_LIMIT - 1] + "…"

    if isinstance(output, str):
        return truncate(output.strip())
    if isinstance(output, dict) and "error" in output:
        return f"Error: {truncate(str(output['error'] or 'Unknown error'))}"
    kind = node.resolved_kind
    if kind == NodeKind.IF_ELSE:
        return f"If/Else → {branch_value(output)}"
    if kind == NodeKind.DECISION_TREE:
        return f"Branch → {branch_value(output)}"
    if isinstance(output, dict) and ("llm" in output or "gemini" in output):
        return "LLM response"
    return truncate(json.dumps(output, default=str))


def is_error_output(output: Any) -> bool:
    return isinstance(output, dict) and ("error" in output or output.get("type") == "error")


# === ENGINE ===


class FlowEngine:
    """
    Executes a flow with the executor registry.

    Example:
        engine = FlowEngine(document, llm=MockLLMProvider(), stores=NodeStores())
        manifest = await engine.execute()
        manifest.results["router-1"]["content"]["decision"]
    """

    def __init__(
        self,
        document: FlowDocument,
        llm: LLMProvider,
        options: RunOptions | None = None,
        bus: EventBus | None = None,
        stores: NodeStores | None = None,
        simulator: ToolSimulator | None = None,
        mode: ContextMode = ContextMode.NAMESPACED,
        visual_delay_ms: int | None = None,
        use_simulators: bool | None = None,
        before_node_execute: BeforeNodeHook | None = None,
        history: RunHistory | None = None,
        run_id: str | None = None,
    ):
        self.document = document
        self.llm = llm
        self.options = options or RunOptions()
        self.bus = bus or EventBus()
        self.stores = stores or NodeStores()
        self.simulator = simulator or ToolSimulator()
        self.mode = mode
        self.visual_delay_ms = get_visual_delay_ms() if visual_delay_ms is None else visual_delay_ms
        self.use_simulators = get_use_simulators() if use_simulators is None else use_simulators
        self.before_node_execute = before_node_execute
        self.history = history
        self.run_id = run_id or generate_run_id()

        report = validate_connections(document.nodes, document.connections)
        self.connection_issues = report.issues
        self.graph = FlowGraph(document.nodes, report.valid)
        self.node_outputs: dict[str, NodeOutput] = {}
        self.skipped: list[str] = []

    @property
    def start_node_ids(self) -> list[str]:
        if self.document.start_node_id and self.graph.has_node(self.document.start_node_id):
            return [self.document.start_node_id]
        return [n.id for n in self.graph.sources()]

    def _should_skip(self, node: Node, settled: set[str], forwarded_to: dict[str, set[str]]) -> bool:
        incoming = self.graph.incoming(node.id)
        if not incoming or node.id in forwarded_to:
            return False
        return all(c.source in settled for c in incoming)

    async def execute(self) -> RunManifest:
        """
        Run every node once, in dependency order.

        Returns:
            RunManifest whose results hold each node's raw output

        Raises:
            PolicyViolationError: If an LLM call used a model outside
                ``options.allowed_models`` (raised after the run finishes)
        """
        started = time.monotonic()
        order = build_order(self.graph.nodes, self.graph.connections, self.document.start_node_id)
        observed = ObservedLLM(self.llm, self.bus, self.run_id)
        self.node_outputs = {}
        self.skipped = []
        settled: set[str] = set()
        forwarded_to: dict[str, set[str]] = {}

        set_trace_context(run_id=self.run_id)
        for issue in self.connection_issues.values():
            logger.warning(f"⚠ {issue}")

        logger.info(f"🚀 Starting flow {self.run_id} ({len(order)} nodes)")
        await self.bus.emit(
            EventType.FLOW_STARTED,
            self.run_id,
            nodeCount=len(order),
            connectionCount=len(self.graph.connections),
            startNodeIds=self.start_node_ids,
            invalidConnections=self.connection_issues,
            visualDelayMs=self.visual_delay_ms,
        )

        try:
            for index, node in enumerate(order):
                if self._should_skip(node, settled, forwarded_to):
                    settled.add(node.id)
                    self.skipped.append(node.id)
                    logger.info(f"⏭ Skipping {node.id}: no upstream branch forwarded to it")
                    await self.bus.emit(EventType.NODE_SKIPPED, self.run_id, node.id, title=node.title)
                    continue

                output = await self._execute_node(node, index, observed)
                settled.add(node.id)
                for conn in forwarded_connections(node, output, self.graph.outgoing(node.id)):
                    forwarded_to.setdefault(conn.target, set()).add(node.id)
        finally:
            clear_trace_context()

        disallowed = observed.disallowed_models(self.options.allowed_models)
        status = RunStatus.ERROR if disallowed else RunStatus.COMPLETED
        manifest = RunManifest(
            id=self.run_id,
            scenario=self.options.scenario,
            environment=self.options.overrides.environment,
            seed=self.options.overrides.seed,
            nodes=list(self.graph.nodes),
            connections=list(self.graph.connections),
            start_node_id=self.document.start_node_id,
            results=dict(self.node_outputs),
            duration=int((time.monotonic() - started) * 1000),
            status=status,
        )
        if self.options.assertions:
            report = evaluate_assertions(self.options.assertions, self.node_outputs, self.graph.connections)
            manifest.assertions = report.model_dump(mode="json")

        await self.bus.emit(
            EventType.FLOW_FINISHED,
            self.run_id,
            status="error" if disallowed else "success",
            durationMs=manifest.duration,
            skipped=self.skipped,
            error=f"Disallowed models used: {', '.join(disallowed)}" if disallowed else None,
        )
        if self.history is not None:
            await self.history.save(manifest)
        if disallowed:
            raise PolicyViolationError(disallowed, self.options.allowed_models or [])
        logger.info(f"✓ Flow {self.run_id} finished in {manifest.duration}ms")
        return manifest

    async def _execute_node(self, node: Node, index: int, llm: LLMProvider) -> NodeOutput:
        set_trace_context(node_id=node.id)
        incoming = self.graph.incoming(node.id)
        inputs = resolve_inputs(node.id, self.node_outputs, self.graph)
        flow_context = build_flow_context(node.id, self.node_outputs, self.graph)

        started = time.monotonic()
        await self.bus.emit(
            EventType.NODE_STARTED,
            self.run_id,
            node.id,
            title=node.title,
            nodeType=node.kind,
            nodeSubtype=node.subtype,
            cause={"kind": "all-inputs-ready", "inputCount": len(incoming)} if incoming else {"kind": "start-node"},
            topoIndex=index,
            flowContextBefore=flow_context,
        )
        if self.before_node_execute:
            await self.before_node_execute(node)
        if self.visual_delay_ms > 0:
            await asyncio.sleep(self.visual_delay_ms / 1000)

        ctx = NodeContext(
            node=node,
            graph=self.graph,
            node_outputs=self.node_outputs,
            llm=llm,
            inputs=inputs,
            flow_context=flow_context,
            mode=self.mode,
            run_options=self.options,
            simulator=self.simulator,
            stores=self.stores,
            is_start=node.id in self.start_node_ids,
            use_simulators=self.use_simulators,
        )
        logger.info(f"▶ {node.id} ({node.kind_key})")
        output = await execute_node(node, ctx)
        self.node_outputs[node.id] = output

        duration_ms = int((time.monotonic() - started) * 1000)
        failed = is_error_output(output)
        error = None
        if failed:
            content = output.get("content")
            detail = content.get("error") if isinstance(content, dict) else content
            error = str(output.get("error") or detail or "Unknown error")
            await self.bus.emit(EventType.NODE_ERROR, self.run_id, node.id, error=error)
            logger.info(f"✗ {node.id}: {error}")
        else:
            logger.info(f"✓ {node.id} in {duration_ms}ms")

        after = {**flow_context, node.id: snapshot_node(node, output)}
        forwarded = forwarded_connections(node, output, self.graph.outgoing(node.id))
        await self.bus.emit(
            EventType.NODE_FINISHED,
            self.run_id,
            node.id,
            title=node.title,
            nodeType=node.kind,
            nodeSubtype=node.subtype,
            status="error" if failed else "success",
            durationMs=duration_ms,
            visualDelayMs=self.visual_delay_ms,
            output=output,
            summary=generate_summary(node, output),
            error=error,
            flowContextBefore=flow_context,
            flowContextAfter=after,
            flowContextDiff=diff_flow_context(flow_context, after),
            forwardedConnectionIds=[c.id for c in forwarded],
            forwardedTargetNodeIds=[c.target for c in forwarded],
        )
        return output
