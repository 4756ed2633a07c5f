"""
Linear Runner - executes a flow through the properties bridge.

Starting at the designated start node, each node is run from its Properties
Panel configuration, then the runner follows the node's first outgoing
connection. Agents connected to tool nodes get a tool rule injected into
their system prompt and may delegate to the tool.

The walk is bounded by ``2 x node_count`` steps so a cyclic graph cannot
loop forever; running out of steps is logged and ends the run normally.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from agentflow.bridge.delegation import connected_tools, delegate_to_tool, inject_tool_rules, is_agent_node
from agentflow.bridge.properties import execute_node_from_properties
from agentflow.bridge.result import ExecutionResult
from agentflow.errors import PolicyViolationError, StartNodeNotSetError
from agentflow.graph.flow_context import build_flow_context, diff_flow_context, snapshot_node
from agentflow.graph.model import FlowDocument, FlowGraph, Node
from agentflow.llm.provider import LLMCallOptions, LLMProvider
from agentflow.observability.logging import clear_trace_context, set_trace_context
from agentflow.runtime.event_bus import EventBus, EventType
from agentflow.runtime.observed_llm import ObservedLLM
from agentflow.schemas.run import RunManifest, RunOptions, RunStatus
from agentflow.storage.history import RunHistory, generate_run_id
from agentflow.testing.assertions import evaluate_assertions

logger = logging.getLogger(__name__)

BeforeNodeHook = Callable[[Node], Awaitable[None]]

# Keys the runner adds next to the port outputs of every node result
RAW_RESULT = "_raw_result"
PROPERTIES_RESULT = "_properties_result"
NODE_TYPE = "_node_type"
NODE_SUBTYPE = "_node_subtype"


def jsonable_results(results: dict[str, Any]) -> dict[str, Any]:
    """Copy of a results map with ExecutionResults replaced by their UI dicts."""
    out: dict[str, Any] = {}
    for node_id, value in results.items():
        if isinstance(value, dict) and isinstance(value.get(PROPERTIES_RESULT), ExecutionResult):
            value = {**value, PROPERTIES_RESULT: value[PROPERTIES_RESULT].to_ui()}
        out[node_id] = value
    return out


def run_call_options(options: RunOptions) -> LLMCallOptions:
    """LLM options carried by the run's overrides."""
    overrides = options.overrides
    return LLMCallOptions(
        model=overrides.model,
        provider=overrides.provider,
        temperature=overrides.temperature,
        seed=overrides.seed,
    )


class LinearRunner:
    """
    Properties-driven runner.

    Results are seeded from ``options.inputs`` and keyed by node id. Each
    node result is ``{<output_port>: output, _raw_result, _properties_result,
    _node_type, _node_subtype}``.

    Example:
        runner = LinearRunner(document, llm=MockLLMProvider())
        manifest = await runner.run()
        manifest.results["tool-1"]["_properties_result"]
    """

    def __init__(
        self,
        document: FlowDocument,
        llm: LLMProvider | None = None,
        options: RunOptions | None = None,
        bus: EventBus | None = None,
        before_node_execute: BeforeNodeHook | None = None,
        history: RunHistory | None = None,
        run_id: str | None = None,
    ):
        self.document = document
        self.graph: FlowGraph = document.graph
        self.llm = llm
        self.options = options or RunOptions()
        self.bus = bus or EventBus()
        self.before_node_execute = before_node_execute
        self.history = history
        self.run_id = run_id or generate_run_id()
        self.results: dict[str, Any] = {}
        self.status = RunStatus.RUNNING
        self._observed: ObservedLLM | None = None

    @property
    def start_node_id(self) -> str | None:
        return self.document.start_node_id

    # === INPUTS ===

    def gather_inputs(self, node: Node) -> dict[str, Any]:
        """Upstream values keyed by target port; the start node also gets run inputs and the scenario."""
        input_data: dict[str, Any] = {}
        for conn in self.graph.incoming(node.id):
            upstream = self.results.get(conn.source)
            if not upstream:
                continue
            if isinstance(upstream, dict):
                port = conn.source_output or next(iter(upstream))
                input_data[conn.target_input] = upstream.get(port)
            else:
                input_data[conn.target_input] = upstream

        if node.id == self.start_node_id:
            input_data.update(self.options.inputs)
            if self.options.scenario_description:
                input_data["input"] = self.options.scenario_description
        return input_data

    def next_node_id(self, node_id: str) -> str | None:
        outgoing = self.graph.outgoing(node_id)
        return outgoing[0].target if outgoing else None

    # === EXECUTION ===

    async def execute_with_properties(
        self, node: Node, input_data: dict[str, Any], llm: LLMProvider | None
    ) -> tuple[ExecutionResult, Any]:
        """Run one node through the bridge, delegating to a tool when an agent asks for one."""
        call_options = run_call_options(self.options)
        tools = connected_tools(node.id, self.graph) if is_agent_node(node) else []
        target = inject_tool_rules(node, tools) if tools else node

        result = await execute_node_from_properties(target, input_data, llm, tools, call_options)
        output = result.result
        if is_agent_node(node) and tools:
            output = await delegate_to_tool(result, tools, self.graph, llm, call_options)
        return result, output

    async def _before_node(self, node: Node) -> bool:
        """Called before each node. Returning False stops the run."""
        return True

    async def _after_node(
        self, node: Node, input_data: dict[str, Any], output: Any, error: str | None, duration_ms: int
    ) -> None:
        """Called after each node has been recorded."""

    async def _run_node(self, node: Node, llm: LLMProvider | None) -> None:
        set_trace_context(node_id=node.id)
        input_data = self.gather_inputs(node)
        before = build_flow_context(node.id, self.results, self.graph)
        started = time.monotonic()
        await self.bus.emit(
            EventType.NODE_STARTED,
            self.run_id,
            node.id,
            title=node.title,
            nodeType=node.kind,
            nodeSubtype=node.subtype,
            inputData=input_data,
            flowContextBefore=before,
        )
        if self.before_node_execute:
            await self.before_node_execute(node)

        logger.info(f"▶ {node.id} ({node.kind_key})")
        error: str | None = None
        try:
            properties_result, output = await self.execute_with_properties(node, input_data, llm)
            self.results[node.id] = {
                **{port.id: output for port in node.output_ports},
                RAW_RESULT: output,
                PROPERTIES_RESULT: properties_result,
                NODE_TYPE: node.kind,
                NODE_SUBTYPE: node.subtype,
            }
            summary = properties_result.execution_summary
        except Exception as e:
            logger.exception(f"✗ {node.id} failed")
            error = str(e)
            output = f"Error executing {node.kind_key} node: {e}"
            self.results[node.id] = {port.id: output for port in node.output_ports} or {RAW_RESULT: output}
            summary = output
            await self.bus.emit(EventType.NODE_ERROR, self.run_id, node.id, error=error)

        duration_ms = int((time.monotonic() - started) * 1000)
        after = {**before, node.id: snapshot_node(node, output, None)}
        await self.bus.emit(
            EventType.NODE_FINISHED,
            self.run_id,
            node.id,
            title=node.title,
            nodeType=node.kind,
            nodeSubtype=node.subtype,
            durationMs=duration_ms,
            output=output,
            summary=f"Executed {node.kind_key} node using Properties Panel configuration",
            resultSummary=summary,
            error=error,
            flowContextBefore=before,
            flowContextAfter=after,
            flowContextDiff=diff_flow_context(before, after),
        )
        if error is None:
            logger.info(f"✓ {node.id} in {duration_ms}ms")
        await self._after_node(node, input_data, output, error, duration_ms)

    async def run(self) -> RunManifest:
        """
        Execute the flow from its start node.

        Returns:
            RunManifest with every node result and the assertion report

        Raises:
            StartNodeNotSetError: If the document has no usable start node
            PolicyViolationError: If an LLM call used a model outside
                ``options.allowed_models`` (raised after the run finishes)
        """
        start_id = self.start_node_id
        if not start_id:
            raise StartNodeNotSetError()
        if not self.graph.has_node(start_id):
            raise StartNodeNotSetError(f"Start node {start_id} not found")

        started = time.monotonic()
        set_trace_context(run_id=self.run_id)
        self.results = dict(self.options.inputs)
        self.status = RunStatus.RUNNING
        self._observed = ObservedLLM(self.llm, self.bus, self.run_id) if self.llm else None

        node_count = len(self.graph.nodes)
        logger.info(f"🚀 Starting run {self.run_id} at {start_id} ({node_count} nodes)")
        await self.bus.emit(
            EventType.FLOW_STARTED,
            self.run_id,
            startNodeId=start_id,
            nodeCount=node_count,
            connectionCount=len(self.graph.connections),
        )

        try:
            completed = await self._walk(start_id)
        finally:
            clear_trace_context()

        if self.status == RunStatus.RUNNING:
            self.status = RunStatus.COMPLETED if completed else RunStatus.STOPPED
        return await self._finish(started)

    async def _walk(self, start_id: str) -> bool:
        """Follow first outgoing edges. Returns False when a hook stopped the run."""
        current: str | None = start_id
        max_steps = len(self.graph.nodes) * 2
        steps = 0
        while current and steps < max_steps:
            node = self.graph.node(current)
            if node is None:
                logger.warning(f"⚠ Node {current} not found; stopping")
                break
            if not await self._before_node(node):
                return False
            await self._run_node(node, self._observed)
            current = self.next_node_id(current)
            steps += 1

        if current and steps >= max_steps:
            logger.warning("⚠ Workflow execution stopped to prevent infinite loop.")
        return True

    async def _finish(self, started: float) -> RunManifest:
        disallowed = self._observed.disallowed_models(self.options.allowed_models) if self._observed else []
        if disallowed:
            self.status = RunStatus.ERROR

        manifest = self.build_manifest(int((time.monotonic() - started) * 1000))
        if self.options.assertions:
            report = evaluate_assertions(self.options.assertions, manifest.results, self.graph.connections)
            manifest.assertions = report.model_dump(mode="json")

        await self.bus.emit(
            EventType.FLOW_FINISHED,
            self.run_id,
            status="error" if self.status == RunStatus.ERROR else "success",
            runStatus=self.status.value,
            durationMs=manifest.duration,
            error=f"Disallowed models used: {', '.join(disallowed)}" if disallowed else None,
        )
        if self.history is not None:
            await self.history.save(manifest)

        if disallowed:
            logger.error(f"✗ Run {self.run_id} used disallowed models: {disallowed}")
            raise PolicyViolationError(disallowed, self.options.allowed_models or [])
        logger.info(f"✓ Run {self.run_id} {self.status.value} in {manifest.duration}ms")
        return manifest

    def build_manifest(self, duration_ms: int) -> RunManifest:
        overrides = self.options.overrides
        return RunManifest(
            id=self.run_id,
            scenario=self.options.scenario,
            environment=overrides.environment,
            seed=overrides.seed,
            nodes=list(self.graph.nodes),
            connections=list(self.graph.connections),
            start_node_id=self.start_node_id,
            results=jsonable_results(self.results),
            duration=duration_ms,
            status=self.status,
        )


async def run_workflow_with_properties(
    document: FlowDocument,
    llm: LLMProvider | None = None,
    options: RunOptions | None = None,
    bus: EventBus | None = None,
    before_node_execute: BeforeNodeHook | None = None,
    history: RunHistory | None = None,
) -> dict[str, Any]:
    """
    Run a flow linearly and return its results map.

    Per-node ``_properties_result`` values are ExecutionResult objects.
    Use ``LinearRunner`` directly to get the full RunManifest.
    """
    runner = LinearRunner(document, llm, options, bus, before_node_execute, history)
    await runner.run()
    return runner.results
