"""
Tests for the run event bus, the execution gate and the runners.

Run with:
    cd core
    pytest tests/test_runtime.py -v
"""

import asyncio
from typing import Any

import pytest

from agentflow.bridge.properties import LIST_SUCCESS_RESULT
from agentflow.bridge.result import ExecutionResult
from agentflow.errors import AgentFlowError, PolicyViolationError, StartNodeNotSetError
from agentflow.graph.model import FlowDocument, Node, normalize_connection
from agentflow.llm.mock import MockLLMProvider
from agentflow.runtime import (
    EventBus,
    EventType,
    ExecutionGate,
    ExecutionStatus,
    FlowEngine,
    FlowEvent,
    LinearRunner,
    SteppableRunner,
    generate_summary,
    run_workflow_with_properties,
    validate_connections,
)
from agentflow.runtime.runner import PROPERTIES_RESULT, RAW_RESULT
from agentflow.schemas.run import RunOptions, RunStatus
from agentflow.storage.history import RunHistory

# === HELPERS ===


def message(node_id: str, text: str, **extra: Any) -> Node:
    return Node(id=node_id, kind="message", config={"message": text}, **extra)


def chain(*nodes: Node, start: str | None = None) -> FlowDocument:
    conns = [
        normalize_connection({"source": a.id, "target": b.id}) for a, b in zip(nodes, nodes[1:], strict=False)
    ]
    return FlowDocument(nodes=list(nodes), connections=conns, start_node_id=start or nodes[0].id)


def calendar_flow() -> FlowDocument:
    agent = Node(id="agent-1", kind="agent", config={"rules": {"nl": "Check my calendar for free slots"}})
    tool = Node(
        id="tool-1",
        kind="tool",
        config={
            "simulation": {
                "providerId": "calendar",
                "operation": "list_events",
                "mockPreset": "list_success",
                "latency": 0,
            }
        },
    )
    return chain(agent, tool)


class Recorder:
    def __init__(self, bus: EventBus, types: list[EventType] | None = None):
        self.events: list[FlowEvent] = []
        bus.subscribe(types or list(EventType), self.handle)

    async def handle(self, event: FlowEvent) -> None:
        self.events.append(event)

    def types(self) -> list[EventType]:
        return [e.type for e in self.events]


# === EVENT BUS ===


class TestEventBus:
    @pytest.mark.asyncio
    async def test_subscribe_and_filters(self):
        bus = EventBus()
        seen: list[str] = []

        async def on_any(event: FlowEvent) -> None:
            seen.append(f"any:{event.node_id}")

        async def on_node(event: FlowEvent) -> None:
            seen.append(f"node:{event.node_id}")

        bus.subscribe([EventType.NODE_STARTED], on_any, filter_run="run-1")
        sub_id = bus.subscribe([EventType.NODE_STARTED], on_node, filter_node="b")

        await bus.emit(EventType.NODE_STARTED, "run-1", "a")
        await bus.emit(EventType.NODE_STARTED, "run-2", "b")
        await bus.emit(EventType.NODE_FINISHED, "run-1", "b")
        assert seen == ["any:a", "node:b"]

        assert bus.unsubscribe(sub_id)
        assert not bus.unsubscribe(sub_id)

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self):
        bus = EventBus()
        calls = []

        async def broken(event: FlowEvent) -> None:
            raise RuntimeError("subscriber bug")

        async def healthy(event: FlowEvent) -> None:
            calls.append(event.type)

        bus.subscribe([EventType.FLOW_STARTED], broken)
        bus.subscribe([EventType.FLOW_STARTED], healthy)
        event = await bus.emit(EventType.FLOW_STARTED, "run-1")

        assert calls == [EventType.FLOW_STARTED]
        assert event.type == EventType.FLOW_STARTED

    @pytest.mark.asyncio
    async def test_history_and_stats(self):
        bus = EventBus(max_history=3)
        for node_id in ["a", "b", "c", "d"]:
            await bus.emit(EventType.NODE_STARTED, "run-1", node_id)
        await bus.emit(EventType.NODE_FINISHED, "run-2", "d")

        history = bus.get_history()
        assert [e.node_id for e in history] == ["d", "d", "c"]
        assert [e.node_id for e in bus.get_history(event_type=EventType.NODE_STARTED)] == ["d", "c"]
        assert bus.get_history(run_id="run-2")[0].type == EventType.NODE_FINISHED
        assert len(bus.get_history(limit=1)) == 1

        stats = bus.get_stats()
        assert stats["total_events"] == 3
        assert stats["events_by_type"] == {"node-started": 2, "node-finished": 1}

        bus.clear_history()
        assert bus.get_history() == []

    @pytest.mark.asyncio
    async def test_wait_for(self):
        bus = EventBus()
        waiter = asyncio.create_task(bus.wait_for(EventType.FLOW_FINISHED, run_id="run-1"))
        await asyncio.sleep(0)
        await bus.emit(EventType.FLOW_FINISHED, "run-1", status="success")

        event = await waiter
        assert event.data["status"] == "success"
        assert bus.get_stats()["subscriptions"] == 0

    @pytest.mark.asyncio
    async def test_wait_for_timeout(self):
        bus = EventBus()
        assert await bus.wait_for(EventType.FLOW_FINISHED, timeout=0.01) is None

    def test_to_dict_is_flat(self):
        event = FlowEvent(type=EventType.NODE_FINISHED, run_id="run-1", node_id="a", data={"durationMs": 3}, at=1)
        assert event.to_dict() == {"type": "node-finished", "at": 1, "runId": "run-1", "nodeId": "a", "durationMs": 3}
        assert "nodeId" not in FlowEvent(type=EventType.FLOW_STARTED, run_id="run-1").to_dict()


# === GATE ===


class TestExecutionGate:
    @pytest.mark.asyncio
    async def test_open_gate_passes(self):
        assert await ExecutionGate().wait()

    def test_step_requires_pause(self):
        gate = ExecutionGate()
        assert not gate.step()
        gate.pause()
        assert gate.step()

    @pytest.mark.asyncio
    async def test_step_lets_one_through(self):
        gate = ExecutionGate()
        gate.pause()
        waiter = asyncio.create_task(gate.wait())
        await gate.wait_until_parked()
        assert gate.parked

        gate.step()
        assert await waiter
        assert gate.paused

    @pytest.mark.asyncio
    async def test_release_stops_waiters(self):
        gate = ExecutionGate()
        waiter = asyncio.create_task(gate.wait(force=True))
        await gate.wait_until_parked()
        gate.release()
        assert await waiter is False

        gate.rearm()
        assert not gate.released
        assert await gate.wait()


# === LINEAR RUNNER ===


class TestLinearRunner:
    @pytest.mark.asyncio
    async def test_agent_delegates_to_connected_tool(self):
        bus = EventBus()
        recorder = Recorder(bus)
        runner = LinearRunner(calendar_flow(), llm=MockLLMProvider(), bus=bus)
        manifest = await runner.run()

        assert manifest.status == RunStatus.COMPLETED
        agent_result = runner.results["agent-1"][PROPERTIES_RESULT]
        assert isinstance(agent_result, ExecutionResult)
        assert "operation: list_events" in agent_result.execution_summary
        assert agent_result.result == runner.results["agent-1"][RAW_RESULT] == LIST_SUCCESS_RESULT
        assert runner.results["tool-1"][PROPERTIES_RESULT].result == LIST_SUCCESS_RESULT
        assert runner.results["tool-1"][RAW_RESULT] == LIST_SUCCESS_RESULT

        ui = manifest.results["agent-1"][PROPERTIES_RESULT]
        assert "operation: list_events" in ui["executionSummary"]

        types = recorder.types()
        assert types[0] == EventType.FLOW_STARTED
        assert types[-1] == EventType.FLOW_FINISHED
        assert types.count(EventType.NODE_STARTED) == 2
        assert EventType.LLM_REQUEST in types
        llm_event = next(e for e in recorder.events if e.type == EventType.LLM_REQUEST)
        assert llm_event.node_id == "agent-1"
        assert recorder.events[-1].data["status"] == "success"

    @pytest.mark.asyncio
    async def test_outputs_keyed_by_port(self):
        doc = chain(message("a", "hello", outputs=["output"]), message("b", "bye"))
        results = await run_workflow_with_properties(doc)
        assert results["a"]["output"] == "hello"
        assert results["a"]["_node_type"] == "message"
        assert results["b"][RAW_RESULT] == "bye"

    @pytest.mark.asyncio
    async def test_start_node_required(self):
        doc = chain(message("a", "hi"))
        doc.start_node_id = None
        with pytest.raises(StartNodeNotSetError, match="Start node not set"):
            await LinearRunner(doc).run()

        doc.start_node_id = "ghost"
        with pytest.raises(StartNodeNotSetError, match="Start node ghost not found"):
            await LinearRunner(doc).run()

    @pytest.mark.asyncio
    async def test_cycle_is_bounded(self):
        doc = FlowDocument(
            nodes=[message("a", "x"), message("b", "y")],
            connections=[{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
            start_node_id="a",
        )
        bus = EventBus()
        recorder = Recorder(bus, [EventType.NODE_STARTED])
        manifest = await LinearRunner(doc, bus=bus).run()

        assert manifest.status == RunStatus.COMPLETED
        assert len(recorder.events) == 4

    @pytest.mark.asyncio
    async def test_scenario_and_inputs_reach_start_node(self):
        doc = chain(Node(id="a", kind="message", config={"template": "Hi {{name}}: {{input}}"}))
        options = RunOptions(inputs={"name": "Ada"}, scenario={"name": "s", "description": "busy week"})
        results = await run_workflow_with_properties(doc, options=options)
        assert results["a"][RAW_RESULT] == "Hi Ada: busy week"

    @pytest.mark.asyncio
    async def test_assertions_and_history(self, tmp_path):
        history = RunHistory(tmp_path)
        options = RunOptions(
            assertions=[
                {"id": "ok", "op": "equals", "path": "a._raw_result", "value": "hello"},
                {"id": "bad", "op": "exists", "path": "a.missing"},
            ]
        )
        runner = LinearRunner(chain(message("a", "hello")), options=options, history=history)
        manifest = await runner.run()

        assert manifest.assertions["passed"] is False
        assert [r["passed"] for r in manifest.assertions["results"]] == [True, False]
        saved = await history.load(runner.run_id)
        assert saved is not None
        assert saved.results["a"][RAW_RESULT] == "hello"

    @pytest.mark.asyncio
    async def test_disallowed_model_fails_after_run(self, tmp_path):
        history = RunHistory(tmp_path)
        doc = chain(Node(id="agent-1", kind="agent", config={"rules": {"nl": "Say hi"}}))
        options = RunOptions(allowed_models=["gpt-4o-mini"])
        runner = LinearRunner(doc, llm=MockLLMProvider(), options=options, history=history)

        with pytest.raises(PolicyViolationError) as exc_info:
            await runner.run()

        assert exc_info.value.disallowed == ["mock-model"]
        saved = await history.load(runner.run_id)
        assert saved.status == RunStatus.ERROR


# === STEPPABLE RUNNER ===


class TestSteppableRunner:
    @pytest.mark.asyncio
    async def test_breakpoint_step_resume(self):
        bus = EventBus()
        recorder = Recorder(bus, [EventType.FLOW_PAUSED, EventType.FLOW_RESUMED])
        runner = SteppableRunner(chain(message("a", "1"), message("b", "2"), message("c", "3")), bus=bus)
        assert runner.toggle_breakpoint("b")

        task = asyncio.create_task(runner.run())
        await runner.wait_until_parked()
        state = runner.execution_state
        assert state.status == ExecutionStatus.PAUSED
        assert state.current_node_id == "b"
        assert state.completed_nodes == ["a"]
        assert recorder.events[0].data["breakpoint"] is True

        await runner.step()
        assert runner.execution_state.completed_nodes == ["a", "b"]
        assert runner.execution_state.status == ExecutionStatus.PAUSED
        assert runner.execution_state.current_node_id == "c"

        await runner.resume()
        manifest = await task
        assert manifest.status == RunStatus.COMPLETED
        assert runner.execution_state.status == ExecutionStatus.COMPLETED
        assert [s.node_id for s in runner.execution_steps] == ["a", "b", "c"]
        assert runner.execution_results["c"][RAW_RESULT] == "3"
        assert EventType.FLOW_RESUMED in recorder.types()

    @pytest.mark.asyncio
    async def test_reset_stops_and_keeps_breakpoints(self):
        runner = SteppableRunner(chain(message("a", "1"), message("b", "2")))
        runner.toggle_breakpoint("b")
        runner.set_speed(2.0)

        task = asyncio.create_task(runner.run())
        await runner.wait_until_parked()
        runner.reset()
        manifest = await task

        assert manifest.status == RunStatus.STOPPED
        assert runner.execution_state.status == ExecutionStatus.IDLE
        assert runner.execution_state.breakpoints == {"b"}
        assert runner.execution_state.speed == 2.0
        assert runner.execution_steps == []

    @pytest.mark.asyncio
    async def test_run_after_reset_does_not_revive_stopped_run(self):
        bus = EventBus()
        recorder = Recorder(bus, [EventType.NODE_STARTED])
        runner = SteppableRunner(chain(message("a", "1"), message("b", "2"), message("c", "3")), bus=bus)
        runner.toggle_breakpoint("b")

        first = asyncio.create_task(runner.run())
        await runner.wait_until_parked()
        runner.reset()
        runner.toggle_breakpoint("b")
        second = await runner.run()
        stopped = await first

        assert stopped.status == RunStatus.STOPPED
        assert "b" not in stopped.results
        assert second.status == RunStatus.COMPLETED
        assert [e.node_id for e in recorder.events] == ["a", "a", "b", "c"]
        assert runner.execution_state.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_second_run_while_paused_is_rejected(self):
        runner = SteppableRunner(chain(message("a", "1"), message("b", "2")))
        runner.toggle_breakpoint("b")

        first = asyncio.create_task(runner.run())
        await runner.wait_until_parked()
        with pytest.raises(AgentFlowError, match="still in progress"):
            await runner.run()

        await runner.resume()
        assert (await first).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_controls_ignored_when_not_paused(self):
        runner = SteppableRunner(chain(message("a", "1")))
        await runner.step()
        await runner.resume()
        assert runner.execution_state.status == ExecutionStatus.IDLE

        manifest = await runner.run()
        assert manifest.status == RunStatus.COMPLETED

    def test_speed_and_breakpoints(self):
        runner = SteppableRunner(chain(message("a", "1")))
        assert runner.set_speed(10) == 5.0
        assert runner.set_speed(0) == 0.1
        assert runner.toggle_breakpoint("a")
        assert not runner.toggle_breakpoint("a")
        assert runner.execution_state.breakpoints == set()


# === FLOW ENGINE ===


def branching_flow() -> FlowDocument:
    return FlowDocument(
        nodes=[
            {"id": "src", "type": "message", "data": {"content": "it is sunny"}},
            {"id": "if", "type": "if-else", "data": {"condition": "sunny"}, "outputs": ["true-path", "false-path"]},
            {"id": "yes", "type": "message", "data": {"content": "Yes"}},
            {"id": "no", "type": "message", "data": {"content": "No"}},
        ],
        connections=[
            {"id": "c1", "source": "src", "target": "if"},
            {"id": "c2", "source": "if", "target": "yes", "sourceOutput": "true-path"},
            {"id": "c3", "source": "if", "target": "no", "sourceOutput": "false-path"},
        ],
        startNodeId="src",
    )


class TestFlowEngine:
    @pytest.mark.asyncio
    async def test_untaken_branch_is_skipped(self):
        bus = EventBus()
        recorder = Recorder(bus, [EventType.NODE_SKIPPED, EventType.NODE_FINISHED])
        engine = FlowEngine(branching_flow(), llm=MockLLMProvider(), bus=bus, visual_delay_ms=0, use_simulators=False)
        manifest = await engine.execute()

        assert manifest.results["if"] == {"output": "true"}
        assert manifest.results["yes"] == "Yes"
        assert "no" not in manifest.results
        assert engine.skipped == ["no"]

        skipped = [e for e in recorder.events if e.type == EventType.NODE_SKIPPED]
        assert [e.node_id for e in skipped] == ["no"]
        if_finished = next(e for e in recorder.events if e.node_id == "if")
        assert if_finished.data["forwardedTargetNodeIds"] == ["yes"]
        assert if_finished.data["summary"] == "If/Else → true"

    @pytest.mark.asyncio
    async def test_invalid_connections_are_dropped(self):
        doc = branching_flow()
        doc.connections.append(normalize_connection({"id": "bad", "source": "src", "target": "ghost"}))
        engine = FlowEngine(doc, llm=MockLLMProvider(), visual_delay_ms=0, use_simulators=False)
        await engine.execute()
        assert engine.connection_issues == {"bad": "Invalid connection bad: target node 'ghost' not found."}

    def test_validate_connections(self):
        nodes = [
            Node(id="a", kind="message", outputs=[{"id": "out", "type": "text"}]),
            Node(id="b", kind="message", inputs=[{"id": "in", "type": "json"}, {"id": "raw"}]),
        ]
        conns = [
            normalize_connection({"id": "c1", "source": "x", "target": "b"}),
            normalize_connection({"id": "c2", "source": "a", "target": "b", "sourceOutput": "nope", "targetInput": "raw"}),
            normalize_connection({"id": "c3", "source": "a", "target": "b", "sourceOutput": "out", "targetInput": "zzz"}),
            normalize_connection({"id": "c4", "source": "a", "target": "b", "sourceOutput": "out", "targetInput": "in"}),
            normalize_connection({"id": "c5", "source": "a", "target": "b", "sourceOutput": "out", "targetInput": "raw"}),
        ]
        report = validate_connections(nodes, conns)

        assert [c.id for c in report.valid] == ["c5"]
        assert report.issues == {
            "c1": "Invalid connection c1: source node 'x' not found.",
            "c2": "Invalid connection c2: source output 'nope' not found on node 'a'.",
            "c3": "Invalid connection c3: target input 'zzz' not found on node 'b'.",
            "c4": "Type mismatch on connection c4: 'a.out:text' -> 'b.in:json'.",
        }

    def test_generate_summary(self):
        plain = Node(id="n", kind="message")
        branch = Node(id="d", kind="decision-tree")
        assert generate_summary(plain, "  hi  ") == "hi"
        assert generate_summary(plain, {"error": "boom"}) == "Error: boom"
        assert generate_summary(branch, {"output": "left"}) == "Branch → left"
        assert generate_summary(plain, {"llm": {}}) == "LLM response"
        assert generate_summary(plain, {"a": 1}) == '{"a": 1}'
        long = generate_summary(plain, "x" * 500)
        assert len(long) == 160
        assert long.endswith("…")
