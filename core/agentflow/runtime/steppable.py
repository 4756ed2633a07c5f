"""
Steppable Runner - the linear runner with pause, step, resume and breakpoints.

The run executes as a task of its own; a controller (testing panel, CLI,
test) drives it from another task:

    runner = SteppableRunner(document, llm=llm)
    runner.toggle_breakpoint("tool-1")
    task = asyncio.create_task(runner.run())
    await runner.wait_until_parked()   # stopped before tool-1
    await runner.step()                # runs tool-1, stops before the next node
    await runner.resume()              # runs to completion or the next breakpoint
    manifest = await task
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from agentflow.errors import AgentFlowError
from agentflow.graph.model import Node
from agentflow.runtime.event_bus import EventType
from agentflow.runtime.gate import ExecutionGate
from agentflow.runtime.runner import LinearRunner
from agentflow.schemas.run import RunManifest, RunStatus

logger = logging.getLogger(__name__)

MIN_SPEED = 0.1
MAX_SPEED = 5.0


class ExecutionStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ExecutionState:
    """Controller-facing view of a steppable run."""

    status: ExecutionStatus = ExecutionStatus.IDLE
    current_node_id: str | None = None
    queued_nodes: list[str] = field(default_factory=list)
    completed_nodes: list[str] = field(default_factory=list)
    breakpoints: set[str] = field(default_factory=set)
    speed: float = 1.0
    start_time: int | None = None
    pause_time: int | None = None
    total_pause_time: int = 0


@dataclass
class ExecutionStep:
    """One node execution as recorded by the steppable runner."""

    node_id: str
    input_data: dict[str, Any]
    timestamp: int
    status: str = "completed"  # completed | error
    output: Any = None
    error: str | None = None
    duration_ms: int = 0


def speed_delay_ms(speed: float) -> float:
    """Inter-node delay for a speed multiplier; 0 at speed 1.0 and above."""
    return max(0.0, 1000 / speed - 1000)


class SteppableRunner(LinearRunner):
    """
    LinearRunner gated by an ExecutionGate before every node.

    The runner suspends before a node when it has been paused or when the
    node carries a breakpoint. ``step()`` lets exactly one node through and
    leaves the pause armed. ``reset()`` releases a suspended run, which then
    stops without running further nodes; breakpoints and speed are kept.
    A new ``run()`` waits for a released run to wind down before it starts.
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.gate = ExecutionGate()
        self.state = ExecutionState()
        self.steps: list[ExecutionStep] = []
        self._idle = asyncio.Event()
        self._idle.set()

    # === CONTROLS ===

    async def pause(self) -> None:
        if self.state.status != ExecutionStatus.RUNNING:
            return
        self.gate.pause()
        self._mark_paused()
        await self.bus.emit(EventType.FLOW_PAUSED, self.run_id, self.state.current_node_id)
        logger.info(f"⏸ Paused run {self.run_id}")

    async def resume(self) -> None:
        """Run to completion or to the next breakpoint."""
        if self.state.status != ExecutionStatus.PAUSED:
            return
        self._mark_running()
        self.gate.resume()
        await self.bus.emit(EventType.FLOW_RESUMED, self.run_id, self.state.current_node_id)
        logger.info(f"▶ Resumed run {self.run_id}")

    async def step(self) -> None:
        """Run exactly one node, then return once the run is parked again or has finished."""
        if self.state.status != ExecutionStatus.PAUSED:
            return
        if not self.gate.step():
            return
        self._mark_running()
        await self.bus.emit(EventType.FLOW_RESUMED, self.run_id, self.state.current_node_id, step=True)
        await self.gate.wait_until_parked()

    def reset(self) -> None:
        """Stop scheduling, release any waiter and clear run data. Breakpoints and speed survive."""
        self.gate.release()
        self.state = ExecutionState(breakpoints=self.state.breakpoints, speed=self.state.speed)
        self.results = {}
        self.steps = []
        logger.info(f"🔄 Reset run {self.run_id}")

    def set_speed(self, speed: float) -> float:
        self.state.speed = max(MIN_SPEED, min(MAX_SPEED, speed))
        return self.state.speed

    def toggle_breakpoint(self, node_id: str) -> bool:
        """Returns True when the breakpoint is now set."""
        if node_id in self.state.breakpoints:
            self.state.breakpoints.discard(node_id)
            return False
        self.state.breakpoints.add(node_id)
        return True

    async def wait_until_parked(self) -> None:
        await self.gate.wait_until_parked()

    # === QUERIES ===

    @property
    def execution_state(self) -> ExecutionState:
        return self.state

    @property
    def execution_steps(self) -> list[ExecutionStep]:
        return list(self.steps)

    @property
    def execution_results(self) -> dict[str, Any]:
        return dict(self.results)

    # === STATE TRANSITIONS ===

    def _mark_paused(self) -> None:
        if self.state.status == ExecutionStatus.PAUSED:
            return
        self.state.status = ExecutionStatus.PAUSED
        self.state.pause_time = _now_ms()

    def _mark_running(self) -> None:
        if self.state.pause_time is not None:
            self.state.total_pause_time += _now_ms() - self.state.pause_time
            self.state.pause_time = None
        self.state.status = ExecutionStatus.RUNNING

    # === RUNNER HOOKS ===

    async def _before_node(self, node: Node) -> bool:
        if self.gate.released:
            return False

        if self.steps:
            delay = speed_delay_ms(self.state.speed)
            if delay > 0:
                await asyncio.sleep(delay / 1000)

        self.state.current_node_id = node.id
        self.state.queued_nodes = [node.id]
        at_breakpoint = node.id in self.state.breakpoints
        if at_breakpoint or self.gate.paused:
            if self.state.status != ExecutionStatus.PAUSED:
                self._mark_paused()
                await self.bus.emit(
                    EventType.FLOW_PAUSED, self.run_id, node.id, breakpoint=at_breakpoint
                )
                logger.info(f"⏸ Paused before {node.id}{' (breakpoint)' if at_breakpoint else ''}")
        if not await self.gate.wait(force=at_breakpoint):
            return False
        if self.state.status == ExecutionStatus.PAUSED:
            self._mark_running()
        self.state.queued_nodes = []
        return True

    async def _after_node(
        self, node: Node, input_data: dict[str, Any], output: Any, error: str | None, duration_ms: int
    ) -> None:
        self.state.completed_nodes.append(node.id)
        self.steps.append(
            ExecutionStep(
                node_id=node.id,
                input_data=input_data,
                timestamp=_now_ms() - duration_ms,
                status="error" if error else "completed",
                output=output,
                error=error,
                duration_ms=duration_ms,
            )
        )

    async def run(self) -> RunManifest:
        """
        Execute the flow under the gate.

        Raises:
            AgentFlowError: If a previous run is still in progress and was
                not released with ``reset()``
        """
        if not self._idle.is_set():
            if not self.gate.released:
                raise AgentFlowError(f"Run {self.run_id} is still in progress; reset() it first")
            await self._idle.wait()

        self._idle.clear()
        try:
            return await self._run_gated()
        finally:
            self._idle.set()

    async def _run_gated(self) -> RunManifest:
        self.gate.rearm()
        self.steps = []
        self.state.status = ExecutionStatus.RUNNING
        self.state.completed_nodes = []
        self.state.start_time = _now_ms()
        self.state.pause_time = None
        self.state.total_pause_time = 0
        try:
            manifest = await super().run()
        except Exception:
            self.state.status = ExecutionStatus.ERROR
            raise
        finally:
            self.gate.finish()

        if self.gate.released:
            manifest.status = RunStatus.STOPPED
            self.state.status = ExecutionStatus.IDLE
        elif manifest.status == RunStatus.ERROR:
            self.state.status = ExecutionStatus.ERROR
        else:
            self.state.status = ExecutionStatus.COMPLETED
        self.state.current_node_id = None
        return manifest
