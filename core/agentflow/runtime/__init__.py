"""Runtime: runners, the flow engine and the run event bus."""

from agentflow.runtime.engine import FlowEngine, generate_summary, validate_connections
from agentflow.runtime.event_bus import EventBus, EventType, FlowEvent
from agentflow.runtime.gate import ExecutionGate
from agentflow.runtime.observed_llm import ObservedLLM
from agentflow.runtime.runner import LinearRunner, run_workflow_with_properties
from agentflow.runtime.steppable import ExecutionState, ExecutionStatus, ExecutionStep, SteppableRunner

__all__ = [
    "EventBus",
    "EventType",
    "FlowEvent",
    "ExecutionGate",
    "ObservedLLM",
    "LinearRunner",
    "run_workflow_with_properties",
    "SteppableRunner",
    "ExecutionState",
    "ExecutionStatus",
    "ExecutionStep",
    "FlowEngine",
    "generate_summary",
    "validate_connections",
]
