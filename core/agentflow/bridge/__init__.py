"""Properties bridge: run nodes straight from their Properties Panel configuration."""

from agentflow.bridge.delegation import (
    connected_tools,
    delegate_to_tool,
    inject_tool_rules,
)
from agentflow.bridge.intent import ToolBinding, extract_intent
from agentflow.bridge.properties import effective_kind, execute_node_from_properties, is_configured
from agentflow.bridge.result import NO_INFO, ExecutionResult, ResultType

__all__ = [
    "ExecutionResult",
    "ResultType",
    "NO_INFO",
    "ToolBinding",
    "execute_node_from_properties",
    "effective_kind",
    "is_configured",
    "extract_intent",
    "connected_tools",
    "inject_tool_rules",
    "delegate_to_tool",
]
