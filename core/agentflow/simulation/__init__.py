"""Deterministic tool simulation: catalog presets, simulator and scenario providers."""

from agentflow.simulation.catalog import (
    TOOL_CATALOG,
    ToolMockPreset,
    ToolSchema,
    get_mock_preset,
    get_tool_schema,
    normalize_capability,
)
from agentflow.simulation.providers import get_provider, seeded_random
from agentflow.simulation.simulator import (
    ToolError,
    ToolInvocation,
    ToolOverride,
    ToolResult,
    ToolSimulator,
)

__all__ = [
    "TOOL_CATALOG",
    "ToolSchema",
    "ToolMockPreset",
    "get_mock_preset",
    "get_tool_schema",
    "normalize_capability",
    "get_provider",
    "seeded_random",
    "ToolSimulator",
    "ToolInvocation",
    "ToolResult",
    "ToolError",
    "ToolOverride",
]
