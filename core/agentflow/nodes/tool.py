"""Tool node: invokes the deterministic ToolSimulator in mock mode."""

import json
import logging
import time
from typing import Any

from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput, typed_output
from agentflow.schemas.run import Environment
from agentflow.simulation.simulator import ToolInvocation

logger = logging.getLogger(__name__)


def tool_seed(tool_name: str, operation: str, args: dict[str, Any], run_seed: int | None = None) -> str:
    """Seed from tool, operation and non-null args. Nested values are JSON-encoded."""
    normalized = {
        k: json.dumps(v, sort_keys=True, default=str) if isinstance(v, dict | list) else v
        for k, v in args.items()
        if v is not None
    }
    payload: dict[str, Any] = {"tool": tool_name, "op": operation, "args": normalized}
    if run_seed is not None:
        payload["seed"] = run_seed
    return json.dumps(payload, sort_keys=True, default=str)


class ToolNode(BaseNode):
    """
    Config:
        toolName: catalog tool (default ``web_search``)
        operation: operation name
        args: static arguments; joined inputs are added as ``input``
        mode: ``mock`` | ``live``
        mockPreset, latencyMs, errorMode: passed to the simulator

    Run overrides supply latency, per-tool error injection and a seed when
    the node leaves them unset. A ``live`` environment switches the node to
    live mode.
    """

    @property
    def tool_name(self) -> str:
        return self.data.get("toolName") or "web_search"

    @property
    def operation(self) -> str:
        return self.data.get("operation") or ""

    def mode(self, ctx: NodeContext) -> str:
        if ctx.run_options.overrides.environment == Environment.LIVE:
            return "live"
        return self.data.get("mode") or "mock"

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        started = time.monotonic()
        mode = self.mode(ctx)
        overrides = ctx.run_options.overrides
        meta: dict[str, Any] = {
            "node_type": "tool",
            "tool_name": self.tool_name,
            "op": self.operation,
            "mode": mode,
        }

        args = dict(self.data.get("args") or {})
        values = self.get_input_values(ctx)
        if values:
            args["input"] = "\n".join(values)

        if mode != "mock":
            meta.update(used_preset=None, latency_ms=0, error="Live mode not yet implemented")
            return typed_output("json", {"result": None}, meta)

        result = await ctx.simulator.invoke(
            ToolInvocation(
                tool_name=self.tool_name,
                operation=self.operation,
                args=args,
                seed=tool_seed(self.tool_name, self.operation, args, overrides.seed),
                latency_ms=self.data.get("latencyMs") or overrides.latency,
                error_mode=self.data.get("errorMode") or overrides.error_injection.get(self.tool_name),
                mock_preset=self.data.get("mockPreset"),
            )
        )
        meta.update(
            used_preset=result.used_preset,
            latency_ms=result.latency_ms or int((time.monotonic() - started) * 1000),
            error=None if result.ok else result.error.message,
        )
        if result.ok:
            logger.info(f"✓ Tool {self.tool_name}.{self.operation} ({result.mock_source})")
        return typed_output("json", {"result": result.data if result.ok else None}, meta)
