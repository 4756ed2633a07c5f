"""
Tool simulator - deterministic stand-in for external tool calls.

Resolution order for a successful call: per-tool custom output, then a
named catalog preset, then generated data keyed by a seed hash. Generated
data never depends on the wall clock, so a fixed seed always produces the
same result.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from agentflow.simulation.catalog import get_mock_preset
from agentflow.simulation.providers import seeded_random

logger = logging.getLogger(__name__)

ERROR_MODES = ("none", "timeout", "not_found", "rate_limit", "auth_error", "server_error")

_ERROR_MESSAGES = {
    "timeout": "Request to {tool}.{op} timed out",
    "not_found": "Resource not found in {tool}.{op}",
    "rate_limit": "Rate limit exceeded for {tool}.{op}",
    "auth_error": "Authentication failed for {tool}.{op}",
    "server_error": "Server error in {tool}.{op}",
}

# Fixed reference point for generated timestamps
_EPOCH = datetime(2025, 8, 10, 9, 0, tzinfo=UTC)


@dataclass
class ToolInvocation:
    tool_name: str
    operation: str = ""
    args: dict[str, Any] = field(default_factory=dict)
    seed: str | None = None
    latency_ms: int | None = None
    error_mode: str | None = None
    mock_preset: str | None = None


@dataclass
class ToolError:
    kind: str
    message: str
    code: str = ""


@dataclass
class ToolResult:
    """Outcome of a simulated call: either ``data`` or ``error`` is set."""

    ok: bool
    data: Any = None
    error: ToolError | None = None
    latency_ms: int = 0
    used_preset: str | None = None
    mock_source: str = "generated"

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "data": self.data}
        assert self.error is not None
        return {
            "ok": False,
            "error": {"kind": self.error.kind, "message": self.error.message, "code": self.error.code},
        }


@dataclass
class ToolOverride:
    """Per ``tool:operation`` behavior that replaces the defaults."""

    latency_ms: int | None = None
    error_mode: str | None = None
    preset_id: str | None = None
    custom_output: Any = None


def default_seed(tool_name: str, operation: str, args: dict[str, Any]) -> str:
    return f"{tool_name}:{operation}:{json.dumps(args, sort_keys=True, default=str)}"


def _hash(seed: str) -> int:
    return int(seeded_random(seed) * 0xFFFFFFFF)


class ToolSimulator:
    """
    Deterministic tool simulator.

    Args:
        default_latency_ms: Latency applied when neither the invocation nor
            an override sets one
    """

    def __init__(self, default_latency_ms: int = 0):
        self.default_latency_ms = default_latency_ms
        self._overrides: dict[str, ToolOverride] = {}

    # === OVERRIDES ===

    def set_override(self, tool_name: str, operation: str, override: ToolOverride) -> None:
        self._overrides[f"{tool_name}:{operation}"] = override

    def remove_override(self, tool_name: str, operation: str) -> None:
        self._overrides.pop(f"{tool_name}:{operation}", None)

    def clear_overrides(self) -> None:
        self._overrides.clear()

    # === INVOCATION ===

    async def invoke(self, invocation: ToolInvocation) -> ToolResult:
        tool, op = invocation.tool_name, invocation.operation
        override = self._overrides.get(f"{tool}:{op}")
        source = "custom" if override else "preset"

        latency = (
            (override.latency_ms if override else None)
            or invocation.latency_ms
            or self.default_latency_ms
        )
        if latency > 0:
            await asyncio.sleep(latency / 1000)

        error_mode = (override.error_mode if override else None) or invocation.error_mode
        if error_mode and error_mode != "none":
            logger.info(f"✗ Simulated {error_mode} for {tool}.{op}", extra={"tool_name": tool})
            return ToolResult(
                ok=False,
                error=self._error(error_mode, tool, op),
                latency_ms=latency,
                mock_source=source,
            )

        if override is not None and override.custom_output is not None:
            return ToolResult(ok=True, data=override.custom_output, latency_ms=latency, mock_source="custom")

        preset_name = (override.preset_id if override else None) or invocation.mock_preset
        preset = get_mock_preset(tool, preset_name)
        if preset is not None:
            if preset.is_error:
                return ToolResult(
                    ok=False,
                    error=ToolError(kind="preset_error", message=preset.error or "", code="PRESET_ERROR"),
                    latency_ms=latency,
                    used_preset=preset.name,
                    mock_source=source,
                )
            return ToolResult(
                ok=True, data=preset.result, latency_ms=latency, used_preset=preset.name, mock_source=source
            )

        seed = invocation.seed or default_seed(tool, op, invocation.args)
        return ToolResult(
            ok=True,
            data=self.generate(tool, op, invocation.args, seed),
            latency_ms=latency,
            mock_source="generated",
        )

    # === GENERATION ===

    def generate(self, tool: str, operation: str, args: dict[str, Any], seed: str) -> Any:
        """Deterministic mock data for a tool call."""
        h = _hash(seed)

        if tool == "calendar":
            if operation in ("list_events", "listEvents", "findEvents"):
                return [
                    {
                        "id": f"evt_{i}",
                        "summary": f"Mock Event {i + 1}",
                        "start": (_EPOCH + timedelta(hours=i)).isoformat(),
                        "end": (_EPOCH + timedelta(hours=i, minutes=30)).isoformat(),
                        "attendees": [f"attendee{i}@example.com"],
                    }
                    for i in range(h % 5)
                ]
            if operation in ("create_event", "createEvent"):
                return {"id": f"evt_{h}", "htmlLink": f"https://calendar.google.com/event?eid={h}"}
            return {}

        if tool in ("gmail", "email"):
            if operation in ("list_emails", "listEmails", "search"):
                return [
                    {
                        "id": f"msg_{i}",
                        "subject": f"Mock Email {i + 1}",
                        "from": f"sender{i}@example.com",
                        "snippet": f"This is a mock email snippet {i + 1}",
                        "date": (_EPOCH - timedelta(hours=i)).isoformat(),
                    }
                    for i in range(h % 4)
                ]
            if operation in ("send_email", "sendEmail", "send"):
                return {"id": f"sent_{h}", "threadId": f"thread_{h}"}
            return {}

        if tool in ("http_request", "http"):
            status = (200, 201, 400, 404, 500)[h % 5]
            return {
                "status": status,
                "statusText": {200: "OK", 404: "Not Found"}.get(status, "Error"),
                "headers": {"content-type": "application/json"},
                "data": {"message": "Mock HTTP response", "url": args.get("url")},
            }

        if tool == "web_search":
            query = args.get("query") or args.get("input") or ""
            return {
                "results": [
                    {
                        "title": f"Result {i + 1} for {query}".strip(),
                        "url": f"https://example.com/search/{h % 1000}/{i}",
                        "snippet": f"Mock search snippet {i + 1}",
                    }
                    for i in range(1 + h % 3)
                ],
                "total": 100 + h % 900,
            }

        return {"message": "Mock response", "tool": tool, "operation": operation}

    @staticmethod
    def _error(kind: str, tool: str, op: str) -> ToolError:
        template = _ERROR_MESSAGES.get(kind, "Error in {tool}.{op}")
        return ToolError(kind=kind, message=template.format(tool=tool, op=op), code=kind.upper())
