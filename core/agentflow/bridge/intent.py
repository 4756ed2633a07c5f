"""Tool-capability extraction from an agent's natural-language rule."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from agentflow.errors import LLMError
from agentflow.llm.parsing import parse_json_response
from agentflow.llm.provider import LLMCallOptions, LLMProvider
from agentflow.simulation.catalog import normalize_capability

logger = logging.getLogger(__name__)

INTENT_PROMPT = (
    "Extract the tool capability from this rule. Respond with a JSON object like "
    '{{ "capability": "tool_name.operation" }} or null if no tool capability is '
    "identified. Rule: {rule}"
)

_CAPABILITY = re.compile(r"\b([a-z][a-z0-9_]*)\.([a-z][a-z0-9_]*)\b", re.IGNORECASE)


@dataclass
class ToolBinding:
    """A tool node reachable from an agent, described by its own configuration."""

    node_id: str
    provider_id: str
    operation: str | None = None
    mode: str | None = None

    @property
    def capability(self) -> str:
        return f"{self.provider_id}.{self.operation or ''}"


def _intent(capability: str, source: str) -> dict[str, Any]:
    capability = normalize_capability(capability)
    tool_name, _, operation = capability.partition(".")
    return {"capability": capability, "tool_name": tool_name, "operation": operation, "source": source}


async def extract_intent(
    rule: str,
    llm: LLMProvider | None,
    tools: list[ToolBinding],
    options: LLMCallOptions | None = None,
) -> dict[str, Any] | None:
    """
    Work out which tool capability an agent rule asks for.

    The LLM reply is read as JSON first, then scanned for a ``tool.op``
    token. If neither yields a capability, the rule itself is searched for
    the name of a bound provider.

    Returns:
        ``{capability, tool_name, operation, source}`` or None
    """
    if not rule:
        return None

    reply = ""
    if llm is not None:
        try:
            result = await llm.call(INTENT_PROMPT.format(rule=rule), options)
            reply = result.text or ""
        except LLMError as e:
            logger.warning(f"⚠ Intent extraction call failed: {e}")

    parsed = parse_json_response(reply)
    if isinstance(parsed, dict) and isinstance(parsed.get("capability"), str) and "." in parsed["capability"]:
        return _intent(parsed["capability"], "json")

    match = _CAPABILITY.search(reply)
    if match:
        return _intent(f"{match.group(1)}.{match.group(2)}", "regex")

    lowered = rule.lower()
    for tool in tools:
        if tool.provider_id and tool.provider_id.lower() in lowered:
            return _intent(tool.capability, "keyword")

    return None
