"""
Context Builder - turns upstream results into node inputs.

Two shapes are produced:
- v2: ``{target_input_port: NodeOutput}`` with per-edge controls applied
- legacy: a flat list of extracted strings, one per incoming edge

Text extraction follows a fixed probe order. Prompts are assembled by
concatenating extracted inputs, so changing the order changes agent behavior.
"""

import json
import logging
import warnings
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from agentflow.graph.flow_context import apply_context_controls
from agentflow.graph.model import FlowGraph, NodeKind

logger = logging.getLogger(__name__)

SCENARIO_CONTEXT_LABEL = "Scenario Context:"


class ContextMode(StrEnum):
    """How a node receives upstream data."""

    NAMESPACED = "namespaced"  # v2 port map + flow context bag
    LEGACY = "legacy"  # flat list of strings only


def _dig(value: Any, *path: str | int) -> Any:
    current = value
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
            current = current[step]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(step)
    return current


def extract_text(value: Any) -> str:
    """
    Extract the text carried by a node output.

    Probe order: a string as-is; ``output``, ``message``, ``content``;
    ``llm.choices[0].message.content``; ``llm.candidates[0].content.parts[0].text``;
    ``gemini.candidates[0].content.parts[0].text``; else a JSON dump.
    """
    if isinstance(value, str):
        return value

    if isinstance(value, Mapping):
        for key in ("output", "message", "content"):
            probed = value.get(key)
            if isinstance(probed, str):
                return probed
        for path in (
            ("llm", "choices", 0, "message", "content"),
            ("llm", "candidates", 0, "content", "parts", 0, "text"),
            ("gemini", "candidates", 0, "content", "parts", 0, "text"),
        ):
            probed = _dig(value, *path)
            if isinstance(probed, str):
                return probed

    return json.dumps(value, default=str)


def resolve_inputs(node_id: str, results: Mapping[str, Any], graph: FlowGraph) -> dict[str, Any]:
    """
    Build the v2 input map for a node.

    Blocked edges are skipped. Upstream nodes that have not produced a
    result yet contribute nothing. When several edges land on the same port
    the last one in connection order wins.
    """
    inputs: dict[str, Any] = {}
    for conn in graph.incoming(node_id):
        if conn.source not in results or conn.blocked:
            continue
        inputs[conn.target_input] = apply_context_controls(
            results[conn.source], conn.context_controls
        )
    return inputs


def _ui_input_text(output: Any, config: Mapping[str, Any]) -> str:
    if isinstance(output, str) and output:
        return output
    if isinstance(output, Mapping):
        for key in ("message", "content"):
            if output.get(key):
                return str(output[key])
    return config.get("content") or config.get("message") or ""


def resolve_input_values(
    node_id: str, results: Mapping[str, Any], graph: FlowGraph
) -> list[str]:
    """Build the legacy flat list of input strings, empty values dropped."""
    values: list[str] = []
    for conn in graph.incoming(node_id):
        if conn.blocked:
            continue
        upstream = graph.node(conn.source)
        output = results.get(conn.source)
        if upstream is not None and upstream.resolved_kind == NodeKind.UI:
            text = _ui_input_text(output, upstream.config)
        elif conn.source not in results:
            continue
        else:
            text = extract_text(output)
        if text:
            values.append(text)
    return values


def with_scenario_context(text: str, scenario_description: str | None) -> str:
    """Append a labelled scenario block to a start node's context."""
    if not scenario_description:
        return text
    block = f"{SCENARIO_CONTEXT_LABEL}\n{scenario_description}"
    return f"{text}\n\n{block}" if text else block


def warn_legacy_mode(node_id: str, kind: str) -> None:
    """Surface a non-fatal deprecation notice for nodes still on legacy context."""
    message = (
        f"Node '{node_id}' ({kind}) is running with legacy context; "
        "switch it to namespaced inputs and flow context"
    )
    logger.warning(f"⚠ {message}")
    warnings.warn(message, DeprecationWarning, stacklevel=2)
