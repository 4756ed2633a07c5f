"""
Flow context bag helpers.

Each node can see a namespaced snapshot of every upstream node:
``{node_id: {config, output, metadata}}``. Snapshots are redacted and size
capped so secrets and large payloads never travel between nodes or end up
in events.
"""

import json
from collections import deque
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentflow.graph.model import ContextControls, FlowGraph, Node, TransformSpec

DEFAULT_BYTE_LIMIT = 2048
DEFAULT_REDACT_KEYS = (
    "apikey",
    "secret",
    "token",
    "authorization",
    "password",
    "accesstoken",
    "refreshtoken",
)
REDACTED = "[redacted]"


def byte_length(value: str) -> int:
    return len(value.encode("utf-8"))


def safe_stringify(value: Any) -> str:
    """Compact JSON dump that never raises; unknown objects use ``str()``."""
    try:
        return json.dumps(value, default=str, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def _omitted(size_bytes: int) -> str:
    return f"[omitted: {size_bytes / 1024:.1f} KB]"


def redact_config(value: Any, keys: Iterable[str] = DEFAULT_REDACT_KEYS) -> Any:
    """Replace values of sensitive keys (case-insensitive) anywhere in the tree."""
    key_set = {k.lower() for k in keys}

    def visit(val: Any) -> Any:
        if isinstance(val, list):
            return [visit(v) for v in val]
        if isinstance(val, Mapping):
            return {
                k: REDACTED if str(k).lower() in key_set else visit(v) for k, v in val.items()
            }
        return val

    return visit(value)


def truncate_large_fields(value: Any, byte_limit: int = DEFAULT_BYTE_LIMIT) -> Any:
    """Replace any string, list or subtree larger than ``byte_limit`` with a size note."""

    def visit(val: Any) -> Any:
        if val is None or isinstance(val, bool | int | float):
            return val
        if isinstance(val, str):
            size = byte_length(val)
            return _omitted(size) if size > byte_limit else val
        if isinstance(val, list | tuple):
            mapped = [visit(v) for v in val]
            size = byte_length(safe_stringify(mapped))
            return _omitted(size) if size > byte_limit else mapped
        if isinstance(val, Mapping):
            out = {}
            for k, v in val.items():
                size = byte_length(safe_stringify(v))
                out[k] = _omitted(size) if size > byte_limit else visit(v)
            total = byte_length(safe_stringify(out))
            return _omitted(total) if total > byte_limit else out
        return visit(str(val))

    return visit(value)


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, str | int | float | bool)


def prune_config_for_flow_context(config: Any, byte_limit: int = DEFAULT_BYTE_LIMIT) -> Any:
    """Keep scalar config fields and small sub-objects; summarize the rest."""
    if _is_scalar(config) or isinstance(config, list):
        return truncate_large_fields(config, byte_limit)

    out: dict[str, Any] = {}
    for k, v in (config or {}).items():
        if _is_scalar(v):
            out[k] = truncate_large_fields(v, byte_limit)
            continue
        size = byte_length(safe_stringify(v))
        out[k] = _omitted(size) if size > byte_limit else truncate_large_fields(v, byte_limit)

    total = byte_length(safe_stringify(out))
    return _omitted(total) if total > byte_limit else out


def snapshot_node(
    node: "Node",
    output: Any = None,
    weight: float | None = None,
    byte_limit: int = DEFAULT_BYTE_LIMIT,
    redact_keys: Iterable[str] = DEFAULT_REDACT_KEYS,
) -> dict[str, Any]:
    """Build a sanitized flow context entry for one node."""
    metadata: dict[str, Any] = {"type": node.kind, "subtype": node.subtype}
    if weight is not None:
        metadata["weight"] = weight
    return {
        "config": prune_config_for_flow_context(redact_config(node.config, redact_keys), byte_limit),
        "output": truncate_large_fields(output, byte_limit),
        "metadata": metadata,
    }


def apply_transform_spec(output: Any, spec: "TransformSpec | None") -> Any:
    """Pick, then drop, then rename top-level keys. Non-dict outputs pass through."""
    if spec is None or not isinstance(output, Mapping):
        return output

    result = dict(output)
    if spec.pick_paths:
        result = {k: result[k] for k in spec.pick_paths if k in result}
    if spec.drop_paths:
        for key in spec.drop_paths:
            result.pop(key, None)
    if spec.rename:
        renamed = {to: result.pop(src) for src, to in spec.rename.items() if src in result}
        result.update(renamed)
    return result


def apply_context_controls(output: Any, controls: "ContextControls | None") -> Any:
    """Apply an edge's transform. Blocking is the caller's decision."""
    if controls is None:
        return output
    return apply_transform_spec(output, controls.control)


def diff_flow_context(
    before: Mapping[str, Any] | None, after: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Shallow diff between two flow context bags."""
    a = before or {}
    b = after or {}

    changed = []
    for node_id in a:
        if node_id not in b:
            continue
        fields = [
            field
            for field in ("config", "output", "metadata")
            if safe_stringify((a[node_id] or {}).get(field))
            != safe_stringify((b[node_id] or {}).get(field))
        ]
        if fields:
            changed.append({"node_id": node_id, "fields": fields})

    return {
        "added": [k for k in b if k not in a],
        "removed": [k for k in a if k not in b],
        "changed": changed,
    }


def upstream_node_ids(target_id: str, graph: "FlowGraph") -> list[str]:
    """All transitive ancestors of a node in BFS order, not crossing blocked edges."""
    seen: set[str] = {target_id}
    order: list[str] = []
    queue = deque([target_id])
    while queue:
        current = queue.popleft()
        for conn in graph.incoming(current):
            if conn.blocked or conn.source in seen:
                continue
            seen.add(conn.source)
            order.append(conn.source)
            queue.append(conn.source)
    return order


def downstream_node_ids(source_id: str, graph: "FlowGraph") -> list[str]:
    """All transitive descendants of a node in BFS order, not crossing blocked edges."""
    seen: set[str] = {source_id}
    order: list[str] = []
    queue = deque([source_id])
    while queue:
        current = queue.popleft()
        for conn in graph.outgoing(current):
            if conn.blocked or conn.target in seen:
                continue
            seen.add(conn.target)
            order.append(conn.target)
            queue.append(conn.target)
    return order


def build_flow_context(
    node_id: str, results: Mapping[str, Any], graph: "FlowGraph"
) -> dict[str, dict[str, Any]]:
    """Snapshot every upstream node of ``node_id``, with direct-edge weights."""
    direct_weights = {c.source: c.weight for c in graph.incoming(node_id)}
    bag: dict[str, dict[str, Any]] = {}
    for uid in upstream_node_ids(node_id, graph):
        upstream = graph.node(uid)
        if upstream is None:
            continue
        bag[uid] = snapshot_node(upstream, results.get(uid), direct_weights.get(uid))
    return bag
