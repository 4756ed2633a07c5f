"""
Execution order for a flow graph.

The order is dependency-first: a node's upstream sources are placed before
the node itself. Traversal starts from the start node (or from every source
node when none is given), then sweeps up anything unreachable, so the result
is always a permutation of the input nodes.

Cycles are tolerated. A node on a cycle is placed the first time it is
reached and never revisited; ``FlowValidator`` reports cycles separately.
"""

from collections.abc import Sequence

from agentflow.graph.model import Connection, Node, NodeKind, resolve_kind


def build_order(
    nodes: Sequence[Node],
    edges: Sequence[Connection],
    start_node_id: str | None = None,
) -> list[Node]:
    """
    Build a deterministic execution order.

    Args:
        nodes: Flow nodes in document order
        edges: Normalized connections in document order
        start_node_id: Optional node to start the walk from

    Returns:
        Every node exactly once, dependencies before dependents
    """
    by_id = {n.id: n for n in nodes}
    deps: dict[str, list[str]] = {n.id: [] for n in nodes}
    has_incoming: set[str] = set()
    for edge in edges:
        if edge.source in by_id and edge.target in by_id:
            deps[edge.target].append(edge.source)
            has_incoming.add(edge.target)

    visited: set[str] = set()
    order: list[Node] = []

    def visit(node_id: str) -> None:
        if node_id in visited:
            return
        visited.add(node_id)
        for dep_id in deps[node_id]:
            visit(dep_id)
        order.append(by_id[node_id])

    if start_node_id and start_node_id in by_id:
        visit(start_node_id)
    else:
        for node in nodes:
            if node.id not in has_incoming:
                visit(node.id)

    for node in nodes:
        visit(node.id)

    return order


def find_start_node(nodes: Sequence[Node], edges: Sequence[Connection]) -> Node | None:
    """
    Pick a plausible start node when the document does not name one.

    Preference among nodes without incoming edges: an agent that has rules
    configured, then any agent, then the first such node. Falls back to the
    first node when every node has an incoming edge.
    """
    if not nodes:
        return None

    targets = {e.target for e in edges}
    candidates = [n for n in nodes if n.id not in targets]

    def is_agent(node: Node) -> bool:
        return resolve_kind(node.kind, node.subtype) == NodeKind.AGENT

    def has_rules(node: Node) -> bool:
        rules = node.config.get("rules")
        return bool(isinstance(rules, dict) and rules.get("nl"))

    for node in candidates:
        if is_agent(node) and has_rules(node):
            return node
    for node in candidates:
        if is_agent(node):
            return node
    if candidates:
        return candidates[0]
    return nodes[0]
