"""Structural validation for flow documents.

Checks node contracts, edge references and graph shape before a run so
authoring mistakes show up as readable messages instead of odd results.
Cycles and very long chains are warnings; the engine tolerates both.
"""

import logging
from collections import deque
from dataclasses import dataclass, field

from agentflow.graph.model import Connection, FlowDocument, Node

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHAIN_DEPTH = 100


@dataclass
class ValidationResult:
    """Result of validating a flow."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def error(self) -> str:
        """Get combined error message."""
        return "; ".join(self.errors)

    def merge(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


class FlowValidator:
    """Validates flow documents: nodes, edges, connectivity and chain depth."""

    def __init__(self, max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH):
        self.max_chain_depth = max_chain_depth

    def validate(self, document: FlowDocument) -> ValidationResult:
        result = ValidationResult()
        for node in document.nodes:
            result.merge(self.validate_node(node))

        by_id = {n.id: n for n in document.nodes}
        for edge in document.connections:
            result.merge(self.validate_edge(edge, by_id))

        result.merge(self.validate_connectivity(document))
        result.merge(self.validate_chaining(document))

        if result.valid:
            logger.debug(f"✓ Flow valid ({len(result.warnings)} warnings)")
        else:
            logger.info(f"✗ Flow invalid: {len(result.errors)} errors")
        return result

    def validate_node(self, node: Node) -> ValidationResult:
        """Check a single node's declared contract."""
        result = ValidationResult()

        if not node.input_ports:
            result.errors.append(f"Node {node.id} must declare at least one input")

        if node.subtype == "router":
            if len(node.output_ports) != 2:
                result.errors.append(f"Router node {node.id} must have exactly two outputs")
            else:
                labels = {(p.label or p.id).lower() for p in node.output_ports}
                if not {"true", "false"} <= labels:
                    result.errors.append(
                        f"Router node {node.id} must have outputs labeled 'true' and 'false'"
                    )

        if not node.config:
            result.errors.append(f"Node {node.id} missing required data")

        return result

    def validate_edge(self, edge: Connection, nodes: dict[str, Node]) -> ValidationResult:
        """Check that an edge's endpoints and ports exist."""
        result = ValidationResult()
        source = nodes.get(edge.source)
        target = nodes.get(edge.target)

        if source is None:
            result.errors.append(
                f"Edge {edge.id} references non-existent source node {edge.source}"
            )
        if target is None:
            result.errors.append(
                f"Edge {edge.id} references non-existent target node {edge.target}"
            )

        if source is not None:
            port = edge.source_output or source.first_output_port
            if not any(p.id == port for p in source.output_ports):
                result.errors.append(
                    f"Edge {edge.id} references non-existent output {port} on node {edge.source}"
                )
        if target is not None and not any(p.id == edge.target_input for p in target.input_ports):
            result.errors.append(
                f"Edge {edge.id} references non-existent input {edge.target_input} "
                f"on node {edge.target}"
            )

        return result

    def validate_connectivity(self, document: FlowDocument) -> ValidationResult:
        """Warn about the first cycle found; cycles are not errors."""
        result = ValidationResult()
        adjacency: dict[str, list[str]] = {n.id: [] for n in document.nodes}
        for edge in document.connections:
            adjacency.setdefault(edge.source, []).append(edge.target)

        visited: set[str] = set()
        on_stack: set[str] = set()

        def has_cycle(node_id: str) -> bool:
            if node_id in on_stack:
                return True
            if node_id in visited:
                return False
            visited.add(node_id)
            on_stack.add(node_id)
            if any(has_cycle(n) for n in adjacency.get(node_id, [])):
                return True
            on_stack.discard(node_id)
            return False

        for node_id in list(adjacency):
            if node_id not in visited and has_cycle(node_id):
                result.warnings.append(f"Cycle detected in flow starting from node {node_id}")
                break

        return result

    def validate_chaining(self, document: FlowDocument) -> ValidationResult:
        """Warn when the longest acyclic chain exceeds ``max_chain_depth``."""
        result = ValidationResult()
        longest = longest_path(document)
        if longest > self.max_chain_depth:
            result.warnings.append(
                f"Flow has a very long chain ({longest} nodes), which may impact performance"
            )
        return result


def longest_path(document: FlowDocument) -> int:
    """Length in nodes of the longest path, via Kahn's algorithm. Cycle members are ignored."""
    adjacency: dict[str, list[str]] = {n.id: [] for n in document.nodes}
    in_degree: dict[str, int] = {n.id: 0 for n in document.nodes}
    for edge in document.connections:
        adjacency.setdefault(edge.source, []).append(edge.target)
        in_degree[edge.target] = in_degree.get(edge.target, 0) + 1

    distance = {node_id: 1 for node_id, degree in in_degree.items() if degree == 0}
    queue = deque(distance)
    longest = 0
    while queue:
        current = queue.popleft()
        longest = max(longest, distance[current])
        for neighbor in adjacency.get(current, []):
            in_degree[neighbor] -= 1
            distance[neighbor] = max(distance.get(neighbor, 0), distance[current] + 1)
            if in_degree[neighbor] == 0:
                queue.append(neighbor)
    return longest
