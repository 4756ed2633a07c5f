"""
Flow graph model - nodes, ports and connections.

Persisted flow documents come from several editor generations and spell the
same fields differently (``type``/``kind``, ``data``/``config``,
``sourceNode``/``source``, ``targetHandle``/``targetInput`` ...). All of that
variance is absorbed here, at load time. Everything downstream of this module
sees one canonical shape.
"""

from collections.abc import Iterable, Mapping
from enum import StrEnum
from functools import cached_property
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from agentflow.errors import GraphError


class NodeKind(StrEnum):
    """Closed set of node kinds the engine can dispatch."""

    AGENT = "agent"
    TOOL_AGENT = "tool-agent"
    THINKING = "thinking"
    IF_ELSE = "if-else"
    KNOWLEDGE_BASE = "knowledge-base"
    MESSAGE = "message"
    MESSAGE_FORMATTER = "message-formatter"
    ROUTER = "router"
    MEMORY = "memory"
    TOOL = "tool"
    PROMPT_TEMPLATE = "prompt-template"
    DECISION_TREE = "decision-tree"
    STATE_MACHINE = "state-machine"
    UI = "ui"


# Legacy spellings that still show up in saved flows
KIND_ALIASES: dict[str, NodeKind] = {
    "generic": NodeKind.AGENT,
    "template": NodeKind.PROMPT_TEMPLATE,
    "gui": NodeKind.UI,
}


def resolve_kind(type_: str | None, subtype: str | None = None) -> NodeKind | None:
    """Resolve the dispatch kind of a node. The subtype wins over the type."""
    key = subtype or type_
    if not key:
        return None
    if key in KIND_ALIASES:
        return KIND_ALIASES[key]
    try:
        return NodeKind(key)
    except ValueError:
        return None


class Port(BaseModel):
    """A named input or output slot on a node."""

    id: str
    label: str | None = None
    type: str | None = None

    model_config = {"extra": "allow"}


def _coerce_ports(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str | Mapping):
        value = [value]
    return [{"id": p} if isinstance(p, str) else p for p in value]


class Node(BaseModel):
    """
    A node as stored in a flow document.

    ``config`` is the node's Properties Panel data and is the authoritative
    source of its behavior.
    """

    id: str
    kind: str = Field(validation_alias=AliasChoices("kind", "type"))
    subtype: str | None = None
    config: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("config", "data")
    )
    input_ports: list[Port] = Field(
        default_factory=list,
        validation_alias=AliasChoices("input_ports", "inputPorts", "inputs"),
    )
    output_ports: list[Port] = Field(
        default_factory=list,
        validation_alias=AliasChoices("output_ports", "outputPorts", "outputs"),
    )
    position: dict[str, float] | None = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("input_ports", "output_ports", mode="before")
    @classmethod
    def _ports(cls, value: Any) -> list[Any]:
        return _coerce_ports(value)

    @field_validator("config", mode="before")
    @classmethod
    def _config(cls, value: Any) -> dict[str, Any]:
        return dict(value or {})

    @property
    def resolved_kind(self) -> NodeKind | None:
        return resolve_kind(self.kind, self.subtype)

    @property
    def kind_key(self) -> str:
        """The raw dispatch key, used in error messages and summaries."""
        return self.subtype or self.kind

    @property
    def title(self) -> str:
        return self.config.get("title") or self.config.get("description") or self.id

    @property
    def first_output_port(self) -> str:
        return self.output_ports[0].id if self.output_ports else "output"


class TransformSpec(BaseModel):
    """Per-edge reshaping of a dict output: pick, then drop, then rename."""

    pick_paths: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("pick_paths", "pickPaths")
    )
    drop_paths: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("drop_paths", "dropPaths")
    )
    rename: dict[str, str] | None = None

    model_config = ConfigDict(populate_by_name=True)


class ContextControls(BaseModel):
    weight: float | None = None
    blocked: bool = False
    control: TransformSpec | None = None

    model_config = {"extra": "allow"}


class Connection(BaseModel):
    """A directed edge from one node's output port to another node's input port."""

    id: str
    source: str
    source_output: str | None = None
    target: str
    target_input: str = "input"
    context_controls: ContextControls | None = None

    @property
    def blocked(self) -> bool:
        return bool(self.context_controls and self.context_controls.blocked)

    @property
    def weight(self) -> float | None:
        return self.context_controls.weight if self.context_controls else None


def normalize_connection(raw: Mapping[str, Any] | Connection) -> Connection:
    """
    Turn any persisted connection shape into a canonical ``Connection``.

    Raises:
        GraphError: if the source or target cannot be resolved
    """
    if isinstance(raw, Connection):
        return raw

    source = raw.get("sourceNode") or raw.get("source")
    target = raw.get("targetNode") or raw.get("target")
    if not source or not target:
        raise GraphError(
            f"Connection {raw.get('id', '<unnamed>')!r} has no "
            f"{'source' if not source else 'target'} node"
        )

    controls = raw.get("contextControls") or raw.get("context_controls")
    return Connection(
        id=raw.get("id") or f"{source}->{target}",
        source=source,
        source_output=raw.get("sourceOutput") or raw.get("sourceHandle") or raw.get("source_output"),
        target=target,
        target_input=(
            raw.get("targetInput") or raw.get("targetHandle") or raw.get("target_input") or "input"
        ),
        context_controls=ContextControls.model_validate(controls) if controls else None,
    )


class FlowGraph:
    """
    Immutable per-run view over nodes and connections.

    Adjacency lists preserve connection input order, which keeps every
    traversal built on top of this class deterministic.
    """

    def __init__(self, nodes: Iterable[Node], connections: Iterable[Connection]):
        self._nodes: tuple[Node, ...] = tuple(nodes)
        self._connections: tuple[Connection, ...] = tuple(connections)
        self._by_id: dict[str, Node] = {n.id: n for n in self._nodes}
        self._incoming: dict[str, list[Connection]] = {n.id: [] for n in self._nodes}
        self._outgoing: dict[str, list[Connection]] = {n.id: [] for n in self._nodes}
        for conn in self._connections:
            self._incoming.setdefault(conn.target, []).append(conn)
            self._outgoing.setdefault(conn.source, []).append(conn)

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self._nodes

    @property
    def connections(self) -> tuple[Connection, ...]:
        return self._connections

    def node(self, node_id: str) -> Node | None:
        return self._by_id.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._by_id

    def incoming(self, node_id: str) -> list[Connection]:
        return list(self._incoming.get(node_id, ()))

    def outgoing(self, node_id: str) -> list[Connection]:
        return list(self._outgoing.get(node_id, ()))

    def sources(self) -> list[Node]:
        """Nodes with no incoming connection, in input order."""
        return [n for n in self._nodes if not self._incoming.get(n.id)]


class FlowDocument(BaseModel):
    """A saved flow: nodes, connections and an optional start node."""

    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    start_node_id: str | None = Field(
        default=None, validation_alias=AliasChoices("start_node_id", "startNodeId")
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("connections", mode="before")
    @classmethod
    def _connections(cls, value: Any) -> list[Connection]:
        return [normalize_connection(c) for c in value or []]

    @classmethod
    def load(cls, path: str | Path) -> "FlowDocument":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    @cached_property
    def graph(self) -> FlowGraph:
        return FlowGraph(self.nodes, self.connections)
