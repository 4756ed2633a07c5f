"""Graph layer: flow model, execution order, context propagation and validation."""

from agentflow.graph.context import (
    ContextMode,
    extract_text,
    resolve_input_values,
    resolve_inputs,
)
from agentflow.graph.flow_context import build_flow_context, diff_flow_context, snapshot_node
from agentflow.graph.model import (
    Connection,
    ContextControls,
    FlowDocument,
    FlowGraph,
    Node,
    NodeKind,
    Port,
    TransformSpec,
    normalize_connection,
    resolve_kind,
)
from agentflow.graph.order import build_order, find_start_node
from agentflow.graph.safe_eval import safe_eval
from agentflow.graph.validator import FlowValidator, ValidationResult

__all__ = [
    # Model
    "Node",
    "NodeKind",
    "Port",
    "Connection",
    "ContextControls",
    "TransformSpec",
    "FlowGraph",
    "FlowDocument",
    "normalize_connection",
    "resolve_kind",
    # Order
    "build_order",
    "find_start_node",
    # Context
    "ContextMode",
    "extract_text",
    "resolve_inputs",
    "resolve_input_values",
    "build_flow_context",
    "diff_flow_context",
    "snapshot_node",
    # Expressions
    "safe_eval",
    # Validation
    "FlowValidator",
    "ValidationResult",
]
