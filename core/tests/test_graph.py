"""Tests for the graph layer: model normalization, ordering, context and validation."""

import json
from pathlib import Path

import pytest

from agentflow.errors import GraphError
from agentflow.graph.context import (
    extract_text,
    resolve_input_values,
    resolve_inputs,
    with_scenario_context,
)
from agentflow.graph.flow_context import (
    REDACTED,
    build_flow_context,
    diff_flow_context,
    redact_config,
    snapshot_node,
    truncate_large_fields,
)
from agentflow.graph.model import (
    Connection,
    FlowDocument,
    FlowGraph,
    Node,
    NodeKind,
    normalize_connection,
    resolve_kind,
)
from agentflow.graph.order import build_order, find_start_node
from agentflow.graph.safe_eval import UnsafeExpressionError, safe_eval
from agentflow.graph.validator import FlowValidator, longest_path

# === HELPERS ===


def make_node(node_id: str, kind: str = "agent", subtype: str | None = None, **config) -> Node:
    return Node(
        id=node_id,
        kind=kind,
        subtype=subtype,
        config=config or {"title": node_id},
        inputs=["input"],
        outputs=["output"],
    )


def edge(source: str, target: str, **extra) -> Connection:
    return normalize_connection({"source": source, "target": target, **extra})


# === MODEL ===


class TestNormalization:
    def test_legacy_connection_shape(self):
        conn = normalize_connection(
            {
                "id": "c1",
                "sourceNode": "a",
                "targetNode": "b",
                "sourceHandle": "out",
                "targetHandle": "in",
            }
        )
        assert conn.source == "a"
        assert conn.target == "b"
        assert conn.source_output == "out"
        assert conn.target_input == "in"

    def test_defaults(self):
        conn = normalize_connection({"source": "a", "target": "b"})
        assert conn.id == "a->b"
        assert conn.source_output is None
        assert conn.target_input == "input"
        assert conn.blocked is False
        assert conn.weight is None

    def test_context_controls(self):
        conn = normalize_connection(
            {"source": "a", "target": "b", "contextControls": {"weight": 0.5, "blocked": True}}
        )
        assert conn.blocked is True
        assert conn.weight == 0.5

    def test_missing_endpoint_raises(self):
        with pytest.raises(GraphError, match="no target"):
            normalize_connection({"id": "broken", "source": "a"})

    def test_node_aliases(self):
        node = Node.model_validate(
            {"id": "n1", "type": "tool", "data": {"title": "Calendar"}, "inputs": "in", "outputs": ["out"]}
        )
        assert node.kind == "tool"
        assert node.config == {"title": "Calendar"}
        assert [p.id for p in node.input_ports] == ["in"]
        assert node.first_output_port == "out"
        assert node.title == "Calendar"

    def test_resolve_kind_prefers_subtype(self):
        assert resolve_kind("tool", "tool-agent") == NodeKind.TOOL_AGENT
        assert resolve_kind("generic") == NodeKind.AGENT
        assert resolve_kind("template") == NodeKind.PROMPT_TEMPLATE
        assert resolve_kind("nonsense") is None
        assert resolve_kind(None) is None

    def test_document_load(self, tmp_path: Path):
        path = tmp_path / "flow.json"
        path.write_text(
            json.dumps(
                {
                    "nodes": [{"id": "a", "type": "agent"}, {"id": "b", "type": "tool"}],
                    "connections": [{"sourceNode": "a", "targetNode": "b"}],
                    "startNodeId": "a",
                }
            )
        )
        doc = FlowDocument.load(path)
        assert doc.start_node_id == "a"
        assert doc.graph.outgoing("a")[0].target == "b"
        assert [n.id for n in doc.graph.sources()] == ["a"]


# === ORDER ===


class TestBuildOrder:
    def test_dependencies_first(self):
        nodes = [make_node("c"), make_node("b"), make_node("a")]
        edges = [edge("a", "b"), edge("b", "c")]
        assert [n.id for n in build_order(nodes, edges)] == ["a", "b", "c"]

    def test_deterministic_and_permutation(self):
        nodes = [make_node(i) for i in ("a", "b", "c", "d", "lonely")]
        edges = [edge("a", "c"), edge("b", "c"), edge("c", "d")]
        first = [n.id for n in build_order(nodes, edges)]
        second = [n.id for n in build_order(nodes, edges)]
        assert first == second
        assert sorted(first) == sorted(n.id for n in nodes)
        assert first.index("a") < first.index("c") < first.index("d")
        assert first.index("b") < first.index("c")

    def test_start_node_placed_first(self):
        nodes = [make_node("x"), make_node("start")]
        assert build_order(nodes, [], "start")[0].id == "start"

    def test_cycle_is_tolerated(self):
        nodes = [make_node("a"), make_node("b")]
        edges = [edge("a", "b"), edge("b", "a")]
        assert sorted(n.id for n in build_order(nodes, edges)) == ["a", "b"]

    def test_find_start_prefers_agent_with_rules(self):
        nodes = [
            make_node("tool", "tool"),
            make_node("plain", "agent"),
            make_node("ruled", "agent", rules={"nl": "do things"}),
        ]
        assert find_start_node(nodes, []).id == "ruled"
        assert find_start_node([], []) is None


# === CONTEXT ===


class TestExtractText:
    def test_text_keys_checked_in_order(self):
        assert extract_text("plain") == "plain"
        assert extract_text({"output": "o", "message": "m"}) == "o"
        assert extract_text({"content": "c"}) == "c"
        assert extract_text({"llm": {"choices": [{"message": {"content": "openai"}}]}}) == "openai"
        gemini = {"gemini": {"candidates": [{"content": {"parts": [{"text": "g"}]}}]}}
        assert extract_text(gemini) == "g"

    def test_falls_back_to_json(self):
        assert extract_text({"a": 1}) == '{"a": 1}'
        assert extract_text(None) == "null"


class TestResolveInputs:
    def test_blocked_edges_and_missing_results_skipped(self):
        nodes = [make_node("a"), make_node("b"), make_node("c"), make_node("t")]
        conns = [
            edge("a", "t", targetInput="x"),
            edge("b", "t", targetInput="y", contextControls={"blocked": True}),
            edge("c", "t", targetInput="z"),
        ]
        graph = FlowGraph(nodes, conns)
        inputs = resolve_inputs("t", {"a": "A", "b": "B"}, graph)
        assert inputs == {"x": "A"}

    def test_transform_applied(self):
        graph = FlowGraph(
            [make_node("a"), make_node("t")],
            [edge("a", "t", contextControls={"control": {"pickPaths": ["k"], "rename": {"k": "key"}}})],
        )
        assert resolve_inputs("t", {"a": {"k": 1, "other": 2}}, graph) == {"input": {"key": 1}}

    def test_legacy_values_drop_empty(self):
        graph = FlowGraph(
            [make_node("a"), make_node("b"), make_node("t")],
            [edge("a", "t"), edge("b", "t")],
        )
        assert resolve_input_values("t", {"a": {"output": "hi"}, "b": ""}, graph) == ["hi"]

    def test_scenario_block(self):
        assert with_scenario_context("", "Busy week") == "Scenario Context:\nBusy week"
        assert with_scenario_context("base", None) == "base"


# === FLOW CONTEXT ===


class TestFlowContext:
    def test_redaction_is_case_insensitive(self):
        redacted = redact_config({"apiKey": "sk", "nested": [{"Password": "p", "keep": 1}]})
        assert redacted == {"apiKey": REDACTED, "nested": [{"Password": REDACTED, "keep": 1}]}

    def test_large_string_omitted(self):
        assert truncate_large_fields("x" * 3000).startswith("[omitted:")
        assert truncate_large_fields("small") == "small"

    def test_snapshot_metadata(self):
        node = make_node("a", "tool", "tool", token="secret", title="T")
        snap = snapshot_node(node, {"ok": True}, weight=0.3)
        assert snap["config"]["token"] == REDACTED
        assert snap["output"] == {"ok": True}
        assert snap["metadata"] == {"type": "tool", "subtype": "tool", "weight": 0.3}

    def test_build_flow_context_is_transitive(self):
        graph = FlowGraph(
            [make_node("a"), make_node("b"), make_node("c")],
            [edge("a", "b", contextControls={"weight": 2}), edge("b", "c")],
        )
        bag = build_flow_context("c", {"a": "A", "b": "B"}, graph)
        assert list(bag) == ["b", "a"]
        assert bag["b"]["output"] == "B"
        assert "weight" not in bag["a"]["metadata"]

    def test_diff(self):
        diff = diff_flow_context(
            {"a": {"output": 1}, "gone": {}},
            {"a": {"output": 2}, "new": {}},
        )
        assert diff == {
            "added": ["new"],
            "removed": ["gone"],
            "changed": [{"node_id": "a", "fields": ["output"]}],
        }


# === SAFE EVAL ===


class TestSafeEval:
    def test_js_operators(self):
        ctx = {"inputs": [{"score": 7}], "flag": False}
        assert safe_eval("inputs[0].score > 5 && !flag", ctx) is True
        assert safe_eval("inputs[0].score === 7 || flag", ctx) is True
        assert safe_eval("inputs[0].score !== 7", ctx) is False

    def test_length_and_methods(self):
        assert safe_eval("text.length", {"text": "abc"}) == 3
        assert safe_eval("text.lower().startswith('he')", {"text": "Hello"}) is True

    def test_missing_key_is_none(self):
        assert safe_eval("data.missing", {"data": {}}) is None
        assert safe_eval("items[5]", {"items": []}) is None

    def test_rejects_unsafe(self):
        with pytest.raises(UnsafeExpressionError):
            safe_eval("x.__class__", {"x": 1})
        with pytest.raises(UnsafeExpressionError):
            safe_eval("lambda: 1", {})
        with pytest.raises(NameError):
            safe_eval("open", {})


# === VALIDATOR ===


class TestFlowValidator:
    def test_valid_flow(self):
        doc = FlowDocument(nodes=[make_node("a"), make_node("b")], connections=[edge("a", "b")])
        result = FlowValidator().validate(doc)
        assert result.valid
        assert result.warnings == []

    def test_node_contract(self):
        bare = Node(id="bare", kind="agent")
        result = FlowValidator().validate_node(bare)
        assert "Node bare must declare at least one input" in result.errors
        assert "Node bare missing required data" in result.errors

    def test_router_outputs(self):
        router = Node(
            id="r", kind="logic", subtype="router", config={"x": 1}, inputs=["input"], outputs=["a", "b"]
        )
        result = FlowValidator().validate_node(router)
        assert result.errors == ["Router node r must have outputs labeled 'true' and 'false'"]

    def test_edge_references(self):
        doc = FlowDocument(
            nodes=[make_node("a")],
            connections=[edge("a", "ghost"), edge("a", "a", sourceOutput="nope")],
        )
        result = FlowValidator().validate(doc)
        assert not result.valid
        assert "Edge a->ghost references non-existent target node ghost" in result.errors
        assert "Edge a->a references non-existent output nope on node a" in result.errors

    def test_cycle_is_warning(self):
        doc = FlowDocument(
            nodes=[make_node("a"), make_node("b")], connections=[edge("a", "b"), edge("b", "a")]
        )
        result = FlowValidator().validate(doc)
        assert result.valid
        assert result.warnings == ["Cycle detected in flow starting from node a"]

    def test_long_chain_warning(self):
        nodes = [make_node(f"n{i}") for i in range(5)]
        conns = [edge(f"n{i}", f"n{i + 1}") for i in range(4)]
        doc = FlowDocument(nodes=nodes, connections=conns)
        assert longest_path(doc) == 5
        result = FlowValidator(max_chain_depth=3).validate(doc)
        assert any("very long chain (5 nodes)" in w for w in result.warnings)
