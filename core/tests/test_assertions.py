"""Tests for run assertions."""

import pytest

from agentflow.graph.model import normalize_connection
from agentflow.testing import evaluate_assertions
from agentflow.testing.assertions import safe_get, tokenize_path

OUTPUTS = {
    "agent1": {"output": "Meeting booked for Tuesday", "slots": [{"id": "s1"}, {"id": "s2"}]},
    "tool1": {"type": "json", "content": {"result": [{"id": "evt_0"}]}, "meta": {"latency_ms": 12}},
    "broken": {"error": "Rate limit exceeded"},
}

CONNECTIONS = [
    normalize_connection({"source": "agent1", "target": "tool1"}),
    normalize_connection({"source": "tool1", "target": "broken", "contextControls": {"blocked": True}}),
]


def check(**spec):
    return evaluate_assertions([spec], OUTPUTS, CONNECTIONS).results[0]


class TestPaths:
    def test_tokenize(self):
        assert tokenize_path("a.b[0].c[-1]") == ["a", "b", 0, "c", -1]

    def test_safe_get(self):
        assert safe_get(OUTPUTS, "$.tool1.content.result[0].id") == "evt_0"
        assert safe_get(OUTPUTS, "agent1.slots.length") == 2
        assert safe_get(OUTPUTS, "agent1.output.length") == 26
        assert safe_get(OUTPUTS, "agent1.slots[9].id") is None
        assert safe_get(OUTPUTS, "missing.deep.path") is None
        assert safe_get(OUTPUTS, None) is None


class TestOps:
    def test_exists(self):
        assert check(op="exists", path="tool1.meta.latency_ms").passed
        result = check(op="exists", path="tool1.meta.nope")
        assert not result.passed
        assert result.message == "No value at tool1.meta.nope"

    def test_equality_is_deep(self):
        assert check(op="equals", path="tool1.content.result", value=[{"id": "evt_0"}]).passed
        assert check(op="notEquals", path="agent1.slots[0].id", value="s2").passed

    @pytest.mark.parametrize(
        "op,value,expected",
        [("gt", 10, True), ("gte", 12, True), ("lt", 12, False), ("lte", "12", True)],
    )
    def test_numeric(self, op, value, expected):
        assert check(op=op, path="tool1.meta.latency_ms", value=value).passed is expected

    def test_numeric_against_non_number(self):
        assert not check(op="gt", path="agent1.output", value=1).passed

    def test_contains(self):
        assert check(op="contains", path="agent1.output", value="Tuesday").passed
        assert check(op="notContains", path="agent1.output", value="Friday").passed
        assert check(op="contains", path="agent1.slots", value={"id": "s2"}).passed
        result = check(op="contains", path="tool1.meta", value="x")
        assert result.message == "Actual at tool1.meta is not array/string"

    def test_lengths(self):
        assert check(op="lengthGte", path="agent1.slots", value=2).passed
        result = check(op="lengthEq", path="agent1.slots", value=3)
        assert not result.passed
        assert result.actual == 2
        assert result.message == "Expected length == 3, actual=2"
        assert check(op="lengthGte", path="tool1.meta", value=1).message == "Actual at tool1.meta has no length"

    def test_no_errors(self):
        result = check(op="noErrors")
        assert not result.passed
        assert result.message == "Errors found in nodes: broken"

    def test_no_errors_downstream_respects_blocked_edges(self):
        result = check(op="noErrorsDownstream", fromNodeId="agent1")
        assert result.passed
        assert result.message == "No downstream errors from agent1"
        assert check(op="noErrorsDownstream").message == "fromNodeId is required for noErrorsDownstream"

    def test_unknown_op_and_missing_path(self):
        assert check(op="approximately", path="agent1.output").message == "Unsupported op: approximately"
        missing = check(op="equals", value=1)
        assert not missing.passed
        assert missing.message == "path is required for equals"


class TestReport:
    def test_passed_only_when_all_pass(self):
        report = evaluate_assertions(
            [
                {"id": "a1", "op": "exists", "path": "agent1.output"},
                {"id": "a2", "op": "equals", "path": "agent1.output", "value": "nope"},
            ],
            OUTPUTS,
        )
        assert not report.passed
        assert [r.id for r in report.failures] == ["a2"]

    def test_empty_is_passed(self):
        assert evaluate_assertions([], OUTPUTS).passed
