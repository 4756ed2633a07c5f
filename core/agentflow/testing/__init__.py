"""Declarative assertions over run results."""

from agentflow.testing.assertions import (
    AssertionOp,
    AssertionReport,
    AssertionResult,
    AssertionSpec,
    evaluate_assertions,
    safe_get,
)

__all__ = [
    "AssertionOp",
    "AssertionSpec",
    "AssertionResult",
    "AssertionReport",
    "evaluate_assertions",
    "safe_get",
]
