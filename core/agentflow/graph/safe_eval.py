"""
AST-whitelisted expression evaluation for router conditions.

Expressions use Python syntax evaluated against a small context, e.g.::

    inputs[0]["score"] > 5 and inputs_obj.input.content.approved

Attribute access on a dict reads the key, so dotted paths written for the
editor work as-is. The common JavaScript operators ``&&``, ``||``, ``!``,
``===`` and ``!==`` are accepted and rewritten before parsing.
"""

import ast
import operator
import re
from collections.abc import Mapping
from typing import Any


class UnsafeExpressionError(ValueError):
    """The expression uses syntax or names outside the whitelist."""


_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

SAFE_FUNCTIONS: dict[str, Any] = {
    "len": len,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "any": any,
    "all": all,
    "sorted": sorted,
}

SAFE_CONSTANTS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
    "True": True,
    "False": False,
    "None": None,
}

# Methods callable on values of these types, e.g. text.lower()
_SAFE_METHODS = {
    str: {"lower", "upper", "strip", "startswith", "endswith", "split", "count", "find"},
    dict: {"get", "keys", "values", "items"},
    list: {"count", "index"},
}


def normalize_operators(expression: str) -> str:
    """Rewrite JavaScript boolean and strict-equality operators into Python."""
    expr = expression.replace("!==", "!=").replace("===", "==")
    expr = expr.replace("&&", " and ").replace("||", " or ")
    return re.sub(r"!(?!=)", " not ", expr)


class _Evaluator:
    def __init__(self, context: Mapping[str, Any]):
        self.context = context

    def eval(self, node: ast.AST) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__}", None)
        if method is None:
            raise UnsafeExpressionError(f"Unsupported syntax: {type(node).__name__}")
        return method(node)

    def _eval_Expression(self, node: ast.Expression) -> Any:
        return self.eval(node.body)

    def _eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name) -> Any:
        if node.id in self.context:
            return self.context[node.id]
        if node.id in SAFE_CONSTANTS:
            return SAFE_CONSTANTS[node.id]
        if node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        raise NameError(f"Unknown name: {node.id}")

    def _eval_List(self, node: ast.List) -> list:
        return [self.eval(e) for e in node.elts]

    def _eval_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.eval(e) for e in node.elts)

    def _eval_Dict(self, node: ast.Dict) -> dict:
        return {self.eval(k): self.eval(v) for k, v in zip(node.keys, node.values, strict=True)}

    def _eval_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        for value in node.values:
            result = self.eval(value)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def _eval_BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise UnsafeExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.eval(node.left), self.eval(node.right))

    def _eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise UnsafeExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.eval(node.operand))

    def _eval_Compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op_node, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.eval(comparator)
            if not _CMP_OPS[type(op_node)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp) -> Any:
        return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

    def _eval_Subscript(self, node: ast.Subscript) -> Any:
        value = self.eval(node.value)
        key = self.eval(node.slice)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError):
            return None

    def _eval_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise UnsafeExpressionError(f"Access to '{node.attr}' is not allowed")
        value = self.eval(node.value)
        if isinstance(value, Mapping):
            return value.get(node.attr)
        if node.attr == "length" and isinstance(value, str | list | tuple):
            return len(value)
        for kind, methods in _SAFE_METHODS.items():
            if isinstance(value, kind) and node.attr in methods:
                return getattr(value, node.attr)
        raise UnsafeExpressionError(f"Attribute '{node.attr}' is not allowed")

    def _eval_Call(self, node: ast.Call) -> Any:
        func = self.eval(node.func)
        allowed = func in SAFE_FUNCTIONS.values() or getattr(func, "__self__", None) is not None
        if not allowed or not callable(func):
            raise UnsafeExpressionError("Call target is not allowed")
        args = [self.eval(a) for a in node.args]
        kwargs = {kw.arg: self.eval(kw.value) for kw in node.keywords if kw.arg}
        return func(*args, **kwargs)


def safe_eval(expression: str, context: Mapping[str, Any]) -> Any:
    """
    Evaluate an expression against ``context`` using only whitelisted syntax.

    Raises:
        UnsafeExpressionError: for disallowed syntax, attributes or calls
        SyntaxError: if the expression does not parse
        NameError: for names missing from the context
    """
    tree = ast.parse(normalize_operators(expression).strip(), mode="eval")
    return _Evaluator(context).eval(tree)
