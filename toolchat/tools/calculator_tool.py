"""Arithmetic calculator tool."""

from __future__ import annotations

import ast
import math
import operator
import re
from typing import Any, Callable

from toolchat.tools.base import Tool, failure

_MAX_EXPONENT = 10_000
_MAX_RESULT_BITS = 200_000

_BINARY_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: dict[str, Callable[[float], float]] = {
    "sqrt": math.sqrt,
    "abs": abs,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log10,
    "ln": math.log,
}

_CONSTANTS: dict[str, float] = {"pi": math.pi, "e": math.e}


def evaluate(expression: str) -> float:
    """Evaluate an arithmetic expression without executing arbitrary code.

    ``^`` is treated as exponentiation.
    """

    normalized = re.sub(r"\s+", " ", expression.replace("^", "**")).strip().lower()
    tree = ast.parse(normalized, mode="eval")
    result = _eval_node(tree.body)
    if isinstance(result, bool) or not isinstance(result, (int, float)) or not math.isfinite(result):
        raise ValueError("Invalid result")
    return result


def _eval_node(node: ast.AST) -> Any:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and len(node.args) == 1
        and not node.keywords
    ):
        return _FUNCTIONS[node.func.id](_eval_node(node.args[0]))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def _check_power(base: Any, exponent: Any) -> None:
    if abs(exponent) > _MAX_EXPONENT:
        raise ValueError("Exponent too large")
    if isinstance(base, int) and isinstance(exponent, int) and base.bit_length() * exponent > _MAX_RESULT_BITS:
        raise ValueError("Result too large")


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.10f}".rstrip("0").rstrip(".")


class CalculatorTool(Tool):
    """Evaluates arithmetic expressions."""

    id = "calculator"
    name = "calculate"
    display_name = "Calculator"
    description = (
        "Perform mathematical calculations, including expressions with parentheses, powers "
        "and functions such as sqrt, sin, cos, tan, log and ln."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "expression": {
                "type": "string",
                "description": 'The expression to evaluate, e.g. "2 + 2 * 3" or "sqrt(16) + 10".',
            },
        },
        "required": ["expression"],
    }

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        expression = str(kwargs["expression"])
        try:
            result = evaluate(expression)
        except (SyntaxError, ValueError, ZeroDivisionError, OverflowError, TypeError):
            return failure("Invalid mathematical expression", expression=expression)
        return {
            "success": True,
            "expression": expression,
            "result": result,
            "formatted": format_number(result),
        }
