"""
calculator_tool.py - Arithmetic over a whitelisted set of math functions.

Expressions are parsed with ast and walked node by node; nothing is ever
passed to eval().
"""

import ast
import math
import operator
import random
from typing import Any, Dict

from relay_service.tools.base import BaseTool


CONSTANTS = {"pi": math.pi, "e": math.e}

FUNCTIONS = {
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "exp": math.exp,
    "log": math.log,
    "log10": math.log10,
    "log2": math.log2,
    "sqrt": math.sqrt,
    "cbrt": lambda x: math.copysign(abs(x) ** (1.0 / 3.0), x),
    "pow": math.pow,
    "abs": abs,
    "ceil": math.ceil,
    "floor": math.floor,
    "round": round,
    "trunc": math.trunc,
    "min": min,
    "max": max,
    "random": random.random,
    "sign": lambda x: (x > 0) - (x < 0),
}

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.FloorDiv: operator.floordiv,
}

_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}

# keeps 10**10**10 from pinning a worker
MAX_EXPONENT = 10_000


class CalculationError(ValueError):
    pass


def _eval(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in CONSTANTS:
            return CONSTANTS[node.id]
        raise CalculationError(f"Unknown function or constant: {node.id}")
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _eval(node.left), _eval(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise CalculationError("Exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand))
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
        func = FUNCTIONS.get(node.func.id)
        if func is None:
            raise CalculationError(f"Unknown function or constant: {node.func.id}")
        return func(*[_eval(a) for a in node.args])
    raise CalculationError(f"Unsupported syntax: {type(node).__name__}")


def evaluate_expression(expression: str) -> float:
    expression = expression.strip()
    if not expression:
        raise CalculationError("Empty expression")
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise CalculationError(f"Syntax error in expression: {e.msg}") from e
    try:
        result = _eval(tree)
    except ZeroDivisionError as e:
        raise CalculationError("Division by zero") from e
    except (TypeError, OverflowError) as e:
        raise CalculationError(str(e)) from e
    except ValueError as e:
        if isinstance(e, CalculationError):
            raise
        raise CalculationError(f"Math domain error: {e}") from e

    if isinstance(result, bool) or not isinstance(result, (int, float)):
        raise CalculationError("Expression did not evaluate to a number")
    if isinstance(result, int):
        return result
    if math.isnan(result):
        raise CalculationError("Result is NaN (Not a Number)")
    if math.isinf(result):
        raise CalculationError("Result is infinity")
    return result


class CalculatorTool(BaseTool):
    """
    Evaluate a mathematical expression. Supports + - * / % ** and parentheses,
    the constants pi and e, and the functions sin, cos, tan, asin, acos, atan,
    atan2, exp, log, log10, log2, sqrt, cbrt, pow, abs, ceil, floor, round,
    trunc, min, max, random and sign.
    """

    def __init__(self):
        super().__init__()

    @property
    def description(self) -> str:
        return " ".join((self.__doc__ or "").split())

    async def run(self, expression: str) -> Dict[str, Any]:
        """
        Args:
            expression: The expression to evaluate, e.g. "sqrt(16) + 2 * pi".
        """
        if not expression or not isinstance(expression, str):
            return {"success": False, "error": "Expression is required and must be a string"}
        try:
            result = evaluate_expression(expression)
        except CalculationError as e:
            return {"success": False, "error": str(e), "expression": expression, "mode": "real"}
        return {"success": True, "expression": expression, "result": result, "mode": "real"}
