"""Safe evaluation of condition expressions.

Expressions are parsed with `ast` and walked node by node; only literals,
boolean logic, comparisons, arithmetic, subscripts and a small set of helper
functions and string methods are allowed. JavaScript-style operators
(`===`, `!==`, `&&`, `||`, `!`) and literals (`true`, `false`, `null`) are
accepted as well.
"""

import ast
import operator
import re
from typing import Any


class ExpressionError(Exception):
    """Raised when an expression is invalid or fails to evaluate."""

    pass


# Quoted string literals are left alone when translating operators
_STRING_LITERAL = re.compile(r"""('(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")""")

_JS_TRANSLATIONS = [
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
]

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_COMPARE_OPERATORS = {
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

_NAMES = {
    "True": True,
    "False": False,
    "None": None,
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}

_FUNCTIONS = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}

_STRING_METHODS = {
    "lower": str.lower,
    "toLowerCase": str.lower,
    "upper": str.upper,
    "toUpperCase": str.upper,
    "strip": str.strip,
    "trim": str.strip,
    "startswith": str.startswith,
    "startsWith": str.startswith,
    "endswith": str.endswith,
    "endsWith": str.endswith,
}


def translate_operators(expression: str) -> str:
    """Rewrite JavaScript-style operators outside string literals."""
    parts = _STRING_LITERAL.split(expression)
    for i in range(0, len(parts), 2):
        for pattern, replacement in _JS_TRANSLATIONS:
            parts[i] = pattern.sub(replacement, parts[i])
    return "".join(parts)


def evaluate_expression(expression: str) -> Any:
    """Evaluate an expression.

    Args:
        expression: Expression text with all references already substituted.

    Returns:
        The value of the expression.

    Raises:
        ExpressionError: If the expression is invalid, uses unsupported
            syntax, or fails while evaluating.
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression: {e.msg}") from e

    try:
        return _evaluate(tree)
    except ExpressionError:
        raise
    except (TypeError, ValueError, KeyError, IndexError, ZeroDivisionError) as e:
        raise ExpressionError(str(e)) from e


def _evaluate(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.BoolOp):
        result: Any = None
        for value_node in node.values:
            result = _evaluate(value_node)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    if isinstance(node, ast.UnaryOp):
        operand = _evaluate(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")

    if isinstance(node, ast.BinOp):
        binary = _BINARY_OPERATORS.get(type(node.op))
        if binary is None:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        return binary(_evaluate(node.left), _evaluate(node.right))

    if isinstance(node, ast.Compare):
        left = _evaluate(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = _evaluate(comparator)
            compare = _COMPARE_OPERATORS.get(type(op))
            if compare is None:
                raise ExpressionError(f"Unsupported comparison: {type(op).__name__}")
            if not compare(left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.IfExp):
        return _evaluate(node.body) if _evaluate(node.test) else _evaluate(node.orelse)

    if isinstance(node, ast.Name):
        if node.id in _NAMES:
            return _NAMES[node.id]
        raise ExpressionError(f"Unknown name: {node.id}")

    if isinstance(node, (ast.List, ast.Tuple)):
        return [_evaluate(element) for element in node.elts]

    if isinstance(node, ast.Dict):
        if any(key is None for key in node.keys):
            raise ExpressionError("Dictionary unpacking is not supported")
        return {_evaluate(k): _evaluate(v) for k, v in zip(node.keys, node.values)}

    if isinstance(node, ast.Subscript):
        container = _evaluate(node.value)
        if isinstance(node.slice, ast.Slice):
            index: Any = slice(
                _evaluate(node.slice.lower) if node.slice.lower else None,
                _evaluate(node.slice.upper) if node.slice.upper else None,
                _evaluate(node.slice.step) if node.slice.step else None,
            )
        else:
            index = _evaluate(node.slice)
        return container[index]

    if isinstance(node, ast.Attribute):
        if node.attr == "length":
            return len(_evaluate(node.value))
        raise ExpressionError(f"Unsupported attribute: {node.attr}")

    if isinstance(node, ast.Call):
        return _call(node)

    raise ExpressionError(f"Unsupported expression: {type(node).__name__}")


def _call(node: ast.Call) -> Any:
    if node.keywords:
        raise ExpressionError("Keyword arguments are not supported")
    args = [_evaluate(arg) for arg in node.args]

    if isinstance(node.func, ast.Name):
        function = _FUNCTIONS.get(node.func.id)
        if function is None:
            raise ExpressionError(f"Unknown function: {node.func.id}")
        return function(*args)

    if isinstance(node.func, ast.Attribute):
        target = _evaluate(node.func.value)
        method = node.func.attr
        if method == "includes":
            return args[0] in target
        if isinstance(target, str) and method in _STRING_METHODS:
            return _STRING_METHODS[method](target, *args)
        raise ExpressionError(f"Unsupported method: {method}")

    raise ExpressionError("Unsupported call")
