"""Deferred parameter expressions.

Node parameters are stored unevaluated: each one is parsed into a syntax tree
when the node is declared and only evaluated during simulation, against the
values already sampled for earlier nodes.

This is NOT eval(). Two phases, as with any restricted expression language:
1. Parse-time validation accepts only a whitelist of syntax (arithmetic,
   comparisons, conditionals, subscripts, calls to the numeric helpers) and
   rejects everything else.
2. Evaluation walks the validated tree against caller-supplied bindings plus
   a small namespace of numeric helpers.

The one exception to deferral is the ``now(...)`` marker: its argument is
evaluated immediately in the declaring scope, with the same restrictions,
and replaced by a literal.
"""

from __future__ import annotations

import ast
import math
import operator
from typing import Any, Mapping

import numpy as np
from scipy.special import expit, logit

from .errors import ExpressionEvaluationError, ExpressionSyntaxError

EAGER_MARKER = "now"
TIME_NAME = "t"


def ifelse(condition, yes, no):
    """Vectorised conditional, ``yes`` where ``condition`` holds else ``no``."""
    return np.where(condition, yes, no)


HELPERS: dict[str, Any] = {
    "np": np,
    "plogis": expit,
    "qlogis": logit,
    "ifelse": ifelse,
    "exp": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
    "sin": np.sin,
    "cos": np.cos,
    "abs": np.abs,
    "round": np.round,
    "pmin": np.minimum,
    "pmax": np.maximum,
    "min": min,
    "max": max,
    "sum": sum,
    "len": len,
    "range": range,
}

# Names a node cannot take because formulas would not be able to reach it.
RESERVED_NAMES = frozenset(HELPERS) | {TIME_NAME, EAGER_MARKER, "ID"}

_CALLABLE_HELPERS = frozenset(name for name, value in HELPERS.items() if callable(value))

# numpy members reachable as np.<name>; numeric only, nothing that touches files
NUMPY_MEMBERS = frozenset(
    {
        "abs", "absolute", "all", "any", "around", "ceil", "clip", "cos", "cumsum",
        "e", "exp", "expm1", "floor", "inf", "isfinite", "isnan", "log", "log10",
        "log1p", "log2", "logical_and", "logical_not", "logical_or", "max",
        "maximum", "mean", "min", "minimum", "nan", "pi", "power", "prod", "round",
        "sign", "sin", "sqrt", "square", "std", "sum", "tanh", "where",
    }
)

_BINARY_OPS: dict[type[ast.operator], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.BitAnd: operator.and_,
    ast.BitOr: operator.or_,
    ast.BitXor: operator.xor,
}

_UNARY_OPS: dict[type[ast.unaryop], Any] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
    ast.Invert: operator.invert,
}

_COMPARISON_OPS: dict[type[ast.cmpop], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

# Integer arithmetic allowed inside a static time index such as L[t - 1]
_INDEX_OPS: dict[type[ast.operator], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.IfExp,
    ast.Subscript,
    ast.Slice,
    ast.Call,
    ast.keyword,
    ast.Attribute,
    ast.List,
    ast.Tuple,
    *_BINARY_OPS,
    *_UNARY_OPS,
    *_COMPARISON_OPS,
)


def _parse(source: str) -> ast.Expression:
    if not isinstance(source, str):
        raise ExpressionSyntaxError(f"Expression must be a string, got {type(source).__name__}")
    try:
        return ast.parse(source.strip(), mode="eval")
    except SyntaxError as exc:
        raise ExpressionSyntaxError(f"Invalid expression syntax '{source}': {exc.msg}") from exc


class _ExpressionValidator(ast.NodeVisitor):
    """Collects every construct of a formula that is outside the whitelist."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def generic_visit(self, node: ast.AST) -> None:
        if not isinstance(node, _ALLOWED_NODES):
            self.errors.append(f"{type(node).__name__} is not allowed")
            return
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self.errors.append(f"Forbidden name: {node.id!r}")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if not (isinstance(node.value, ast.Name) and node.value.id == "np"):
            self.errors.append(f"Attribute access is only allowed on 'np', got {ast.unparse(node)!r}")
        elif node.attr not in NUMPY_MEMBERS:
            self.errors.append(f"Forbidden attribute: 'np.{node.attr}'")

    def visit_Call(self, node: ast.Call) -> None:
        func = node.func
        if isinstance(func, ast.Name):
            if func.id not in _CALLABLE_HELPERS:
                self.errors.append(f"Call to {func.id!r} is not allowed")
        elif isinstance(func, ast.Attribute):
            self.visit(func)
        else:
            self.errors.append(f"Call to {ast.unparse(func)!r} is not allowed")
        for arg in node.args:
            self.visit(arg)
        for keyword in node.keywords:
            if keyword.arg is None:
                self.errors.append("**kwargs are not allowed")
            self.visit(keyword.value)


def _validate(tree: ast.AST, source: str) -> None:
    validator = _ExpressionValidator()
    validator.visit(tree)
    if validator.errors:
        raise ExpressionSyntaxError(f"Invalid expression '{source}': " + "; ".join(validator.errors))


class _ExpressionEvaluator(ast.NodeVisitor):
    """Evaluates a validated formula against ``bindings``, falling back to the helpers."""

    def __init__(self, bindings: Mapping[str, Any]) -> None:
        self._bindings = bindings

    def generic_visit(self, node: ast.AST) -> Any:
        # Should not reach here if validation passed
        raise ExpressionSyntaxError(f"{type(node).__name__} is not allowed")

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id.startswith("__"):
            raise ExpressionSyntaxError(f"Forbidden name: {node.id!r}")
        if node.id in self._bindings:
            return self._bindings[node.id]
        if node.id in HELPERS:
            return HELPERS[node.id]
        raise NameError(f"name '{node.id}' is not defined")

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if not (isinstance(node.value, ast.Name) and node.value.id == "np") or node.attr not in NUMPY_MEMBERS:
            raise ExpressionSyntaxError(f"Forbidden attribute access: {ast.unparse(node)!r}")
        return getattr(np, node.attr)

    def visit_Call(self, node: ast.Call) -> Any:
        if isinstance(node.func, ast.Name):
            if node.func.id not in _CALLABLE_HELPERS:
                raise ExpressionSyntaxError(f"Call to {node.func.id!r} is not allowed")
            func = HELPERS[node.func.id]
        else:
            func = self.visit(node.func)
        args = [self.visit(arg) for arg in node.args]
        kwargs = {keyword.arg: self.visit(keyword.value) for keyword in node.keywords}
        return func(*args, **kwargs)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return self.visit(node.value)[self.visit(node.slice)]

    def visit_Slice(self, node: ast.Slice) -> slice:
        bounds = (node.lower, node.upper, node.step)
        return slice(*(None if part is None else self.visit(part) for part in bounds))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        return _BINARY_OPS[type(node.op)](self.visit(node.left), self.visit(node.right))

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return _UNARY_OPS[type(node.op)](self.visit(node.operand))

    def visit_Compare(self, node: ast.Compare) -> Any:
        # chains combine elementwise so that 0 < W < 1 works on arrays
        left = self.visit(node.left)
        result: Any = True
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            outcome = _COMPARISON_OPS[type(op)](left, right)
            result = outcome if result is True else np.logical_and(result, outcome)
            left = right
        return result

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        if self.visit(node.test):
            return self.visit(node.body)
        return self.visit(node.orelse)

    def visit_List(self, node: ast.List) -> list:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(elt) for elt in node.elts)


def _static_int(node: ast.AST, time: int | None) -> int | None:
    """Evaluate an index made of integer constants, ``t`` and arithmetic."""
    if isinstance(node, ast.Constant):
        if isinstance(node.value, int) and not isinstance(node.value, bool):
            return node.value
        return None
    if isinstance(node, ast.Name) and node.id == TIME_NAME:
        return time
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        value = _static_int(node.operand, time)
        if value is None:
            return None
        return -value if isinstance(node.op, ast.USub) else value
    if isinstance(node, ast.BinOp) and type(node.op) in _INDEX_OPS:
        left = _static_int(node.left, time)
        right = _static_int(node.right, time)
        if left is None or right is None:
            return None
        try:
            return _INDEX_OPS[type(node.op)](left, right)
        except ZeroDivisionError:
            return None
    return None


def _static_times(index: ast.AST, time: int | None) -> list[int] | None:
    if isinstance(index, ast.Slice):
        if index.upper is None:
            return None
        lower = 0 if index.lower is None else _static_int(index.lower, time)
        upper = _static_int(index.upper, time)
        step = 1 if index.step is None else _static_int(index.step, time)
        if lower is None or upper is None or not step:
            return None
        return list(range(lower, upper, step))
    value = _static_int(index, time)
    return None if value is None else [value]


class _ReferenceCollector(ast.NodeVisitor):
    def __init__(self, time: int | None) -> None:
        self.time = time
        self.found: set[tuple[str, int | None]] = set()

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if isinstance(node.value, ast.Name):
            times = _static_times(node.slice, self.time)
            for t_value in times or []:
                self.found.add((node.value.id, t_value))
            # the index itself may mention other nodes
            self.visit(node.slice)
        else:
            self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id != TIME_NAME and node.id not in HELPERS:
            self.found.add((node.id, None))

    def visit_Call(self, node: ast.Call) -> None:
        if not isinstance(node.func, ast.Name):
            self.visit(node.func)
        for arg in node.args:
            self.visit(arg)
        for keyword in node.keywords:
            self.visit(keyword.value)


def _float_source(value: float) -> str:
    if math.isnan(value):
        return "np.nan"
    if math.isinf(value):
        return "np.inf" if value > 0 else "-np.inf"
    return repr(value)


def _as_literal(value: Any) -> ast.expr:
    if isinstance(value, np.ndarray):
        value = value.tolist()
    elif isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, (list, tuple)):
        return ast.List(elts=[_as_literal(v) for v in value], ctx=ast.Load())
    if isinstance(value, float):
        return ast.parse(_float_source(value), mode="eval").body
    text = repr(value)
    try:
        ast.literal_eval(text)
    except (ValueError, SyntaxError) as exc:
        raise ExpressionSyntaxError(
            f"{EAGER_MARKER}(...) must evaluate to a literal value, got {text}"
        ) from exc
    return ast.parse(text, mode="eval").body


class _EagerSubstituter(ast.NodeTransformer):
    def __init__(self, scope: Mapping[str, Any]) -> None:
        self.scope = scope

    def visit_Call(self, node: ast.Call) -> ast.AST:
        if isinstance(node.func, ast.Name) and node.func.id == EAGER_MARKER:
            if len(node.args) != 1 or node.keywords:
                raise ExpressionSyntaxError(f"{EAGER_MARKER}(...) takes exactly one argument")
            inner = node.args[0]
            _validate(inner, ast.unparse(inner))
            try:
                value = _ExpressionEvaluator(self.scope).visit(inner)
            except ExpressionSyntaxError:
                raise
            except Exception as exc:
                raise ExpressionEvaluationError(
                    f"Failed to evaluate {ast.unparse(node)} at declaration: {exc}"
                ) from exc
            return _as_literal(value)
        self.generic_visit(node)
        return node


def substitute_now(source: str, scope: Mapping[str, Any]) -> str:
    """Replace every ``now(expr)`` in ``source`` with the literal value of ``expr`` in ``scope``."""
    tree = _parse(source)
    if not any(
        isinstance(n, ast.Call) and isinstance(n.func, ast.Name) and n.func.id == EAGER_MARKER
        for n in ast.walk(tree)
    ):
        return source
    tree = _EagerSubstituter(scope).visit(tree)
    return ast.unparse(ast.fix_missing_locations(tree))


class DeferredExpression:
    """An unevaluated formula, immutable and compared by its canonical source."""

    __slots__ = ("_source", "_tree")

    def __init__(self, source: str):
        tree = _parse(source)
        _validate(tree, source)
        self._tree = tree
        self._source = ast.unparse(tree)

    @classmethod
    def from_value(cls, value: Any) -> "DeferredExpression":
        """Wrap a parameter value: strings are formulas, numbers and lists become literals."""
        if isinstance(value, DeferredExpression):
            return value
        if isinstance(value, str):
            return cls(value)
        if isinstance(value, np.generic):
            value = value.item()
        if isinstance(value, float):
            return cls(_float_source(value))
        if isinstance(value, (bool, int)):
            return cls(repr(value))
        if isinstance(value, (list, tuple, np.ndarray)):
            parts = [cls.from_value(v).source for v in value]
            return cls("[" + ", ".join(parts) + "]")
        raise ExpressionSyntaxError(f"Unsupported parameter value: {value!r}")

    @property
    def source(self) -> str:
        return self._source

    def references(self, time: int | None = None) -> set[tuple[str, int | None]]:
        """
        Names referenced by the formula.

        Args:
            time (int, optional): Value substituted for ``t`` when resolving
                time indices such as ``L[t - 1]``.

        Returns:
            set: ``(name, time)`` pairs; ``time`` is None for bare names.
        """
        collector = _ReferenceCollector(time)
        collector.visit(self._tree)
        return collector.found

    def evaluate(self, bindings: Mapping[str, Any] | None = None) -> Any:
        try:
            return _ExpressionEvaluator(bindings or {}).visit(self._tree)
        except Exception as exc:
            raise ExpressionEvaluationError(f"Failed to evaluate '{self._source}': {exc}") from exc

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeferredExpression):
            return NotImplemented
        return self._source == other._source

    def __hash__(self) -> int:
        return hash(self._source)

    def __repr__(self) -> str:
        return f"DeferredExpression({self._source!r})"

    def __str__(self) -> str:
        return self._source
