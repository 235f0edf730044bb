"""Node specifications and the ``node()`` builder."""

from __future__ import annotations

import inspect
import keyword
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .config import DEFAULT_OPTIONS, DAGOptions
from .distributions import DISTRIBUTIONS, is_known_distribution
from .errors import (
    DuplicateNameError,
    InvalidNameError,
    MissingParameterNameError,
    OrderLengthMismatchError,
    UnknownDistributionError,
)
from .expressions import RESERVED_NAMES, DeferredExpression, substitute_now


def expanded_name(generic_name: str, time: int | None, separator: str = DEFAULT_OPTIONS.separator) -> str:
    if time is None:
        return generic_name
    return f"{generic_name}{separator}{time}"


@dataclass(frozen=True)
class NodeSpec:
    """
    One scalar random variable of the model.

    ``name`` is the expanded name (``generic_name`` or ``generic_name#time``)
    and is the node's identity inside a DAG. Parameters hold unevaluated
    formulas keyed by the sampler argument they feed.
    """

    name: str
    generic_name: str
    distribution: str
    parameters: Mapping[str, DeferredExpression] = field(default_factory=dict, hash=False)
    time: int | None = None
    order: int | None = None
    efu: bool | None = None

    def __post_init__(self):
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    def references(self) -> set[tuple[str, int | None]]:
        """``(name, time)`` pairs mentioned by any parameter, with ``t`` bound to this node's time."""
        found: set[tuple[str, int | None]] = set()
        for expression in self.parameters.values():
            found |= expression.references(self.time)
        return found

    def with_order(self, order: int) -> "NodeSpec":
        return replace(self, order=order)

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v.source}" for k, v in self.parameters.items())
        return f"NodeSpec({self.name!r}, {self.distribution}({params}), order={self.order}, efu={self.efu})"


class NodeList(tuple):
    """Nodes produced by one ``node()`` call, ready to be added to a DAG."""

    kind = "nodes"

    @property
    def names(self) -> list[str]:
        return [n.name for n in self]


def _resolve_value(value: Any, scope: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        return substitute_now(value, scope)
    if isinstance(value, (list, tuple)):
        return [_resolve_value(v, scope) for v in value]
    return value


def _collect_parameters(
    named: Mapping[str, Any],
    params: Mapping[str, Any] | Iterable[Any] | None,
    scope: Mapping[str, Any],
) -> dict[str, DeferredExpression]:
    items = list(named.items())
    if params is not None:
        if isinstance(params, Mapping):
            items.extend(params.items())
        else:
            for entry in params:
                if not isinstance(entry, (tuple, list)) or len(entry) != 2:
                    raise MissingParameterNameError(f"please specify a name for parameter {entry!r}")
                items.append((entry[0], entry[1]))

    collected: dict[str, DeferredExpression] = {}
    for param_name, value in items:
        if not isinstance(param_name, str) or not param_name:
            raise MissingParameterNameError(f"please specify a name for parameter {value!r}")
        if param_name in collected:
            raise DuplicateNameError(f"parameter '{param_name}' is specified more than once")
        collected[param_name] = DeferredExpression.from_value(_resolve_value(value, scope))
    return collected


def _normalize_times(t: Any) -> list[int] | None:
    if t is None:
        return None
    values = [t] if isinstance(t, int) else list(t)
    if not values:
        raise ValueError("t must contain at least one time point")
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"time points must be non-negative integers, got {value!r}")
    return values


def _normalize_orders(order: Any, count: int) -> list[int | None]:
    if order is None:
        return [None] * count
    values = [order] if isinstance(order, int) else list(order)
    if len(values) != count:
        raise OrderLengthMismatchError(
            f"t and order arguments must have the same length ({count} != {len(values)})"
        )
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"order values must be positive integers, got {value!r}")
    return values


def _check_generic_name(name: Any, separator: str) -> None:
    if not isinstance(name, str) or not name:
        raise InvalidNameError("node name must be a non-empty string")
    if separator in name:
        raise InvalidNameError(
            f"node name '{name}' cannot contain the reserved separator character '{separator}'"
        )
    if not name.isidentifier() or keyword.iskeyword(name):
        raise InvalidNameError(f"node name '{name}' must be a valid identifier")
    if name in RESERVED_NAMES:
        raise InvalidNameError(f"node name '{name}' is reserved")


def node(
    name: str,
    t: int | Iterable[int] | None = None,
    distr: str | None = None,
    EFU: bool | None = None,
    order: int | Iterable[int] | None = None,
    params: Mapping[str, Any] | Iterable[Any] | None = None,
    scope: Mapping[str, Any] | None = None,
    options: DAGOptions | None = None,
    **kwargs: Any,
) -> NodeList:
    """
    Creates one node, or one node per time point when ``t`` is given.

    Parameter values are formulas kept unevaluated until simulation. They can
    reference earlier nodes by generic name (``W1``) or, for time-varying
    nodes, by generic name and time (``L2[t - 1]``). Wrapping a sub-expression
    in ``now(...)`` evaluates it right away in ``scope``.

    Args:
        name (str): Generic node name.
        t (int or iterable, optional): Time point(s). Each one expands into a
            node named ``name#t``.
        distr (str): Identifier of a registered distribution, e.g. ``"rbern"``.
        EFU (bool, optional): Marks an end-of-follow-up indicator.
        order (int or iterable, optional): Explicit sampling order, one value
            per time point.
        params (mapping or iterable of pairs, optional): Additional named
            distribution parameters.
        scope (mapping, optional): Variables visible to ``now(...)``. Defaults
            to the caller's globals and locals.
        options (DAGOptions, optional): Supplies the name separator.
        **kwargs: Named distribution parameters.

    Returns:
        NodeList: The node(s), in time point order as given.
    """
    options = options or DEFAULT_OPTIONS
    _check_generic_name(name, options.separator)
    if not is_known_distribution(distr):
        supported = ", ".join(sorted(DISTRIBUTIONS))
        raise UnknownDistributionError(
            f"distribution '{distr}' for node '{name}' cannot be found. Use one of: {supported}"
        )

    if scope is None:
        frame = inspect.currentframe().f_back
        try:
            scope = {**frame.f_globals, **frame.f_locals}
        finally:
            del frame

    parameters = _collect_parameters(kwargs, params, scope)
    efu = None if EFU is None else bool(EFU)
    times = _normalize_times(t)

    if times is None:
        orders = _normalize_orders(order, 1)
        nodes = [
            NodeSpec(name=name, generic_name=name, distribution=distr, parameters=parameters,
                     time=None, order=orders[0], efu=efu)
        ]
    else:
        orders = _normalize_orders(order, len(times))
        nodes = [
            NodeSpec(
                name=expanded_name(name, t_i, options.separator),
                generic_name=name,
                distribution=distr,
                parameters=parameters,
                time=t_i,
                order=order_i,
                efu=efu,
            )
            for t_i, order_i in zip(times, orders)
        ]

    names = [n.name for n in nodes]
    if len(set(names)) != len(names):
        raise DuplicateNameError(f"All nodes must have unique names, got {names}")
    return NodeList(nodes)
