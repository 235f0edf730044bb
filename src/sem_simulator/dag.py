"""
DAG assembly, locking and action overlays.

A DAG starts out growable: ``add_nodes`` returns a new DAG with the nodes
inserted at their time-consistent position (or updated in place when a node
of the same name already exists). ``lock`` resolves every sampling order,
validates the ordering invariants and returns an immutable DAG. Actions
(interventions) can only be attached to a locked DAG; they reparametrize
existing nodes and never add structure.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, ClassVar, Iterable, Iterator, Mapping

import networkx as nx
from loguru import logger

from .config import DEFAULT_OPTIONS, DAGOptions
from .errors import (
    DuplicateAttributeError,
    EFUConflictError,
    EmptyNameError,
    ForwardReferenceError,
    InvalidNameError,
    LockedDAGError,
    LockedRequiredError,
    MissingNodesError,
    NodeOverwriteWarning,
    NotADAGError,
    OrderConflictError,
    TimeGapError,
    TimeOrderingError,
    UnknownNodeError,
)
from .node import NodeList, NodeSpec, expanded_name


@dataclass(frozen=True)
class Action:
    """
    A named intervention on a locked DAG.

    ``nodes`` is the complete node sequence of the base DAG with the replaced
    nodes swapped in; orders are those of the base DAG. ``attributes`` are
    extra named values visible only to the formulas of the replaced nodes.
    """

    name: str
    nodes: tuple[NodeSpec, ...]
    attributes: Mapping[str, Any] = field(default_factory=dict, hash=False)
    replaced: frozenset[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def __getitem__(self, name: str) -> NodeSpec:
        for spec in self.nodes:
            if spec.name == name:
                return spec
        raise UnknownNodeError(f"node '{name}' does not exist in action '{self.name}'")

    def scope_for(self, node_name: str) -> dict[str, Any]:
        """Attribute bindings for the formulas of ``node_name``."""
        if node_name in self.replaced:
            return dict(self.attributes)
        return {}


@dataclass(frozen=True)
class ActionSpec:
    """An action request, to be applied with ``compose`` or ``add_action``."""

    kind: ClassVar[str] = "action"

    name: str
    nodes: Any
    attrs: Any = None
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)


def action(name: str, nodes: Any, attrs: Any = None, **kwargs: Any) -> ActionSpec:
    return ActionSpec(name=name, nodes=nodes, attrs=attrs, extra=kwargs)


class DAG:
    """An ordered sequence of nodes, growable until locked."""

    kind = "dag"

    def __init__(
        self,
        nodes: Iterable[NodeSpec] = (),
        *,
        locked: bool = False,
        options: DAGOptions | None = None,
    ):
        self._nodes = tuple(nodes)
        self._locked = locked
        self._options = options or DEFAULT_OPTIONS
        self._actions: dict[str, Action] = {}
        self._index = {spec.name: i for i, spec in enumerate(self._nodes)}

    @classmethod
    def empty(cls, options: DAGOptions | None = None) -> "DAG":
        return cls(options=options)

    @property
    def nodes(self) -> tuple[NodeSpec, ...]:
        return self._nodes

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def options(self) -> DAGOptions:
        return self._options

    @property
    def actions(self) -> Mapping[str, Action]:
        return MappingProxyType(self._actions)

    @property
    def names(self) -> list[str]:
        return [spec.name for spec in self._nodes]

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[NodeSpec]:
        return iter(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __getitem__(self, name: str) -> NodeSpec:
        try:
            return self._nodes[self._index[name]]
        except KeyError:
            raise UnknownNodeError(f"node '{name}' does not exist in the DAG") from None

    def node_parents(self, spec: NodeSpec) -> list[str]:
        """Expanded names of the DAG nodes referenced by ``spec``'s formulas, in DAG order."""
        separator = self._options.separator
        referenced = {expanded_name(name, time, separator) for name, time in spec.references()}
        return [name for name in self.names if name in referenced]

    def parents(self, names: str | Iterable[str]) -> set[str]:
        """
        Looks up the parents of one or more nodes.

        Args:
            names (str or iterable): Expanded node name(s).

        Returns:
            set: Expanded names referenced by the formulas of those nodes.
        """
        if isinstance(names, str):
            names = [names]
        found: set[str] = set()
        for name in names:
            found.update(self.node_parents(self[name]))
        return found

    def to_networkx(self) -> nx.DiGraph:
        """Dependency graph with an edge from every parent to its child."""
        graph = nx.DiGraph()
        for spec in self._nodes:
            graph.add_node(
                spec.name,
                generic_name=spec.generic_name,
                time=spec.time,
                order=spec.order,
                distribution=spec.distribution,
                efu=spec.efu,
            )
        for spec in self._nodes:
            graph.add_edges_from((parent, spec.name) for parent in self.node_parents(spec))
        return graph

    def __repr__(self) -> str:
        state = "locked" if self._locked else "growable"
        return f"DAG({state}, nodes={self.names}, actions={list(self._actions)})"


# --- Assembly ---


def _check_separator(spec: NodeSpec, separator: str) -> None:
    expected = expanded_name(spec.generic_name, spec.time, separator)
    if spec.name != expected:
        raise InvalidNameError(
            f"node '{spec.name}' does not use the DAG separator '{separator}' (expected '{expected}'); "
            "pass the same options to node() and the DAG"
        )


def _check_efu(sequence: list[NodeSpec], new: NodeSpec) -> None:
    if new.efu is None:
        return
    for spec in sequence:
        if spec.generic_name != new.generic_name or spec.name == new.name:
            continue
        # a bare node about to be promoted to time-varying is dropped anyway
        if new.time is not None and spec.time is None:
            continue
        if spec.efu is not None and spec.efu != new.efu:
            raise EFUConflictError(
                f"node '{new.name}' has EFU={new.efu} but node '{spec.name}' with the same "
                f"generic name has EFU={spec.efu}"
            )


def _insert_position(sequence: list[NodeSpec], new: NodeSpec) -> int:
    if new.time is None:
        timed = [spec.name for spec in sequence if spec.time is not None]
        if timed:
            raise TimeOrderingError(
                f"cannot add node '{new.name}' without a time point after nodes with time "
                f"points were already defined ({timed[0]})"
            )
        return len(sequence)

    same_time = [i for i, spec in enumerate(sequence) if spec.time == new.time]
    if same_time:
        return same_time[-1] + 1
    later = [i for i, spec in enumerate(sequence) if spec.time is not None and spec.time > new.time]
    if later:
        return later[0]
    return len(sequence)


def add_nodes(dag: DAG, nodes: NodeSpec | Iterable[NodeSpec], options: DAGOptions | None = None) -> DAG:
    """
    Adds nodes to a growable DAG, returning the updated DAG.

    Nodes are processed one at a time in the order given. A node whose name
    already exists replaces the existing node at the same position. A
    time-varying node whose generic name matches an existing
    non-time-varying node removes that node (with a warning) and is inserted
    as new. New nodes go after the last node with the same time point, or
    before the first node with a later time point, or at the end.
    """
    if not isinstance(dag, DAG):
        raise NotADAGError("Not a DAG object")
    if dag.locked:
        raise LockedDAGError("DAG object is locked: nodes cannot be modified or added after lock()")
    options = options or dag.options
    if isinstance(nodes, NodeSpec):
        nodes = [nodes]

    sequence = list(dag.nodes)
    for new in nodes:
        if not isinstance(new, NodeSpec):
            raise TypeError(f"expected NodeSpec objects, got {type(new).__name__}")
        _check_separator(new, options.separator)
        names = [spec.name for spec in sequence]
        _check_efu(sequence, new)

        if new.name in names:
            sequence[names.index(new.name)] = new
            if options.verbose:
                logger.info("existing node {} was modified", new.name)
            continue

        if new.time is not None and new.generic_name in names:
            sequence.pop(names.index(new.generic_name))
            message = (
                f"existing non-time-varying node {new.generic_name} was overwritten "
                "with a time-varying node"
            )
            warnings.warn(message, NodeOverwriteWarning, stacklevel=2)
            if options.verbose:
                logger.warning(message)

        sequence.insert(_insert_position(sequence, new), new)

    return DAG(sequence, options=options)


# --- Locking ---


def _check_time_gaps(nodes: list[NodeSpec]) -> None:
    times = sorted({spec.time for spec in nodes if spec.time is not None})
    if times and times != list(range(times[-1] + 1)):
        raise TimeGapError(f"time points must be consecutive integers starting at 0, got {times}")


def _assign_orders(nodes: list[NodeSpec]) -> list[NodeSpec]:
    n_nodes = len(nodes)
    explicit = [spec.order for spec in nodes if spec.order is not None]
    duplicated = sorted({o for o in explicit if explicit.count(o) > 1})
    if duplicated:
        raise OrderConflictError(f"order values must be unique, duplicated: {duplicated}")
    out_of_range = sorted(o for o in explicit if o > n_nodes)
    if out_of_range:
        raise OrderConflictError(
            f"order values must be consecutive starting at 1 (1..{n_nodes}), got {out_of_range}"
        )
    free = iter(sorted(set(range(1, n_nodes + 1)) - set(explicit)))
    return [spec if spec.order is not None else spec.with_order(next(free)) for spec in nodes]


def _check_time_order(ordered: list[NodeSpec]) -> None:
    latest: NodeSpec | None = None
    for spec in ordered:
        if spec.time is None:
            if latest is not None:
                raise TimeOrderingError(
                    f"node '{spec.name}' without a time point has order {spec.order}, after "
                    f"node '{latest.name}' (t={latest.time}, order {latest.order}); nodes "
                    "without time points must come first"
                )
            continue
        if latest is not None and spec.time < latest.time:
            raise TimeOrderingError(
                f"node '{spec.name}' (t={spec.time}) has order {spec.order}, after node "
                f"'{latest.name}' (t={latest.time}, order {latest.order}); nodes with lower "
                "time points must have lower orders"
            )
        if latest is None or spec.time >= latest.time:
            latest = spec


def _propagate_efu(nodes: list[NodeSpec]) -> list[NodeSpec]:
    flags: dict[str, bool] = {}
    for spec in nodes:
        if spec.efu is not None:
            if flags.get(spec.generic_name, spec.efu) != spec.efu:
                raise EFUConflictError(f"nodes named '{spec.generic_name}' disagree on EFU")
            flags[spec.generic_name] = spec.efu
    return [
        replace(spec, efu=flags[spec.generic_name])
        if spec.efu is None and spec.generic_name in flags
        else spec
        for spec in nodes
    ]


def _check_parents_precede(dag: DAG, nodes: Iterable[NodeSpec]) -> None:
    for spec in nodes:
        for parent in dag.node_parents(spec):
            parent_order = dag[parent].order
            if parent_order >= spec.order:
                raise ForwardReferenceError(
                    f"node '{spec.name}' (order {spec.order}) references node '{parent}' "
                    f"(order {parent_order}); parents must have a strictly lower order"
                )


def lock(dag: DAG, options: DAGOptions | None = None) -> DAG:
    """
    Resolves node orders and returns an immutable, simulation-ready DAG.

    Nodes without an explicit order receive the unused values of ``1..N`` in
    sequence position order. The input DAG is left untouched whether or not
    locking succeeds.

    Raises:
        NotADAGError: ``dag`` is not a DAG or has no nodes.
        LockedDAGError: ``dag`` is already locked.
        OrderConflictError: Explicit orders repeat or exceed the node count.
        TimeGapError: Time points are not ``0..maxT``.
        TimeOrderingError: A node has a lower time point but a higher order.
        ForwardReferenceError: A formula references a node that is not
            sampled before it.
    """
    if not isinstance(dag, DAG):
        raise NotADAGError("Not a DAG object")
    if dag.locked:
        raise LockedDAGError("DAG object is already locked")
    if not len(dag):
        raise NotADAGError("cannot lock a DAG without nodes")
    options = options or dag.options

    nodes = list(dag.nodes)
    _check_time_gaps(nodes)
    nodes = sorted(_assign_orders(nodes), key=lambda spec: spec.order)
    _check_time_order(nodes)
    nodes = _propagate_efu(nodes)

    locked = DAG(nodes, locked=True, options=options)
    _check_parents_precede(locked, locked.nodes)
    logger.debug("locked DAG with {} nodes: {}", len(locked), locked.names)
    return locked


def build_dag(*node_lists: Iterable[NodeSpec], options: DAGOptions | None = None) -> DAG:
    """Adds every node list to an empty DAG, then locks it."""
    dag = DAG.empty(options)
    for node_list in node_lists:
        dag = add_nodes(dag, node_list)
    return lock(dag)


# --- Actions ---


def _flatten_nodes(nodes: Any) -> list[NodeSpec]:
    if isinstance(nodes, NodeSpec):
        return [nodes]
    flat: list[NodeSpec] = []
    for item in nodes:
        if isinstance(item, NodeSpec):
            flat.append(item)
        elif isinstance(item, (NodeList, list, tuple)):
            flat.extend(_flatten_nodes(item))
        else:
            raise TypeError(f"action nodes must be NodeSpec objects, got {type(item).__name__}")
    return flat


def _collect_attributes(attrs: Any, named: Mapping[str, Any]) -> dict[str, Any]:
    items: list[tuple[Any, Any]] = []
    if attrs is not None:
        if isinstance(attrs, Mapping):
            items.extend(attrs.items())
        else:
            for entry in attrs:
                if not isinstance(entry, (tuple, list)) or len(entry) != 2:
                    raise DuplicateAttributeError(f"please specify a name for attribute {entry!r}")
                items.append((entry[0], entry[1]))
    items.extend(named.items())

    collected: dict[str, Any] = {}
    for key, value in items:
        if not isinstance(key, str) or not key:
            raise DuplicateAttributeError(f"please specify a name for attribute {value!r}")
        if key in collected:
            raise DuplicateAttributeError(f"attribute '{key}' is specified more than once")
        collected[key] = value
    return collected


def add_action(dag: DAG, name: str | None = None, nodes: Any = None, attrs: Any = None, **kwargs: Any) -> DAG:
    """
    Defines or updates the action ``name`` on a locked DAG.

    Each replacement node must carry the expanded name of an existing node;
    it keeps that node's order. Re-using an action name merges the new
    replacements and attributes into the existing action. Extra attributes,
    given as ``attrs`` or keyword arguments, are visible only to the formulas
    of the replaced nodes.

    Returns:
        DAG: The same DAG object, with its action mapping updated.
    """
    if not isinstance(dag, DAG):
        raise NotADAGError("Not a DAG object")
    if not dag.locked:
        raise LockedRequiredError("actions can only be added to a locked DAG, call lock() first")
    if not isinstance(name, str) or not name:
        raise EmptyNameError("action name must be a non-empty string")
    if nodes is None:
        raise MissingNodesError(f"please specify node(s) for action '{name}'")
    replacements = _flatten_nodes(nodes)
    if not replacements:
        raise MissingNodesError(f"please specify node(s) for action '{name}'")
    attributes = _collect_attributes(attrs, kwargs)
    for spec in replacements:
        _check_separator(spec, dag.options.separator)

    unknown = [spec.name for spec in replacements if spec.name not in dag]
    if unknown:
        raise UnknownNodeError(
            f"action '{name}' refers to node(s) {unknown} that do not exist in the DAG"
        )

    existing = dag.actions.get(name)
    current = {spec.name: spec for spec in (existing.nodes if existing else dag.nodes)}
    replaced = set(existing.replaced) if existing else set()
    for spec in replacements:
        base = dag[spec.name]
        current[spec.name] = replace(
            spec,
            time=base.time,
            order=base.order,
            efu=base.efu if spec.efu is None else spec.efu,
        )
        replaced.add(spec.name)
    _check_parents_precede(dag, [current[n] for n in sorted(replaced)])

    if existing:
        attributes = {**existing.attributes, **attributes}
    dag._actions[name] = Action(
        name=name,
        nodes=tuple(current[spec.name] for spec in dag.nodes),
        attributes=attributes,
        replaced=frozenset(replaced),
    )
    return dag


# --- Composition ---


def compose(base: DAG, addendum: Any, options: DAGOptions | None = None) -> DAG:
    """
    Adds a node list or an action to ``base``.

    ``addendum.kind`` selects the operation: ``"nodes"`` for lists returned by
    ``node()``, ``"action"`` for requests returned by ``action()``.
    """
    kind = getattr(addendum, "kind", None)
    if kind == "nodes":
        return add_nodes(base, addendum, options)
    if kind == "action":
        return add_action(base, addendum.name, addendum.nodes, addendum.attrs, **addendum.extra)
    raise TypeError(f"Cannot add object of kind {kind!r} to a DAG")
