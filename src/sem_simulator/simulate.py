"""Simulating observed and intervened data from a locked DAG."""

from __future__ import annotations

from typing import Any, Iterable

import numpy as np
import pandas as pd
from loguru import logger

from .dag import DAG, Action
from .distributions import get_distribution
from .errors import LockedRequiredError, NotADAGError, UnknownActionError
from .expressions import TIME_NAME
from .node import NodeSpec, expanded_name


class TimeIndexedValues:
    """Sampled values of a time-varying node, subscripted by time point in formulas.

    ``L[2]`` gives the column for ``L#2``; ``L[0:t]`` stacks the columns for
    times ``0..t-1``. Time points that were not sampled read as NaN.
    """

    def __init__(self, n: int):
        self._n = n
        self._columns: dict[int, np.ndarray] = {}

    def set(self, time: int, values: np.ndarray) -> None:
        self._columns[time] = values

    def __getitem__(self, index):
        if isinstance(index, slice):
            start = 0 if index.start is None else index.start
            stop = max(self._columns, default=-1) + 1 if index.stop is None else index.stop
            times = range(start, stop, index.step or 1)
            if not len(times):
                return np.empty((self._n, 0))
            return np.column_stack([self[t] for t in times])
        if isinstance(index, np.integer):
            index = int(index)
        if not isinstance(index, int):
            raise TypeError(f"time index must be an integer, got {index!r}")
        column = self._columns.get(index)
        if column is None:
            return np.full(self._n, np.nan)
        return column


def _subset(value: Any, mask: np.ndarray, n: int) -> Any:
    if isinstance(value, (list, tuple)):
        return [_subset(v, mask, n) for v in value]
    if isinstance(value, np.ndarray) and value.ndim >= 1 and value.shape[0] == n:
        return value[mask]
    return value


def _sample_nodes(
    nodes: Iterable[NodeSpec],
    n: int,
    rng: np.random.Generator,
    action: Action | None = None,
) -> dict[str, np.ndarray]:
    bindings: dict[str, Any] = {}
    columns: dict[str, np.ndarray] = {}
    # units whose follow-up has not ended
    observed = np.ones(n, dtype=bool)

    for spec in nodes:
        env = dict(bindings)
        if spec.time is not None:
            env[TIME_NAME] = spec.time
        if action is not None:
            env.update(action.scope_for(spec.name))
        params = {key: expr.evaluate(env) for key, expr in spec.parameters.items()}

        sampler = get_distribution(spec.distribution)
        values = np.full(n, np.nan)
        n_observed = int(observed.sum())
        if n_observed:
            subset = {key: _subset(value, observed, n) for key, value in params.items()}
            values[observed] = sampler(n_observed, rng, **subset)
        columns[spec.name] = values

        if spec.time is None:
            bindings[spec.generic_name] = values
        else:
            bindings.setdefault(spec.generic_name, TimeIndexedValues(n)).set(spec.time, values)
        if spec.efu:
            observed &= values != 1

    return columns


def simulate(dag: DAG, n: int, action: str | None = None, seed: int | None = None) -> pd.DataFrame:
    """
    Samples ``n`` units from a locked DAG, optionally under an action.

    Args:
        dag (DAG): A locked DAG.
        n (int): Number of units.
        action (str, optional): Name of an action defined on ``dag``.
        seed (int, optional): Seed for ``numpy.random.default_rng``.

    Returns:
        pd.DataFrame: An ``ID`` column followed by one column per node in
        sampling order. Values after an end-of-follow-up event are NaN.
    """
    if not isinstance(dag, DAG):
        raise NotADAGError("Not a DAG object")
    if not dag.locked:
        raise LockedRequiredError("simulation requires a locked DAG, call lock() first")
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 1:
        raise ValueError(f"n must be a positive integer, got {n!r}")

    chosen = None
    if action is not None:
        chosen = dag.actions.get(action)
        if chosen is None:
            raise UnknownActionError(
                f"action '{action}' is not defined; available: {sorted(dag.actions)}"
            )
    nodes = chosen.nodes if chosen is not None else dag.nodes

    logger.debug("simulating {} units from {} nodes (action={})", n, len(nodes), action)
    rng = np.random.default_rng(seed)
    columns = _sample_nodes(nodes, int(n), rng, chosen)
    return pd.DataFrame({"ID": np.arange(1, int(n) + 1), **columns})


def simulate_full(
    dag: DAG, actions: Iterable[str] | None, n: int, seed: int | None = None
) -> dict[str, pd.DataFrame]:
    """Simulates each action with the same seed. ``None`` means every action on the DAG."""
    names = list(dag.actions) if actions is None else list(actions)
    if not names:
        raise UnknownActionError("no actions to simulate")
    return {name: simulate(dag, n, action=name, seed=seed) for name in names}


def to_long(data: pd.DataFrame, dag: DAG) -> pd.DataFrame:
    """
    Converts wide simulated data to one row per unit and time point.

    Time-varying nodes become one column per generic name; nodes without a
    time point are repeated on every row of their unit.
    """
    timed = [spec for spec in dag.nodes if spec.time is not None]
    if not timed:
        return data.copy()
    untimed = [spec.name for spec in dag.nodes if spec.time is None]
    generic = list(dict.fromkeys(spec.generic_name for spec in timed))
    separator = dag.options.separator

    frames = []
    for time in sorted({spec.time for spec in timed}):
        frame = data[["ID", *untimed]].copy()
        frame["t"] = time
        for name in generic:
            column = expanded_name(name, time, separator)
            frame[name] = data[column] if column in data.columns else np.nan
        frames.append(frame)

    long = pd.concat(frames, ignore_index=True)
    long = long.sort_values(["ID", "t"], kind="stable").reset_index(drop=True)
    return long[["ID", "t", *untimed, *generic]]
