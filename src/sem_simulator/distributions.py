"""Sampling functions that node distributions resolve to.

Each sampler is called as ``fn(n, rng, **params)`` where ``params`` are the
evaluated node parameters (scalars or arrays of length ``n``) and ``rng`` is a
``numpy.random.Generator``. Samplers return an array of length ``n``.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

Sampler = Callable[..., np.ndarray]


def _as_column(value, n: int) -> np.ndarray:
    return np.broadcast_to(np.asarray(value, dtype=float), (n,))


def rbern(n: int, rng: np.random.Generator, prob) -> np.ndarray:
    prob = np.clip(_as_column(prob, n), 0.0, 1.0)
    return rng.binomial(1, prob, size=n)


def rbinom(n: int, rng: np.random.Generator, size, prob) -> np.ndarray:
    prob = np.clip(_as_column(prob, n), 0.0, 1.0)
    trials = np.broadcast_to(np.asarray(size, dtype=int), (n,))
    return rng.binomial(trials, prob, size=n)


def rnorm(n: int, rng: np.random.Generator, mean=0.0, sd=1.0) -> np.ndarray:
    return rng.normal(_as_column(mean, n), _as_column(sd, n), size=n)


def runif(n: int, rng: np.random.Generator, min=0.0, max=1.0) -> np.ndarray:  # noqa: A002
    return rng.uniform(_as_column(min, n), _as_column(max, n), size=n)


def rconst(n: int, rng: np.random.Generator, const) -> np.ndarray:
    return np.array(_as_column(const, n))


def rcategor(n: int, rng: np.random.Generator, probs) -> np.ndarray:
    """
    Samples categories 1..k.

    ``probs`` is a list of k probabilities (scalars or per-unit arrays); each
    unit's row is normalised to sum to one.
    """
    items = list(probs) if isinstance(probs, (list, tuple, np.ndarray)) else [probs]
    columns = [_as_column(p, n) for p in items]
    if not columns:
        raise ValueError("rcategor requires at least one probability")
    matrix = np.clip(np.column_stack(columns), 0.0, None)
    totals = matrix.sum(axis=1, keepdims=True)
    if np.any(totals <= 0):
        raise ValueError("rcategor probabilities must have a positive sum")
    cumulative = np.cumsum(matrix / totals, axis=1)
    draws = rng.random(n)[:, None]
    return (draws > cumulative).sum(axis=1) + 1


DISTRIBUTIONS: dict[str, Sampler] = {
    "rbern": rbern,
    "rbinom": rbinom,
    "rnorm": rnorm,
    "runif": runif,
    "rconst": rconst,
    "rcategor": rcategor,
}


def register_distribution(name: str, sampler: Sampler) -> None:
    """Makes ``sampler`` available to nodes under the identifier ``name``."""
    if not isinstance(name, str) or not name:
        raise ValueError("distribution name must be a non-empty string")
    if not callable(sampler):
        raise ValueError(f"sampler for '{name}' must be callable")
    DISTRIBUTIONS[name] = sampler


def is_known_distribution(name: str) -> bool:
    return isinstance(name, str) and name in DISTRIBUTIONS


def get_distribution(name: str) -> Sampler:
    try:
        return DISTRIBUTIONS[name]
    except KeyError:
        supported = ", ".join(sorted(DISTRIBUTIONS))
        raise ValueError(f"Unknown distribution '{name}'. Use one of: {supported}") from None
