"""Top-level package for sem_simulator.

Provides the main public API surface for consumers of the package.
"""

from importlib.metadata import PackageNotFoundError, version

from .config import DAGOptions
from .dag import (
    DAG,
    Action,
    ActionSpec,
    action,
    add_action,
    add_nodes,
    build_dag,
    compose,
    lock,
)
from .distributions import register_distribution
from .expressions import DeferredExpression
from .loader import dag_from_config
from .node import NodeList, NodeSpec, node
from .simulate import simulate, simulate_full, to_long
from .templates import longitudinal_dag, point_treatment_dag

__all__ = [
    "DAG",
    "DAGOptions",
    "Action",
    "ActionSpec",
    "DeferredExpression",
    "NodeList",
    "NodeSpec",
    "action",
    "add_action",
    "add_nodes",
    "build_dag",
    "compose",
    "dag_from_config",
    "lock",
    "node",
    "register_distribution",
    "simulate",
    "simulate_full",
    "to_long",
    "point_treatment_dag",
    "longitudinal_dag",
]

try:
    __version__ = version("semsampler")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
