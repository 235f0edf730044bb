"""Building DAGs from JSON-style model configurations."""

from __future__ import annotations

from typing import Any, Mapping

from .config import DAGOptions
from .dag import DAG, add_action, add_nodes, lock
from .node import NodeList, node

NODE_KEYS = {"name", "t", "distr", "EFU", "order", "params"}
ACTION_KEYS = {"name", "nodes", "attrs"}


def _node_from_config(spec: Mapping[str, Any], options: DAGOptions) -> NodeList:
    if not isinstance(spec, Mapping):
        raise ValueError(f"each node must be a dictionary, got {spec!r}")
    unknown = set(spec) - NODE_KEYS
    if unknown:
        raise ValueError(f"unknown key(s) {sorted(unknown)} in node {spec.get('name')!r}")
    if "name" not in spec or "distr" not in spec:
        raise ValueError("each node must include 'name' and 'distr'")
    return node(
        spec["name"],
        t=spec.get("t"),
        distr=spec["distr"],
        EFU=spec.get("EFU"),
        order=spec.get("order"),
        params=spec.get("params") or {},
        scope={},
        options=options,
    )


def dag_from_config(config: Mapping[str, Any]) -> DAG:
    """
    Builds and locks a DAG, plus its actions, from a configuration dictionary.

    Expected layout::

        {
            "options": {"verbose": true},
            "nodes": [
                {"name": "W", "distr": "rnorm", "params": {"mean": 0, "sd": 1}},
                {"name": "L", "t": [0, 1], "distr": "rbern", "params": {"prob": "plogis(W)"}}
            ],
            "actions": [
                {"name": "treat", "nodes": [...], "attrs": {"theta": 0.5}}
            ]
        }
    """
    options = DAGOptions.from_mapping(config.get("options"))
    node_specs = config.get("nodes")
    if not node_specs:
        raise ValueError("config must define at least one node under 'nodes'")

    dag = DAG.empty(options)
    for spec in node_specs:
        dag = add_nodes(dag, _node_from_config(spec, options))
    dag = lock(dag)

    for act in config.get("actions") or []:
        unknown = set(act) - ACTION_KEYS
        if unknown:
            raise ValueError(f"unknown key(s) {sorted(unknown)} in action {act.get('name')!r}")
        nodes = [_node_from_config(spec, options) for spec in act.get("nodes") or []]
        add_action(dag, act.get("name"), nodes or None, attrs=act.get("attrs"))
    return dag
