"""Ready-made DAGs for common study designs."""

from __future__ import annotations

from .config import DAGOptions
from .dag import DAG, add_action, add_nodes, build_dag, lock
from .node import node


def point_treatment_dag(with_actions: bool = False, options: DAGOptions | None = None) -> DAG:
    """
    Baseline covariates W1 and W2, binary treatment A and binary outcome Y.

    With ``with_actions``, adds the static actions ``A1`` (treat everyone) and
    ``A0`` (treat no one), and the dynamic action ``A_theta`` which treats
    units with ``W1 >= theta`` (``theta`` defaults to 1).
    """
    dag = build_dag(
        node("W1", distr="rbern", prob="plogis(-0.5)", options=options),
        node("W2", distr="rbern", prob="plogis(-0.5 + 0.5 * W1)", options=options),
        node("A", distr="rbern", prob="plogis(-0.5 - 0.3 * W1 - 0.3 * W2)", options=options),
        node(
            "Y",
            distr="rbern",
            prob="plogis(-0.1 + 1.2 * A + 0.3 * W1 + 0.3 * W2)",
            EFU=True,
            options=options,
        ),
        options=options,
    )
    if with_actions:
        add_action(dag, "A1", node("A", distr="rbern", prob=1, options=options))
        add_action(dag, "A0", node("A", distr="rbern", prob=0, options=options))
        add_action(
            dag,
            "A_theta",
            node("A", distr="rbern", prob="ifelse(W1 >= theta, 1, 0)", options=options),
            theta=1,
        )
    return dag


def longitudinal_dag(t_end: int = 4, options: DAGOptions | None = None) -> DAG:
    """
    Time-varying covariates L1/L2, treatments A1/A2 and an EFU outcome Y over ``0..t_end``.

    Adds the static actions ``A1_0`` and ``A1_1`` that set A1 to 0 or 1 at
    every time point.
    """
    if t_end < 1:
        raise ValueError("t_end must be at least 1")
    later = range(1, t_end + 1)

    dag = DAG.empty(options)
    for node_list in (
        node("L2", t=0, distr="rbern", prob=0.05, options=options),
        node("L1", t=0, distr="rbern", prob="ifelse(L2[0] == 1, 0.5, 0.1)", options=options),
        node(
            "A1",
            t=0,
            distr="rbern",
            prob="ifelse((L1[0] == 1) & (L2[0] == 0), 0.5, ifelse((L1[0] == 0) & (L2[0] == 0), 0.1, "
            "ifelse((L1[0] == 1) & (L2[0] == 1), 0.9, 0.5)))",
            options=options,
        ),
        node("A2", t=0, distr="rbern", prob=0, options=options),
        node(
            "Y",
            t=0,
            distr="rbern",
            prob="plogis(-6.5 + L1[0] + 4 * L2[0] + 0.05 * (L2[0] == 0))",
            EFU=True,
            options=options,
        ),
        node(
            "L2",
            t=later,
            distr="rbern",
            prob="ifelse(A1[t - 1] == 1, 0.1, ifelse(L2[t - 1] == 1, 0.9, pmin(1, 0.1 + t / now(t_end))))",
            options=options,
        ),
        node(
            "A1",
            t=later,
            distr="rbern",
            prob="ifelse(A1[t - 1] == 1, 1, ifelse((L1[0] == 1) & (L2[0] == 0), 0.3, "
            "ifelse((L1[0] == 0) & (L2[0] == 0), 0.1, ifelse((L1[0] == 1) & (L2[0] == 1), 0.7, 0.5))))",
            options=options,
        ),
        node("A2", t=later, distr="rbern", prob=0, options=options),
        node(
            "Y",
            t=later,
            distr="rbern",
            prob="plogis(-6.5 + L1[0] + 4 * L2[t] + 0.05 * np.sum(L2[0:t + 1] == 0, axis=1))",
            EFU=True,
            options=options,
        ),
    ):
        dag = add_nodes(dag, node_list)
    dag = lock(dag)

    everyone = range(0, t_end + 1)
    add_action(dag, "A1_0", node("A1", t=everyone, distr="rbern", prob=0, options=options))
    add_action(dag, "A1_1", node("A1", t=everyone, distr="rbern", prob=1, options=options))
    return dag
