import itertools

import networkx as nx
import pytest

from sem_simulator import DAG, add_nodes, build_dag, lock, longitudinal_dag, node, point_treatment_dag
from sem_simulator.errors import (
    ForwardReferenceError,
    LockedDAGError,
    NotADAGError,
    OrderConflictError,
    TimeGapError,
    TimeOrderingError,
)


def _grow(options, *node_lists):
    dag = DAG.empty(options)
    for node_list in node_lists:
        dag = add_nodes(dag, node_list)
    return dag


def test_point_treatment_orders_are_inferred(quiet):
    growable = _grow(
        quiet,
        node("W1", distr="rbern", prob="plogis(-0.5)"),
        node("W2", distr="rbern", prob="plogis(-0.5 + 0.5 * W1)"),
        node("A", distr="rbern", prob="plogis(-0.5 - 0.3 * W1 - 0.3 * W2)"),
        node("Y", distr="rbern", prob="plogis(-0.1 + 1.2 * A + 0.3 * W1 + 0.3 * W2)", EFU=True),
    )
    dag = lock(growable)
    assert dag.locked
    assert [(n.name, n.order) for n in dag] == [("W1", 1), ("W2", 2), ("A", 3), ("Y", 4)]
    assert dag["Y"].efu is True
    assert dict(dag.actions) == {}


def test_lock_leaves_growable_dag_untouched(quiet):
    growable = _grow(quiet, node("W1", distr="rnorm"), node("W2", distr="rnorm", mean="W1"))
    locked = lock(growable)
    assert locked is not growable
    assert not growable.locked
    assert all(n.order is None for n in growable)


def test_explicit_orders_are_preserved(quiet):
    dag = lock(
        _grow(
            quiet,
            node("W1", distr="rnorm", order=2),
            node("W2", distr="rnorm"),
            node("A", distr="rnorm"),
        )
    )
    assert {n.name: n.order for n in dag} == {"W1": 2, "W2": 1, "A": 3}
    assert dag.names == ["W2", "W1", "A"]


def test_duplicate_explicit_orders_conflict(quiet):
    growable = _grow(quiet, node("W1", distr="rnorm", order=1), node("W2", distr="rnorm", order=1))
    with pytest.raises(OrderConflictError, match="unique"):
        lock(growable)


def test_explicit_order_beyond_node_count_conflicts(quiet):
    growable = _grow(quiet, node("W1", distr="rnorm", order=5), node("W2", distr="rnorm"))
    with pytest.raises(OrderConflictError, match="consecutive"):
        lock(growable)


@pytest.mark.parametrize("times", [[0, 2], [1, 2]])
def test_time_points_must_be_consecutive_from_zero(quiet, times):
    growable = _grow(quiet, node("L", t=times, distr="rbern", prob=0.5))
    with pytest.raises(TimeGapError):
        lock(growable)


def test_failed_lock_can_be_retried_after_fixing_input(quiet):
    growable = _grow(quiet, node("L", t=[0, 2], distr="rbern", prob=0.5))
    with pytest.raises(TimeGapError):
        lock(growable)
    fixed = add_nodes(growable, node("L", t=1, distr="rbern", prob=0.5))
    dag = lock(fixed)
    assert [(n.name, n.order) for n in dag] == [("L#0", 1), ("L#1", 2), ("L#2", 3)]


def test_reference_to_later_node_is_rejected(quiet):
    growable = _grow(
        quiet,
        node("W1", distr="rbern", prob="plogis(W2)"),
        node("W2", distr="rbern", prob=0.5),
    )
    with pytest.raises(ForwardReferenceError, match="W2"):
        lock(growable)


def test_self_reference_is_rejected(quiet):
    growable = _grow(quiet, node("W", distr="rnorm", mean="W"))
    with pytest.raises(ForwardReferenceError):
        lock(growable)


def test_time_indexed_reference_to_future_is_rejected(quiet):
    growable = _grow(quiet, node("L", t=[0, 1], distr="rbern", prob="ifelse(t == 0, 0.5, L[t + 1])"))
    with pytest.raises(ForwardReferenceError, match="L#1"):
        lock(growable)


def test_reference_to_missing_time_point_is_ignored(quiet):
    dag = lock(_grow(quiet, node("L", t=[0, 1], distr="rbern", prob="ifelse(t == 0, 0.5, L[t - 1])")))
    assert dag.parents("L#0") == set()
    assert dag.parents("L#1") == {"L#0"}


def test_explicit_orders_cannot_invert_time(quiet):
    growable = _grow(
        quiet,
        node("A", t=0, distr="rbern", prob=0.5, order=2),
        node("B", t=1, distr="rbern", prob=0.5, order=1),
    )
    with pytest.raises(TimeOrderingError):
        lock(growable)


def test_relocking_is_a_protocol_violation(quiet):
    dag = lock(_grow(quiet, node("W", distr="rnorm")))
    with pytest.raises(LockedDAGError):
        lock(dag)


def test_lock_rejects_non_dags_and_empty_dags(quiet):
    with pytest.raises(NotADAGError):
        lock(["W"])
    with pytest.raises(NotADAGError):
        lock(DAG.empty(quiet))


def test_efu_is_shared_across_time_points(quiet):
    dag = lock(
        _grow(
            quiet,
            node("Y", t=0, distr="rbern", prob=0.1, EFU=True),
            node("Y", t=1, distr="rbern", prob=0.1),
        )
    )
    assert dag["Y#0"].efu is True
    assert dag["Y#1"].efu is True


def test_longitudinal_orders_respect_time_blocks(quiet):
    dag = longitudinal_dag(3, options=quiet)
    orders = [n.order for n in dag]
    assert sorted(orders) == list(range(1, len(dag) + 1))
    for a, b in itertools.combinations(dag.nodes, 2):
        if a.time < b.time:
            assert a.order < b.order
    assert dag.names[:5] == ["L2#0", "L1#0", "A1#0", "A2#0", "Y#0"]
    assert dag.names[5:9] == ["L2#1", "A1#1", "A2#1", "Y#1"]


def test_parent_lookup(quiet):
    dag = point_treatment_dag(options=quiet)
    assert dag.parents("Y") == {"W1", "W2", "A"}
    assert dag.parents(["W2", "A"]) == {"W1", "W2"}
    assert dag.parents("W1") == set()

    longitudinal = longitudinal_dag(3, options=quiet)
    assert longitudinal.parents("L2#2") == {"A1#1", "L2#1"}
    assert longitudinal.parents("Y#1") == {"L1#0", "L2#0", "L2#1"}


def test_to_networkx_exports_parent_edges(quiet):
    graph = point_treatment_dag(options=quiet).to_networkx()
    assert nx.is_directed_acyclic_graph(graph)
    assert graph.has_edge("W1", "Y")
    assert graph.has_edge("A", "Y")
    assert not graph.has_edge("Y", "A")
    assert graph.nodes["Y"]["order"] == 4
    assert graph.nodes["Y"]["efu"] is True


def test_build_dag_matches_sequential_adds(quiet):
    node_lists = [
        node("W", distr="rnorm"),
        node("L", t=[0, 1], distr="rnorm", mean="W"),
    ]
    built = build_dag(*node_lists, options=quiet)
    assert [(n.name, n.order) for n in built] == [(n.name, n.order) for n in lock(_grow(quiet, *node_lists))]


def test_explicit_order_cannot_put_untimed_node_after_timed_nodes(quiet):
    growable = _grow(
        quiet,
        node("W", distr="rnorm", order=3),
        node("L", t=[0, 1], distr="rbern", prob=0.5, order=[1, 2]),
    )
    with pytest.raises(TimeOrderingError, match="without a time point"):
        lock(growable)
