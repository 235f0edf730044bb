import pytest

from sem_simulator import DAGOptions, node, register_distribution
from sem_simulator.distributions import DISTRIBUTIONS
from sem_simulator.errors import (
    DuplicateNameError,
    InvalidNameError,
    MissingParameterNameError,
    OrderLengthMismatchError,
    UnknownDistributionError,
)


def test_time_points_expand_into_one_node_each():
    nodes = node("L", t=[0, 1, 2], distr="rbern", prob=0.5)
    assert nodes.kind == "nodes"
    assert nodes.names == ["L#0", "L#1", "L#2"]
    assert [n.time for n in nodes] == [0, 1, 2]
    assert {n.generic_name for n in nodes} == {"L"}
    assert all(n.order is None for n in nodes)


def test_node_without_time_keeps_generic_name():
    (w,) = node("W1", distr="rbern", prob="plogis(-0.5)")
    assert w.name == "W1"
    assert w.time is None
    assert w.distribution == "rbern"
    assert w.parameters["prob"].source == "plogis(-0.5)"


def test_name_with_separator_is_rejected():
    with pytest.raises(InvalidNameError, match="separator"):
        node("L#1", distr="rbern", prob=0.5)


def test_custom_separator_is_used_for_expanded_names():
    nodes = node("L", t=[1], distr="rbern", prob=0.5, options=DAGOptions(separator="@"))
    assert nodes.names == ["L@1"]


@pytest.mark.parametrize("name", ["t", "now", "plogis", "1abc", "", "class"])
def test_reserved_or_invalid_identifiers_are_rejected(name):
    with pytest.raises(InvalidNameError):
        node(name, distr="rbern", prob=0.5)


def test_unknown_distribution_is_rejected():
    with pytest.raises(UnknownDistributionError, match="rfoo"):
        node("W", distr="rfoo", mean=0)


def test_registered_distribution_becomes_available():
    register_distribution("rpois", lambda n, rng, lam: rng.poisson(lam, size=n))
    try:
        (w,) = node("W", distr="rpois", lam=3)
        assert w.distribution == "rpois"
    finally:
        DISTRIBUTIONS.pop("rpois")


def test_parameters_must_be_named():
    with pytest.raises(MissingParameterNameError):
        node("W", distr="rnorm", params=[("mean", 0), 1])
    with pytest.raises(MissingParameterNameError):
        node("W", distr="rnorm", params={"": 1})


def test_parameter_given_twice_is_rejected():
    with pytest.raises(DuplicateNameError, match="mean"):
        node("W", distr="rnorm", mean=0, params={"mean": 1})


def test_params_mapping_and_keywords_are_merged():
    (w,) = node("W", distr="rnorm", mean="1 + 1", params={"sd": 2})
    assert dict((k, v.source) for k, v in w.parameters.items()) == {"mean": "1 + 1", "sd": "2"}


def test_order_list_must_match_time_points():
    with pytest.raises(OrderLengthMismatchError):
        node("L", t=[0, 1], distr="rbern", prob=0.1, order=[1])


def test_orders_are_taken_positionally():
    nodes = node("L", t=[0, 1], distr="rbern", prob=0.1, order=[3, 5])
    assert [n.order for n in nodes] == [3, 5]


def test_repeated_time_points_are_duplicate_names():
    with pytest.raises(DuplicateNameError):
        node("L", t=[0, 0], distr="rbern", prob=0.1)


@pytest.mark.parametrize("t", [[-1], [0.5], []])
def test_time_points_must_be_non_negative_integers(t):
    with pytest.raises(ValueError):
        node("L", t=t, distr="rbern", prob=0.1)


def test_now_is_evaluated_in_the_caller_scope():
    t_end = 16
    (l0,) = node("L", t=[0], distr="rbern", prob="ifelse(t == now(t_end), 0.5, 0.1)")
    assert l0.parameters["prob"].source == "ifelse(t == 16, 0.5, 0.1)"


def test_now_uses_explicit_scope_when_given():
    (a,) = node("A", distr="rnorm", mean="now(k) * W", scope={"k": 2})
    assert a.parameters["mean"].source == "2 * W"


def test_node_specs_are_immutable():
    (w,) = node("W", distr="rbern", prob=0.5, EFU=1)
    assert w.efu is True
    with pytest.raises(TypeError):
        w.parameters["prob"] = None
    with pytest.raises(AttributeError):
        w.order = 3
