import numpy as np
import pytest

from sem_simulator.errors import ExpressionEvaluationError, ExpressionSyntaxError
from sem_simulator.expressions import DeferredExpression, substitute_now


def test_references_bare_names_skip_helpers():
    expr = DeferredExpression("plogis(-0.5 + 0.5 * W1)")
    assert expr.references() == {("W1", None)}


def test_references_resolve_time_index_against_node_time():
    expr = DeferredExpression("L2[t - 1] + A")
    assert expr.references(time=3) == {("L2", 2), ("A", None)}


def test_references_expand_slices():
    expr = DeferredExpression("np.sum(L2[0:t + 1] == 0, axis=1)")
    assert expr.references(time=2) == {("L2", 0), ("L2", 1), ("L2", 2)}


def test_references_ignore_indices_that_are_not_static():
    expr = DeferredExpression("L[k]")
    assert expr.references(time=1) == {("k", None)}


def test_evaluate_against_bindings():
    expr = DeferredExpression("ifelse(W > 0, 1, 0)")
    result = expr.evaluate({"W": np.array([-1.0, 2.0])})
    assert result.tolist() == [0, 1]
    assert DeferredExpression("plogis(0)").evaluate() == pytest.approx(0.5)


@pytest.mark.parametrize(
    "source",
    ["lambda x: x", "__import__('os')", "W.__class__", "x = 1", "[w for w in W]", "1 +"],
)
def test_forbidden_or_invalid_expressions_are_rejected(source):
    with pytest.raises(ExpressionSyntaxError):
        DeferredExpression(source)


def test_evaluation_errors_are_chained():
    with pytest.raises(ExpressionEvaluationError, match="missing") as excinfo:
        DeferredExpression("missing + 1").evaluate({})
    assert isinstance(excinfo.value.__cause__, NameError)


def test_from_value_builds_literals_and_lists():
    assert DeferredExpression.from_value(0.25).source == "0.25"
    assert DeferredExpression.from_value(True).source == "True"
    assert DeferredExpression.from_value([0.3, "plogis(A)"]).source == "[0.3, plogis(A)]"
    with pytest.raises(ExpressionSyntaxError):
        DeferredExpression.from_value({"a": 1})


def test_expressions_compare_by_canonical_source():
    assert DeferredExpression("a+b") == DeferredExpression("a + b")
    assert len({DeferredExpression("a+b"), DeferredExpression("a + b")}) == 1


def test_substitute_now_only_touches_marked_subexpressions():
    result = substitute_now("ifelse(t == now(t_end), 0.5, L[t - 1])", {"t_end": 16})
    assert result == "ifelse(t == 16, 0.5, L[t - 1])"
    assert substitute_now("A + 1", {}) == "A + 1"


def test_substitute_now_requires_literal_values():
    with pytest.raises(ExpressionSyntaxError, match="literal"):
        substitute_now("now(f)", {"f": object()})
    with pytest.raises(ExpressionEvaluationError):
        substitute_now("now(undefined_name)", {})


@pytest.mark.parametrize(
    "source",
    [
        "np.savetxt('out.txt', [1]) or 0",
        "np.load('data.npy')",
        "np.random.normal()",
        "open('out.txt', 'w')",
        "W(1)",
        "{'a': 1}",
        "A in [1, 2]",
    ],
)
def test_formulas_outside_the_numeric_whitelist_are_rejected(source):
    with pytest.raises(ExpressionSyntaxError):
        DeferredExpression(source)


def test_whitelisted_numpy_members_evaluate():
    expr = DeferredExpression("np.clip(np.log1p(W), 0, np.inf) + np.pi * 0")
    result = expr.evaluate({"W": np.array([0.0, np.e - 1])})
    np.testing.assert_allclose(result, [0.0, 1.0])


def test_chained_comparisons_work_elementwise():
    result = DeferredExpression("0 < W <= 1").evaluate({"W": np.array([-1.0, 0.5, 1.0, 2.0])})
    assert result.tolist() == [False, True, True, False]


def test_ternary_subscript_and_keyword_arguments():
    bindings = {"M": np.array([[1.0, 2.0], [3.0, 4.0]]), "k": 1}
    assert DeferredExpression("M[0, 1] if k == 1 else -1").evaluate(bindings) == 2.0
    np.testing.assert_allclose(DeferredExpression("np.sum(M[:, 0:2], axis=1)").evaluate(bindings), [3.0, 7.0])


def test_non_finite_floats_become_numpy_constants():
    assert DeferredExpression.from_value(float("nan")).source == "np.nan"
    assert DeferredExpression.from_value(float("-inf")).source == "-np.inf"
    assert np.isnan(DeferredExpression.from_value(float("nan")).evaluate())
    assert DeferredExpression.from_value([float("inf"), 1.0]).evaluate() == [np.inf, 1.0]


def test_substitute_now_emits_non_finite_values_as_constants():
    assert substitute_now("W + now(x)", {"x": float("nan")}) == "W + np.nan"


def test_substitute_now_cannot_call_arbitrary_functions():
    with pytest.raises(ExpressionSyntaxError):
        substitute_now("now(open('out.txt', 'w'))", {"open": open})
    with pytest.raises(ExpressionSyntaxError):
        substitute_now("now(np.save('out', 1))", {})
