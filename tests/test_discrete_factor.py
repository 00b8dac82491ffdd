from __future__ import annotations

import math

import pytest

from hybrid_jit.core.types import DiscreteKey
from hybrid_jit.discrete.discrete_factor import DecisionTreeFactor, DiscreteFactorGraph

A = DiscreteKey("mode", 2)
B = DiscreteKey("assoc", 3)


def test_evaluate_and_error():
    f = DecisionTreeFactor([A], [0.25, 0.75])

    assert f.evaluate({"mode": 0}) == pytest.approx(0.25)
    assert f({"mode": 1}) == pytest.approx(0.75)
    assert f.error({"mode": 1}) == pytest.approx(-math.log(0.75))
    assert DecisionTreeFactor([A], [0.0, 1.0]).error({"mode": 0}) == math.inf


def test_product_over_different_scopes():
    """
    Product of a factor over `mode` and one over `assoc` is defined on
    both keys, value = product of the two projections.
    """
    fa = DecisionTreeFactor([A], [0.2, 0.8])
    fb = DecisionTreeFactor([B], [1.0, 2.0, 3.0])

    graph = DiscreteFactorGraph([fa, fb])
    prod = graph.product()

    assert {k.id for k in prod.discrete_keys()} == {"mode", "assoc"}
    for m in range(2):
        for a in range(3):
            expected = fa({"mode": m}) * fb({"assoc": a})
            assert prod({"mode": m, "assoc": a}) == pytest.approx(expected)


def test_graph_keys_and_equality():
    fa = DecisionTreeFactor([A], [0.2, 0.8])
    fab = DecisionTreeFactor([B, A], [1.0, 2.0, 3.0, 4.0, 5.0, 6.0])

    graph = DiscreteFactorGraph([fa, fab])
    assert graph.discrete_keys() == [A, B]

    same = DiscreteFactorGraph([DecisionTreeFactor([A], [0.2, 0.8]), fab])
    assert graph.equals(same)
    assert not graph.equals(DiscreteFactorGraph([fa]))
    assert not graph.equals(DiscreteFactorGraph([DecisionTreeFactor([A], [0.3, 0.7]), fab]))
