from __future__ import annotations

import pytest

from hybrid_jit.core.errors import ScopeInconsistencyError
from hybrid_jit.core.types import DiscreteKey
from hybrid_jit.discrete.decision_tree import DecisionTree, merge_keys

A = DiscreteKey(1, 2)
B = DiscreteKey(2, 3)
C = DiscreteKey(3, 2)


def concat(x: tuple, y: tuple) -> tuple:
    return x + y


def test_row_major_table_with_unsorted_keys():
    """
    Keys are given as [B, A], so the table is indexed as b * 2 + a even
    though the tree itself tests A before B.
    """
    tree = DecisionTree([B, A], list(range(6)))

    assert tree.discrete_keys() == [A, B]
    for b in range(3):
        for a in range(2):
            assert tree({1: a, 2: b}) == b * 2 + a


def test_leaf_count_must_match_cardinalities():
    with pytest.raises(ValueError):
        DecisionTree([A, B], [0, 1, 2])


def test_lookup_errors():
    tree = DecisionTree([A, B], list(range(6)))

    with pytest.raises(KeyError):
        tree({1: 0})
    with pytest.raises(ValueError):
        tree({1: 0, 2: 3})


def test_cross_product_of_disjoint_scopes():
    """
    A tree over A (2 states) merged with a tree over B (3 states) has one
    leaf per joint assignment: 6 distinct leaves.
    """
    ta = DecisionTree([A], [("a0",), ("a1",)])
    tb = DecisionTree([B], [("b0",), ("b1",), ("b2",)])

    merged = ta.apply2(tb, concat)

    assert merged.discrete_keys() == [A, B]
    assert merged.nr_leaves() == 6
    assert len(set(merged.leaves())) == 6
    assert merged({1: 1, 2: 2}) == ("a1", "b2")
    assert merged({1: 0, 2: 1}) == ("a0", "b1")


def test_merge_with_overlapping_scopes():
    """Shared variable A is tested once; each side is read at its own projection."""
    f = DecisionTree([A, B], [(i,) for i in range(6)])
    g = DecisionTree([C, A], [("c0a0",), ("c0a1",), ("c1a0",), ("c1a1",)])

    merged = f.apply2(g, concat)

    assert merged.discrete_keys() == [A, B, C]
    assert merged.nr_leaves() == 12
    for assignment, value in merged.items():
        a, b, c = assignment[1], assignment[2], assignment[3]
        assert value == (a * 3 + b, f"c{c}a{a}")


def test_merge_with_constant_is_identity_on_shape():
    ta = DecisionTree([A], [("a0",), ("a1",)])
    merged = DecisionTree.constant(()).apply2(ta, concat)

    assert merged.equals(ta)


def test_merge_is_associative():
    """
    For leaf values combined by tuple concatenation, the multiset of leaf
    entries at every joint assignment does not depend on grouping.
    """
    f1 = DecisionTree([A], [("f1a0",), ("f1a1",)])
    f2 = DecisionTree([B], [("f2b0",), ("f2b1",), ("f2b2",)])
    f3 = DecisionTree([A, C], [("f3a0c0",), ("f3a0c1",), ("f3a1c0",), ("f3a1c1",)])

    left = f1.apply2(f2, concat).apply2(f3, concat)
    right = f1.apply2(f2.apply2(f3, concat), concat)

    assert left.discrete_keys() == right.discrete_keys()
    for assignment in left.assignments():
        assert sorted(left(assignment)) == sorted(right(assignment))


def test_cardinality_conflict_is_rejected():
    t2 = DecisionTree([DiscreteKey(1, 2)], [0, 1])
    t3 = DecisionTree([DiscreteKey(1, 3)], [0, 1, 2])

    with pytest.raises(ScopeInconsistencyError):
        t2.apply2(t3, lambda x, y: x + y)
    with pytest.raises(ScopeInconsistencyError):
        merge_keys([DiscreteKey(1, 2)], [DiscreteKey(1, 3)])


def test_apply_keeps_shape():
    tree = DecisionTree([A, B], list(range(6)))
    scaled = tree.apply(lambda v: 10 * v)

    assert scaled.discrete_keys() == tree.discrete_keys()
    assert scaled.nr_leaves() == tree.nr_leaves()
    for assignment, value in tree.items():
        assert scaled(assignment) == 10 * value


def test_restrict_drops_fixed_variables():
    tree = DecisionTree([A, B], list(range(6)))
    sub = tree.restrict({1: 1})

    assert sub.discrete_keys() == [B]
    for b in range(3):
        assert sub({2: b}) == tree({1: 1, 2: b})


def test_restrict_rejects_out_of_range_state():
    tree = DecisionTree([A, B], list(range(6)))

    with pytest.raises(ValueError, match="out of range"):
        tree.restrict({2: 3})


def test_equals_with_tolerance():
    t = DecisionTree([A], [1.0, 2.0])

    assert t.equals(DecisionTree([A], [1.0, 2.0 + 1e-4]), tol=1e-3)
    assert not t.equals(DecisionTree([A], [1.0, 2.0 + 1e-4]), tol=1e-6)
    assert not t.equals(DecisionTree([B], [1.0, 2.0, 3.0]))
    assert not t.equals(DecisionTree.constant(1.0))


def test_from_function_matches_table():
    tree = DecisionTree.from_function([B, A], lambda asg: asg[2] * 2 + asg[1])

    assert tree.equals(DecisionTree([B, A], list(range(6))))
