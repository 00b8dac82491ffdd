# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Discrete factors and the discrete sub-collection.

DecisionTreeFactor
    A non-negative potential over a set of discrete keys, stored as a
    ``DecisionTree[float]``. Products of factors over different scopes go
    through :meth:`DecisionTree.apply2`, so they pick up the same
    cross-product semantics as the mixture sum.

DiscreteFactorGraph
    Ordered collection of discrete factors. It only organizes factors; the
    elimination of discrete variables belongs to downstream code.
"""

from __future__ import annotations

import math
from typing import Iterable, Iterator, List, Optional, Sequence

from hybrid_jit.core.factor_graph import factor_equal
from hybrid_jit.core.types import Assignment, DiscreteKey
from hybrid_jit.discrete.decision_tree import DecisionTree, merge_keys


class DecisionTreeFactor:
    """Potential over discrete keys, one value per joint assignment."""

    def __init__(self, keys: Sequence[DiscreteKey], values, tree: Optional[DecisionTree[float]] = None) -> None:
        self._keys = list(keys)
        if tree is None:
            tree = DecisionTree(self._keys, [float(v) for v in values])
        self.tree = tree

    @classmethod
    def from_tree(cls, tree: DecisionTree[float]) -> "DecisionTreeFactor":
        return cls(tree.discrete_keys(), None, tree=tree)

    def as_discrete(self) -> "DecisionTreeFactor":
        return self

    def discrete_keys(self) -> List[DiscreteKey]:
        return list(self._keys)

    def evaluate(self, assignment: Assignment) -> float:
        return float(self.tree(assignment))

    __call__ = evaluate

    def error(self, assignment: Assignment) -> float:
        """Negative log of the potential at ``assignment``."""
        value = self.evaluate(assignment)
        return math.inf if value <= 0.0 else -math.log(value)

    def __mul__(self, other: "DecisionTreeFactor") -> "DecisionTreeFactor":
        tree = self.tree.apply2(other.tree, lambda a, b: a * b)
        return DecisionTreeFactor(merge_keys(self._keys, other._keys), None, tree=tree)

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, DecisionTreeFactor):
            return False
        return self._keys == other._keys and self.tree.equals(other.tree, tol)

    def __repr__(self) -> str:
        return f"DecisionTreeFactor({[k.id for k in self._keys]})"


class DiscreteFactorGraph:
    """Ordered list of discrete factors."""

    def __init__(self, factors: Iterable = ()) -> None:
        self._factors: List = list(factors)

    def push_back(self, factor) -> None:
        self._factors.append(factor)

    def __len__(self) -> int:
        return len(self._factors)

    def __iter__(self) -> Iterator:
        return iter(self._factors)

    def __getitem__(self, i: int):
        return self._factors[i]

    def clear(self) -> None:
        self._factors = []

    def discrete_keys(self) -> List[DiscreteKey]:
        """Union of the factors' keys, first appearance wins the position."""
        return merge_keys(*(f.discrete_keys() for f in self._factors))

    def product(self) -> DecisionTreeFactor:
        """Product of every factor; the empty product is the constant 1."""
        result = DecisionTreeFactor([], [1.0])
        for f in self._factors:
            if not isinstance(f, DecisionTreeFactor):
                f = DecisionTreeFactor.from_tree(
                    DecisionTree.from_function(f.discrete_keys(), f.evaluate)
                )
            result = result * f
        return result

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, DiscreteFactorGraph) or len(self) != len(other):
            return False
        return all(factor_equal(a, b, tol) for a, b in zip(self, other))

