# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Ordered collection of linear Gaussian factors.

GaussianFactorGraph has value semantics: :meth:`appended` returns a new
graph and leaves the receiver untouched. That makes it a safe leaf type
for decision trees, whose subtrees (and so leaves) may be shared between
several trees at once.
"""

from __future__ import annotations

from typing import Iterable, Iterator, List, Tuple

from hybrid_jit.core.factor_graph import factor_equal
from hybrid_jit.core.types import NodeId, Values


class GaussianFactorGraph:

    def __init__(self, factors: Iterable = ()) -> None:
        self._factors: List = list(factors)

    def push_back(self, factor) -> None:
        self._factors.append(factor)

    def appended(self, factor) -> "GaussianFactorGraph":
        """New graph with ``factor`` added at the end."""
        return GaussianFactorGraph(self._factors + [factor])

    def __len__(self) -> int:
        return len(self._factors)

    def __iter__(self) -> Iterator:
        return iter(self._factors)

    def __getitem__(self, i: int):
        return self._factors[i]

    def clear(self) -> None:
        self._factors = []

    def keys(self) -> Tuple[NodeId, ...]:
        seen = {}
        for f in self._factors:
            for k in f.continuous_keys():
                seen.setdefault(k, None)
        return tuple(seen)

    def error(self, values: Values) -> float:
        return sum(f.error(values) for f in self._factors)

    def linearize(self, values: Values) -> "GaussianFactorGraph":
        return GaussianFactorGraph(self._factors)

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianFactorGraph) or len(self) != len(other):
            return False
        return all(factor_equal(a, b, tol) for a, b in zip(self, other))

    def __repr__(self) -> str:
        return f"GaussianFactorGraph(size={len(self)})"
