# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""Ordered sub-collection of mixture factors."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from hybrid_jit.core.factor_graph import factor_equal
from hybrid_jit.core.types import DiscreteKey, ResidualFn, Values
from hybrid_jit.discrete.decision_tree import merge_keys

logger = logging.getLogger(__name__)


class MixtureFactorGraph:

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
        return merge_keys(*(f.discrete_keys() for f in self._factors))

    def linearize(self, values: Values, residual_fns: Optional[Dict[str, ResidualFn]] = None) -> "MixtureFactorGraph":
        """
        New collection with every mixture linearized at ``values``.

        Mixtures without a ``linearize`` method are passed through as they
        are; they are left for the mixture sum to reject.
        """
        out = MixtureFactorGraph()
        for f in self._factors:
            linearize = getattr(f, "linearize", None)
            out.push_back(linearize(values, residual_fns) if callable(linearize) else f)
        logger.debug("Linearized %d mixture factors", len(out))
        return out

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, MixtureFactorGraph) or len(self) != len(other):
            return False
        return all(factor_equal(a, b, tol) for a, b in zip(self, other))

    def __repr__(self) -> str:
        return f"MixtureFactorGraph(size={len(self)})"
