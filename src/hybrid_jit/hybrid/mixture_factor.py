# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Mixture factors: continuous factors conditioned on a discrete assignment.

A mixture factor owns a :class:`DecisionTree` over its discrete keys whose
leaves are continuous factors, one component per joint assignment. All
components share the same continuous scope; only their coefficients (or
measurements) differ from branch to branch.

GaussianMixtureFactor
    Components are linear JacobianFactors. Already piecewise linear, so
    ``linearize`` returns the factor unchanged. These are the only
    mixtures the mixture sum accepts.

NonlinearMixtureFactor
    Components are nonlinear Factors. ``linearize(values)`` linearizes
    every component at the same point and returns a GaussianMixtureFactor
    with the same discrete keys and the same tree shape.

Mixtures are flat: a component is never itself a mixture.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from hybrid_jit.core.errors import ScopeInconsistencyError, UnsupportedFactorKindError
from hybrid_jit.core.types import Assignment, DiscreteKey, NodeId, ResidualFn, Values
from hybrid_jit.discrete.decision_tree import DecisionTree, merge_keys
from hybrid_jit.linear.jacobian_factor import JacobianFactor


def _check_components(
    name: str,
    continuous_keys: Tuple[NodeId, ...],
    discrete_keys: List[DiscreteKey],
    factors: DecisionTree,
) -> None:
    if not isinstance(factors, DecisionTree):
        raise UnsupportedFactorKindError(
            f"{name} needs a DecisionTree of components, got {type(factors).__name__}"
        )
    declared = {k.id for k in discrete_keys}
    for k in merge_keys(discrete_keys, factors.discrete_keys()):
        if k.id not in declared:
            raise ScopeInconsistencyError(
                f"{name} component tree tests undeclared discrete key {k.id!r}"
            )
    for component in factors.leaves():
        if getattr(component, "as_mixture", None) is not None:
            raise UnsupportedFactorKindError(f"{name} components cannot be mixtures")
        keys = tuple(component.continuous_keys())
        if keys != continuous_keys:
            raise ScopeInconsistencyError(
                f"{name} component over {list(keys)} does not match "
                f"continuous keys {list(continuous_keys)}"
            )


class GaussianMixtureFactor:
    """Decision tree of JacobianFactors over shared continuous keys."""

    def __init__(
        self,
        continuous_keys: Sequence[NodeId],
        discrete_keys: Sequence[DiscreteKey],
        factors: DecisionTree,
    ) -> None:
        self._continuous_keys = tuple(continuous_keys)
        self._discrete_keys = list(discrete_keys)
        _check_components("GaussianMixtureFactor", self._continuous_keys, self._discrete_keys, factors)
        for component in factors.leaves():
            if not isinstance(component, JacobianFactor):
                raise UnsupportedFactorKindError(
                    f"GaussianMixtureFactor components must be JacobianFactors, got {type(component).__name__}"
                )
        self.factors = factors

    @classmethod
    def from_factors(
        cls,
        continuous_keys: Sequence[NodeId],
        discrete_keys: Sequence[DiscreteKey],
        components: Sequence,
    ) -> "GaussianMixtureFactor":
        """Build from a row-major list of components over ``discrete_keys``."""
        return cls(continuous_keys, discrete_keys, DecisionTree(list(discrete_keys), components))

    def as_mixture(self) -> "GaussianMixtureFactor":
        return self

    def discrete_keys(self) -> List[DiscreteKey]:
        return list(self._discrete_keys)

    def continuous_keys(self) -> Tuple[NodeId, ...]:
        return self._continuous_keys

    def nr_components(self) -> int:
        return self.factors.nr_leaves()

    def linearize(self, values: Values, residual_fns: Optional[Dict[str, ResidualFn]] = None) -> "GaussianMixtureFactor":
        """Already linear: returns itself."""
        return self

    def error(self, values: Values, assignment: Assignment, residual_fns=None) -> float:
        return self.factors(assignment).error(values)

    def error_tree(self, values: Values) -> DecisionTree[float]:
        """Error of every component at ``values``, as a tree of floats."""
        return self.factors.apply(lambda f: f.error(values))

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianMixtureFactor):
            return False
        return (
            self._continuous_keys == other._continuous_keys
            and self._discrete_keys == other._discrete_keys
            and self.factors.equals(other.factors, tol)
        )

    def __repr__(self) -> str:
        return (
            f"GaussianMixtureFactor(continuous={list(self._continuous_keys)}, "
            f"discrete={[k.id for k in self._discrete_keys]}, components={self.nr_components()})"
        )


class NonlinearMixtureFactor:
    """Decision tree of nonlinear Factors over shared continuous keys."""

    def __init__(
        self,
        continuous_keys: Sequence[NodeId],
        discrete_keys: Sequence[DiscreteKey],
        factors: DecisionTree,
    ) -> None:
        self._continuous_keys = tuple(continuous_keys)
        self._discrete_keys = list(discrete_keys)
        _check_components("NonlinearMixtureFactor", self._continuous_keys, self._discrete_keys, factors)
        self.factors = factors

    @classmethod
    def from_factors(
        cls,
        continuous_keys: Sequence[NodeId],
        discrete_keys: Sequence[DiscreteKey],
        components: Sequence,
    ) -> "NonlinearMixtureFactor":
        return cls(continuous_keys, discrete_keys, DecisionTree(list(discrete_keys), components))

    def as_mixture(self) -> "NonlinearMixtureFactor":
        return self

    def discrete_keys(self) -> List[DiscreteKey]:
        return list(self._discrete_keys)

    def continuous_keys(self) -> Tuple[NodeId, ...]:
        return self._continuous_keys

    def nr_components(self) -> int:
        return self.factors.nr_leaves()

    def linearize(self, values: Values, residual_fns: Optional[Dict[str, ResidualFn]] = None) -> GaussianMixtureFactor:
        """
        Linearize every component at ``values``.

        The result keeps the discrete keys and the tree shape; only the
        leaves change.
        """
        fns = residual_fns or {}
        linear = self.factors.apply(lambda f: f.linearize(values, fns.get(getattr(f, "type", None))))
        return GaussianMixtureFactor(self._continuous_keys, self._discrete_keys, linear)

    def error(self, values: Values, assignment: Assignment, residual_fns: Optional[Dict[str, ResidualFn]] = None) -> float:
        component = self.factors(assignment)
        return component.error(values, (residual_fns or {}).get(component.type))

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, NonlinearMixtureFactor):
            return False
        return (
            self._continuous_keys == other._continuous_keys
            and self._discrete_keys == other._discrete_keys
            and self.factors.equals(other.factors, tol)
        )

    def __repr__(self) -> str:
        return (
            f"NonlinearMixtureFactor(continuous={list(self._continuous_keys)}, "
            f"discrete={[k.id for k in self._discrete_keys]}, components={self.nr_components()})"
        )


def is_gaussian_mixture(factor) -> bool:
    """True when ``factor`` carries a decision tree of linear components."""
    tree = getattr(factor, "factors", None)
    if not isinstance(tree, DecisionTree):
        return False
    return all(isinstance(leaf, JacobianFactor) for leaf in tree.leaves())
