# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Hybrid factor graph: discrete, continuous and mixture factors in one place.

This module implements the container that downstream hybrid elimination
consumes. It does not eliminate anything itself; it classifies incoming
factors, linearizes the continuous ones, and pre-combines the mixtures.

The HybridFactorGraph stores:
    - a continuous sub-collection (NonlinearFactorGraph, or a
      GaussianFactorGraph once linearized)
    - a discrete sub-collection (DiscreteFactorGraph)
    - a mixture sub-collection (MixtureFactorGraph)
    - a flat list of every factor in insertion order, each listed once

Key Features
------------
• Capability routing
    ``add(factor)`` asks the factor for its discrete, continuous and
    mixture views (see ``hybrid.capabilities``) and files it into every
    sub-collection that matches. A factor with no capability raises
    CapabilityMismatchError, or is logged and dropped when the config
    says ``on_unknown_factor="ignore"``.

• Linearization
    ``linearize(values)`` is pure. Continuous factors become
    JacobianFactors, nonlinear mixtures become Gaussian mixtures with the
    same discrete keys and tree shape, discrete factors are shared as is.

• Mixture sum
    ``sum()`` folds every Gaussian mixture into a single
    ``DecisionTree[GaussianFactorGraph]`` by cross-product merges, with
    "append to graph" as the leaf operator. Each leaf is the linear graph
    that applies under one discrete assignment.

Primary Methods
---------------
add(factor) / add_all(factors)
push_discrete / push_continuous / push_mixture
discrete_keys()
linearize(values)
sum(include_continuous=False)
equals(other, tol) / clear()
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from hybrid_jit.core.errors import CapabilityMismatchError, UnsupportedFactorKindError
from hybrid_jit.core.factor_graph import NonlinearFactorGraph
from hybrid_jit.core.types import Assignment, DiscreteKey, ResidualFn, Values
from hybrid_jit.discrete.decision_tree import DecisionTree, merge_keys
from hybrid_jit.discrete.discrete_factor import DecisionTreeFactor, DiscreteFactorGraph
from hybrid_jit.hybrid.capabilities import as_continuous, as_discrete, as_mixture
from hybrid_jit.hybrid.config import IGNORE, HybridConfig
from hybrid_jit.hybrid.mixture_factor import is_gaussian_mixture
from hybrid_jit.hybrid.mixture_factor_graph import MixtureFactorGraph
from hybrid_jit.linear.gaussian_factor_graph import GaussianFactorGraph
from hybrid_jit.linear.jacobian_factor import JacobianFactor

logger = logging.getLogger(__name__)

# Leaf type of the mixture sum.
Sum = DecisionTree[GaussianFactorGraph]


def _empty_like(graph):
    if isinstance(graph, NonlinearFactorGraph):
        return NonlinearFactorGraph(residual_fns=graph.residual_fns)
    return type(graph)()


def _copy(graph):
    out = _empty_like(graph)
    for f in graph:
        out.push_back(f)
    return out


def _replacements(old_graph, new_graph) -> Dict[int, List]:
    """Map id of each factor in ``old_graph`` to its linearized forms, in order."""
    out: Dict[int, List] = {}
    for old, new in zip(old_graph, new_graph):
        out.setdefault(id(old), []).append(new)
    return out


class HybridFactorGraph:
    """
    Container of discrete, continuous and mixture factors.

    :param continuous: Pre-built continuous sub-collection (copied).
    :param discrete: Pre-built discrete sub-collection (copied).
    :param mixtures: Pre-built mixture sub-collection (copied).
    :param config: Routing and comparison settings.
    """

    def __init__(
        self,
        continuous=None,
        discrete: Optional[DiscreteFactorGraph] = None,
        mixtures: Optional[MixtureFactorGraph] = None,
        config: Optional[HybridConfig] = None,
    ) -> None:
        self.config = config if config is not None else HybridConfig()
        self._continuous = _copy(continuous) if continuous is not None else NonlinearFactorGraph()
        self._discrete = _copy(discrete) if discrete is not None else DiscreteFactorGraph()
        self._mixtures = _copy(mixtures) if mixtures is not None else MixtureFactorGraph()

        # A factor held by several collections is listed once, the same as
        # add() would list it. A factor held twice by one collection was
        # added twice and is listed twice.
        self._factors: List = []
        listed: Dict[int, int] = {}
        for graph in (self._continuous, self._discrete, self._mixtures):
            held: Dict[int, int] = {}
            for f in graph:
                held[id(f)] = held.get(id(f), 0) + 1
                if held[id(f)] > listed.get(id(f), 0):
                    listed[id(f)] = held[id(f)]
                    self._factors.append(f)

    # --- routing ---

    def add(self, factor) -> None:
        """File ``factor`` into every sub-collection whose capability it satisfies."""
        discrete = as_discrete(factor)
        continuous = as_continuous(factor)
        mixture = as_mixture(factor)

        if discrete is None and continuous is None and mixture is None:
            if self.config.on_unknown_factor == IGNORE:
                logger.warning("Ignoring factor %r: no discrete, continuous or mixture capability", factor)
                return
            raise CapabilityMismatchError(
                f"Factor {factor!r} has no discrete, continuous or mixture capability"
            )

        if discrete is not None:
            self._discrete.push_back(discrete)
        if continuous is not None:
            self._continuous.push_back(continuous)
        if mixture is not None:
            self._mixtures.push_back(mixture)
        self._factors.append(factor)
        logger.debug(
            "Added %r (discrete=%s, continuous=%s, mixture=%s)",
            factor, discrete is not None, continuous is not None, mixture is not None,
        )

    def add_all(self, factors: Iterable) -> None:
        for f in factors:
            self.add(f)

    def push_discrete(self, factor) -> None:
        view = as_discrete(factor)
        if view is None:
            raise CapabilityMismatchError(f"Factor {factor!r} is not a discrete factor")
        self._discrete.push_back(view)
        self._factors.append(factor)

    def push_continuous(self, factor) -> None:
        view = as_continuous(factor)
        if view is None:
            raise CapabilityMismatchError(f"Factor {factor!r} is not a continuous factor")
        self._continuous.push_back(view)
        self._factors.append(factor)

    def push_mixture(self, factor) -> None:
        view = as_mixture(factor)
        if view is None:
            raise CapabilityMismatchError(f"Factor {factor!r} is not a mixture factor")
        self._mixtures.push_back(view)
        self._factors.append(factor)

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        register = getattr(self._continuous, "register_residual", None)
        if register is None:
            raise TypeError("Residual functions can only be registered on a nonlinear hybrid graph")
        register(factor_type, fn)

    # --- views ---

    @property
    def continuous_graph(self):
        return self._continuous

    @property
    def discrete_graph(self) -> DiscreteFactorGraph:
        return self._discrete

    @property
    def mixture_graph(self) -> MixtureFactorGraph:
        return self._mixtures

    def continuous_factors(self) -> Tuple:
        return tuple(self._continuous)

    def discrete_factors(self) -> Tuple:
        return tuple(self._discrete)

    def mixture_factors(self) -> Tuple:
        return tuple(self._mixtures)

    def size(self) -> int:
        return len(self._factors)

    __len__ = size

    def empty(self) -> bool:
        return not self._factors

    def __iter__(self) -> Iterator:
        return iter(self._factors)

    def __getitem__(self, i: int):
        return self._factors[i]

    def nr_continuous_factors(self) -> int:
        return len(self._continuous)

    def nr_discrete_factors(self) -> int:
        return len(self._discrete)

    def nr_mixture_factors(self) -> int:
        return len(self._mixtures)

    def discrete_keys(self) -> List[DiscreteKey]:
        """
        Discrete keys of the discrete factors, then any new keys from the
        mixtures, each key once.
        """
        return merge_keys(self._discrete.discrete_keys(), self._mixtures.discrete_keys())

    # --- comparison / lifecycle ---

    def equals(self, other: object, tol: Optional[float] = None) -> bool:
        if not isinstance(other, HybridFactorGraph):
            return False
        tol = self.config.equality_tol if tol is None else tol
        return (
            len(self) == len(other)
            and self._continuous.equals(other._continuous, tol)
            and self._discrete.equals(other._discrete, tol)
            and self._mixtures.equals(other._mixtures, tol)
        )

    def clear(self) -> None:
        """Drop every factor; factors held elsewhere stay valid."""
        self._continuous = _empty_like(self._continuous)
        self._discrete = DiscreteFactorGraph()
        self._mixtures = MixtureFactorGraph()
        self._factors = []

    # --- linearization ---

    def linearize(self, values: Values) -> "HybridFactorGraph":
        """
        Linearized copy of the graph at ``values``; ``self`` is untouched.

        Continuous factors become JacobianFactors, mixtures are linearized
        component by component, discrete factors are shared.

        A factor filed into several collections is replaced in the flat
        list (and in the discrete collection) only when it has a single
        linearized form that still answers ``as_discrete`` where the
        original did. Otherwise the flat list and the discrete collection
        keep the original, and only the continuous or mixture collection
        holds the linearized form.
        """
        residual_fns = getattr(self._continuous, "residual_fns", None)
        continuous = self._continuous.linearize(values)
        mixtures = self._mixtures.linearize(values, residual_fns)

        linearized = (_replacements(self._continuous, continuous), _replacements(self._mixtures, mixtures))
        discrete_ids = {id(d) for d in self._discrete}
        discrete_views: Dict[int, object] = {}
        seen: Dict[int, int] = {}
        factors: List = []
        for f in self._factors:
            n = seen.get(id(f), 0)
            seen[id(f)] = n + 1
            forms = [r[id(f)][n] for r in linearized if len(r.get(id(f), ())) > n]
            new = forms[0] if len(forms) == 1 else f
            if new is not f and id(f) in discrete_ids:
                view = as_discrete(new)
                if view is None:
                    new = f
                else:
                    discrete_views[id(f)] = view
            factors.append(new)

        result = HybridFactorGraph(config=self.config)
        result._continuous = continuous
        result._discrete = DiscreteFactorGraph([discrete_views.get(id(d), d) for d in self._discrete])
        result._mixtures = mixtures
        result._factors = factors

        logger.debug(
            "Linearized hybrid graph: %d continuous, %d mixture, %d discrete factors",
            len(continuous), len(mixtures), len(self._discrete),
        )
        return result

    # --- mixture sum ---

    def sum(self, include_continuous: bool = False) -> Sum:
        """
        Fold all Gaussian mixtures into one decision tree of linear graphs.

        Every mixture must carry a decision tree of JacobianFactors, which
        is checked before anything is merged. With ``include_continuous``
        every continuous factor (which must be linear) is also placed in
        every leaf, ahead of the mixture components.

        :raises UnsupportedFactorKindError: if a mixture has no linear
            decision tree, or a continuous factor is not linear.
        """
        for f in self._mixtures:
            if not is_gaussian_mixture(f):
                raise UnsupportedFactorKindError(
                    f"HybridFactorGraph.sum can only handle Gaussian mixtures, got {f!r}"
                )
        base = GaussianFactorGraph()
        if include_continuous:
            for f in self._continuous:
                if not isinstance(f, JacobianFactor):
                    raise UnsupportedFactorKindError(
                        f"HybridFactorGraph.sum needs linear continuous factors, got {f!r}; linearize first"
                    )
                base.push_back(f)

        result: Sum = DecisionTree.constant(base)
        for mixture in self._mixtures:
            result = result.apply2(mixture.factors, lambda graph, factor: graph.appended(factor))
        logger.debug("Summed %d mixtures into %r", len(self._mixtures), result)
        return result

    # --- evaluation ---

    def error(self, values: Values, assignment: Assignment) -> float:
        """
        Total error at a continuous point and a discrete assignment:
        continuous errors, plus the selected mixture components, plus the
        negative log of every discrete factor.
        """
        residual_fns = getattr(self._continuous, "residual_fns", None)
        total = self._continuous.error(values)
        for m in self._mixtures:
            total += m.error(values, assignment, residual_fns)
        for d in self._discrete:
            if isinstance(d, DecisionTreeFactor):
                total += d.error(assignment)
                continue
            p = as_discrete(d).evaluate(assignment)
            total += math.inf if p <= 0.0 else -math.log(p)
        return total

    def __repr__(self) -> str:
        return (
            f"HybridFactorGraph(size={len(self)}, continuous={len(self._continuous)}, "
            f"discrete={len(self._discrete)}, mixtures={len(self._mixtures)})"
        )
