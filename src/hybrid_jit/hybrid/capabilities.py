# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Capability queries used to route factors into a hybrid factor graph.

A factor advertises what it can do by implementing any of

    as_discrete()    -> view with discrete_keys() / evaluate(assignment)
    as_continuous()  -> view with continuous_keys() / linearize(values)
    as_mixture()     -> view with discrete_keys() / continuous_keys() / factors

Each returns a view (usually the factor itself) or None. Nothing here
looks at class hierarchies, so one factor may satisfy several capabilities
at once and is then filed into several sub-collections.

The Protocol classes only describe the views for readers and type
checkers; routing never calls ``isinstance`` on them.
"""

from __future__ import annotations

from typing import Any, FrozenSet, List, Optional, Protocol, Sequence

from hybrid_jit.core.types import Assignment, DiscreteKey, NodeId, Values

DISCRETE = "discrete"
CONTINUOUS = "continuous"
MIXTURE = "mixture"


class DiscreteCapable(Protocol):
    def discrete_keys(self) -> List[DiscreteKey]: ...
    def evaluate(self, assignment: Assignment) -> float: ...


class ContinuousCapable(Protocol):
    def continuous_keys(self) -> Sequence[NodeId]: ...
    def linearize(self, values: Values, residual_fn=None) -> Any: ...


class MixtureCapable(Protocol):
    # ``factors`` is the decision tree of components.
    factors: Any

    def discrete_keys(self) -> List[DiscreteKey]: ...
    def continuous_keys(self) -> Sequence[NodeId]: ...


def _query(factor: Any, name: str) -> Optional[Any]:
    method = getattr(factor, name, None)
    if method is None or not callable(method):
        return None
    return method()


def as_discrete(factor: Any) -> Optional[DiscreteCapable]:
    return _query(factor, "as_discrete")


def as_continuous(factor: Any) -> Optional[ContinuousCapable]:
    return _query(factor, "as_continuous")


def as_mixture(factor: Any) -> Optional[MixtureCapable]:
    return _query(factor, "as_mixture")


def capabilities(factor: Any) -> FrozenSet[str]:
    """Set of capability names ``factor`` satisfies."""
    found = set()
    if as_discrete(factor) is not None:
        found.add(DISCRETE)
    if as_continuous(factor) is not None:
        found.add(CONTINUOUS)
    if as_mixture(factor) is not None:
        found.add(MIXTURE)
    return frozenset(found)
