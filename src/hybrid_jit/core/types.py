# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Core typed data structures for Hybrid-JIT.

This module defines the lightweight value types shared by every layer of
the hybrid factor graph: identifiers for continuous and discrete unknowns,
the evaluation point used for linearization, and the nonlinear factor that
fills the continuous sub-collection.

Classes
-------
DiscreteKey
    A finite-domain unknown. A key carries:
    - id: Identifier (int or str) ordering the key in every decision tree
    - cardinality: Number of states the variable can take

Factor
    A nonlinear constraint between one or more continuous variables:
    - type: String key selecting a residual function
    - var_ids: Ordered tuple of variable ids used by the residual
    - params: Dictionary of parameters passed into the residual function
    - residual_fn: Optional residual bound directly to the factor

Notes
-----
Factors are treated as immutable once they enter a hybrid factor graph.
Linearization never mutates a factor; it produces a new
:class:`~hybrid_jit.linear.jacobian_factor.JacobianFactor` evaluated at
the requested point.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Mapping, NewType, Optional, Tuple

import jax
import jax.numpy as jnp

NodeId = NewType("NodeId", int)

# Evaluation point: one 1-D block per continuous variable.
Values = Mapping[NodeId, jnp.ndarray]

# Discrete assignment: discrete id -> state index.
Assignment = Mapping[Hashable, int]

ResidualFn = Callable[[jnp.ndarray, Dict[str, Any]], jnp.ndarray]


@dataclass(frozen=True)
class DiscreteKey:
    """Discrete variable: identifier plus number of states."""
    id: Hashable
    cardinality: int

    def __post_init__(self) -> None:
        if int(self.cardinality) < 1:
            raise ValueError(
                f"Discrete key {self.id!r} needs a positive cardinality, got {self.cardinality}"
            )


@dataclass(frozen=True)
class Factor:
    """Nonlinear factor connecting continuous variables."""
    type: str          # e.g. "prior", "odom", "range"
    var_ids: Tuple[NodeId, ...]
    params: Dict[str, Any] = field(default_factory=dict, compare=False)
    residual_fn: Optional[ResidualFn] = field(default=None, compare=False)

    def as_continuous(self) -> "Factor":
        return self

    def continuous_keys(self) -> Tuple[NodeId, ...]:
        return tuple(self.var_ids)

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, Factor):
            return False
        if self.type != other.type or tuple(self.var_ids) != tuple(other.var_ids):
            return False
        if self.params.keys() != other.params.keys():
            return False
        for k, v in self.params.items():
            a = jnp.asarray(v)
            b = jnp.asarray(other.params[k])
            if a.shape != b.shape or not bool(jnp.all(jnp.abs(a - b) <= tol)):
                return False
        return True

    def _resolve(self, residual_fn: Optional[ResidualFn]) -> ResidualFn:
        fn = residual_fn if residual_fn is not None else self.residual_fn
        if fn is None:
            raise ValueError(f"No residual fn registered for factor type '{self.type}'")
        return fn

    def _stack(self, values: Values) -> Tuple[jnp.ndarray, Tuple[int, ...]]:
        blocks = [jnp.atleast_1d(jnp.asarray(values[nid], dtype=float)) for nid in self.var_ids]
        dims = tuple(int(b.shape[0]) for b in blocks)
        return jnp.concatenate(blocks), dims

    def residual(self, values: Values, residual_fn: Optional[ResidualFn] = None) -> jnp.ndarray:
        """Stacked residual r(x; params) at ``values``."""
        fn = self._resolve(residual_fn)
        stacked, _ = self._stack(values)
        return jnp.reshape(fn(stacked, self.params), (-1,))

    def error(self, values: Values, residual_fn: Optional[ResidualFn] = None) -> float:
        r = self.residual(values, residual_fn)
        return 0.5 * float(jnp.sum(r ** 2))

    def linearize(self, values: Values, residual_fn: Optional[ResidualFn] = None):
        """
        First-order expansion of the residual at ``values``.

        With J = dr/dx evaluated at x0 the returned factor encodes

            0.5 * || J dx - (-r(x0)) ||^2

        one Jacobian block per variable, in ``var_ids`` order.
        """
        from hybrid_jit.linear.jacobian_factor import JacobianFactor

        fn = self._resolve(residual_fn)
        stacked, dims = self._stack(values)
        params = self.params

        def r(x: jnp.ndarray) -> jnp.ndarray:
            return jnp.reshape(fn(x, params), (-1,))

        r0 = r(stacked)
        J = jax.jacfwd(r)(stacked)  # (m, n)

        blocks = []
        offset = 0
        for dim in dims:
            blocks.append(J[:, offset:offset + dim])
            offset += dim
        return JacobianFactor(keys=self.continuous_keys(), blocks=tuple(blocks), b=-r0)
