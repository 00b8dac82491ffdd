# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Nonlinear (continuous) factor graph for Hybrid-JIT.

This module implements the continuous sub-collection of a hybrid factor
graph: an ordered list of continuous factors plus a registry of residual
functions keyed by factor type. It can produce a fused, JIT-compiled
residual over a packed state and, most importantly for the hybrid layer,
a linearized copy of itself.

The NonlinearFactorGraph stores:
    - Factors (constraints between continuous variables), in insertion order
    - Registered residual functions (by factor type)

Key Features
------------
• Linearization by autodiff
    ``linearize(values)`` turns every factor into a JacobianFactor using
    ``jax.jacfwd`` on its residual. Factors that are already linear pass
    through unchanged.

• JIT-compiled residual graph
    ``build_residual_function(values)`` fuses all residuals into a single
    ``r(x) : ℝ^N → ℝ^M`` over the packed state, suitable for external
    Gauss–Newton style solvers.

Primary Methods
---------------
pack_values(values)
    Concatenates the blocks of every variable used by the graph into a
    single flat JAX array.

unpack_values(x, index)
    Splits a flat state vector back into per-variable blocks.

linearize(values)
    Returns a GaussianFactorGraph evaluated at ``values``.

Notes
-----
Residual lookup for a factor prefers the function registered on the
graph for its type, then the function bound on the factor itself.
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Tuple

import jax
import jax.numpy as jnp

from hybrid_jit.core.types import NodeId, ResidualFn, Values

logger = logging.getLogger(__name__)


def factor_equal(a, b, tol: float) -> bool:
    """Compare two factors with their own ``equals`` when they have one."""
    if a is b:
        return True
    eq = getattr(a, "equals", None)
    if callable(eq):
        return bool(eq(b, tol))
    return a == b


class NonlinearFactorGraph:
    """
    Ordered continuous factors plus a residual registry.

    - factors: continuous factors in insertion order
    - residual_fns: mapping factor.type -> callable that computes residuals
    """

    def __init__(self, factors: Iterable = (), residual_fns: Dict[str, ResidualFn] = None) -> None:
        self._factors: List = list(factors)
        self.residual_fns: Dict[str, ResidualFn] = dict(residual_fns or {})

    def push_back(self, factor) -> None:
        self._factors.append(factor)

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        self.residual_fns[factor_type] = fn

    def __len__(self) -> int:
        return len(self._factors)

    def __iter__(self) -> Iterator:
        return iter(self._factors)

    def __getitem__(self, i: int):
        return self._factors[i]

    def clear(self) -> None:
        self._factors = []

    def keys(self) -> Tuple[NodeId, ...]:
        """Continuous variables in order of first appearance."""
        seen: Dict[NodeId, None] = {}
        for f in self._factors:
            for k in f.continuous_keys():
                seen.setdefault(k, None)
        return tuple(seen)

    def _residual_for(self, factor):
        return self.residual_fns.get(getattr(factor, "type", None))

    # --- State packing/unpacking ---

    def _build_state_index(self, values: Values) -> Dict[NodeId, Tuple[int, int]]:
        """
        Returns a mapping: NodeId -> (start_index, dim)
        over the variables the graph touches, in first-appearance order.
        """
        index: Dict[NodeId, Tuple[int, int]] = {}
        offset = 0
        for nid in self.keys():
            dim = int(jnp.atleast_1d(jnp.asarray(values[nid])).shape[0])
            index[nid] = (offset, dim)
            offset += dim
        return index

    def pack_values(self, values: Values) -> Tuple[jnp.ndarray, Dict[NodeId, Tuple[int, int]]]:
        index = self._build_state_index(values)
        chunks = [jnp.atleast_1d(jnp.asarray(values[nid], dtype=float)) for nid in index]
        if not chunks:
            return jnp.zeros((0,)), index
        return jnp.concatenate(chunks), index

    def unpack_values(self, x: jnp.ndarray, index: Dict[NodeId, Tuple[int, int]]) -> Dict[NodeId, jnp.ndarray]:
        result: Dict[NodeId, jnp.ndarray] = {}
        for node_id, (start, dim) in index.items():
            result[node_id] = x[start:start+dim]
        return result

    # --- Objective ---

    def build_residual_function(self, values: Values) -> Tuple[Callable, jnp.ndarray, Dict[NodeId, Tuple[int, int]]]:
        """
        Returns (r, x0, index) where r is a JIT-compiled function
        r(x) -> stacked residual vector over the packed state x.
        """
        x0, index = self.pack_values(values)
        factors = tuple(self._factors)
        fns = tuple(self._residual_for(f) for f in factors)

        def residual(x: jnp.ndarray) -> jnp.ndarray:
            var_values = self.unpack_values(x, index)
            res_list = [f.residual(var_values, fn) for f, fn in zip(factors, fns)]
            if not res_list:
                return jnp.zeros((0,), dtype=x.dtype)
            return jnp.concatenate(res_list)

        return jax.jit(residual), x0, index

    def error(self, values: Values) -> float:
        total = 0.0
        for f in self._factors:
            fn = self._residual_for(f)
            total += f.error(values, fn) if fn is not None else f.error(values)
        return total

    def linearize(self, values: Values):
        """Linearize every factor at ``values``; returns a GaussianFactorGraph."""
        from hybrid_jit.linear.gaussian_factor_graph import GaussianFactorGraph

        linear = GaussianFactorGraph()
        for f in self._factors:
            linear.push_back(f.linearize(values, self._residual_for(f)))
        logger.debug("Linearized %d continuous factors", len(linear))
        return linear

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, NonlinearFactorGraph) or len(self) != len(other):
            return False
        return all(factor_equal(a, b, tol) for a, b in zip(self, other))

    def __repr__(self) -> str:
        return f"NonlinearFactorGraph(size={len(self)})"
