# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Linear Gaussian factor in Jacobian (whitened least-squares) form.

A JacobianFactor over continuous variables x_1..x_k encodes

    error(x) = 0.5 * || A_1 x_1 + ... + A_k x_k - b ||^2

It is what a nonlinear :class:`~hybrid_jit.core.types.Factor` becomes after
linearization, and what the leaves of a Gaussian mixture hold. Sparse
factorization is left to downstream elimination; this class only stores
the blocks and evaluates the error.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

import jax.numpy as jnp

from hybrid_jit.core.types import NodeId, Values


@dataclass(frozen=True, eq=False)
class JacobianFactor:
    keys: Tuple[NodeId, ...]
    blocks: Tuple[jnp.ndarray, ...]   # A_j, shape (m, dim_j)
    b: jnp.ndarray                    # (m,)

    def __post_init__(self) -> None:
        if len(self.keys) != len(self.blocks):
            raise ValueError(
                f"JacobianFactor has {len(self.keys)} keys but {len(self.blocks)} blocks"
            )
        b = jnp.reshape(jnp.asarray(self.b), (-1,))
        blocks = tuple(jnp.atleast_2d(jnp.asarray(A)) for A in self.blocks)
        for A in blocks:
            if A.shape[0] != b.shape[0]:
                raise ValueError(f"Block with {A.shape[0]} rows does not match b with {b.shape[0]}")
        object.__setattr__(self, "keys", tuple(self.keys))
        object.__setattr__(self, "blocks", blocks)
        object.__setattr__(self, "b", b)

    def as_continuous(self) -> "JacobianFactor":
        return self

    def continuous_keys(self) -> Tuple[NodeId, ...]:
        return self.keys

    def rows(self) -> int:
        return int(self.b.shape[0])

    def linearize(self, values: Values, residual_fn=None) -> "JacobianFactor":
        """Already linear: returns itself."""
        return self

    def whitened_error(self, values: Values) -> jnp.ndarray:
        e = -self.b
        for nid, A in zip(self.keys, self.blocks):
            e = e + A @ jnp.atleast_1d(jnp.asarray(values[nid]))
        return e

    def residual(self, values: Values, residual_fn=None) -> jnp.ndarray:
        return self.whitened_error(values)

    def error(self, values: Values) -> float:
        e = self.whitened_error(values)
        return 0.5 * float(jnp.sum(e ** 2))

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, JacobianFactor):
            return False
        if self.keys != other.keys or self.b.shape != other.b.shape:
            return False
        if not bool(jnp.all(jnp.abs(self.b - other.b) <= tol)):
            return False
        for A, B in zip(self.blocks, other.blocks):
            if A.shape != B.shape or not bool(jnp.all(jnp.abs(A - B) <= tol)):
                return False
        return True

    def __repr__(self) -> str:
        return f"JacobianFactor(keys={list(self.keys)}, rows={self.rows()})"
