# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Residual models (measurement factors) for Hybrid-JIT.

Each function here implements a residual

    r(x; params) ∈ ℝᵏ

compatible with JAX differentiation and JIT compilation, where ``x`` is
the concatenation of the factor's variable blocks in ``var_ids`` order.
Factor types are mapped to these functions either by binding them on the
factor (``Factor(..., residual_fn=prior_residual)``) or through
``register_residual`` on a factor graph.

1. Priors and Euclidean motion
------------------------------
    • `prior_residual`:     r = x − target
    • `odom_residual`:      r = (x_j − x_i) − measurement

2. Nonlinear ranging
--------------------
    • `range_residual`:     r = ||x_j − x_i|| − range

   Used for data-association style mixtures: each discrete hypothesis
   binds a different landmark or a different measured range.

3. Weighting
------------
Residuals accept an optional ``weight`` entry, applied by `_apply_weight`:
a scalar is treated as information (√w scaling), a vector as per-component
square-root information. `sigma_to_weight` converts standard deviations.
"""

from __future__ import annotations
from typing import Dict

import jax.numpy as jnp


def _apply_weight(residual: jnp.ndarray, params: dict, key: str = "weight") -> jnp.ndarray:
    """
    Optional weighting of residuals.

    If params[key] is:
      - missing: no change
      - scalar:  r' = sqrt(w) * r          (scalar weight)
      - vector:  r' = w * r                (per-component sqrt-info)
    """
    w = params.get(key, None)
    if w is None:
        return residual

    w = jnp.asarray(w)

    if w.ndim == 0:
        return jnp.sqrt(w) * residual
    else:
        return w * residual


def sigma_to_weight(sigma):
    """
    Convert standard deviation sigma (or vector of sigmas) to a weight usable
    by _apply_weight.

    For scalar sigma:
        w = 1 / sigma^2

    For vector sigma (per-component std devs):
        w[i] = 1 / sigma[i]^2
    """
    s = jnp.asarray(sigma)
    return 1.0 / (s * s)


def prior_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Simple prior on a single variable:
        residual = x - target
    Works for any vector dimension.
    """
    target = params["target"]
    r = x - target
    return _apply_weight(r, params)


def odom_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Euclidean odometry between two equally sized blocks:

        x = [pose0, pose1]
        residual = (pose1 - pose0) - measurement
    """
    dim = x.shape[0] // 2
    pose0 = x[:dim]
    pose1 = x[dim:]
    meas = params["measurement"]
    return _apply_weight((pose1 - pose0) - meas, params)


def range_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Range between a position and a landmark of the same dimension:

        x = [position, landmark]
        residual = ||landmark - position|| - range

    Returns shape (1,) so it concatenates cleanly with other residuals.
    """
    dim = x.shape[0] // 2
    position = x[:dim]
    landmark = x[dim:]
    d = landmark - position
    # Keeps the gradient finite when the two points coincide.
    dist = jnp.sqrt(jnp.sum(d * d) + 1e-12)
    r = jnp.reshape(dist - params["range"], (1,))
    return _apply_weight(r, params)
