"""
Linearization of continuous factors and mixtures.

Jacobians come from JAX autodiff; these tests check them against
hand-derived values on small problems.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
import pytest

from hybrid_jit.core.factor_graph import NonlinearFactorGraph
from hybrid_jit.core.types import DiscreteKey, Factor, NodeId
from hybrid_jit.hybrid.mixture_factor import GaussianMixtureFactor, NonlinearMixtureFactor
from hybrid_jit.linear.jacobian_factor import JacobianFactor
from hybrid_jit.slam.measurements import odom_residual, prior_residual, range_residual


def test_prior_linearization():
    """
    Prior r = x - target: Jacobian is the identity, b = -(x0 - target).
    """
    f = Factor(
        type="prior",
        var_ids=(NodeId(0),),
        params={"target": jnp.array([1.0, 2.0])},
        residual_fn=prior_residual,
    )
    values = {NodeId(0): jnp.array([0.5, 0.5])}

    lin = f.linearize(values)

    assert isinstance(lin, JacobianFactor)
    assert lin.keys == (NodeId(0),)
    np.testing.assert_allclose(np.asarray(lin.blocks[0]), np.eye(2), atol=1e-6)
    np.testing.assert_allclose(np.asarray(lin.b), [0.5, 1.5], atol=1e-6)
    assert f.error(values) == pytest.approx(1.25, abs=1e-6)


def test_range_linearization():
    """
    Range between [0, 0] and [3, 4] with measured range 5:
    residual is zero and the Jacobian blocks are -u and +u, u = [0.6, 0.8].
    """
    f = Factor(
        type="range",
        var_ids=(NodeId(0), NodeId(1)),
        params={"range": 5.0},
        residual_fn=range_residual,
    )
    values = {NodeId(0): jnp.array([0.0, 0.0]), NodeId(1): jnp.array([3.0, 4.0])}

    lin = f.linearize(values)

    np.testing.assert_allclose(np.asarray(lin.blocks[0]), [[-0.6, -0.8]], atol=1e-5)
    np.testing.assert_allclose(np.asarray(lin.blocks[1]), [[0.6, 0.8]], atol=1e-5)
    np.testing.assert_allclose(np.asarray(lin.b), [0.0], atol=1e-5)


def test_graph_uses_registered_residuals():
    """
    Factors without a bound residual pick up the one registered for their
    type on the graph.
    """
    graph = NonlinearFactorGraph()
    graph.register_residual("odom", odom_residual)
    graph.push_back(
        Factor(type="odom", var_ids=(NodeId(0), NodeId(1)), params={"measurement": jnp.array([1.0])})
    )
    values = {NodeId(0): jnp.array([0.0]), NodeId(1): jnp.array([0.5])}

    linear = graph.linearize(values)

    assert len(linear) == 1
    lin = linear[0]
    np.testing.assert_allclose(np.asarray(lin.blocks[0]), [[-1.0]], atol=1e-6)
    np.testing.assert_allclose(np.asarray(lin.blocks[1]), [[1.0]], atol=1e-6)
    np.testing.assert_allclose(np.asarray(lin.b), [0.5], atol=1e-6)

    # At dx = 0 the linear error equals the nonlinear error.
    zero = {NodeId(0): jnp.zeros(1), NodeId(1): jnp.zeros(1)}
    assert linear.error(zero) == pytest.approx(graph.error(values), abs=1e-6)


def test_missing_residual_fn():
    f = Factor(type="mystery", var_ids=(NodeId(0),), params={})
    with pytest.raises(ValueError, match="No residual fn"):
        f.linearize({NodeId(0): jnp.zeros(1)})


def test_fused_residual_function():
    graph = NonlinearFactorGraph()
    graph.register_residual("prior", prior_residual)
    graph.register_residual("odom", odom_residual)
    graph.push_back(Factor(type="prior", var_ids=(NodeId(0),), params={"target": jnp.array([0.0])}))
    graph.push_back(
        Factor(type="odom", var_ids=(NodeId(0), NodeId(1)), params={"measurement": jnp.array([1.0])})
    )
    values = {NodeId(0): jnp.array([0.5]), NodeId(1): jnp.array([2.0])}

    residual, x0, index = graph.build_residual_function(values)

    assert x0.shape == (2,)
    assert index[NodeId(0)] == (0, 1)
    np.testing.assert_allclose(np.asarray(residual(x0)), [0.5, 0.5], atol=1e-6)


def test_mixture_linearization_keeps_shape():
    """
    A nonlinear mixture with 4 components (2 x 2 hypotheses) linearizes to
    a Gaussian mixture with 4 components, the same discrete keys, and each
    component equal to the linearization of the original component.
    """
    mode = DiscreteKey(0, 2)
    assoc = DiscreteKey(1, 2)
    ranges = [1.0, 2.0, 3.0, 4.0]
    components = [
        Factor(
            type="range",
            var_ids=(NodeId(0), NodeId(1)),
            params={"range": r},
            residual_fn=range_residual,
        )
        for r in ranges
    ]
    mixture = NonlinearMixtureFactor.from_factors((NodeId(0), NodeId(1)), [mode, assoc], components)
    values = {NodeId(0): jnp.array([0.0, 0.0]), NodeId(1): jnp.array([3.0, 4.0])}

    lin = mixture.linearize(values)

    assert isinstance(lin, GaussianMixtureFactor)
    assert lin.nr_components() == 4
    assert lin.discrete_keys() == mixture.discrete_keys()
    assert lin.factors.discrete_keys() == mixture.factors.discrete_keys()
    for assignment in mixture.factors.assignments():
        expected = mixture.factors(assignment).linearize(values)
        assert lin.factors(assignment).equals(expected, tol=1e-6)

    # b = -(5 - range) per hypothesis, row-major over [mode, assoc].
    np.testing.assert_allclose(np.asarray(lin.factors({0: 1, 1: 0}).b), [-2.0], atol=1e-5)


def test_gaussian_mixture_passes_through():
    leaf = JacobianFactor(keys=(NodeId(0),), blocks=(jnp.eye(1),), b=jnp.array([1.0]))
    mixture = GaussianMixtureFactor.from_factors((NodeId(0),), [DiscreteKey(0, 2)], [leaf, leaf])

    assert mixture.linearize({NodeId(0): jnp.zeros(1)}) is mixture
