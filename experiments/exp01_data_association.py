from __future__ import annotations

import jax.numpy as jnp

from hybrid_jit.core.types import DiscreteKey, Factor, NodeId
from hybrid_jit.discrete.discrete_factor import DecisionTreeFactor
from hybrid_jit.hybrid.hybrid_factor_graph import HybridFactorGraph
from hybrid_jit.hybrid.mixture_factor import NonlinearMixtureFactor
from hybrid_jit.slam.measurements import odom_residual, prior_residual, range_residual, sigma_to_weight


def setup_data_association() -> HybridFactorGraph:
    """
    Build a tiny 2D data-association problem:

      - 2 robot positions x0, x1 (R^2), 1m apart along x
      - 1 landmark l0 (R^2)

    Factors:
      - prior on x0 (origin)
      - odometry x0 -> x1
      - prior on l0 near (3, 1)
      - range from x1 to l0, whose measured value depends on which of
        two detections it came from (discrete key "assoc", 2 states)
      - discrete prior on "assoc" (0.7 / 0.3)
    """
    hfg = HybridFactorGraph()
    hfg.register_residual("prior", prior_residual)
    hfg.register_residual("odom", odom_residual)
    hfg.register_residual("range", range_residual)

    x0, x1, l0 = NodeId(0), NodeId(1), NodeId(2)
    assoc = DiscreteKey("assoc", 2)

    hfg.add(Factor("prior", (x0,), {"target": jnp.array([0.0, 0.0])}))
    hfg.add(Factor("odom", (x0, x1), {"measurement": jnp.array([1.0, 0.0])}))
    hfg.add(Factor("prior", (l0,), {"target": jnp.array([3.0, 1.0]), "weight": sigma_to_weight(0.5)}))

    # Hypothesis 0: the close detection; hypothesis 1: the far one.
    ranges = [
        Factor("range", (x1, l0), {"range": 2.2}),
        Factor("range", (x1, l0), {"range": 4.0}),
    ]
    hfg.add(NonlinearMixtureFactor.from_factors((x1, l0), [assoc], ranges))
    hfg.add(DecisionTreeFactor([assoc], [0.7, 0.3]))
    return hfg


def main() -> None:
    hfg = setup_data_association()
    values = {
        NodeId(0): jnp.array([0.1, -0.1]),
        NodeId(1): jnp.array([1.1, 0.1]),
        NodeId(2): jnp.array([2.9, 1.1]),
    }

    print(hfg)
    print("discrete keys:", [k.id for k in hfg.discrete_keys()])

    linear = hfg.linearize(values)
    total = linear.sum(include_continuous=True)
    print("sum:", total)

    zero = {nid: jnp.zeros(2) for nid in values}
    for assignment, graph in total.items():
        print(
            f"assoc={assignment['assoc']}: {len(graph)} linear factors, "
            f"error at linearization point = {graph.error(zero):.4f}, "
            f"hybrid error = {hfg.error(values, assignment):.4f}"
        )


if __name__ == "__main__":
    main()
