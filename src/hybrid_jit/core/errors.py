# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Structural errors raised by the hybrid factor graph.

These are logical errors about how factors are shaped or classified, not
transient failures: they are always reported to the immediate caller and
nothing in the package retries or recovers from them.
"""


class HybridError(Exception):
    """Base class for structural errors in Hybrid-JIT."""


class CapabilityMismatchError(HybridError, TypeError):
    """A factor satisfies none of the discrete, continuous or mixture capabilities."""


class UnsupportedFactorKindError(HybridError, TypeError):
    """A factor cannot take part in an operation, e.g. a mixture without a decision tree."""


class ScopeInconsistencyError(HybridError, ValueError):
    """Two scopes disagree, e.g. one discrete id declared with two cardinalities."""
