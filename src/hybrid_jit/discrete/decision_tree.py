# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""
Finite-domain decision trees for Hybrid-JIT.

A :class:`DecisionTree` maps a joint assignment over a set of discrete
variables to a value of arbitrary type. It is the common currency of the
hybrid layer:

    • discrete potentials are ``DecisionTree[float]``
    • mixture factors are ``DecisionTree[JacobianFactor]``
    • the mixture sum handed to elimination is
      ``DecisionTree[GaussianFactorGraph]``

Structure
---------
The tree is built from two immutable node types:

    Leaf(value)
        Terminal node holding one value.

    Choice(key, branches)
        Internal node testing ``key``; exactly ``key.cardinality``
        branches, one per state.

Every root-to-leaf path tests variables in one global order (ascending
discrete id, see :func:`label_rank`). All constructors sort their keys into
that order, which is what lets two trees with different scopes be merged
by walking them side by side.

Nodes are never mutated, so trees share subtrees freely. ``apply`` and
``apply2`` memoize on node identity: a subtree reachable from several
paths is transformed once and the result is shared again.

Key Operations
--------------
apply(fn)
    Map every leaf, keeping scope and shape exactly.

apply2(other, op)
    Cross-product merge. The result is defined over the union of both
    scopes; at every joint assignment ``a`` its leaf is

        op(self(a restricted to self's scope), other(a restricted to other's scope))

    Operand trees need not share scope or shape. Merge is associative
    whenever ``op`` is.

restrict(assignment)
    Fix some variables and drop them from the scope.
"""

from __future__ import annotations

import itertools
import numbers
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

import jax.numpy as jnp

from hybrid_jit.core.errors import ScopeInconsistencyError
from hybrid_jit.core.types import Assignment, DiscreteKey

V = TypeVar("V")
W = TypeVar("W")
U = TypeVar("U")


@dataclass(frozen=True, eq=False)
class Leaf(Generic[V]):
    value: V


@dataclass(frozen=True, eq=False)
class Choice:
    key: DiscreteKey
    branches: Tuple["Node", ...]


Node = Union[Leaf, Choice]


def label_rank(label: Hashable) -> Tuple[int, Any]:
    """Position of a discrete id in the global variable order."""
    if isinstance(label, numbers.Real):
        return (0, label)
    return (1, str(label))


def _sorted_keys(keys: Sequence[DiscreteKey]) -> List[DiscreteKey]:
    seen: Dict[Hashable, DiscreteKey] = {}
    for k in keys:
        if k.id in seen:
            raise ValueError(f"Discrete key {k.id!r} appears more than once")
        seen[k.id] = k
    return sorted(seen.values(), key=lambda k: label_rank(k.id))


def merge_keys(*scopes: Sequence[DiscreteKey]) -> List[DiscreteKey]:
    """
    Union of several discrete scopes, in first-appearance order.

    Raises ScopeInconsistencyError if one id is declared with two
    different cardinalities.
    """
    result: List[DiscreteKey] = []
    by_id: Dict[Hashable, DiscreteKey] = {}
    for scope in scopes:
        for k in scope:
            known = by_id.get(k.id)
            if known is None:
                by_id[k.id] = k
                result.append(k)
            elif known.cardinality != k.cardinality:
                raise ScopeInconsistencyError(
                    f"Discrete key {k.id!r} declared with cardinality "
                    f"{known.cardinality} and {k.cardinality}"
                )
    return result


def _leaf_equal(a: Any, b: Any, tol: float) -> bool:
    eq = getattr(a, "equals", None)
    if callable(eq):
        return bool(eq(b, tol))
    if isinstance(a, (tuple, list)) and isinstance(b, (tuple, list)):
        return len(a) == len(b) and all(_leaf_equal(x, y, tol) for x, y in zip(a, b))
    numeric = (numbers.Number,)
    if (isinstance(a, numeric) or hasattr(a, "shape")) and (isinstance(b, numeric) or hasattr(b, "shape")):
        x = jnp.asarray(a)
        y = jnp.asarray(b)
        return x.shape == y.shape and bool(jnp.all(jnp.abs(x - y) <= tol))
    return a == b


class DecisionTree(Generic[V]):
    """
    Function from a joint discrete assignment to a value of type ``V``.

    :param keys: Discrete keys of the table, most significant first.
    :param leaves: Row-major table of values, one per joint assignment
        over ``keys``. With no keys, a single value.
    """

    __slots__ = ("_root",)

    def __init__(self, keys: Sequence[DiscreteKey] = (), leaves: Optional[Sequence[V]] = None) -> None:
        keys = list(keys)
        if leaves is None:
            raise ValueError("DecisionTree needs a leaf table")
        leaves = list(leaves)

        expected = 1
        for k in keys:
            expected *= int(k.cardinality)
        if len(leaves) != expected:
            raise ValueError(
                f"DecisionTree over {[k.id for k in keys]} needs {expected} leaves, got {len(leaves)}"
            )

        # Row-major strides in the caller's key order.
        strides: Dict[Hashable, int] = {}
        stride = 1
        for k in reversed(keys):
            strides[k.id] = stride
            stride *= int(k.cardinality)

        def lookup(assignment: Dict[Hashable, int]) -> V:
            return leaves[sum(assignment[i] * s for i, s in strides.items())]

        self._root = _build(_sorted_keys(keys), lookup)

    # --- construction ---

    @classmethod
    def _from_root(cls, root: Node) -> "DecisionTree[V]":
        tree = cls.__new__(cls)
        tree._root = root
        return tree

    @classmethod
    def constant(cls, value: V) -> "DecisionTree[V]":
        """Tree with empty scope and a single leaf."""
        return cls._from_root(Leaf(value))

    @classmethod
    def from_function(cls, keys: Sequence[DiscreteKey], fn: Callable[[Dict[Hashable, int]], V]) -> "DecisionTree[V]":
        """Tabulate ``fn(assignment)`` over every joint assignment of ``keys``."""
        return cls._from_root(_build(_sorted_keys(keys), fn))

    # --- queries ---

    @property
    def root(self) -> Node:
        return self._root

    def is_constant(self) -> bool:
        return isinstance(self._root, Leaf)

    def __call__(self, assignment: Assignment) -> V:
        node = self._root
        while isinstance(node, Choice):
            key = node.key
            if key.id not in assignment:
                raise KeyError(f"Assignment is missing discrete key {key.id!r}")
            state = int(assignment[key.id])
            if not 0 <= state < key.cardinality:
                raise ValueError(
                    f"State {state} out of range for discrete key {key.id!r} "
                    f"with cardinality {key.cardinality}"
                )
            node = node.branches[state]
        return node.value

    def discrete_keys(self) -> List[DiscreteKey]:
        """Keys tested anywhere in the tree, in the global order."""
        found: Dict[Hashable, DiscreteKey] = {}
        for node in self._nodes():
            if isinstance(node, Choice):
                found.setdefault(node.key.id, node.key)
        return sorted(found.values(), key=lambda k: label_rank(k.id))

    def _nodes(self) -> Iterator[Node]:
        seen = set()
        stack = [self._root]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            yield node
            if isinstance(node, Choice):
                stack.extend(node.branches)

    def leaves(self) -> List[V]:
        """Leaf values along every root-to-leaf path, depth first."""
        out: List[V] = []

        def visit(node: Node) -> None:
            if isinstance(node, Leaf):
                out.append(node.value)
            else:
                for child in node.branches:
                    visit(child)

        visit(self._root)
        return out

    def nr_leaves(self) -> int:
        def count(node: Node) -> int:
            if isinstance(node, Leaf):
                return 1
            return sum(count(child) for child in node.branches)

        return count(self._root)

    def assignments(self) -> Iterator[Dict[Hashable, int]]:
        """Every joint assignment over the tree's scope."""
        keys = self.discrete_keys()
        for states in itertools.product(*(range(k.cardinality) for k in keys)):
            yield {k.id: s for k, s in zip(keys, states)}

    def items(self) -> Iterator[Tuple[Dict[Hashable, int], V]]:
        for assignment in self.assignments():
            yield assignment, self(assignment)

    # --- algebra ---

    def apply(self, fn: Callable[[V], W]) -> "DecisionTree[W]":
        """Map every leaf through ``fn``; scope and shape are unchanged."""
        memo: Dict[int, Node] = {}

        def walk(node: Node) -> Node:
            hit = memo.get(id(node))
            if hit is not None:
                return hit
            if isinstance(node, Leaf):
                out: Node = Leaf(fn(node.value))
            else:
                out = Choice(node.key, tuple(walk(child) for child in node.branches))
            memo[id(node)] = out
            return out

        return DecisionTree._from_root(walk(self._root))

    def apply2(self, other: "DecisionTree[W]", op: Callable[[V, W], U]) -> "DecisionTree[U]":
        """Merge with ``other`` over the union scope, combining leaves with ``op``."""
        merge_keys(self.discrete_keys(), other.discrete_keys())
        memo: Dict[Tuple[int, int], Node] = {}

        def walk(f: Node, g: Node) -> Node:
            pair = (id(f), id(g))
            hit = memo.get(pair)
            if hit is not None:
                return hit
            if isinstance(f, Leaf) and isinstance(g, Leaf):
                out: Node = Leaf(op(f.value, g.value))
            else:
                candidates = [n.key for n in (f, g) if isinstance(n, Choice)]
                key = min(candidates, key=lambda k: label_rank(k.id))
                f_splits = isinstance(f, Choice) and f.key.id == key.id
                g_splits = isinstance(g, Choice) and g.key.id == key.id
                out = Choice(
                    key,
                    tuple(
                        walk(f.branches[s] if f_splits else f, g.branches[s] if g_splits else g)
                        for s in range(key.cardinality)
                    ),
                )
            memo[pair] = out
            return out

        return DecisionTree._from_root(walk(self._root, other._root))

    def restrict(self, assignment: Assignment) -> "DecisionTree[V]":
        """Fix the variables in ``assignment``; they leave the scope."""
        memo: Dict[int, Node] = {}

        def walk(node: Node) -> Node:
            hit = memo.get(id(node))
            if hit is not None:
                return hit
            if isinstance(node, Leaf):
                out: Node = node
            elif node.key.id in assignment:
                state = int(assignment[node.key.id])
                if not 0 <= state < node.key.cardinality:
                    raise ValueError(
                        f"State {state} out of range for discrete key {node.key.id!r} "
                        f"with cardinality {node.key.cardinality}"
                    )
                out = walk(node.branches[state])
            else:
                out = Choice(node.key, tuple(walk(child) for child in node.branches))
            memo[id(node)] = out
            return out

        return DecisionTree._from_root(walk(self._root))

    # --- comparison ---

    def equals(
        self,
        other: object,
        tol: float = 1e-9,
        compare: Optional[Callable[[V, Any], bool]] = None,
    ) -> bool:
        """Same scope and branching, leaves equal within ``tol``."""
        if not isinstance(other, DecisionTree):
            return False
        same = compare if compare is not None else (lambda a, b: _leaf_equal(a, b, tol))

        def walk(f: Node, g: Node) -> bool:
            if f is g:
                return True
            if isinstance(f, Leaf) and isinstance(g, Leaf):
                return same(f.value, g.value)
            if isinstance(f, Choice) and isinstance(g, Choice):
                return f.key == g.key and all(walk(a, b) for a, b in zip(f.branches, g.branches))
            return False

        return walk(self._root, other._root)

    def __repr__(self) -> str:
        keys = ", ".join(f"{k.id}:{k.cardinality}" for k in self.discrete_keys())
        return f"DecisionTree(keys=[{keys}], leaves={self.nr_leaves()})"


def _build(ordered: Sequence[DiscreteKey], fn: Callable[[Dict[Hashable, int]], V]) -> Node:
    assignment: Dict[Hashable, int] = {}

    def build(depth: int) -> Node:
        if depth == len(ordered):
            return Leaf(fn(dict(assignment)))
        key = ordered[depth]
        branches = []
        for state in range(key.cardinality):
            assignment[key.id] = state
            branches.append(build(depth + 1))
        del assignment[key.id]
        return Choice(key, tuple(branches))

    return build(0)
