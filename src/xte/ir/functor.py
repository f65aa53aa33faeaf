#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Generic traversal of expression and statement trees.

Dispatch is done on the node ``kind`` tag: every expression and
statement kind has a ``visit_<kind>`` (resp. ``mutate_<kind>``) method
which defaults to the generic traversal of the node fields.
"""

from dataclasses import fields, replace
from collections.abc import Callable, Mapping
from typing import Any

from .node import Node, EXPR_KINDS, STMT_KINDS
from .expr import PrimExpr, Var, Range, Call, Reduce, IterVar, Let
from .stmt import Stmt, AttrStmt, For, LetStmt, Allocate, Provide, Realize, Prefetch

__all__ = [
    "IRVisitor",
    "IRMutator",
    "post_order_visit",
    "substitute",
    "structural_equal",
    "struct_key",
    "free_vars",
    "uses_var",
]

_IR_KINDS = EXPR_KINDS | STMT_KINDS

# Fields that are not part of the traversed tree.
_OPAQUE_FIELDS: dict[type, frozenset[str]] = {
    AttrStmt: frozenset({"node"}),
    Call: frozenset({"func"}),
    Provide: frozenset({"func"}),
    Realize: frozenset({"func"}),
    Prefetch: frozenset({"func"}),
    Reduce: frozenset({"combiner", "axis"}),
    For: frozenset({"loop_var"}),
    Let: frozenset({"var"}),
    LetStmt: frozenset({"var"}),
    Allocate: frozenset({"buffer_var"}),
}

_fields_cache: dict[type, tuple[str, ...]] = {}


def _child_fields(node: Node) -> tuple[str, ...]:
    cls = type(node)
    names = _fields_cache.get(cls)
    if names is None:
        opaque = _OPAQUE_FIELDS.get(cls, frozenset())
        names = tuple(f.name for f in fields(cls) if f.name not in opaque)
        _fields_cache[cls] = names
    return names


def _is_ir(value: Any) -> bool:
    return isinstance(value, (PrimExpr, Stmt, Range))


class IRVisitor:
    """Recursive visitor over expressions and statements."""

    def visit(self, node: Node) -> None:
        if isinstance(node, Range):
            self.visit(node.min)
            self.visit(node.extent)
            return
        getattr(self, f"visit_{node.kind.value}")(node)

    def generic_visit(self, node: Node) -> None:
        for name in _child_fields(node):
            value = getattr(node, name)
            if _is_ir(value):
                self.visit(value)
            elif isinstance(value, tuple):
                for item in value:
                    if _is_ir(item):
                        self.visit(item)


class IRMutator:
    """
    Recursive rewriter over expressions and statements. A node is rebuilt
    only when one of its children changed.
    """

    def mutate(self, node: Any) -> Any:
        if isinstance(node, Range):
            new_min, new_extent = self.mutate(node.min), self.mutate(node.extent)
            if new_min is node.min and new_extent is node.extent:
                return node
            return Range(new_min, new_extent)
        return getattr(self, f"mutate_{node.kind.value}")(node)

    def generic_mutate(self, node: Node) -> Node:
        changes = {}
        for name in _child_fields(node):
            value = getattr(node, name)
            if _is_ir(value):
                new_value = self.mutate(value)
                if new_value is not value:
                    changes[name] = new_value
            elif isinstance(value, tuple) and any(_is_ir(item) for item in value):
                new_items = tuple(
                    self.mutate(item) if _is_ir(item) else item for item in value
                )
                if any(a is not b for a, b in zip(new_items, value)):
                    changes[name] = new_items
        if not changes:
            return node
        return replace(node, **changes)


for _kind in _IR_KINDS:
    setattr(IRVisitor, f"visit_{_kind.value}", IRVisitor.generic_visit)
    setattr(IRMutator, f"mutate_{_kind.value}", IRMutator.generic_mutate)


class _PostOrderVisitor(IRVisitor):
    def __init__(self, callback: Callable[[Node], None]) -> None:
        self.callback = callback

    def visit(self, node: Node) -> None:
        super().visit(node)
        if not isinstance(node, Range):
            self.callback(node)


def post_order_visit(node: Node, callback: Callable[[Node], None]) -> None:
    """Calls ``callback`` on every node of the tree, children first."""
    _PostOrderVisitor(callback).visit(node)


class _Substitutor(IRMutator):
    def __init__(self, vmap: Mapping[Var, PrimExpr]) -> None:
        self.vmap = vmap

    def mutate_var(self, node: Var) -> PrimExpr:
        return self.vmap.get(node, node)


def substitute(node: Any, vmap: Mapping[Var, Any]) -> Any:
    """Replaces the free occurrences of the variables of ``vmap``."""
    if not vmap:
        return node
    return _Substitutor(vmap).mutate(node)


def struct_key(node: Any) -> Any:
    """
    Hashable structural key: equal keys denote structurally equal trees.
    Variables are distinguished by identity.
    """
    if isinstance(node, Var):
        return ("var", id(node))
    if isinstance(node, Node):
        if not hasattr(node, "__dataclass_fields__"):
            return ("node", id(node))
        items: list[Any] = [type(node).__name__]
        for f in fields(node):
            items.append(struct_key(getattr(node, f.name)))
        return tuple(items)
    if isinstance(node, tuple):
        return tuple(struct_key(item) for item in node)
    if isinstance(node, float):
        return ("float", node)
    return node


def structural_equal(lhs: Any, rhs: Any) -> bool:
    """
    Compares two trees structurally. Variables are equal when their
    names and types are, operations when their names are.
    """
    if lhs is rhs:
        return True
    if isinstance(lhs, Var) and isinstance(rhs, Var):
        return lhs.name == rhs.name and lhs.dtype == rhs.dtype
    if isinstance(lhs, Node) and isinstance(rhs, Node):
        if type(lhs) is not type(rhs):
            return False
        if not hasattr(lhs, "__dataclass_fields__"):
            return getattr(lhs, "name", None) == getattr(rhs, "name", None)
        return all(
            structural_equal(getattr(lhs, f.name), getattr(rhs, f.name))
            for f in fields(lhs)
        )
    if isinstance(lhs, (tuple, list)) and isinstance(rhs, (tuple, list)):
        return len(lhs) == len(rhs) and all(
            structural_equal(a, b) for a, b in zip(lhs, rhs)
        )
    if isinstance(lhs, dict) and isinstance(rhs, dict):
        return len(lhs) == len(rhs) and all(
            structural_equal(a, b) and structural_equal(lhs[a], rhs[b])
            for a, b in zip(lhs, rhs)
        )
    if hasattr(lhs, "idx") and hasattr(rhs, "idx"):
        return type(lhs) is type(rhs) and lhs.name == rhs.name
    return type(lhs) is type(rhs) and lhs == rhs


class _FreeVars(IRVisitor):
    def __init__(self) -> None:
        self.bound: set[Var] = set()
        self.free: dict[Var, None] = {}

    def visit_var(self, node: Var) -> None:
        if node not in self.bound:
            self.free.setdefault(node, None)

    def visit_for(self, node: For) -> None:
        self.bound.add(node.loop_var)
        self.generic_visit(node)

    def visit_let(self, node: Let) -> None:
        self.bound.add(node.var)
        self.generic_visit(node)

    def visit_let_stmt(self, node: LetStmt) -> None:
        self.bound.add(node.var)
        self.generic_visit(node)

    def visit_allocate(self, node: Allocate) -> None:
        self.bound.add(node.buffer_var)
        self.generic_visit(node)

    def visit_attr_stmt(self, node: AttrStmt) -> None:
        if isinstance(node.node, IterVar) and node.attr_key in (
            "thread_extent",
            "virtual_thread",
        ):
            self.bound.add(node.node.var)
        self.generic_visit(node)

    def visit_reduce(self, node: Reduce) -> None:
        self.bound.update(iv.var for iv in node.axis)
        self.generic_visit(node)


def free_vars(node: Node) -> list[Var]:
    """Returns the variables used but not bound in ``node``, in use order."""
    visitor = _FreeVars()
    visitor.visit(node)
    return list(visitor.free)


def uses_var(node: Node, variables: Var | set[Var] | frozenset[Var]) -> bool:
    if isinstance(variables, Var):
        variables = {variables}
    found = False

    def check(child: Node) -> None:
        nonlocal found
        if isinstance(child, Var) and child in variables:
            found = True

    post_order_visit(node, check)
    return found

