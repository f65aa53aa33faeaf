#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Storage reuse: an allocation whose live range starts after the end of
the live range of an enclosing allocation of the same type and scope
reuses its memory.

Statements are numbered in program order, the accesses inside a loop
being live over the whole loop. Only allocations of constant size that
are not inside a loop or a thread region are considered.
"""

from dataclasses import dataclass, field
import logging

from ..ir.node import Node
from ..ir.expr import PrimExpr, Var
from ..ir.stmt import Stmt, AttrStmt, For, Allocate
from ..ir.functor import IRVisitor, IRMutator
from ..ir import op as ops

__all__ = [
    "storage_rewrite",
]

logger = logging.getLogger(__name__)


@dataclass
class _AllocEntry:
    alloc: Allocate
    scope: str
    ancestors: list["_AllocEntry"]
    size: int
    first: int | None = None
    last: int | None = None
    merged: list["_AllocEntry"] = field(default_factory=list)
    target: "_AllocEntry | None" = None

    def touch(self, start: int, end: int) -> None:
        self.first = start if self.first is None else min(self.first, start)
        self.last = end if self.last is None else max(self.last, end)


def _const_size(alloc: Allocate) -> int | None:
    size = 1
    for extent in alloc.extents:
        if not ops.is_const_int(extent):
            return None
        size *= extent.value
    return size


class _LivenessAnalysis(IRVisitor):
    def __init__(self) -> None:
        self.pos = 0
        self.depth = 0
        self.scopes: dict[Var, str] = {}
        self.entries: dict[Var, _AllocEntry] = {}
        self.order: list[_AllocEntry] = []
        self.open: list[_AllocEntry] = []
        self.loop_uses: list[set[Var]] = []

    def visit(self, node: Node) -> None:
        if isinstance(node, Stmt):
            self.pos += 1
        super().visit(node)

    def visit_var(self, node: Var) -> None:
        entry = self.entries.get(node)
        if entry is None:
            return
        entry.touch(self.pos, self.pos)
        for uses in self.loop_uses:
            uses.add(node)

    def visit_for(self, node: For) -> None:
        start = self.pos
        self.depth += 1
        self.loop_uses.append(set())
        try:
            self.generic_visit(node)
        finally:
            self.depth -= 1
            uses = self.loop_uses.pop()
        for var in uses:
            self.entries[var].touch(start, self.pos)

    def visit_attr_stmt(self, node: AttrStmt) -> None:
        if node.attr_key == "storage_scope":
            self.scopes[node.node] = node.value.value
            self.generic_visit(node)
            return
        if node.attr_key in ("thread_extent", "virtual_thread"):
            start = self.pos
            self.depth += 1
            self.loop_uses.append(set())
            try:
                self.generic_visit(node)
            finally:
                self.depth -= 1
                uses = self.loop_uses.pop()
            for var in uses:
                self.entries[var].touch(start, self.pos)
            return
        self.generic_visit(node)

    def visit_allocate(self, node: Allocate) -> None:
        size = _const_size(node)
        if self.depth > 0 or size is None:
            self.generic_visit(node)
            return
        entry = _AllocEntry(
            node, self.scopes.get(node.buffer_var, "global"), list(self.open), size
        )
        self.entries[node.buffer_var] = entry
        self.order.append(entry)
        self.open.append(entry)
        try:
            self.generic_visit(node)
        finally:
            self.open.pop()


def _root(entry: _AllocEntry) -> _AllocEntry:
    while entry.target is not None:
        entry = entry.target
    return entry


def _plan(entries: list[_AllocEntry]) -> None:
    for entry in entries:
        if entry.first is None:
            continue
        for ancestor in reversed(entry.ancestors):
            root = _root(ancestor)
            if (
                root.first is None
                or root.alloc.dtype != entry.alloc.dtype
                or root.scope != entry.scope
                or root.last >= entry.first
            ):
                continue
            entry.target = root
            root.merged.append(entry)
            root.size = max(root.size, entry.size)
            root.touch(entry.first, entry.last)
            logger.debug(
                "storage_rewrite: %s reuses %s",
                entry.alloc.buffer_var.name,
                root.alloc.buffer_var.name,
            )
            break


class _StorageRewriter(IRMutator):
    def __init__(self, entries: dict[Var, _AllocEntry]) -> None:
        self.entries = entries
        self.remap = {
            var: _root(entry).alloc.buffer_var
            for var, entry in entries.items()
            if entry.target is not None
        }

    def mutate_var(self, node: Var) -> PrimExpr:
        return self.remap.get(node, node)

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key == "storage_scope" and node.node in self.remap:
            return self.mutate(node.body)
        return self.generic_mutate(node)

    def mutate_allocate(self, node: Allocate) -> Stmt:
        if node.buffer_var in self.remap:
            return self.mutate(node.body)
        body = self.mutate(node.body)
        entry = self.entries.get(node.buffer_var)
        if entry is not None and entry.merged:
            return Allocate(
                node.buffer_var,
                node.dtype,
                (ops.const(entry.size, "int32"),),
                node.condition,
                body,
            )
        if body is node.body:
            return node
        return Allocate(node.buffer_var, node.dtype, node.extents, node.condition, body)


def storage_rewrite(stmt: Stmt) -> Stmt:
    analysis = _LivenessAnalysis()
    analysis.visit(stmt)
    _plan(analysis.order)
    if not any(entry.target is not None for entry in analysis.order):
        return stmt
    return _StorageRewriter(analysis.entries).mutate(stmt)
