#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Double buffering: a buffer produced in each iteration of a loop is
allocated twice as large outside of the loop, iterations alternating
between the two halves.
"""

from dataclasses import dataclass
import logging

from ..ir.expr import PrimExpr, Var, Load, StringImm
from ..ir.stmt import Stmt, AttrStmt, For, Store, Allocate, make_seq
from ..ir.functor import IRMutator, post_order_visit, substitute
from ..ir.arith import simplify_expr
from ..ir import op as ops

__all__ = [
    "inject_double_buffer",
]

logger = logging.getLogger(__name__)


@dataclass
class _DoubleBuffer:
    alloc: Allocate
    scope: str = "global"
    loop: For | None = None


class _Switcher(IRMutator):
    """Offsets the accesses of ``var`` by ``switch * size``."""

    def __init__(self, var: Var, switch: PrimExpr, size: PrimExpr) -> None:
        self.var = var
        self.offset = ops.mul(switch, size)

    def mutate_load(self, node: Load) -> PrimExpr:
        node = self.generic_mutate(node)
        if node.buffer_var is not self.var:
            return node
        index = ops.add(node.index, self.offset)
        return Load(node.dtype, node.buffer_var, index, node.predicate)

    def mutate_store(self, node: Store) -> Stmt:
        node = self.generic_mutate(node)
        if node.buffer_var is not self.var:
            return node
        index = ops.add(node.index, self.offset)
        return Store(node.buffer_var, node.value, index, node.predicate)


class _DoubleBufferInjector(IRMutator):
    def __init__(self, buffers: set[Var], split_loop: int) -> None:
        self.targets = buffers
        self.split_loop = split_loop
        self.buffers: dict[Var, _DoubleBuffer] = {}
        self.loops: list[For] = []

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key == "double_buffer_scope":
            return self.mutate(node.body)
        if node.attr_key == "storage_scope" and node.node in self.targets:
            if not self.loops:
                return self.generic_mutate(node)
            body = self.mutate(node.body)
            self.buffers[node.node].scope = node.value.value
            return body
        return self.generic_mutate(node)

    def mutate_allocate(self, node: Allocate) -> Stmt:
        if node.buffer_var not in self.targets or not self.loops:
            if node.buffer_var in self.targets:
                logger.debug(
                    "inject_double_buffer: %s not in a loop", node.buffer_var.name
                )
            return self.generic_mutate(node)
        entry = _DoubleBuffer(node, loop=self.loops[-1])
        self.buffers[node.buffer_var] = entry
        return self.mutate(node.body)

    def mutate_for(self, node: For) -> Stmt:
        self.loops.append(node)
        try:
            body = self.mutate(node.body)
        finally:
            self.loops.pop()
        hoisted = [
            (var, entry) for var, entry in self.buffers.items() if entry.loop is node
        ]
        if not hoisted:
            if body is node.body:
                return node
            return For(node.loop_var, node.min, node.extent, node.for_type, body)
        stmt = self._split(node, body, hoisted)
        for var, entry in hoisted:
            del self.buffers[var]
            alloc = entry.alloc
            size = ops.const(1, "int32")
            for extent in alloc.extents:
                size = ops.mul(size, extent)
            stmt = Allocate(
                var,
                alloc.dtype,
                (simplify_expr(ops.mul(size, 2)),),
                alloc.condition,
                stmt,
            )
            stmt = AttrStmt(var, "storage_scope", StringImm(entry.scope), stmt)
            logger.debug(
                "inject_double_buffer: %s hoisted out of %s",
                var.name,
                node.loop_var.name,
            )
        return stmt

    def _split(self, loop: For, body: Stmt, hoisted) -> Stmt:
        def switched(stmt: Stmt, switch: PrimExpr) -> Stmt:
            for var, entry in hoisted:
                size = ops.const(1, "int32")
                for extent in entry.alloc.extents:
                    size = ops.mul(size, extent)
                stmt = _Switcher(var, switch, size).mutate(stmt)
            return stmt

        factor = self.split_loop
        if (
            factor > 1
            and factor % 2 == 0
            and ops.is_const_int(loop.extent)
            and loop.extent.value % factor == 0
        ):
            outer = Var(f"{loop.loop_var.name}.outer", loop.loop_var.dtype)
            copies = []
            for k in range(factor):
                value = ops.add(loop.min, ops.add(ops.mul(outer, factor), k))
                copy = substitute(body, {loop.loop_var: value})
                copies.append(switched(copy, ops.const(k % 2, "int32")))
            return For(
                outer,
                ops.const(0, loop.loop_var.dtype),
                ops.const(loop.extent.value // factor, loop.loop_var.dtype),
                loop.for_type,
                make_seq(*copies),
            )
        switch = ops.mod(ops.sub(loop.loop_var, loop.min), 2)
        return For(
            loop.loop_var,
            loop.min,
            loop.extent,
            loop.for_type,
            switched(body, simplify_expr(switch)),
        )


def inject_double_buffer(stmt: Stmt, split_loop: int = 1) -> Stmt:
    """
    Doubles the buffers annotated double_buffer_scope, ``split_loop``
    giving the number of iterations of the enclosing loop unrolled so
    that the buffer halves are selected statically.
    """
    buffers: set[Var] = set()

    def collect(node) -> None:
        if isinstance(node, AttrStmt) and node.attr_key == "double_buffer_scope":
            buffers.add(node.node)

    post_order_visit(stmt, collect)
    if not buffers:
        return stmt
    return _DoubleBufferInjector(buffers, split_loop).mutate(stmt)
