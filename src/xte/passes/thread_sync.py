#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Barrier insertion for the buffers of a storage scope shared between
the threads of a device region.

Inside a thread region, a barrier is inserted before a statement
reading a buffer written by a previous statement of the same sequence,
and at the end of a loop body which reads and writes the same buffer.
"""

from dataclasses import replace
import logging

from ..ir.expr import Var, Load, Call, StringImm
from ..ir.stmt import Stmt, AttrStmt, For, Store, SeqStmt, Evaluate, make_seq
from ..ir.function import LoweredFunc
from ..ir.functor import IRMutator, post_order_visit
from ..ir import op as ops

__all__ = [
    "thread_sync",
    "storage_sync",
]

logger = logging.getLogger(__name__)


def storage_sync(scope: str) -> Evaluate:
    return Evaluate(ops.call_intrin("int32", "xte_storage_sync", StringImm(scope)))


class _ThreadSyncInserter(IRMutator):
    def __init__(self, scope: str, scopes: dict[Var, str]) -> None:
        self.scope = scope
        self.scopes = scopes
        self.thread_depth = 0

    def _in_scope(self, var: Var) -> bool:
        return self.scopes.get(var, "global") == self.scope

    def _accesses(self, stmt: Stmt) -> tuple[set[Var], set[Var]]:
        reads: set[Var] = set()
        writes: set[Var] = set()

        def collect(node) -> None:
            if isinstance(node, Load) and self._in_scope(node.buffer_var):
                reads.add(node.buffer_var)
            elif isinstance(node, Store) and self._in_scope(node.buffer_var):
                writes.add(node.buffer_var)
            elif isinstance(node, Call) and node.is_intrinsic("xte_address_of"):
                load = node.args[0]
                if isinstance(load, Load) and self._in_scope(load.buffer_var):
                    reads.add(load.buffer_var)
                    writes.add(load.buffer_var)

        post_order_visit(stmt, collect)
        return reads, writes

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key != "thread_extent":
            return self.generic_mutate(node)
        self.thread_depth += 1
        try:
            return self.generic_mutate(node)
        finally:
            self.thread_depth -= 1

    def mutate_seq_stmt(self, node: SeqStmt) -> Stmt:
        if self.thread_depth == 0:
            return self.generic_mutate(node)
        stmts: list[Stmt] = []
        written: set[Var] = set()
        for stmt in node.seq:
            stmt = self.mutate(stmt)
            reads, writes = self._accesses(stmt)
            if reads & written:
                stmts.append(storage_sync(self.scope))
                written.clear()
            stmts.append(stmt)
            written |= writes
        if len(stmts) == len(node.seq) and all(
            a is b for a, b in zip(stmts, node.seq)
        ):
            return node
        return make_seq(*stmts)

    def mutate_for(self, node: For) -> Stmt:
        node = self.generic_mutate(node)
        if self.thread_depth == 0:
            return node
        reads, writes = self._accesses(node.body)
        if not reads & writes:
            return node
        logger.debug("thread_sync: barrier at the end of %s", node.loop_var.name)
        body = make_seq(node.body, storage_sync(self.scope))
        return For(node.loop_var, node.min, node.extent, node.for_type, body)


def thread_sync(func: LoweredFunc, scope: str) -> LoweredFunc:
    """Inserts the ``scope`` storage barriers in the thread regions of ``func``."""
    scopes: dict[Var, str] = {}

    def collect(node) -> None:
        if isinstance(node, AttrStmt) and node.attr_key == "storage_scope":
            scopes[node.node] = node.value.value

    post_order_visit(func.body, collect)
    body = _ThreadSyncInserter(scope, scopes).mutate(func.body)
    if body is func.body:
        return func
    return replace(func, body=body)
