#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Vectorization of the loops marked vectorized, and serialization of the
virtual threads.

A vectorized loop of constant extent ``n`` is replaced by its body
where the loop variable is the ramp ``[min, min + 1, ..., min + n - 1]``,
loads, stores and arithmetic becoming ``n`` lanes wide. A loop whose
body can not be expressed on vectors is kept as a serial loop.
"""

from typing import Any
import logging

from ..ir.node import NodeKind
from ..ir.expr import (
    PrimExpr,
    Var,
    Cast,
    Not,
    Select,
    Call,
    CallType,
    Let,
    Load,
    Ramp,
    Broadcast,
    IterVar,
)
from ..ir.stmt import (
    Stmt,
    AttrStmt,
    For,
    ForType,
    Store,
)
from ..ir.functor import IRMutator
from ..ir import op as ops

__all__ = [
    "vectorize",
    "inject_virtual_thread",
]

logger = logging.getLogger(__name__)


class _NotVectorizable(Exception):
    pass


_BUILDERS = {
    NodeKind.ADD: ops.add,
    NodeKind.SUB: ops.sub,
    NodeKind.MUL: ops.mul,
    NodeKind.DIV: ops.div,
    NodeKind.MOD: ops.mod,
    NodeKind.MIN: ops.minimum,
    NodeKind.MAX: ops.maximum,
    NodeKind.EQ: ops.eq,
    NodeKind.NE: ops.ne,
    NodeKind.LT: ops.lt,
    NodeKind.LE: ops.le,
    NodeKind.GT: ops.gt,
    NodeKind.GE: ops.ge,
    NodeKind.AND: ops.logical_and,
    NodeKind.OR: ops.logical_or,
}


def _widen(expr: PrimExpr, lanes: int) -> PrimExpr:
    if expr.dtype.lanes == lanes:
        return expr
    assert expr.dtype.lanes == 1, f"can not widen {expr.dtype} to {lanes} lanes"
    return Broadcast(expr, lanes)


class _Vectorizer(IRMutator):
    def __init__(self, var: Var, ramp: Ramp) -> None:
        self.var = var
        self.ramp = ramp
        self.lanes = ramp.lanes

    def mutate_var(self, node: Var) -> PrimExpr:
        return self.ramp if node is self.var else node

    def _binary(self, node: Any) -> PrimExpr:
        a, b = self.mutate(node.a), self.mutate(node.b)
        if a is node.a and b is node.b:
            return node
        return _BUILDERS[node.kind](a, b)

    mutate_add = mutate_sub = mutate_mul = mutate_div = mutate_mod = _binary
    mutate_min = mutate_max = _binary
    mutate_eq = mutate_ne = mutate_lt = mutate_le = mutate_gt = mutate_ge = _binary
    mutate_and = mutate_or = _binary

    def mutate_not(self, node: Not) -> PrimExpr:
        a = self.mutate(node.a)
        return node if a is node.a else Not(a)

    def mutate_cast(self, node: Cast) -> PrimExpr:
        value = self.mutate(node.value)
        if value is node.value:
            return node
        return Cast(node.dtype.with_lanes(value.dtype.lanes), value)

    def mutate_select(self, node: Select) -> PrimExpr:
        parts = [
            self.mutate(node.condition),
            self.mutate(node.true_value),
            self.mutate(node.false_value),
        ]
        olds = (node.condition, node.true_value, node.false_value)
        if all(new is old for new, old in zip(parts, olds)):
            return node
        lanes = max(part.dtype.lanes for part in parts)
        return Select(*(_widen(part, lanes) for part in parts))

    def mutate_call(self, node: Call) -> PrimExpr:
        args = tuple(self.mutate(arg) for arg in node.args)
        if all(new is old for new, old in zip(args, node.args)):
            return node
        if node.call_type not in (CallType.PURE_INTRINSIC, CallType.PURE_EXTERN):
            raise _NotVectorizable(f"call to {node.name}")
        lanes = max(arg.dtype.lanes for arg in args)
        return Call(
            node.dtype.with_lanes(lanes),
            node.name,
            tuple(_widen(arg, lanes) for arg in args),
            node.call_type,
            node.func,
            node.value_index,
        )

    def mutate_let(self, node: Let) -> PrimExpr:
        value = self.mutate(node.value)
        if value.dtype.lanes != 1:
            raise _NotVectorizable(f"vector let {node.var.name}")
        body = self.mutate(node.body)
        if value is node.value and body is node.body:
            return node
        return Let(node.var, value, body)

    def mutate_load(self, node: Load) -> PrimExpr:
        index = self.mutate(node.index)
        if index is node.index:
            return node
        dtype = node.dtype.with_lanes(index.dtype.lanes)
        return Load(dtype, node.buffer_var, index, node.predicate)

    def mutate_store(self, node: Store) -> Stmt:
        value, index = self.mutate(node.value), self.mutate(node.index)
        if value is node.value and index is node.index:
            return node
        if index.dtype.lanes == 1:
            raise _NotVectorizable(f"scalar store into {node.buffer_var.name}")
        value = _widen(value, index.dtype.lanes)
        return Store(node.buffer_var, value, index, node.predicate)

    def _scalar_only(self, node: Any) -> Any:
        new = self.generic_mutate(node)
        if new is not node:
            raise _NotVectorizable(f"{node.kind.value} depending on the lane")
        return node

    mutate_for = mutate_if_then_else = mutate_allocate = _scalar_only
    mutate_let_stmt = mutate_attr_stmt = mutate_evaluate = _scalar_only
    mutate_assert_stmt = mutate_reduce = _scalar_only


class _LoopVectorizer(IRMutator):
    def mutate_for(self, node: For) -> Stmt:
        node = self.generic_mutate(node)
        if node.for_type != ForType.VECTORIZED:
            return node
        if not ops.is_const_int(node.extent):
            logger.debug(
                "vectorize: %s has a symbolic extent, kept serial", node.loop_var.name
            )
            return For(node.loop_var, node.min, node.extent, ForType.SERIAL, node.body)
        lanes = node.extent.value
        if lanes <= 1:
            return For(node.loop_var, node.min, node.extent, ForType.SERIAL, node.body)
        ramp = Ramp(node.min, ops.const(1, node.min.dtype), lanes)
        try:
            body = _Vectorizer(node.loop_var, ramp).mutate(node.body)
        except _NotVectorizable as e:
            logger.debug("vectorize: %s kept serial: %s", node.loop_var.name, e)
            return For(node.loop_var, node.min, node.extent, ForType.SERIAL, node.body)
        logger.debug("vectorize: %s on %d lanes", node.loop_var.name, lanes)
        return body


def vectorize(stmt: Stmt) -> Stmt:
    return _LoopVectorizer().mutate(stmt)


class _VirtualThreadInjector(IRMutator):
    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key != "virtual_thread":
            return self.generic_mutate(node)
        thread: IterVar = node.node
        body = self.mutate(node.body)
        logger.debug("inject_virtual_thread: serialize %s", thread.var.name)
        return For(
            thread.var, ops.const(0, thread.dtype), node.value, ForType.SERIAL, body
        )


def inject_virtual_thread(stmt: Stmt) -> Stmt:
    """Runs the virtual threads one after the other in a serial loop."""
    return _VirtualThreadInjector().mutate(stmt)
