#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Lowering of the cross-thread reductions.

Every thread stores its partial value in a shared buffer holding one
row per group of threads not taking part in the reduction. The row is
then reduced as a tree: at each step the first half of the active
threads combine their value with the one ``offset`` positions further,
a barrier separating the steps. The result is read back by all the
threads between the last two barriers.
"""

from dataclasses import replace
import logging

from ..errors import LoweringError
from ..ir.expr import (
    PrimExpr,
    Var,
    Call,
    CommReducer,
    IterVar,
    Load,
    StringImm,
    HANDLE,
)
from ..ir.stmt import (
    Stmt,
    AttrStmt,
    Store,
    Allocate,
    IfThenElse,
    Evaluate,
    make_seq,
)
from ..ir.function import LoweredFunc
from ..ir.functor import IRMutator, substitute
from ..ir.arith import simplify_expr
from ..ir import op as ops
from ..utils.math import next_pow2
from .thread_sync import storage_sync

__all__ = [
    "lower_thread_allreduce",
]

logger = logging.getLogger(__name__)

_TAG_ORDER = {"x": 0, "y": 1, "z": 2}


def _thread_key(thread: IterVar) -> tuple[str, int]:
    prefix, _, dim = thread.thread_tag.partition(".")
    return prefix, _TAG_ORDER.get(dim, 3)


def _linearize(threads: list[tuple[IterVar, int]]) -> tuple[PrimExpr, int]:
    """Returns the linear index of ``threads`` (x fastest) and their count."""
    index: PrimExpr = ops.const(0, "int32")
    total = 1
    for thread, extent in sorted(threads, key=lambda item: _thread_key(item[0])):
        index = ops.add(index, ops.mul(thread.var, total))
        total *= extent
    return simplify_expr(index), total


class _AllreduceLowering(IRMutator):
    def __init__(self, name: str, warp_size: int) -> None:
        self.name = name
        self.warp_size = warp_size
        self.threads: list[tuple[IterVar, PrimExpr]] = []
        self.count = 0

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key == "thread_extent":
            self.threads.append((node.node, node.value))
            try:
                return self.generic_mutate(node)
            finally:
                self.threads.pop()
        if node.attr_key == "reduce_scope":
            call = node.body.value if isinstance(node.body, Evaluate) else None
            if isinstance(call, Call) and call.is_intrinsic("xte_thread_allreduce"):
                return self._lower(node.node, call)
        return self.generic_mutate(node)

    def _const_extent(self, thread: IterVar, extent: PrimExpr) -> int:
        extent = simplify_expr(extent)
        if not ops.is_const_int(extent):
            raise LoweringError(
                f"{self.name}: cross thread reduction over {thread.thread_tag} "
                f"needs a constant extent, got {extent}",
                function_name=self.name,
            )
        return extent.value

    def _lower(self, combiner: CommReducer, call: Call) -> Stmt:
        value, condition, result = call.args[1], call.args[2], call.args[3]
        reduce_vars = set(call.args[4:])
        reduce_threads: list[tuple[IterVar, int]] = []
        group_threads: list[tuple[IterVar, int]] = []
        for thread, extent in self.threads:
            if thread.var in reduce_vars:
                reduce_threads.append((thread, self._const_extent(thread, extent)))
            elif thread.thread_tag.startswith("threadIdx"):
                group_threads.append((thread, self._const_extent(thread, extent)))
        if len(reduce_threads) != len(reduce_vars):
            raise LoweringError(
                f"{self.name}: cross thread reduction outside of its thread region",
                function_name=self.name,
            )
        reduce_index, reduce_extent = _linearize(reduce_threads)
        group_index, group_extent = _linearize(group_threads)
        dtype = combiner.result[0].dtype
        self.count += 1
        buf = Var(f"red_buf{self.count - 1}", HANDLE)
        base = simplify_expr(ops.mul(group_index, reduce_extent))
        slot = simplify_expr(ops.add(base, reduce_index))
        identity = combiner.identity_element[0]
        sync = (
            storage_sync("warp")
            if reduce_extent <= self.warp_size
            else storage_sync("shared")
        )
        seq: list[Stmt] = [
            Store(buf, ops.select(condition, value, identity), slot),
            sync,
        ]
        align = next_pow2(reduce_extent)
        while align > 1:
            offset = align >> 1
            combined = substitute(
                combiner.result[0],
                {
                    combiner.lhs[0]: Load(dtype, buf, slot),
                    combiner.rhs[0]: Load(dtype, buf, ops.add(slot, offset)),
                },
            )
            active = ops.logical_and(
                ops.lt(reduce_index, offset),
                ops.lt(ops.add(reduce_index, offset), reduce_extent),
            )
            seq.append(IfThenElse(simplify_expr(active), Store(buf, combined, slot)))
            seq.append(sync)
            align = offset
        seq.append(Store(result, Load(dtype, buf, base), ops.const(0, "int32")))
        seq.append(sync)
        logger.debug(
            "lower_thread_allreduce: %s over %d threads in %d groups",
            buf.name,
            reduce_extent,
            group_extent,
        )
        stmt: Stmt = Allocate(
            buf,
            dtype,
            (ops.const(reduce_extent * group_extent, "int32"),),
            ops.const(True, "bool"),
            make_seq(*seq),
        )
        return AttrStmt(buf, "storage_scope", StringImm("shared"), stmt)


def lower_thread_allreduce(func: LoweredFunc, warp_size: int) -> LoweredFunc:
    body = _AllreduceLowering(func.name, warp_size).mutate(func.body)
    if body is func.body:
        return func
    return replace(func, body=body)
