#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
import logging

from ..ir.expr import PrimExpr, Var, Call, CallType, IterVar, Range
from ..ir.stmt import Stmt, AttrStmt, For, Prefetch, make_seq
from ..ir.functor import IRMutator, post_order_visit
from ..ir.arith import eval_interval, simplify_expr
from ..ir import op as ops

__all__ = [
    "inject_prefetch",
]

logger = logging.getLogger(__name__)


def _inner_domains(stmt: Stmt) -> dict[Var, tuple[PrimExpr, PrimExpr]]:
    doms: dict[Var, tuple[PrimExpr, PrimExpr]] = {}

    def collect(node) -> None:
        if isinstance(node, For):
            doms[node.loop_var] = (
                node.min,
                ops.sub(ops.add(node.min, node.extent), 1),
            )
        elif (
            isinstance(node, AttrStmt)
            and node.attr_key in ("thread_extent", "virtual_thread")
            and isinstance(node.node, IterVar)
        ):
            doms[node.node.var] = (
                ops.const(0, node.value.dtype),
                ops.sub(node.value, 1),
            )

    post_order_visit(stmt, collect)
    return doms


class _PrefetchInjector(IRMutator):
    def __init__(self) -> None:
        self.loops: list[For] = []

    def mutate_for(self, node: For) -> Stmt:
        self.loops.append(node)
        try:
            return self.generic_mutate(node)
        finally:
            self.loops.pop()

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key != "prefetch_scope":
            return self.generic_mutate(node)
        body = self.mutate(node.body)
        assert self.loops, "prefetch outside of a loop"
        loop = self.loops[-1]
        tensor, offset = node.node, node.value
        dom_map = _inner_domains(body)
        ahead = ops.add(loop.loop_var, offset)
        dom_map[loop.loop_var] = (ahead, ahead)
        accesses: list[tuple[PrimExpr, ...]] = []

        def collect(child) -> None:
            if (
                isinstance(child, Call)
                and child.call_type == CallType.HALIDE
                and child.func is tensor.op
                and child.value_index == tensor.value_index
            ):
                accesses.append(child.args)

        post_order_visit(body, collect)
        if not accesses:
            return body
        bounds = []
        for dim in range(tensor.ndim):
            lo = hi = None
            for args in accesses:
                interval = eval_interval(args[dim], dom_map)
                if interval is None:
                    interval = (
                        ops.const(0, "int32"),
                        ops.sub(tensor.shape[dim], 1),
                    )
                lo = interval[0] if lo is None else ops.minimum(lo, interval[0])
                hi = interval[1] if hi is None else ops.maximum(hi, interval[1])
            lo = simplify_expr(lo)
            bounds.append(Range(lo, simplify_expr(ops.add(ops.sub(hi, lo), 1))))
        logger.debug("inject_prefetch: %s ahead of %s", tensor, loop.loop_var.name)
        prefetch = Prefetch(tensor.op, tensor.value_index, tensor.dtype, tuple(bounds))
        return make_seq(prefetch, body)


def inject_prefetch(stmt: Stmt) -> Stmt:
    """
    Replaces the prefetch_scope annotations of a loop by a Prefetch of
    the tensor region read ``offset`` iterations ahead.
    """
    return _PrefetchInjector().mutate(stmt)
