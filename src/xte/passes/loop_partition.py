#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Loop partitioning on ``likely`` guards.

A loop whose body is guarded by ``likely(v + rest < bound)``, ``v``
being the loop variable, is split at ``-rest + bound`` (clamped to the
loop range) into a first loop without the guard and a remainder loop
keeping it. Loops with a constant extent are only partitioned when
requested.
"""

import logging

from ..ir.expr import PrimExpr, Var, Call, LT
from ..ir.stmt import Stmt, For, IfThenElse, make_seq
from ..ir.functor import IRMutator, post_order_visit, substitute
from ..ir.arith import linear_coefficient, simplify_expr
from ..ir import op as ops

__all__ = [
    "loop_partition",
]

logger = logging.getLogger(__name__)


def _split_point(condition: PrimExpr, var: Var) -> PrimExpr | None:
    """Returns the first value of ``var`` for which ``condition`` fails."""
    if not (isinstance(condition, Call) and condition.is_intrinsic("likely")):
        return None
    cmp = condition.args[0]
    if not isinstance(cmp, LT):
        return None
    linear = linear_coefficient(simplify_expr(ops.sub(cmp.a, cmp.b)), var)
    if linear is None or linear[0] != 1:
        return None
    return simplify_expr(ops.neg(linear[1]))


class _GuardRemover(IRMutator):
    def __init__(self, var: Var) -> None:
        self.var = var

    def mutate_if_then_else(self, node: IfThenElse) -> Stmt:
        if _split_point(node.condition, self.var) is not None:
            return self.mutate(node.then_case)
        return self.generic_mutate(node)


class _LoopPartitioner(IRMutator):
    def __init__(self, partition_const_loop: bool) -> None:
        self.partition_const_loop = partition_const_loop

    def mutate_for(self, node: For) -> Stmt:
        node = self.generic_mutate(node)
        if ops.is_const(node.extent) and not self.partition_const_loop:
            return node
        points: list[PrimExpr] = []

        def collect(child) -> None:
            if isinstance(child, IfThenElse):
                point = _split_point(child.condition, node.loop_var)
                if point is not None:
                    points.append(point)

        post_order_visit(node.body, collect)
        if not points:
            return node
        split = points[0]
        for point in points[1:]:
            split = ops.minimum(split, point)
        end = ops.add(node.min, node.extent)
        split = simplify_expr(ops.maximum(node.min, ops.minimum(split, end)))
        logger.debug(
            "loop_partition: %s split at %s", node.loop_var.name, split
        )
        body = _GuardRemover(node.loop_var).mutate(node.body)
        first_var = Var(node.loop_var.name, node.loop_var.dtype)
        first = For(
            first_var,
            node.min,
            simplify_expr(ops.sub(split, node.min)),
            node.for_type,
            substitute(body, {node.loop_var: first_var}),
        )
        rest = For(
            node.loop_var,
            split,
            simplify_expr(ops.sub(end, split)),
            node.for_type,
            node.body,
        )
        return make_seq(first, rest)


def loop_partition(stmt: Stmt, partition_const_loop: bool = False) -> Stmt:
    return _LoopPartitioner(partition_const_loop).mutate(stmt)
