#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
import logging

from ..errors import LoweringError
from ..ir.stmt import Stmt, For, ForType, Store, SeqStmt, Evaluate, make_seq, no_op
from ..ir.functor import IRMutator, substitute
from ..ir import op as ops

__all__ = [
    "unroll",
]

logger = logging.getLogger(__name__)


class _LoopUnroller(IRMutator):
    """
    Unrolls the loops marked unrolled, and the innermost serial loops of
    constant extent when their extent times the number of statements of
    their body stays under ``max_step``, or their extent under
    ``max_extent``, up to ``max_depth`` nested unrolled loops.
    """

    def __init__(
        self, max_step: int, max_depth: int, max_extent: int, explicit: bool
    ) -> None:
        self.max_step = max_step
        self.max_depth = max_depth
        self.max_extent = max_extent
        self.explicit = explicit
        self.step_count = 0
        self.unroll_depth = 0
        self.normal_loop_depth = 0

    def mutate_for(self, node: For) -> Stmt:
        node = self.generic_mutate(node)
        value = node.extent.value if ops.is_const_int(node.extent) else -1
        auto_unroll = (
            node.for_type == ForType.SERIAL
            and value >= 0
            and self.normal_loop_depth == 0
            and self.unroll_depth <= self.max_depth
        )
        auto_unroll = auto_unroll and (
            value * self.step_count <= self.max_step or value <= self.max_extent
        )
        if node.for_type == ForType.UNROLLED:
            if value < 0:
                raise LoweringError(
                    f"Cannot unroll non-constant loop {node.loop_var.name}",
                    loop=node.loop_var.name,
                )
            auto_unroll = True
        if auto_unroll:
            self.step_count *= value
            self.unroll_depth += 1
        else:
            self.normal_loop_depth += 1
        if (auto_unroll and self.explicit) or (
            0 <= value <= self.max_extent and self.max_extent == 1
        ):
            logger.debug("unroll: %s unrolled %d times", node.loop_var.name, value)
            return self._unroll(node, value)
        if auto_unroll and node.for_type != ForType.UNROLLED:
            return For(
                node.loop_var, node.min, node.extent, ForType.UNROLLED, node.body
            )
        return node

    def mutate_store(self, node: Store) -> Stmt:
        self.step_count += 1
        return self.generic_mutate(node)

    def mutate_evaluate(self, node: Evaluate) -> Stmt:
        self.step_count += 1
        return self.generic_mutate(node)

    def mutate_seq_stmt(self, node: SeqStmt) -> Stmt:
        stmts = [self.mutate(node.seq[0])]
        for stmt in node.seq[1:]:
            saved = (self.step_count, self.unroll_depth, self.normal_loop_depth)
            self.step_count = self.unroll_depth = self.normal_loop_depth = 0
            stmts.append(self.mutate(stmt))
            self.step_count += saved[0]
            self.unroll_depth = max(self.unroll_depth, saved[1])
            self.normal_loop_depth = max(self.normal_loop_depth, saved[2])
        if all(new is old for new, old in zip(stmts, node.seq)):
            return node
        return make_seq(*stmts)

    @staticmethod
    def _unroll(node: For, value: int) -> Stmt:
        if value == 0:
            return no_op()
        steps = [
            substitute(
                node.body,
                {node.loop_var: ops.add(node.min, ops.const(i, node.loop_var.dtype))},
            )
            for i in range(value)
        ]
        return make_seq(*steps)


def unroll(
    stmt: Stmt,
    max_step: int = 0,
    max_depth: int = 8,
    max_extent: int = 0,
    explicit: bool = True,
) -> Stmt:
    return _LoopUnroller(max_step, max_depth, max_extent, explicit).mutate(stmt)
