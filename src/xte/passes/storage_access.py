#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from ..ir.expr import PrimExpr, Call, Load, Select, HANDLE
from ..ir.stmt import Stmt
from ..ir.functor import IRMutator, post_order_visit
from ..ir import op as ops

__all__ = [
    "lower_storage_access_info",
    "rewrite_unsafe_select",
]


class _AccessPtrLowering(IRMutator):
    def mutate_call(self, node: Call) -> PrimExpr:
        node = self.generic_mutate(node)
        if not node.is_intrinsic("xte_access_ptr"):
            return node
        dtype_hint, data, offset = node.args[0], node.args[1], node.args[2]
        return ops.call_pure_intrin(
            HANDLE, "xte_address_of", Load(dtype_hint.dtype, data, offset)
        )


def lower_storage_access_info(stmt: Stmt) -> Stmt:
    """Replaces the buffer access pointers by the address of their first element."""
    return _AccessPtrLowering().mutate(stmt)


def _has_load(expr: PrimExpr) -> bool:
    found = False

    def check(node) -> None:
        nonlocal found
        if isinstance(node, Load):
            found = True

    post_order_visit(expr, check)
    return found


class _UnsafeSelectRewriter(IRMutator):
    def mutate_select(self, node: Select) -> PrimExpr:
        node = self.generic_mutate(node)
        if not (_has_load(node.true_value) or _has_load(node.false_value)):
            return node
        return ops.call_intrin(
            node.dtype,
            "xte_if_then_else",
            node.condition,
            node.true_value,
            node.false_value,
        )


def rewrite_unsafe_select(stmt: Stmt) -> Stmt:
    """
    Selects whose branches read memory become lazy conditionals, only the
    selected branch being evaluated.
    """
    return _UnsafeSelectRewriter().mutate(stmt)
