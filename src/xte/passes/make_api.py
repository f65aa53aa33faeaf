#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Packed function API: the lowered body is wrapped in the prologue
reading its arguments from the packed argument list.

Every argument variable, buffer data handle, symbolic shape, stride or
element offset is bound by a LetStmt to the corresponding argument
intrinsic the first time it is met, the following occurrences and the
constant ones being checked by AssertStmts.
"""

from collections.abc import Sequence
import logging

from ..errors import LoweringError
from ..ir.expr import PrimExpr, Var, StringImm, HANDLE
from ..ir.stmt import Stmt, LetStmt, AssertStmt, AttrStmt
from ..ir.buffer import Buffer
from ..ir.function import FuncType, LoweredFunc
from ..ir.functor import free_vars, post_order_visit
from ..ir.arith import simplify_expr
from ..ir import op as ops

__all__ = [
    "make_api",
]

logger = logging.getLogger(__name__)


class _ArgBinder:
    def __init__(self, name: str) -> None:
        self.name = name
        self.defs: list[tuple[Var, PrimExpr]] = []
        self.asserts: list[tuple[PrimExpr, str]] = []
        self.bound: set[Var] = set()

    def bind(self, expr: PrimExpr, value: PrimExpr, what: str) -> None:
        if isinstance(expr, Var) and expr not in self.bound:
            self.bound.add(expr)
            self.defs.append((expr, ops.cast(expr.dtype, value)))
            return
        self.check(
            ops.eq(ops.cast(expr.dtype, value), expr),
            f"{self.name}: Argument {what} has an unsatisfied constraint",
        )

    def check(self, condition: PrimExpr, message: str) -> None:
        condition = simplify_expr(condition)
        if ops.is_const(condition) and condition.value:
            return
        self.asserts.append((condition, message))

    def bind_buffer(self, buffer: Buffer, idx: int) -> None:
        self.bind(
            buffer.data,
            ops.call_intrin(HANDLE, "xte_arg_data", idx),
            f"{buffer.name}.data",
        )
        self.check(
            ops.eq(ops.call_intrin("int32", "xte_arg_ndim", idx), buffer.ndim),
            f"{self.name}: arg{idx}.ndim is expected to equal {buffer.ndim}",
        )
        dtype = buffer.dtype
        type_ok = ops.logical_and(
            ops.logical_and(
                ops.eq(
                    ops.call_intrin("uint8", "xte_arg_type_code", idx), int(dtype.code)
                ),
                ops.eq(ops.call_intrin("uint8", "xte_arg_type_bits", idx), dtype.bits),
            ),
            ops.eq(ops.call_intrin("uint16", "xte_arg_type_lanes", idx), dtype.lanes),
        )
        self.check(
            type_ok, f"{self.name}: Argument arg{idx}.dtype expected to be {dtype}"
        )
        for dim, extent in enumerate(buffer.shape):
            self.bind(
                extent,
                ops.call_intrin("int32", "xte_arg_shape", idx, dim),
                f"{buffer.name}.shape[{dim}]",
            )
        if buffer.strides:
            for dim, stride in enumerate(buffer.strides):
                self.bind(
                    stride,
                    ops.call_intrin("int32", "xte_arg_stride", idx, dim),
                    f"{buffer.name}.strides[{dim}]",
                )
        else:
            expected: PrimExpr = ops.const(1, "int32")
            for dim in reversed(range(buffer.ndim)):
                stride = ops.call_intrin("int32", "xte_arg_stride", idx, dim)
                self.check(
                    ops.eq(stride, expected),
                    f"{self.name}: Argument {buffer.name}.strides: "
                    "expected to be compact array",
                )
                expected = ops.mul(expected, buffer.shape[dim])
        self.bind(
            buffer.elem_offset,
            ops.call_intrin("int32", "xte_arg_elem_offset", idx),
            f"{buffer.name}.elem_offset",
        )


def _has_thread_extent(stmt: Stmt) -> bool:
    found = False

    def check(node) -> None:
        nonlocal found
        if isinstance(node, AttrStmt) and node.attr_key == "thread_extent":
            found = True

    post_order_visit(stmt, check)
    return found


def make_api(
    body: Stmt,
    name: str,
    args: Sequence[Var | Buffer],
    is_restricted: bool = True,
) -> LoweredFunc:
    """
    Returns the host (or mixed host and device) function of ``body``
    taking ``args`` through the packed calling convention.
    """
    binder = _ArgBinder(name)
    binder.check(
        ops.eq(ops.call_intrin("int32", "xte_num_args"), len(args)),
        f"{name}: num_args should be {len(args)}",
    )
    handle_data_type = {}
    for idx, arg in enumerate(args):
        if isinstance(arg, Buffer):
            binder.bind_buffer(arg, idx)
            handle_data_type[arg.data] = arg.dtype
        elif isinstance(arg, Var):
            binder.bind(arg, ops.call_intrin(arg.dtype, "xte_arg_value", idx), arg.name)
        else:
            raise LoweringError(
                f"{name}: unsupported argument type {type(arg).__name__}",
                function_name=name,
            )
    stmt = body
    for condition, message in reversed(binder.asserts):
        stmt = AssertStmt(condition, StringImm(message), stmt)
    for var, value in reversed(binder.defs):
        stmt = LetStmt(var, value, stmt)
    unbound = free_vars(stmt)
    if unbound:
        names = ", ".join(var.name for var in unbound)
        raise LoweringError(
            f"Not all Vars are passed in api_args: {names}",
            function_name=name,
            unbound=names,
        )
    func_type = FuncType.MIXED if _has_thread_extent(body) else FuncType.HOST
    logger.debug("make_api: %s as %s function", name, func_type.name.lower())
    return LoweredFunc(
        name,
        tuple(args),
        stmt,
        func_type,
        handle_data_type=handle_data_type,
        is_restricted=is_restricted,
    )
