#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Host and device separation of the mixed functions, and lowering of the
host side builtins.
"""

from dataclasses import replace
import logging

from ..ir.expr import PrimExpr, Var, Call, IterVar, StringImm, HANDLE
from ..ir.stmt import Stmt, AttrStmt, LetStmt, Allocate, Evaluate, make_seq
from ..ir.function import FuncType, LoweredFunc
from ..ir.functor import IRMutator, free_vars, post_order_visit, struct_key
from ..ir.arith import simplify_expr
from ..ir import op as ops

__all__ = [
    "split_host_device",
    "bind_device_type",
    "lower_builtin",
    "combine_context_call",
]

logger = logging.getLogger(__name__)

# Allocations up to this size stay on the stack.
_MAX_STACK_ALLOC_BYTES = 1024


class _DeviceExtractor(IRMutator):
    def __init__(self, func: LoweredFunc) -> None:
        self.func = func
        self.devices: list[LoweredFunc] = []

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key != "thread_extent":
            return self.generic_mutate(node)
        return self._split(node)

    def _split(self, kernel: AttrStmt) -> Stmt:
        name = f"{self.func.name}_kernel{len(self.devices)}"
        params = free_vars(kernel)
        params = [v for v in params if v.dtype.is_handle] + [
            v for v in params if not v.dtype.is_handle
        ]
        axes: dict[str, IterVar] = {}
        extents: dict[str, PrimExpr] = {}

        def collect(node) -> None:
            if isinstance(node, AttrStmt) and node.attr_key == "thread_extent":
                tag = node.node.thread_tag
                if tag in extents:
                    extents[tag] = ops.maximum(extents[tag], node.value)
                else:
                    axes[tag] = node.node
                    extents[tag] = node.value

        post_order_visit(kernel, collect)
        launch = [simplify_expr(extents[tag]) for tag in axes]
        handle_data_type = {
            var: dtype
            for var, dtype in self.func.handle_data_type.items()
            if var in params
        }
        device = LoweredFunc(
            name,
            tuple(params),
            kernel,
            FuncType.DEVICE,
            tuple(axes.values()),
            handle_data_type,
            self.func.is_restricted,
        )
        self.devices.append(device)
        logger.debug(
            "split_host_device: %s launched over %s",
            name,
            ", ".join(f"{tag}={ext}" for tag, ext in zip(axes, launch)),
        )
        call = ops.call_intrin(
            "int32", "xte_call_device", StringImm(name), *params, *launch
        )
        return Evaluate(call)


def split_host_device(func: LoweredFunc) -> list[LoweredFunc]:
    """
    Splits the outermost thread regions of ``func`` into device
    functions launched from the host function.

    Returns:
        The host function followed by the device functions
    """
    extractor = _DeviceExtractor(func)
    body = extractor.mutate(func.body)
    host = replace(func, body=body, func_type=FuncType.HOST)
    return [host] + extractor.devices


def bind_device_type(func: LoweredFunc, device_type: int) -> LoweredFunc:
    body = AttrStmt(
        StringImm(func.name),
        "device_type",
        ops.const(device_type, "int32"),
        func.body,
    )
    return replace(func, body=body)


class _BuiltinLowering(IRMutator):
    def __init__(self) -> None:
        self.device_type: PrimExpr = ops.const(1, "int32")
        self.scopes: dict[Var, str] = {}

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key == "device_type":
            saved = self.device_type
            self.device_type = node.value
            try:
                return self.generic_mutate(node)
            finally:
                self.device_type = saved
        if node.attr_key == "storage_scope":
            self.scopes[node.node] = node.value.value
        return self.generic_mutate(node)

    def mutate_allocate(self, node: Allocate) -> Stmt:
        body = self.mutate(node.body)
        if self.scopes.get(node.buffer_var, "global") not in ("global", ""):
            return replace(node, body=body)
        nbytes: PrimExpr = ops.const(node.dtype.bytes * node.dtype.lanes, "int32")
        for extent in node.extents:
            nbytes = ops.mul(nbytes, extent)
        nbytes = simplify_expr(nbytes)
        if ops.is_const_int(nbytes) and nbytes.value <= _MAX_STACK_ALLOC_BYTES:
            return replace(node, body=body)
        logger.debug(
            "lower_builtin: workspace for %s of %s bytes", node.buffer_var.name, nbytes
        )
        alloc = ops.call_intrin(
            HANDLE,
            "xte_alloc_workspace",
            self.device_type,
            ops.cast("int64", nbytes),
            ops.const(int(node.dtype.code), "int32"),
            ops.const(node.dtype.bits, "int32"),
        )
        free = ops.call_intrin(
            "int32", "xte_free_workspace", self.device_type, node.buffer_var
        )
        return LetStmt(node.buffer_var, alloc, make_seq(body, Evaluate(free)))

    def mutate_call(self, node: Call) -> PrimExpr:
        node = self.generic_mutate(node)
        if not node.is_intrinsic("xte_call_device"):
            return node
        func = ops.call_intrin(
            HANDLE,
            "xte_thread_context",
            ops.call_intrin(HANDLE, "xte_get_func_from_env", node.args[0]),
        )
        return ops.call_intrin(
            node.dtype, "xte_call_packed_lowered", func, *node.args[1:]
        )


def lower_builtin(func: LoweredFunc) -> LoweredFunc:
    """
    Lowers the host builtins: large or dynamic global allocations use
    the device workspace and device launches become packed calls.
    """
    return replace(func, body=_BuiltinLowering().mutate(func.body))


class _ContextCallCombiner(IRMutator):
    def __init__(self) -> None:
        self.cache: dict[object, tuple[Var, Call]] = {}

    def mutate_call(self, node: Call) -> PrimExpr:
        node = self.generic_mutate(node)
        if not node.is_intrinsic("xte_thread_context"):
            return node
        key = struct_key(node.args)
        if key not in self.cache:
            self.cache[key] = (Var(f"ctx_cache_{len(self.cache)}", HANDLE), node)
        return self.cache[key][0]


def combine_context_call(func: LoweredFunc) -> LoweredFunc:
    """Fetches every distinct thread context once at the function entry."""
    combiner = _ContextCallCombiner()
    body = combiner.mutate(func.body)
    for var, call in reversed(list(combiner.cache.values())):
        body = LetStmt(var, call, body)
    return replace(func, body=body)
