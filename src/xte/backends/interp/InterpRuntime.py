#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Statement interpreter of the lowered functions.

Host functions run sequentially over numpy arrays. Device functions
are simulated over their launch grid: the blocks run one after the
other and the threads of a block run as generators, every thread
running up to its next barrier before the next thread is resumed.
"""

from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple
import itertools
import logging

import numpy as np

from ...errors import BackendCallFailure, UnsupportedOperation
from ...ir.dtype import DataType, TypeCode
from ...ir.expr import PrimExpr, Var, Call, CallType, IterVar, Load
from ...ir.stmt import (
    Stmt,
    LetStmt,
    AttrStmt,
    AssertStmt,
    For,
    Store,
    Allocate,
    SeqStmt,
    IfThenElse,
    Evaluate,
)
from ...ir.function import FuncType, LoweredFunc
from ...ir.node import Node
from ...ir.functor import post_order_visit
from ...passes.intrin import intrinsic_base

__all__ = [
    "Interpreter",
    "Pointer",
    "unsupported_nodes",
]

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Callable[..., Any]]


class Pointer(NamedTuple):
    """Address of an element of an interpreter buffer."""

    array: np.ndarray
    offset: Any


def _cast(value: Any, dtype: DataType) -> Any:
    if dtype.is_handle:
        return value
    np_dtype = dtype.element_of().numpy_dtype
    if dtype.lanes > 1:
        return np.broadcast_to(np.asarray(value), (dtype.lanes,)).astype(np_dtype)
    if isinstance(value, np.ndarray):
        if value.ndim > 0:
            return value.astype(np_dtype)
        value = value[()]
    return np_dtype.type(value)


def _trunc_div(a: Any, b: Any) -> Any:
    q = np.floor_divide(a, b)
    r = a - q * b
    return np.where((r != 0) & ((a < 0) != (b < 0)), q + 1, q)


def _round(x: Any) -> Any:
    return np.sign(x) * np.floor(np.abs(x) + 0.5)


def _popcount(x: Any) -> Any:
    values = np.asarray(x)
    mask = (1 << (values.dtype.itemsize * 8)) - 1
    counts = [bin(int(v) & mask).count("1") for v in values.reshape(-1)]
    return np.asarray(counts).reshape(values.shape)


_MATH = {
    "exp": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
    "tanh": np.tanh,
    "pow": np.power,
    "fabs": np.abs,
    "floor": np.floor,
    "ceil": np.ceil,
    "trunc": np.trunc,
    "round": _round,
    "popcount": _popcount,
    "sigmoid": lambda x: 1 / (1 + np.exp(-x)),
}

_BINARY = {
    "add": lambda a, b: a + b,
    "sub": lambda a, b: a - b,
    "mul": lambda a, b: a * b,
    "min": np.minimum,
    "max": np.maximum,
}

_COMPARE = {
    "eq": np.equal,
    "ne": np.not_equal,
    "lt": np.less,
    "le": np.less_equal,
    "gt": np.greater,
    "ge": np.greater_equal,
    "and": np.logical_and,
    "or": np.logical_or,
}

_UNSUPPORTED = ("provide", "realize", "prefetch", "reduce")


@dataclass
class _Frame:
    """State of one call of a host function."""

    args: Sequence[Any]
    workspaces: dict[int, np.ndarray] = field(default_factory=dict)


@dataclass
class _Context:
    """State of one thread of execution."""

    frame: _Frame
    env: dict[Var, Any]
    scopes: dict[Var, str]
    coords: dict[str, int] | None = None
    block_allocs: dict[Allocate, np.ndarray] | None = None
    launch_allocs: dict[Allocate, np.ndarray] | None = None

    @property
    def on_device(self) -> bool:
        return self.coords is not None


class Interpreter:
    """Executes one lowered function.

    ``resolve`` returns the launcher of a device function from its name,
    it is used by the host functions launching kernels. The interpreter
    keeps no state between calls.
    """

    def __init__(self, func: LoweredFunc, resolve: Resolver | None = None) -> None:
        self.func = func
        self.resolve = resolve

    @property
    def name(self) -> str:
        return self.func.name

    def _fail(self, message: str) -> BackendCallFailure:
        return BackendCallFailure(message, self.name)

    def run_host(self, args: Sequence[Any]) -> None:
        assert self.func.func_type == FuncType.HOST, (
            f"{self.name} is not a host function"
        )
        frame = _Frame(args)
        ctx = _Context(frame, {}, {})
        try:
            for _ in self.exec(self.func.body, ctx):
                pass
        finally:
            frame.workspaces.clear()

    def run_device(self, params: Sequence[Any], launch: Sequence[Any]) -> None:
        """Runs the device function over the launch grid.

        Args:
            params: the values of the function parameters
            launch: the extent of every thread axis of the function
        """
        func = self.func
        assert len(params) == len(func.args), (
            f"{self.name}: expected {len(func.args)} parameters, got {len(params)}"
        )
        assert len(launch) == len(func.thread_axis), (
            f"{self.name}: expected {len(func.thread_axis)} launch extents"
        )
        extents = {
            axis.thread_tag: int(extent)
            for axis, extent in zip(func.thread_axis, launch)
        }
        blocks = [tag for tag in extents if tag.startswith("blockIdx")]
        threads = [tag for tag in extents if tag not in blocks]
        frame = _Frame(())
        env = dict(zip(func.args, params))
        launch_allocs: dict[Allocate, np.ndarray] = {}
        logger.debug("interp: launch %s over %s", self.name, extents)
        try:
            for block in itertools.product(*(range(extents[t]) for t in blocks)):
                block_allocs: dict[Allocate, np.ndarray] = {}
                running = []
                for thread in itertools.product(*(range(extents[t]) for t in threads)):
                    coords = dict(zip(blocks, block))
                    coords.update(zip(threads, thread))
                    ctx = _Context(
                        frame, dict(env), {}, coords, block_allocs, launch_allocs
                    )
                    running.append(self.exec(func.body, ctx))
                self._run_block(running)
        finally:
            frame.workspaces.clear()

    @staticmethod
    def _run_block(threads: list[Iterator[None]]) -> None:
        while threads:
            waiting = []
            for thread in threads:
                try:
                    next(thread)
                except StopIteration:
                    continue
                waiting.append(thread)
            threads = waiting

    # Statements, run as generators yielding at the barriers.

    def exec(self, stmt: Stmt, ctx: _Context) -> Iterator[None]:
        kind = stmt.kind.value
        if kind in _UNSUPPORTED:
            raise UnsupportedOperation(
                f"{self.name}: {kind} statement can not be interpreted",
                function_name=self.name,
            )
        return getattr(self, f"exec_{kind}")(stmt, ctx)

    def exec_let_stmt(self, stmt: LetStmt, ctx: _Context) -> Iterator[None]:
        ctx.env[stmt.var] = self.eval(stmt.value, ctx)
        try:
            yield from self.exec(stmt.body, ctx)
        finally:
            del ctx.env[stmt.var]

    def exec_attr_stmt(self, stmt: AttrStmt, ctx: _Context) -> Iterator[None]:
        if stmt.attr_key == "storage_scope":
            ctx.scopes[stmt.node] = stmt.value.value
        elif stmt.attr_key == "thread_extent":
            yield from self._exec_thread(stmt, ctx)
            return
        yield from self.exec(stmt.body, ctx)

    def _exec_thread(self, stmt: AttrStmt, ctx: _Context) -> Iterator[None]:
        iv: IterVar = stmt.node
        if not ctx.on_device:
            raise self._fail(f"thread region {iv.thread_tag} outside of a device")
        assert ctx.coords is not None
        coord = ctx.coords.get(iv.thread_tag)
        if coord is None:
            raise self._fail(f"thread axis {iv.thread_tag} is not launched")
        if coord >= int(self.eval(stmt.value, ctx)):
            return
        ctx.env[iv.var] = np.int32(coord)
        try:
            yield from self.exec(stmt.body, ctx)
        finally:
            del ctx.env[iv.var]

    def exec_assert_stmt(self, stmt: AssertStmt, ctx: _Context) -> Iterator[None]:
        if not self.eval(stmt.condition, ctx):
            raise self._fail(str(self.eval(stmt.message, ctx)))
        yield from self.exec(stmt.body, ctx)

    def exec_for(self, stmt: For, ctx: _Context) -> Iterator[None]:
        start = int(self.eval(stmt.min, ctx))
        extent = int(self.eval(stmt.extent, ctx))
        var = stmt.loop_var
        try:
            for value in range(start, start + extent):
                ctx.env[var] = _cast(value, var.dtype)
                yield from self.exec(stmt.body, ctx)
        finally:
            ctx.env.pop(var, None)

    def exec_store(self, stmt: Store, ctx: _Context) -> Iterator[None]:
        array = self._buffer(stmt.buffer_var, ctx)
        index = self.eval(stmt.index, ctx)
        value = self.eval(stmt.value, ctx)
        if stmt.predicate is not None:
            mask = np.asarray(self.eval(stmt.predicate, ctx), dtype=bool)
            index = np.asarray(index)[mask]
            value = np.broadcast_to(value, mask.shape)[mask]
        array[self._checked_index(stmt.buffer_var, array, index)] = value
        yield from ()

    def exec_allocate(self, stmt: Allocate, ctx: _Context) -> Iterator[None]:
        size = stmt.dtype.lanes
        for extent in stmt.extents:
            size *= int(self.eval(extent, ctx))
        scope = ctx.scopes.get(stmt.buffer_var, "global")
        dtype = stmt.dtype.element_of().numpy_dtype
        allocs = None
        if ctx.on_device and scope == "shared":
            allocs = ctx.block_allocs
        elif ctx.on_device and scope in ("global", ""):
            allocs = ctx.launch_allocs
        if allocs is None:
            array = np.zeros(size, dtype=dtype)
        else:
            if stmt not in allocs:
                allocs[stmt] = np.zeros(size, dtype=dtype)
            array = allocs[stmt]
        ctx.env[stmt.buffer_var] = array
        try:
            yield from self.exec(stmt.body, ctx)
        finally:
            ctx.env.pop(stmt.buffer_var, None)

    def exec_seq_stmt(self, stmt: SeqStmt, ctx: _Context) -> Iterator[None]:
        for item in stmt.seq:
            yield from self.exec(item, ctx)

    def exec_if_then_else(self, stmt: IfThenElse, ctx: _Context) -> Iterator[None]:
        if self.eval(stmt.condition, ctx):
            yield from self.exec(stmt.then_case, ctx)
        elif stmt.else_case is not None:
            yield from self.exec(stmt.else_case, ctx)

    def exec_evaluate(self, stmt: Evaluate, ctx: _Context) -> Iterator[None]:
        value = stmt.value
        if isinstance(value, Call) and value.is_intrinsic("xte_storage_sync"):
            yield
            return
        self.eval(value, ctx)

    def _buffer(self, var: Var, ctx: _Context) -> np.ndarray:
        array = ctx.env.get(var)
        if not isinstance(array, np.ndarray):
            raise self._fail(f"{var.name} is not bound to a buffer")
        return array

    def _checked_index(self, var: Var, array: np.ndarray, index: Any) -> Any:
        flat = np.atleast_1d(index)
        outside = (flat < 0) | (flat >= array.size)
        if outside.any():
            raise self._fail(
                f"index {int(flat[outside][0])} is out of bounds "
                f"of {var.name} of size {array.size}"
            )
        return index

    # Expressions

    def eval(self, expr: PrimExpr, ctx: _Context) -> Any:
        kind = expr.kind.value
        if kind in _BINARY:
            a, b = self.eval(expr.a, ctx), self.eval(expr.b, ctx)
            return _cast(_BINARY[kind](a, b), expr.dtype)
        if kind in _COMPARE:
            a, b = self.eval(expr.a, ctx), self.eval(expr.b, ctx)
            return _COMPARE[kind](a, b)
        if kind in _UNSUPPORTED:
            raise UnsupportedOperation(
                f"{self.name}: {kind} expression can not be interpreted",
                function_name=self.name,
            )
        return getattr(self, f"eval_{kind}")(expr, ctx)

    def eval_var(self, expr: Var, ctx: _Context) -> Any:
        if expr not in ctx.env:
            raise self._fail(f"unbound variable {expr.name}")
        return ctx.env[expr]

    def eval_constant(self, expr: PrimExpr, ctx: _Context) -> Any:
        return _cast(expr.value, expr.dtype)

    def eval_string_imm(self, expr: PrimExpr, ctx: _Context) -> Any:
        return expr.value

    def eval_cast(self, expr: PrimExpr, ctx: _Context) -> Any:
        return _cast(self.eval(expr.value, ctx), expr.dtype)

    def eval_div(self, expr: PrimExpr, ctx: _Context) -> Any:
        a, b = self.eval(expr.a, ctx), self.eval(expr.b, ctx)
        if expr.dtype.is_float:
            return _cast(a / b, expr.dtype)
        return _cast(_trunc_div(a, b), expr.dtype)

    def eval_mod(self, expr: PrimExpr, ctx: _Context) -> Any:
        a, b = self.eval(expr.a, ctx), self.eval(expr.b, ctx)
        if expr.dtype.is_float:
            return _cast(np.fmod(a, b), expr.dtype)
        return _cast(a - _trunc_div(a, b) * b, expr.dtype)

    def eval_not(self, expr: PrimExpr, ctx: _Context) -> Any:
        return np.logical_not(self.eval(expr.a, ctx))

    def eval_select(self, expr: PrimExpr, ctx: _Context) -> Any:
        condition = self.eval(expr.condition, ctx)
        true_value = self.eval(expr.true_value, ctx)
        false_value = self.eval(expr.false_value, ctx)
        return _cast(np.where(condition, true_value, false_value), expr.dtype)

    def eval_let(self, expr: PrimExpr, ctx: _Context) -> Any:
        saved = ctx.env.get(expr.var, _UNBOUND)
        ctx.env[expr.var] = self.eval(expr.value, ctx)
        try:
            return self.eval(expr.body, ctx)
        finally:
            if saved is _UNBOUND:
                del ctx.env[expr.var]
            else:
                ctx.env[expr.var] = saved

    def eval_load(self, expr: Load, ctx: _Context) -> Any:
        array = self._buffer(expr.buffer_var, ctx)
        index = self.eval(expr.index, ctx)
        if expr.predicate is not None:
            mask = np.asarray(self.eval(expr.predicate, ctx), dtype=bool)
            index = np.where(mask, index, 0)
        index = self._checked_index(expr.buffer_var, array, index)
        return _cast(array[index], expr.dtype)

    def eval_ramp(self, expr: PrimExpr, ctx: _Context) -> Any:
        base = self.eval(expr.base, ctx)
        stride = self.eval(expr.stride, ctx)
        return _cast(base + stride * np.arange(expr.lanes), expr.dtype)

    def eval_broadcast(self, expr: PrimExpr, ctx: _Context) -> Any:
        return _cast(self.eval(expr.value, ctx), expr.dtype)

    def eval_call(self, expr: Call, ctx: _Context) -> Any:
        if expr.call_type == CallType.HALIDE:
            raise UnsupportedOperation(
                f"{self.name}: tensor access {expr.name} can not be interpreted",
                function_name=self.name,
            )
        if expr.name == "xte_if_then_else":
            condition, true_value, false_value = expr.args
            branch = true_value if self.eval(condition, ctx) else false_value
            return self.eval(branch, ctx)
        if expr.name == "xte_address_of":
            load = expr.args[0]
            assert isinstance(load, Load), f"address of a non load: {load}"
            array = self._buffer(load.buffer_var, ctx)
            return Pointer(array, self.eval(load.index, ctx))
        args = [self.eval(arg, ctx) for arg in expr.args]
        intrinsic = _INTRINSICS.get(expr.name)
        if intrinsic is not None:
            return intrinsic(self, ctx, expr, *args)
        math = _MATH.get(intrinsic_base(expr.name))
        if math is None:
            raise UnsupportedOperation(
                f"{self.name}: unknown function {expr.name}",
                function_name=self.name,
            )
        return _cast(math(*args), expr.dtype)

    # Intrinsics

    def _packed(self, ctx: _Context, idx: Any) -> Any:
        args = ctx.frame.args
        if not 0 <= int(idx) < len(args):
            raise self._fail(f"num_args should be greater than {int(idx)}")
        return args[int(idx)]

    def _array_arg(self, ctx: _Context, idx: Any) -> np.ndarray:
        value = self._packed(ctx, idx)
        if not isinstance(value, np.ndarray):
            raise self._fail(
                f"Argument arg{int(idx)} is expected to be an array, "
                f"got {type(value).__name__}"
            )
        return value

    def _arg_shape(self, ctx: _Context, idx: Any, dim: Any) -> int:
        array = self._array_arg(ctx, idx)
        if int(dim) >= array.ndim:
            raise self._fail(
                f"arg{int(idx)}.ndim is expected to be greater than {int(dim)}"
            )
        return array.shape[int(dim)]

    def _arg_stride(self, ctx: _Context, idx: Any, dim: Any) -> int:
        array = self._array_arg(ctx, idx)
        if int(dim) >= array.ndim:
            raise self._fail(
                f"arg{int(idx)}.ndim is expected to be greater than {int(dim)}"
            )
        return array.strides[int(dim)] // array.itemsize

    def _alloc_workspace(
        self, ctx: _Context, device: Any, nbytes: Any, code: Any, bits: Any
    ) -> np.ndarray:
        dtype = DataType(TypeCode(int(code)), int(bits))
        array = np.zeros(int(nbytes) // dtype.bytes, dtype=dtype.numpy_dtype)
        ctx.frame.workspaces[id(array)] = array
        return array

    def _free_workspace(self, ctx: _Context, device: Any, array: Any) -> int:
        if ctx.frame.workspaces.pop(id(array), None) is None:
            raise self._fail("free of a workspace not allocated")
        return 0

    def _get_func(self, ctx: _Context, name: str) -> Callable[..., Any]:
        if self.resolve is None:
            raise self._fail(f"no device module to find {name} in")
        return self.resolve(name)

    def _call_packed(self, ctx: _Context, func: Any, *args: Any) -> int:
        func(*args)
        return 0

    def _call_device(self, ctx: _Context, name: str, *args: Any) -> int:
        self._get_func(ctx, name)(*args)
        return 0


_UNBOUND = object()


def _arg_type(ctx_array: np.ndarray) -> DataType:
    return DataType.from_numpy(ctx_array.dtype)


_INTRINSICS: dict[str, Callable[..., Any]] = {
    "xte_num_args": lambda self, ctx, expr: np.int32(len(ctx.frame.args)),
    "xte_arg_data": lambda self, ctx, expr, i: self._array_arg(ctx, i).reshape(-1),
    "xte_arg_ndim": lambda self, ctx, expr, i: np.int32(self._array_arg(ctx, i).ndim),
    "xte_arg_type_code": lambda self, ctx, expr, i: np.uint8(
        int(_arg_type(self._array_arg(ctx, i)).code)
    ),
    "xte_arg_type_bits": lambda self, ctx, expr, i: np.uint8(
        _arg_type(self._array_arg(ctx, i)).bits
    ),
    "xte_arg_type_lanes": lambda self, ctx, expr, i: np.uint16(1),
    "xte_arg_shape": lambda self, ctx, expr, i, d: np.int32(self._arg_shape(ctx, i, d)),
    "xte_arg_stride": lambda self, ctx, expr, i, d: np.int32(
        self._arg_stride(ctx, i, d)
    ),
    "xte_arg_elem_offset": lambda self, ctx, expr, i: np.int32(0),
    "xte_arg_value": lambda self, ctx, expr, i: _cast(
        self._packed(ctx, i), expr.dtype
    ),
    "xte_storage_sync": lambda self, ctx, expr, *args: np.int32(0),
    "prefetch": lambda self, ctx, expr, *args: np.int32(0),
    "likely": lambda self, ctx, expr, value: value,
    "xte_alloc_workspace": lambda self, ctx, expr, *args: self._alloc_workspace(
        ctx, *args
    ),
    "xte_free_workspace": lambda self, ctx, expr, *args: self._free_workspace(
        ctx, *args
    ),
    "xte_get_func_from_env": lambda self, ctx, expr, name: self._get_func(ctx, name),
    "xte_thread_context": lambda self, ctx, expr, func: func,
    "xte_call_packed_lowered": lambda self, ctx, expr, *args: self._call_packed(
        ctx, *args
    ),
    "xte_call_device": lambda self, ctx, expr, *args: self._call_device(ctx, *args),
}


def unsupported_nodes(func: LoweredFunc) -> list[str]:
    """Returns the kinds of the nodes of ``func`` the interpreter can not run."""
    found: list[str] = []

    def check(node: Node) -> None:
        kind = node.kind.value
        if kind in _UNSUPPORTED and kind not in found:
            found.append(kind)
        if isinstance(node, Call) and node.call_type == CallType.HALIDE:
            if "halide call" not in found:
                found.append("halide call")

    post_order_visit(func.body, check)
    return found
