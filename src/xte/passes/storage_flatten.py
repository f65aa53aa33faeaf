#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Storage flattening: multi-dimensional tensor reads and writes become
loads and stores of flat buffers.

Tensors bound to an argument buffer use that buffer, other realized
tensors get a compact buffer allocated over the realized region, in
the storage scope given by their realize_scope annotation.
"""

from collections.abc import Mapping
import logging

from ..errors import LoweringError
from ..ir.expr import PrimExpr, Call, CallType, StringImm, HANDLE
from ..ir.stmt import (
    Stmt,
    AttrStmt,
    For,
    ForType,
    Provide,
    Realize,
    Prefetch,
    Allocate,
    Evaluate,
)
from ..ir.buffer import Buffer, declare_buffer
from ..ir.expr import Var
from ..ir.functor import IRMutator
from ..ir import op as ops
from ..te.tensor import Tensor

__all__ = [
    "storage_flatten",
]

logger = logging.getLogger(__name__)


class _BufferEntry:
    def __init__(self, buffer: Buffer, mins: tuple[PrimExpr, ...]) -> None:
        self.buffer = buffer
        self.mins = mins

    def relative(self, args: tuple[PrimExpr, ...]) -> list[PrimExpr]:
        if not self.mins:
            return list(args)
        return [ops.sub(arg, lo) for arg, lo in zip(args, self.mins)]


class _StorageFlattener(IRMutator):
    def __init__(
        self, extern_buffers: Mapping[Tensor, Buffer], cache_line_size: int
    ) -> None:
        self.extern_buffers = extern_buffers
        self.cache_line_size = cache_line_size
        self.buffers: dict[tuple[int, int], _BufferEntry] = {
            (tensor.op.idx, tensor.value_index): _BufferEntry(buffer, ())
            for tensor, buffer in extern_buffers.items()
        }
        self.scopes: dict[int, str] = {}

    def _entry(self, func, value_index: int) -> _BufferEntry:
        entry = self.buffers.get((func.idx, value_index))
        if entry is None:
            raise LoweringError(
                f"tensor {func.name} is read or written outside of its realize",
                tensor=func.name,
            )
        return entry

    def mutate_attr_stmt(self, node: AttrStmt) -> Stmt:
        if node.attr_key == "realize_scope":
            self.scopes[node.node.idx] = node.value.value
            return self.mutate(node.body)
        if node.attr_key == "double_buffer_scope" and not isinstance(node.node, Var):
            entry = self._entry(node.node, 0)
            return AttrStmt(
                entry.buffer.data, node.attr_key, node.value, self.mutate(node.body)
            )
        return self.generic_mutate(node)

    def mutate_realize(self, node: Realize) -> Stmt:
        key = (node.func.idx, node.value_index)
        tensor = Tensor(node.func, node.value_index)
        if tensor in self.extern_buffers:
            self.buffers[key] = _BufferEntry(self.extern_buffers[tensor], ())
            return self.mutate(node.body)
        name = node.func.name
        if node.func.num_outputs > 1:
            name = f"{name}.v{node.value_index}"
        shape = [bound.extent for bound in node.bounds]
        scope = self.scopes.get(node.func.idx, "")
        buffer = declare_buffer(
            shape, node.dtype, name, data=Var(name, HANDLE), scope=scope
        )
        self.buffers[key] = _BufferEntry(
            buffer, tuple(bound.min for bound in node.bounds)
        )
        body = self.mutate(node.body)
        logger.debug("storage_flatten: allocate %s in '%s' scope", name, scope)
        stmt: Stmt = Allocate(
            buffer.data, node.dtype, tuple(shape), node.condition, body
        )
        return AttrStmt(
            buffer.data, "storage_scope", StringImm(scope or "global"), stmt
        )

    def mutate_provide(self, node: Provide) -> Stmt:
        entry = self._entry(node.func, node.value_index)
        value = self.mutate(node.value)
        args = tuple(self.mutate(arg) for arg in node.args)
        return entry.buffer.vstore(entry.relative(args), value)

    def mutate_call(self, node: Call) -> PrimExpr:
        node = self.generic_mutate(node)
        if node.call_type != CallType.HALIDE or node.func is None:
            return node
        entry = self._entry(node.func, node.value_index)
        return entry.buffer.vload(entry.relative(node.args), node.dtype)

    def mutate_prefetch(self, node: Prefetch) -> Stmt:
        entry = self._entry(node.func, node.value_index)
        buffer = entry.buffer
        lanes = max(1, self.cache_line_size // node.dtype.bytes)
        loop_vars = [
            Var(f"prefetch.{buffer.name}.{dim}") for dim in range(len(node.bounds))
        ]
        indices: list[PrimExpr] = []
        for dim, (bound, var) in enumerate(zip(node.bounds, loop_vars)):
            if dim == len(node.bounds) - 1:
                indices.append(ops.add(bound.min, ops.mul(var, lanes)))
            else:
                indices.append(ops.add(bound.min, var))
        offset = buffer.elem_offset_of(entry.relative(tuple(indices)))
        stmt: Stmt = Evaluate(
            ops.call_intrin(
                "int32",
                "prefetch",
                buffer.access_ptr(1, ops.sub(offset, buffer.elem_offset)),
                0,
                3,
                1,
            )
        )
        for dim in reversed(range(len(node.bounds))):
            extent = node.bounds[dim].extent
            if dim == len(node.bounds) - 1:
                extent = ops.ceildiv(extent, lanes)
            stmt = For(
                loop_vars[dim], ops.const(0, "int32"), extent, ForType.SERIAL, stmt
            )
        return stmt


def storage_flatten(
    stmt: Stmt, extern_buffers: Mapping[Tensor, Buffer], cache_line_size: int = 64
) -> Stmt:
    """
    Flattens the tensor accesses of ``stmt``, ``extern_buffers`` mapping
    the argument tensors to their buffers.
    """
    return _StorageFlattener(extern_buffers, cache_line_size).mutate(stmt)
