#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from collections.abc import Sequence
from typing import Any

from ..errors import ShapeRankMismatch
from .dtype import DataType, as_dtype
from .expr import PrimExpr, Var, Load, Call, CallType, HANDLE, INT32
from .node import Node, NodeKind, ir_node
from .stmt import Store
from . import op

__all__ = [
    "Buffer",
    "declare_buffer",
]


@ir_node
class Buffer(Node):
    """
    Memory layout of a tensor: shape, strides (empty when compact),
    element offset, storage scope and the handle of its data.
    """

    kind = NodeKind.BUFFER
    data: Var
    dtype: DataType
    shape: tuple[PrimExpr, ...]
    strides: tuple[PrimExpr, ...]
    elem_offset: PrimExpr
    name: str
    scope: str
    data_alignment: int
    offset_factor: int

    @property
    def ndim(self) -> int:
        return len(self.shape)

    def elem_offset_of(self, indices: Sequence[Any]) -> PrimExpr:
        """Returns the flat element index of the given indices."""
        if len(indices) != len(self.shape):
            raise ShapeRankMismatch(
                f"buffer {self.name}: {len(indices)} indices for rank {self.ndim}",
                expected=self.ndim,
                actual=len(indices),
            )
        if not indices:
            index = op.const(0, "int32")
        elif self.strides:
            index = op.const(0, "int32")
            for idx, stride in zip(indices, self.strides):
                index = op.add(index, op.mul(idx, stride))
        else:
            index = op.convert(indices[0])
            for idx, extent in zip(indices[1:], self.shape[1:]):
                index = op.add(op.mul(index, extent), idx)
        if not op.is_const_int(self.elem_offset, 0):
            index = op.add(index, self.elem_offset)
        return index

    def vload(
        self, indices: Sequence[Any], dtype: str | DataType | None = None
    ) -> Load:
        dtype = self.dtype if dtype is None else as_dtype(dtype)
        return Load(dtype, self.data, self.elem_offset_of(indices))

    def vstore(self, indices: Sequence[Any], value: Any) -> Store:
        return Store(self.data, op.convert(value), self.elem_offset_of(indices))

    def access_ptr(self, access_mask: int = 3, offset: Any = 0) -> Call:
        extent = op.const(1, "int32")
        for dim in self.shape:
            extent = op.mul(extent, dim)
        return Call(
            HANDLE,
            "xte_access_ptr",
            (
                op.const(0, self.dtype.element_of()),
                self.data,
                op.add(self.elem_offset, offset),
                extent,
                op.const(access_mask, "int32"),
            ),
            CallType.INTRINSIC,
        )


def declare_buffer(
    shape: Sequence[Any],
    dtype: str | DataType = "float32",
    name: str = "buffer",
    data: Var | None = None,
    strides: Sequence[Any] | None = None,
    elem_offset: Any = None,
    scope: str = "",
    data_alignment: int = -1,
    offset_factor: int = 0,
) -> Buffer:
    """
    Declares a buffer. A compact layout is used unless ``strides`` are
    given. The element offset is a fresh variable when an offset factor
    is requested, 0 otherwise.
    """
    if data is None:
        data = Var(name, HANDLE)
    if elem_offset is None:
        if offset_factor != 0:
            elem_offset = Var(f"{name}_elem_offset", INT32)
        else:
            elem_offset = 0
    return Buffer(
        data=data,
        dtype=as_dtype(dtype),
        shape=tuple(op.convert(dim) for dim in shape),
        strides=tuple(op.convert(stride) for stride in strides or ()),
        elem_offset=op.convert(elem_offset),
        name=name,
        scope=scope,
        data_alignment=data_alignment,
        offset_factor=offset_factor,
    )
