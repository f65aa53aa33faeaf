#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from collections.abc import Sequence
from typing import Any, TYPE_CHECKING

from ..errors import ShapeRankMismatch, InvalidIndex
from ..ir.dtype import DataType
from ..ir.expr import PrimExpr, IterVar, Call, CallType
from ..ir import op

if TYPE_CHECKING:
    from .operation import Operation

__all__ = [
    "Tensor",
    "tensor_get",
]


class Tensor:
    """
    Output ``value_index`` of an operation. Two tensors are equal when
    they designate the same output of the same operation.
    """

    def __init__(self, op: "Operation", value_index: int = 0) -> None:
        assert 0 <= value_index < op.num_outputs, (
            f"output index {value_index} out of range for {op.name}"
        )
        self._op = op
        self._value_index = value_index

    @property
    def op(self) -> "Operation":
        return self._op

    @property
    def value_index(self) -> int:
        return self._value_index

    @property
    def shape(self) -> tuple[PrimExpr, ...]:
        return self._op.output_shape(self._value_index)

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def dtype(self) -> DataType:
        return self._op.output_dtype(self._value_index)

    @property
    def name(self) -> str:
        if self._op.num_outputs > 1:
            return f"{self._op.name}.v{self._value_index}"
        return self._op.name

    def __getitem__(self, indices: Any) -> Call:
        if not isinstance(indices, tuple):
            indices = (indices,)
        return tensor_get(self, indices)

    def __call__(self, *indices: Any) -> Call:
        return tensor_get(self, indices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tensor):
            return NotImplemented
        return (self._op.idx, self._value_index) == (
            other._op.idx,
            other._value_index,
        )

    def __hash__(self) -> int:
        return hash((self._op.idx, self._value_index))

    def __str__(self) -> str:
        shape = ", ".join(str(dim) for dim in self.shape)
        return f"Tensor(name={self.name}, shape=({shape}), dtype={self.dtype})"

    __repr__ = __str__


def _as_index(index: Any, position: int, tensor: Tensor) -> PrimExpr:
    if isinstance(index, IterVar):
        return index.var
    if isinstance(index, bool):
        raise InvalidIndex(
            f"{tensor.name}: invalid index {index!r} at position {position}",
            position=position,
        )
    if isinstance(index, (PrimExpr, int)):
        index = op.convert(index)
        if index.dtype.is_integer:
            return index
    raise InvalidIndex(
        f"{tensor.name}: index at position {position} is neither an iteration "
        f"variable nor an integer expression: {index!r}",
        position=position,
        index_type=type(index).__name__,
    )


def tensor_get(tensor: Tensor, indices: Sequence[Any]) -> Call:
    """Reads ``tensor`` at ``indices``, one index per dimension."""
    indices = tuple(indices)
    if len(indices) != tensor.ndim:
        raise ShapeRankMismatch(
            f"Num indices must match tensor rank: {tensor.name} has rank "
            f"{tensor.ndim}, got {len(indices)} indices",
            expected=tensor.ndim,
            actual=len(indices),
        )
    args = tuple(_as_index(index, pos, tensor) for pos, index in enumerate(indices))
    return Call(
        tensor.dtype,
        tensor.op.name,
        args,
        CallType.HALIDE,
        tensor.op,
        tensor.value_index,
    )
