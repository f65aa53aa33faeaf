#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any
import threading
import weakref

from typing_extensions import override

from ..ir.node import Node, NodeKind
from ..ir.dtype import DataType, as_dtype
from ..ir.expr import PrimExpr, IterVar, Call, CallType, Reduce
from ..ir.functor import post_order_visit
from .tensor import Tensor

__all__ = [
    "Operation",
    "PlaceholderOp",
    "ComputeOp",
    "output_tensors",
    "input_tensors",
    "as_operation",
]


class OperationCounter:
    def __init__(self) -> None:
        self._count = 0
        self._lock = threading.Lock()

    def get_idx(self) -> int:
        with self._lock:
            idx = self._count
            self._count += 1
        return idx

    @property
    def count(self):
        return self._count


class Operation(Node, ABC):
    """
    Tensor producing operation. Every operation gets a process-unique
    index at construction, used as its identity in schedules.
    """

    _counter = OperationCounter()
    _idx_map: "weakref.WeakValueDictionary[int, Operation]" = (
        weakref.WeakValueDictionary()
    )

    def __init__(
        self, name: str, tag: str = "", attrs: dict[str, Any] | None = None
    ) -> None:
        self._idx = self._counter.get_idx()
        self._idx_map[self._idx] = self
        self._name = name
        self._tag = tag
        self._attrs = dict(attrs or {})

    @classmethod
    def get_operation(cls, idx: int) -> "Operation":
        return cls._idx_map[idx]

    @property
    def idx(self) -> int:
        return self._idx

    @property
    def name(self) -> str:
        return self._name

    @property
    def tag(self) -> str:
        return self._tag

    @property
    def attrs(self) -> dict[str, Any]:
        return self._attrs

    @property
    @abstractmethod
    def num_outputs(self) -> int: ...

    @abstractmethod
    def output_dtype(self, value_index: int) -> DataType: ...

    @abstractmethod
    def output_shape(self, value_index: int) -> tuple[PrimExpr, ...]: ...

    @abstractmethod
    def input_tensors(self) -> list[Tensor]: ...

    def output(self, value_index: int = 0) -> Tensor:
        return Tensor(self, value_index)

    @property
    def outputs(self) -> list[Tensor]:
        return [self.output(i) for i in range(self.num_outputs)]


class PlaceholderOp(Operation):
    kind = NodeKind.PLACEHOLDER_OP

    def __init__(
        self, name: str, shape: Sequence[PrimExpr], dtype: str | DataType
    ) -> None:
        super().__init__(name)
        self._shape = tuple(shape)
        self._dtype = as_dtype(dtype)

    @property
    @override
    def num_outputs(self) -> int:
        return 1

    @override
    def output_dtype(self, value_index: int) -> DataType:
        return self._dtype

    @override
    def output_shape(self, value_index: int) -> tuple[PrimExpr, ...]:
        return self._shape

    @override
    def input_tensors(self) -> list[Tensor]:
        return []


class ComputeOp(Operation):
    """
    Operation whose outputs are defined element-wise by ``body``, one
    expression per output, over the data parallel iteration variables
    ``axis``. A reduction body iterates in addition over ``reduce_axis``.
    """

    kind = NodeKind.COMPUTE_OP

    def __init__(
        self,
        name: str,
        tag: str,
        attrs: dict[str, Any] | None,
        axis: Sequence[IterVar],
        body: Sequence[PrimExpr],
    ) -> None:
        super().__init__(name, tag, attrs)
        assert len(body) > 0, f"no body in compute {name}"
        self._axis = tuple(axis)
        self._body = tuple(body)
        first = self._body[0]
        self._reduce_axis = first.axis if isinstance(first, Reduce) else ()

    @property
    def axis(self) -> tuple[IterVar, ...]:
        return self._axis

    @property
    def reduce_axis(self) -> tuple[IterVar, ...]:
        return self._reduce_axis

    @property
    def body(self) -> tuple[PrimExpr, ...]:
        return self._body

    @property
    def root_iter_vars(self) -> tuple[IterVar, ...]:
        return self._axis + self._reduce_axis

    @property
    @override
    def num_outputs(self) -> int:
        return len(self._body)

    @override
    def output_dtype(self, value_index: int) -> DataType:
        return self._body[value_index].dtype

    @override
    def output_shape(self, value_index: int) -> tuple[PrimExpr, ...]:
        return tuple(iv.dom.extent for iv in self._axis)

    @override
    def input_tensors(self) -> list[Tensor]:
        tensors: dict[Tensor, None] = {}

        def collect(node: Node) -> None:
            if (
                isinstance(node, Call)
                and node.call_type == CallType.HALIDE
                and isinstance(node.func, Operation)
            ):
                tensors.setdefault(node.func.output(node.value_index), None)

        for expr in self._body:
            post_order_visit(expr, collect)
        return list(tensors)

    def with_body(self, body: Sequence[PrimExpr]) -> "ComputeOp":
        """Returns a copy of this operation with another body."""
        return ComputeOp(self.name, self.tag, self.attrs, self.axis, body)


def output_tensors(op: Operation) -> list[Tensor]:
    return op.outputs


def input_tensors(op: Operation | Tensor) -> list[Tensor]:
    return as_operation(op).input_tensors()


def as_operation(value: Operation | Tensor) -> Operation:
    if isinstance(value, Tensor):
        return value.op
    if isinstance(value, Operation):
        return value
    raise TypeError(f"not an operation or a tensor: {type(value).__name__}")
