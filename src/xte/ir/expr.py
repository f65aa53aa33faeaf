#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from dataclasses import field
from enum import IntEnum
from typing import Any

from ..errors import InvalidIterationKind
from .dtype import DataType
from .node import Node, NodeKind, ir_node

__all__ = [
    "ExprOp",
    "PrimExpr",
    "Var",
    "Constant",
    "StringImm",
    "Cast",
    "BinaryOp",
    "CmpOp",
    "Add",
    "Sub",
    "Mul",
    "Div",
    "Mod",
    "Min",
    "Max",
    "EQ",
    "NE",
    "LT",
    "LE",
    "GT",
    "GE",
    "And",
    "Or",
    "Not",
    "Select",
    "CallType",
    "Call",
    "Let",
    "Load",
    "Ramp",
    "Broadcast",
    "CommReducer",
    "Reduce",
    "Range",
    "IterVarType",
    "IterVar",
]

INT32 = DataType.parse("int32")
BOOL = DataType.parse("bool")
HANDLE = DataType.parse("handle")


class ExprOp:
    """Python operators building expression nodes."""

    def __add__(self, other: Any) -> "PrimExpr":
        return _op.add(self, other)

    def __radd__(self, other: Any) -> "PrimExpr":
        return _op.add(other, self)

    def __sub__(self, other: Any) -> "PrimExpr":
        return _op.sub(self, other)

    def __rsub__(self, other: Any) -> "PrimExpr":
        return _op.sub(other, self)

    def __mul__(self, other: Any) -> "PrimExpr":
        return _op.mul(self, other)

    def __rmul__(self, other: Any) -> "PrimExpr":
        return _op.mul(other, self)

    def __truediv__(self, other: Any) -> "PrimExpr":
        return _op.div(self, other)

    def __rtruediv__(self, other: Any) -> "PrimExpr":
        return _op.div(other, self)

    def __mod__(self, other: Any) -> "PrimExpr":
        return _op.mod(self, other)

    def __rmod__(self, other: Any) -> "PrimExpr":
        return _op.mod(other, self)

    def __neg__(self) -> "PrimExpr":
        return _op.neg(self)

    def __lt__(self, other: Any) -> "PrimExpr":
        return _op.lt(self, other)

    def __le__(self, other: Any) -> "PrimExpr":
        return _op.le(self, other)

    def __gt__(self, other: Any) -> "PrimExpr":
        return _op.gt(self, other)

    def __ge__(self, other: Any) -> "PrimExpr":
        return _op.ge(self, other)

    def equal(self, other: Any) -> "PrimExpr":
        return _op.eq(self, other)

    def not_equal(self, other: Any) -> "PrimExpr":
        return _op.ne(self, other)

    def astype(self, dtype: str | DataType) -> "PrimExpr":
        return _op.cast(dtype, self)


class PrimExpr(Node, ExprOp):
    """Base of typed scalar or vector expressions."""

    dtype: DataType


@ir_node
class Var(PrimExpr):
    kind = NodeKind.VAR
    name: str
    dtype: DataType = INT32


@ir_node
class Constant(PrimExpr):
    kind = NodeKind.CONSTANT
    value: int | float | bool
    dtype: DataType


@ir_node
class StringImm(PrimExpr):
    kind = NodeKind.STRING_IMM
    value: str

    @property
    def dtype(self) -> DataType:
        return HANDLE


@ir_node
class Cast(PrimExpr):
    kind = NodeKind.CAST
    dtype: DataType
    value: PrimExpr


@ir_node
class BinaryOp(PrimExpr):
    a: PrimExpr
    b: PrimExpr

    @property
    def dtype(self) -> DataType:
        return self.a.dtype


@ir_node
class Add(BinaryOp):
    kind = NodeKind.ADD


@ir_node
class Sub(BinaryOp):
    kind = NodeKind.SUB


@ir_node
class Mul(BinaryOp):
    kind = NodeKind.MUL


@ir_node
class Div(BinaryOp):
    """Division, truncating toward zero on integers."""

    kind = NodeKind.DIV


@ir_node
class Mod(BinaryOp):
    """Remainder of the truncating division."""

    kind = NodeKind.MOD


@ir_node
class Min(BinaryOp):
    kind = NodeKind.MIN


@ir_node
class Max(BinaryOp):
    kind = NodeKind.MAX


@ir_node
class CmpOp(BinaryOp):
    @property
    def dtype(self) -> DataType:
        return BOOL.with_lanes(self.a.dtype.lanes)


@ir_node
class EQ(CmpOp):
    kind = NodeKind.EQ


@ir_node
class NE(CmpOp):
    kind = NodeKind.NE


@ir_node
class LT(CmpOp):
    kind = NodeKind.LT


@ir_node
class LE(CmpOp):
    kind = NodeKind.LE


@ir_node
class GT(CmpOp):
    kind = NodeKind.GT


@ir_node
class GE(CmpOp):
    kind = NodeKind.GE


@ir_node
class And(CmpOp):
    kind = NodeKind.AND


@ir_node
class Or(CmpOp):
    kind = NodeKind.OR


@ir_node
class Not(PrimExpr):
    kind = NodeKind.NOT
    a: PrimExpr

    @property
    def dtype(self) -> DataType:
        return self.a.dtype


@ir_node
class Select(PrimExpr):
    """Eager conditional, both branches may be evaluated."""

    kind = NodeKind.SELECT
    condition: PrimExpr
    true_value: PrimExpr
    false_value: PrimExpr

    @property
    def dtype(self) -> DataType:
        return self.true_value.dtype


class CallType(IntEnum):
    EXTERN = 0
    EXTERN_CPP = 1
    PURE_EXTERN = 2
    HALIDE = 3
    INTRINSIC = 4
    PURE_INTRINSIC = 5

    @staticmethod
    def from_token(token: "str | int | CallType") -> "CallType":
        if isinstance(token, CallType):
            return token
        if isinstance(token, int):
            return CallType(token)
        key = token.replace("_", "-").lower()
        if key not in _CALL_TYPE_TOKENS:
            raise ValueError(f"unknown call type: {token}")
        return _CALL_TYPE_TOKENS[key]


_CALL_TYPE_TOKENS = {
    "extern": CallType.EXTERN,
    "extern-c-plus-plus": CallType.EXTERN_CPP,
    "extern-cpp": CallType.EXTERN_CPP,
    "pure-extern": CallType.PURE_EXTERN,
    "halide": CallType.HALIDE,
    "intrinsic": CallType.INTRINSIC,
    "pure-intrinsic": CallType.PURE_INTRINSIC,
}


@ir_node
class Call(PrimExpr):
    """
    Function call. Halide calls read the output ``value_index`` of the
    producing operation ``func`` at the given indices.
    """

    kind = NodeKind.CALL
    dtype: DataType
    name: str
    args: tuple[PrimExpr, ...]
    call_type: CallType
    func: Any = None
    value_index: int = 0

    def is_intrinsic(self, name: str) -> bool:
        return self.name == name and self.call_type in (
            CallType.INTRINSIC,
            CallType.PURE_INTRINSIC,
        )


@ir_node
class Let(PrimExpr):
    kind = NodeKind.LET
    var: Var
    value: PrimExpr
    body: PrimExpr

    @property
    def dtype(self) -> DataType:
        return self.body.dtype


@ir_node
class Load(PrimExpr):
    kind = NodeKind.LOAD
    dtype: DataType
    buffer_var: Var
    index: PrimExpr
    predicate: PrimExpr | None = None


@ir_node
class Ramp(PrimExpr):
    kind = NodeKind.RAMP
    base: PrimExpr
    stride: PrimExpr
    lanes: int

    @property
    def dtype(self) -> DataType:
        return self.base.dtype.with_lanes(self.lanes)


@ir_node
class Broadcast(PrimExpr):
    kind = NodeKind.BROADCAST
    value: PrimExpr
    lanes: int

    @property
    def dtype(self) -> DataType:
        return self.value.dtype.with_lanes(self.lanes)


@ir_node
class CommReducer(Node):
    """
    Commutative reducer: ``result`` expresses the combination of the
    accumulator variables ``lhs`` with the input variables ``rhs``.
    """

    kind = NodeKind.COMM_REDUCER
    lhs: tuple[Var, ...]
    rhs: tuple[Var, ...]
    result: tuple[PrimExpr, ...]
    identity_element: tuple[PrimExpr, ...]


@ir_node
class Reduce(PrimExpr):
    kind = NodeKind.REDUCE
    combiner: CommReducer
    source: tuple[PrimExpr, ...]
    axis: tuple["IterVar", ...]
    condition: PrimExpr | None
    value_index: int = 0

    @property
    def dtype(self) -> DataType:
        return self.combiner.result[self.value_index].dtype


@ir_node
class Range(Node):
    """Half-open interval ``[min, min + extent)``."""

    kind = NodeKind.RANGE
    min: PrimExpr
    extent: PrimExpr

    @staticmethod
    def from_min_extent(min: Any, extent: Any) -> "Range":
        return Range(_op.convert(min), _op.convert(extent))

    @staticmethod
    def from_bounds(start: Any, end: Any) -> "Range":
        start = _op.convert(start)
        return Range(start, _op.sub(end, start))


class IterVarType(IntEnum):
    DATA_PAR = 0
    THREAD_INDEX = 1
    COMM_REDUCE = 2
    ORDERED = 3
    OPAQUE = 4
    UNROLLED = 5
    VECTORIZED = 6
    PARALLELIZED = 7
    TENSORIZED = 8

    @staticmethod
    def from_token(token: "str | int | IterVarType") -> "IterVarType":
        if isinstance(token, IterVarType):
            return token
        if isinstance(token, int):
            try:
                return IterVarType(token)
            except ValueError:
                raise InvalidIterationKind(
                    f"unknown iteration variable kind: {token}", kind=token
                ) from None
        key = str(token).replace("_", "-").lower()
        if key not in _ITER_VAR_TOKENS:
            raise InvalidIterationKind(
                f"unknown iteration variable kind: {token}", kind=token
            )
        return _ITER_VAR_TOKENS[key]

    @property
    def token(self) -> str:
        return _ITER_VAR_NAMES[self]


_ITER_VAR_NAMES = {
    IterVarType.DATA_PAR: "data-parallel",
    IterVarType.THREAD_INDEX: "thread-index",
    IterVarType.COMM_REDUCE: "communicative-reduce",
    IterVarType.ORDERED: "ordered",
    IterVarType.OPAQUE: "opaque",
    IterVarType.UNROLLED: "unrolled",
    IterVarType.VECTORIZED: "vectorized",
    IterVarType.PARALLELIZED: "parallelized",
    IterVarType.TENSORIZED: "tensorized",
}
_ITER_VAR_TOKENS = {name: kind for kind, name in _ITER_VAR_NAMES.items()}
_ITER_VAR_TOKENS["commutative-reduce"] = IterVarType.COMM_REDUCE


@ir_node
class IterVar(Node, ExprOp):
    """
    Iteration variable: a loop variable with its domain, kind and
    optional thread tag. Used in expressions as its variable.
    """

    kind = NodeKind.ITER_VAR
    dom: Range | None
    var: Var
    iter_type: IterVarType
    thread_tag: str = field(default="")

    @property
    def dtype(self) -> DataType:
        return self.var.dtype

    @property
    def name(self) -> str:
        return self.var.name

    @property
    def extent(self) -> PrimExpr | None:
        return None if self.dom is None else self.dom.extent


from . import op as _op  # noqa: E402
