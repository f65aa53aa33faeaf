#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Expression builders. Every builder converts its operands, combines
their data types and folds constant operands.
"""

import builtins
import math
import operator
from typing import Any, Callable

from ..errors import DataTypeMismatch
from .dtype import DataType, as_dtype, combine_dtypes
from .node import Node
from .expr import (
    PrimExpr,
    Var,
    Constant,
    StringImm,
    Cast,
    Add,
    Sub,
    Mul,
    Div,
    Mod,
    Min,
    Max,
    EQ,
    NE,
    LT,
    LE,
    GT,
    GE,
    And,
    Or,
    Not,
    Select,
    Call,
    CallType,
    Broadcast,
    IterVar,
)

__all__ = [
    "convert",
    "const",
    "is_const",
    "const_value",
    "is_const_int",
    "add",
    "sub",
    "mul",
    "div",
    "mod",
    "minimum",
    "maximum",
    "neg",
    "eq",
    "ne",
    "lt",
    "le",
    "gt",
    "ge",
    "logical_and",
    "logical_or",
    "logical_not",
    "select",
    "cast",
    "call_intrin",
    "call_pure_intrin",
    "call_extern",
    "likely",
    "ceildiv",
    "abs",
    "power",
]


def const(value: Any, dtype: str | DataType) -> Constant:
    dtype = as_dtype(dtype)
    if dtype.is_bool:
        value = bool(value)
    elif dtype.is_float:
        value = float(value)
    elif dtype.is_integer:
        value = int(value)
    else:
        raise DataTypeMismatch(f"no constant of type {dtype}", dtype=str(dtype))
    return Constant(value, dtype.element_of())


def convert(value: Any, dtype: str | DataType | None = None) -> PrimExpr:
    """
    Converts a Python value or an iteration variable into an expression.
    Python numbers take the given dtype, or int32/float32/bool by default.
    """
    if isinstance(value, IterVar):
        return value.var
    if isinstance(value, PrimExpr):
        return value
    if isinstance(value, bool):
        return const(value, dtype or "bool")
    if isinstance(value, int):
        return const(value, dtype or "int32")
    if isinstance(value, float):
        return const(value, dtype or "float32")
    if isinstance(value, str):
        return StringImm(value)
    if hasattr(value, "item") and hasattr(value, "dtype"):
        return const(value.item(), dtype or DataType.from_numpy(value.dtype))
    raise DataTypeMismatch(
        f"can not convert {type(value).__name__} to expression",
        value_type=type(value).__name__,
    )


def is_const(expr: Any) -> bool:
    return isinstance(expr, Constant)


def const_value(expr: Any) -> int | float | bool | None:
    if isinstance(expr, Constant):
        return expr.value
    if isinstance(expr, (int, float)) and not isinstance(expr, Node):
        return expr
    return None


def is_const_int(expr: Any, value: int | None = None) -> bool:
    if not isinstance(expr, Constant) or not expr.dtype.is_integer:
        return False
    return value is None or expr.value == value


def _is_const_like(value: Any) -> bool:
    return isinstance(value, (Constant, bool, int, float)) and not isinstance(
        value, Var
    )


def _coerce(expr: PrimExpr, dtype: DataType) -> PrimExpr:
    if expr.dtype == dtype:
        return expr
    if isinstance(expr, Constant):
        scalar = const(expr.value, dtype.element_of())
        return scalar if dtype.lanes == 1 else Broadcast(scalar, dtype.lanes)
    if expr.dtype.lanes == 1 and dtype.lanes > 1:
        return Broadcast(_coerce(expr, dtype.element_of()), dtype.lanes)
    return Cast(dtype, expr)


def _operands(a: Any, b: Any) -> tuple[PrimExpr, PrimExpr]:
    a_const, b_const = _is_const_like(a), _is_const_like(b)
    if not isinstance(a, Node) and isinstance(b, Node):
        a = convert(a, _python_dtype(a, b))
    if not isinstance(b, Node) and isinstance(a, Node):
        b = convert(b, _python_dtype(b, a))
    a, b = convert(a), convert(b)
    dtype = combine_dtypes(a.dtype, b.dtype, a_const, b_const)
    return _coerce(a, dtype), _coerce(b, dtype)


def _python_dtype(value: Any, other: Any) -> DataType | None:
    other_dtype = convert(other).dtype.element_of()
    if isinstance(value, float) and not other_dtype.is_float:
        return None
    if isinstance(value, bool) and not other_dtype.is_bool:
        return None
    return other_dtype


def _trunc_div(a: int, b: int) -> int:
    q = builtins.abs(a) // builtins.abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _trunc_mod(a: int, b: int) -> int:
    return a - b * _trunc_div(a, b)


def _fold(
    node_cls: type,
    folder: Callable[[Any, Any], Any] | None,
    a: PrimExpr,
    b: PrimExpr,
) -> PrimExpr:
    node = node_cls(a, b)
    if (
        folder is not None
        and isinstance(a, Constant)
        and isinstance(b, Constant)
    ):
        if node_cls in (Div, Mod) and b.value == 0:
            return node
        return const(folder(a.value, b.value), node.dtype)
    return node


def add(a: Any, b: Any) -> PrimExpr:
    return _fold(Add, operator.add, *_operands(a, b))


def sub(a: Any, b: Any) -> PrimExpr:
    return _fold(Sub, operator.sub, *_operands(a, b))


def mul(a: Any, b: Any) -> PrimExpr:
    return _fold(Mul, operator.mul, *_operands(a, b))


def div(a: Any, b: Any) -> PrimExpr:
    a, b = _operands(a, b)
    folder = _trunc_div if a.dtype.is_integer else operator.truediv
    return _fold(Div, folder, a, b)


def mod(a: Any, b: Any) -> PrimExpr:
    a, b = _operands(a, b)
    folder = _trunc_mod if a.dtype.is_integer else math.fmod
    return _fold(Mod, folder, a, b)


def minimum(a: Any, b: Any) -> PrimExpr:
    return _fold(Min, builtins.min, *_operands(a, b))


def maximum(a: Any, b: Any) -> PrimExpr:
    return _fold(Max, builtins.max, *_operands(a, b))


def neg(a: Any) -> PrimExpr:
    a = convert(a)
    return sub(const(0, a.dtype.element_of()), a)


def eq(a: Any, b: Any) -> PrimExpr:
    return _fold(EQ, operator.eq, *_operands(a, b))


def ne(a: Any, b: Any) -> PrimExpr:
    return _fold(NE, operator.ne, *_operands(a, b))


def lt(a: Any, b: Any) -> PrimExpr:
    return _fold(LT, operator.lt, *_operands(a, b))


def le(a: Any, b: Any) -> PrimExpr:
    return _fold(LE, operator.le, *_operands(a, b))


def gt(a: Any, b: Any) -> PrimExpr:
    return _fold(GT, operator.gt, *_operands(a, b))


def ge(a: Any, b: Any) -> PrimExpr:
    return _fold(GE, operator.ge, *_operands(a, b))


def _as_bool(value: Any) -> PrimExpr:
    value = convert(value)
    if not value.dtype.is_bool:
        value = ne(value, const(0, value.dtype.element_of()))
    return value


def logical_and(a: Any, b: Any) -> PrimExpr:
    a, b = _as_bool(a), _as_bool(b)
    if isinstance(a, Constant):
        return b if a.value else a
    if isinstance(b, Constant):
        return a if b.value else b
    return And(a, b)


def logical_or(a: Any, b: Any) -> PrimExpr:
    a, b = _as_bool(a), _as_bool(b)
    if isinstance(a, Constant):
        return a if a.value else b
    if isinstance(b, Constant):
        return b if b.value else a
    return Or(a, b)


def logical_not(a: Any) -> PrimExpr:
    a = _as_bool(a)
    if isinstance(a, Constant):
        return const(not a.value, "bool")
    return Not(a)


def select(condition: Any, true_value: Any, false_value: Any) -> PrimExpr:
    condition = _as_bool(condition)
    true_value, false_value = _operands(true_value, false_value)
    if isinstance(condition, Constant):
        return true_value if condition.value else false_value
    return Select(condition, true_value, false_value)


def cast(dtype: str | DataType, value: Any) -> PrimExpr:
    dtype = as_dtype(dtype)
    value = convert(value)
    if value.dtype == dtype:
        return value
    if isinstance(value, Constant) and dtype.lanes == 1:
        return const(value.value, dtype)
    return Cast(dtype, value)


def call_intrin(dtype: str | DataType, name: str, *args: Any) -> Call:
    return Call(
        as_dtype(dtype), name, tuple(convert(arg) for arg in args), CallType.INTRINSIC
    )


def call_pure_intrin(dtype: str | DataType, name: str, *args: Any) -> Call:
    return Call(
        as_dtype(dtype),
        name,
        tuple(convert(arg) for arg in args),
        CallType.PURE_INTRINSIC,
    )


def call_extern(dtype: str | DataType, name: str, *args: Any) -> Call:
    return Call(
        as_dtype(dtype), name, tuple(convert(arg) for arg in args), CallType.EXTERN
    )


def likely(condition: Any) -> PrimExpr:
    condition = _as_bool(condition)
    if isinstance(condition, Constant):
        return condition
    return call_pure_intrin(condition.dtype, "likely", condition)


def ceildiv(a: Any, b: Any) -> PrimExpr:
    a, b = _operands(a, b)
    return div(add(a, sub(b, 1)), b)


def abs(value: Any) -> PrimExpr:
    value = convert(value)
    if value.dtype.is_uint:
        return value
    if value.dtype.is_int:
        if isinstance(value, Constant):
            return const(builtins.abs(value.value), value.dtype)
        return Select(ge(value, 0), value, neg(value))
    return call_pure_intrin(value.dtype, "fabs", value)


def power(x: Any, y: Any) -> PrimExpr:
    x, y = _operands(x, y)
    return call_pure_intrin(x.dtype, "pow", x, y)
