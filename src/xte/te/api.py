#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Public expression construction API.

Builders with Python builtin names (``range``, ``min``, ``max``,
``abs``) are exported under those names at the end of the module.
"""

from collections.abc import Callable, Sequence
from typing import Any

from ..errors import InvalidIterationKind
from ..ir.dtype import DataType, as_dtype
from ..ir.expr import (
    PrimExpr,
    Var,
    Let,
    Call,
    CallType,
    IterVar,
    IterVarType,
    Range,
)
from ..ir import op
from ..ir.op import (
    add,
    sub,
    mul,
    div,
    mod,
    eq,
    ne,
    lt,
    le,
    gt,
    ge,
    logical_and,
    logical_or,
    logical_not,
    select,
    cast,
    call_intrin,
    call_pure_intrin,
    power,
    ceildiv,
)
from .tensor import Tensor, tensor_get

__all__ = [
    "variable",
    "constant",
    "const",
    "make_range",
    "cast",
    "static_cast",
    "add",
    "sub",
    "mul",
    "div",
    "mod",
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
    "call",
    "call_intrin",
    "call_pure_intrin",
    "exp",
    "tanh",
    "sigmoid",
    "log",
    "sqrt",
    "floor",
    "ceil",
    "trunc",
    "round",
    "power",
    "popcount",
    "ceildiv",
    "tensor_get",
    "let_bindings",
    "iteration_variable",
    "thread_axis",
    "safe_name",
    "range",
    "min",
    "max",
    "abs",
]


def variable(name: str, dtype: str | DataType = "int32") -> Var:
    return Var(name, as_dtype(dtype))


def constant(value: Any, dtype: str | DataType | None = None) -> PrimExpr:
    """Returns a constant, typed bool, int32 or float32 when no dtype is given."""
    return op.convert(value, dtype)


const = constant


def make_range(start: Any, end: Any) -> Range:
    """Returns the half-open range ``[start, end)``."""
    return Range.from_bounds(start, end)


def static_cast(dtype: str | DataType, value: Any) -> PrimExpr:
    return op.cast(dtype, value)


def call(
    dtype: str | DataType,
    name: str,
    args: Sequence[Any],
    call_type: str | int | CallType = CallType.EXTERN,
    func: Any = None,
    value_index: int = 0,
) -> Call:
    return Call(
        as_dtype(dtype),
        name,
        tuple(op.convert(arg) for arg in args),
        CallType.from_token(call_type),
        func,
        value_index,
    )


def _unary_intrin(name: str) -> Callable[[Any], Call]:
    def intrin(value: Any) -> Call:
        value = op.convert(value)
        return op.call_pure_intrin(value.dtype, name, value)

    intrin.__name__ = name
    intrin.__doc__ = f"Pure intrinsic {name} of a value, typed as the value."
    return intrin


exp = _unary_intrin("exp")
tanh = _unary_intrin("tanh")
sigmoid = _unary_intrin("sigmoid")
log = _unary_intrin("log")
sqrt = _unary_intrin("sqrt")
floor = _unary_intrin("floor")
ceil = _unary_intrin("ceil")
trunc = _unary_intrin("trunc")
round = _unary_intrin("round")
popcount = _unary_intrin("popcount")


def let_bindings(
    bindings: Sequence[tuple[str, Any]],
    body: Any,
) -> PrimExpr:
    """
    Builds nested let expressions from ordered ``(name, value)`` pairs,
    the first pair being the outermost binding. A value, or the body,
    may be a function of the dict of the variables bound before it.

    For instance:
    let_bindings([("x", a + 1), ("y", lambda v: v["x"] * 2)],
                 lambda v: v["x"] + v["y"])
    is (let x = a + 1 in (let y = x * 2 in x + y)).
    """
    bound: dict[str, Var] = {}
    lets: list[tuple[Var, PrimExpr]] = []
    for name, value in bindings:
        if callable(value) and not isinstance(value, (Tensor, PrimExpr)):
            value = value(dict(bound))
        value = op.convert(value)
        var = Var(name, value.dtype)
        bound[name] = var
        lets.append((var, value))
    if callable(body) and not isinstance(body, (Tensor, PrimExpr)):
        body = body(dict(bound))
    result = op.convert(body)
    for var, value in reversed(lets):
        result = Let(var, value, result)
    return result


def iteration_variable(
    domain: Any,
    name: str,
    kind: str | int | IterVarType,
    thread_tag: str = "",
) -> IterVar:
    """
    Returns an iteration variable of the given kind.

    Args:
        domain: a Range, a (start, end) pair, or None for the kinds
            without loop extent (thread-index, opaque)
        name: variable name
        kind: one of the nine kinds, as IterVarType, int or token
        thread_tag: thread tag of thread-index variables

    Returns:
        The iteration variable
    """
    kind = IterVarType.from_token(kind)
    if domain is None:
        if kind not in (IterVarType.THREAD_INDEX, IterVarType.OPAQUE):
            raise InvalidIterationKind(
                f"iteration variable {name} of kind {kind.token} requires a domain",
                kind=kind.token,
            )
        dom = None
    elif isinstance(domain, Range):
        dom = domain
    else:
        start, end = domain
        dom = Range.from_bounds(start, end)
    return IterVar(dom, Var(name), kind, thread_tag)


def thread_axis(axis_name: str, domain: Any = None) -> IterVar:
    """Returns a thread-index iteration variable named and tagged ``axis_name``."""
    return iteration_variable(domain, axis_name, IterVarType.THREAD_INDEX, axis_name)


def safe_name(name: str, prefix: str = "") -> str:
    """Returns ``name`` usable as a function symbol, prefixed by ``prefix``."""
    return f"{prefix}{name.replace('-', '_')}"


range = make_range
min = op.minimum
max = op.maximum
abs = op.abs
