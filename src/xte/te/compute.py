#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from collections.abc import Callable, Sequence
from typing import Any
import inspect
import logging

import numpy as np

from ..errors import ArityMismatch, DataTypeMismatch, IllegalTransform
from ..ir.dtype import DataType, as_dtype
from ..ir.expr import (
    PrimExpr,
    Var,
    IterVar,
    IterVarType,
    Range,
    Reduce,
    CommReducer,
)
from ..ir import op
from .operation import ComputeOp, PlaceholderOp
from .tensor import Tensor

__all__ = [
    "placeholder",
    "compute",
    "commutative_reduce",
    "reduce_axis",
    "sum",
    "reduce_max",
    "reduce_min",
]

logger = logging.getLogger(__name__)


def _rule_arg_names(
    rule: Callable[..., Any], count: int, what: str, prefix: str
) -> list[str]:
    """Returns the names of the ``count`` parameters of ``rule``."""
    params = list(inspect.signature(rule).parameters.values())
    if any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params):
        return [f"{prefix}{idx}" for idx in range(count)]
    positional = [
        p
        for p in params
        if p.kind
        in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    if len(positional) != count:
        raise ArityMismatch(
            f"{what}: rule takes {len(positional)} arguments, expected {count}",
            expected=count,
            actual=len(positional),
        )
    return [p.name for p in positional]


def _as_shape(shape: Any) -> tuple[PrimExpr, ...]:
    if isinstance(shape, (int, PrimExpr)):
        shape = (shape,)
    return tuple(op.convert(dim) for dim in shape)


def placeholder(
    shape: Any, name: str = "placeholder", dtype: str | DataType = "float32"
) -> Tensor:
    """Declares an input tensor of the given shape and type."""
    return PlaceholderOp(name, _as_shape(shape), dtype).output(0)


def compute(
    shape: Any,
    fcompute: Callable[..., Any],
    name: str = "compute",
    tag: str = "",
    attrs: dict[str, Any] | None = None,
) -> Tensor | list[Tensor]:
    """
    Builds a tensor from an index rule.

    One data parallel iteration variable ``[0, extent)`` is created per
    dimension of ``shape``, named after the rule parameters, and the rule
    is evaluated once on them. The rule returns one expression, or a
    sequence of expressions for a multiple outputs operation.

    Args:
        shape: extents of the output tensor(s)
        fcompute: rule taking one index per dimension
        name: operation name
        tag: operation tag
        attrs: operation attributes

    Returns:
        The output tensor, or the list of output tensors
    """
    shape = _as_shape(shape)
    names = _rule_arg_names(fcompute, len(shape), f"compute {name}", "i")
    axis = [
        IterVar(
            Range(op.const(0, dim.dtype), dim),
            Var(arg, dim.dtype),
            IterVarType.DATA_PAR,
        )
        for arg, dim in zip(names, shape)
    ]
    body = fcompute(*[iv.var for iv in axis])
    if not isinstance(body, (list, tuple)):
        body = [body]
    bodies = [op.convert(expr) for expr in body]
    reductions = [expr for expr in bodies if isinstance(expr, Reduce)]
    if reductions and (
        len(reductions) != len(bodies)
        or any(expr.axis != reductions[0].axis for expr in reductions)
    ):
        raise ArityMismatch(
            f"compute {name}: all outputs of a reduction "
            "must reduce over the same axes",
            expected=len(bodies),
            actual=len(reductions),
        )
    compute_op = ComputeOp(name, tag, attrs, axis, bodies)
    logger.debug(
        "compute %s: shape (%s), %d output(s)",
        name,
        ", ".join(str(dim) for dim in shape),
        len(bodies),
    )
    if compute_op.num_outputs == 1:
        return compute_op.output(0)
    return compute_op.outputs


def reduce_axis(dom: Any, name: str = "k") -> IterVar:
    """Returns a communicative-reduce iteration variable over ``dom``."""
    if not isinstance(dom, Range):
        if isinstance(dom, (int, PrimExpr)):
            dom = (0, dom)
        dom = Range.from_bounds(*dom)
    return IterVar(dom, Var(name, dom.extent.dtype), IterVarType.COMM_REDUCE)


def commutative_reduce(
    combine: Callable[..., Any],
    identity: Any,
    dtype: str | DataType,
    sources: Any,
    axes: Any,
    condition: Any = None,
) -> Reduce:
    """
    Builds a commutative reduction usable as a compute body.

    The reduction starts from ``identity`` and folds
    ``combine(accumulator, *sources)`` over every point of the reduction
    axes, in any order. ``combine`` must therefore be associative and
    commutative, which is not checked.

    Args:
        combine: function of one accumulator and one value per source
        identity: identity element of ``combine``, of type ``dtype``
        dtype: type of the accumulator and of the values
        sources: expression(s) evaluated at each reduction step
        axes: communicative-reduce iteration variable(s)
        condition: optional predicate on the reduction steps

    Returns:
        The reduction expression
    """
    dtype = as_dtype(dtype)
    if isinstance(sources, (PrimExpr, int, float)):
        sources = [sources]
    sources = [op.cast(dtype, op.convert(src, dtype)) for src in sources]
    if isinstance(axes, IterVar):
        axes = [axes]
    axes = tuple(axes)
    for axis in axes:
        if not isinstance(axis, IterVar) or axis.iter_type != IterVarType.COMM_REDUCE:
            raise IllegalTransform(
                f"reduction axis must be communicative-reduce: {axis}",
                axis=str(axis),
            )
    names = _rule_arg_names(combine, 1 + len(sources), "commutative_reduce", "v")
    lhs = Var(names[0], dtype)
    rhs = [Var(name, dtype) for name in names[1:]]
    result = op.convert(combine(lhs, *rhs))
    if result.dtype != dtype:
        raise DataTypeMismatch(
            f"commutative_reduce: combine result is {result.dtype}, expected {dtype}",
            expected=str(dtype),
            actual=str(result.dtype),
        )
    if isinstance(identity, PrimExpr):
        identity_value = identity
    else:
        identity_value = op.const(identity, dtype)
    if identity_value.dtype != dtype:
        raise DataTypeMismatch(
            f"commutative_reduce: identity is {identity_value.dtype}, expected {dtype}",
            expected=str(dtype),
            actual=str(identity_value.dtype),
        )
    combiner = CommReducer((lhs,), tuple(rhs), (result,), (identity_value,))
    if condition is not None:
        condition = op.convert(condition)
    return Reduce(combiner, tuple(sources), axes, condition, 0)


def sum(expr: Any, axis: Any, where: Any = None) -> Reduce:
    expr = op.convert(expr)
    return commutative_reduce(
        lambda acc, value: acc + value, 0, expr.dtype, [expr], axis, where
    )


def _lowest(dtype: DataType) -> int | float:
    if dtype.is_float:
        return float("-inf")
    return int(np.iinfo(dtype.numpy_dtype).min)


def _highest(dtype: DataType) -> int | float:
    if dtype.is_float:
        return float("inf")
    return int(np.iinfo(dtype.numpy_dtype).max)


def reduce_max(expr: Any, axis: Any, where: Any = None) -> Reduce:
    expr = op.convert(expr)
    return commutative_reduce(
        op.maximum, _lowest(expr.dtype), expr.dtype, [expr], axis, where
    )


def reduce_min(expr: Any, axis: Any, where: Any = None) -> Reduce:
    expr = op.convert(expr)
    return commutative_reduce(
        op.minimum, _highest(expr.dtype), expr.dtype, [expr], axis, where
    )
