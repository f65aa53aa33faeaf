#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Arithmetic analysis: canonical simplification of integer expressions
by linear form normalization, and interval evaluation.
"""

from collections.abc import Mapping
from typing import Any, Callable

from .node import NodeKind
from .expr import (
    PrimExpr,
    Var,
    Constant,
    Add,
    Sub,
    Mul,
    Div,
    Mod,
    Min,
    Max,
    Cast,
    Call,
    Let,
    Select,
)
from .functor import IRMutator, struct_key, substitute, uses_var
from . import op

__all__ = [
    "Simplifier",
    "simplify_expr",
    "can_prove",
    "linear_coefficient",
    "eval_interval",
    "Interval",
]

Interval = tuple[PrimExpr, PrimExpr]

_LinearTerms = dict[Any, list[Any]]


def _is_int_scalar(expr: PrimExpr) -> bool:
    return expr.dtype.is_integer and expr.dtype.lanes == 1


def _to_linear(expr: PrimExpr) -> tuple[_LinearTerms, int]:
    if isinstance(expr, Constant):
        return {}, int(expr.value)
    if isinstance(expr, (Add, Sub)):
        terms, const = _to_linear(expr.a)
        other, other_const = _to_linear(expr.b)
        sign = 1 if isinstance(expr, Add) else -1
        terms = {key: list(item) for key, item in terms.items()}
        for key, (atom, coef) in other.items():
            if key in terms:
                terms[key][1] += sign * coef
            else:
                terms[key] = [atom, sign * coef]
        return terms, const + sign * other_const
    if isinstance(expr, Mul):
        for lhs, rhs in ((expr.a, expr.b), (expr.b, expr.a)):
            if isinstance(rhs, Constant):
                terms, const = _to_linear(lhs)
                scale = int(rhs.value)
                return (
                    {key: [atom, coef * scale] for key, (atom, coef) in terms.items()},
                    const * scale,
                )
    return {struct_key(expr): [expr, 1]}, 0


def _from_linear(terms: _LinearTerms, const: int, dtype: Any) -> PrimExpr:
    result: PrimExpr | None = None
    for atom, coef in terms.values():
        if coef == 0:
            continue
        magnitude = abs(coef)
        term = atom if magnitude == 1 else Mul(atom, op.const(magnitude, dtype))
        if result is None:
            result = term if coef > 0 else Mul(atom, op.const(coef, dtype))
        elif coef > 0:
            result = Add(result, term)
        else:
            result = Sub(result, term)
    if result is None:
        return op.const(const, dtype)
    if const > 0:
        result = Add(result, op.const(const, dtype))
    elif const < 0:
        result = Sub(result, op.const(-const, dtype))
    return result


def _linear_diff(a: PrimExpr, b: PrimExpr) -> tuple[_LinearTerms, int]:
    return _to_linear(Sub(a, b))


def _const_diff(a: PrimExpr, b: PrimExpr) -> int | None:
    """Returns ``a - b`` when it is a constant."""
    if not (_is_int_scalar(a) and _is_int_scalar(b)):
        return None
    terms, const = _linear_diff(a, b)
    if any(coef != 0 for _, coef in terms.values()):
        return None
    return const


def linear_coefficient(expr: PrimExpr, var: Var) -> tuple[int, PrimExpr] | None:
    """
    Splits ``expr`` as ``coef * var + rest`` when ``expr`` is linear in
    ``var``, returns None otherwise.
    """
    terms, const = _to_linear(expr)
    key = struct_key(var)
    coef = terms.get(key, [var, 0])[1]
    rest = {k: v for k, v in terms.items() if k != key}
    if any(uses_var(atom, var) for atom, c in rest.values() if c != 0):
        return None
    return coef, _from_linear(rest, const, expr.dtype)


_BUILDERS: dict[NodeKind, Callable[..., PrimExpr]] = {
    NodeKind.ADD: op.add,
    NodeKind.SUB: op.sub,
    NodeKind.MUL: op.mul,
    NodeKind.DIV: op.div,
    NodeKind.MOD: op.mod,
    NodeKind.MIN: op.minimum,
    NodeKind.MAX: op.maximum,
    NodeKind.EQ: op.eq,
    NodeKind.NE: op.ne,
    NodeKind.LT: op.lt,
    NodeKind.LE: op.le,
    NodeKind.GT: op.gt,
    NodeKind.GE: op.ge,
    NodeKind.AND: op.logical_and,
    NodeKind.OR: op.logical_or,
}

_COMPARE = {
    NodeKind.EQ: lambda d: d == 0,
    NodeKind.NE: lambda d: d != 0,
    NodeKind.LT: lambda d: d < 0,
    NodeKind.LE: lambda d: d <= 0,
    NodeKind.GT: lambda d: d > 0,
    NodeKind.GE: lambda d: d >= 0,
}


class Simplifier(IRMutator):
    def _binary(self, node: Any) -> PrimExpr:
        a, b = self.mutate(node.a), self.mutate(node.b)
        kind = node.kind
        if kind in (NodeKind.ADD, NodeKind.SUB, NodeKind.MUL) and _is_int_scalar(
            node
        ):
            terms, const = _to_linear(type(node)(a, b))
            return _from_linear(terms, const, node.dtype)
        if kind in (NodeKind.DIV, NodeKind.MOD) and _is_int_scalar(node):
            simplified = self._div_mod(kind, a, b)
            if simplified is not None:
                return simplified
        if kind in (NodeKind.MIN, NodeKind.MAX):
            diff = _const_diff(a, b)
            if diff is not None:
                if kind == NodeKind.MIN:
                    return a if diff <= 0 else b
                return a if diff >= 0 else b
            if struct_key(a) == struct_key(b):
                return a
        if kind in _COMPARE:
            diff = _const_diff(a, b)
            if diff is not None:
                return op.const(_COMPARE[kind](diff), "bool")
        if a is node.a and b is node.b and not (
            isinstance(a, Constant) and isinstance(b, Constant)
        ):
            return node
        return _BUILDERS[kind](a, b)

    def _div_mod(self, kind: NodeKind, a: PrimExpr, b: PrimExpr) -> PrimExpr | None:
        if not isinstance(b, Constant) or b.value <= 0:
            return None
        divisor = int(b.value)
        if divisor == 1:
            return a if kind == NodeKind.DIV else op.const(0, a.dtype)
        terms, const = _to_linear(a)
        divisible = const % divisor == 0 and all(
            coef % divisor == 0 for _, coef in terms.values()
        )
        if not divisible:
            return None
        if kind == NodeKind.MOD:
            return op.const(0, a.dtype)
        return _from_linear(
            {key: [atom, coef // divisor] for key, (atom, coef) in terms.items()},
            const // divisor,
            a.dtype,
        )

    mutate_add = mutate_sub = mutate_mul = _binary
    mutate_div = mutate_mod = mutate_min = mutate_max = _binary
    mutate_eq = mutate_ne = mutate_lt = mutate_le = mutate_gt = mutate_ge = _binary
    mutate_and = mutate_or = _binary

    def mutate_not(self, node: Any) -> PrimExpr:
        return op.logical_not(self.mutate(node.a))

    def mutate_select(self, node: Select) -> PrimExpr:
        condition = self.mutate(node.condition)
        true_value = self.mutate(node.true_value)
        false_value = self.mutate(node.false_value)
        if struct_key(true_value) == struct_key(false_value):
            return true_value
        return op.select(condition, true_value, false_value)

    def mutate_cast(self, node: Cast) -> PrimExpr:
        return op.cast(node.dtype, self.mutate(node.value))

    def mutate_call(self, node: Call) -> PrimExpr:
        new = self.generic_mutate(node)
        if new.name == "likely" and isinstance(new.args[0], Constant):
            return new.args[0]
        return new

    def mutate_let(self, node: Let) -> PrimExpr:
        value = self.mutate(node.value)
        if isinstance(value, (Constant, Var)):
            return self.mutate(substitute(node.body, {node.var: value}))
        body = self.mutate(node.body)
        if value is node.value and body is node.body:
            return node
        return Let(node.var, value, body)


def simplify_expr(expr: Any) -> Any:
    """Simplifies an expression (or any tree) into its canonical form."""
    return Simplifier().mutate(expr)


def can_prove(condition: PrimExpr) -> bool:
    result = simplify_expr(op.convert(condition))
    return isinstance(result, Constant) and bool(result.value)


def _interval_mul(a: Interval, b: Interval) -> Interval:
    (alo, ahi), (blo, bhi) = a, b
    if isinstance(blo, Constant) and blo is bhi:
        if blo.value >= 0:
            return op.mul(alo, blo), op.mul(ahi, blo)
        return op.mul(ahi, blo), op.mul(alo, blo)
    if isinstance(alo, Constant) and alo is ahi:
        return _interval_mul(b, a)
    if alo is ahi and blo is bhi:
        point = op.mul(alo, blo)
        return point, point
    products = [op.mul(x, y) for x in (alo, ahi) for y in (blo, bhi)]
    lo, hi = products[0], products[0]
    for product in products[1:]:
        lo, hi = op.minimum(lo, product), op.maximum(hi, product)
    return lo, hi


def eval_interval(
    expr: PrimExpr, dom_map: Mapping[Var, Interval]
) -> Interval | None:
    """
    Returns the inclusive interval covering the values of ``expr`` when
    the variables of ``dom_map`` range over their intervals. Other
    variables are kept symbolic. Returns None when no bound is known.
    """
    result = _eval_interval(op.convert(expr), dom_map)
    if result is None:
        return None
    return simplify_expr(result[0]), simplify_expr(result[1])


def _eval_interval(expr: PrimExpr, dom_map: Mapping[Var, Interval]) -> Interval | None:
    if isinstance(expr, Var):
        return dom_map.get(expr, (expr, expr))
    if isinstance(expr, Constant):
        return expr, expr
    if not uses_var(expr, set(dom_map)):
        return expr, expr
    if isinstance(expr, (Add, Sub, Mul, Div, Mod, Min, Max)):
        a = _eval_interval(expr.a, dom_map)
        b = _eval_interval(expr.b, dom_map)
        if a is None or b is None:
            return None
        if isinstance(expr, Add):
            return op.add(a[0], b[0]), op.add(a[1], b[1])
        if isinstance(expr, Sub):
            return op.sub(a[0], b[1]), op.sub(a[1], b[0])
        if isinstance(expr, Mul):
            return _interval_mul(a, b)
        if isinstance(expr, Min):
            return op.minimum(a[0], b[0]), op.minimum(a[1], b[1])
        if isinstance(expr, Max):
            return op.maximum(a[0], b[0]), op.maximum(a[1], b[1])
        divisor = b[0] if b[0] is b[1] else None
        if not isinstance(divisor, Constant) or divisor.value == 0:
            return None
        if isinstance(expr, Div):
            if not expr.dtype.is_integer:
                return None
            if divisor.value > 0:
                return op.div(a[0], divisor), op.div(a[1], divisor)
            return op.div(a[1], divisor), op.div(a[0], divisor)
        c = abs(int(divisor.value))
        lo, hi = simplify_expr(a[0]), simplify_expr(a[1])
        if (
            isinstance(lo, Constant)
            and isinstance(hi, Constant)
            and 0 <= lo.value
            and lo.value // c == hi.value // c
        ):
            return (
                op.const(lo.value % c, expr.dtype),
                op.const(hi.value % c, expr.dtype),
            )
        if isinstance(lo, Constant) and lo.value < 0:
            return op.const(-(c - 1), expr.dtype), op.const(c - 1, expr.dtype)
        return op.const(0, expr.dtype), op.const(c - 1, expr.dtype)
    if isinstance(expr, Select):
        t = _eval_interval(expr.true_value, dom_map)
        f = _eval_interval(expr.false_value, dom_map)
        if t is None or f is None:
            return None
        return op.minimum(t[0], f[0]), op.maximum(t[1], f[1])
    if isinstance(expr, Cast):
        value = _eval_interval(expr.value, dom_map)
        if value is None:
            return None
        return op.cast(expr.dtype, value[0]), op.cast(expr.dtype, value[1])
    return None
