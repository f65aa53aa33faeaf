#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Target specific lowering of the math intrinsics.

The lowering rules of every target family are registered once, on
first use, and map an intrinsic call to a call of the target math
library function, or to an expression computing it.
"""

from collections.abc import Callable
from dataclasses import replace
import threading
import logging

from ..ir.expr import PrimExpr, Call, CallType
from ..ir.function import LoweredFunc
from ..ir.functor import IRMutator
from ..ir import op as ops
from ..targets import target_info

__all__ = [
    "lower_intrin",
    "intrinsic_base",
]

logger = logging.getLogger(__name__)

IntrinRule = Callable[[Call], PrimExpr]

_MATH_INTRINSICS = (
    "exp",
    "log",
    "sqrt",
    "tanh",
    "pow",
    "fabs",
    "floor",
    "ceil",
    "trunc",
    "round",
)


def _extern(name: str) -> IntrinRule:
    def rule(call: Call) -> PrimExpr:
        return Call(call.dtype, name, call.args, CallType.PURE_EXTERN)

    return rule


def _by_float_width(f32: str, f64: str) -> IntrinRule:
    def rule(call: Call) -> PrimExpr:
        if not call.dtype.is_float:
            return call
        name = f32 if call.dtype.bits == 32 else f64
        return Call(call.dtype, name, call.args, CallType.PURE_EXTERN)

    return rule


def _sigmoid(call: Call) -> PrimExpr:
    x = call.args[0]
    one = ops.const(1, x.dtype.element_of())
    exp = ops.call_pure_intrin(x.dtype, "exp", ops.neg(x))
    return ops.div(one, ops.add(one, exp))


def _popcount(int32: str, int64: str) -> IntrinRule:
    def rule(call: Call) -> PrimExpr:
        name = int64 if call.dtype.bits == 64 else int32
        return Call(call.dtype, name, call.args, CallType.PURE_EXTERN)

    return rule


def _cpu_rules() -> dict[str, IntrinRule]:
    rules: dict[str, IntrinRule] = {name: _extern(name) for name in _MATH_INTRINSICS}
    rules["sigmoid"] = _sigmoid
    rules["popcount"] = _extern("popcount")
    return rules


def _cuda_rules() -> dict[str, IntrinRule]:
    rules: dict[str, IntrinRule] = {
        name: _by_float_width(f"{name}f", name) for name in _MATH_INTRINSICS
    }
    rules["exp"] = _by_float_width("__expf", "exp")
    rules["sigmoid"] = _sigmoid
    rules["popcount"] = _popcount("__popc", "__popcll")
    return rules


def _rocm_rules() -> dict[str, IntrinRule]:
    rules: dict[str, IntrinRule] = {
        name: _by_float_width(f"__ocml_{name}_f32", f"__ocml_{name}_f64")
        for name in _MATH_INTRINSICS
    }
    rules["sigmoid"] = _sigmoid
    rules["popcount"] = _popcount("__ockl_popcount_u32", "__ockl_popcount_u64")
    return rules


def _default_rules() -> dict[str, IntrinRule]:
    return _cpu_rules()


_rule_factories: dict[str, Callable[[], dict[str, IntrinRule]]] = {
    "llvm": _cpu_rules,
    "cuda": _cuda_rules,
    "nvptx": _cuda_rules,
    "rocm": _rocm_rules,
    "opencl": _default_rules,
    "metal": _default_rules,
    "vulkan": _default_rules,
    "opengl": _default_rules,
}

_intrin_rules_lock = threading.Lock()
_intrin_rules: dict[str, dict[str, IntrinRule]] | None = None


def _resolve_rules() -> None:
    global _intrin_rules
    if _intrin_rules is not None:
        return
    with _intrin_rules_lock:
        if _intrin_rules is not None:
            return
        rules = {}
        for family, factory in _rule_factories.items():
            rules[family] = factory()
            logger.debug(
                "Registering intrinsic rules: %s: %s", family, sorted(rules[family])
            )
        _intrin_rules = rules


def _family_rules(target_name: str) -> dict[str, IntrinRule]:
    _resolve_rules()
    family = target_info(target_name).target_name
    return _intrin_rules.get(family, _intrin_rules["llvm"])


class _IntrinLowering(IRMutator):
    def __init__(self, rules: dict[str, IntrinRule]) -> None:
        self.rules = rules

    def mutate_call(self, node: Call) -> PrimExpr:
        node = self.generic_mutate(node)
        if node.call_type not in (CallType.PURE_INTRINSIC, CallType.INTRINSIC):
            return node
        rule = self.rules.get(node.name)
        if rule is None:
            return node
        lowered = rule(node)
        if lowered is node:
            return node
        return self.mutate(lowered)


def lower_intrin(func: LoweredFunc, target_name: str) -> LoweredFunc:
    """Lowers the math intrinsics of ``func`` for the ``target_name`` family."""
    body = _IntrinLowering(_family_rules(target_name)).mutate(func.body)
    if body is func.body:
        return func
    return replace(func, body=body)


_EXTERN_PREFIXES = ("__ocml_", "__ockl_", "__")
_EXTERN_SUFFIXES = ("_f32", "_f64", "_u32", "_u64")
_EXTERN_ALIASES = {
    "popc": "popcount",
    "popcll": "popcount",
}


def intrinsic_base(name: str) -> str:
    """
    Returns the generic intrinsic name of a lowered math function name,
    for instance ``__expf`` gives ``exp`` and ``__ocml_sqrt_f64`` gives
    ``sqrt``.
    """
    base = name
    for prefix in _EXTERN_PREFIXES:
        if base.startswith(prefix):
            base = base[len(prefix) :]
            break
    for suffix in _EXTERN_SUFFIXES:
        if base.endswith(suffix):
            base = base[: -len(suffix)]
            break
    base = _EXTERN_ALIASES.get(base, base)
    if base not in _MATH_INTRINSICS and base.endswith("f"):
        if base[:-1] in _MATH_INTRINSICS:
            base = base[:-1]
    return base
