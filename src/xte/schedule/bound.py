#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Bound inference: ranges of the iteration variables of every stage.

Root data parallel axes of root stages cover their full domain. The
root axes of a stage computed at a loop of another stage cover the
region read by its consumers, the consumer loops outer to the attach
point being fixed. Leaf ranges are derived from the root ones through
the split/fuse/rebase relations, every leaf loop starting at 0.
"""

from collections.abc import Mapping
import logging

from ..ir.expr import PrimExpr, Var, Call, CallType, IterVar, Range
from ..ir.functor import post_order_visit, substitute
from ..ir.arith import simplify_expr, eval_interval
from ..ir import op as ops
from ..te.operation import ComputeOp, Operation
from .schedule import Schedule, Stage, AttachType, Split, Fuse, Rebase

__all__ = [
    "infer_bound",
    "pass_down_domain",
    "pass_up_index",
    "root_index_map",
    "leaf_value",
]

logger = logging.getLogger(__name__)


def _zero(iv: IterVar) -> PrimExpr:
    return ops.const(0, iv.dtype)


def pass_down_domain(stage: Stage, rmap: dict[IterVar, Range]) -> None:
    """Sets the ranges of the derived axes from the ranges of their parents."""
    for rel in stage.relations:
        if isinstance(rel, Split):
            extent = rmap[rel.parent].extent
            if rel.factor is not None:
                outer, inner = ops.ceildiv(extent, rel.factor), rel.factor
            else:
                outer, inner = rel.nparts, ops.ceildiv(extent, rel.nparts)
            rmap[rel.outer] = Range(_zero(rel.outer), simplify_expr(outer))
            rmap[rel.inner] = Range(_zero(rel.inner), simplify_expr(inner))
        elif isinstance(rel, Fuse):
            extent = ops.mul(rmap[rel.outer].extent, rmap[rel.inner].extent)
            rmap[rel.fused] = Range(_zero(rel.fused), simplify_expr(extent))
        elif isinstance(rel, Rebase):
            rmap[rel.rebased] = Range(_zero(rel.rebased), rmap[rel.parent].extent)
        else:
            assert False, f"unexpected relation: {rel}"


def pass_up_index(
    stage: Stage, rmap: Mapping[IterVar, Range], leaf_values: Mapping[IterVar, PrimExpr]
) -> dict[IterVar, PrimExpr]:
    """
    Returns the value, relative to its range minimum, of every axis of
    the stage given the values of its leaf axes.
    """
    values = dict(leaf_values)
    for rel in reversed(stage.relations):
        if isinstance(rel, Split):
            values[rel.parent] = ops.add(
                ops.mul(values[rel.outer], rmap[rel.inner].extent), values[rel.inner]
            )
        elif isinstance(rel, Fuse):
            extent = rmap[rel.inner].extent
            values[rel.outer] = ops.div(values[rel.fused], extent)
            values[rel.inner] = ops.mod(values[rel.fused], extent)
        elif isinstance(rel, Rebase):
            values[rel.parent] = values[rel.rebased]
    return values


def root_index_map(
    stage: Stage, rmap: Mapping[IterVar, Range], leaf_values: Mapping[IterVar, PrimExpr]
) -> dict[Var, PrimExpr]:
    """Maps the root axis variables of the stage to their absolute value."""
    values = pass_up_index(stage, rmap, leaf_values)
    return {
        iv.var: simplify_expr(ops.add(rmap[iv].min, values[iv]))
        for iv in stage.op.root_iter_vars
    }


def leaf_value(stage: Stage, leaf: IterVar) -> Var:
    """Variable holding the value of a leaf axis in the loop nest."""
    attr = stage.iter_var_attrs.get(leaf)
    if attr is not None and attr.bind_thread is not None:
        return attr.bind_thread.var
    return leaf.var


def _thread_relaxed(stage: Stage, leaf: IterVar, scope: str) -> bool:
    attr = stage.iter_var_attrs.get(leaf)
    if attr is None or attr.bind_thread is None:
        return False
    tag = attr.bind_thread.thread_tag
    if scope == "shared":
        return tag.startswith("threadIdx")
    if scope in ("", "global"):
        return True
    return False


def _accesses(consumer: Operation, producer: Operation) -> list[tuple[PrimExpr, ...]]:
    found: list[tuple[PrimExpr, ...]] = []

    def collect(node) -> None:
        if (
            isinstance(node, Call)
            and node.call_type == CallType.HALIDE
            and node.func is producer
        ):
            found.append(node.args)

    for expr in consumer.body:
        post_order_visit(expr, collect)
    return found


def _required_region(
    stage: Stage,
    consumers: list[Stage],
    rmap: dict[IterVar, Range],
) -> list[Range]:
    op = stage.op
    lows: list[list[PrimExpr]] = [[] for _ in op.axis]
    highs: list[list[PrimExpr]] = [[] for _ in op.axis]
    for consumer in consumers:
        is_parent = consumer is stage.attach_stage
        attach_pos = (
            consumer.leaf_iter_vars.index(stage.attach_ivar) if is_parent else -1
        )
        leaf_values: dict[IterVar, PrimExpr] = {}
        dom_map: dict[Var, tuple[PrimExpr, PrimExpr]] = {}
        for pos, leaf in enumerate(consumer.leaf_iter_vars):
            value = leaf_value(consumer, leaf)
            leaf_values[leaf] = value
            relaxed = (
                not is_parent
                or pos > attach_pos
                or _thread_relaxed(consumer, leaf, stage.scope)
            )
            if relaxed:
                extent = rmap[leaf].extent
                dom_map[value] = (ops.const(0, value.dtype), ops.sub(extent, 1))
        vmap = root_index_map(consumer, rmap, leaf_values)
        for args in _accesses(consumer.op, op):
            for dim, arg in enumerate(args):
                interval = eval_interval(substitute(arg, vmap), dom_map)
                if interval is None:
                    dom = op.axis[dim].dom
                    interval = (dom.min, ops.sub(ops.add(dom.min, dom.extent), 1))
                lows[dim].append(interval[0])
                highs[dim].append(interval[1])
    region = []
    for iv, los, his in zip(op.axis, lows, highs):
        if not los:
            region.append(iv.dom)
            continue
        lo, hi = los[0], his[0]
        for other_lo, other_hi in zip(los[1:], his[1:]):
            lo, hi = ops.minimum(lo, other_lo), ops.maximum(hi, other_hi)
        lo = simplify_expr(lo)
        region.append(Range(lo, simplify_expr(ops.add(ops.sub(hi, lo), 1))))
    return region


def _consumer_map(schedule: Schedule) -> dict[int, list[Stage]]:
    consumers: dict[int, list[Stage]] = {}
    for stage in schedule.stages:
        if not isinstance(stage.op, ComputeOp):
            continue
        if stage.attach_type == AttachType.INLINE:
            continue
        for tensor in stage.op.input_tensors():
            producer = schedule.find_stage(tensor.op)
            if producer is not None:
                consumers.setdefault(id(producer), []).append(stage)
    return consumers


def infer_bound(schedule: Schedule) -> dict[IterVar, Range]:
    """
    Returns the range of every iteration variable of every stage of the
    (normalized) schedule, and of the thread axes they are bound to.
    """
    schedule.normalize()
    rmap: dict[IterVar, Range] = {}
    consumers = _consumer_map(schedule)
    for stage in reversed(schedule.stages):
        op = stage.op
        if not isinstance(op, ComputeOp):
            continue
        if stage.attach_type == AttachType.SCOPE and not stage.is_output:
            region = _required_region(stage, consumers.get(id(stage), []), rmap)
            for iv, rng in zip(op.axis, region):
                rmap[iv] = rng
        else:
            for iv in op.axis:
                rmap[iv] = iv.dom
        for iv in op.reduce_axis:
            rmap[iv] = iv.dom
        pass_down_domain(stage, rmap)
        for leaf in stage.leaf_iter_vars:
            attr = stage.iter_var_attrs.get(leaf)
            if attr is not None and attr.bind_thread is not None:
                rmap[attr.bind_thread] = rmap[leaf]
        logger.debug(
            "infer_bound: %s: %s",
            stage,
            ", ".join(f"{iv.name}: {rmap[iv].extent}" for iv in stage.leaf_iter_vars),
        )
    return rmap
