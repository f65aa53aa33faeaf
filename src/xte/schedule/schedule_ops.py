#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Realization of a schedule into a statement tree.

Every root stage becomes a Realize of its outputs enclosing its loop
nest followed by the stages consuming it. A stage computed at a loop of
another stage is realized inside that loop, before the loop body.
Loops bound to threads become thread_extent (resp. virtual_thread)
attributes on the thread axes.
"""

from collections.abc import Mapping
import logging

from ..errors import ScheduleError, UnsupportedOperation
from ..ir.dtype import DataType
from ..ir.expr import (
    PrimExpr,
    Var,
    Call,
    CallType,
    Load,
    Reduce,
    IterVar,
    IterVarType,
    Range,
    StringImm,
    HANDLE,
)
from ..ir.stmt import (
    Stmt,
    AttrStmt,
    For,
    ForType,
    Provide,
    Store,
    Allocate,
    Realize,
    IfThenElse,
    Evaluate,
    make_seq,
)
from ..ir.functor import substitute
from ..ir.arith import simplify_expr, can_prove, eval_interval
from ..ir import op as ops
from ..te.operation import ComputeOp
from .schedule import Schedule, Stage, AttachType, Split
from .bound import pass_up_index, root_index_map, leaf_value

__all__ = [
    "schedule_ops",
]

logger = logging.getLogger(__name__)

_FOR_TYPES = {
    IterVarType.UNROLLED: ForType.UNROLLED,
    IterVarType.VECTORIZED: ForType.VECTORIZED,
    IterVarType.PARALLELIZED: ForType.PARALLEL,
}

_TRUE = ops.const(True, "bool")


class _NestBuilder:
    def __init__(
        self, schedule: Schedule, rmap: Mapping[IterVar, Range]
    ) -> None:
        self.schedule = schedule
        self.rmap = rmap
        self.attached: dict[IterVar, list[Stage]] = {}
        for stage in schedule.stages:
            if stage.attach_type != AttachType.SCOPE:
                continue
            parent = stage.attach_stage
            if parent.attach_type == AttachType.INLINE:
                raise ScheduleError(
                    f"{stage.name}: computed at inlined stage {parent.name}",
                    stage=stage.name,
                )
            self.attached.setdefault(stage.attach_ivar, []).append(stage)
        self.leaf_domains: dict[Var, tuple[PrimExpr, PrimExpr]] = {}
        for stage in schedule.stages:
            if not isinstance(stage.op, ComputeOp):
                continue
            if stage.attach_type == AttachType.INLINE:
                continue
            for leaf in stage.leaf_iter_vars:
                value = leaf_value(stage, leaf)
                self.leaf_domains.setdefault(
                    value,
                    (ops.const(0, value.dtype), ops.sub(rmap[leaf].extent, 1)),
                )

    def pipeline(self, stage: Stage, consumer: Stmt | None) -> Stmt:
        op = stage.op
        produce = self.compute_nest(stage)
        if stage.double_buffered:
            produce = AttrStmt(
                op, "double_buffer_scope", ops.const(1, "int32"), produce
            )
        body = make_seq(produce, consumer)
        bounds = tuple(
            Range(self.rmap[iv].min, self.rmap[iv].extent) for iv in op.axis
        )
        for idx in reversed(range(op.num_outputs)):
            body = Realize(op, idx, op.output_dtype(idx), bounds, _TRUE, body)
        if stage.scope:
            body = AttrStmt(op, "realize_scope", StringImm(stage.scope), body)
        return body

    def make_loop(self, stage: Stage, leaf: IterVar, body: Stmt) -> Stmt:
        extent = self.rmap[leaf].extent
        attr = stage.iter_var_attrs.get(leaf)
        if attr is not None:
            for tensor, offset in zip(attr.prefetch_data, attr.prefetch_offset):
                body = AttrStmt(tensor, "prefetch_scope", offset, body)
        if attr is not None and attr.bind_thread is not None:
            thread = attr.bind_thread
            key = (
                "virtual_thread"
                if thread.thread_tag.startswith("vthread")
                else "thread_extent"
            )
            return AttrStmt(thread, key, extent, body)
        kind = leaf.iter_type
        if attr is not None and attr.iter_type is not None:
            kind = attr.iter_type
        return For(
            leaf.var,
            ops.const(0, leaf.dtype),
            extent,
            _FOR_TYPES.get(kind, ForType.SERIAL),
            body,
        )

    def nest(
        self,
        stage: Stage,
        leaves: list[IterVar],
        body: Stmt,
        inserts: Mapping[int, Stmt] | None = None,
    ) -> Stmt:
        """
        Wraps ``body`` in the loops of ``leaves``, realizing the attached
        stages inside their loop. ``inserts`` maps a leaf position to a
        statement placed before the loop of that position.
        """
        for pos in reversed(range(len(leaves))):
            leaf = leaves[pos]
            for child in reversed(self.attached.get(leaf, [])):
                body = self.pipeline(child, body)
            body = self.make_loop(stage, leaf, body)
            if inserts and pos in inserts:
                body = make_seq(inserts[pos], body)
        return body

    def _guards(
        self, stage: Stage, values: Mapping[IterVar, PrimExpr], reduce: bool
    ) -> list[PrimExpr]:
        guards = []
        for rel in stage.relations:
            if not isinstance(rel, Split):
                continue
            if (rel.parent.iter_type == IterVarType.COMM_REDUCE) != reduce:
                continue
            extent = self.rmap[rel.parent].extent
            divisor = rel.factor if rel.factor is not None else rel.nparts
            if can_prove(ops.eq(ops.mod(extent, divisor), 0)):
                continue
            guards.append(ops.likely(ops.lt(values[rel.parent], extent)))
        return guards

    def _domain_guards(
        self, stage: Stage, vmap: Mapping[Var, PrimExpr]
    ) -> list[PrimExpr]:
        """
        Guards keeping an attached stage inside its domain when the
        region required at its attach point may overflow it.
        """
        if stage.attach_type != AttachType.SCOPE:
            return []
        guards = []
        for iv in stage.op.axis:
            rng, dom = self.rmap[iv], iv.dom
            end = ops.add(dom.min, dom.extent)
            low = eval_interval(rng.min, self.leaf_domains)
            high = eval_interval(ops.add(rng.min, rng.extent), self.leaf_domains)
            if low is None or not can_prove(ops.ge(low[0], dom.min)):
                guards.append(ops.likely(ops.ge(vmap[iv.var], dom.min)))
            if high is None or not can_prove(ops.le(high[1], end)):
                guards.append(ops.likely(ops.lt(vmap[iv.var], end)))
        return guards

    @staticmethod
    def _guarded(guards: list[PrimExpr], body: Stmt) -> Stmt:
        for guard in reversed(guards):
            body = IfThenElse(guard, body)
        return body

    def compute_nest(self, stage: Stage) -> Stmt:
        op = stage.op
        assert isinstance(op, ComputeOp), f"no loop nest for {op.name}"
        leaves = stage.leaf_iter_vars
        leaf_values = {leaf: leaf_value(stage, leaf) for leaf in leaves}
        values = pass_up_index(stage, self.rmap, leaf_values)
        vmap = root_index_map(stage, self.rmap, leaf_values)
        args = tuple(vmap[iv.var] for iv in op.axis)
        data_guards = self._guards(stage, values, reduce=False)
        data_guards += self._domain_guards(stage, vmap)
        if not op.reduce_axis:
            provides = [
                Provide(op, idx, simplify_expr(substitute(body, vmap)), args)
                for idx, body in enumerate(op.body)
            ]
            return self.nest(
                stage, leaves, self._guarded(data_guards, make_seq(*provides))
            )
        reduce_guards = self._guards(stage, values, reduce=True)
        if any(
            self._is_thread_bound(stage, leaf)
            for leaf in leaves
            if leaf.iter_type == IterVarType.COMM_REDUCE
        ):
            return self._cross_thread_nest(
                stage, leaf_values, vmap, args, data_guards, reduce_guards
            )
        return self._reduce_nest(
            stage, vmap, args, leaf_values, data_guards, reduce_guards
        )

    @staticmethod
    def _is_thread_bound(stage: Stage, leaf: IterVar) -> bool:
        attr = stage.iter_var_attrs.get(leaf)
        return attr is not None and attr.bind_thread is not None

    @staticmethod
    def _update_values(
        op: ComputeOp, reduce: Reduce, args: tuple[PrimExpr, ...], vmap
    ) -> list[PrimExpr]:
        combiner = reduce.combiner
        rmap: dict[Var, PrimExpr] = {}
        for idx, lhs in enumerate(combiner.lhs):
            rmap[lhs] = Call(
                op.output_dtype(idx), op.name, args, CallType.HALIDE, op, idx
            )
        for rhs, src in zip(combiner.rhs, reduce.source):
            rmap[rhs] = substitute(src, vmap)
        return [substitute(result, rmap) for result in combiner.result]

    def _reduce_nest(
        self, stage, vmap, args, leaf_values, data_guards, reduce_guards
    ) -> Stmt:
        op = stage.op
        leaves = stage.leaf_iter_vars
        reduce = op.body[0]
        updates = self._update_values(op, reduce, args, vmap)
        update: Stmt = make_seq(
            *[Provide(op, idx, value, args) for idx, value in enumerate(updates)]
        )
        if reduce.condition is not None:
            update = IfThenElse(substitute(reduce.condition, vmap), update)
        update = self._guarded(data_guards + reduce_guards, update)
        first_reduce = next(
            pos
            for pos, leaf in enumerate(leaves)
            if leaf.iter_type == IterVarType.COMM_REDUCE
        )
        # Data parallel loops inner to the reduction are duplicated for init.
        init_leaves = [
            leaf
            for leaf in leaves[first_reduce:]
            if leaf.iter_type != IterVarType.COMM_REDUCE
        ]
        init_vars = {
            leaf_values[leaf]: Var(f"{leaf.name}.init", leaf.dtype)
            for leaf in init_leaves
        }
        init: Stmt = make_seq(
            *[
                Provide(op, idx, identity, args)
                for idx, identity in enumerate(reduce.combiner.identity_element)
            ]
        )
        init = self._guarded(data_guards, init)
        for leaf in reversed(init_leaves):
            init = For(
                init_vars[leaf_values[leaf]],
                ops.const(0, leaf.dtype),
                self.rmap[leaf].extent,
                ForType.SERIAL,
                init,
            )
        init = substitute(init, init_vars)
        return self.nest(stage, leaves, update, {first_reduce: init})

    def _cross_thread_nest(
        self, stage, leaf_values, vmap, args, data_guards, reduce_guards
    ) -> Stmt:
        op = stage.op
        if op.num_outputs != 1:
            raise UnsupportedOperation(
                f"{op.name}: cross thread reduction of multiple outputs",
                operation=op.name,
            )
        reduce = op.body[0]
        dtype: DataType = op.output_dtype(0)
        leaves = stage.leaf_iter_vars
        outer = [
            leaf
            for leaf in leaves
            if leaf.iter_type != IterVarType.COMM_REDUCE
            or self._is_thread_bound(stage, leaf)
        ]
        serial = [leaf for leaf in leaves if leaf not in outer]
        threads = [
            leaf_values[leaf]
            for leaf in leaves
            if leaf.iter_type == IterVarType.COMM_REDUCE
            and self._is_thread_bound(stage, leaf)
        ]
        acc = Var(f"{op.name}.normal_reduce", HANDLE)
        result = Var(f"{op.name}.reduce_temp", HANDLE)
        zero = ops.const(0, "int32")
        lhs = reduce.combiner.lhs[0]
        value = substitute(
            reduce.combiner.result[0],
            {
                lhs: Load(dtype, acc, zero),
                **{
                    rhs: substitute(src, vmap)
                    for rhs, src in zip(reduce.combiner.rhs, reduce.source)
                },
            },
        )
        accumulate: Stmt = Store(acc, value, zero)
        if reduce.condition is not None:
            accumulate = IfThenElse(substitute(reduce.condition, vmap), accumulate)
        accumulate = self._guarded(reduce_guards, accumulate)
        for leaf in reversed(serial):
            accumulate = self.make_loop(stage, leaf, accumulate)
        allreduce = Evaluate(
            ops.call_intrin(
                HANDLE,
                "xte_thread_allreduce",
                ops.const(1, "uint32"),
                Load(dtype, acc, zero),
                _TRUE,
                result,
                *threads,
            )
        )
        body = make_seq(
            Store(acc, reduce.combiner.identity_element[0], zero),
            accumulate,
            AttrStmt(reduce.combiner, "reduce_scope", ops.const(0, "int32"), allreduce),
            self._guarded(data_guards, Provide(op, 0, Load(dtype, result, zero), args)),
        )
        one = (ops.const(1, "int32"),)
        body = Allocate(result, dtype, one, _TRUE, body)
        body = AttrStmt(result, "storage_scope", StringImm("local"), body)
        body = Allocate(acc, dtype, one, _TRUE, body)
        body = AttrStmt(acc, "storage_scope", StringImm("local"), body)
        return self.nest(stage, outer, body)


def schedule_ops(schedule: Schedule, bounds: Mapping[IterVar, Range]) -> Stmt:
    """
    Returns the statement tree realizing the (normalized) schedule with
    the iteration ranges inferred by infer_bound.
    """
    schedule.normalize()
    builder = _NestBuilder(schedule, bounds)
    body: Stmt | None = None
    for stage in reversed(schedule.stages):
        if not isinstance(stage.op, ComputeOp):
            continue
        if stage.attach_type != AttachType.ROOT:
            continue
        body = builder.pipeline(stage, body)
        logger.debug("schedule_ops: realized %s", stage)
    return make_seq(body)
