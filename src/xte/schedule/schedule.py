#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any
import logging

from ..errors import (
    IllegalTransform,
    ScheduleError,
    TooManyAxes,
    UnsupportedOperation,
)
from ..ir.expr import (
    PrimExpr,
    Var,
    Call,
    CallType,
    Reduce,
    IterVar,
    IterVarType,
    Range,
)
from ..ir.functor import IRMutator, substitute
from ..ir.arith import simplify_expr
from ..ir import op as ops
from ..te.operation import Operation, ComputeOp, as_operation
from ..te.tensor import Tensor

__all__ = [
    "AttachType",
    "Split",
    "Fuse",
    "Rebase",
    "IterVarAttr",
    "Stage",
    "Schedule",
    "create_schedule",
    "stage_bind_gpu",
]

logger = logging.getLogger(__name__)


class AttachType(IntEnum):
    ROOT = 0
    INLINE = 1
    SCOPE = 2


@dataclass(frozen=True)
class Split:
    parent: IterVar
    outer: IterVar
    inner: IterVar
    factor: PrimExpr | None
    nparts: PrimExpr | None


@dataclass(frozen=True)
class Fuse:
    outer: IterVar
    inner: IterVar
    fused: IterVar


@dataclass(frozen=True)
class Rebase:
    parent: IterVar
    rebased: IterVar


IterVarRelation = Split | Fuse | Rebase


@dataclass
class IterVarAttr:
    iter_type: IterVarType | None = None
    bind_thread: IterVar | None = None
    prefetch_data: list[Tensor] = field(default_factory=list)
    prefetch_offset: list[PrimExpr] = field(default_factory=list)


# Transforms forbidden per iteration variable kind.
_FORBIDDEN: dict[str, frozenset[IterVarType]] = {
    "split": frozenset({IterVarType.THREAD_INDEX, IterVarType.OPAQUE}),
    "fuse": frozenset({IterVarType.THREAD_INDEX, IterVarType.OPAQUE}),
    "reorder": frozenset(
        {IterVarType.THREAD_INDEX, IterVarType.ORDERED, IterVarType.OPAQUE}
    ),
    "vectorize": frozenset(
        {
            IterVarType.THREAD_INDEX,
            IterVarType.COMM_REDUCE,
            IterVarType.ORDERED,
            IterVarType.OPAQUE,
        }
    ),
    "parallel": frozenset(
        {
            IterVarType.THREAD_INDEX,
            IterVarType.COMM_REDUCE,
            IterVarType.ORDERED,
            IterVarType.OPAQUE,
        }
    ),
    "unroll": frozenset({IterVarType.OPAQUE}),
    "bind": frozenset({IterVarType.OPAQUE}),
    "compute_at": frozenset({IterVarType.OPAQUE}),
}


_GPU_AXIS_NAMES = ("z", "y", "x")


def _as_axes(axes: Sequence[Any]) -> list[IterVar]:
    if len(axes) == 1 and isinstance(axes[0], (list, tuple)):
        return list(axes[0])
    return list(axes)


class Stage:
    """
    Scheduling state of one operation: its loop nest (leaf iteration
    variables), the relations deriving them from the root ones, per axis
    annotations and where the operation is computed.
    """

    def __init__(self, op: Operation, schedule: "Schedule") -> None:
        self.op = op
        self.origin_op = op
        self.schedule = schedule
        root = list(op.root_iter_vars) if isinstance(op, ComputeOp) else []
        self.all_iter_vars: list[IterVar] = list(root)
        self.leaf_iter_vars: list[IterVar] = list(root)
        self.relations: list[IterVarRelation] = []
        self.iter_var_attrs: dict[IterVar, IterVarAttr] = {}
        self.attach_type = AttachType.ROOT
        self.attach_stage: "Stage | None" = None
        self.attach_ivar: IterVar | None = None
        self.scope = ""
        self.is_output = False
        self.double_buffered = False

    @property
    def name(self) -> str:
        return self.op.name

    def __str__(self) -> str:
        return f"stage({self.op.name}, {self.op.idx})"

    __repr__ = __str__

    def _leaf_index(self, axis: Any) -> int:
        for idx, leaf in enumerate(self.leaf_iter_vars):
            if leaf is axis:
                return idx
        raise IllegalTransform(
            f"{self.name}: axis {axis} is not a leaf axis of the stage",
            stage=self.name,
            axis=str(axis),
        )

    def iter_var_kind(self, axis: IterVar) -> IterVarType:
        attr = self.iter_var_attrs.get(axis)
        if attr is not None and attr.bind_thread is not None:
            return IterVarType.THREAD_INDEX
        return axis.iter_type

    def _check_legal(self, action: str, *axes: IterVar) -> None:
        for axis in axes:
            self._leaf_index(axis)
            kind = self.iter_var_kind(axis)
            if kind in _FORBIDDEN[action]:
                raise IllegalTransform(
                    f"{self.name}: {action} not allowed on {kind.token} axis "
                    f"{axis.name}",
                    stage=self.name,
                    action=action,
                    kind=kind.token,
                )

    def _attr(self, axis: IterVar) -> IterVarAttr:
        return self.iter_var_attrs.setdefault(axis, IterVarAttr())

    def _check_factor(self, value: Any, what: str) -> PrimExpr:
        value = ops.convert(value)
        if not value.dtype.is_integer:
            raise IllegalTransform(
                f"{self.name}: split {what} must be an integer, got {value.dtype}",
                stage=self.name,
            )
        if ops.is_const(value) and value.value <= 0:
            raise IllegalTransform(
                f"{self.name}: split {what} must be positive, got {value.value}",
                stage=self.name,
            )
        return value

    def _check_split(self, parent: IterVar, factor: Any, nparts: Any) -> PrimExpr:
        self._check_legal("split", parent)
        if (factor is None) == (nparts is None):
            raise IllegalTransform(
                f"{self.name}: split requires exactly one of factor or nparts",
                stage=self.name,
            )
        if factor is not None:
            return self._check_factor(factor, "factor")
        return self._check_factor(nparts, "nparts")

    def split(
        self, parent: IterVar, factor: Any = None, nparts: Any = None
    ) -> tuple[IterVar, IterVar]:
        """
        Splits ``parent`` in an outer and an inner axis, the inner extent
        being ``factor`` (resp. the outer extent being ``nparts``).
        The outer extent is ceil(extent/factor).
        """
        value = self._check_split(parent, factor, nparts)
        outer_dom = inner_dom = None
        if parent.dom is not None:
            extent = parent.dom.extent
            if factor is not None:
                outer_ext, inner_ext = ops.ceildiv(extent, value), value
            else:
                outer_ext, inner_ext = value, ops.ceildiv(extent, value)
            zero = ops.const(0, parent.dtype)
            outer_dom = Range(zero, simplify_expr(outer_ext))
            inner_dom = Range(zero, simplify_expr(inner_ext))
        outer = IterVar(
            outer_dom, Var(f"{parent.name}.outer", parent.dtype), parent.iter_type
        )
        inner = IterVar(
            inner_dom, Var(f"{parent.name}.inner", parent.dtype), parent.iter_type
        )
        pos = self._leaf_index(parent)
        self.leaf_iter_vars[pos : pos + 1] = [outer, inner]
        self.all_iter_vars += [outer, inner]
        self.relations.append(
            Split(
                parent,
                outer,
                inner,
                value if factor is not None else None,
                value if nparts is not None else None,
            )
        )
        logger.debug(
            "%s: split %s -> %s, %s", self, parent.name, outer.name, inner.name
        )
        return outer, inner

    def fuse(self, *axes: Any) -> IterVar:
        """
        Fuses adjacent axes, given outer to inner, in one axis whose
        extent is the product of their extents. A single axis is returned
        unchanged.
        """
        axes = _as_axes(axes)
        if not axes:
            raise IllegalTransform(f"{self.name}: fuse of no axis", stage=self.name)
        if len(axes) == 1:
            self._leaf_index(axes[0])
            return axes[0]
        self._check_legal("fuse", *axes)
        positions = [self._leaf_index(axis) for axis in axes]
        if positions != list(range(positions[0], positions[0] + len(axes))):
            raise IllegalTransform(
                f"{self.name}: fused axes must be adjacent and ordered outer to inner",
                stage=self.name,
                axes=[axis.name for axis in axes],
            )
        reduce_flags = {axis.iter_type == IterVarType.COMM_REDUCE for axis in axes}
        if len(reduce_flags) > 1:
            raise IllegalTransform(
                f"{self.name}: can not fuse data parallel and reduction axes",
                stage=self.name,
                axes=[axis.name for axis in axes],
            )
        fused = axes[0]
        for inner in axes[1:]:
            dom = None
            if fused.dom is not None and inner.dom is not None:
                dom = Range(
                    ops.const(0, fused.dtype),
                    simplify_expr(ops.mul(fused.dom.extent, inner.dom.extent)),
                )
            name = f"{fused.name}.{inner.name}.fused"
            new = IterVar(dom, Var(name, fused.dtype), fused.iter_type)
            self.relations.append(Fuse(fused, inner, new))
            self.all_iter_vars.append(new)
            fused = new
        self.leaf_iter_vars[positions[0] : positions[-1] + 1] = [fused]
        logger.debug("%s: fuse %s", self, fused.name)
        return fused

    def reorder(self, *axes: Any) -> None:
        """Reorders the given leaf axes, the other axes keep their position."""
        axes = _as_axes(axes)
        self._check_legal("reorder", *axes)
        if len({id(axis) for axis in axes}) != len(axes):
            raise IllegalTransform(
                f"{self.name}: duplicate axes in reorder", stage=self.name
            )
        positions = sorted(self._leaf_index(axis) for axis in axes)
        for pos, axis in zip(positions, axes):
            self.leaf_iter_vars[pos] = axis

    def tile(
        self, x_parent: IterVar, y_parent: IterVar, x_factor: Any, y_factor: Any
    ) -> tuple[IterVar, IterVar, IterVar, IterVar]:
        """
        Splits both axes and reorders as (x_outer, y_outer, x_inner, y_inner).
        """
        if x_parent is y_parent:
            raise IllegalTransform(
                f"{self.name}: tile of the same axis twice", stage=self.name
            )
        self._check_split(x_parent, x_factor, None)
        self._check_split(y_parent, y_factor, None)
        self._check_legal("reorder", x_parent, y_parent)
        xo, xi = self.split(x_parent, factor=x_factor)
        yo, yi = self.split(y_parent, factor=y_factor)
        self.reorder(xo, yo, xi, yi)
        return xo, yo, xi, yi

    def _annotate(self, action: str, axis: IterVar, kind: IterVarType) -> None:
        self._check_legal(action, axis)
        self._attr(axis).iter_type = kind
        logger.debug("%s: %s %s", self, action, axis.name)

    def parallel(self, axis: IterVar) -> None:
        self._annotate("parallel", axis, IterVarType.PARALLELIZED)

    def vectorize(self, axis: IterVar) -> None:
        self._annotate("vectorize", axis, IterVarType.VECTORIZED)

    def unroll(self, axis: IterVar) -> None:
        self._annotate("unroll", axis, IterVarType.UNROLLED)

    def bind(self, axis: IterVar, thread_ivar: IterVar) -> None:
        """Binds ``axis`` to a GPU block or thread axis."""
        if (
            not isinstance(thread_ivar, IterVar)
            or thread_ivar.iter_type != IterVarType.THREAD_INDEX
        ):
            raise IllegalTransform(
                f"{self.name}: can only bind to a thread-index iteration variable",
                stage=self.name,
            )
        self._check_legal("bind", axis)
        if axis.iter_type == IterVarType.COMM_REDUCE and not (
            thread_ivar.thread_tag.startswith("threadIdx")
        ):
            raise IllegalTransform(
                f"{self.name}: reduction axis {axis.name} can only be bound to "
                f"threadIdx, got {thread_ivar.thread_tag}",
                stage=self.name,
            )
        self._attr(axis).bind_thread = thread_ivar
        logger.debug("%s: bind %s to %s", self, axis.name, thread_ivar.thread_tag)

    def bind_gpu(
        self, block_axes: Sequence[IterVar], thread_axes: Sequence[IterVar]
    ) -> tuple[list[IterVar], list[IterVar]]:
        """
        Binds up to 3 block axes to blockIdx and up to 3 thread axes to
        threadIdx. Axes are named from the innermost one: a single axis
        is bound to x, two axes to (y, x) and three to (z, y, x).

        Returns:
            The block and thread iteration variables bound to
        """
        block_axes, thread_axes = list(block_axes), list(thread_axes)
        for what, axes in (("block", block_axes), ("thread", thread_axes)):
            if len(axes) > len(_GPU_AXIS_NAMES):
                raise TooManyAxes(
                    f"{self.name}: at most {len(_GPU_AXIS_NAMES)} {what} axes, "
                    f"got {len(axes)}",
                    stage=self.name,
                    expected=len(_GPU_AXIS_NAMES),
                    actual=len(axes),
                )
        self._check_legal("bind", *block_axes, *thread_axes)
        for axis in block_axes:
            if axis.iter_type == IterVarType.COMM_REDUCE:
                raise IllegalTransform(
                    f"{self.name}: reduction axis {axis.name} can not be bound "
                    "to a block axis",
                    stage=self.name,
                )
        bound: tuple[list[IterVar], list[IterVar]] = ([], [])
        for prefix, axes, ivars in (
            ("blockIdx", block_axes, bound[0]),
            ("threadIdx", thread_axes, bound[1]),
        ):
            names = _GPU_AXIS_NAMES[len(_GPU_AXIS_NAMES) - len(axes) :]
            for axis, suffix in zip(axes, names):
                tag = f"{prefix}.{suffix}"
                ivar = IterVar(None, Var(tag), IterVarType.THREAD_INDEX, tag)
                self.bind(axis, ivar)
                ivars.append(ivar)
        return bound

    def compute_at(self, parent: "Stage", axis: IterVar) -> None:
        """Computes this stage inside the loop of ``axis`` of ``parent``."""
        if not isinstance(parent, Stage) or parent.schedule is not self.schedule:
            raise ScheduleError(
                f"{self.name}: compute_at target is not a stage of the schedule",
                stage=self.name,
            )
        if parent is self:
            raise ScheduleError(
                f"{self.name}: can not compute_at its own stage", stage=self.name
            )
        if self.is_output:
            raise IllegalTransform(
                f"{self.name}: output stages can not be computed at another stage",
                stage=self.name,
            )
        parent._check_legal("compute_at", axis)
        self.attach_type = AttachType.SCOPE
        self.attach_stage = parent
        self.attach_ivar = axis
        logger.debug("%s: compute_at %s, %s", self, parent, axis.name)

    def compute_inline(self) -> None:
        """Substitutes the operation body at every use instead of storing it."""
        if not isinstance(self.op, ComputeOp) or self.op.reduce_axis:
            raise IllegalTransform(
                f"{self.name}: only non reduction compute can be inlined",
                stage=self.name,
            )
        if self.is_output:
            raise IllegalTransform(
                f"{self.name}: output stages can not be inlined", stage=self.name
            )
        self.attach_type = AttachType.INLINE
        self.attach_stage = self.attach_ivar = None

    def compute_root(self) -> None:
        self.attach_type = AttachType.ROOT
        self.attach_stage = self.attach_ivar = None

    def set_scope(self, scope: str) -> None:
        self.scope = scope

    def double_buffer(self) -> None:
        """Requests a double buffered storage for the stage output."""
        self.double_buffered = True

    def prefetch(self, tensor: Tensor, axis: IterVar, offset: Any) -> None:
        """Prefetches ``tensor`` ``offset`` iterations ahead in the loop of ``axis``."""
        self._leaf_index(axis)
        attr = self._attr(axis)
        attr.prefetch_data.append(tensor)
        attr.prefetch_offset.append(ops.convert(offset))


class _DataflowRewriter(IRMutator):
    """Redirects tensor reads to the current stage operations and inlines."""

    def __init__(self, schedule: "Schedule") -> None:
        self.schedule = schedule

    def mutate_call(self, node: Call) -> PrimExpr:
        node = self.generic_mutate(node)
        if node.call_type != CallType.HALIDE or not isinstance(node.func, Operation):
            return node
        stage = self.schedule.find_stage(node.func)
        if stage is None:
            return node
        if stage.attach_type == AttachType.INLINE:
            op = stage.op
            vmap = {iv.var: arg for iv, arg in zip(op.axis, node.args)}
            return substitute(op.body[node.value_index], vmap)
        if stage.op is not node.func:
            return Call(
                node.dtype,
                stage.op.name,
                node.args,
                node.call_type,
                stage.op,
                node.value_index,
            )
        return node


class Schedule:
    """
    Stages of the operations reachable from the output operations, in
    topological order (producers first), looked up by operation.
    """

    def __init__(self, outputs: Sequence[Operation]) -> None:
        self.outputs = list(outputs)
        self.stages: list[Stage] = []
        self._stage_map: dict[int, Stage] = {}
        self._normalized = False
        visited: set[int] = set()

        def visit(op: Operation) -> None:
            if op.idx in visited:
                return
            visited.add(op.idx)
            for tensor in op.input_tensors():
                visit(tensor.op)
            stage = Stage(op, self)
            self.stages.append(stage)
            self._stage_map[op.idx] = stage

        for op in self.outputs:
            visit(op)
        for op in self.outputs:
            self._stage_map[op.idx].is_output = True

    def find_stage(self, key: Operation | Tensor) -> Stage | None:
        return self._stage_map.get(as_operation(key).idx)

    def __getitem__(self, key: Operation | Tensor) -> Stage:
        stage = self.find_stage(key)
        if stage is None:
            raise ScheduleError(
                f"no stage for {as_operation(key).name} in schedule",
                operation=as_operation(key).name,
            )
        return stage

    def __contains__(self, key: Operation | Tensor) -> bool:
        return self.find_stage(key) is not None

    def tensor_of(self, tensor: Tensor) -> Tensor:
        """Returns the tensor currently computing ``tensor`` in this schedule."""
        return self[tensor].op.output(tensor.value_index)

    def cache_write(self, tensor: Tensor, scope: str) -> tuple[Tensor, "Schedule"]:
        """
        Computes ``tensor`` into a new cache tensor stored in ``scope``,
        the original stage becoming a copy of the cache.

        Returns:
            The cache tensor and this schedule
        """
        stage = self[tensor]
        op = stage.op
        if not isinstance(op, ComputeOp) or op.num_outputs != 1:
            raise UnsupportedOperation(
                f"cache_write only supports single output compute: {op.name}",
                operation=op.name,
            )
        if stage.relations or stage.iter_var_attrs:
            raise ScheduleError(
                f"cache_write must be applied before transforming {op.name}",
                operation=op.name,
            )
        vmap: dict[Var, PrimExpr] = {}
        cache_axis = []
        for iv in op.axis:
            new = IterVar(iv.dom, Var(iv.var.name, iv.dtype), iv.iter_type)
            vmap[iv.var] = new.var
            cache_axis.append(new)
        body = op.body[0]
        if isinstance(body, Reduce):
            cache_reduce = []
            for iv in body.axis:
                new = IterVar(iv.dom, Var(iv.var.name, iv.dtype), iv.iter_type)
                vmap[iv.var] = new.var
                cache_reduce.append(new)
            body = Reduce(
                body.combiner,
                tuple(substitute(src, vmap) for src in body.source),
                tuple(cache_reduce),
                None if body.condition is None else substitute(body.condition, vmap),
                body.value_index,
            )
        else:
            body = substitute(body, vmap)
        cache_op = ComputeOp(f"{op.name}.{scope}", op.tag, op.attrs, cache_axis, [body])
        copy_axis = [
            IterVar(iv.dom, Var(iv.var.name, iv.dtype), iv.iter_type) for iv in op.axis
        ]
        copy_op = ComputeOp(
            op.name,
            op.tag,
            op.attrs,
            copy_axis,
            [cache_op.output(0)[tuple(iv.var for iv in copy_axis)]],
        )
        cache_stage = Stage(cache_op, self)
        cache_stage.scope = scope
        self.stages.insert(self.stages.index(stage), cache_stage)
        self._stage_map[cache_op.idx] = cache_stage
        stage.op = copy_op
        stage.all_iter_vars = list(copy_axis)
        stage.leaf_iter_vars = list(copy_axis)
        self._stage_map[copy_op.idx] = stage
        logger.debug("cache_write %s into %s", op.name, cache_op.name)
        return cache_op.output(0), self

    def cache_read(self, tensor: Tensor, scope: str, readers: Sequence[Any]) -> Tensor:
        raise UnsupportedOperation("Unimplemented: cache_read", operation="cache_read")

    def normalize(self) -> "Schedule":
        """
        Inlines the inlined stages into their consumers, redirects the
        reads to the current stage operations and rebases the leaf axes
        not starting at 0. Applied once, later calls are no-ops.
        """
        if self._normalized:
            return self
        rewriter = _DataflowRewriter(self)
        for stage in self.stages:
            op = stage.op
            if not isinstance(op, ComputeOp):
                continue
            body = tuple(rewriter.mutate(expr) for expr in op.body)
            if any(new is not old for new, old in zip(body, op.body)):
                new_op = op.with_body(body)
                stage.op = new_op
                self._stage_map[new_op.idx] = stage
                logger.debug("normalize: rewrote %s", new_op.name)
        for stage in self.stages:
            self._rebase(stage)
        self._normalized = True
        return self

    def _rebase(self, stage: Stage) -> None:
        for pos, leaf in enumerate(list(stage.leaf_iter_vars)):
            if leaf.dom is None or ops.is_const_int(leaf.dom.min, 0):
                continue
            attr = stage.iter_var_attrs.get(leaf)
            if attr is not None and attr.bind_thread is not None:
                continue
            rebased = IterVar(
                Range(ops.const(0, leaf.dtype), leaf.dom.extent),
                Var(leaf.name, leaf.dtype),
                leaf.iter_type,
            )
            stage.relations.append(Rebase(leaf, rebased))
            stage.all_iter_vars.append(rebased)
            stage.leaf_iter_vars[pos] = rebased
            if attr is not None:
                stage.iter_var_attrs[rebased] = attr
            if stage.attach_ivar is leaf:
                stage.attach_ivar = rebased
            for other in self.stages:
                if other.attach_stage is stage and other.attach_ivar is leaf:
                    other.attach_ivar = rebased


def create_schedule(ops: Operation | Tensor | Sequence[Operation | Tensor]) -> Schedule:
    """Returns the schedule of the given output operations (or tensors)."""
    if isinstance(ops, (Operation, Tensor)):
        ops = [ops]
    return Schedule([as_operation(op) for op in ops])


def stage_bind_gpu(
    stage: Stage, block_axes: Sequence[IterVar], thread_axes: Sequence[IterVar]
) -> tuple[list[IterVar], list[IterVar]]:
    return stage.bind_gpu(block_axes, thread_axes)
