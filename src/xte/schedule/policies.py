#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Canned schedules of injective (element-wise) operations.
"""

from collections.abc import Sequence
from typing import Any
import logging

from ..ir.expr import IterVar
from ..ir.arith import can_prove
from ..ir import op as ops
from ..targets import cpu_vector_lanes
from ..te.operation import Operation
from ..te.tensor import Tensor
from .schedule import Schedule

__all__ = [
    "cpu_injective",
    "gpu_injective",
]

logger = logging.getLogger(__name__)


def _fused_axis(
    schedule: Schedule, op: Operation | Tensor, axis: Sequence[IterVar] | None
) -> tuple[Any, IterVar]:
    stage = schedule[op]
    axes = list(stage.op.axis) if axis is None else list(axis)
    return stage, stage.fuse(axes)


def cpu_injective(
    schedule: Schedule,
    op: Operation | Tensor,
    axis: Sequence[IterVar] | None = None,
    vectorize: bool = False,
) -> Schedule:
    """
    Fuses all the axes (or ``axis``) of ``op`` and parallelizes the result.

    With ``vectorize``, the fused axis is first split by the number of
    elements of a host vector register, the inner axis being vectorized,
    when that number divides its extent.
    """
    stage, fused = _fused_axis(schedule, op, axis)
    if vectorize:
        lanes = cpu_vector_lanes(stage.op.output_dtype(0))
        extent = fused.dom.extent if fused.dom is not None else None
        if (
            lanes > 1
            and extent is not None
            and can_prove(ops.eq(ops.mod(extent, lanes), 0))
        ):
            fused, inner = stage.split(fused, factor=lanes)
            stage.vectorize(inner)
        else:
            logger.debug(
                "cpu_injective: %s not vectorized on %d lanes", stage.name, lanes
            )
    stage.parallel(fused)
    return schedule


def gpu_injective(
    schedule: Schedule,
    op: Operation | Tensor,
    thread_count: int = 16,
    axis: Sequence[IterVar] | None = None,
) -> Schedule:
    """
    Fuses all the axes (or ``axis``) of ``op``, splits the result by
    ``thread_count`` and binds the outer axis to blockIdx.x and the
    inner one to threadIdx.x.
    """
    stage, fused = _fused_axis(schedule, op, axis)
    bx, tx = stage.split(fused, factor=thread_count)
    stage.bind_gpu([bx], [tx])
    return schedule
