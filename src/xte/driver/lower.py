#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Lowering of a schedule into a function.

The phases run in a fixed order, each one consuming the statement tree
produced by the previous one:

1. normalize the schedule
2. bind the arguments to buffers
3. infer the iteration bounds
4. realize the schedule into a statement tree
5. inject the prefetches
6. flatten the tensor accesses
7. canonical simplification
8. partition the guarded loops (not in simple mode)
9. vectorize
10. inject the virtual threads
11. inject the double buffers
12. rewrite the storage allocations
13. unroll
14. simplify
15. lower the storage access information
16. remove the no-ops
17. rewrite the unsafe selects

In full mode the calling convention wrapper is finally built around the
statement.
"""

from collections.abc import Mapping, Sequence
from typing import Any
import logging

from ..errors import ConfigError
from ..ir.expr import Var
from ..ir.stmt import Stmt
from ..ir.buffer import Buffer, declare_buffer
from ..ir.function import LoweredFunc
from ..ir.printer import node_to_str
from ..te.tensor import Tensor
from ..schedule.schedule import Schedule
from ..schedule.bound import infer_bound
from ..schedule.schedule_ops import schedule_ops
from ..passes.registry import get_pass
from .config import BuildConfig, as_build_config

__all__ = [
    "CACHE_LINE_SIZE",
    "bind_arguments",
    "lower",
    "schedule_to_str",
]

logger = logging.getLogger(__name__)

CACHE_LINE_SIZE = 64

Argument = Tensor | Buffer | Var


def _scheduled_tensor(schedule: Schedule, tensor: Tensor) -> Tensor:
    if tensor in schedule:
        return schedule.tensor_of(tensor)
    return tensor


def bind_arguments(
    schedule: Schedule,
    args: Sequence[Argument],
    config: BuildConfig,
    bind_map: Mapping[Tensor, Buffer] | None = None,
) -> tuple[list[Buffer | Var], dict[Tensor, Buffer]]:
    """
    Binds the tensor arguments to buffers, a compact buffer named after
    the tensor being declared when ``bind_map`` has none for it.

    Returns:
        The arguments where tensors are replaced by their buffer, and
        the buffer of every bound tensor of the schedule
    """
    binds: dict[Tensor, Buffer] = {}
    for tensor, buffer in (bind_map or {}).items():
        binds[_scheduled_tensor(schedule, tensor)] = buffer
    arg_list: list[Buffer | Var] = []
    for arg in args:
        if isinstance(arg, Tensor):
            tensor = _scheduled_tensor(schedule, arg)
            if tensor not in binds:
                binds[tensor] = declare_buffer(
                    tensor.shape,
                    tensor.dtype,
                    tensor.name,
                    data_alignment=config.data_alignment,
                    offset_factor=config.offset_factor,
                )
            arg_list.append(binds[tensor])
        elif isinstance(arg, (Buffer, Var)):
            arg_list.append(arg)
        else:
            raise ConfigError(
                f"Expected Tensor, Buffer or Var argument, got {type(arg).__name__}",
                argument=arg,
            )
    return arg_list, binds


def _phase(name: str, stmt: Stmt) -> Stmt:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("lower: phase %s: %s", name, node_to_str(stmt))
    return stmt


def lower(
    schedule: Schedule,
    args: Sequence[Argument],
    name: str = "default_function",
    config: BuildConfig | Mapping[str, Any] | None = None,
    bind_map: Mapping[Tensor, Buffer] | None = None,
    simple_mode: bool = False,
) -> LoweredFunc | Stmt:
    """Lowers ``schedule`` into a function taking ``args``.

    Args:
        schedule: the schedule to lower, normalized in place
        args: the tensor, buffer and variable arguments, in call order
        name: the function name
        config: the build options, the defaults when None
        bind_map: explicit buffers of some tensors
        simple_mode: skip the loop partitioning and return the bare
            statement instead of the function

    Returns:
        The lowered function, or the statement in simple mode
    """
    config = as_build_config(config)
    schedule.normalize()
    arg_list, binds = bind_arguments(schedule, args, config, bind_map)
    bounds = infer_bound(schedule)
    stmt = _phase("schedule_ops", schedule_ops(schedule, bounds))
    stmt = _phase("inject_prefetch", get_pass("inject_prefetch")(stmt))
    stmt = _phase(
        "storage_flatten", get_pass("storage_flatten")(stmt, binds, CACHE_LINE_SIZE)
    )
    stmt = _phase("canonical_simplify", get_pass("canonical_simplify")(stmt))
    if not simple_mode:
        stmt = _phase(
            "loop_partition",
            get_pass("loop_partition")(stmt, config.partition_const_loop),
        )
    stmt = _phase("vectorize", get_pass("vectorize")(stmt))
    stmt = _phase("inject_virtual_thread", get_pass("inject_virtual_thread")(stmt))
    stmt = _phase(
        "inject_double_buffer",
        get_pass("inject_double_buffer")(stmt, config.double_buffer_split_loop),
    )
    stmt = _phase("storage_rewrite", get_pass("storage_rewrite")(stmt))
    stmt = _phase(
        "unroll",
        get_pass("unroll")(
            stmt,
            config.auto_unroll_max_step,
            config.auto_unroll_max_depth,
            config.auto_unroll_max_extent,
            config.unroll_explicit,
        ),
    )
    stmt = _phase("simplify", get_pass("simplify")(stmt))
    stmt = _phase(
        "lower_storage_access_info", get_pass("lower_storage_access_info")(stmt)
    )
    stmt = _phase("remove_no_op", get_pass("remove_no_op")(stmt))
    stmt = _phase("rewrite_unsafe_select", get_pass("rewrite_unsafe_select")(stmt))
    if simple_mode:
        return stmt
    return get_pass("make_api")(stmt, name, arg_list, config.restricted_func)


def schedule_to_str(
    schedule: Schedule, args: Sequence[Argument], name: str = "default_function"
) -> str:
    """Returns the text of the simple mode lowering of ``schedule``."""
    return node_to_str(lower(schedule, args, name, simple_mode=True))
