#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Tensor expression construction, scheduling and lowering.

A computation is described with placeholders and compute operations,
scheduled with stage transforms, lowered into functions and built into
a module whose functions run on numpy arrays::

    import xte

    A = xte.placeholder((8, 8), "A")
    B = xte.compute((8, 8), lambda y, x: A[y, x] + 1, "B")
    s = xte.create_schedule(B.op)
    xte.cpu_injective(s, B.op)
    mod = xte.build(s, [A, B])
    mod["default_function"](a, b)
"""

from .errors import *
from .ir import (
    DataType,
    Buffer,
    LoweredFunc,
    FuncType,
    IterVarType,
    CallType,
    declare_buffer,
    node_to_str,
    structural_equal,
)
from .te import *
from .te import sum, reduce_max, reduce_min
from .schedule import (
    Stage,
    Schedule,
    create_schedule,
    stage_bind_gpu,
    cpu_injective,
    gpu_injective,
    infer_bound,
    schedule_ops,
)
from .targets import TargetInfo, target_info, target_name_to_thread_warp_size
from .driver import (
    BuildConfig,
    BuiltFunctions,
    bind_arguments,
    lower,
    schedule_to_str,
    lowered_functions_to_module,
    build_functions,
    build,
)

__version__ = "0.1.0"
