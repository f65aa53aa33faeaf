#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from .schedule import (
    AttachType,
    IterVarAttr,
    Stage,
    Schedule,
    create_schedule,
    stage_bind_gpu,
)
from .policies import cpu_injective, gpu_injective
from .bound import infer_bound
from .schedule_ops import schedule_ops
