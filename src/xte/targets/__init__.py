#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from .target import (
    TargetInfo,  # type: ignore
    target_info,  # type: ignore
    target_name_to_thread_warp_size,  # type: ignore
    device_type_of,  # type: ignore
    cpu_vector_lanes,  # type: ignore
)
