#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from .prefetch import inject_prefetch
from .storage_flatten import storage_flatten
from .simplify import canonical_simplify, simplify, remove_no_op
from .loop_partition import loop_partition
from .vectorize import vectorize, inject_virtual_thread
from .double_buffer import inject_double_buffer
from .storage_rewrite import storage_rewrite
from .unroll import unroll
from .storage_access import lower_storage_access_info, rewrite_unsafe_select
from .make_api import make_api
from .thread_sync import thread_sync, storage_sync
from .allreduce import lower_thread_allreduce
from .host_device import (
    split_host_device,
    bind_device_type,
    lower_builtin,
    combine_context_call,
)
from .intrin import lower_intrin, intrinsic_base
from .registry import get_pass, list_passes
