#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Table of the lowering passes by name.

The table is filled once, on first lookup, and is read-only afterwards.
"""

from collections.abc import Callable
from types import MappingProxyType
from typing import Any
import threading
import logging

from ..errors import LoweringError

__all__ = [
    "get_pass",
    "list_passes",
]

logger = logging.getLogger(__name__)

_passes_lock = threading.Lock()
_passes: MappingProxyType | None = None


def _resolve_passes() -> None:
    global _passes
    if _passes is not None:
        return
    with _passes_lock:
        if _passes is not None:
            return
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
        from .thread_sync import thread_sync
        from .allreduce import lower_thread_allreduce
        from .host_device import (
            split_host_device,
            bind_device_type,
            lower_builtin,
            combine_context_call,
        )
        from .intrin import lower_intrin

        table: dict[str, Callable[..., Any]] = {
            "inject_prefetch": inject_prefetch,
            "storage_flatten": storage_flatten,
            "canonical_simplify": canonical_simplify,
            "loop_partition": loop_partition,
            "vectorize": vectorize,
            "inject_virtual_thread": inject_virtual_thread,
            "inject_double_buffer": inject_double_buffer,
            "storage_rewrite": storage_rewrite,
            "unroll": unroll,
            "simplify": simplify,
            "lower_storage_access_info": lower_storage_access_info,
            "remove_no_op": remove_no_op,
            "rewrite_unsafe_select": rewrite_unsafe_select,
            "make_api": make_api,
            "thread_sync": thread_sync,
            "lower_thread_allreduce": lower_thread_allreduce,
            "split_host_device": split_host_device,
            "bind_device_type": bind_device_type,
            "lower_builtin": lower_builtin,
            "lower_intrin": lower_intrin,
            "combine_context_call": combine_context_call,
        }
        logger.debug("Registering passes: %s", sorted(table))
        _passes = MappingProxyType(table)


def get_pass(name: str) -> Callable[..., Any]:
    """Returns the pass registered as ``name``.

    Raises:
        LoweringError: when no pass has this name
    """
    _resolve_passes()
    assert _passes is not None
    func = _passes.get(name)
    if func is None:
        raise LoweringError(f"Unknown pass: {name}", pass_name=name)
    return func


def list_passes() -> list[str]:
    _resolve_passes()
    assert _passes is not None
    return sorted(_passes)
