#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from dataclasses import dataclass, replace
import logging

from ..errors import UnknownTarget
from ..ir.dtype import DataType, as_dtype
from ..utils.cpu import cpu_info

__all__ = [
    "TargetInfo",
    "target_info",
    "target_name_to_thread_warp_size",
    "device_type_of",
    "cpu_vector_lanes",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetInfo:
    """Capabilities of a target family.

    ``max_num_threads`` is the limit of threads per block of the gpu
    families and ``thread_warp_size`` the number of threads running in
    lockstep, used when lowering the cross thread reductions.
    ``device_type`` is the runtime device code of the family.
    """

    target_name: str
    keys: frozenset[str]
    max_num_threads: int = 1
    thread_warp_size: int = 1
    device_type: int = 1

    @property
    def is_gpu(self) -> bool:
        return "gpu" in self.keys


_CPU = TargetInfo("llvm", frozenset({"cpu"}))
_CUDA = TargetInfo("cuda", frozenset({"cuda", "gpu"}), 512, 32, 2)

_TARGETS = {
    "llvm": _CPU,
    "cpu": _CPU,
    "c": _CPU,
    "cuda": _CUDA,
    "nvptx": TargetInfo("nvptx", _CUDA.keys, 512, 32, 2),
    "rocm": TargetInfo("rocm", frozenset({"rocm", "gpu"}), 256, 1, 10),
    "opencl": TargetInfo("opencl", frozenset({"opencl", "gpu"}), 256, 1, 4),
    "metal": TargetInfo("metal", frozenset({"metal", "gpu"}), 256, 1, 8),
    "vulkan": TargetInfo("vulkan", frozenset({"vulkan", "gpu"}), 256, 1, 7),
    "opengl": TargetInfo("opengl", frozenset({"opengl"}), 1, 1, 11),
}


def target_info(name: str) -> TargetInfo:
    """Resolves the family of a target string such as ``"cuda -arch=sm_80"``.

    The first token of the string selects the family. Among the options
    following it, ``-thread_warp_size=<n>`` overrides the warp size of
    the family, the other ones are ignored.

    Args:
        name: the target string

    Returns:
        The capability record of the family

    Raises:
        UnknownTarget: when the family is not known or an option is
            malformed
    """
    tokens = name.split()
    family = tokens[0].lower() if tokens else ""
    info = _TARGETS.get(family)
    if info is None:
        raise UnknownTarget(
            f"Failed to find target properties: {name!r}, "
            f"expected one of {sorted(_TARGETS)}",
            target=name,
        )
    for option in tokens[1:]:
        key, _, value = option.partition("=")
        if key != "-thread_warp_size":
            continue
        if not value.isdigit() or int(value) < 1:
            raise UnknownTarget(
                f"Invalid warp size in target {name!r}: {option}", target=name
            )
        info = replace(info, thread_warp_size=int(value))
        logger.debug("Target %s: warp size %d", family, info.thread_warp_size)
    return info


def target_name_to_thread_warp_size(name: str) -> int:
    return target_info(name).thread_warp_size


def device_type_of(name: str) -> int:
    return target_info(name).device_type


def cpu_vector_lanes(dtype: str | DataType) -> int:
    """Returns the number of ``dtype`` elements of a host vector register."""
    dtype = as_dtype(dtype)
    vbits = cpu_info()["vbits"]
    return max(1, vbits // dtype.bits)
