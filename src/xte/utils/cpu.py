#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from cpuinfo import get_cpu_info
from typing import Dict, Any


def cpu_info() -> Dict[str, Any]:
    """
    Returns the cpu info dict with fields:
    - vbits: vector register width in bits
    - arch: arch ("x86_64", "aarch64", ...)
    - flags: cpu feature flags
    """
    vec_info_map = {
        "avx512": {"vbits": 512},
        "avx2": {"vbits": 256},
        "sse": {"vbits": 128},
        "neon": {"vbits": 128},
        "scalar": {"vbits": 0},
    }
    info = get_cpu_info()
    arch = info.get("arch_string_raw", "")
    flags = info.get("flags", [])
    if arch == "x86_64":
        if "avx512f" in flags:
            cpu_info = {**vec_info_map["avx512"]}
        elif "avx2" in flags:
            cpu_info = {**vec_info_map["avx2"]}
        elif "sse" in flags:
            cpu_info = {**vec_info_map["sse"]}
        else:
            cpu_info = {**vec_info_map["scalar"]}
    elif arch == "aarch64":
        if "asimd" in flags:
            cpu_info = {**vec_info_map["neon"]}
        else:
            cpu_info = {**vec_info_map["scalar"]}
    elif arch == "arm64":
        cpu_info = {**vec_info_map["neon"]}
    else:
        cpu_info = {**vec_info_map["scalar"]}
    cpu_info["arch"] = arch
    cpu_info["flags"] = flags
    return cpu_info
