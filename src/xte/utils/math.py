#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#


def next_pow2(value: int) -> int:
    """
    Returns the smallest power of 2 greater or equal to value,
    for instance:
    next_pow2(1) = 1
    next_pow2(5) = 8
    next_pow2(16) = 16
    """
    assert value > 0, f"no power of 2 above {value}"
    return 1 << (value - 1).bit_length()
