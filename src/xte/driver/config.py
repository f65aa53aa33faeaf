#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from ..errors import ConfigError

__all__ = [
    "BuildConfig",
]


@dataclass(frozen=True)
class BuildConfig:
    """Options of the lowering pipeline.

    Use ``dataclasses.replace`` to derive a variant of a configuration.

    Attributes:
        auto_unroll_max_step: unroll the innermost constant loops whose
            extent times their body step count stays under this value
        auto_unroll_max_depth: maximum number of nested unrolled loops
        auto_unroll_max_extent: unroll the constant loops up to this extent
        unroll_explicit: expand the unrolled loops instead of marking them
        detect_global_barrier: insert global barriers in mixed functions
        partition_const_loop: also partition the loops of constant extent
        offset_factor: element offset factor of the declared buffers
        data_alignment: data alignment of the declared buffers, -1 for
            the default
        restricted_func: the buffer arguments do not alias
        double_buffer_split_loop: unroll factor of the double buffered loops
    """

    auto_unroll_max_step: int = 0
    auto_unroll_max_depth: int = 8
    auto_unroll_max_extent: int = 0
    unroll_explicit: bool = True
    detect_global_barrier: bool = False
    partition_const_loop: bool = False
    offset_factor: int = 0
    data_alignment: int = -1
    restricted_func: bool = True
    double_buffer_split_loop: int = 1

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "BuildConfig":
        known = {field.name for field in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigError(
                f"Unknown build config options: {', '.join(unknown)}",
                unknown=unknown,
            )
        return cls(**options)


def as_build_config(config: "BuildConfig | Mapping[str, Any] | None") -> BuildConfig:
    if config is None:
        return BuildConfig()
    if isinstance(config, BuildConfig):
        return config
    if isinstance(config, Mapping):
        return BuildConfig.from_dict(config)
    raise ConfigError(
        f"Expected a BuildConfig or a mapping, got {type(config).__name__}",
        config=config,
    )
