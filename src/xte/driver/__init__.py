#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from .config import BuildConfig
from .lower import bind_arguments, lower, schedule_to_str
from .build_module import (
    BuiltFunctions,
    lowered_functions_to_module,
    build_functions,
    build,
)
