#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from .InterpBackend import (
    InterpBackend,  # type: ignore
)

from .InterpModule import (
    InterpModule,  # type: ignore
    InterpFunction,  # type: ignore
    InterpKernel,  # type: ignore
)

from .InterpEvaluator import (
    InterpEvaluator,  # type: ignore
)

from .InterpBackend import InterpBackend as Backend  # type: ignore
