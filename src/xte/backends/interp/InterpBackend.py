#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from collections.abc import Sequence
from typing import Any
from typing_extensions import override
import logging

from ...errors import BackendCallFailure
from ...ir.function import FuncType, LoweredFunc
from ...targets import target_info
import xte.itf as itf

from .InterpModule import InterpModule
from .InterpRuntime import unsupported_nodes

__all__ = [
    "InterpBackend",
]

logger = logging.getLogger(__name__)


class InterpBackend(itf.back.Backend):
    """Builds the lowered functions into interpreted modules.

    Host targets accept host functions, gpu targets accept device
    functions whose launch is simulated.
    """

    def __init__(self, **kwargs: Any) -> None:
        self._module_prefix = kwargs.get("module_prefix", "")

    @property
    @override
    def name(self) -> str:
        return "interp"

    @override
    def build(
        self, funcs: Sequence[LoweredFunc], target: str, **kwargs: Any
    ) -> itf.comp.Module:
        info = target_info(target)
        expected = FuncType.DEVICE if info.is_gpu else FuncType.HOST
        for func in funcs:
            if func.func_type != expected:
                raise BackendCallFailure(
                    f"{func.func_type.name.lower()} function can not be built "
                    f"for target {target}",
                    func.name,
                )
            unsupported = unsupported_nodes(func)
            if unsupported:
                raise BackendCallFailure(
                    f"unsupported nodes: {', '.join(unsupported)}", func.name
                )
        name = kwargs.get("name", f"{self._module_prefix}{info.target_name}")
        logger.debug(
            "Building %s module %s: %s", info.target_name, name, [f.name for f in funcs]
        )
        return InterpModule(name, target, list(funcs))
