#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from collections.abc import Callable
from typing import Any
from typing_extensions import override
import logging

from ...errors import BackendCallFailure, XTEError
from ...ir.function import FuncType, LoweredFunc
import xte.itf as itf

from .InterpRuntime import Interpreter
from .InterpEvaluator import InterpEvaluator

__all__ = [
    "InterpModule",
    "InterpFunction",
    "InterpKernel",
]

logger = logging.getLogger(__name__)


class InterpFunction:
    """Host entry point taking the function arguments in declared order."""

    def __init__(self, interpreter: Interpreter) -> None:
        self._interpreter = interpreter
        self.__name__ = interpreter.name

    @property
    def name(self) -> str:
        return self._interpreter.name

    def __call__(self, *args: Any) -> None:
        num_args = len(self._interpreter.func.args)
        if len(args) != num_args:
            raise BackendCallFailure(
                f"num_args should be {num_args}, got {len(args)}",
                self.name,
            )
        try:
            self._interpreter.run_host(args)
        except BackendCallFailure:
            raise
        except (XTEError, ArithmeticError, IndexError, TypeError, ValueError) as e:
            raise BackendCallFailure(str(e), self.name) from e


class InterpKernel:
    """Device entry point taking the parameters then the launch extents."""

    def __init__(self, interpreter: Interpreter) -> None:
        self._interpreter = interpreter
        self.__name__ = interpreter.name

    @property
    def name(self) -> str:
        return self._interpreter.name

    def __call__(self, *args: Any) -> None:
        num_params = len(self._interpreter.func.args)
        try:
            self._interpreter.run_device(args[:num_params], args[num_params:])
        except BackendCallFailure:
            raise
        except (XTEError, ArithmeticError, IndexError, TypeError, ValueError) as e:
            raise BackendCallFailure(str(e), self.name) from e


class InterpModule(itf.comp.Module):
    def __init__(self, name: str, target: str, funcs: list[LoweredFunc]) -> None:
        self._name = name
        self._target = target
        self._imported: list[itf.comp.Module] = []
        self._entries: dict[str, Callable[..., Any]] = {}
        for func in funcs:
            interpreter = Interpreter(func, self._resolve)
            if func.func_type == FuncType.DEVICE:
                self._entries[func.name] = InterpKernel(interpreter)
            else:
                self._entries[func.name] = InterpFunction(interpreter)

    def _resolve(self, name: str) -> Callable[..., Any]:
        try:
            return self.get_function(name, query_imports=True)
        except KeyError:
            raise BackendCallFailure(
                f"Cannot find function {name} in the imported modules", name
            ) from None

    @property
    @override
    def name(self) -> str:
        return self._name

    @property
    @override
    def target(self) -> str:
        return self._target

    @property
    @override
    def entry_names(self) -> list[str]:
        return list(self._entries)

    @override
    def get_function(
        self, name: str, query_imports: bool = False
    ) -> Callable[..., Any]:
        if name in self._entries:
            return self._entries[name]
        if query_imports:
            for module in self._imported:
                if name in module.entry_names:
                    return module.get_function(name)
        raise KeyError(f"no function {name} in module {self._name}")

    @override
    def import_module(self, module: itf.comp.Module) -> None:
        logger.debug("Importing module %s into %s", module.name, self._name)
        self._imported.append(module)

    @property
    @override
    def imported_modules(self) -> list[itf.comp.Module]:
        return list(self._imported)

    @override
    def get_evaluator(self, name: str, **kwargs: Any) -> itf.exec.Evaluator:
        return InterpEvaluator(self, name, **kwargs)

    def __repr__(self) -> str:
        return f"InterpModule({self._name!r}, {self._target!r}, {self.entry_names})"

