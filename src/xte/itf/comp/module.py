#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import xte.itf


class Module(ABC):
    """An abstract built module.

    A Module maps the names of the functions it was built from to
    callables taking the function arguments in declared order. A host
    module imports the device modules whose functions it launches.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Returns the name of the module.

        Returns:
            The module name
        """
        ...

    @property
    @abstractmethod
    def target(self) -> str:
        """Returns the target the module was built for.

        Returns:
            The target string
        """
        ...

    @property
    @abstractmethod
    def entry_names(self) -> list[str]:
        """Returns the names of the functions of this module.

        Returns:
            The function names, imported modules excluded
        """
        ...

    @abstractmethod
    def get_function(
        self, name: str, query_imports: bool = False
    ) -> Callable[..., Any]:
        """Returns the callable of a function of the module.

        Args:
            name: the function name
            query_imports: also look the name up in the imported modules

        Returns:
            The callable taking the function arguments in declared order

        Raises:
            KeyError: when no such function exists
        """
        ...

    def __getitem__(self, name: str) -> Callable[..., Any]:
        return self.get_function(name)

    def __contains__(self, name: str) -> bool:
        return name in self.entry_names

    @abstractmethod
    def import_module(self, module: "Module") -> None:
        """Imports a module, usually a device module, into this one.

        Args:
            module: the module to import
        """
        ...

    @property
    @abstractmethod
    def imported_modules(self) -> list["Module"]:
        """Returns the imported modules.

        Returns:
            The imported modules, in import order
        """
        ...

    @abstractmethod
    def get_evaluator(self, name: str, **kwargs: Any) -> "xte.itf.exec.Evaluator":
        """Returns an evaluator timing a function of the module.

        Args:
            name: the function name
            kwargs: evaluator configuration

        Returns:
            The evaluator of the function
        """
        ...
