#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from abc import ABC, abstractmethod
from typing import Any

import xte.itf


class Evaluator(ABC):
    """An abstract evaluator of a module function.

    An Evaluator calls a function of a built module repeatedly on given
    arguments and reports the measured execution times.
    """

    @abstractmethod
    def evaluate(self, *args: Any) -> Any:
        """Runs the function on the arguments and measures it.

        Args:
            args: the function arguments in declared order

        Returns:
            The mean time of one call in seconds, for each repeat
        """
        ...

    @property
    @abstractmethod
    def module(self) -> "xte.itf.comp.Module":
        """Returns the module of the evaluated function.

        Returns:
            The module
        """
        ...
