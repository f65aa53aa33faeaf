#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from ...ir.function import LoweredFunc
from ..comp.module import Module


class Backend(ABC):
    """An abstract code generation backend.

    A Backend receives lowered functions whose types, shapes and buffer
    layouts are fully resolved and builds them into an executable Module
    for a given target. It performs no further type inference.
    """

    @abstractmethod
    def build(
        self, funcs: Sequence[LoweredFunc], target: str, **kwargs: Any
    ) -> Module:
        """Builds the lowered functions for the target.

        Args:
            funcs: The lowered functions, all of the same side (host or device)
            target: The target string, for instance "llvm" or "cuda"
            kwargs: backend specific build options

        Returns:
            The built module exposing one entry per function

        Raises:
            BackendCallFailure: when a function can not be built
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Returns the name of the backend.

        Returns:
            The backend name
        """
        ...
