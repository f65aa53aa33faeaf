#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from typing import Any
from typing_extensions import override
import time

import numpy as np

import xte.backends.interp as backend
import xte.itf as itf

__all__ = [
    "InterpEvaluator",
]


class InterpEvaluator(itf.exec.Evaluator):
    """Times a function of an interpreter module.

    Every repeat runs the function ``number`` times and reports the mean
    time of one call, ``number`` being doubled until a repeat lasts at
    least ``min_repeat_ms``.
    """

    def __init__(
        self, module: "backend.InterpModule", name: str, **kwargs: Any
    ) -> None:
        self._module = module
        self._function = module.get_function(name, query_imports=True)
        self._repeat = kwargs.get("repeat", 1)
        self._min_repeat_ms = kwargs.get("min_repeat_ms", 0)
        self._number = kwargs.get("number", 1)
        assert self._repeat > 0, f"repeat must be positive: {self._repeat}"
        assert self._number > 0, f"number must be positive: {self._number}"
        assert self._min_repeat_ms >= 0, (
            f"min_repeat_ms must not be negative: {self._min_repeat_ms}"
        )

    @override
    def evaluate(self, *args: Any) -> np.ndarray:
        results = []
        number = self._number
        for _ in range(self._repeat):
            while True:
                start = time.perf_counter()
                for _ in range(number):
                    self._function(*args)
                elapsed = time.perf_counter() - start
                if elapsed * 1000 >= self._min_repeat_ms:
                    break
                number *= 2
            results.append(elapsed / number)
        return np.array(results, dtype="float64")

    @property
    @override
    def module(self) -> itf.comp.Module:
        return self._module
