#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""Frontend exceptions."""

from typing import Any

__all__ = [
    "XTEError",
    "ShapeRankMismatch",
    "InvalidIndex",
    "InvalidIterationKind",
    "IllegalTransform",
    "TooManyAxes",
    "ArityMismatch",
    "DataTypeMismatch",
    "UnknownTarget",
    "DuplicateFunctionName",
    "UnsupportedOperation",
    "BackendCallFailure",
    "ScheduleError",
    "ConfigError",
    "LoweringError",
]


class XTEError(RuntimeError):
    """Base class of all frontend errors.

    The keyword arguments given at construction are kept in the
    ``context`` dict so that callers can inspect what was expected
    and what was received without parsing the message.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class ShapeRankMismatch(XTEError):
    """Raised when an index or argument count differs from a declared rank."""

    pass


class InvalidIndex(XTEError):
    """Raised when a tensor index is neither an iteration variable nor an expression."""

    pass


class InvalidIterationKind(XTEError):
    """Raised for an unknown iteration variable kind or a missing domain."""

    pass


class IllegalTransform(XTEError):
    """Raised when a stage transform is not allowed on an axis."""

    pass


class TooManyAxes(XTEError):
    """Raised when more than 3 block or thread axes are bound."""

    pass


class ArityMismatch(XTEError):
    """Raised when a rule function arity differs from the shape or operand count."""

    pass


class DataTypeMismatch(XTEError):
    """Raised when operand data types can not be combined."""

    pass


class UnknownTarget(XTEError):
    """Raised when a target family name can not be resolved."""

    pass


class DuplicateFunctionName(XTEError):
    """Raised when two lowered functions of a module share a name."""

    pass


class UnsupportedOperation(XTEError):
    """Raised by explicitly unimplemented transforms."""

    pass


class BackendCallFailure(XTEError):
    """Raised when the code generation backend or a built function fails.

    Carries the backend diagnostic and the name of the function that
    was being built or called.
    """

    def __init__(self, diagnostic: str, function_name: str, **context: Any) -> None:
        super().__init__(
            f"Error during backend call: {function_name}: {diagnostic}",
            function_name=function_name,
            **context,
        )
        self.diagnostic = diagnostic
        self.function_name = function_name


class ScheduleError(XTEError):
    """Raised on invalid schedule lookups or attachments."""

    pass


class ConfigError(XTEError):
    """Raised on invalid build configuration or build inputs."""

    pass


class LoweringError(XTEError):
    """Raised when a lowering phase meets a program it can not handle."""

    pass
