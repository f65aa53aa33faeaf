#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from dataclasses import field
from enum import IntEnum
from typing import Any

from .node import Node, NodeKind, ir_node
from .expr import Var, IterVar
from .stmt import Stmt
from .buffer import Buffer

__all__ = [
    "FuncType",
    "LoweredFunc",
]


class FuncType(IntEnum):
    HOST = 0
    DEVICE = 1
    MIXED = 2


@ir_node
class LoweredFunc(Node):
    """
    Function produced by the lowering pipeline.

    Host functions take their arguments through the packed calling
    convention, device functions take their parameters directly and
    record the thread axes they are launched over. Mixed functions
    hold host code with device regions still to be split out.
    """

    kind = NodeKind.LOWERED_FUNC
    name: str
    args: tuple[Var | Buffer, ...]
    body: Stmt
    func_type: FuncType
    thread_axis: tuple[IterVar, ...] = ()
    handle_data_type: dict[Var, Any] = field(default_factory=dict)
    is_restricted: bool = True
