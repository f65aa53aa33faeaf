#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

__all__ = [
    "NodeKind",
    "Node",
    "ir_node",
    "EXPR_KINDS",
    "STMT_KINDS",
]


class NodeKind(Enum):
    # Expressions
    VAR = "var"
    CONSTANT = "constant"
    STRING_IMM = "string_imm"
    CAST = "cast"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"
    MIN = "min"
    MAX = "max"
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LE = "le"
    GT = "gt"
    GE = "ge"
    AND = "and"
    OR = "or"
    NOT = "not"
    SELECT = "select"
    CALL = "call"
    LET = "let"
    LOAD = "load"
    RAMP = "ramp"
    BROADCAST = "broadcast"
    REDUCE = "reduce"
    # Statements
    LET_STMT = "let_stmt"
    ATTR_STMT = "attr_stmt"
    ASSERT_STMT = "assert_stmt"
    FOR = "for"
    STORE = "store"
    PROVIDE = "provide"
    ALLOCATE = "allocate"
    REALIZE = "realize"
    PREFETCH = "prefetch"
    SEQ_STMT = "seq_stmt"
    IF_THEN_ELSE = "if_then_else"
    EVALUATE = "evaluate"
    # Other graph nodes
    COMM_REDUCER = "comm_reducer"
    ITER_VAR = "iter_var"
    RANGE = "range"
    BUFFER = "buffer"
    PLACEHOLDER_OP = "placeholder_op"
    COMPUTE_OP = "compute_op"
    LOWERED_FUNC = "lowered_func"


EXPR_KINDS = frozenset(
    kind for kind in NodeKind if kind.value in {
        "var", "constant", "string_imm", "cast", "add", "sub", "mul",
        "div", "mod", "min", "max", "eq", "ne", "lt", "le", "gt", "ge",
        "and", "or", "not", "select", "call", "let", "load", "ramp",
        "broadcast", "reduce",
    }
)

STMT_KINDS = frozenset(
    kind for kind in NodeKind if kind.value in {
        "let_stmt", "attr_stmt", "assert_stmt", "for", "store", "provide",
        "allocate", "realize", "prefetch", "seq_stmt", "if_then_else",
        "evaluate",
    }
)


class Node:
    """Base of all IR nodes, tagged with a closed ``NodeKind``."""

    kind: ClassVar[NodeKind]

    def __str__(self) -> str:
        from .printer import node_to_str

        return node_to_str(self)

    def __repr__(self) -> str:
        return str(self)


# Nodes are immutable and compared by identity.
ir_node = dataclass(frozen=True, eq=False, repr=False)
