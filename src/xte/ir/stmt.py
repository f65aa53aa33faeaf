#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from enum import IntEnum
from typing import Any

from .dtype import DataType
from .expr import PrimExpr, Var, Range, Constant, INT32
from .node import Node, NodeKind, ir_node

__all__ = [
    "Stmt",
    "ForType",
    "LetStmt",
    "AttrStmt",
    "AssertStmt",
    "For",
    "Store",
    "Provide",
    "Allocate",
    "Realize",
    "Prefetch",
    "SeqStmt",
    "IfThenElse",
    "Evaluate",
    "make_seq",
    "no_op",
    "is_no_op",
]


class Stmt(Node):
    """Base of statements."""


class ForType(IntEnum):
    SERIAL = 0
    PARALLEL = 1
    VECTORIZED = 2
    UNROLLED = 3


@ir_node
class LetStmt(Stmt):
    kind = NodeKind.LET_STMT
    var: Var
    value: PrimExpr
    body: Stmt


@ir_node
class AttrStmt(Stmt):
    """
    Annotates ``body`` with ``attr_key = value`` about ``node``.
    ``node`` is not part of the expression tree and is never rewritten
    by generic mutators.
    """

    kind = NodeKind.ATTR_STMT
    node: Any
    attr_key: str
    value: PrimExpr
    body: Stmt


@ir_node
class AssertStmt(Stmt):
    kind = NodeKind.ASSERT_STMT
    condition: PrimExpr
    message: PrimExpr
    body: Stmt


@ir_node
class For(Stmt):
    kind = NodeKind.FOR
    loop_var: Var
    min: PrimExpr
    extent: PrimExpr
    for_type: ForType
    body: Stmt


@ir_node
class Store(Stmt):
    kind = NodeKind.STORE
    buffer_var: Var
    value: PrimExpr
    index: PrimExpr
    predicate: PrimExpr | None = None


@ir_node
class Provide(Stmt):
    """Writes output ``value_index`` of ``func`` at multi-dimensional ``args``."""

    kind = NodeKind.PROVIDE
    func: Any
    value_index: int
    value: PrimExpr
    args: tuple[PrimExpr, ...]


@ir_node
class Allocate(Stmt):
    kind = NodeKind.ALLOCATE
    buffer_var: Var
    dtype: DataType
    extents: tuple[PrimExpr, ...]
    condition: PrimExpr
    body: Stmt


@ir_node
class Realize(Stmt):
    kind = NodeKind.REALIZE
    func: Any
    value_index: int
    dtype: DataType
    bounds: tuple[Range, ...]
    condition: PrimExpr
    body: Stmt


@ir_node
class Prefetch(Stmt):
    kind = NodeKind.PREFETCH
    func: Any
    value_index: int
    dtype: DataType
    bounds: tuple[Range, ...]


@ir_node
class SeqStmt(Stmt):
    kind = NodeKind.SEQ_STMT
    seq: tuple[Stmt, ...]


@ir_node
class IfThenElse(Stmt):
    kind = NodeKind.IF_THEN_ELSE
    condition: PrimExpr
    then_case: Stmt
    else_case: Stmt | None = None


@ir_node
class Evaluate(Stmt):
    kind = NodeKind.EVALUATE
    value: PrimExpr


def no_op() -> Evaluate:
    return Evaluate(Constant(0, INT32))


def is_no_op(stmt: Stmt | None) -> bool:
    if stmt is None:
        return True
    if isinstance(stmt, Evaluate):
        return isinstance(stmt.value, Constant)
    if isinstance(stmt, SeqStmt):
        return all(is_no_op(s) for s in stmt.seq)
    return False


def make_seq(*stmts: Stmt | None) -> Stmt:
    """Flattens nested sequences and drops missing statements."""
    flat: list[Stmt] = []
    for stmt in stmts:
        if stmt is None:
            continue
        if isinstance(stmt, SeqStmt):
            flat.extend(stmt.seq)
        else:
            flat.append(stmt)
    if not flat:
        return no_op()
    if len(flat) == 1:
        return flat[0]
    return SeqStmt(tuple(flat))
