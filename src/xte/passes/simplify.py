#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from ..ir.expr import Constant, Var
from ..ir.stmt import (
    Stmt,
    LetStmt,
    For,
    SeqStmt,
    IfThenElse,
    Evaluate,
    make_seq,
    no_op,
    is_no_op,
)
from ..ir.functor import IRMutator, substitute
from ..ir.arith import Simplifier
from ..ir import op as ops

__all__ = [
    "canonical_simplify",
    "simplify",
    "remove_no_op",
]


def canonical_simplify(stmt: Stmt) -> Stmt:
    """Puts every expression of ``stmt`` in canonical form."""
    return Simplifier().mutate(stmt)


class _StmtSimplifier(Simplifier):
    def mutate_for(self, node: For) -> Stmt:
        extent = self.mutate(node.extent)
        if ops.is_const_int(extent, 1):
            body = substitute(node.body, {node.loop_var: node.min})
            return self.mutate(body)
        return self.generic_mutate(node)

    def mutate_if_then_else(self, node: IfThenElse) -> Stmt:
        condition = self.mutate(node.condition)
        if isinstance(condition, Constant):
            if condition.value:
                return self.mutate(node.then_case)
            if node.else_case is None:
                return no_op()
            return self.mutate(node.else_case)
        return self.generic_mutate(node)

    def mutate_let_stmt(self, node: LetStmt) -> Stmt:
        value = self.mutate(node.value)
        if isinstance(value, (Constant, Var)):
            return self.mutate(substitute(node.body, {node.var: value}))
        body = self.mutate(node.body)
        if value is node.value and body is node.body:
            return node
        return LetStmt(node.var, value, body)


def simplify(stmt: Stmt) -> Stmt:
    """
    Simplifies expressions and statements: single iteration loops are
    replaced by their body, constant conditions select their branch and
    constant let bindings are substituted.
    """
    return _StmtSimplifier().mutate(stmt)


class _NoOpRemover(IRMutator):
    def mutate_evaluate(self, node: Evaluate) -> Stmt:
        if isinstance(node.value, Constant):
            return no_op()
        return node

    def mutate_for(self, node: For) -> Stmt:
        node = self.generic_mutate(node)
        if is_no_op(node.body) or ops.is_const_int(node.extent, 0):
            return no_op()
        return node

    def mutate_if_then_else(self, node: IfThenElse) -> Stmt:
        node = self.generic_mutate(node)
        else_case = None if is_no_op(node.else_case) else node.else_case
        if is_no_op(node.then_case):
            if else_case is None:
                return no_op()
            return IfThenElse(ops.logical_not(node.condition), else_case)
        if else_case is not node.else_case:
            return IfThenElse(node.condition, node.then_case, else_case)
        return node

    def _body_only(self, node: Stmt) -> Stmt:
        node = self.generic_mutate(node)
        return no_op() if is_no_op(node.body) else node

    mutate_allocate = mutate_attr_stmt = mutate_let_stmt = _body_only

    def mutate_seq_stmt(self, node: SeqStmt) -> Stmt:
        stmts = [self.mutate(stmt) for stmt in node.seq]
        kept = [stmt for stmt in stmts if not is_no_op(stmt)]
        if len(kept) == len(node.seq) and all(
            a is b for a, b in zip(kept, node.seq)
        ):
            return node
        return make_seq(*kept)


def remove_no_op(stmt: Stmt) -> Stmt:
    """
    Removes the statements without effect: constant evaluations, empty
    loops, conditions, allocations, attributes and bindings.
    Assertions are always kept.
    """
    return _NoOpRemover().mutate(stmt)
