#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from .node import Node, NodeKind
from .dtype import DataType, TypeCode, as_dtype, combine_dtypes
from .expr import *
from .stmt import *
from .buffer import Buffer, declare_buffer
from .function import FuncType, LoweredFunc
from .functor import (
    IRVisitor,
    IRMutator,
    post_order_visit,
    substitute,
    structural_equal,
    free_vars,
    uses_var,
)
from .arith import simplify_expr, can_prove, eval_interval
from .printer import node_to_str
from . import op
