#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from .tensor import Tensor, tensor_get
from .operation import (
    Operation,
    PlaceholderOp,
    ComputeOp,
    output_tensors,
    input_tensors,
    as_operation,
)
from .compute import (
    placeholder,
    compute,
    commutative_reduce,
    reduce_axis,
    sum,
    reduce_max,
    reduce_min,
)
from .api import *
