#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
from dataclasses import dataclass, replace
from enum import IntEnum
from functools import lru_cache
import re

import numpy as np

from ..errors import DataTypeMismatch

__all__ = [
    "TypeCode",
    "DataType",
    "as_dtype",
    "combine_dtypes",
]


class TypeCode(IntEnum):
    INT = 0
    UINT = 1
    FLOAT = 2
    HANDLE = 3


_TYPE_PREFIXES = {
    "int": TypeCode.INT,
    "uint": TypeCode.UINT,
    "float": TypeCode.FLOAT,
}

_DTYPE_RE = re.compile(r"^(int|uint|float)(\d+)(?:x(\d+))?$")


@dataclass(frozen=True)
class DataType:
    """Scalar or vector data type: type code, bit width and lane count."""

    code: TypeCode
    bits: int
    lanes: int = 1

    @staticmethod
    @lru_cache(maxsize=None)
    def parse(name: str) -> "DataType":
        if name == "handle":
            return DataType(TypeCode.HANDLE, 64)
        if name == "bool":
            return DataType(TypeCode.UINT, 1)
        match = _DTYPE_RE.match(name)
        if match is None:
            raise DataTypeMismatch(f"unknown data type: {name}", dtype=name)
        prefix, bits, lanes = match.groups()
        return DataType(_TYPE_PREFIXES[prefix], int(bits), int(lanes or 1))

    @property
    def is_int(self) -> bool:
        return self.code == TypeCode.INT

    @property
    def is_uint(self) -> bool:
        return self.code == TypeCode.UINT

    @property
    def is_integer(self) -> bool:
        return self.code in (TypeCode.INT, TypeCode.UINT) and not self.is_bool

    @property
    def is_float(self) -> bool:
        return self.code == TypeCode.FLOAT

    @property
    def is_handle(self) -> bool:
        return self.code == TypeCode.HANDLE

    @property
    def is_bool(self) -> bool:
        return self.code == TypeCode.UINT and self.bits == 1

    @property
    def is_scalar(self) -> bool:
        return self.lanes == 1

    @property
    def bytes(self) -> int:
        return max(1, (self.bits + 7) // 8)

    def with_lanes(self, lanes: int) -> "DataType":
        return replace(self, lanes=lanes)

    def element_of(self) -> "DataType":
        return replace(self, lanes=1)

    @property
    def numpy_dtype(self) -> np.dtype:
        assert not self.is_handle, f"no numpy type for handle"
        if self.is_bool:
            return np.dtype("bool")
        return np.dtype(f"{self.code.name.lower()}{self.bits}")

    @staticmethod
    def from_numpy(dtype: np.dtype) -> "DataType":
        dtype = np.dtype(dtype)
        if dtype == np.bool_:
            return DataType(TypeCode.UINT, 1)
        return DataType.parse(str(dtype))

    def __str__(self) -> str:
        if self.is_handle:
            return "handle"
        if self.is_bool:
            base = "bool"
        else:
            base = f"{self.code.name.lower()}{self.bits}"
        return base if self.lanes == 1 else f"{base}x{self.lanes}"


def as_dtype(dtype: "str | DataType | np.dtype") -> DataType:
    if isinstance(dtype, DataType):
        return dtype
    if isinstance(dtype, str):
        return DataType.parse(dtype)
    return DataType.from_numpy(dtype)


def combine_dtypes(
    lhs: DataType,
    rhs: DataType,
    lhs_const: bool = False,
    rhs_const: bool = False,
) -> DataType:
    """
    Returns the common type of two binary operation operands.

    - identical types combine to themselves,
    - a constant operand adopts the type of the other operand, except
      a float constant facing an integer operand,
    - an integer operand is promoted to the float operand type,
    - same type codes promote to the larger width,
    - lanes must match or one side must be a scalar (broadcast),
    - handles never combine.
    """
    if lhs == rhs:
        return lhs
    if lhs.is_handle or rhs.is_handle:
        raise DataTypeMismatch(
            f"can not combine {lhs} and {rhs}", lhs=str(lhs), rhs=str(rhs)
        )
    if lhs.lanes != rhs.lanes and lhs.lanes != 1 and rhs.lanes != 1:
        raise DataTypeMismatch(
            f"lanes mismatch in {lhs} and {rhs}", lhs=str(lhs), rhs=str(rhs)
        )
    lanes = max(lhs.lanes, rhs.lanes)
    if lhs_const and not rhs_const and (rhs.is_float or not lhs.is_float):
        return rhs.with_lanes(lanes)
    if rhs_const and not lhs_const and (lhs.is_float or not rhs.is_float):
        return lhs.with_lanes(lanes)
    if lhs.is_float and not rhs.is_float:
        return lhs.with_lanes(lanes)
    if rhs.is_float and not lhs.is_float:
        return rhs.with_lanes(lanes)
    if lhs.code == rhs.code:
        return DataType(lhs.code, max(lhs.bits, rhs.bits), lanes)
    raise DataTypeMismatch(
        f"can not combine {lhs} and {rhs}", lhs=str(lhs), rhs=str(rhs)
    )
