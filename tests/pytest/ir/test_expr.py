import pytest

from xte.errors import DataTypeMismatch
from xte.ir import (
    DataType,
    Constant,
    Add,
    Cast,
    node_to_str,
    structural_equal,
    substitute,
    free_vars,
    simplify_expr,
    can_prove,
)
from xte.ir import op
from xte.te import variable


DTYPE_TESTS = [
    ("int32", DataType.parse("int32"), "int32"),
    ("float32x4", DataType.parse("float32").with_lanes(4), "float32 vector"),
    ("bool", DataType.parse("uint1"), "bool is uint1"),
    ("handle", DataType.parse("handle"), "handle"),
]

@pytest.mark.parametrize(
    "name, expected, msg",
    DTYPE_TESTS,
)
def test_dtype_parse(name: str, expected: DataType, msg: str):
    dtype = DataType.parse(name)
    assert dtype == expected, f"unexpected: {msg}"
    assert str(dtype) == name, f"unexpected text: {msg}"


def test_dtype_unknown():
    with pytest.raises(DataTypeMismatch):
        DataType.parse("complex64")


FOLD_TESTS = [
    (op.add(2, op.const(3, "int32")), 5, "add"),
    (op.sub(op.const(2, "int32"), 5), -3, "sub"),
    (op.mul(op.const(4, "int32"), 5), 20, "mul"),
    (op.div(op.const(-7, "int32"), 2), -3, "div truncates toward zero"),
    (op.mod(op.const(-7, "int32"), 2), -1, "mod has the dividend sign"),
    (op.minimum(op.const(3, "int32"), 2), 2, "min"),
    (op.maximum(op.const(3, "int32"), 2), 3, "max"),
    (op.div(op.const(7.0, "float32"), 2), 3.5, "float div"),
]

@pytest.mark.parametrize(
    "expr, expected, msg",
    FOLD_TESTS,
)
def test_constant_folding(expr, expected, msg: str):
    assert isinstance(expr, Constant), f"not folded: {msg}"
    assert expr.value == expected, f"unexpected: {msg}"


def test_division_by_zero_not_folded():
    expr = op.div(op.const(1, "int32"), 0)
    assert not isinstance(expr, Constant)


def test_operand_promotion():
    x = variable("x")
    f = variable("f", "float32")
    assert (x + 1).dtype == DataType.parse("int32")
    assert (x + f).dtype == DataType.parse("float32")
    assert (f + 1).dtype == DataType.parse("float32")
    assert isinstance((x + f).a, Cast)
    with pytest.raises(DataTypeMismatch):
        op.add(variable("h", "handle"), x)


def test_operator_overloads():
    x = variable("x")
    expr = x * 2 + 1
    assert isinstance(expr, Add)
    assert node_to_str(expr) == "((x * 2) + 1)"
    assert node_to_str(x < 4) == "(x < 4)"
    assert (x < 4).dtype == DataType.parse("bool")


def test_structural_equal():
    x = variable("x")
    y = variable("x")
    assert structural_equal(x + 1, y + 1)
    assert not structural_equal(x + 1, x + 2)
    assert not structural_equal(x + 1, x - 1)


def test_substitute_and_free_vars():
    x, y = variable("x"), variable("y")
    expr = x * y + x
    assert free_vars(expr) == [x, y]
    replaced = substitute(expr, {x: op.const(3, "int32")})
    assert free_vars(replaced) == [y]
    assert substitute(expr, {}) is expr


SIMPLIFY_TESTS = [
    ("x + 0", lambda x: x + 0, "x", "add zero"),
    ("x * 1", lambda x: x * 1, "x", "mul one"),
    ("(x + 2) - 2", lambda x: (x + 2) - 2, "x", "cancel constants"),
    ("x * 0", lambda x: x * 0, "0", "mul zero"),
]

@pytest.mark.parametrize(
    "name, build, expected, msg",
    SIMPLIFY_TESTS,
)
def test_simplify(name: str, build, expected: str, msg: str):
    x = variable("x")
    assert node_to_str(simplify_expr(build(x))) == expected, f"unexpected: {msg}"


def test_can_prove():
    assert can_prove(op.eq(op.mod(op.const(64, "int32"), 16), 0))
    assert not can_prove(op.eq(op.mod(op.const(10, "int32"), 4), 0))
    assert not can_prove(op.lt(variable("x"), 4))
