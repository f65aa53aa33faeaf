import pytest

from xte.errors import (
    ArityMismatch,
    DataTypeMismatch,
    IllegalTransform,
    InvalidIndex,
    InvalidIterationKind,
    ShapeRankMismatch,
)
from xte.ir import DataType, IterVarType, Reduce, node_to_str, op
from xte.te import (
    placeholder,
    compute,
    commutative_reduce,
    reduce_axis,
    sum,
    reduce_max,
    variable,
    let_bindings,
    iteration_variable,
    thread_axis,
    safe_name,
)


COMPUTE_SHAPE_TESTS = [
    ((8,), lambda i: i * 2, "1-d"),
    ((4, 6), lambda y, x: y + x, "2-d"),
    ((2, 3, 4), lambda a, b, c: a * b + c, "3-d"),
]

@pytest.mark.parametrize(
    "shape, rule, msg",
    COMPUTE_SHAPE_TESTS,
)
def test_compute_shape(shape, rule, msg: str):
    tensor = compute(shape, rule, "T")
    assert [dim.value for dim in tensor.shape] == list(shape), f"unexpected: {msg}"
    assert tensor.ndim == len(shape), f"unexpected rank: {msg}"
    assert tensor.dtype == DataType.parse("int32"), f"unexpected dtype: {msg}"


def test_compute_axis_names():
    A = placeholder((4, 5), "A")
    B = compute((4, 5), lambda row, col: A[row, col] + 1.0, "B")
    assert [iv.name for iv in B.op.axis] == ["row", "col"]
    assert all(iv.iter_type == IterVarType.DATA_PAR for iv in B.op.axis)
    assert B.dtype == DataType.parse("float32")
    assert B.op.input_tensors() == [A]


ARITY_TESTS = [
    ((8,), lambda: 1, "missing index"),
    ((8,), lambda i, j: i, "extra index"),
    ((4, 4), lambda i: i, "rank 2 with a single index"),
]

@pytest.mark.parametrize(
    "shape, rule, msg",
    ARITY_TESTS,
)
def test_compute_arity(shape, rule, msg: str):
    with pytest.raises(ArityMismatch):
        compute(shape, rule)


def test_compute_multiple_outputs():
    A = placeholder((4,), "A")
    outs = compute((4,), lambda i: (A[i] + 1.0, A[i] * 2.0), "pair")
    assert isinstance(outs, list) and len(outs) == 2
    assert [t.value_index for t in outs] == [0, 1]
    assert outs[0].name == "pair.v0"
    assert outs[0] != outs[1]
    assert outs[0] == outs[0].op.output(0)


def test_tensor_indexing_errors():
    A = placeholder((4, 4), "A")
    with pytest.raises(ShapeRankMismatch):
        A[0]
    with pytest.raises(InvalidIndex):
        A[0, 1.5]
    with pytest.raises(InvalidIndex):
        A[0, True]


def test_reduce_axis_domain():
    k = reduce_axis(10, "k")
    assert k.iter_type == IterVarType.COMM_REDUCE
    assert k.dom.min.value == 0 and k.dom.extent.value == 10
    r = reduce_axis((2, 6), "r")
    assert r.dom.min.value == 2 and r.dom.extent.value == 4


def test_commutative_reduce():
    A = placeholder((4,), "A")
    B = placeholder((4,), "B")
    k = reduce_axis(4, "k")
    red = commutative_reduce(
        lambda acc, v: acc + v, 0.0, "float32", [A[k] * B[k]], [k]
    )
    assert isinstance(red, Reduce)
    assert red.dtype == DataType.parse("float32")
    assert red.combiner.identity_element[0].value == 0.0
    C = compute((1,), lambda i: red, "C")
    assert C.op.reduce_axis == (k,)
    assert "reduce(" in node_to_str(C.op.body[0])


REDUCE_MISMATCH_TESTS = [
    (lambda acc, v: acc + v, 0, "int32", "identity type differs"),
    (lambda acc, v: (acc + v).astype("int32"), 0.0, "float32", "result type differs"),
]

@pytest.mark.parametrize(
    "combine, identity, identity_dtype, msg",
    REDUCE_MISMATCH_TESTS,
)
def test_commutative_reduce_dtype_mismatch(combine, identity, identity_dtype, msg):
    A = placeholder((4,), "A")
    k = reduce_axis(4, "k")
    with pytest.raises(DataTypeMismatch):
        commutative_reduce(
            combine, op.const(identity, identity_dtype), "float32", [A[k]], [k]
        )


def test_commutative_reduce_data_axis():
    A = placeholder((4,), "A")
    C = compute((4,), lambda i: i, "C")
    with pytest.raises(IllegalTransform):
        commutative_reduce(
            lambda acc, v: acc + v, 0.0, "float32", [A[0]], [C.op.axis[0]]
        )


def test_reducers():
    A = placeholder((4, 8), "A")
    k = reduce_axis(8, "k")
    total = compute((4,), lambda i: sum(A[i, k], axis=k), "total")
    assert total.dtype == DataType.parse("float32")
    largest = compute((4,), lambda i: reduce_max(A[i, k], axis=k), "largest")
    identity = largest.op.body[0].combiner.identity_element[0]
    assert identity.value == float("-inf")


def test_let_bindings():
    a = variable("a")
    expr = let_bindings(
        [("x", a + 1), ("y", lambda v: v["x"] * 2)], lambda v: v["x"] + v["y"]
    )
    assert node_to_str(expr) == "(let x = (a + 1) in (let y = (x * 2) in (x + y)))"


def test_iteration_variable():
    iv = iteration_variable((0, 16), "i", "data-parallel")
    assert iv.iter_type == IterVarType.DATA_PAR
    tx = thread_axis("threadIdx.x")
    assert tx.thread_tag == "threadIdx.x" and tx.dom is None
    with pytest.raises(InvalidIterationKind):
        iteration_variable(None, "i", IterVarType.DATA_PAR)


def test_safe_name():
    assert safe_name("my-kernel", "lib_") == "lib_my_kernel"
