import numpy as np
import pytest

import xte
import xte.schedule.policies as policies
from xte.errors import BackendCallFailure


def dot_product(n=4):
    A = xte.placeholder((n,), "A")
    B = xte.placeholder((n,), "B")
    k = xte.reduce_axis(n, "k")
    C = xte.compute(
        (1,),
        lambda i: xte.commutative_reduce(
            lambda acc, v: acc + v, 0.0, "float32", [A[k] * B[k]], [k]
        ),
        "C",
    )
    return A, B, C


def test_dot_product():
    A, B, C = dot_product()
    s = xte.create_schedule(C.op)
    mod = xte.build(s, [A, B, C])
    a = np.array([1, 2, 3, 4], dtype="float32")
    b = np.array([5, 6, 7, 8], dtype="float32")
    c = np.zeros(1, dtype="float32")
    mod["default_function"](a, b, c)
    assert c[0] == 70


def test_row_sum():
    A = xte.placeholder((4, 8), "A")
    k = xte.reduce_axis(8, "k")
    B = xte.compute((4,), lambda i: xte.sum(A[i, k], axis=k), "B")
    s = xte.create_schedule(B.op)
    ko, ki = s[B].split(k, factor=4)
    mod = xte.build(s, [A, B])
    a = np.random.rand(4, 8).astype("float32")
    b = np.zeros(4, dtype="float32")
    mod["default_function"](a, b)
    np.testing.assert_allclose(b, a.sum(axis=1), rtol=1e-5)


ELEMENTWISE_TESTS = [
    ((8, 8), "cpu", "cpu injective"),
    ((5, 7), "cpu", "cpu injective, odd shape"),
    ((16, 8), "cuda", "gpu injective"),
    ((10,), "cuda", "gpu injective with a guard"),
]

@pytest.mark.parametrize(
    "shape, device, msg",
    ELEMENTWISE_TESTS,
)
def test_elementwise(shape, device: str, msg: str):
    A = xte.placeholder(shape, "A")
    B = xte.placeholder(shape, "B")
    C = xte.compute(shape, lambda *idx: A[idx] + B[idx] * 2.0, "C")
    s = xte.create_schedule(C.op)
    if device == "cpu":
        xte.cpu_injective(s, C.op)
        mod = xte.build(s, [A, B, C])
    else:
        xte.gpu_injective(s, C.op, thread_count=4)
        mod = xte.build(s, [A, B, C], target_name="cuda")
    a = np.random.rand(*shape).astype("float32")
    b = np.random.rand(*shape).astype("float32")
    c = np.zeros(shape, dtype="float32")
    mod["default_function"](a, b, c)
    np.testing.assert_allclose(c, a + b * 2, rtol=1e-5, err_msg=msg)


def test_split_with_remainder():
    A = xte.placeholder((10,), "A")
    B = xte.compute((10,), lambda i: A[i] - 1.0, "B")
    s = xte.create_schedule(B.op)
    s[B].split(s[B].op.axis[0], factor=4)
    mod = xte.build(s, [A, B])
    a = np.arange(10, dtype="float32")
    b = np.full(10, -5.0, dtype="float32")
    mod["default_function"](a, b)
    np.testing.assert_allclose(b, a - 1)


def test_compute_at():
    A = xte.placeholder((6, 6), "A")
    B = xte.compute((6, 6), lambda y, x: A[y, x] + 1.0, "B")
    C = xte.compute((6, 6), lambda y, x: B[y, x] * 3.0, "C")
    s = xte.create_schedule(C.op)
    s[B].compute_at(s[C], s[C].op.axis[0])
    mod = xte.build(s, [A, C])
    a = np.random.rand(6, 6).astype("float32")
    c = np.zeros((6, 6), dtype="float32")
    mod["default_function"](a, c)
    np.testing.assert_allclose(c, (a + 1) * 3, rtol=1e-5)


def test_cache_write():
    A = xte.placeholder((8,), "A")
    B = xte.compute((8,), lambda i: A[i] * A[i], "B")
    s = xte.create_schedule(B.op)
    s.cache_write(B, "local")
    mod = xte.build(s, [A, B])
    a = np.arange(8, dtype="float32")
    b = np.zeros(8, dtype="float32")
    mod["default_function"](a, b)
    np.testing.assert_allclose(b, a * a)


def test_symbolic_shape():
    n = xte.variable("n")
    A = xte.placeholder((n,), "A")
    B = xte.compute((n,), lambda i: A[i] + 2.0, "B")
    s = xte.create_schedule(B.op)
    mod = xte.build(s, [A, B])
    for size in [1, 7, 12]:
        a = np.arange(size, dtype="float32")
        b = np.zeros(size, dtype="float32")
        mod["default_function"](a, b)
        np.testing.assert_allclose(b, a + 2)


CALL_ERROR_TESTS = [
    (lambda a, b, c: (a, b), "missing argument"),
    (lambda a, b, c: (a, b, c[:2]), "wrong shape"),
    (lambda a, b, c: (a, b, c.astype("float64")), "wrong dtype"),
    (lambda a, b, c: (a, b, c.reshape(2, 2)), "wrong rank"),
    (lambda a, b, c: (a, b, [0.0] * 4), "not an array"),
]

@pytest.mark.parametrize(
    "make_args, msg",
    CALL_ERROR_TESTS,
)
def test_call_errors(make_args, msg: str):
    A = xte.placeholder((4,), "A")
    B = xte.placeholder((4,), "B")
    C = xte.compute((4,), lambda i: A[i] + B[i], "C")
    mod = xte.build(xte.create_schedule(C.op), [A, B, C])
    a, b, c = (np.zeros(4, dtype="float32") for _ in range(3))
    with pytest.raises(BackendCallFailure):
        mod["default_function"](*make_args(a, b, c))
        pytest.fail(f"unexpected: {msg}")


def test_evaluator():
    A, B, C = dot_product()
    mod = xte.build(xte.create_schedule(C.op), [A, B, C])
    evaluator = mod.get_evaluator("default_function", repeat=3, number=2)
    assert evaluator.module is mod
    a = np.ones(4, dtype="float32")
    c = np.zeros(1, dtype="float32")
    results = evaluator.evaluate(a, a, c)
    assert results.shape == (3,)
    assert (results >= 0).all()
    assert c[0] == 4


COMPUTE_AT_TESTS = [
    ((8, 8), 3, "tile with remainder"),
    ((8, 8), 2, "dividing tile"),
    ((7, 5), 4, "odd shape"),
]

@pytest.mark.parametrize(
    "shape, factor, msg",
    COMPUTE_AT_TESTS,
)
def test_compute_at_tiled(shape, factor: int, msg: str):
    A = xte.placeholder(shape, "A")
    B = xte.compute(shape, lambda i, j: A[i, j] + 1.0, "B")
    D = xte.compute(shape, lambda i, j: B[i, j] * 2.0, "D")
    s = xte.create_schedule(D.op)
    i, j = s[D].op.axis
    io, jo, ii, ji = s[D].tile(i, j, factor, factor)
    s[B].compute_at(s[D], io)
    mod = xte.build(s, [A, D])
    a = np.random.rand(*shape).astype("float32")
    d = np.zeros(shape, dtype="float32")
    mod["default_function"](a, d)
    np.testing.assert_allclose(d, (a + 1) * 2, rtol=1e-5, err_msg=msg)


def test_compute_at_split_with_remainder():
    A = xte.placeholder((10,), "A")
    B = xte.compute((10,), lambda i: A[i] * A[i], "B")
    C = xte.compute((10,), lambda i: B[i] + 1.0, "C")
    s = xte.create_schedule(C.op)
    xo, xi = s[C].split(s[C].op.axis[0], factor=4)
    s[B].compute_at(s[C], xo)
    text = xte.schedule_to_str(s, [A, C])
    assert text.count("likely") >= 2
    mod = xte.build(s, [A, C])
    a = np.arange(10, dtype="float32")
    c = np.zeros(10, dtype="float32")
    mod["default_function"](a, c)
    np.testing.assert_allclose(c, a * a + 1)


def test_compute_at_dividing_split_unguarded():
    A = xte.placeholder((8,), "A")
    B = xte.compute((8,), lambda i: A[i] + 1.0, "B")
    C = xte.compute((8,), lambda i: B[i] * 2.0, "C")
    s = xte.create_schedule(C.op)
    xo, xi = s[C].split(s[C].op.axis[0], factor=4)
    s[B].compute_at(s[C], xo)
    assert "likely" not in xte.schedule_to_str(s, [A, C])


OUT_OF_BOUNDS_TESTS = [
    (lambda A: (lambda i: A[i - 1]), "negative index"),
    (lambda A: (lambda i: A[i + 1]), "past the end"),
]

@pytest.mark.parametrize(
    "rule, msg",
    OUT_OF_BOUNDS_TESTS,
)
def test_out_of_bounds_access(rule, msg: str):
    A = xte.placeholder((4,), "A")
    B = xte.compute((4,), rule(A), "B")
    mod = xte.build(xte.create_schedule(B.op), [A, B])
    a = np.arange(4, dtype="float32")
    b = np.zeros(4, dtype="float32")
    with pytest.raises(BackendCallFailure, match="out of bounds"):
        mod["default_function"](a, b)
        pytest.fail(f"unexpected: {msg}")


def test_cpu_injective_vectorized(monkeypatch):
    monkeypatch.setattr(policies, "cpu_vector_lanes", lambda dtype: 4)
    A = xte.placeholder((8, 8), "A")
    B = xte.compute((8, 8), lambda y, x: A[y, x] * 3.0, "B")
    s = xte.create_schedule(B.op)
    xte.cpu_injective(s, B.op, vectorize=True)
    mod = xte.build(s, [A, B])
    a = np.random.rand(8, 8).astype("float32")
    b = np.zeros((8, 8), dtype="float32")
    mod["default_function"](a, b)
    np.testing.assert_allclose(b, a * 3, rtol=1e-5)
