import pytest

from xte.errors import (
    IllegalTransform,
    ScheduleError,
    TooManyAxes,
    UnsupportedOperation,
)
from xte.ir import IterVarType
import xte.schedule.policies as policies
from xte.te import placeholder, compute, reduce_axis, sum
from xte.schedule import (
    AttachType,
    create_schedule,
    stage_bind_gpu,
    cpu_injective,
    gpu_injective,
    infer_bound,
)


def elementwise(shape, name="B"):
    A = placeholder(shape, "A")
    rule = {
        1: lambda i: A[i] * 2.0,
        2: lambda y, x: A[y, x] * 2.0,
        3: lambda z, y, x: A[z, y, x] * 2.0,
        4: lambda w, z, y, x: A[w, z, y, x] * 2.0,
    }[len(shape)]
    B = compute(shape, rule, name)
    return A, B, create_schedule(B.op)


def extents(schedule, stage):
    bounds = infer_bound(schedule)
    return [bounds[leaf].extent.value for leaf in stage.leaf_iter_vars]


def test_schedule_stages():
    A, B, s = elementwise((8, 8))
    assert [stage.name for stage in s.stages] == ["A", "B"]
    assert s[B].is_output and not s[A].is_output
    assert A in s and B.op in s
    C = placeholder((2,), "C")
    assert C not in s
    with pytest.raises(ScheduleError):
        s[C]


SPLIT_TESTS = [
    (64, dict(factor=16), [4, 16], "factor divides"),
    (64, dict(nparts=4), [4, 16], "nparts divides"),
    (10, dict(factor=4), [3, 4], "outer is rounded up"),
    (10, dict(nparts=3), [3, 4], "inner is rounded up"),
]

@pytest.mark.parametrize(
    "extent, kwargs, expected, msg",
    SPLIT_TESTS,
)
def test_split(extent: int, kwargs: dict, expected: list, msg: str):
    A, B, s = elementwise((extent,))
    stage = s[B]
    outer, inner = stage.split(stage.op.axis[0], **kwargs)
    assert outer.name == "i.outer" and inner.name == "i.inner", f"names: {msg}"
    assert stage.leaf_iter_vars == [outer, inner], f"leaves: {msg}"
    assert extents(s, stage) == expected, f"unexpected: {msg}"


SPLIT_ERROR_TESTS = [
    (dict(), "neither factor nor nparts"),
    (dict(factor=2, nparts=2), "both factor and nparts"),
    (dict(factor=0), "zero factor"),
    (dict(factor=-2), "negative factor"),
    (dict(factor=2.0), "float factor"),
]

@pytest.mark.parametrize(
    "kwargs, msg",
    SPLIT_ERROR_TESTS,
)
def test_split_errors(kwargs: dict, msg: str):
    A, B, s = elementwise((8,))
    stage = s[B]
    with pytest.raises(IllegalTransform):
        stage.split(stage.op.axis[0], **kwargs)
        pytest.fail(f"unexpected: {msg}")


def test_split_non_leaf():
    A, B, s = elementwise((8,))
    stage = s[B]
    axis = stage.op.axis[0]
    stage.split(axis, factor=2)
    with pytest.raises(IllegalTransform):
        stage.split(axis, factor=2)


FUSE_TESTS = [
    ((8, 8), 64, "i.j"),
    ((2, 3, 4), 24, "3-d"),
    ((4, 1, 5, 2), 40, "4-d with a unit dimension"),
]

@pytest.mark.parametrize(
    "shape, expected, msg",
    FUSE_TESTS,
)
def test_fuse_extent(shape, expected: int, msg: str):
    A, B, s = elementwise(shape)
    stage = s[B]
    fused = stage.fuse(*stage.op.axis)
    assert stage.leaf_iter_vars == [fused], f"leaves: {msg}"
    assert extents(s, stage) == [expected], f"unexpected: {msg}"


def test_fuse_single_axis_is_identity():
    A, B, s = elementwise((8, 8))
    stage = s[B]
    y, x = stage.op.axis
    assert stage.fuse(x) is x
    assert stage.fuse([y]) is y
    assert stage.relations == []


def test_fuse_names_and_errors():
    A, B, s = elementwise((8, 8, 8))
    stage = s[B]
    z, y, x = stage.op.axis
    with pytest.raises(IllegalTransform):
        stage.fuse(z, x)
    with pytest.raises(IllegalTransform):
        stage.fuse(y, z)
    fused = stage.fuse(z, y)
    assert fused.name == "z.y.fused"


def test_reorder():
    A, B, s = elementwise((4, 8, 2))
    stage = s[B]
    z, y, x = stage.op.axis
    stage.reorder(x, z)
    assert stage.leaf_iter_vars == [x, y, z]
    with pytest.raises(IllegalTransform):
        stage.reorder(x, x)


TILE_TESTS = [
    (16, 32, 4, 8, "divisible"),
    (10, 6, 4, 4, "not divisible"),
    (7, 9, 1, 9, "unit and full factors"),
]

@pytest.mark.parametrize(
    "ny, nx, fy, fx, msg",
    TILE_TESTS,
)
def test_tile(ny: int, nx: int, fy: int, fx: int, msg: str):
    A, B, s = elementwise((ny, nx))
    stage = s[B]
    y, x = stage.op.axis
    yo, xo, yi, xi = stage.tile(y, x, fy, fx)
    assert stage.leaf_iter_vars == [yo, xo, yi, xi], f"order: {msg}"
    eyo, exo, eyi, exi = extents(s, stage)
    assert (eyi, exi) == (fy, fx), f"inner extents: {msg}"
    assert eyo * eyi >= ny and (eyo - 1) * eyi < ny, f"outer y extent: {msg}"
    assert exo * exi >= nx and (exo - 1) * exi < nx, f"outer x extent: {msg}"


ANNOTATE_TESTS = [
    ("parallel", IterVarType.PARALLELIZED),
    ("vectorize", IterVarType.VECTORIZED),
    ("unroll", IterVarType.UNROLLED),
]

@pytest.mark.parametrize(
    "action, kind",
    ANNOTATE_TESTS,
)
def test_annotate(action: str, kind: IterVarType):
    A, B, s = elementwise((8,))
    stage = s[B]
    axis = stage.op.axis[0]
    getattr(stage, action)(axis)
    assert stage.iter_var_attrs[axis].iter_type == kind, f"unexpected: {action}"


def test_reduction_axis_restrictions():
    A = placeholder((4, 8), "A")
    k = reduce_axis(8, "k")
    B = compute((4,), lambda i: sum(A[i, k], axis=k), "B")
    s = create_schedule(B.op)
    stage = s[B]
    i = stage.op.axis[0]
    with pytest.raises(IllegalTransform):
        stage.parallel(k)
    with pytest.raises(IllegalTransform):
        stage.vectorize(k)
    with pytest.raises(IllegalTransform):
        stage.fuse(i, k)
    ko, ki = stage.split(k, factor=4)
    assert ko.iter_type == IterVarType.COMM_REDUCE
    assert extents(s, stage) == [4, 2, 4]


BIND_GPU_TESTS = [
    (1, ["x"], "single axis binds x"),
    (2, ["y", "x"], "two axes bind y, x"),
    (3, ["z", "y", "x"], "three axes bind z, y, x"),
]

@pytest.mark.parametrize(
    "count, names, msg",
    BIND_GPU_TESTS,
)
def test_bind_gpu(count: int, names: list, msg: str):
    shape = (2,) * (2 * count) if count < 3 else (2, 2, 2)
    A, B, s = elementwise(shape)
    stage = s[B]
    axes = list(stage.op.axis)
    if count < 3:
        blocks, threads = axes[:count], axes[count:]
    else:
        blocks, threads = axes, []
    block_ivars, thread_ivars = stage.bind_gpu(blocks, threads)
    assert [iv.thread_tag for iv in block_ivars] == [
        f"blockIdx.{name}" for name in names
    ], f"unexpected: {msg}"
    assert [iv.thread_tag for iv in thread_ivars] == [
        f"threadIdx.{name}" for name in names[len(names) - len(threads):]
    ], f"unexpected threads: {msg}"
    for axis, ivar in zip(blocks + threads, block_ivars + thread_ivars):
        assert stage.iter_var_attrs[axis].bind_thread is ivar, f"binding: {msg}"
        assert stage.iter_var_kind(axis) == IterVarType.THREAD_INDEX, msg


def test_bind_gpu_too_many_axes():
    A, B, s = elementwise((2, 2, 2, 2))
    stage = s[B]
    with pytest.raises(TooManyAxes):
        stage.bind_gpu(stage.op.axis, [])
    with pytest.raises(TooManyAxes):
        stage_bind_gpu(stage, [], stage.op.axis)


def test_bound_axis_restrictions():
    A, B, s = elementwise((64,))
    stage = s[B]
    xo, xi = stage.split(stage.op.axis[0], factor=16)
    stage.bind_gpu([xo], [xi])
    with pytest.raises(IllegalTransform):
        stage.split(xi, factor=2)
    with pytest.raises(IllegalTransform):
        stage.parallel(xo)


def test_compute_inline_and_at():
    A = placeholder((8,), "A")
    B = compute((8,), lambda i: A[i] + 1.0, "B")
    C = compute((8,), lambda i: B[i] * 2.0, "C")
    s = create_schedule(C.op)
    s[B].compute_inline()
    assert s[B].attach_type == AttachType.INLINE
    with pytest.raises(IllegalTransform):
        s[C].compute_inline()
    s[B].compute_at(s[C], s[C].op.axis[0])
    assert s[B].attach_type == AttachType.SCOPE
    assert s[B].attach_stage is s[C]
    with pytest.raises(ScheduleError):
        s[B].compute_at(s[B], s[B].op.axis[0])
    s[B].compute_root()
    assert s[B].attach_type == AttachType.ROOT


def test_compute_at_bounds():
    A = placeholder((8, 8), "A")
    B = compute((8, 8), lambda y, x: A[y, x] + 1.0, "B")
    C = compute((8, 8), lambda y, x: B[y, x] * 2.0, "C")
    s = create_schedule(C.op)
    y, x = s[C].op.axis
    s[B].compute_at(s[C], y)
    bounds = infer_bound(s)
    by, bx = s[B].op.axis
    assert bounds[by].extent.value == 1
    assert bounds[bx].extent.value == 8


def test_cache_write():
    A, B, s = elementwise((8, 8))
    cache, schedule = s.cache_write(B, "local")
    assert schedule is s
    assert cache.name == "B.local"
    assert [stage.name for stage in s.stages] == ["A", "B.local", "B"]
    assert s[cache].scope == "local"
    assert s.tensor_of(B).op.input_tensors() == [cache]
    with pytest.raises(UnsupportedOperation):
        s.cache_read(A, "shared", [B])


def test_cache_write_after_transform():
    A, B, s = elementwise((8,))
    s[B].split(s[B].op.axis[0], factor=2)
    with pytest.raises(ScheduleError):
        s.cache_write(B, "local")


def test_normalize_idempotent():
    A = placeholder((8,), "A")
    B = compute((8,), lambda i: A[i] + 1.0, "B")
    C = compute((8,), lambda i: B[i] * 2.0, "C")
    s = create_schedule(C.op)
    s[B].compute_inline()
    s.normalize()
    op = s[C].op
    assert op.input_tensors() == [A]
    s.normalize()
    assert s[C].op is op


def test_cpu_injective():
    A, B, s = elementwise((8, 8))
    cpu_injective(s, B.op)
    stage = s[B]
    assert len(stage.leaf_iter_vars) == 1
    fused = stage.leaf_iter_vars[0]
    assert stage.iter_var_attrs[fused].iter_type == IterVarType.PARALLELIZED
    assert extents(s, stage) == [64]


CPU_VECTORIZE_TESTS = [
    ((8, 8), 4, [16, 4], "dividing lanes"),
    ((5, 7), 4, [35], "lanes do not divide"),
    ((8, 8), 1, [64], "scalar host"),
]

@pytest.mark.parametrize(
    "shape, lanes, expected, msg",
    CPU_VECTORIZE_TESTS,
)
def test_cpu_injective_vectorize(monkeypatch, shape, lanes: int, expected, msg: str):
    monkeypatch.setattr(policies, "cpu_vector_lanes", lambda dtype: lanes)
    A, B, s = elementwise(shape)
    cpu_injective(s, B.op, vectorize=True)
    stage = s[B]
    assert extents(s, stage) == expected, f"unexpected extents: {msg}"
    kinds = [stage.iter_var_attrs[leaf].iter_type for leaf in stage.leaf_iter_vars]
    assert kinds[0] == IterVarType.PARALLELIZED, f"unexpected outer: {msg}"
    if len(expected) == 2:
        assert kinds[1] == IterVarType.VECTORIZED, f"unexpected inner: {msg}"


def test_gpu_injective():
    A, B, s = elementwise((16, 8))
    gpu_injective(s, B.op, thread_count=32)
    stage = s[B]
    bx, tx = stage.leaf_iter_vars
    assert stage.iter_var_attrs[bx].bind_thread.thread_tag == "blockIdx.x"
    assert stage.iter_var_attrs[tx].bind_thread.thread_tag == "threadIdx.x"
    assert extents(s, stage) == [4, 32]
