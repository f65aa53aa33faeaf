import pytest

from xte.errors import LoweringError
from xte.ir import (
    DataType,
    Constant,
    Call,
    CallType,
    Load,
    Ramp,
    StringImm,
    Store,
    For,
    ForType,
    LetStmt,
    AttrStmt,
    IfThenElse,
    SeqStmt,
    Evaluate,
    FuncType,
    LoweredFunc,
    no_op,
    is_no_op,
    post_order_visit,
)
from xte.ir import op, declare_buffer
from xte.te import variable, thread_axis, placeholder, compute
from xte.schedule import create_schedule, infer_bound, schedule_ops
from xte.passes import get_pass, list_passes
from xte.passes.intrin import intrinsic_base

F32 = DataType.parse("float32")


def buffers():
    return variable("A", "handle"), variable("B", "handle")


def loop(var, extent, for_type, body, start=0):
    return For(var, op.const(start, "int32"), op.convert(extent), for_type, body)


def calls(node, name):
    found = []

    def collect(child):
        if isinstance(child, Call) and child.name == name:
            found.append(child)

    post_order_visit(node, collect)
    return found


def test_registry():
    names = list_passes()
    assert names == sorted(names)
    for name in [
        "storage_flatten",
        "loop_partition",
        "vectorize",
        "unroll",
        "make_api",
        "split_host_device",
        "lower_builtin",
        "lower_intrin",
        "combine_context_call",
    ]:
        assert name in names, f"missing pass: {name}"
    assert get_pass("unroll") is get_pass("unroll")
    with pytest.raises(LoweringError, match="Unknown pass: nope"):
        get_pass("nope")


def test_simplify_single_iteration_loop():
    A, B = buffers()
    i = variable("i")
    stmt = loop(i, 1, ForType.SERIAL, Store(A, Load(F32, B, i) + 1.0, i))
    out = get_pass("simplify")(stmt)
    assert isinstance(out, Store)
    assert isinstance(out.index, Constant) and out.index.value == 0


def test_simplify_constant_condition():
    A, B = buffers()
    store = Store(A, op.const(1.0, "float32"), op.const(0, "int32"))
    taken = IfThenElse(op.lt(op.const(1, "int32"), 2), store)
    assert isinstance(get_pass("simplify")(taken), Store)
    skipped = IfThenElse(op.lt(op.const(3, "int32"), 2), store)
    assert is_no_op(get_pass("simplify")(skipped))


def test_simplify_constant_let():
    A, B = buffers()
    x = variable("x")
    stmt = LetStmt(x, op.const(3, "int32"), Store(A, Load(F32, B, x), x + 1))
    out = get_pass("simplify")(stmt)
    assert isinstance(out, Store)
    assert out.index.value == 4
    assert out.value.index.value == 3


REMOVE_NO_OP_TESTS = [
    (lambda store, i: SeqStmt((no_op(), store)), Store, "sequence of one store"),
    (lambda store, i: loop(i, 0, ForType.SERIAL, store), None, "empty loop"),
    (lambda store, i: loop(i, 8, ForType.SERIAL, no_op()), None, "no-op body"),
    (lambda store, i: IfThenElse(i < 2, no_op()), None, "no-op condition"),
    (lambda store, i: Evaluate(op.const(1, "int32")), None, "constant evaluation"),
]

@pytest.mark.parametrize(
    "build, expected, msg",
    REMOVE_NO_OP_TESTS,
)
def test_remove_no_op(build, expected, msg: str):
    A, B = buffers()
    i = variable("i")
    store = Store(A, Load(F32, B, i), i)
    out = get_pass("remove_no_op")(build(store, i))
    if expected is None:
        assert is_no_op(out), f"unexpected: {msg}"
    else:
        assert isinstance(out, expected), f"unexpected: {msg}"


def test_unroll_marked_loop():
    A, B = buffers()
    i = variable("i")
    stmt = loop(i, 4, ForType.UNROLLED, Store(A, Load(F32, B, i), i))
    out = get_pass("unroll")(stmt)
    assert isinstance(out, SeqStmt)
    assert [s.index.value for s in out.seq] == [0, 1, 2, 3]


def test_unroll_keeps_serial_loops():
    A, B = buffers()
    i = variable("i")
    stmt = loop(i, 4, ForType.SERIAL, Store(A, Load(F32, B, i), i))
    assert get_pass("unroll")(stmt) is stmt
    unit = loop(i, 1, ForType.SERIAL, Store(A, Load(F32, B, i), i))
    out = get_pass("unroll")(unit, max_extent=1)
    assert isinstance(out, Store) and out.index.value == 0


def test_unroll_symbolic_extent():
    A, B = buffers()
    i, n = variable("i"), variable("n")
    stmt = loop(i, n, ForType.UNROLLED, Store(A, Load(F32, B, i), i))
    with pytest.raises(LoweringError):
        get_pass("unroll")(stmt)


def test_vectorize():
    A, B = buffers()
    i = variable("i")
    stmt = loop(i, 4, ForType.VECTORIZED, Store(A, Load(F32, B, i) * 2.0, i))
    out = get_pass("vectorize")(stmt)
    assert isinstance(out, Store)
    assert isinstance(out.index, Ramp) and out.index.lanes == 4
    assert out.value.dtype == F32.with_lanes(4)


def test_vectorize_scalar_store_kept_serial():
    A, B = buffers()
    i = variable("i")
    stmt = loop(
        i, 4, ForType.VECTORIZED, Store(A, Load(F32, B, i), op.const(0, "int32"))
    )
    out = get_pass("vectorize")(stmt)
    assert isinstance(out, For)
    assert out.for_type == ForType.SERIAL
    assert out.body is stmt.body


def test_inject_virtual_thread():
    A, B = buffers()
    vt = thread_axis("vthread")
    body = Store(A, Load(F32, B, vt.var), vt.var)
    stmt = AttrStmt(vt, "virtual_thread", op.const(4, "int32"), body)
    out = get_pass("inject_virtual_thread")(stmt)
    assert isinstance(out, For)
    assert out.loop_var is vt.var and out.extent.value == 4
    assert out.for_type == ForType.SERIAL


def guarded_loop(extent):
    A, B = buffers()
    i = variable("i")
    store = Store(A, Load(F32, B, i), i)
    guard = IfThenElse(op.likely(op.lt(i, 10)), store)
    return loop(i, extent, ForType.SERIAL, guard)


def test_loop_partition_constant_extent():
    stmt = guarded_loop(16)
    assert get_pass("loop_partition")(stmt) is stmt
    out = get_pass("loop_partition")(stmt, partition_const_loop=True)
    assert isinstance(out, SeqStmt)
    first, rest = out.seq
    assert (first.min.value, first.extent.value) == (0, 10)
    assert (rest.min.value, rest.extent.value) == (10, 6)
    assert isinstance(first.body, Store)
    assert isinstance(rest.body, IfThenElse)


def test_loop_partition_symbolic_extent():
    out = get_pass("loop_partition")(guarded_loop(variable("n")))
    assert isinstance(out, SeqStmt)
    first, rest = out.seq
    assert isinstance(first.body, Store)
    assert isinstance(rest.body, IfThenElse)
    assert first.loop_var is not rest.loop_var


INTRINSIC_BASE_TESTS = [
    ("__expf", "exp", "cuda single precision"),
    ("expf", "exp", "libm single precision"),
    ("__ocml_sqrt_f64", "sqrt", "rocm double precision"),
    ("__popcll", "popcount", "cuda 64-bit popcount"),
    ("tanh", "tanh", "generic name"),
]

@pytest.mark.parametrize(
    "name, expected, msg",
    INTRINSIC_BASE_TESTS,
)
def test_intrinsic_base(name: str, expected: str, msg: str):
    assert intrinsic_base(name) == expected, f"unexpected: {msg}"


LOWER_INTRIN_TESTS = [
    ("llvm", "exp", "float32", "exp", "cpu keeps the name"),
    ("cuda", "exp", "float32", "__expf", "cuda fast exp"),
    ("cuda", "sqrt", "float64", "sqrt", "cuda double sqrt"),
    ("cuda", "sqrt", "float32", "sqrtf", "cuda float sqrt"),
    ("rocm", "log", "float64", "__ocml_log_f64", "rocm double log"),
]

@pytest.mark.parametrize(
    "target, name, dtype, expected, msg",
    LOWER_INTRIN_TESTS,
)
def test_lower_intrin(target: str, name: str, dtype: str, expected: str, msg: str):
    x = variable("x", dtype)
    body = Evaluate(op.call_pure_intrin(dtype, name, x))
    func = LoweredFunc("f", (x,), body, FuncType.HOST)
    out = get_pass("lower_intrin")(func, target)
    call = out.body.value
    assert call.name == expected, f"unexpected: {msg}"
    assert call.call_type == CallType.PURE_EXTERN, f"unexpected call type: {msg}"


def test_lower_intrin_sigmoid():
    x = variable("x", "float32")
    body = Evaluate(op.call_pure_intrin("float32", "sigmoid", x))
    func = LoweredFunc("f", (x,), body, FuncType.HOST)
    out = get_pass("lower_intrin")(func, "llvm")
    assert not calls(out.body, "sigmoid")
    assert len(calls(out.body, "exp")) == 1


def test_thread_sync_shared():
    A, B = buffers()
    shared = variable("S", "handle")
    tx = thread_axis("threadIdx.x")
    i = tx.var
    body = SeqStmt(
        (
            Store(shared, Load(F32, B, i), i),
            Store(A, Load(F32, shared, 3 - i), i),
        )
    )
    body = AttrStmt(tx, "thread_extent", op.const(4, "int32"), body)
    body = AttrStmt(shared, "storage_scope", StringImm("shared"), body)
    func = LoweredFunc("f", (A, B), body, FuncType.MIXED)
    out = get_pass("thread_sync")(func, "shared")
    syncs = calls(out.body, "xte_storage_sync")
    assert len(syncs) == 1
    assert syncs[0].args[0].value == "shared"
    assert get_pass("thread_sync")(func, "warp") is func


def test_storage_flatten_argument_buffers():
    A = placeholder((4, 8), "A")
    B = compute((4, 8), lambda y, x: A[y, x] + 1.0, "B")
    s = create_schedule(B.op)
    stmt = schedule_ops(s, infer_bound(s))
    binds = {A: declare_buffer(A.shape, A.dtype, "A")}
    binds[B] = declare_buffer(B.shape, B.dtype, "B")
    out = get_pass("storage_flatten")(stmt, binds)
    loads, stores = [], []

    def collect(node):
        if isinstance(node, Load):
            loads.append(node.buffer_var)
        elif isinstance(node, Store):
            stores.append(node.buffer_var)

    post_order_visit(out, collect)
    assert loads == [binds[A].data]
    assert stores == [binds[B].data]


def test_storage_flatten_unbound_tensor():
    A = placeholder((8,), "A")
    B = compute((8,), lambda i: A[i] * 2.0, "B")
    s = create_schedule(B.op)
    stmt = schedule_ops(s, infer_bound(s))
    with pytest.raises(LoweringError, match="A"):
        get_pass("storage_flatten")(stmt, {B: declare_buffer(B.shape, B.dtype, "B")})
