import dataclasses

import pytest

from xte.errors import ConfigError, LoweringError
from xte.ir import Buffer, FuncType, LoweredFunc, structural_equal
from xte.te import placeholder, compute, reduce_axis, sum, variable
from xte.schedule import create_schedule, cpu_injective, gpu_injective
from xte.driver import BuildConfig, lower, schedule_to_str
from xte.driver.config import as_build_config


def elementwise(shape=(8, 8)):
    A = placeholder(shape, "A")
    B = compute(shape, lambda y, x: A[y, x] + 1.0, "B")
    return A, B, create_schedule(B.op)


def test_build_config_defaults():
    config = BuildConfig()
    assert config.auto_unroll_max_step == 0
    assert config.auto_unroll_max_depth == 8
    assert config.unroll_explicit
    assert not config.partition_const_loop
    assert config.restricted_func
    variant = dataclasses.replace(config, partition_const_loop=True)
    assert variant.partition_const_loop and not config.partition_const_loop


AS_BUILD_CONFIG_TESTS = [
    (None, BuildConfig(), "none gives the defaults"),
    ({}, BuildConfig(), "empty mapping"),
    (
        {"auto_unroll_max_step": 16},
        BuildConfig(auto_unroll_max_step=16),
        "mapping option",
    ),
]

@pytest.mark.parametrize(
    "options, expected, msg",
    AS_BUILD_CONFIG_TESTS,
)
def test_as_build_config(options, expected: BuildConfig, msg: str):
    assert as_build_config(options) == expected, f"unexpected: {msg}"


@pytest.mark.parametrize("options", [{"unroll_everything": True}, ["x"], 3])
def test_as_build_config_errors(options):
    with pytest.raises(ConfigError):
        as_build_config(options)


def test_lower_simple_mode_cpu():
    A, B, s = elementwise()
    cpu_injective(s, B.op)
    text = schedule_to_str(s, [A, B])
    assert "parallel (y.x.fused, 0, 64)" in text
    assert "vectorized" not in text
    assert "thread_extent" not in text


def test_lower_simple_mode_gpu():
    A, B, s = elementwise((16, 8))
    gpu_injective(s, B.op, thread_count=32)
    text = schedule_to_str(s, [A, B])
    assert "thread_extent" in text
    assert "blockIdx.x" in text and "threadIdx.x" in text


def test_lower_is_repeatable():
    A, B, s = elementwise()
    cpu_injective(s, B.op)
    first = lower(s, [A, B], simple_mode=True)
    second = lower(s, [A, B], simple_mode=True)
    assert structural_equal(first, second)


def test_lower_function():
    A, B, s = elementwise()
    func = lower(s, [A, B], "add_one")
    assert isinstance(func, LoweredFunc)
    assert func.name == "add_one"
    assert func.func_type == FuncType.HOST
    assert len(func.args) == 2
    assert all(isinstance(arg, Buffer) for arg in func.args)


def test_lower_mixed_function():
    A, B, s = elementwise((16, 8))
    gpu_injective(s, B.op, thread_count=32)
    func = lower(s, [A, B])
    assert func.func_type == FuncType.MIXED


def test_lower_reduction():
    A = placeholder((4, 8), "A")
    k = reduce_axis(8, "k")
    B = compute((4,), lambda i: sum(A[i, k], axis=k), "B")
    s = create_schedule(B.op)
    text = schedule_to_str(s, [A, B])
    assert "for (k, 0, 8)" in text
    assert text.index("for (i, 0, 4)") < text.index("for (k, 0, 8)")


def test_lower_scalar_argument():
    A = placeholder((8,), "A")
    scale = variable("scale", "float32")
    B = compute((8,), lambda i: A[i] * scale, "B")
    s = create_schedule(B.op)
    with pytest.raises(LoweringError, match="scale"):
        lower(s, [A, B])
    func = lower(create_schedule(B.op), [A, B, scale])
    assert func.args[2] is scale
