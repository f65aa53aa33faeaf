import logging

import numpy as np
import pytest

from xte.errors import ConfigError, DuplicateFunctionName
from xte.te import placeholder, compute
from xte.schedule import create_schedule, cpu_injective, gpu_injective
from xte.driver import build, build_functions, lower, lowered_functions_to_module


def scaled(factor, shape=(16,)):
    A = placeholder(shape, "A")
    B = compute(shape, lambda i: A[i] * factor, "B")
    return A, B, create_schedule(B.op)


def test_build_host_module():
    A, B, s = scaled(2.0)
    cpu_injective(s, B.op)
    module = build(s, [A, B], name="twice")
    assert module.target == "llvm"
    assert module.entry_names == ["twice"]
    assert "twice" in module
    assert module.imported_modules == []
    with pytest.raises(KeyError):
        module["missing"]


def test_build_lowered_functions():
    A, B, s = scaled(2.0)
    func = lower(s, [A, B], "twice")
    module = build(func)
    a = np.arange(16, dtype="float32")
    b = np.zeros(16, dtype="float32")
    module["twice"](a, b)
    np.testing.assert_allclose(b, a * 2)


def test_build_schedule_requires_args():
    A, B, s = scaled(2.0)
    with pytest.raises(ConfigError):
        build(s)


def test_duplicate_function_names():
    A, B, s = scaled(2.0)
    C, D, t = scaled(3.0)
    funcs = [lower(s, [A, B], "f"), lower(t, [C, D], "f")]
    with pytest.raises(DuplicateFunctionName):
        lowered_functions_to_module(funcs)


def test_not_a_lowered_function():
    A, B, s = scaled(2.0)
    with pytest.raises(ConfigError):
        lowered_functions_to_module([lower(s, [A, B], "f"), "g"])


def test_gpu_target_without_bind(caplog):
    A, B, s = scaled(2.0)
    with caplog.at_level(logging.WARNING, logger="xte.driver.build_module"):
        module = build(s, [A, B], target_name="cuda")
    assert "forget to bind" in caplog.text
    assert module.imported_modules == []
    a = np.arange(16, dtype="float32")
    b = np.zeros(16, dtype="float32")
    module["default_function"](a, b)
    np.testing.assert_allclose(b, a * 2)


def test_host_functions_on_gpu_target():
    A, B, s = scaled(3.0)
    module = lowered_functions_to_module([lower(s, [A, B], "f")], target_name="rocm")
    assert module.entry_names == ["f"]


def test_device_code_on_cpu_target():
    A, B, s = scaled(2.0, (64,))
    gpu_injective(s, B.op, thread_count=16)
    with pytest.raises(ConfigError):
        build(s, [A, B], target_name="llvm")


def test_device_module_import():
    A, B, s = scaled(2.0, (64,))
    gpu_injective(s, B.op, thread_count=16)
    module = build(s, [A, B], target_name="cuda")
    assert module.entry_names == ["default_function"]
    [device] = module.imported_modules
    assert device.target == "cuda"
    assert device.entry_names == ["default_function_kernel0"]


def test_build_functions():
    A, B, s = scaled(2.0)
    C, D, t = scaled(3.0)
    built = build_functions(
        [
            {"name": "twice", "arglist": [A, B], "schedule": s},
            {"name": "three-times", "arglist": [C, D], "schedule": t},
        ],
        prefix="lib_",
    )
    assert sorted(built.module.entry_names) == ["lib_three_times", "lib_twice"]
    a = np.ones(16, dtype="float32")
    b = np.zeros(16, dtype="float32")
    built["three-times"](a, b)
    np.testing.assert_allclose(b, 3.0)
    built.fn_map["twice"](a, b)
    np.testing.assert_allclose(b, 2.0)


def test_build_functions_missing_keys():
    A, B, s = scaled(2.0)
    with pytest.raises(ConfigError, match="arglist"):
        build_functions([{"name": "twice", "schedule": s}])


def test_save_temps(tmp_path):
    A, B, s = scaled(2.0)
    build(s, [A, B], save_temps=True, save_temps_dir=str(tmp_path))
    source = tmp_path / "default_function.source.txt"
    lowered = tmp_path / "default_function.lowered.txt"
    assert source.exists() and lowered.exists()
    assert "default_function" in source.read_text()
    assert "device_type" in lowered.read_text()
