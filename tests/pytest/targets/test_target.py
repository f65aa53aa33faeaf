import pytest

from xte.errors import UnknownTarget
from xte.targets import (
    target_info,
    target_name_to_thread_warp_size,
    device_type_of,
    cpu_vector_lanes,
)


TARGET_TESTS = [
    ("llvm", "llvm", False, 1, 1, "host cpu"),
    ("llvm -mcpu=core-avx2", "llvm", False, 1, 1, "cpu with options"),
    ("c", "llvm", False, 1, 1, "c source"),
    ("cuda", "cuda", True, 32, 2, "cuda"),
    ("cuda -arch=sm_80", "cuda", True, 32, 2, "cuda with options"),
    ("nvptx", "nvptx", True, 32, 2, "nvptx"),
    ("rocm", "rocm", True, 1, 10, "rocm"),
    ("opencl", "opencl", True, 1, 4, "opencl"),
    ("metal", "metal", True, 1, 8, "metal"),
    ("vulkan", "vulkan", True, 1, 7, "vulkan"),
    ("opengl", "opengl", False, 1, 11, "opengl is not a gpu family"),
]

@pytest.mark.parametrize(
    "name, family, is_gpu, warp, device_type, msg",
    TARGET_TESTS,
)
def test_target_info(
    name: str, family: str, is_gpu: bool, warp: int, device_type: int, msg: str
):
    info = target_info(name)
    assert info.target_name == family, f"unexpected family: {msg}"
    assert info.is_gpu == is_gpu, f"unexpected gpu flag: {msg}"
    assert target_name_to_thread_warp_size(name) == warp, f"unexpected warp: {msg}"
    assert device_type_of(name) == device_type, f"unexpected device: {msg}"


@pytest.mark.parametrize("name", ["", "tpu", "sycl -x"])
def test_unknown_target(name: str):
    with pytest.raises(UnknownTarget):
        target_info(name)


def test_gpu_thread_limits():
    assert target_info("cuda").max_num_threads == 512
    assert target_info("rocm").max_num_threads == 256
    assert target_info("llvm").max_num_threads == 1


WARP_OVERRIDE_TESTS = [
    ("rocm -thread_warp_size=64", 64, "rocm override"),
    ("opencl -thread_warp_size=16 -device=intel", 16, "opencl override"),
    ("cuda -arch=sm_80 -thread_warp_size=32", 32, "cuda unchanged"),
]

@pytest.mark.parametrize(
    "name, warp, msg",
    WARP_OVERRIDE_TESTS,
)
def test_warp_size_override(name: str, warp: int, msg: str):
    assert target_name_to_thread_warp_size(name) == warp, f"unexpected: {msg}"
    assert target_info(name).is_gpu


@pytest.mark.parametrize(
    "name",
    ["rocm -thread_warp_size=", "rocm -thread_warp_size=0", "rocm -thread_warp_size=x"],
)
def test_warp_size_override_errors(name: str):
    with pytest.raises(UnknownTarget):
        target_info(name)


def test_cpu_vector_lanes():
    lanes32 = cpu_vector_lanes("float32")
    lanes64 = cpu_vector_lanes("float64")
    assert lanes32 >= 1 and lanes64 >= 1
    assert lanes32 >= lanes64
