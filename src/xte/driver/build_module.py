#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""
Assembly of the lowered functions into a module.

Mixed functions are split into a host part launching device parts.
The host parts are built for the host target and the device parts for
the device target, the device module being imported into the host one.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import logging

from ..errors import ConfigError, DuplicateFunctionName
from ..ir.buffer import Buffer
from ..ir.function import FuncType, LoweredFunc
from ..ir.printer import node_to_str
from ..te.api import safe_name
from ..te.tensor import Tensor
from ..schedule.schedule import Schedule
from ..targets import target_info
from ..passes.registry import get_pass
from .config import BuildConfig, as_build_config
from .lower import Argument, lower
import xte.itf as itf

__all__ = [
    "BuiltFunctions",
    "lowered_functions_to_module",
    "build_functions",
    "build",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuiltFunctions:
    """A built module and its callables by function name."""

    module: itf.comp.Module
    fn_map: dict[str, Callable[..., Any]]

    def __getitem__(self, name: str) -> Callable[..., Any]:
        return self.fn_map[name]


def _default_backend() -> itf.back.Backend:
    from ..backends.interp import InterpBackend

    return InterpBackend()


class _Dumper:
    def __init__(self, **kwargs: Any) -> None:
        self.print_source_ir = kwargs.get("print_source_ir", False)
        self.print_lowered_ir = kwargs.get("print_lowered_ir", False)
        self.save_temps = kwargs.get("save_temps", False)
        self.save_temps_dir = kwargs.get("save_temps_dir", "./save_temps_dir")

    def _save_temp(self, fname: str, content: str) -> None:
        if not self.save_temps:
            return
        Path(self.save_temps_dir).mkdir(parents=True, exist_ok=True)
        with open(f"{self.save_temps_dir}/{fname}", "w") as outf:
            outf.write(content)

    def dump(self, funcs: Sequence[LoweredFunc], suffix: str, show: bool) -> None:
        if not (show or self.save_temps):
            return
        for func in funcs:
            text = node_to_str(func)
            if show:
                print(text, flush=True)
            self._save_temp(f"{func.name}.{suffix}.txt", text)


def _check_functions(funcs: Sequence[Any]) -> None:
    names: set[str] = set()
    for func in funcs:
        if not isinstance(func, LoweredFunc):
            raise ConfigError(
                f"Expected LoweredFunc, got {type(func).__name__}",
                argument=func,
            )
        if func.name in names:
            raise DuplicateFunctionName(
                f"Duplicated function name: {func.name}", function_name=func.name
            )
        names.add(func.name)


def lowered_functions_to_module(
    funcs: LoweredFunc | Sequence[LoweredFunc],
    config: BuildConfig | Mapping[str, Any] | None = None,
    target_name: str = "llvm",
    target_host: str = "llvm",
    backend: itf.back.Backend | None = None,
    **kwargs: Any,
) -> itf.comp.Module:
    """Splits, lowers and builds functions sharing one target into a module.

    Args:
        funcs: the lowered functions
        config: the build options
        target_name: the target of the device functions
        target_host: the target of the host functions
        backend: the code generation backend, the interpreter by default
        kwargs: debug options print_source_ir, print_lowered_ir,
            save_temps and save_temps_dir

    Returns:
        The host module, the device module being imported into it

    Raises:
        DuplicateFunctionName: when two functions share a name
        ConfigError: when an item is not a lowered function or when
            device code is given a non-gpu target
    """
    if isinstance(funcs, LoweredFunc):
        funcs = [funcs]
    config = as_build_config(config)
    backend = _default_backend() if backend is None else backend
    dumper = _Dumper(**kwargs)
    _check_functions(funcs)
    target = target_info(target_name)
    host = target_info(target_host)
    dumper.dump(funcs, "source", dumper.print_source_ir)

    fhost: list[LoweredFunc] = []
    fdevice: list[LoweredFunc] = []
    for func in funcs:
        if func.func_type == FuncType.HOST:
            fhost.append(func)
        elif func.func_type == FuncType.DEVICE:
            fdevice.append(func)
        else:
            assert func.func_type == FuncType.MIXED, f"unknown function type of {func}"
            if config.detect_global_barrier:
                func = get_pass("thread_sync")(func, "global")
            func = get_pass("thread_sync")(func, "shared")
            func = get_pass("thread_sync")(func, "warp")
            func = get_pass("lower_thread_allreduce")(func, target.thread_warp_size)
            parts = get_pass("split_host_device")(func)
            fhost.append(parts[0])
            fdevice.extend(parts[1:])
    if target.is_gpu and not fdevice:
        logger.warning(
            "Specified target %s, but cannot find device code. "
            "Did you forget to bind?",
            target_name,
        )
    if fdevice and not target.is_gpu:
        raise ConfigError(
            f"Device code needs a gpu target, got {target_name}: "
            f"{', '.join(f.name for f in fdevice)}",
            target=target_name,
        )
    assert not host.is_gpu, f"host target must be a cpu target: {target_host}"

    fhost = [get_pass("bind_device_type")(f, target.device_type) for f in fhost]
    fhost = [get_pass("lower_builtin")(f) for f in fhost]
    fhost = [get_pass("lower_intrin")(f, target_host) for f in fhost]
    fhost = [get_pass("combine_context_call")(f) for f in fhost]
    fdevice = [get_pass("lower_intrin")(f, target_name) for f in fdevice]
    dumper.dump(fhost + fdevice, "lowered", dumper.print_lowered_ir)

    logger.debug(
        "Building host functions %s for %s", [f.name for f in fhost], target_host
    )
    module = backend.build(fhost, target_host)
    if fdevice:
        logger.debug(
            "Building device functions %s for %s",
            [f.name for f in fdevice],
            target_name,
        )
        module.import_module(backend.build(fdevice, target_name))
    return module


def build_functions(
    sched_data: Sequence[Mapping[str, Any]],
    config: BuildConfig | Mapping[str, Any] | None = None,
    target_name: str = "llvm",
    target_host: str = "llvm",
    backend: itf.back.Backend | None = None,
    prefix: str = "",
    **kwargs: Any,
) -> BuiltFunctions:
    """Lowers and builds several schedules into one module.

    Every entry of ``sched_data`` has the keys ``name``, ``arglist`` and
    ``schedule``, and optionally ``bind_map``. The function symbols are
    the sanitized names.

    Returns:
        The module and the function callables by entry name
    """
    config = as_build_config(config)
    funcs: list[LoweredFunc] = []
    symbols: dict[str, str] = {}
    for entry in sched_data:
        missing = {"name", "arglist", "schedule"} - set(entry)
        if missing:
            raise ConfigError(
                f"Missing schedule entry keys: {', '.join(sorted(missing))}",
                entry=entry,
            )
        symbol = safe_name(entry["name"], prefix)
        symbols[entry["name"]] = symbol
        funcs.append(
            lower(
                entry["schedule"],
                entry["arglist"],
                symbol,
                config,
                bind_map=entry.get("bind_map"),
            )
        )
    module = lowered_functions_to_module(
        funcs, config, target_name, target_host, backend, **kwargs
    )
    fn_map = {name: module[symbol] for name, symbol in symbols.items()}
    return BuiltFunctions(module, fn_map)


def build(
    inputs: Schedule | LoweredFunc | Sequence[LoweredFunc],
    args: Sequence[Argument] | None = None,
    target_name: str = "llvm",
    target_host: str = "llvm",
    name: str = "default_function",
    bind_map: Mapping[Tensor, Buffer] | None = None,
    config: BuildConfig | Mapping[str, Any] | None = None,
    backend: itf.back.Backend | None = None,
    **kwargs: Any,
) -> itf.comp.Module:
    """Builds a schedule, or already lowered functions, into a module.

    Args:
        inputs: a schedule, lowered with ``args`` and ``name``, or
            lowered functions
        args: the arguments of the schedule function

    Returns:
        The built module
    """
    if isinstance(inputs, Schedule):
        if args is None:
            raise ConfigError("args must be given when building a schedule")
        funcs = [lower(inputs, args, name, config, bind_map=bind_map)]
    elif isinstance(inputs, LoweredFunc):
        funcs = [inputs]
    else:
        funcs = list(inputs)
    return lowered_functions_to_module(
        funcs, config, target_name, target_host, backend, **kwargs
    )
