#
# SPDX-License-Identifier: BSD-3-Clause
# Copyright (c) 2024-2026 The XTE Project Authors
#
"""Text form of IR nodes."""

from typing import Any, Callable

from .node import Node, NodeKind

__all__ = [
    "node_to_str",
]

_BINARY_SYMBOLS = {
    NodeKind.ADD: "+",
    NodeKind.SUB: "-",
    NodeKind.MUL: "*",
    NodeKind.DIV: "/",
    NodeKind.MOD: "%",
    NodeKind.EQ: "==",
    NodeKind.NE: "!=",
    NodeKind.LT: "<",
    NodeKind.LE: "<=",
    NodeKind.GT: ">",
    NodeKind.GE: ">=",
    NodeKind.AND: "&&",
    NodeKind.OR: "||",
}

_FOR_NAMES = ["for", "parallel", "vectorized", "unrolled"]


def _join(items: Any) -> str:
    return ", ".join(_str(item) for item in items)


def _str(node: Any) -> str:
    if isinstance(node, Node):
        return _PRINTERS[node.kind](node, 0)
    return str(node)


def _constant(node: Any, indent: int) -> str:
    dtype = node.dtype
    if dtype.is_bool:
        return "(bool)1" if node.value else "(bool)0"
    if dtype.is_float:
        suffix = "f" if dtype.bits == 32 else ""
        return f"{node.value!r}{suffix}" if dtype.bits != 16 else f"{node.value!r}h"
    if dtype.bits == 32 and dtype.is_int:
        return str(node.value)
    return f"({dtype}){node.value}"


def _binary(node: Any, indent: int) -> str:
    return f"({_str(node.a)} {_BINARY_SYMBOLS[node.kind]} {_str(node.b)})"


def _call(node: Any, indent: int) -> str:
    name = node.name
    if node.func is not None and node.func.num_outputs > 1:
        name = f"{name}.v{node.value_index}"
    return f"{name}({_join(node.args)})"


def _load(node: Any, indent: int) -> str:
    text = f"{node.buffer_var.name}[{_str(node.index)}]"
    if node.predicate is not None:
        text += f" if {_str(node.predicate)}"
    return text


def _reduce(node: Any, indent: int) -> str:
    text = (
        f"reduce(combiner={_str(node.combiner)}, source=[{_join(node.source)}], "
        f"axis=[{_join(node.axis)}]"
    )
    if node.condition is not None:
        text += f", where={_str(node.condition)}"
    return text + f", value_index={node.value_index})"


def _comm_reducer(node: Any, indent: int) -> str:
    return (
        f"comm_reducer(result=[{_join(node.result)}], lhs=[{_join(node.lhs)}], "
        f"rhs=[{_join(node.rhs)}], identity_element=[{_join(node.identity_element)}])"
    )


def _iter_var(node: Any, indent: int) -> str:
    dom = "None" if node.dom is None else _str(node.dom)
    tag = f", {node.thread_tag}" if node.thread_tag else ""
    return f"iter_var({node.var.name}, {dom}{tag})"


def _pad(indent: int) -> str:
    return "  " * indent


def _stmt(node: Any, indent: int) -> str:
    return _PRINTERS[node.kind](node, indent)


def _block(body: Any, indent: int) -> str:
    return _stmt(body, indent + 1) + f"{_pad(indent)}}}\n"


def _let_stmt(node: Any, indent: int) -> str:
    return (
        f"{_pad(indent)}let {node.var.name} = {_str(node.value)}\n"
        + _stmt(node.body, indent)
    )


def _attr_stmt(node: Any, indent: int) -> str:
    target = node.node
    if isinstance(target, Node):
        target = _str(target)
    elif hasattr(target, "op"):
        target = f"{target.op.name}.v{target.value_index}"
    return (
        f"{_pad(indent)}// attr [{target}] {node.attr_key} = {_str(node.value)}\n"
        + _stmt(node.body, indent)
    )


def _assert_stmt(node: Any, indent: int) -> str:
    return (
        f"{_pad(indent)}assert({_str(node.condition)}, {_str(node.message)})\n"
        + _stmt(node.body, indent)
    )


def _for(node: Any, indent: int) -> str:
    head = (
        f"{_pad(indent)}{_FOR_NAMES[node.for_type]} ({node.loop_var.name}, "
        f"{_str(node.min)}, {_str(node.extent)}) {{\n"
    )
    return head + _block(node.body, indent)


def _store(node: Any, indent: int) -> str:
    target = f"{node.buffer_var.name}[{_str(node.index)}]"
    text = f"{_pad(indent)}{target} = {_str(node.value)}"
    if node.predicate is not None:
        text += f" if {_str(node.predicate)}"
    return text + "\n"


def _tensor_name(func: Any, value_index: int) -> str:
    if func.num_outputs > 1:
        return f"{func.name}.v{value_index}"
    return func.name


def _provide(node: Any, indent: int) -> str:
    return (
        f"{_pad(indent)}{_tensor_name(node.func, node.value_index)}"
        f"({_join(node.args)}) =({_str(node.value)})\n"
    )


def _allocate(node: Any, indent: int) -> str:
    extents = "".join(f" * {_str(extent)}" for extent in node.extents)
    return (
        f"{_pad(indent)}allocate {node.buffer_var.name}[{node.dtype}{extents}]\n"
        + _stmt(node.body, indent)
    )


def _bounds(bounds: Any) -> str:
    return ", ".join(f"[{_str(r.min)}, {_str(r.extent)}]" for r in bounds)


def _realize(node: Any, indent: int) -> str:
    head = (
        f"{_pad(indent)}realize {_tensor_name(node.func, node.value_index)}"
        f"({_bounds(node.bounds)}) {{\n"
    )
    return head + _block(node.body, indent)


def _prefetch(node: Any, indent: int) -> str:
    return (
        f"{_pad(indent)}prefetch {_tensor_name(node.func, node.value_index)}"
        f"({_bounds(node.bounds)})\n"
    )


def _seq(node: Any, indent: int) -> str:
    return "".join(_stmt(stmt, indent) for stmt in node.seq)


def _if_then_else(node: Any, indent: int) -> str:
    text = f"{_pad(indent)}if ({_str(node.condition)}) {{\n" + _stmt(
        node.then_case, indent + 1
    )
    if node.else_case is not None:
        text += f"{_pad(indent)}}} else {{\n" + _stmt(node.else_case, indent + 1)
    return text + f"{_pad(indent)}}}\n"


def _evaluate(node: Any, indent: int) -> str:
    return f"{_pad(indent)}{_str(node.value)}\n"


def _lowered_func(node: Any, indent: int) -> str:
    args = ", ".join(arg.name for arg in node.args)
    return f"{node.func_type.name.lower()} func {node.name}({args}) {{\n" + _block(
        node.body, 0
    )


_PRINTERS: dict[NodeKind, Callable[[Any, int], str]] = {
    NodeKind.VAR: lambda n, i: n.name,
    NodeKind.CONSTANT: _constant,
    NodeKind.STRING_IMM: lambda n, i: f'"{n.value}"',
    NodeKind.CAST: lambda n, i: f"{n.dtype}({_str(n.value)})",
    NodeKind.ADD: _binary,
    NodeKind.SUB: _binary,
    NodeKind.MUL: _binary,
    NodeKind.DIV: _binary,
    NodeKind.MOD: _binary,
    NodeKind.MIN: lambda n, i: f"min({_str(n.a)}, {_str(n.b)})",
    NodeKind.MAX: lambda n, i: f"max({_str(n.a)}, {_str(n.b)})",
    NodeKind.EQ: _binary,
    NodeKind.NE: _binary,
    NodeKind.LT: _binary,
    NodeKind.LE: _binary,
    NodeKind.GT: _binary,
    NodeKind.GE: _binary,
    NodeKind.AND: _binary,
    NodeKind.OR: _binary,
    NodeKind.NOT: lambda n, i: f"!{_str(n.a)}",
    NodeKind.SELECT: lambda n, i: (
        f"select({_str(n.condition)}, {_str(n.true_value)}, {_str(n.false_value)})"
    ),
    NodeKind.CALL: _call,
    NodeKind.LET: lambda n, i: (
        f"(let {n.var.name} = {_str(n.value)} in {_str(n.body)})"
    ),
    NodeKind.LOAD: _load,
    NodeKind.RAMP: lambda n, i: f"ramp({_str(n.base)}, {_str(n.stride)}, {n.lanes})",
    NodeKind.BROADCAST: lambda n, i: f"x{n.lanes}({_str(n.value)})",
    NodeKind.REDUCE: _reduce,
    NodeKind.LET_STMT: _let_stmt,
    NodeKind.ATTR_STMT: _attr_stmt,
    NodeKind.ASSERT_STMT: _assert_stmt,
    NodeKind.FOR: _for,
    NodeKind.STORE: _store,
    NodeKind.PROVIDE: _provide,
    NodeKind.ALLOCATE: _allocate,
    NodeKind.REALIZE: _realize,
    NodeKind.PREFETCH: _prefetch,
    NodeKind.SEQ_STMT: _seq,
    NodeKind.IF_THEN_ELSE: _if_then_else,
    NodeKind.EVALUATE: _evaluate,
    NodeKind.COMM_REDUCER: _comm_reducer,
    NodeKind.ITER_VAR: _iter_var,
    NodeKind.RANGE: lambda n, i: f"range(min={_str(n.min)}, ext={_str(n.extent)})",
    NodeKind.BUFFER: lambda n, i: f"buffer({n.name}, {n.data.name})",
    NodeKind.PLACEHOLDER_OP: lambda n, i: f"placeholder({n.name}, {n.idx})",
    NodeKind.COMPUTE_OP: lambda n, i: f"compute({n.name}, {n.idx})",
    NodeKind.LOWERED_FUNC: _lowered_func,
}

assert set(_PRINTERS) == set(NodeKind), (
    f"missing printers: {set(NodeKind) - set(_PRINTERS)}"
)


def node_to_str(node: Node) -> str:
    """Returns the text form of any IR node."""
    return _PRINTERS[node.kind](node, 0)
