"""Block-parameter SSA IR consumed by the code generator.

A `Function` is a graph of `BasicBlock`s. Joins are expressed with block
parameters: every `Edge` that targets a block carries one argument per
parameter of that block. There is no phi instruction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


Value = str


@dataclass(frozen=True)
class Type:
    name: str
    bits: int

    def __str__(self) -> str:
        return self.name


I32 = Type("i32", 32)
B1 = Type("b1", 1)


class CallConv(Enum):
    SYSTEM_V = "system_v"


@dataclass(frozen=True)
class AbiParam:
    type: Type


@dataclass
class Signature:
    call_conv: CallConv = CallConv.SYSTEM_V
    params: List[AbiParam] = field(default_factory=list)
    returns: List[AbiParam] = field(default_factory=list)

    def __str__(self) -> str:
        params = ", ".join(str(p.type) for p in self.params)
        returns = ", ".join(str(r.type) for r in self.returns)
        return f"({params}) -> {returns} {self.call_conv.value}"


@dataclass(frozen=True)
class FuncRef:
    """Function-local handle for a callee imported with `declare_func_in_func`."""

    index: int

    def __str__(self) -> str:
        return f"fn{self.index}"


@dataclass
class ExtFuncData:
    name: str
    signature: Signature
    func_id: int


@dataclass
class Edge:
    target: str
    args: List[Value] = field(default_factory=list)


class Instruction:
    pass


@dataclass(frozen=True)
class Iconst(Instruction):
    dest: Value
    type: Type
    value: int


@dataclass(frozen=True)
class Binary(Instruction):
    """`iadd`, `isub`, `imul` or `udiv`."""

    dest: Value
    op: str
    left: Value
    right: Value


class IntCC(Enum):
    EQUAL = "eq"
    NOT_EQUAL = "ne"
    SIGNED_LESS_THAN = "slt"
    SIGNED_LESS_THAN_OR_EQUAL = "sle"
    SIGNED_GREATER_THAN = "sgt"
    SIGNED_GREATER_THAN_OR_EQUAL = "sge"


@dataclass(frozen=True)
class Icmp(Instruction):
    dest: Value
    cond: IntCC
    left: Value
    right: Value


@dataclass(frozen=True)
class Bint(Instruction):
    """Widen a `b1` to an integer type (false -> 0, true -> 1)."""

    dest: Value
    type: Type
    arg: Value


@dataclass(frozen=True)
class Call(Instruction):
    dest: Value
    func_ref: FuncRef
    args: List[Value]


BINARY_OPS = ("iadd", "isub", "imul", "udiv")


class Terminator:
    def edges(self) -> List[Edge]:
        return []


@dataclass
class Jump(Terminator):
    target: Edge

    def edges(self) -> List[Edge]:
        return [self.target]


@dataclass
class Brz(Terminator):
    """Branch to `zero` when `cond` is zero, otherwise to `nonzero`."""

    cond: Value
    zero: Edge
    nonzero: Edge

    def edges(self) -> List[Edge]:
        return [self.zero, self.nonzero]


@dataclass
class Return(Terminator):
    values: List[Value] = field(default_factory=list)


@dataclass(frozen=True)
class Param:
    name: Value
    type: Type


@dataclass
class BasicBlock:
    name: str
    params: List[Param] = field(default_factory=list)
    instructions: List[Instruction] = field(default_factory=list)
    terminator: Optional[Terminator] = None

    def successors(self) -> List[str]:
        if self.terminator is None:
            return []
        return [edge.target for edge in self.terminator.edges()]


@dataclass
class Function:
    name: str
    signature: Signature
    entry: str
    blocks: Dict[str, BasicBlock] = field(default_factory=dict)
    value_types: Dict[Value, Type] = field(default_factory=dict)
    ext_funcs: Dict[FuncRef, ExtFuncData] = field(default_factory=dict)

    def predecessors(self) -> Dict[str, List[str]]:
        """Map each block to the blocks whose terminators target it (one entry per edge)."""
        preds: Dict[str, List[str]] = {name: [] for name in self.blocks}
        for block in self.blocks.values():
            for succ in block.successors():
                preds.setdefault(succ, []).append(block.name)
        return preds

    def reverse_postorder(self) -> List[str]:
        """Blocks reachable from the entry, each after all of its dominators."""
        seen = set()
        order: List[str] = []
        stack = [(self.entry, iter(self.blocks[self.entry].successors()))]
        seen.add(self.entry)
        while stack:
            name, succs = stack[-1]
            for succ in succs:
                if succ not in seen and succ in self.blocks:
                    seen.add(succ)
                    stack.append((succ, iter(self.blocks[succ].successors())))
                    break
            else:
                stack.pop()
                order.append(name)
        order.reverse()
        return order
