"""SSA function builder.

Source variables are not SSA values: a variable may be assigned many times.
The builder keeps, per variable, the current definition in each block and
turns reads into SSA values on demand:

- a read in a block that defines the variable returns that definition;
- a read in an unsealed block appends a block parameter and remembers it as
  incomplete; predecessor arguments are added when the block is sealed;
- a read in a sealed block with one predecessor continues in the predecessor;
- a read in a sealed block with several predecessors appends a block
  parameter and passes the variable's value along every incoming edge;
- a read in a block with no predecessors (the entry) reads as zero.

A block is sealed once every branch targeting it has been emitted. Branching
to a sealed block, or sealing twice, raises `FrontendError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from . import ir
from .errors import FrontendError


@dataclass(frozen=True)
class Variable:
    index: int

    def __str__(self) -> str:
        return f"var{self.index}"


@dataclass
class Predecessor:
    block: str
    edge: ir.Edge


@dataclass
class BlockState:
    sealed: bool = False
    predecessors: List[Predecessor] = field(default_factory=list)
    # Block params created while unsealed; their edge args are filled in at sealing.
    incomplete: List[Tuple[Variable, ir.Value]] = field(default_factory=list)
    # Predecessor blocks as they were when the block got sealed.
    sealed_predecessors: Optional[Tuple[str, ...]] = None


class FunctionBuilder:
    def __init__(self, name: str, signature: ir.Signature) -> None:
        self.func = ir.Function(name=name, signature=signature, entry="")
        self._states: Dict[str, BlockState] = {}
        self._var_types: Dict[Variable, ir.Type] = {}
        self._defs: Dict[Variable, Dict[str, ir.Value]] = {}
        self._current: Optional[str] = None
        self._value_counter = 0
        self._imported: Dict[int, ir.FuncRef] = {}

    # --- blocks --------------------------------------------------------

    def create_block(self) -> str:
        name = f"block{len(self.func.blocks)}"
        self.func.blocks[name] = ir.BasicBlock(name=name)
        self._states[name] = BlockState()
        if not self.func.entry:
            self.func.entry = name
        return name

    @property
    def current_block(self) -> Optional[str]:
        return self._current

    def switch_to_block(self, block: str) -> None:
        self._block(block)
        self._current = block

    def append_block_param(self, block: str, ty: ir.Type) -> ir.Value:
        value = self._fresh_value(ty)
        self._block(block).params.append(ir.Param(name=value, type=ty))
        return value

    def append_block_params_for_function_params(self, block: str) -> None:
        for param in self.func.signature.params:
            self.append_block_param(block, param.type)

    def block_params(self, block: str) -> List[ir.Value]:
        return [p.name for p in self._block(block).params]

    def seal_block(self, block: str) -> None:
        state = self._state(block)
        if state.sealed:
            raise FrontendError(f"block {block} is already sealed")
        idx = 0
        while idx < len(state.incomplete):
            var, _param = state.incomplete[idx]
            for pred in state.predecessors:
                pred.edge.args.append(self._use_var_in(var, pred.block))
            idx += 1
        state.incomplete.clear()
        state.sealed = True
        state.sealed_predecessors = tuple(pred.block for pred in state.predecessors)

    def is_sealed(self, block: str) -> bool:
        return self._state(block).sealed

    def block_state(self, block: str) -> BlockState:
        return self._state(block)

    # --- variables -----------------------------------------------------

    def declare_var(self, var: Variable, ty: ir.Type) -> None:
        if var in self._var_types:
            raise FrontendError(f"variable {var} declared twice")
        self._var_types[var] = ty
        self._defs[var] = {}

    def def_var(self, var: Variable, value: ir.Value) -> None:
        block = self._require_current()
        self._check_declared(var)
        self._defs[var][block] = value

    def use_var(self, var: Variable) -> ir.Value:
        block = self._require_current()
        self._check_declared(var)
        return self._use_var_in(var, block)

    def _use_var_in(self, var: Variable, block: str) -> ir.Value:
        defs = self._defs[var]
        if block in defs:
            return defs[block]
        state = self._state(block)
        ty = self._var_types[var]
        if not state.sealed:
            value = self.append_block_param(block, ty)
            state.incomplete.append((var, value))
        elif len(state.predecessors) == 1:
            value = self._use_var_in(var, state.predecessors[0].block)
        elif not state.predecessors:
            value = self._fresh_value(ty)
            self._block(block).instructions.insert(0, ir.Iconst(dest=value, type=ty, value=0))
        else:
            value = self.append_block_param(block, ty)
            # Record before recursing so that cycles through this block terminate.
            defs[block] = value
            for pred in state.predecessors:
                pred.edge.args.append(self._use_var_in(var, pred.block))
        defs[block] = value
        return value

    def _check_declared(self, var: Variable) -> None:
        if var not in self._var_types:
            raise FrontendError(f"variable {var} used before declaration")

    # --- instructions --------------------------------------------------

    def iconst(self, ty: ir.Type, value: int) -> ir.Value:
        dest = self._fresh_value(ty)
        self._append(ir.Iconst(dest=dest, type=ty, value=value))
        return dest

    def binary(self, op: str, left: ir.Value, right: ir.Value) -> ir.Value:
        if op not in ir.BINARY_OPS:
            raise FrontendError(f"unknown binary op {op!r}")
        dest = self._fresh_value(self.func.value_types[left])
        self._append(ir.Binary(dest=dest, op=op, left=left, right=right))
        return dest

    def iadd(self, left: ir.Value, right: ir.Value) -> ir.Value:
        return self.binary("iadd", left, right)

    def isub(self, left: ir.Value, right: ir.Value) -> ir.Value:
        return self.binary("isub", left, right)

    def imul(self, left: ir.Value, right: ir.Value) -> ir.Value:
        return self.binary("imul", left, right)

    def udiv(self, left: ir.Value, right: ir.Value) -> ir.Value:
        return self.binary("udiv", left, right)

    def icmp(self, cond: ir.IntCC, left: ir.Value, right: ir.Value) -> ir.Value:
        dest = self._fresh_value(ir.B1)
        self._append(ir.Icmp(dest=dest, cond=cond, left=left, right=right))
        return dest

    def bint(self, ty: ir.Type, arg: ir.Value) -> ir.Value:
        dest = self._fresh_value(ty)
        self._append(ir.Bint(dest=dest, type=ty, arg=arg))
        return dest

    def import_function(self, data: ir.ExtFuncData) -> ir.FuncRef:
        """Make an external declaration callable from this function (once per declaration)."""
        existing = self._imported.get(data.func_id)
        if existing is not None:
            return existing
        ref = ir.FuncRef(index=len(self.func.ext_funcs))
        self.func.ext_funcs[ref] = data
        self._imported[data.func_id] = ref
        return ref

    def call(self, func_ref: ir.FuncRef, args: Sequence[ir.Value]) -> List[ir.Value]:
        data = self.func.ext_funcs.get(func_ref)
        if data is None:
            raise FrontendError(f"unknown function reference {func_ref}")
        if len(args) != len(data.signature.params):
            raise FrontendError(
                f"call to {data.name} passes {len(args)} args, signature expects {len(data.signature.params)}"
            )
        results = [self._fresh_value(ret.type) for ret in data.signature.returns]
        # The toy ABI returns exactly one value.
        self._append(ir.Call(dest=results[0], func_ref=func_ref, args=list(args)))
        return results

    # --- terminators ---------------------------------------------------

    def jump(self, block: str, args: Sequence[ir.Value] = ()) -> None:
        self._terminate(ir.Jump(target=ir.Edge(target=block, args=list(args))))

    def brz(self, cond: ir.Value, block: str, args: Sequence[ir.Value] = ()) -> str:
        """Branch to `block` if `cond` is zero; continue in a fresh, sealed fall-through block."""
        fallthrough = self.create_block()
        self._terminate(
            ir.Brz(cond=cond, zero=ir.Edge(target=block, args=list(args)), nonzero=ir.Edge(target=fallthrough))
        )
        self.switch_to_block(fallthrough)
        self.seal_block(fallthrough)
        return fallthrough

    def return_(self, values: Sequence[ir.Value]) -> None:
        self._terminate(ir.Return(values=list(values)))

    def finalize(self) -> ir.Function:
        for name, block in self.func.blocks.items():
            if not self._states[name].sealed:
                raise FrontendError(f"block {name} was never sealed")
            if block.terminator is None:
                raise FrontendError(f"block {name} has no terminator")
        return self.func

    # --- helpers -------------------------------------------------------

    def _fresh_value(self, ty: ir.Type) -> ir.Value:
        name = f"v{self._value_counter}"
        self._value_counter += 1
        self.func.value_types[name] = ty
        return name

    def _block(self, block: str) -> ir.BasicBlock:
        try:
            return self.func.blocks[block]
        except KeyError:
            raise FrontendError(f"unknown block {block}") from None

    def _state(self, block: str) -> BlockState:
        self._block(block)
        return self._states[block]

    def _require_current(self) -> str:
        if self._current is None:
            raise FrontendError("no current block; call switch_to_block first")
        return self._current

    def _append(self, instr: ir.Instruction) -> None:
        block = self._block(self._require_current())
        if block.terminator is not None:
            raise FrontendError(f"block {block.name} is already terminated")
        block.instructions.append(instr)

    def _terminate(self, term: ir.Terminator) -> None:
        current = self._require_current()
        block = self._block(current)
        if block.terminator is not None:
            raise FrontendError(f"block {current} is already terminated")
        for edge in term.edges():
            target = self._state(edge.target)
            if target.sealed:
                raise FrontendError(f"branch from {current} to sealed block {edge.target}")
        block.terminator = term
        for edge in term.edges():
            self._states[edge.target].predecessors.append(Predecessor(block=current, edge=edge))
