"""Block-parameter SSA -> LLVM lowering and in-process JIT (llvmlite MCJIT).

Block parameters become phi nodes; the entry block's parameters are the
function arguments. Blocks are emitted in reverse postorder so that every
value is emitted before its uses.
"""

from __future__ import annotations

import itertools
import logging
from typing import Dict, List, Mapping, Optional

from llvmlite import binding as llvm  # type: ignore
from llvmlite import ir as llir  # type: ignore

from . import ir
from .errors import ModuleError
from .module import ResolvedCallee

logger = logging.getLogger(__name__)

_ICMP_OPS = {
    ir.IntCC.EQUAL: "==",
    ir.IntCC.NOT_EQUAL: "!=",
    ir.IntCC.SIGNED_LESS_THAN: "<",
    ir.IntCC.SIGNED_LESS_THAN_OR_EQUAL: "<=",
    ir.IntCC.SIGNED_GREATER_THAN: ">",
    ir.IntCC.SIGNED_GREATER_THAN_OR_EQUAL: ">=",
}

# External symbols are registered process-wide, so each declaration gets a unique name.
_SYMBOL_COUNTER = itertools.count()

_LLVM_READY = False


def _initialize_llvm() -> None:
    global _LLVM_READY
    if _LLVM_READY:
        return
    try:
        llvm.initialize()
    except RuntimeError:
        # Newer llvmlite releases initialize the LLVM core by themselves and
        # reject the explicit call.
        logger.debug("llvmlite initializes the LLVM core implicitly")
    llvm.initialize_native_target()
    llvm.initialize_native_asmprinter()
    _LLVM_READY = True


def _llvm_type(ty: ir.Type) -> llir.Type:
    return llir.IntType(ty.bits)


def _function_type(sig: ir.Signature) -> llir.FunctionType:
    if len(sig.returns) != 1:
        raise ModuleError(f"signature {sig} must have exactly one return value")
    return llir.FunctionType(_llvm_type(sig.returns[0].type), [_llvm_type(p.type) for p in sig.params])


def lower_function(
    func: ir.Function,
    callees: Mapping[ir.FuncRef, ResolvedCallee],
    triple: str = "",
    data_layout: str = "",
) -> tuple[llir.Module, Dict[str, int]]:
    """Build an LLVM module holding `func`.

    Returns the module and the external symbols (name -> address) its calls
    are bound to.
    """
    mod = llir.Module(name=f"toyjit.{func.name}")
    if triple:
        mod.triple = triple
    if data_layout:
        mod.data_layout = data_layout
    llfn = llir.Function(mod, _function_type(func.signature), name=func.name)

    targets: Dict[ir.FuncRef, llir.Function] = {}
    symbols: Dict[str, int] = {}
    for ref, callee in callees.items():
        if callee.address is None:
            targets[ref] = llfn
            continue
        symbol = f"__toyjit_{callee.name}_{next(_SYMBOL_COUNTER)}"
        targets[ref] = llir.Function(mod, _function_type(callee.signature), name=symbol)
        symbols[symbol] = callee.address

    order = func.reverse_postorder()
    ll_blocks = {name: llfn.append_basic_block(name=name) for name in order}
    values: Dict[ir.Value, llir.Value] = {}

    entry = func.blocks[func.entry]
    for param, arg in zip(entry.params, llfn.args):
        arg.name = param.name
        values[param.name] = arg

    builder = llir.IRBuilder()
    # Create all phis up front; their incoming values are added as the
    # predecessors' terminators are emitted.
    for name in order:
        if name == func.entry:
            continue
        builder.position_at_end(ll_blocks[name])
        for param in func.blocks[name].params:
            values[param.name] = builder.phi(_llvm_type(param.type), name=param.name)

    for name in order:
        block = func.blocks[name]
        builder.position_at_end(ll_blocks[name])
        for instr in block.instructions:
            _emit_instr(builder, instr, values, targets)
        _emit_terminator(builder, func, block, values, ll_blocks)

    return mod, symbols


def _emit_instr(
    builder: llir.IRBuilder,
    instr: ir.Instruction,
    values: Dict[ir.Value, llir.Value],
    targets: Mapping[ir.FuncRef, llir.Function],
) -> None:
    if isinstance(instr, ir.Iconst):
        values[instr.dest] = llir.Constant(_llvm_type(instr.type), instr.value)
    elif isinstance(instr, ir.Binary):
        lhs = values[instr.left]
        rhs = values[instr.right]
        if instr.op == "iadd":
            values[instr.dest] = builder.add(lhs, rhs, name=instr.dest)
        elif instr.op == "isub":
            values[instr.dest] = builder.sub(lhs, rhs, name=instr.dest)
        elif instr.op == "imul":
            values[instr.dest] = builder.mul(lhs, rhs, name=instr.dest)
        elif instr.op == "udiv":
            values[instr.dest] = builder.udiv(lhs, rhs, name=instr.dest)
        else:
            raise ModuleError(f"unsupported binary op {instr.op!r}")
    elif isinstance(instr, ir.Icmp):
        values[instr.dest] = builder.icmp_signed(
            _ICMP_OPS[instr.cond], values[instr.left], values[instr.right], name=instr.dest
        )
    elif isinstance(instr, ir.Bint):
        values[instr.dest] = builder.zext(values[instr.arg], _llvm_type(instr.type), name=instr.dest)
    elif isinstance(instr, ir.Call):
        args = [values[a] for a in instr.args]
        values[instr.dest] = builder.call(targets[instr.func_ref], args, name=instr.dest)
    else:
        raise ModuleError(f"unsupported instruction {instr!r}")


def _emit_terminator(
    builder: llir.IRBuilder,
    func: ir.Function,
    block: ir.BasicBlock,
    values: Dict[ir.Value, llir.Value],
    ll_blocks: Mapping[str, llir.Block],
) -> None:
    term = block.terminator
    current = ll_blocks[block.name]
    for edge in term.edges():
        for param, arg in zip(func.blocks[edge.target].params, edge.args):
            values[param.name].add_incoming(values[arg], current)
    if isinstance(term, ir.Jump):
        builder.branch(ll_blocks[term.target.target])
    elif isinstance(term, ir.Brz):
        cond = values[term.cond]
        is_zero = builder.icmp_unsigned("==", cond, llir.Constant(cond.type, 0))
        builder.cbranch(is_zero, ll_blocks[term.zero.target], ll_blocks[term.nonzero.target])
    elif isinstance(term, ir.Return):
        builder.ret(values[term.values[0]])
    else:
        raise ModuleError(f"unsupported terminator {term!r}")


class JITBackend:
    """Turns IR functions into machine code living in one MCJIT execution engine."""

    def __init__(self, opt_level: int = 2) -> None:
        _initialize_llvm()
        target = llvm.Target.from_default_triple()
        self.target_machine = target.create_target_machine(opt=opt_level)
        self.triple = llvm.get_process_triple()
        self.data_layout = str(self.target_machine.target_data)
        backing_mod = llvm.parse_assembly("")
        self.engine = llvm.create_mcjit_compiler(backing_mod, self.target_machine)
        self._modules: List[llvm.ModuleRef] = []
        # function name -> textual LLVM IR, for inspection
        self.llvm_ir: Dict[str, str] = {}

    def compile_function(self, name: str, func: ir.Function, callees: Mapping[ir.FuncRef, ResolvedCallee]) -> int:
        mod, symbols = lower_function(func, callees, self.triple, self.data_layout)
        text = str(mod)
        self.llvm_ir[name] = text
        logger.debug("LLVM IR for %s:\n%s", name, text)
        try:
            llmod = llvm.parse_assembly(text)
            llmod.verify()
        except RuntimeError as exc:
            raise ModuleError(f"LLVM rejected '{name}': {exc}") from exc
        for symbol, address in symbols.items():
            llvm.add_symbol(symbol, address)
        self.engine.add_module(llmod)
        self.engine.finalize_object()
        address = self._function_address(name)
        if not address:
            # Unload it so a corrected definition can reuse the name.
            self.engine.remove_module(llmod)
            raise ModuleError(f"no machine code emitted for '{name}'")
        self._modules.append(llmod)
        return address

    def _function_address(self, name: str) -> int:
        return self.engine.get_function_address(name)

    def lookup_symbol(self, name: str) -> Optional[int]:
        """Address of a symbol already loaded in the process, if any."""
        address = llvm.address_of_symbol(name)
        return address or None
