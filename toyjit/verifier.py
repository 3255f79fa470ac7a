"""Structural verifier for block-parameter SSA functions.

The verifier enforces:
  - every block has a terminator and every edge targets a known block;
  - edge argument count and types match the target's block parameters;
  - the entry block matches the signature and has no predecessors;
  - all blocks are reachable from the entry;
  - every value is defined exactly once and each use is dominated by its
    definition (lexically within a block, via dominance across blocks);
  - operand types of every instruction, and the return values against the
    signature.
"""

from __future__ import annotations

from typing import Dict, List, Set

from . import ir
from .errors import VerifierError


class Verifier:
    def __init__(self, func: ir.Function) -> None:
        self.func = func
        # value -> block in which it is defined
        self.def_blocks: Dict[ir.Value, str] = {}
        self.preds: Dict[str, Set[str]] = {}
        self.doms: Dict[str, Set[str]] = {}

    def verify(self) -> None:
        self._check_structure()
        reachable = self._reachable_blocks()
        unreachable = set(self.func.blocks) - reachable
        if unreachable:
            self._fail(f"unreachable blocks present: {sorted(unreachable)}")
        self._build_preds()
        self._compute_dominators()
        self._check_entry()
        self._check_edges()
        for block in self.func.blocks.values():
            self._register_defs(block)
        for block in self.func.blocks.values():
            self._visit_block(block)

    def _fail(self, message: str) -> None:
        raise VerifierError(f"{self.func.name}: {message}")

    # --- CFG ---------------------------------------------------------------

    def _check_structure(self) -> None:
        if self.func.entry not in self.func.blocks:
            self._fail(f"entry block {self.func.entry!r} does not exist")
        for block in self.func.blocks.values():
            if block.terminator is None:
                self._fail(f"block {block.name} is missing a terminator")
            for edge in block.terminator.edges():
                if edge.target not in self.func.blocks:
                    self._fail(f"edge from {block.name} targets unknown block {edge.target}")

    def _reachable_blocks(self) -> Set[str]:
        seen: Set[str] = set()
        work: List[str] = [self.func.entry]
        while work:
            name = work.pop()
            if name in seen:
                continue
            seen.add(name)
            work.extend(self.func.blocks[name].successors())
        return seen

    def _build_preds(self) -> None:
        preds: Dict[str, Set[str]] = {name: set() for name in self.func.blocks}
        for block in self.func.blocks.values():
            for succ in block.successors():
                preds[succ].add(block.name)
        self.preds = preds

    def _compute_dominators(self) -> None:
        entry = self.func.entry
        names = set(self.func.blocks)
        doms: Dict[str, Set[str]] = {name: set(names) for name in names}
        doms[entry] = {entry}
        changed = True
        while changed:
            changed = False
            for b in names:
                if b == entry:
                    continue
                new_dom = set(names)
                for p in self.preds[b]:
                    new_dom &= doms[p]
                new_dom.add(b)
                if new_dom != doms[b]:
                    doms[b] = new_dom
                    changed = True
        self.doms = doms

    def _check_entry(self) -> None:
        entry = self.func.blocks[self.func.entry]
        if self.preds[entry.name]:
            self._fail(f"entry block {entry.name} has predecessors {sorted(self.preds[entry.name])}")
        expected = [p.type for p in self.func.signature.params]
        got = [p.type for p in entry.params]
        if expected != got:
            self._fail(
                f"entry block params ({', '.join(map(str, got))}) do not match "
                f"signature params ({', '.join(map(str, expected))})"
            )

    def _check_edges(self) -> None:
        for block in self.func.blocks.values():
            for edge in block.terminator.edges():
                target = self.func.blocks[edge.target]
                if len(edge.args) != len(target.params):
                    self._fail(
                        f"edge {block.name} -> {edge.target} passes {len(edge.args)} args, "
                        f"block expects {len(target.params)}"
                    )
                for arg, param in zip(edge.args, target.params):
                    if self._type_of(arg) != param.type:
                        self._fail(
                            f"edge {block.name} -> {edge.target} passes {arg} of type {self._type_of(arg)} "
                            f"for param {param.name} of type {param.type}"
                        )

    # --- values ------------------------------------------------------------

    def _define(self, value: ir.Value, block_name: str) -> None:
        if value in self.def_blocks:
            self._fail(f"value {value} defined twice (blocks {self.def_blocks[value]} and {block_name})")
        self.def_blocks[value] = block_name

    def _register_defs(self, block: ir.BasicBlock) -> None:
        for param in block.params:
            self._define(param.name, block.name)
        for instr in block.instructions:
            dest = getattr(instr, "dest", None)
            if dest is not None:
                self._define(dest, block.name)

    def _use(self, value: ir.Value, block_name: str, local_defs: Set[ir.Value], where: str) -> None:
        def_block = self.def_blocks.get(value)
        if def_block is None:
            self._fail(f"value {value} used but never defined ({where})")
        if def_block == block_name:
            if value not in local_defs:
                self._fail(f"value {value} used before its definition in block {block_name} ({where})")
        elif def_block not in self.doms[block_name]:
            self._fail(f"use of {value} in block {block_name} is not dominated by its definition in {def_block}")

    def _type_of(self, value: ir.Value) -> ir.Type:
        ty = self.func.value_types.get(value)
        if ty is None:
            self._fail(f"value {value} has no type")
        return ty

    def _expect_type(self, value: ir.Value, ty: ir.Type, where: str) -> None:
        got = self._type_of(value)
        if got != ty:
            self._fail(f"{where}: {value} has type {got}, expected {ty}")

    def _visit_block(self, block: ir.BasicBlock) -> None:
        local_defs: Set[ir.Value] = {p.name for p in block.params}
        for instr in block.instructions:
            self._visit_instr(block.name, instr, local_defs)
            dest = getattr(instr, "dest", None)
            if dest is not None:
                local_defs.add(dest)
        self._visit_terminator(block, local_defs)

    def _visit_instr(self, block_name: str, instr: ir.Instruction, local_defs: Set[ir.Value]) -> None:
        where = f"block {block_name}, {instr!r}"
        if isinstance(instr, ir.Iconst):
            self._expect_type(instr.dest, instr.type, where)
        elif isinstance(instr, ir.Binary):
            if instr.op not in ir.BINARY_OPS:
                self._fail(f"unknown binary op {instr.op!r} ({where})")
            for operand in (instr.left, instr.right):
                self._use(operand, block_name, local_defs, where)
                self._expect_type(operand, self._type_of(instr.dest), where)
        elif isinstance(instr, ir.Icmp):
            self._use(instr.left, block_name, local_defs, where)
            self._use(instr.right, block_name, local_defs, where)
            if self._type_of(instr.left) != self._type_of(instr.right):
                self._fail(f"icmp operands have different types ({where})")
            self._expect_type(instr.dest, ir.B1, where)
        elif isinstance(instr, ir.Bint):
            self._use(instr.arg, block_name, local_defs, where)
            self._expect_type(instr.arg, ir.B1, where)
            self._expect_type(instr.dest, instr.type, where)
        elif isinstance(instr, ir.Call):
            data = self.func.ext_funcs.get(instr.func_ref)
            if data is None:
                self._fail(f"call through undeclared function reference {instr.func_ref} ({where})")
            if len(instr.args) != len(data.signature.params):
                self._fail(
                    f"call to {data.name} passes {len(instr.args)} args, "
                    f"signature expects {len(data.signature.params)} ({where})"
                )
            for arg, param in zip(instr.args, data.signature.params):
                self._use(arg, block_name, local_defs, where)
                self._expect_type(arg, param.type, where)
        else:
            self._fail(f"unsupported instruction {instr!r}")

    def _visit_terminator(self, block: ir.BasicBlock, local_defs: Set[ir.Value]) -> None:
        term = block.terminator
        where = f"terminator of {block.name}"
        if isinstance(term, ir.Brz):
            self._use(term.cond, block.name, local_defs, where)
        elif isinstance(term, ir.Return):
            expected = [r.type for r in self.func.signature.returns]
            if len(term.values) != len(expected):
                self._fail(f"return of {len(term.values)} values, signature has {len(expected)} ({where})")
            for value, ty in zip(term.values, expected):
                self._use(value, block.name, local_defs, where)
                self._expect_type(value, ty, where)
        elif not isinstance(term, ir.Jump):
            self._fail(f"unsupported terminator {term!r}")
        for edge in term.edges():
            for arg in edge.args:
                self._use(arg, block.name, local_defs, where)


def verify_function(func: ir.Function) -> None:
    Verifier(func).verify()
