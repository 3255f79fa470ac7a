from __future__ import annotations

from . import ir


def format_edge(edge: ir.Edge) -> str:
    args = ", ".join(edge.args)
    return f"{edge.target}({args})" if args else edge.target


def format_term(term: ir.Terminator) -> str:
    if isinstance(term, ir.Jump):
        return f"    jump {format_edge(term.target)}"
    if isinstance(term, ir.Brz):
        return f"    brz {term.cond}, {format_edge(term.zero)}, {format_edge(term.nonzero)}"
    if isinstance(term, ir.Return):
        return f"    return {', '.join(term.values)}".rstrip()
    return "    <invalid terminator>"


def format_instr(instr: ir.Instruction) -> str:
    if isinstance(instr, ir.Iconst):
        return f"    {instr.dest} = iconst.{instr.type} {instr.value}"
    if isinstance(instr, ir.Binary):
        return f"    {instr.dest} = {instr.op} {instr.left}, {instr.right}"
    if isinstance(instr, ir.Icmp):
        return f"    {instr.dest} = icmp {instr.cond.value} {instr.left}, {instr.right}"
    if isinstance(instr, ir.Bint):
        return f"    {instr.dest} = bint.{instr.type} {instr.arg}"
    if isinstance(instr, ir.Call):
        return f"    {instr.dest} = call {instr.func_ref}({', '.join(instr.args)})"
    return "    <invalid instr>"


def format_block(block: ir.BasicBlock) -> str:
    params = ", ".join(f"{p.name}: {p.type}" for p in block.params)
    lines = [f"{block.name}({params}):" if params else f"{block.name}:"]
    for instr in block.instructions:
        lines.append(format_instr(instr))
    if block.terminator is not None:
        lines.append(format_term(block.terminator))
    return "\n".join(lines)


def format_function(fn: ir.Function) -> str:
    lines = [f"function {fn.name}{fn.signature} {{"]
    for ref, data in fn.ext_funcs.items():
        lines.append(f"    {ref} = {data.name}{data.signature}")
    if fn.ext_funcs:
        lines.append("")
    lines.append("\n\n".join(format_block(block) for block in fn.blocks.values()))
    lines.append("}")
    return "\n".join(lines)
