from __future__ import annotations

import pytest

from toyjit import ir
from toyjit.errors import MalformedLiteralError, UndeclaredVariableError
from toyjit.frontend import FunctionBuilder
from toyjit.module import Linkage
from toyjit.parser import parse_function
from toyjit.printer import format_function
from toyjit.translate import FunctionTranslator, declare_variables, translate_function
from toyjit.verifier import verify_function


def _translate(source: str, module) -> ir.Function:
    func = translate_function(parse_function(source), module)
    verify_function(func)
    return func


def test_identity(module):
    func = _translate("fn id(a) -> (r) { r = a }", module)
    assert format_function(func) == "\n".join(
        [
            "function id(i32) -> i32 system_v {",
            "block0(v0: i32):",
            "    v1 = iconst.i32 0",
            "    return v0",
            "}",
        ]
    )


def test_if_else_merges_through_block_param(module):
    func = _translate("fn f(c) -> (r) { r = if c { 1 } else { 2 } }", module)
    assert format_function(func) == "\n".join(
        [
            "function f(i32) -> i32 system_v {",
            "block0(v0: i32):",
            "    v1 = iconst.i32 0",
            "    brz v0, block1, block3",
            "",
            "block1:",
            "    v5 = iconst.i32 0",
            "    v6 = iconst.i32 2",
            "    jump block2(v6)",
            "",
            "block2(v2: i32):",
            "    return v2",
            "",
            "block3:",
            "    v3 = iconst.i32 0",
            "    v4 = iconst.i32 1",
            "    jump block2(v4)",
            "}",
        ]
    )


def test_while_loop_header_params_follow_reads(module):
    func = _translate(
        """
fn count(n) -> (r) {
    i = 0
    while i < n {
        i = i + 1
    }
    r = i
}
""",
        module,
    )
    assert format_function(func) == "\n".join(
        [
            "function count(i32) -> i32 system_v {",
            "block0(v0: i32):",
            "    v1 = iconst.i32 0",
            "    v2 = iconst.i32 0",
            "    jump block1(v2, v0)",
            "",
            "block1(v3: i32, v4: i32):",
            "    v5 = icmp slt v3, v4",
            "    v6 = bint.i32 v5",
            "    brz v6, block2, block3",
            "",
            "block2:",
            "    v9 = iconst.i32 0",
            "    return v3",
            "",
            "block3:",
            "    v7 = iconst.i32 1",
            "    v8 = iadd v3, v7",
            "    jump block1(v8, v4)",
            "}",
        ]
    )


def test_arithmetic_and_comparison_opcodes(module):
    func = _translate("fn f(a, b) -> (r) { r = (a + b) * (a - b) / 2 >= a }", module)
    instrs = [i for block in func.blocks.values() for i in block.instructions]
    ops = [i.op for i in instrs if isinstance(i, ir.Binary)]
    assert ops == ["iadd", "isub", "imul", "udiv"]
    (cmp,) = [i for i in instrs if isinstance(i, ir.Icmp)]
    assert cmp.cond is ir.IntCC.SIGNED_GREATER_THAN_OR_EQUAL
    (widen,) = [i for i in instrs if isinstance(i, ir.Bint)]
    assert widen.arg == cmp.dest
    assert func.value_types[cmp.dest] == ir.B1
    assert func.value_types[widen.dest] == ir.I32


def test_call_declares_callee_and_imports_it(module):
    func = _translate("fn f(a) -> (r) { r = g(a) + g(1) + h() }", module)
    g_id = module.get_name("g")
    h_id = module.get_name("h")
    assert module.declaration(g_id).linkage is Linkage.EXPORT
    assert str(module.declaration(g_id).signature) == "(i32) -> i32 system_v"
    assert str(module.declaration(h_id).signature) == "() -> i32 system_v"
    assert [data.name for data in func.ext_funcs.values()] == ["g", "h"]
    calls = [i for block in func.blocks.values() for i in block.instructions if isinstance(i, ir.Call)]
    assert [str(c.func_ref) for c in calls] == ["fn0", "fn0", "fn1"]
    assert "    fn0 = g(i32) -> i32 system_v" in format_function(func).splitlines()


def test_declared_variable_without_assignment_reads_zero(module):
    func = _translate("fn f(c) -> (r) { if c { x = 5 }\n r = x }", module)
    entry = func.blocks[func.entry]
    # The zero for `x` is placed at the top of the entry block, ahead of the one for `r`.
    assert entry.instructions[:2] == [
        ir.Iconst(dest="v7", type=ir.I32, value=0),
        ir.Iconst(dest="v1", type=ir.I32, value=0),
    ]
    else_jump = func.blocks["block1"].terminator
    assert else_jump.target.args == ["v5", "v7"]
    then_jump = func.blocks["block3"].terminator
    assert then_jump.target.args == ["v4", "v4"]


def test_return_name_shadowing_a_param_starts_at_zero(module):
    func = _translate("fn f(x) -> (x) { }", module)
    entry = func.blocks[func.entry]
    ret = entry.terminator
    assert isinstance(ret, ir.Return)
    (value,) = ret.values
    assert value != entry.params[0].name
    assert ir.Iconst(dest=value, type=ir.I32, value=0) in entry.instructions


def test_undeclared_variable_is_reported_with_location(module):
    with pytest.raises(UndeclaredVariableError) as info:
        translate_function(parse_function("fn f() -> (r) { r = y }"), module)
    err = info.value
    assert err.name == "y"
    assert (err.loc.line, err.loc.column) == (1, 21)
    assert err.format_human() == "1:21: undeclared variable 'y'"


@pytest.mark.parametrize("text", ["2147483648", "99999999999999999999"])
def test_out_of_range_literal_is_rejected(module, text):
    with pytest.raises(MalformedLiteralError, match=text):
        translate_function(parse_function(f"fn f() -> (r) {{ r = {text} }}"), module)


def test_largest_literal_is_accepted(module):
    func = _translate("fn f() -> (r) { r = 2147483647 }", module)
    values = [i.value for i in func.blocks[func.entry].instructions if isinstance(i, ir.Iconst)]
    assert 2147483647 in values


def test_every_block_is_sealed_after_all_its_predecessors(module):
    """When a block is sealed, the predecessors it knows about are all it will ever get."""
    parsed = parse_function(
        """
fn f(n) -> (r) {
    i = 0
    while i < n {
        if i / 2 * 2 == i {
            r = r + i
        } else {
            while r > 100 { r = r - 100 }
        }
        i = i + 1
    }
}
"""
    )
    sig = ir.Signature(params=[ir.AbiParam(ir.I32)], returns=[ir.AbiParam(ir.I32)])
    builder = FunctionBuilder(parsed.name, sig)
    entry = builder.create_block()
    builder.append_block_params_for_function_params(entry)
    builder.switch_to_block(entry)
    builder.seal_block(entry)
    variables = declare_variables(builder, parsed.params, parsed.the_return, parsed.stmts, entry)
    trans = FunctionTranslator(builder, variables, module)
    for stmt in parsed.stmts:
        trans.translate_expr(stmt)
    builder.return_([builder.use_var(variables["r"])])
    func = builder.finalize()
    verify_function(func)

    preds = func.predecessors()
    for name in func.blocks:
        state = builder.block_state(name)
        assert state.sealed
        assert sorted(state.sealed_predecessors) == sorted(preds[name]), name


def test_every_edge_passes_one_arg_per_block_param(module):
    func = _translate(
        """
fn f(a, b) -> (r) {
    while a > 0 {
        t = if a < b { a } else { b }
        r = r + t
        a = a - 1
    }
}
""",
        module,
    )
    for block in func.blocks.values():
        for edge in block.terminator.edges():
            assert len(edge.args) == len(func.blocks[edge.target].params)
