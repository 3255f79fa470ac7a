"""Lowering of toy-language AST nodes into block-parameter SSA IR.

Translation is two-phase: `declare_variables` first walks the whole statement
list and assigns every variable a dense index, then `FunctionTranslator`
lowers the statements one by one.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Sequence

from . import ast, ir
from .errors import MalformedLiteralError, TranslationError, UndeclaredVariableError
from .frontend import FunctionBuilder, Variable
from .module import Linkage, Module


logger = logging.getLogger(__name__)

I32_MIN = -(2 ** 31)
I32_MAX = 2 ** 31 - 1
_LITERAL_RE = re.compile(r"[+-]?[0-9]+")

_INT_CC = {
    ast.CompareOp.EQ: ir.IntCC.EQUAL,
    ast.CompareOp.NE: ir.IntCC.NOT_EQUAL,
    ast.CompareOp.LT: ir.IntCC.SIGNED_LESS_THAN,
    ast.CompareOp.LE: ir.IntCC.SIGNED_LESS_THAN_OR_EQUAL,
    ast.CompareOp.GT: ir.IntCC.SIGNED_GREATER_THAN,
    ast.CompareOp.GE: ir.IntCC.SIGNED_GREATER_THAN_OR_EQUAL,
}

_BINARY_OP = {
    ast.ArithOp.ADD: "iadd",
    ast.ArithOp.SUB: "isub",
    ast.ArithOp.MUL: "imul",
    # Division is unsigned even though the language has no unsigned values.
    ast.ArithOp.DIV: "udiv",
}


def translate_function(
    parsed: ast.ParsedFunction,
    module: Module,
    call_conv: ir.CallConv = ir.CallConv.SYSTEM_V,
) -> ir.Function:
    """Lower one parsed function into an `ir.Function`.

    Callees are declared in `module` as they are encountered; the function
    itself is not declared here.
    """
    signature = ir.Signature(call_conv=call_conv)
    # The toy language only has i32 values and exactly one return value.
    for _ in parsed.params:
        signature.params.append(ir.AbiParam(ir.I32))
    signature.returns.append(ir.AbiParam(ir.I32))

    builder = FunctionBuilder(parsed.name, signature)
    entry_block = builder.create_block()
    builder.append_block_params_for_function_params(entry_block)
    builder.switch_to_block(entry_block)
    # The entry block has no predecessors.
    builder.seal_block(entry_block)

    variables = declare_variables(builder, parsed.params, parsed.the_return, parsed.stmts, entry_block)
    logger.debug("%s: declared %d variables", parsed.name, len(variables))

    trans = FunctionTranslator(builder=builder, variables=variables, module=module)
    for expr in parsed.stmts:
        trans.translate_expr(expr)

    return_variable = variables.get(parsed.the_return)
    if return_variable is None:
        raise TranslationError(f"return variable '{parsed.the_return}' was never declared", parsed.loc)
    return_value = builder.use_var(return_variable)
    builder.return_([return_value])
    return builder.finalize()


def declare_variables(
    builder: FunctionBuilder,
    params: Sequence[str],
    the_return: str,
    stmts: Sequence[ast.Expr],
    entry_block: str,
) -> Dict[str, Variable]:
    """Assign a `Variable` to every parameter, the return name and each assignment target."""
    variables: Dict[str, Variable] = {}

    entry_params = builder.block_params(entry_block)
    for i, name in enumerate(params):
        var = _declare_variable(builder, variables, name)
        builder.def_var(var, entry_params[i])
    zero = builder.iconst(ir.I32, 0)
    return_variable = _declare_variable(builder, variables, the_return)
    builder.def_var(return_variable, zero)
    for expr in stmts:
        _declare_variables_in_stmt(builder, variables, expr)
    return variables


def _declare_variables_in_stmt(builder: FunctionBuilder, variables: Dict[str, Variable], expr: ast.Expr) -> None:
    if isinstance(expr, ast.Assign):
        _declare_variable(builder, variables, expr.name)
    elif isinstance(expr, ast.IfElse):
        for stmt in expr.then_body:
            _declare_variables_in_stmt(builder, variables, stmt)
        for stmt in expr.else_body:
            _declare_variables_in_stmt(builder, variables, stmt)
    elif isinstance(expr, ast.WhileLoop):
        for stmt in expr.body:
            _declare_variables_in_stmt(builder, variables, stmt)


def _declare_variable(builder: FunctionBuilder, variables: Dict[str, Variable], name: str) -> Variable:
    existing = variables.get(name)
    if existing is not None:
        return existing
    var = Variable(len(variables))
    variables[name] = var
    builder.declare_var(var, ir.I32)
    return var


class FunctionTranslator:
    """State used while translating the statements of one function."""

    def __init__(self, builder: FunctionBuilder, variables: Dict[str, Variable], module: Module) -> None:
        self.builder = builder
        self.variables = variables
        self.module = module

    def translate_expr(self, expr: ast.Expr) -> ir.Value:
        """Emit the instructions for `expr` and return the value it produces."""
        if isinstance(expr, ast.Literal):
            return self.builder.iconst(ir.I32, parse_literal(expr))

        if isinstance(expr, ast.Arith):
            lhs = self.translate_expr(expr.lhs)
            rhs = self.translate_expr(expr.rhs)
            return self.builder.binary(_BINARY_OP[expr.op], lhs, rhs)

        if isinstance(expr, ast.Compare):
            lhs = self.translate_expr(expr.lhs)
            rhs = self.translate_expr(expr.rhs)
            c = self.builder.icmp(_INT_CC[expr.op], lhs, rhs)
            return self.builder.bint(ir.I32, c)

        if isinstance(expr, ast.Call):
            return self._translate_call(expr)

        if isinstance(expr, ast.Identifier):
            return self.builder.use_var(self._lookup(expr.name, expr.loc))

        if isinstance(expr, ast.Assign):
            # A variable may have many definitions; the builder picks the
            # reaching one when it is read.
            new_value = self.translate_expr(expr.value)
            self.builder.def_var(self._lookup(expr.name, expr.loc), new_value)
            return new_value

        if isinstance(expr, ast.IfElse):
            return self._translate_if_else(expr)

        if isinstance(expr, ast.WhileLoop):
            return self._translate_while_loop(expr)

        raise TranslationError(f"unsupported expression {type(expr).__name__}", getattr(expr, "loc", None))

    def _translate_if_else(self, expr: ast.IfElse) -> ir.Value:
        condition_value = self.translate_expr(expr.condition)

        else_block = self.builder.create_block()
        merge_block = self.builder.create_block()

        # The if-else has a value. Instead of a phi, the merge block takes a
        # parameter and each branch passes its result along the jump.
        self.builder.append_block_param(merge_block, ir.I32)

        self.builder.brz(condition_value, else_block)

        then_return = self._translate_body(expr.then_body)
        self.builder.jump(merge_block, [then_return])

        self.builder.switch_to_block(else_block)
        self.builder.seal_block(else_block)
        else_return = self._translate_body(expr.else_body)
        self.builder.jump(merge_block, [else_return])

        # Both jumps into the merge block now exist.
        self.builder.switch_to_block(merge_block)
        self.builder.seal_block(merge_block)

        return self.builder.block_params(merge_block)[0]

    def _translate_while_loop(self, expr: ast.WhileLoop) -> ir.Value:
        header_block = self.builder.create_block()
        exit_block = self.builder.create_block()
        self.builder.jump(header_block)
        self.builder.switch_to_block(header_block)

        condition_value = self.translate_expr(expr.condition)
        self.builder.brz(condition_value, exit_block)

        for stmt in expr.body:
            self.translate_expr(stmt)
        self.builder.jump(header_block)

        self.builder.switch_to_block(exit_block)

        # The backedge has been emitted, so the header and the exit have all
        # of their predecessors.
        self.builder.seal_block(header_block)
        self.builder.seal_block(exit_block)

        # Loops have no value.
        return self.builder.iconst(ir.I32, 0)

    def _translate_body(self, body: Sequence[ast.Expr]) -> ir.Value:
        result = self.builder.iconst(ir.I32, 0)
        for stmt in body:
            result = self.translate_expr(stmt)
        return result

    def _translate_call(self, expr: ast.Call) -> ir.Value:
        sig = ir.Signature(call_conv=self.builder.func.signature.call_conv)
        for _arg in expr.args:
            sig.params.append(ir.AbiParam(ir.I32))
        # Every callee returns a single i32.
        sig.returns.append(ir.AbiParam(ir.I32))

        callee = self.module.declare_function(expr.name, Linkage.EXPORT, sig)
        local_callee = self.module.declare_func_in_func(callee, self.builder)

        arg_values: List[ir.Value] = []
        for arg in expr.args:
            arg_values.append(self.translate_expr(arg))
        return self.builder.call(local_callee, arg_values)[0]

    def _lookup(self, name: str, loc) -> Variable:
        var = self.variables.get(name)
        if var is None:
            raise UndeclaredVariableError(name, loc)
        return var


def parse_literal(expr: ast.Literal) -> int:
    text = expr.text
    if _LITERAL_RE.fullmatch(text) is None:
        raise MalformedLiteralError(text, expr.loc)
    value = int(text, 10)
    if not I32_MIN <= value <= I32_MAX:
        raise MalformedLiteralError(text, expr.loc)
    return value
