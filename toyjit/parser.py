from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedInput, UnexpectedToken

from .ast import (
    Arith,
    ArithOp,
    Assign,
    Call,
    Compare,
    CompareOp,
    Expr,
    Identifier,
    IfElse,
    Literal,
    Located,
    ParsedFunction,
    WhileLoop,
)
from .errors import ParseError

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    start="start",
    propagate_positions=True,
    maybe_placeholders=False,
)

_COMPARE_OPS = {op.value: op for op in CompareOp}
_ARITH_OPS = {op.value: op for op in ArithOp}


def parse_program(source: str) -> List[ParsedFunction]:
    """Parse every function in `source`, in source order."""
    try:
        tree = _PARSER.parse(source)
    except UnexpectedInput as exc:
        raise ParseError(_describe(exc), _loc_from_error(exc)) from exc
    return [_build_function(child) for child in tree.children if isinstance(child, Tree)]


def parse_function(source: str) -> ParsedFunction:
    """Parse a source text holding exactly one function."""
    functions = parse_program(source)
    if len(functions) != 1:
        loc = functions[1].loc if len(functions) > 1 else None
        raise ParseError(f"expected exactly one function, found {len(functions)}", loc)
    return functions[0]


def _describe(exc: UnexpectedInput) -> str:
    if isinstance(exc, UnexpectedToken):
        if exc.token.type == "$END":
            return "unexpected end of input"
        if exc.token.type == "_SEP":
            return "unexpected end of statement"
        return f"unexpected token {exc.token.value!r}"
    if isinstance(exc, UnexpectedCharacters):
        return f"unexpected character {exc.char!r}"
    return "unexpected end of input"


def _loc_from_error(exc: UnexpectedInput) -> Optional[Located]:
    line = getattr(exc, "line", -1)
    column = getattr(exc, "column", -1)
    if line is None or line < 1:
        return None
    return Located(line=line, column=column)


def _build_function(tree: Tree) -> ParsedFunction:
    loc = _loc(tree)
    children = list(tree.children)
    idx = 0
    name_token = children[idx]
    idx += 1
    params: Tuple[str, ...] = ()
    if _name(children[idx]) == "params":
        params = tuple(token.value for token in children[idx].children if isinstance(token, Token))
        idx += 1
    return_spec = children[idx]
    the_return = next(child.value for child in return_spec.children if isinstance(child, Token))
    idx += 1
    stmts = _build_body(children[idx])
    return ParsedFunction(
        name=name_token.value,
        params=params,
        the_return=the_return,
        stmts=stmts,
        loc=loc,
    )


def _build_body(tree: Tree) -> Tuple[Expr, ...]:
    return tuple(_build_expr(child) for child in tree.children if isinstance(child, Tree))


def _build_expr(node: Tree) -> Expr:
    kind = _name(node)
    loc = _loc(node)
    if kind == "literal":
        return Literal(text=node.children[0].value, loc=loc)
    if kind == "identifier":
        return Identifier(name=node.children[0].value, loc=loc)
    if kind == "assign":
        name_token, value_node = node.children
        return Assign(name=name_token.value, value=_build_expr(value_node), loc=loc)
    if kind == "comparison":
        lhs, op_token, rhs = node.children
        return Compare(op=_COMPARE_OPS[op_token.value], lhs=_build_expr(lhs), rhs=_build_expr(rhs), loc=loc)
    if kind in ("sum", "product"):
        lhs, op_token, rhs = node.children
        return Arith(op=_ARITH_OPS[op_token.value], lhs=_build_expr(lhs), rhs=_build_expr(rhs), loc=loc)
    if kind == "if_else":
        condition = _build_expr(node.children[0])
        then_body = _build_body(node.children[1])
        else_body: Tuple[Expr, ...] = ()
        if len(node.children) > 2:
            else_body = _build_body(node.children[2])
        return IfElse(condition=condition, then_body=then_body, else_body=else_body, loc=loc)
    if kind == "while_loop":
        condition = _build_expr(node.children[0])
        return WhileLoop(condition=condition, body=_build_body(node.children[1]), loc=loc)
    if kind == "call":
        name_token = node.children[0]
        args: Tuple[Expr, ...] = ()
        if len(node.children) > 1:
            args = tuple(_build_expr(arg) for arg in node.children[1].children)
        return Call(name=name_token.value, args=args, loc=loc)
    raise ValueError(f"unexpected expression node {kind!r}")


def _loc(tree: Tree) -> Optional[Located]:
    meta = tree.meta
    if getattr(meta, "empty", True):
        return None
    return Located(line=meta.line, column=meta.column)


def _name(node: Tree | Token) -> str:
    if isinstance(node, Tree):
        data = node.data
        if isinstance(data, Token):
            return data.value
        return data
    return node.type
