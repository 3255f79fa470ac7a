from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class Located:
    line: int
    column: int


class CompareOp(Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="


class ArithOp(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"


class Expr:
    loc: Optional[Located]


@dataclass(frozen=True)
class Literal(Expr):
    text: str
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class Identifier(Expr):
    name: str
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class Assign(Expr):
    name: str
    value: Expr
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class Compare(Expr):
    op: CompareOp
    lhs: Expr
    rhs: Expr
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class Arith(Expr):
    op: ArithOp
    lhs: Expr
    rhs: Expr
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class IfElse(Expr):
    condition: Expr
    then_body: Tuple[Expr, ...]
    else_body: Tuple[Expr, ...] = ()
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class WhileLoop(Expr):
    condition: Expr
    body: Tuple[Expr, ...]
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class Call(Expr):
    name: str
    args: Tuple[Expr, ...] = ()
    loc: Optional[Located] = field(default=None, compare=False)


@dataclass(frozen=True)
class ParsedFunction:
    """One parsed toy function: `fn name(params) -> (the_return) { stmts }`."""

    name: str
    params: Tuple[str, ...]
    the_return: str
    stmts: Tuple[Expr, ...]
    loc: Optional[Located] = field(default=None, compare=False)
