"""Tree-walking evaluator for parsed toy functions.

It gives compiled code a reference to compare against: values are 32-bit
two's complement integers, arithmetic wraps, comparisons are signed and
division is unsigned, exactly as the lowering emits them.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence, Set

from . import ast
from .errors import UndeclaredVariableError
from .translate import parse_literal

_MASK = 0xFFFFFFFF


class InterpreterError(Exception):
    pass


def wrap_i32(value: int) -> int:
    value &= _MASK
    return value - (1 << 32) if value & 0x80000000 else value


class Interpreter:
    def __init__(
        self,
        functions: Iterable[ast.ParsedFunction] = (),
        externals: Optional[Mapping[str, Callable[..., int]]] = None,
    ) -> None:
        self.functions: Dict[str, ast.ParsedFunction] = {fn.name: fn for fn in functions}
        self.externals: Dict[str, Callable[..., int]] = dict(externals or {})

    def call(self, name: str, args: Sequence[int]) -> int:
        fn = self.functions.get(name)
        if fn is not None:
            return self.run(fn, args)
        external = self.externals.get(name)
        if external is None:
            raise InterpreterError(f"unknown function '{name}'")
        return wrap_i32(external(*args))

    def run(self, fn: ast.ParsedFunction, args: Sequence[int]) -> int:
        if len(args) != len(fn.params):
            raise InterpreterError(f"{fn.name} expects {len(fn.params)} args, got {len(args)}")
        frame = _Frame(_declared_names(fn))
        for name, value in zip(fn.params, args):
            frame.values[name] = wrap_i32(value)
        frame.values[fn.the_return] = 0
        for stmt in fn.stmts:
            self._eval(stmt, frame)
        return frame.values[fn.the_return]

    def _eval(self, expr: ast.Expr, frame: "_Frame") -> int:
        if isinstance(expr, ast.Literal):
            return parse_literal(expr)
        if isinstance(expr, ast.Identifier):
            return frame.read(expr.name, expr.loc)
        if isinstance(expr, ast.Assign):
            value = self._eval(expr.value, frame)
            frame.write(expr.name, value, expr.loc)
            return value
        if isinstance(expr, ast.Arith):
            lhs = self._eval(expr.lhs, frame)
            rhs = self._eval(expr.rhs, frame)
            return _arith(expr.op, lhs, rhs)
        if isinstance(expr, ast.Compare):
            lhs = self._eval(expr.lhs, frame)
            rhs = self._eval(expr.rhs, frame)
            return int(_compare(expr.op, lhs, rhs))
        if isinstance(expr, ast.IfElse):
            body = expr.then_body if self._eval(expr.condition, frame) != 0 else expr.else_body
            result = 0
            for stmt in body:
                result = self._eval(stmt, frame)
            return result
        if isinstance(expr, ast.WhileLoop):
            while self._eval(expr.condition, frame) != 0:
                for stmt in expr.body:
                    self._eval(stmt, frame)
            return 0
        if isinstance(expr, ast.Call):
            args = [self._eval(arg, frame) for arg in expr.args]
            return self.call(expr.name, args)
        raise InterpreterError(f"unsupported expression {type(expr).__name__}")


class _Frame:
    def __init__(self, declared: Set[str]) -> None:
        self.declared = declared
        self.values: Dict[str, int] = {}

    def read(self, name: str, loc) -> int:
        if name not in self.declared:
            raise UndeclaredVariableError(name, loc)
        # Declared but not yet assigned reads as zero, like the compiled code.
        return self.values.get(name, 0)

    def write(self, name: str, value: int, loc) -> None:
        if name not in self.declared:
            raise UndeclaredVariableError(name, loc)
        self.values[name] = value


def _declared_names(fn: ast.ParsedFunction) -> Set[str]:
    names = set(fn.params)
    names.add(fn.the_return)
    pending = list(fn.stmts)
    while pending:
        stmt = pending.pop()
        if isinstance(stmt, ast.Assign):
            names.add(stmt.name)
        elif isinstance(stmt, ast.IfElse):
            pending.extend(stmt.then_body)
            pending.extend(stmt.else_body)
        elif isinstance(stmt, ast.WhileLoop):
            pending.extend(stmt.body)
    return names


def _arith(op: ast.ArithOp, lhs: int, rhs: int) -> int:
    if op is ast.ArithOp.ADD:
        return wrap_i32(lhs + rhs)
    if op is ast.ArithOp.SUB:
        return wrap_i32(lhs - rhs)
    if op is ast.ArithOp.MUL:
        return wrap_i32(lhs * rhs)
    divisor = rhs & _MASK
    if divisor == 0:
        raise InterpreterError("division by zero")
    return wrap_i32((lhs & _MASK) // divisor)


def _compare(op: ast.CompareOp, lhs: int, rhs: int) -> bool:
    if op is ast.CompareOp.EQ:
        return lhs == rhs
    if op is ast.CompareOp.NE:
        return lhs != rhs
    if op is ast.CompareOp.LT:
        return lhs < rhs
    if op is ast.CompareOp.LE:
        return lhs <= rhs
    if op is ast.CompareOp.GT:
        return lhs > rhs
    return lhs >= rhs
