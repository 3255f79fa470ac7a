"""Error taxonomy for the toy compiler.

Every failure surfaced by `JIT.compile` is a `CompileError`; callers that only
care about "did it compile" can catch that one type.
"""

from __future__ import annotations

from typing import Optional

from .ast import Located


class CompileError(Exception):
    def __init__(self, message: str, loc: Optional[Located] = None) -> None:
        self.message = message
        self.loc = loc
        super().__init__(self.format_human())

    def format_human(self) -> str:
        if self.loc is None:
            return self.message
        return f"{self.loc.line}:{self.loc.column}: {self.message}"


class ParseError(CompileError):
    pass


class TranslationError(CompileError):
    pass


class UndeclaredVariableError(TranslationError):
    def __init__(self, name: str, loc: Optional[Located] = None) -> None:
        self.name = name
        super().__init__(f"undeclared variable '{name}'", loc)


class MalformedLiteralError(TranslationError):
    def __init__(self, text: str, loc: Optional[Located] = None) -> None:
        self.text = text
        super().__init__(f"literal '{text}' is not a valid i32", loc)


class FrontendError(CompileError):
    """Misuse of the SSA function builder (a lowering bug, not a user error)."""


class VerifierError(CompileError):
    pass


class ModuleError(CompileError):
    pass
