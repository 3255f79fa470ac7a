"""A small JIT for a toy expression language, lowered through block-parameter SSA to LLVM."""

from .config import JITConfig
from .errors import (
    CompileError,
    FrontendError,
    MalformedLiteralError,
    ModuleError,
    ParseError,
    TranslationError,
    UndeclaredVariableError,
    VerifierError,
)
from .jit import JIT
from .parser import parse_function, parse_program

__all__ = [
    "JIT",
    "JITConfig",
    "CompileError",
    "FrontendError",
    "MalformedLiteralError",
    "ModuleError",
    "ParseError",
    "TranslationError",
    "UndeclaredVariableError",
    "VerifierError",
    "parse_function",
    "parse_program",
]

__version__ = "0.1.0"
