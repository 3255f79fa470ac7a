"""The JIT driver: toy source text in, callable machine code out."""

from __future__ import annotations

import ctypes
import logging
from typing import Callable, Dict, List, Optional

from . import ast, ir
from .codegen import JITBackend
from .config import JITConfig
from .errors import ModuleError
from .module import Linkage, Module
from .parser import parse_function, parse_program
from .printer import format_function
from .translate import translate_function

logger = logging.getLogger(__name__)


class JIT:
    """Compiles toy functions into one in-process module.

    Functions compiled by the same instance can call each other (a callee
    must be compiled before its callers). Machine code lives as long as the
    instance, so keep it alive while using the returned addresses/callables.
    """

    def __init__(self, config: Optional[JITConfig] = None) -> None:
        self.config = config or JITConfig()
        self.backend = JITBackend(opt_level=self.config.opt_level)
        self.module = Module(self.backend, verify=self.config.verify)
        # name -> IR of every function compiled so far
        self.functions: Dict[str, ir.Function] = {}

    def compile(self, source: str) -> int:
        """Compile a string holding one toy function; return its machine-code address."""
        return self.compile_parsed(parse_function(source))

    def compile_program(self, source: str) -> List[str]:
        """Compile every function of `source` in order; return their names."""
        names: List[str] = []
        for parsed in parse_program(source):
            self.compile_parsed(parsed)
            names.append(parsed.name)
        return names

    def compile_parsed(self, parsed: ast.ParsedFunction) -> int:
        logger.debug("translating %s(%s) -> %s", parsed.name, ", ".join(parsed.params), parsed.the_return)
        func = translate_function(parsed, self.module)
        if self.config.dump_ir:
            logger.debug("IR for %s:\n%s", parsed.name, format_function(func))

        # Functions must be declared before they can be defined.
        func_id = self.module.declare_function(parsed.name, Linkage.EXPORT, func.signature)
        self.module.define_function(func_id, func)
        # Finalizing resolves the callees and emits the machine code.
        try:
            address = self.module.finalize_function(func_id)
        except ModuleError:
            # Leave the name free for a corrected definition.
            self.module.clear_definition(func_id)
            raise
        self.functions[parsed.name] = func
        logger.info("compiled %s at %#x", parsed.name, address)
        return address

    def translate(self, source: str) -> ir.Function:
        """Lower a single function to IR without defining or emitting it."""
        return translate_function(parse_function(source), self.module)

    def compile_function(self, source: str) -> Callable[..., int]:
        parsed = parse_function(source)
        self.compile_parsed(parsed)
        return self.get_function(parsed.name)

    def get_function(self, name: str) -> Callable[..., int]:
        """A ctypes callable for a compiled function (`int32 f(int32, ...)`)."""
        func_id = self.module.get_name(name)
        if func_id is None or name not in self.functions:
            raise ModuleError(f"function '{name}' has not been compiled")
        address = self.module.finalize_function(func_id)
        nparams = len(self.module.declaration(func_id).signature.params)
        prototype = ctypes.CFUNCTYPE(ctypes.c_int32, *([ctypes.c_int32] * nparams))
        return prototype(address)

    def define_symbol(self, name: str, address: int) -> None:
        """Let compiled code call `name` at `address` (an `int32 (*)(int32, ...)` function)."""
        self.module.define_symbol(name, address)

    def llvm_ir(self, name: str) -> str:
        try:
            return self.backend.llvm_ir[name]
        except KeyError:
            raise ModuleError(f"no LLVM IR recorded for '{name}'") from None
