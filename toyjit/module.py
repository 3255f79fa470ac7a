"""Function symbol table in front of the JIT backend.

A `Module` owns every function declaration of one JIT instance. Functions go
through three steps:

  declare_function  -> a `FuncId` for a (name, signature), idempotent
  define_function   -> attach a verified IR body to a declared id
  finalize_function -> resolve callees, emit machine code, return its address

Callers that only need to call a function declare it and import it into the
function being built with `declare_func_in_func`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from . import ir
from .errors import ModuleError, VerifierError
from .frontend import FunctionBuilder
from .verifier import verify_function

if TYPE_CHECKING:
    from .codegen import JITBackend

logger = logging.getLogger(__name__)


class Linkage(Enum):
    """Visibility of a declared function; higher ranks win when merging."""

    IMPORT = 0
    LOCAL = 1
    PREEMPTIBLE = 2
    EXPORT = 3

    def merge(self, other: "Linkage") -> "Linkage":
        if self is other:
            return self
        if Linkage.LOCAL in (self, other):
            raise ModuleError(f"cannot merge {self.name.lower()} linkage with {other.name.lower()} linkage")
        return self if self.value > other.value else other

    def is_definable(self) -> bool:
        return self is not Linkage.IMPORT


@dataclass(frozen=True)
class FuncId:
    index: int

    def __str__(self) -> str:
        return f"funcid{self.index}"


@dataclass
class FunctionDeclaration:
    name: str
    linkage: Linkage
    signature: ir.Signature


@dataclass
class ResolvedCallee:
    """A callee after relocation; `address` is None for a call to the function itself."""

    name: str
    signature: ir.Signature
    address: Optional[int]


@dataclass
class _Slot:
    decl: FunctionDeclaration
    func: Optional[ir.Function] = None
    address: Optional[int] = None
    finalizing: bool = False


class Module:
    def __init__(self, backend: "JITBackend", verify: bool = True) -> None:
        self.backend = backend
        self.verify = verify
        self._slots: List[_Slot] = []
        self._names: Dict[str, FuncId] = {}
        self._symbols: Dict[str, int] = {}

    # --- declarations --------------------------------------------------

    def declare_function(self, name: str, linkage: Linkage, signature: ir.Signature) -> FuncId:
        """Declare `name`, or return the existing id when the signature matches."""
        existing = self._names.get(name)
        if existing is not None:
            slot = self._slots[existing.index]
            if slot.decl.signature != signature:
                raise ModuleError(
                    f"incompatible declaration of '{name}': {signature} conflicts with {slot.decl.signature}"
                )
            slot.decl.linkage = slot.decl.linkage.merge(linkage)
            return existing
        func_id = FuncId(len(self._slots))
        self._slots.append(_Slot(decl=FunctionDeclaration(name=name, linkage=linkage, signature=signature)))
        self._names[name] = func_id
        logger.debug("declared %s %s as %s", name, signature, func_id)
        return func_id

    def declaration(self, func_id: FuncId) -> FunctionDeclaration:
        return self._slot(func_id).decl

    def get_name(self, name: str) -> Optional[FuncId]:
        return self._names.get(name)

    def declare_func_in_func(self, func_id: FuncId, builder: FunctionBuilder) -> ir.FuncRef:
        """Make `func_id` callable from the function under construction in `builder`."""
        decl = self._slot(func_id).decl
        return builder.import_function(ir.ExtFuncData(name=decl.name, signature=decl.signature, func_id=func_id.index))

    def define_symbol(self, name: str, address: int) -> None:
        """Register an external symbol (for example a ctypes callback) that compiled code may call."""
        if not address:
            raise ModuleError(f"symbol '{name}' needs a non-null address")
        self._symbols[name] = address

    # --- definitions ---------------------------------------------------

    def define_function(self, func_id: FuncId, func: ir.Function) -> None:
        slot = self._slot(func_id)
        name = slot.decl.name
        if not slot.decl.linkage.is_definable():
            raise ModuleError(f"cannot define imported function '{name}'")
        if slot.func is not None:
            raise ModuleError(f"duplicate definition of '{name}'")
        if func.signature != slot.decl.signature:
            raise ModuleError(f"definition of '{name}' has signature {func.signature}, declared {slot.decl.signature}")
        for ref, data in func.ext_funcs.items():
            if data.func_id >= len(self._slots) or self._slots[data.func_id].decl.name != data.name:
                raise ModuleError(f"'{name}' references undeclared function '{data.name}' ({ref})")
        if self.verify:
            try:
                verify_function(func)
            except VerifierError as exc:
                raise ModuleError(f"verifier rejected '{name}': {exc}") from exc
        slot.func = func
        logger.debug("defined %s", name)

    def is_defined(self, func_id: FuncId) -> bool:
        return self._slot(func_id).func is not None

    def clear_definition(self, func_id: FuncId) -> None:
        """Drop the body of a function that was defined but never finalized."""
        slot = self._slot(func_id)
        if slot.address is not None:
            raise ModuleError(f"'{slot.decl.name}' is already finalized")
        slot.func = None

    def finalize_function(self, func_id: FuncId) -> int:
        """Resolve callees of a defined function and return the address of its machine code."""
        slot = self._slot(func_id)
        if slot.address is not None:
            return slot.address
        name = slot.decl.name
        if slot.func is None:
            raise ModuleError(f"cannot finalize '{name}': function is not defined")
        if slot.finalizing:
            raise ModuleError(f"cannot finalize '{name}': cyclic dependency between callees")
        slot.finalizing = True
        try:
            callees = {ref: self._resolve(data, func_id) for ref, data in slot.func.ext_funcs.items()}
            slot.address = self.backend.compile_function(name, slot.func, callees)
        finally:
            slot.finalizing = False
        logger.debug("finalized %s at %#x", name, slot.address)
        return slot.address

    def _resolve(self, data: ir.ExtFuncData, caller: FuncId) -> ResolvedCallee:
        if data.func_id == caller.index:
            return ResolvedCallee(name=data.name, signature=data.signature, address=None)
        callee = self._slots[data.func_id]
        if callee.func is not None:
            address = self.finalize_function(FuncId(data.func_id))
        elif data.name in self._symbols:
            address = self._symbols[data.name]
        else:
            address = self.backend.lookup_symbol(data.name)
        if address is None:
            raise ModuleError(f"can't resolve symbol '{data.name}'")
        return ResolvedCallee(name=data.name, signature=data.signature, address=address)

    def _slot(self, func_id: FuncId) -> _Slot:
        if not 0 <= func_id.index < len(self._slots):
            raise ModuleError(f"unknown function id {func_id}")
        return self._slots[func_id.index]
