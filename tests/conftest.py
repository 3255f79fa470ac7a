from __future__ import annotations

from typing import Dict, Mapping, Optional

import pytest

from toyjit import ir
from toyjit.module import Module, ResolvedCallee


class RecordingBackend:
    """Stands in for the LLVM backend: hands out fake addresses and records what it compiled."""

    def __init__(self, symbols: Optional[Dict[str, int]] = None) -> None:
        self.compiled: Dict[str, Mapping[ir.FuncRef, ResolvedCallee]] = {}
        self.symbols = dict(symbols or {})
        self._next = 0x1000

    def compile_function(self, name: str, func: ir.Function, callees: Mapping[ir.FuncRef, ResolvedCallee]) -> int:
        self.compiled[name] = dict(callees)
        self._next += 0x10
        return self._next

    def lookup_symbol(self, name: str) -> Optional[int]:
        return self.symbols.get(name)


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def module(backend: RecordingBackend) -> Module:
    return Module(backend)
