from __future__ import annotations

import pytest

from toyjit import ir
from toyjit.errors import ModuleError
from toyjit.module import FuncId, Linkage, Module
from toyjit.parser import parse_function
from toyjit.translate import translate_function


def _sig(nparams: int) -> ir.Signature:
    return ir.Signature(params=[ir.AbiParam(ir.I32)] * nparams, returns=[ir.AbiParam(ir.I32)])


def _define(module: Module, source: str) -> FuncId:
    func = translate_function(parse_function(source), module)
    func_id = module.declare_function(func.name, Linkage.EXPORT, func.signature)
    module.define_function(func_id, func)
    return func_id


def test_declare_is_idempotent_for_matching_signature(module):
    first = module.declare_function("g", Linkage.IMPORT, _sig(1))
    second = module.declare_function("g", Linkage.EXPORT, _sig(1))
    assert first == second
    assert module.get_name("g") == first
    assert module.declaration(first).linkage is Linkage.EXPORT


def test_declare_with_conflicting_signature_fails(module):
    module.declare_function("g", Linkage.EXPORT, _sig(1))
    with pytest.raises(ModuleError, match="incompatible declaration of 'g'"):
        module.declare_function("g", Linkage.EXPORT, _sig(2))


@pytest.mark.parametrize(
    "a,b,merged",
    [
        (Linkage.IMPORT, Linkage.IMPORT, Linkage.IMPORT),
        (Linkage.IMPORT, Linkage.PREEMPTIBLE, Linkage.PREEMPTIBLE),
        (Linkage.PREEMPTIBLE, Linkage.EXPORT, Linkage.EXPORT),
        (Linkage.EXPORT, Linkage.IMPORT, Linkage.EXPORT),
        (Linkage.LOCAL, Linkage.LOCAL, Linkage.LOCAL),
    ],
)
def test_linkage_merge(a, b, merged):
    assert a.merge(b) is merged
    assert b.merge(a) is merged


def test_local_linkage_does_not_merge_with_others():
    with pytest.raises(ModuleError, match="cannot merge local linkage"):
        Linkage.LOCAL.merge(Linkage.EXPORT)


def test_define_and_finalize(module, backend):
    func_id = _define(module, "fn one() -> (r) { r = 1 }")
    assert module.is_defined(func_id)
    address = module.finalize_function(func_id)
    assert address
    # Finalizing again returns the cached address without recompiling.
    assert module.finalize_function(func_id) == address
    assert list(backend.compiled) == ["one"]


def test_duplicate_definition_is_rejected(module):
    _define(module, "fn one() -> (r) { r = 1 }")
    with pytest.raises(ModuleError, match="duplicate definition of 'one'"):
        _define(module, "fn one() -> (r) { r = 2 }")


def test_imported_function_cannot_be_defined(module):
    func = translate_function(parse_function("fn g() -> (r) { r = 1 }"), module)
    func_id = module.declare_function("g", Linkage.IMPORT, func.signature)
    with pytest.raises(ModuleError, match="cannot define imported function 'g'"):
        module.define_function(func_id, func)


def test_definition_must_match_declared_signature(module):
    func = translate_function(parse_function("fn g(a) -> (r) { r = a }"), module)
    func_id = module.declare_function("g", Linkage.EXPORT, _sig(0))
    with pytest.raises(ModuleError, match="definition of 'g' has signature"):
        module.define_function(func_id, func)


def test_verifier_failure_is_reported_as_module_error(module):
    func = translate_function(parse_function("fn g(a) -> (r) { r = a }"), module)
    func.blocks[func.entry].terminator = ir.Return([])
    func_id = module.declare_function("g", Linkage.EXPORT, func.signature)
    with pytest.raises(ModuleError, match="verifier rejected 'g'"):
        module.define_function(func_id, func)
    assert not module.is_defined(func_id)


def test_callee_defined_in_module_is_finalized_first(module, backend):
    _define(module, "fn double(x) -> (r) { r = x * 2 }")
    caller = _define(module, "fn quad(x) -> (r) { r = double(double(x)) }")
    module.finalize_function(caller)
    assert list(backend.compiled) == ["double", "quad"]
    (callee,) = backend.compiled["quad"].values()
    assert callee.name == "double"
    assert callee.address == module.finalize_function(module.get_name("double"))


def test_self_call_resolves_without_address(module, backend):
    func_id = _define(module, "fn down(n) -> (r) { r = if n > 0 { down(n - 1) } else { 0 } }")
    module.finalize_function(func_id)
    (callee,) = backend.compiled["down"].values()
    assert callee.name == "down"
    assert callee.address is None


def test_registered_symbol_resolves_external_call(module, backend):
    module.define_symbol("ext", 0xBEEF)
    func_id = _define(module, "fn f(a) -> (r) { r = ext(a) }")
    module.finalize_function(func_id)
    (callee,) = backend.compiled["f"].values()
    assert callee.address == 0xBEEF


def test_process_symbol_lookup_is_the_last_resort(module, backend):
    backend.symbols["abs"] = 0xABC
    func_id = _define(module, "fn f(a) -> (r) { r = abs(a) }")
    module.finalize_function(func_id)
    (callee,) = backend.compiled["f"].values()
    assert callee.address == 0xABC


def test_unresolved_symbol_fails_finalize(module):
    func_id = _define(module, "fn f(a) -> (r) { r = nowhere(a) }")
    with pytest.raises(ModuleError, match="can't resolve symbol 'nowhere'"):
        module.finalize_function(func_id)


def test_null_symbol_address_is_rejected(module):
    with pytest.raises(ModuleError, match="non-null address"):
        module.define_symbol("ext", 0)


def test_mutually_recursive_definitions_are_a_cycle(module):
    even = _define(module, "fn even(n) -> (r) { r = if n == 0 { 1 } else { odd(n - 1) } }")
    _define(module, "fn odd(n) -> (r) { r = if n == 0 { 0 } else { even(n - 1) } }")
    with pytest.raises(ModuleError, match="cyclic dependency"):
        module.finalize_function(even)


def test_finalize_undefined_function_fails(module):
    func_id = module.declare_function("g", Linkage.EXPORT, _sig(0))
    with pytest.raises(ModuleError, match="function is not defined"):
        module.finalize_function(func_id)


def test_clear_definition_allows_redefinition(module):
    func_id = _define(module, "fn f(a) -> (r) { r = nowhere(a) }")
    with pytest.raises(ModuleError):
        module.finalize_function(func_id)
    module.clear_definition(func_id)
    module.define_symbol("nowhere", 0x10)
    _define(module, "fn f(a) -> (r) { r = nowhere(a) }")
    assert module.finalize_function(func_id)


def test_unknown_func_id(module):
    with pytest.raises(ModuleError, match="unknown function id"):
        module.declaration(FuncId(7))
