from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class JITConfig:
    """Knobs for one `JIT` instance.

    - `opt_level`: LLVM code generation level, 0-3.
    - `verify`: run the IR verifier before a function is defined.
    - `dump_ir`: log each function's IR and LLVM IR at DEBUG level.
    """

    opt_level: int = 2
    verify: bool = True
    dump_ir: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.opt_level <= 3:
            raise ValueError(f"opt_level must be between 0 and 3, got {self.opt_level}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "JITConfig":
        """Read TOYJIT_OPT_LEVEL, TOYJIT_VERIFY and TOYJIT_DUMP_IR, defaulting the rest."""
        env = os.environ if environ is None else environ
        kwargs = {}
        if "TOYJIT_OPT_LEVEL" in env:
            raw = env["TOYJIT_OPT_LEVEL"]
            try:
                kwargs["opt_level"] = int(raw)
            except ValueError:
                raise ValueError(f"TOYJIT_OPT_LEVEL must be an integer, got {raw!r}") from None
        if "TOYJIT_VERIFY" in env:
            kwargs["verify"] = _parse_bool("TOYJIT_VERIFY", env["TOYJIT_VERIFY"])
        if "TOYJIT_DUMP_IR" in env:
            kwargs["dump_ir"] = _parse_bool("TOYJIT_DUMP_IR", env["TOYJIT_DUMP_IR"])
        return cls(**kwargs)


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")
