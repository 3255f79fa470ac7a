from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import JITConfig
from .errors import CompileError
from .interp import Interpreter, InterpreterError
from .jit import JIT
from .parser import parse_program
from .printer import format_function


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="toyjitc", description="Compile and run toy-language functions")
    p.add_argument("source", type=Path, help="Path to a source file holding one or more functions")
    p.add_argument("args", nargs="*", type=int, help="Integer arguments passed to the entry function")
    p.add_argument("--entry", default=None, help="Function to run (default: the last function in the file)")
    p.add_argument("--emit-ir", action="store_true", help="Print the SSA IR of every function and exit")
    p.add_argument("--emit-llvm", action="store_true", help="Print the LLVM IR of every function and exit")
    p.add_argument("--interpret", action="store_true", help="Evaluate with the tree-walking interpreter instead")
    p.add_argument("--opt-level", type=int, choices=range(4), default=None, help="LLVM optimization level")
    p.add_argument("--no-verify", action="store_true", help="Skip the IR verifier")
    p.add_argument("--log-file", type=Path, default=None, help="Also write log records to this file")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    return p


_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


def _configure_logging(verbosity: int, log_file: Optional[Path] = None) -> logging.Logger:
    """Route the `toyjit` logger tree to stderr and, with `--log-file`, to a file."""
    level = _LEVELS[min(verbosity, len(_LEVELS) - 1)]
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logger = logging.getLogger("toyjit")
    for old in logger.handlers[:]:
        logger.removeHandler(old)
        old.close()
    formatter = logging.Formatter("%(levelname)s %(name)s: %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def main(argv: Optional[List[str]] = None) -> int:
    p = _build_parser()
    args = p.parse_intermixed_args(argv)

    _configure_logging(args.verbose, args.log_file)

    try:
        config = JITConfig.from_env()
    except ValueError as err:
        p.error(str(err))
        return 2
    if args.opt_level is not None:
        config = dataclasses.replace(config, opt_level=args.opt_level)
    if args.no_verify:
        config = dataclasses.replace(config, verify=False)

    try:
        source = args.source.read_text(encoding="utf-8")
    except OSError as err:
        print(f"error: cannot read {args.source}: {err.strerror}", file=sys.stderr)
        return 1

    try:
        functions = parse_program(source)
        entry = args.entry or functions[-1].name
        if entry not in {fn.name for fn in functions}:
            print(f"error: no function named '{entry}' in {args.source}", file=sys.stderr)
            return 1

        if args.interpret:
            print(Interpreter(functions).call(entry, args.args))
            return 0

        jit = JIT(config)
        for parsed in functions:
            jit.compile_parsed(parsed)
            if args.emit_ir:
                print(format_function(jit.functions[parsed.name]))
            if args.emit_llvm:
                print(jit.llvm_ir(parsed.name))
        if args.emit_ir or args.emit_llvm:
            return 0

        fn = jit.get_function(entry)
        expected = len(jit.functions[entry].signature.params)
        if len(args.args) != expected:
            print(f"error: {entry} expects {expected} arguments, got {len(args.args)}", file=sys.stderr)
            return 1
        print(fn(*args.args))
        return 0
    except (CompileError, InterpreterError) as err:
        print(f"error: {_describe(err)}", file=sys.stderr)
        return 1


def _describe(err: Exception) -> str:
    if isinstance(err, CompileError):
        return err.format_human()
    return str(err)


if __name__ == "__main__":
    raise SystemExit(main())
