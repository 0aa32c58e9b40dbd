"""
ic10c - compiler backend for the IC10 programmable logic chip.

Modules:
- nodes:        input AST handed over by the parser
- scope:        scope resolution over :mod:`symbols`
- lowering:     structured control flow to the linear :mod:`ir`
- regalloc:     linear-scan register allocation (uses :mod:`liveness`)
- isel:         IR to IC10 instructions (:mod:`instructions`, :mod:`opcodes`)
- peephole:     local rewrites to a fixed point
- assembler:    two-pass label resolution and line-limit check
- simulator:    reference interpreter for assembled listings
- compiler:     the pipeline driver
"""

from __future__ import annotations

from .assembler import Listing, assemble  # noqa: F401
from .compiler import (  # noqa: F401
    CompileOutcome,
    CompileResult,
    compile_program,
    configure_logging,
    try_compile,
)
from .config import DEFAULT_CONFIG, TargetConfig  # noqa: F401
from .errors import (  # noqa: F401
    CompileError,
    DuplicateBinding,
    DuplicateLabel,
    ErrorKind,
    InternalCompilerError,
    InvalidDeviceAlias,
    InvalidStatement,
    LineLimitExceeded,
    NestingTooDeep,
    RegisterExhaustion,
    TypeMismatch,
    UnboundIdentifier,
    UnresolvedLabel,
)
from .instructions import parse_listing  # noqa: F401
from .simulator import Simulator, TickResult  # noqa: F401

__all__ = [
    "CompileError",
    "CompileOutcome",
    "CompileResult",
    "DEFAULT_CONFIG",
    "DuplicateBinding",
    "DuplicateLabel",
    "ErrorKind",
    "InternalCompilerError",
    "InvalidDeviceAlias",
    "InvalidStatement",
    "LineLimitExceeded",
    "NestingTooDeep",
    "Listing",
    "RegisterExhaustion",
    "Simulator",
    "TargetConfig",
    "TickResult",
    "TypeMismatch",
    "UnboundIdentifier",
    "UnresolvedLabel",
    "assemble",
    "compile_program",
    "configure_logging",
    "parse_listing",
    "try_compile",
]
__version__ = "0.1.0"
