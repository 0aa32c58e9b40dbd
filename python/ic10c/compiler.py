"""Pipeline driver: AST in, assembled listing (or a compile error) out."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .assembler import Listing, assemble
from .config import TargetConfig
from .errors import CompileError, NestingTooDeep
from .instructions import Code, instruction_count
from .isel import select
from .lowering import lower
from .nodes import Program, nesting_depth
from .peephole import optimize as optimize_code
from .regalloc import allocate
from .scope import resolve
from .symbols import SymbolKind

LOGGER = logging.getLogger("ic10c.compiler")

LOG_ENV = "IC10C_LOG"

# The tree walks recurse once or twice per level of expression nesting.
RECURSION_LIMIT = 8000


def configure_logging(level: Optional[str] = None) -> None:
    if level is None:
        level = os.environ.get(LOG_ENV, "WARNING")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass
class CompileResult:
    listing: Listing
    registers: Dict[str, int] = field(default_factory=dict)
    allocation_stats: Dict[str, Any] = field(default_factory=dict)
    unoptimized_count: int = 0
    code: Code = field(default_factory=list)

    @property
    def lines(self) -> List[str]:
        return self.listing.lines()

    @property
    def text(self) -> str:
        return self.listing.text

    def register_of(self, name: str) -> int:
        return self.registers[name]


@dataclass
class CompileOutcome:
    result: Optional[CompileResult] = None
    error: Optional[CompileError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@contextmanager
def _recursion_limit(limit: int) -> Iterator[None]:
    previous = sys.getrecursionlimit()
    sys.setrecursionlimit(max(previous, limit))
    try:
        yield
    finally:
        sys.setrecursionlimit(previous)


def compile_program(
    program: Program,
    config: Optional[TargetConfig] = None,
    *,
    optimize: bool = True,
) -> CompileResult:
    """Compile ``program``; raises :class:`CompileError` on the first failure."""

    cfg = config or TargetConfig()
    try:
        with _recursion_limit(RECURSION_LIMIT):
            return _compile(program, cfg, optimize)
    except RecursionError:
        depth, where = nesting_depth(program)
        raise NestingTooDeep(depth, location=where) from None


def _compile(program: Program, cfg: TargetConfig, optimize: bool) -> CompileResult:
    resolution = resolve(program, cfg)
    lowered = lower(resolution, cfg)
    if LOGGER.isEnabledFor(logging.DEBUG):
        LOGGER.debug("IR:\n%s", "\n".join(lowered.dump()))
    allocation = allocate(lowered, cfg)
    code = select(lowered, allocation)
    unoptimized = instruction_count(code)
    if optimize:
        code = optimize_code(code, observable=frozenset(allocation.pinned_registers))
    listing = assemble(code, cfg)

    registers: Dict[str, int] = {}
    for sym, reg in allocation.registers.items():
        if sym.kind is SymbolKind.TEMPORARY:
            continue
        registers.setdefault(sym.name, reg)
    LOGGER.info(
        "compiled %d lines (%d before optimization), max register pressure %d",
        len(listing),
        unoptimized,
        allocation.stats.get("max_pressure", 0),
    )
    return CompileResult(
        listing=listing,
        registers=registers,
        allocation_stats=dict(allocation.stats),
        unoptimized_count=unoptimized,
        code=code,
    )


def try_compile(
    program: Program,
    config: Optional[TargetConfig] = None,
    *,
    optimize: bool = True,
) -> CompileOutcome:
    """Like :func:`compile_program` but returns the error instead of raising."""

    try:
        return CompileOutcome(result=compile_program(program, config, optimize=optimize))
    except CompileError as exc:
        LOGGER.debug("compilation failed: %s (%s)", exc, exc.kind.value)
        return CompileOutcome(error=exc)


__all__ = [
    "CompileOutcome",
    "CompileResult",
    "LOG_ENV",
    "compile_program",
    "configure_logging",
    "try_compile",
]
