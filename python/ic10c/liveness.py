"""Backward dataflow liveness.

The solver is generic over what a "value" is: the register allocator runs it
over IR symbols, the peephole optimizer over physical registers.

Live ranges are measured in half-steps so that an operand read by an
instruction and the destination written by it do not overlap: instruction
``i`` reads at point ``2*i`` and writes at ``2*i + 1``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    AbstractSet,
    Callable,
    Dict,
    FrozenSet,
    Hashable,
    List,
    Sequence,
    Tuple,
)

from . import ir
from .symbols import Symbol

LOGGER = logging.getLogger("ic10c.liveness")


def compute_liveness(
    count: int,
    successors: Sequence[Sequence[int]],
    uses: Callable[[int], AbstractSet[Hashable]],
    defs: Callable[[int], AbstractSet[Hashable]],
    exit_live: AbstractSet[Hashable] = frozenset(),
) -> Tuple[List[FrozenSet[Hashable]], List[FrozenSet[Hashable]]]:
    """Return ``(live_in, live_out)`` per index.

    A successor equal to ``count`` stands for the program exit, where
    ``exit_live`` is live.
    """

    use_sets = [frozenset(uses(idx)) for idx in range(count)]
    def_sets = [frozenset(defs(idx)) for idx in range(count)]
    live_in: List[FrozenSet[Hashable]] = [frozenset()] * count
    live_out: List[FrozenSet[Hashable]] = [frozenset()] * count
    exit_set = frozenset(exit_live)
    rounds = 0
    changed = True
    while changed:
        changed = False
        rounds += 1
        for idx in range(count - 1, -1, -1):
            out = set()
            for succ in successors[idx]:
                out |= exit_set if succ >= count else live_in[succ]
            new_out = frozenset(out)
            new_in = use_sets[idx] | (new_out - def_sets[idx])
            if new_out != live_out[idx] or new_in != live_in[idx]:
                live_out[idx] = new_out
                live_in[idx] = new_in
                changed = True
    LOGGER.debug("liveness converged after %d rounds over %d nodes", rounds, count)
    return live_in, live_out


@dataclass(frozen=True)
class LiveRange:
    start: int
    end: int

    def overlaps(self, other: "LiveRange") -> bool:
        return self.start < other.end and other.start < self.end

    def union(self, other: "LiveRange") -> "LiveRange":
        return LiveRange(min(self.start, other.start), max(self.end, other.end))

    def __str__(self) -> str:
        return f"[{self.start}, {self.end})"


def read_point(index: int) -> int:
    return 2 * index


def write_point(index: int) -> int:
    return 2 * index + 1


def live_ranges(program: ir.IRProgram) -> Dict[Symbol, LiveRange]:
    """Hull of every point where a symbol is written or live."""

    ops = program.ops
    live_in, live_out = compute_liveness(
        len(ops),
        program.successors(),
        lambda idx: set(ops[idx].uses()),
        lambda idx: set(ops[idx].defs()),
    )
    points: Dict[Symbol, List[int]] = {}

    def mark(sym: Symbol, lo: int, hi: int) -> None:
        bounds = points.get(sym)
        if bounds is None:
            points[sym] = [lo, hi]
        else:
            bounds[0] = min(bounds[0], lo)
            bounds[1] = max(bounds[1], hi)

    for idx, op in enumerate(ops):
        for sym in live_in[idx]:
            mark(sym, read_point(idx), read_point(idx) + 1)
        for sym in op.defs():
            mark(sym, write_point(idx), write_point(idx) + 1)
        for sym in live_out[idx]:
            mark(sym, write_point(idx), read_point(idx + 1) + 1)

    ranges = {sym: LiveRange(lo, hi) for sym, (lo, hi) in points.items()}
    for sym, (decl, close) in program.scope_ranges.items():
        if close <= decl:
            continue
        scope = LiveRange(read_point(decl), read_point(close))
        ranges[sym] = ranges[sym].union(scope) if sym in ranges else scope
    return ranges


__all__ = ["LiveRange", "compute_liveness", "live_ranges", "read_point", "write_point"]
