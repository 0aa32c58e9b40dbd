"""Linear-scan register allocation over IR live ranges."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from . import ir
from .config import DEFAULT_CONFIG, TargetConfig
from .errors import RegisterExhaustion
from .liveness import LiveRange, live_ranges
from .symbols import Symbol

LOGGER = logging.getLogger("ic10c.regalloc")


@dataclass
class Allocation:
    registers: Dict[Symbol, int] = field(default_factory=dict)
    ranges: Dict[Symbol, LiveRange] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)

    def register_of(self, sym: Symbol) -> int:
        return self.registers[sym]

    @property
    def pinned_registers(self) -> Tuple[int, ...]:
        return tuple(sorted({reg for sym, reg in self.registers.items() if sym.pinned}))

    def conflicts(self) -> List[Tuple[Symbol, Symbol]]:
        """Pairs of overlapping symbols that were given the same register."""

        found = []
        items = sorted(self.registers.items(), key=lambda item: item[0].uid)
        for idx, (a, reg_a) in enumerate(items):
            for b, reg_b in items[idx + 1:]:
                if reg_a == reg_b and self.ranges[a].overlaps(self.ranges[b]):
                    found.append((a, b))
        return found


class LinearScan:
    def __init__(self, program: ir.IRProgram, config: TargetConfig = DEFAULT_CONFIG) -> None:
        self.program = program
        self.config = config
        self.ranges = live_ranges(program)
        self.assigned: Dict[Symbol, int] = {}
        self.pinned: List[Tuple[Symbol, int]] = []

    def _pinned_on(self, reg: int, span: LiveRange) -> Optional[Symbol]:
        for sym, pinned_reg in self.pinned:
            if pinned_reg == reg and self.ranges[sym].overlaps(span):
                return sym
        return None

    def _allocate_pinned(self) -> None:
        # Explicit registers are claimed before any automatic pin is placed.
        pinned = sorted(
            (sym for sym in self.ranges if sym.pinned),
            key=lambda sym: (sym.register is None, self.ranges[sym].start, sym.uid),
        )
        auto_order = list(self.config.io_register_indices) + list(
            reversed(self.config.general_registers)
        )
        for sym in pinned:
            span = self.ranges[sym]
            if sym.register is not None:
                other = self._pinned_on(sym.register, span)
                if other is not None:
                    raise RegisterExhaustion(
                        2,
                        1,
                        detail=f"'{sym.name}' and '{other.name}' are both pinned to r{sym.register}",
                        location=sym.location,
                    )
                reg = sym.register
            else:
                reg = next((r for r in auto_order if self._pinned_on(r, span) is None), None)
                if reg is None:
                    live = 1 + sum(1 for other, _ in self.pinned if self.ranges[other].overlaps(span))
                    raise RegisterExhaustion(
                        live,
                        self.config.register_count,
                        detail=f"no register left to pin '{sym.name}'",
                        location=sym.location,
                    )
            self.pinned.append((sym, reg))
            self.assigned[sym] = reg
            LOGGER.debug("pinned %s to r%d for %s", sym.name, reg, span)

    def run(self) -> Allocation:
        self._allocate_pinned()
        general = self.config.general_registers
        pool = set(general)
        order = sorted(
            (sym for sym in self.ranges if not sym.pinned),
            key=lambda sym: (self.ranges[sym].start, self.ranges[sym].end, sym.uid),
        )
        active: List[Tuple[Symbol, int]] = []
        max_pressure = 0
        for sym in order:
            span = self.ranges[sym]
            active = [(other, reg) for other, reg in active if self.ranges[other].end > span.start]
            busy = {reg for _, reg in active}
            blocked = {
                reg for other, reg in self.pinned if reg in pool and self.ranges[other].overlaps(span)
            }
            free = [reg for reg in general if reg not in busy and reg not in blocked]
            if not free:
                raise RegisterExhaustion(
                    len(active) + len(blocked) + 1,
                    self.config.pool_size,
                    location=sym.location,
                )
            reg = free[0]
            active.append((sym, reg))
            self.assigned[sym] = reg
            max_pressure = max(max_pressure, len(active) + len(blocked))

        used = sorted(set(self.assigned.values()))
        stats: Dict[str, Any] = {
            "max_pressure": max_pressure,
            "available_registers": self.config.pool_size,
            "used_registers": used,
            "used_register_count": len(used),
            "pinned_count": len(self.pinned),
            "symbol_count": len(self.assigned),
        }
        LOGGER.debug("allocated %d symbols, max pressure %d", len(self.assigned), max_pressure)
        return Allocation(registers=dict(self.assigned), ranges=dict(self.ranges), stats=stats)


def allocate(program: ir.IRProgram, config: TargetConfig = DEFAULT_CONFIG) -> Allocation:
    """Assign a physical register to every symbol of ``program``."""

    return LinearScan(program, config).run()


__all__ = ["Allocation", "LinearScan", "allocate"]
