"""Reference interpreter for assembled listings.

Used by the tests to check that compiled programs behave like their source.
Devices are plain dictionaries of logic values; unknown fields read as 0.
"""

from __future__ import annotations

import logging
from collections import Counter
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from .assembler import Listing
from .config import DEFAULT_CONFIG, TargetConfig
from .instructions import (
    RA_INDEX,
    DeviceSlot,
    Instruction,
    LabelRef,
    LineNumber,
    LogicType,
    Number,
    Register,
)

LOGGER = logging.getLogger("ic10c.simulator")


class TickResult(str, Enum):
    YIELD = "yield"
    END = "end"
    LIMIT_HIT = "limit_hit"


class SimulatorError(RuntimeError):
    pass


class Simulator:
    def __init__(
        self,
        program: Union[Listing, Sequence[Instruction]],
        config: TargetConfig = DEFAULT_CONFIG,
    ) -> None:
        self.instructions: List[Instruction] = list(program)
        self.config = config
        self.registers: List[float] = [0.0] * (RA_INDEX + 1)
        self.devices: Dict[str, Dict[str, float]] = {}
        self.pc = 0
        self.line_counts: Counter = Counter()
        self.slept = 0.0
        self.ticks = 0

    # ------------------------------------------------------------------
    # Device and register access
    # ------------------------------------------------------------------
    def read(self, device: str, field: str) -> float:
        return self.devices.get(device, {}).get(field, 0.0)

    def write(self, device: str, field: str, value: float) -> None:
        self.devices.setdefault(device, {})[field] = float(value)

    def register(self, index: int) -> float:
        return self.registers[index]

    @property
    def finished(self) -> bool:
        return not (0 <= self.pc < len(self.instructions))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _value(self, operand) -> float:
        if isinstance(operand, Register):
            return self.registers[operand.index]
        if isinstance(operand, Number):
            return operand.value
        raise SimulatorError(f"cannot read operand {operand!r}")

    def _jump(self, target) -> None:
        if isinstance(target, LabelRef):
            raise SimulatorError(f"unresolved label '{target.name}' at line {self.pc}")
        assert isinstance(target, LineNumber)
        self.pc = target.line

    def step(self) -> Optional[TickResult]:
        """Execute one line; returns ``YIELD`` when the line hands back control."""

        ins = self.instructions[self.pc]
        self.line_counts[self.pc] += 1
        op = ins.opcode
        ops = ins.operands
        spec = ins.spec
        next_pc = self.pc + 1
        result: Optional[TickResult] = None
        if op == "l":
            dest, device, field = ops
            assert isinstance(device, DeviceSlot) and isinstance(field, LogicType)
            self.registers[dest.index] = self.read(device.name, field.name)
        elif op == "s":
            device, field, value = ops
            self.write(device.name, field.name, self._value(value))
        elif op == "j":
            self._jump(ops[0])
            return None
        elif op in ("beqz", "bnez"):
            zero = self._value(ops[0]) == 0.0
            if zero == (op == "beqz"):
                self._jump(ops[1])
                return None
        elif op == "yield":
            result = TickResult.YIELD
        elif op == "sleep":
            self.slept += self._value(ops[0])
            result = TickResult.YIELD
        elif spec.evaluate is not None:
            args = [self._value(ops[idx]) for idx in spec.value_indices]
            self.registers[ops[spec.dest_index].index] = spec.evaluate(*args)
        else:
            raise SimulatorError(f"no semantics for '{op}'")
        self.pc = next_pc
        return result

    def tick(self) -> TickResult:
        """Run until a yield, the end of the program or the per-tick line budget."""

        self.ticks += 1
        for _ in range(self.config.lines_per_tick):
            if self.finished:
                return TickResult.END
            if self.step() is TickResult.YIELD:
                return TickResult.YIELD
        if self.finished:
            return TickResult.END
        LOGGER.debug("tick %d hit the line budget at line %d", self.ticks, self.pc)
        return TickResult.LIMIT_HIT

    def run(self, max_ticks: int = 1000) -> TickResult:
        """Tick until the program ends or ``max_ticks`` is spent."""

        result = TickResult.LIMIT_HIT
        for _ in range(max_ticks):
            result = self.tick()
            if result is TickResult.END:
                break
        return result


__all__ = ["Simulator", "SimulatorError", "TickResult"]
