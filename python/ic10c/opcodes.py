"""Shared opcode definitions for the ic10c toolchain.

Keeping the canonical table in a single module prevents drift between the
instruction selector, the peephole optimizer, the listing parser and the
simulator. Constant folding and simulation call the same evaluators.

Operand signatures use one character per operand:

    r  destination register
    a  register or number (read)
    d  device slot
    v  device logic type
    l  jump target (label before assembly, line number after)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple


def _truth(value: float) -> bool:
    return value != 0.0


def _flag(cond: bool) -> float:
    return 1.0 if cond else 0.0


def _div(a: float, b: float) -> float:
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a)
    return a / b


def _mod(a: float, b: float) -> float:
    if b == 0.0:
        return math.nan
    return math.fmod(math.fmod(a, b) + b, b)


def _sqrt(a: float) -> float:
    return math.sqrt(a) if a >= 0.0 else math.nan


def _log(a: float) -> float:
    if a > 0.0:
        return math.log(a)
    return -math.inf if a == 0.0 else math.nan


def _exp(a: float) -> float:
    try:
        return math.exp(a)
    except OverflowError:
        return math.inf


def _round(a: float) -> float:
    if not math.isfinite(a):
        return a
    return float(math.floor(a + 0.5))


def _whole(fn: Callable[[float], int]) -> Callable[[float], float]:
    def apply(a: float) -> float:
        if not math.isfinite(a):
            return a
        return float(fn(a))

    return apply


@dataclass(frozen=True)
class OpcodeSpec:
    mnemonic: str
    signature: str
    evaluate: Optional[Callable[..., float]] = None
    side_effects: bool = False
    branch: bool = False
    conditional: bool = False

    @property
    def arity(self) -> int:
        return len(self.signature)

    @property
    def dest_index(self) -> Optional[int]:
        idx = self.signature.find("r")
        return idx if idx >= 0 else None

    @property
    def value_indices(self) -> Tuple[int, ...]:
        return tuple(idx for idx, kind in enumerate(self.signature) if kind == "a")

    @property
    def target_index(self) -> Optional[int]:
        idx = self.signature.find("l")
        return idx if idx >= 0 else None

    @property
    def foldable(self) -> bool:
        return self.evaluate is not None and self.dest_index is not None

    @property
    def removable(self) -> bool:
        """Only writes its destination register, so it may go when that is dead."""

        return not self.side_effects and not self.branch and self.dest_index is not None


# Ordered so docs and tooling can iterate in a stable order.
OPCODE_LIST: Tuple[OpcodeSpec, ...] = (
    OpcodeSpec("move", "ra", lambda a: a),
    OpcodeSpec("add", "raa", lambda a, b: a + b),
    OpcodeSpec("sub", "raa", lambda a, b: a - b),
    OpcodeSpec("mul", "raa", lambda a, b: a * b),
    OpcodeSpec("div", "raa", _div),
    OpcodeSpec("mod", "raa", _mod),
    OpcodeSpec("max", "raa", max),
    OpcodeSpec("min", "raa", min),
    OpcodeSpec("and", "raa", lambda a, b: _flag(_truth(a) and _truth(b))),
    OpcodeSpec("or", "raa", lambda a, b: _flag(_truth(a) or _truth(b))),
    OpcodeSpec("seq", "raa", lambda a, b: _flag(a == b)),
    OpcodeSpec("sne", "raa", lambda a, b: _flag(a != b)),
    OpcodeSpec("sgt", "raa", lambda a, b: _flag(a > b)),
    OpcodeSpec("sge", "raa", lambda a, b: _flag(a >= b)),
    OpcodeSpec("slt", "raa", lambda a, b: _flag(a < b)),
    OpcodeSpec("sle", "raa", lambda a, b: _flag(a <= b)),
    OpcodeSpec("seqz", "ra", lambda a: _flag(a == 0.0)),
    OpcodeSpec("snez", "ra", lambda a: _flag(a != 0.0)),
    OpcodeSpec("abs", "ra", abs),
    OpcodeSpec("ceil", "ra", _whole(math.ceil)),
    OpcodeSpec("floor", "ra", _whole(math.floor)),
    OpcodeSpec("round", "ra", _round),
    OpcodeSpec("trunc", "ra", _whole(math.trunc)),
    OpcodeSpec("sqrt", "ra", _sqrt),
    OpcodeSpec("exp", "ra", _exp),
    OpcodeSpec("log", "ra", _log),
    OpcodeSpec("l", "rdv"),
    OpcodeSpec("s", "dva", side_effects=True),
    OpcodeSpec("j", "l", branch=True),
    OpcodeSpec("beqz", "al", branch=True, conditional=True),
    OpcodeSpec("bnez", "al", branch=True, conditional=True),
    OpcodeSpec("yield", "", side_effects=True),
    OpcodeSpec("sleep", "a", side_effects=True),
)

OPCODES: Dict[str, OpcodeSpec] = {spec.mnemonic: spec for spec in OPCODE_LIST}

# Logic types a device field may name.
LOGIC_TYPES: Tuple[str, ...] = (
    "Activate",
    "AirRelease",
    "Charge",
    "ClearMemory",
    "Color",
    "CompletionRatio",
    "ElevatorLevel",
    "ElevatorSpeed",
    "Error",
    "ExportCount",
    "Filtration",
    "Harvest",
    "Horizontal",
    "HorizontalRatio",
    "Idle",
    "ImportCount",
    "Lock",
    "Maximum",
    "Mode",
    "On",
    "Open",
    "Output",
    "Plant",
    "PositionX",
    "PositionY",
    "Power",
    "PowerActual",
    "PowerPotential",
    "PowerRequired",
    "Pressure",
    "PressureExternal",
    "PressureInternal",
    "PressureSetting",
    "Quantity",
    "Ratio",
    "RatioCarbonDioxide",
    "RatioNitrogen",
    "RatioOxygen",
    "RatioPollutant",
    "RatioVolatiles",
    "RatioWater",
    "Reagents",
    "RecipeHash",
    "RequestHash",
    "RequiredPower",
    "Setting",
    "SolarAngle",
    "Temperature",
    "TemperatureSettings",
    "TotalMoles",
    "VelocityMagnitude",
    "VelocityRelativeX",
    "VelocityRelativeY",
    "VelocityRelativeZ",
    "Vertical",
    "VerticalRatio",
    "Volume",
)

LOGIC_TYPE_SET = frozenset(LOGIC_TYPES)

__all__ = [
    "LOGIC_TYPES",
    "LOGIC_TYPE_SET",
    "OPCODE_LIST",
    "OPCODES",
    "OpcodeSpec",
]
