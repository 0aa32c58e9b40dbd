"""Target instructions, their operands and the IC10 text format."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .opcodes import OPCODES, OpcodeSpec

SP_INDEX = 16
RA_INDEX = 17
_SPECIAL_NAMES = {SP_INDEX: "sp", RA_INDEX: "ra"}

REGISTER_RE = re.compile(r"r([0-9]|1[0-7])", re.IGNORECASE)
DEVICE_RE = re.compile(r"d([0-9])|db", re.IGNORECASE)
LABEL_RE = re.compile(r"[A-Za-z_.][A-Za-z0-9_.]*")
NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def format_number(value: float) -> str:
    if math.isfinite(value) and float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return repr(float(value))


@dataclass(frozen=True)
class Register:
    index: int

    def __str__(self) -> str:
        return _SPECIAL_NAMES.get(self.index, f"r{self.index}")


@dataclass(frozen=True)
class Number:
    value: float

    def __str__(self) -> str:
        return format_number(self.value)


@dataclass(frozen=True)
class DeviceSlot:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class LogicType:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class LabelRef:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class LineNumber:
    line: int

    def __str__(self) -> str:
        return str(self.line)


Operand = Union[Register, Number, DeviceSlot, LogicType, LabelRef, LineNumber]
JumpTarget = Union[LabelRef, LineNumber]


@dataclass(frozen=True)
class Instruction:
    opcode: str
    operands: Tuple[Operand, ...] = ()

    @property
    def spec(self) -> OpcodeSpec:
        return OPCODES[self.opcode]

    @property
    def dest(self) -> Optional[Register]:
        idx = self.spec.dest_index
        if idx is None:
            return None
        operand = self.operands[idx]
        return operand if isinstance(operand, Register) else None

    @property
    def target(self) -> Optional[JumpTarget]:
        idx = self.spec.target_index
        if idx is None:
            return None
        operand = self.operands[idx]
        return operand if isinstance(operand, (LabelRef, LineNumber)) else None

    def reads(self) -> Tuple[Register, ...]:
        return tuple(op for op in self.values() if isinstance(op, Register))

    def values(self) -> Tuple[Operand, ...]:
        return tuple(self.operands[idx] for idx in self.spec.value_indices)

    def with_operand(self, idx: int, operand: Operand) -> "Instruction":
        ops = list(self.operands)
        ops[idx] = operand
        return replace(self, operands=tuple(ops))

    def __str__(self) -> str:
        if not self.operands:
            return self.opcode
        return " ".join([self.opcode, *(str(op) for op in self.operands)])


@dataclass(frozen=True)
class Label:
    """Pseudo-instruction marking a jump target; occupies no line."""

    name: str

    def __str__(self) -> str:
        return f"{self.name}:"


Code = List[Union[Instruction, Label]]


def make(opcode: str, *operands: Operand) -> Instruction:
    spec = OPCODES.get(opcode)
    if spec is None:
        raise ValueError(f"Unknown mnemonic: {opcode}")
    if len(operands) != spec.arity:
        raise ValueError(f"{opcode} expects {spec.arity} operands, got {len(operands)}")
    return Instruction(opcode, tuple(operands))


def instruction_count(code: Iterable[Union[Instruction, Label]]) -> int:
    return sum(1 for item in code if isinstance(item, Instruction))


# ---------------------------------------------------------------------------
# Text parsing


def regnum(tok: str) -> int:
    lowered = tok.lower()
    if lowered == "sp":
        return SP_INDEX
    if lowered == "ra":
        return RA_INDEX
    m = REGISTER_RE.fullmatch(tok)
    if not m:
        raise ValueError(f"Bad register '{tok}'")
    return int(m.group(1))


def parse_number(token: str) -> float:
    token = token.strip()
    lowered = token.lower()
    if lowered in {"nan", "inf", "-inf", "+inf"}:
        return float(lowered)
    if lowered.startswith(("0x", "-0x")):
        return float(int(token, 16))
    if not NUMBER_RE.fullmatch(token):
        raise ValueError(f"Bad number '{token}'")
    return float(token)


def _parse_operand(kind: str, token: str) -> Operand:
    if kind == "r":
        return Register(regnum(token))
    if kind == "a":
        if token.lower() in {"sp", "ra"} or REGISTER_RE.fullmatch(token):
            return Register(regnum(token))
        return Number(parse_number(token))
    if kind == "d":
        m = DEVICE_RE.fullmatch(token)
        if not m:
            raise ValueError(f"Bad device '{token}'")
        return DeviceSlot(token.lower())
    if kind == "v":
        if not LABEL_RE.fullmatch(token):
            raise ValueError(f"Bad logic type '{token}'")
        return LogicType(token)
    if kind == "l":
        if re.fullmatch(r"\d+", token):
            return LineNumber(int(token))
        if not LABEL_RE.fullmatch(token):
            raise ValueError(f"Bad jump target '{token}'")
        return LabelRef(token)
    raise ValueError(f"Unknown operand kind {kind!r}")


def parse_line(line: str) -> Optional[Union[Instruction, Label]]:
    """Parse one listing line; blank and comment-only lines give ``None``."""

    text = line.split("#", 1)[0].strip()
    if not text:
        return None
    if text.endswith(":"):
        name = text[:-1].strip()
        if not LABEL_RE.fullmatch(name):
            raise ValueError(f"Invalid label name: {name}")
        return Label(name)
    mnem, *args = text.split()
    spec = OPCODES.get(mnem.lower())
    if spec is None:
        raise ValueError(f"Unknown mnemonic: {mnem}")
    if len(args) != spec.arity:
        raise ValueError(f"{spec.mnemonic} expects {spec.arity} operands, got {len(args)}")
    operands = tuple(_parse_operand(kind, tok) for kind, tok in zip(spec.signature, args))
    return Instruction(spec.mnemonic, operands)


def parse_listing(text: Union[str, Sequence[str]]) -> Code:
    lines = text.splitlines() if isinstance(text, str) else list(text)
    code: Code = []
    for lineno, line in enumerate(lines, start=1):
        try:
            item = parse_line(line)
        except ValueError as exc:
            raise ValueError(f"line {lineno}: {exc}") from exc
        if item is not None:
            code.append(item)
    return code


def format_code(code: Iterable[Union[Instruction, Label]]) -> List[str]:
    return [str(item) for item in code]


__all__ = [
    "Code",
    "DeviceSlot",
    "Instruction",
    "JumpTarget",
    "Label",
    "LabelRef",
    "LineNumber",
    "LogicType",
    "Number",
    "Operand",
    "RA_INDEX",
    "Register",
    "SP_INDEX",
    "format_code",
    "format_number",
    "instruction_count",
    "make",
    "parse_line",
    "parse_listing",
    "parse_number",
    "regnum",
]
