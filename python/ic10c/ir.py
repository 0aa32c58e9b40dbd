"""Linear intermediate representation produced by control-flow lowering.

Operands are symbols or immediates; no physical registers appear until the
instruction selector substitutes the allocator's assignment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple, Union

from .errors import UnresolvedLabel
from .symbols import Symbol


@dataclass(frozen=True)
class Immediate:
    value: float

    def __repr__(self) -> str:
        return f"#{self.value:g}"


@dataclass(frozen=True)
class Label:
    name: str

    def __str__(self) -> str:
        return self.name


Value = Union[Symbol, Immediate]


def _syms(*values: object) -> Tuple[Symbol, ...]:
    return tuple(v for v in values if isinstance(v, Symbol))


class Op:
    """Common interface: symbols read, symbols written and jump targets."""

    def defs(self) -> Tuple[Symbol, ...]:
        return ()

    def uses(self) -> Tuple[Symbol, ...]:
        return ()

    def targets(self) -> Tuple[Label, ...]:
        return ()

    @property
    def falls_through(self) -> bool:
        return True


@dataclass(eq=False)
class Move(Op):
    dst: Symbol
    src: Value

    def defs(self):
        return (self.dst,)

    def uses(self):
        return _syms(self.src)


@dataclass(eq=False)
class Binary(Op):
    """Arithmetic and logical ops; ``op`` is the target mnemonic."""

    op: str
    dst: Symbol
    lhs: Value
    rhs: Value

    def defs(self):
        return (self.dst,)

    def uses(self):
        return _syms(self.lhs, self.rhs)


@dataclass(eq=False)
class Compare(Op):
    """Boolean-valued comparison; ``op`` is one of eq/ne/gt/ge/lt/le."""

    op: str
    dst: Symbol
    lhs: Value
    rhs: Value

    def defs(self):
        return (self.dst,)

    def uses(self):
        return _syms(self.lhs, self.rhs)


@dataclass(eq=False)
class Unary(Op):
    """``not``, ``neg`` and the one-argument math builtins."""

    op: str
    dst: Symbol
    src: Value

    def defs(self):
        return (self.dst,)

    def uses(self):
        return _syms(self.src)


@dataclass(eq=False)
class Jump(Op):
    target: Label

    def targets(self):
        return (self.target,)

    @property
    def falls_through(self) -> bool:
        return False


@dataclass(eq=False)
class JumpIfZero(Op):
    cond: Value
    target: Label

    def uses(self):
        return _syms(self.cond)

    def targets(self):
        return (self.target,)


@dataclass(eq=False)
class JumpIfNotZero(Op):
    cond: Value
    target: Label

    def uses(self):
        return _syms(self.cond)

    def targets(self):
        return (self.target,)


@dataclass(eq=False)
class DeviceLoad(Op):
    dst: Symbol
    device: str
    field: str

    def defs(self):
        return (self.dst,)


@dataclass(eq=False)
class DeviceStore(Op):
    device: str
    field: str
    src: Value

    def uses(self):
        return _syms(self.src)


@dataclass(eq=False)
class Yield(Op):
    pass


@dataclass(eq=False)
class Sleep(Op):
    duration: Value

    def uses(self):
        return _syms(self.duration)


@dataclass(eq=False)
class Nop(Op):
    pass


@dataclass(eq=False)
class Place(Op):
    """Defines ``label`` at this point of the stream."""

    label: Label


@dataclass
class IRProgram:
    ops: List[Op] = field(default_factory=list)
    symbols: List[Symbol] = field(default_factory=list)
    # Pinned symbol -> (declaration index, index where its scope closes)
    scope_ranges: Dict[Symbol, Tuple[int, int]] = field(default_factory=dict)

    def label_positions(self) -> Dict[Label, int]:
        return {op.label: idx for idx, op in enumerate(self.ops) if isinstance(op, Place)}

    def successors(self) -> List[Tuple[int, ...]]:
        """Control-flow successors of every op, by index.

        Falling off the last op yields ``len(ops)``, the program exit.
        """

        where = self.label_positions()
        result: List[Tuple[int, ...]] = []
        for idx, op in enumerate(self.ops):
            succ = []
            for target in op.targets():
                if target not in where:
                    raise UnresolvedLabel(target.name)
                succ.append(where[target])
            if op.falls_through:
                succ.append(idx + 1)
            result.append(tuple(succ))
        return result

    def dump(self) -> List[str]:
        lines = []
        for op in self.ops:
            if isinstance(op, Place):
                lines.append(f"{op.label}:")
            else:
                lines.append(f"    {op!r}")
        return lines


__all__ = [
    "Binary",
    "Compare",
    "DeviceLoad",
    "DeviceStore",
    "IRProgram",
    "Immediate",
    "Jump",
    "JumpIfNotZero",
    "JumpIfZero",
    "Label",
    "Move",
    "Nop",
    "Op",
    "Place",
    "Sleep",
    "Unary",
    "Value",
    "Yield",
]
