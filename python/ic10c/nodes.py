"""Abstract syntax tree handed to the compiler by the parser.

Nodes are immutable and compare by identity, so the resolver can key its
side tables on the node objects themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, is_dataclass
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class SourceLocation:
    line: int
    column: int = 0

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


# ---------------------------------------------------------------------------
# Expressions


@dataclass(frozen=True, eq=False)
class Number:
    value: float
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Boolean:
    value: bool
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Name:
    id: str
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Device:
    """Literal device designator such as ``d0`` or ``db``."""

    designator: str
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class BinaryOp:
    op: str
    left: "Expr"
    right: "Expr"
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class UnaryOp:
    op: str
    operand: "Expr"
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Call:
    name: str
    args: Tuple["Expr", ...] = ()
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class DeviceRead:
    """``device.Field`` in value position."""

    device: "Expr"
    field: str
    location: Optional[SourceLocation] = None


Expr = Union[Number, Boolean, Name, Device, BinaryOp, UnaryOp, Call, DeviceRead]


# ---------------------------------------------------------------------------
# Statements


@dataclass(frozen=True, eq=False)
class Block:
    statements: Tuple["Stmt", ...] = ()
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Let:
    name: str
    value: Expr
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Const:
    name: str
    value: Expr
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class DeviceAlias:
    """Bind ``name`` to a device slot.

    Without ``field`` the name is a device reference. With ``field`` it is a
    numeric value port pinned to a device-facing register (``register`` pins
    it explicitly, e.g. ``"r15"``).
    """

    name: str
    device: str
    field: Optional[str] = None
    register: Optional[str] = None
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Assign:
    target: str
    value: Expr
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class DeviceWrite:
    device: Expr
    field: str
    value: Expr
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class If:
    condition: Expr
    body: Block
    orelse: Optional[Block] = None
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class While:
    condition: Expr
    body: Block
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class For:
    init: Optional["Stmt"]
    condition: Optional[Expr]
    step: Optional["Stmt"]
    body: Block
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Loop:
    body: Block
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Break:
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Continue:
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Yield:
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Sleep:
    duration: Expr
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class FunctionDef:
    name: str
    params: Tuple[str, ...]
    body: Block
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class Return:
    value: Optional[Expr] = None
    location: Optional[SourceLocation] = None


@dataclass(frozen=True, eq=False)
class ExprStatement:
    expr: Expr
    location: Optional[SourceLocation] = None


Stmt = Union[
    Block,
    Let,
    Const,
    DeviceAlias,
    Assign,
    DeviceWrite,
    If,
    While,
    For,
    Loop,
    Break,
    Continue,
    Yield,
    Sleep,
    FunctionDef,
    Return,
    ExprStatement,
]


@dataclass(frozen=True, eq=False)
class Program:
    body: Block
    location: Optional[SourceLocation] = None

    @classmethod
    def of(cls, *statements: Stmt) -> "Program":
        return cls(Block(tuple(statements)))


ARITHMETIC_OPERATORS = frozenset({"+", "-", "*", "/", "%"})
COMPARISON_OPERATORS = frozenset({"==", "!=", ">", ">=", "<", "<="})
LOGICAL_OPERATORS = frozenset({"&&", "||"})
UNARY_OPERATORS = frozenset({"!", "-"})


def _children(node: object) -> List[object]:
    found: List[object] = []
    for item in fields(node):
        value = getattr(node, item.name)
        items = value if isinstance(value, (tuple, list)) else (value,)
        for child in items:
            if is_dataclass(child) and not isinstance(child, SourceLocation):
                found.append(child)
    return found


def nesting_depth(node: object) -> Tuple[int, Optional[SourceLocation]]:
    """Depth of the deepest node under ``node`` and the nearest location to it.

    Walks with an explicit stack, so it works on trees too deep to recurse over.
    """

    best = (0, getattr(node, "location", None))
    stack = [(node, 1, best[1])]
    while stack:
        current, depth, where = stack.pop()
        where = getattr(current, "location", None) or where
        if depth > best[0]:
            best = (depth, where)
        for child in _children(current):
            stack.append((child, depth + 1, where))
    return best
