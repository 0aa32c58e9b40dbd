"""Symbols and lexical scopes."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from .errors import DuplicateBinding
from .nodes import SourceLocation


class SymbolKind(str, Enum):
    VARIABLE = "variable"
    DEVICE_ALIAS = "device_alias"
    CONSTANT = "constant"
    FUNCTION = "function"
    TEMPORARY = "temporary"


class ValueType(str, Enum):
    NUMBER = "number"
    DEVICE = "device"


@dataclass(eq=False)
class Symbol:
    """Identity for anything a name can be bound to.

    Symbols hash by identity: two variables called ``x`` in different scopes
    are different symbols.
    """

    name: str
    kind: SymbolKind
    type: ValueType = ValueType.NUMBER
    uid: int = 0
    device: Optional[str] = None
    field: Optional[str] = None
    value: Optional[float] = None
    register: Optional[int] = None
    node: Any = None
    location: Optional[SourceLocation] = None

    @property
    def pinned(self) -> bool:
        """Value ports live in a fixed device-facing register."""

        return self.kind is SymbolKind.DEVICE_ALIAS and self.type is ValueType.NUMBER

    def clone(self, uid: int) -> "Symbol":
        return replace(self, uid=uid)

    def __repr__(self) -> str:
        return f"<{self.kind.value} {self.name}#{self.uid}>"


class SymbolFactory:
    """Hands out symbols with unique ids for one compilation."""

    def __init__(self) -> None:
        self._ids = itertools.count()
        self.created: List[Symbol] = []

    def new(self, name: str, kind: SymbolKind, **attrs: Any) -> Symbol:
        sym = Symbol(name=name, kind=kind, uid=next(self._ids), **attrs)
        self.created.append(sym)
        return sym

    def clone(self, sym: Symbol) -> Symbol:
        copy = sym.clone(next(self._ids))
        self.created.append(copy)
        return copy

    def temporary(self, hint: str = "t", *, location: Optional[SourceLocation] = None) -> Symbol:
        uid = next(self._ids)
        sym = Symbol(name=f"%{hint}{uid}", kind=SymbolKind.TEMPORARY, uid=uid, location=location)
        self.created.append(sym)
        return sym


@dataclass
class Scope:
    kind: str = "block"
    parent: Optional["Scope"] = None
    bindings: Dict[str, Symbol] = field(default_factory=dict)

    def declare(self, sym: Symbol, *, location: Optional[SourceLocation] = None) -> Symbol:
        if sym.name in self.bindings:
            raise DuplicateBinding(sym.name, location=location or sym.location)
        self.bindings[sym.name] = sym
        return sym

    def lookup(self, name: str) -> Optional[Symbol]:
        scope: Optional[Scope] = self
        while scope is not None:
            sym = scope.bindings.get(name)
            if sym is not None:
                return sym
            scope = scope.parent
        return None

    def chain(self) -> Iterator["Scope"]:
        scope: Optional[Scope] = self
        while scope is not None:
            yield scope
            scope = scope.parent


__all__ = ["Scope", "Symbol", "SymbolFactory", "SymbolKind", "ValueType"]
