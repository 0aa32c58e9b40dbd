"""Compile error taxonomy for ic10c.

Every failure the pipeline can report is a :class:`CompileError` carrying an
:class:`ErrorKind`, a human readable message and, when the triggering AST node
had one, a :class:`~ic10c.nodes.SourceLocation`.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .nodes import SourceLocation


class ErrorKind(str, Enum):
    UNBOUND_IDENTIFIER = "UnboundIdentifier"
    DUPLICATE_BINDING = "DuplicateBinding"
    INVALID_DEVICE_ALIAS = "InvalidDeviceAlias"
    TYPE_MISMATCH = "TypeMismatch"
    INVALID_STATEMENT = "InvalidStatement"
    REGISTER_EXHAUSTION = "RegisterExhaustion"
    LINE_LIMIT_EXCEEDED = "LineLimitExceeded"
    UNRESOLVED_LABEL = "UnresolvedLabel"
    DUPLICATE_LABEL = "DuplicateLabel"
    NESTING_TOO_DEEP = "NestingTooDeep"
    INTERNAL = "InternalCompilerError"


class CompileError(Exception):
    """Base class for all structured compile failures."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, location: Optional["SourceLocation"] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    @property
    def internal(self) -> bool:
        return self.kind in _INTERNAL_KINDS

    def __str__(self) -> str:
        if self.location is not None:
            return f"{self.location}: {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.location is not None:
            payload["location"] = {"line": self.location.line, "column": self.location.column}
        return payload


class UnboundIdentifier(CompileError):
    kind = ErrorKind.UNBOUND_IDENTIFIER

    def __init__(self, name: str, *, location: Optional["SourceLocation"] = None) -> None:
        super().__init__(f"'{name}' is not defined", location=location)
        self.name = name


class DuplicateBinding(CompileError):
    kind = ErrorKind.DUPLICATE_BINDING

    def __init__(self, name: str, *, location: Optional["SourceLocation"] = None) -> None:
        super().__init__(f"'{name}' is already declared in this scope", location=location)
        self.name = name


class InvalidDeviceAlias(CompileError):
    kind = ErrorKind.INVALID_DEVICE_ALIAS


class TypeMismatch(CompileError):
    kind = ErrorKind.TYPE_MISMATCH


class InvalidStatement(CompileError):
    kind = ErrorKind.INVALID_STATEMENT


class RegisterExhaustion(CompileError):
    kind = ErrorKind.REGISTER_EXHAUSTION

    def __init__(
        self,
        live: int,
        capacity: int,
        *,
        detail: Optional[str] = None,
        location: Optional["SourceLocation"] = None,
    ) -> None:
        message = f"program needs {live} registers live at once but only {capacity} are available"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, location=location)
        self.live = live
        self.capacity = capacity


class LineLimitExceeded(CompileError):
    kind = ErrorKind.LINE_LIMIT_EXCEEDED

    def __init__(self, actual: int, limit: int) -> None:
        super().__init__(f"program assembles to {actual} lines, limit is {limit}")
        self.actual = actual
        self.limit = limit


class NestingTooDeep(CompileError):
    kind = ErrorKind.NESTING_TOO_DEEP

    def __init__(self, depth: int, *, location: Optional["SourceLocation"] = None) -> None:
        super().__init__(f"program is nested too deeply ({depth} levels)", location=location)
        self.depth = depth


class UnresolvedLabel(CompileError):
    kind = ErrorKind.UNRESOLVED_LABEL

    def __init__(self, label: str) -> None:
        super().__init__(f"Unknown label {label}")
        self.label = label


class DuplicateLabel(CompileError):
    kind = ErrorKind.DUPLICATE_LABEL

    def __init__(self, label: str) -> None:
        super().__init__(f"Duplicate label: {label}")
        self.label = label


class InternalCompilerError(CompileError):
    kind = ErrorKind.INTERNAL


_INTERNAL_KINDS = frozenset(
    {ErrorKind.UNRESOLVED_LABEL, ErrorKind.DUPLICATE_LABEL, ErrorKind.INTERNAL}
)

__all__ = [
    "CompileError",
    "DuplicateBinding",
    "DuplicateLabel",
    "ErrorKind",
    "InternalCompilerError",
    "InvalidDeviceAlias",
    "InvalidStatement",
    "LineLimitExceeded",
    "NestingTooDeep",
    "RegisterExhaustion",
    "TypeMismatch",
    "UnboundIdentifier",
    "UnresolvedLabel",
]
