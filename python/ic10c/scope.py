"""Scope resolution pass.

Walks the program in lexical order, binding every declaration to a fresh
:class:`~ic10c.symbols.Symbol` and every reference to the nearest enclosing
binding. The tree itself is never modified: results are written to the
parallel maps of a :class:`Resolution`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from . import nodes as ast
from .config import DEFAULT_CONFIG, TargetConfig
from .errors import (
    InvalidDeviceAlias,
    InvalidStatement,
    TypeMismatch,
    UnboundIdentifier,
)
from .instructions import regnum
from .opcodes import LOGIC_TYPE_SET, OPCODES
from .symbols import Scope, Symbol, SymbolFactory, SymbolKind, ValueType

LOGGER = logging.getLogger("ic10c.scope")

# Builtin call name -> (opcode, arity)
BUILTINS: Dict[str, Tuple[str, int]] = {
    "abs": ("abs", 1),
    "ceil": ("ceil", 1),
    "floor": ("floor", 1),
    "round": ("round", 1),
    "trunc": ("trunc", 1),
    "sqrt": ("sqrt", 1),
    "exp": ("exp", 1),
    "log": ("log", 1),
    "min": ("min", 2),
    "max": ("max", 2),
}

BINARY_OPCODES: Dict[str, str] = {
    "+": "add",
    "-": "sub",
    "*": "mul",
    "/": "div",
    "%": "mod",
    "==": "seq",
    "!=": "sne",
    ">": "sgt",
    ">=": "sge",
    "<": "slt",
    "<=": "sle",
    "&&": "and",
    "||": "or",
}


@dataclass
class Resolution:
    program: ast.Program
    declarations: Dict[object, Symbol] = field(default_factory=dict)
    references: Dict[object, Symbol] = field(default_factory=dict)
    parameters: Dict[ast.FunctionDef, Tuple[Symbol, ...]] = field(default_factory=dict)
    symbols: List[Symbol] = field(default_factory=list)
    factory: SymbolFactory = field(default_factory=SymbolFactory)

    def declared(self, node: object) -> Symbol:
        return self.declarations[node]

    def referenced(self, node: object) -> Symbol:
        return self.references[node]

    def device_of(self, expr: ast.Expr) -> str:
        """Designator of a device operand that already passed resolution."""

        if isinstance(expr, ast.Device):
            return expr.designator
        sym = self.references[expr]
        assert sym.device is not None
        return sym.device


class Resolver:
    def __init__(self, program: ast.Program, config: TargetConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self.result = Resolution(program=program)
        self.scope = Scope(kind="program")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(self) -> Resolution:
        for stmt in self.result.program.body.statements:
            self._statement(stmt)
        LOGGER.debug(
            "resolved %d symbols, %d references",
            len(self.result.symbols),
            len(self.result.references),
        )
        return self.result

    # ------------------------------------------------------------------
    # Scopes and bindings
    # ------------------------------------------------------------------
    @contextmanager
    def _enter(self, kind: str) -> Iterator[Scope]:
        outer = self.scope
        self.scope = Scope(kind=kind, parent=outer)
        try:
            yield self.scope
        finally:
            self.scope = outer

    def _declare(self, node: object, name: str, kind: SymbolKind, **attrs) -> Symbol:
        location = getattr(node, "location", None)
        sym = self.result.factory.new(name, kind, node=node, location=location, **attrs)
        self.scope.declare(sym, location=location)
        self.result.declarations[node] = sym
        self.result.symbols.append(sym)
        return sym

    def _lookup(self, name: str, node: object) -> Symbol:
        sym = self.scope.lookup(name)
        if sym is None:
            raise UnboundIdentifier(name, location=getattr(node, "location", None))
        return sym

    def _block(self, block: ast.Block, kind: str = "block") -> None:
        with self._enter(kind):
            for stmt in block.statements:
                self._statement(stmt)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------
    def _statement(self, stmt: ast.Stmt) -> None:
        if isinstance(stmt, ast.Let):
            self._numeric(stmt.value)
            self._declare(stmt, stmt.name, SymbolKind.VARIABLE)
        elif isinstance(stmt, ast.Const):
            value = self._constant_value(stmt.value)
            if value is None:
                raise TypeMismatch(
                    f"constant '{stmt.name}' requires a compile-time value",
                    location=stmt.location,
                )
            self._declare(stmt, stmt.name, SymbolKind.CONSTANT, value=value)
        elif isinstance(stmt, ast.DeviceAlias):
            self._device_alias(stmt)
        elif isinstance(stmt, ast.Assign):
            self._numeric(stmt.value)
            sym = self._lookup(stmt.target, stmt)
            if not (sym.kind is SymbolKind.VARIABLE or sym.pinned):
                raise TypeMismatch(
                    f"cannot assign to {sym.kind.value.replace('_', ' ')} '{sym.name}'",
                    location=stmt.location,
                )
            self.result.references[stmt] = sym
        elif isinstance(stmt, ast.DeviceWrite):
            self._device(stmt.device)
            self._check_field(stmt.field, stmt)
            self._numeric(stmt.value)
        elif isinstance(stmt, ast.If):
            self._numeric(stmt.condition)
            self._block(stmt.body)
            if stmt.orelse is not None:
                self._block(stmt.orelse)
        elif isinstance(stmt, ast.While):
            self._numeric(stmt.condition)
            self._block(stmt.body, "loop")
        elif isinstance(stmt, ast.For):
            with self._enter("block"):
                if stmt.init is not None:
                    self._statement(stmt.init)
                if stmt.condition is not None:
                    self._numeric(stmt.condition)
                self._block(stmt.body, "loop")
                if stmt.step is not None:
                    self._statement(stmt.step)
        elif isinstance(stmt, ast.Loop):
            self._block(stmt.body, "loop")
        elif isinstance(stmt, (ast.Break, ast.Continue)):
            if not self._inside("loop"):
                word = "break" if isinstance(stmt, ast.Break) else "continue"
                raise InvalidStatement(f"'{word}' outside of a loop", location=stmt.location)
        elif isinstance(stmt, ast.Yield):
            pass
        elif isinstance(stmt, ast.Sleep):
            self._numeric(stmt.duration)
        elif isinstance(stmt, ast.FunctionDef):
            self._function(stmt)
        elif isinstance(stmt, ast.Return):
            if not self._inside("function"):
                raise InvalidStatement("'return' outside of a function", location=stmt.location)
            if stmt.value is not None:
                self._numeric(stmt.value)
        elif isinstance(stmt, ast.ExprStatement):
            self._numeric(stmt.expr)
        elif isinstance(stmt, ast.Block):
            self._block(stmt)
        else:
            raise InvalidStatement(
                f"unsupported statement {type(stmt).__name__}",
                location=getattr(stmt, "location", None),
            )

    def _inside(self, kind: str) -> bool:
        # Loops do not reach through function boundaries.
        for scope in self.scope.chain():
            if scope.kind == kind:
                return True
            if scope.kind == "function":
                return False
        return False

    def _function(self, stmt: ast.FunctionDef) -> None:
        with self._enter("function"):
            params = tuple(
                self._declare_param(stmt, name) for name in stmt.params
            )
            for inner in stmt.body.statements:
                self._statement(inner)
        self.result.parameters[stmt] = params
        # Bound after the body, so a function cannot call itself.
        self._declare(stmt, stmt.name, SymbolKind.FUNCTION)

    def _declare_param(self, fn: ast.FunctionDef, name: str) -> Symbol:
        sym = self.result.factory.new(name, SymbolKind.VARIABLE, node=fn, location=fn.location)
        self.scope.declare(sym, location=fn.location)
        self.result.symbols.append(sym)
        return sym

    def _device_alias(self, stmt: ast.DeviceAlias) -> None:
        designator = self._designator(stmt.device, stmt)
        if stmt.field is None:
            if stmt.register is not None:
                raise TypeMismatch(
                    f"device alias '{stmt.name}' has no field to pin to {stmt.register}",
                    location=stmt.location,
                )
            self._declare(stmt, stmt.name, SymbolKind.DEVICE_ALIAS, type=ValueType.DEVICE, device=designator)
            return
        self._check_field(stmt.field, stmt)
        register = None
        if stmt.register is not None:
            try:
                register = regnum(stmt.register)
            except ValueError:
                register = None
            if register is None or register >= self.config.register_count:
                raise InvalidDeviceAlias(
                    f"'{stmt.register}' is not a register of this device",
                    location=stmt.location,
                )
        self._declare(
            stmt,
            stmt.name,
            SymbolKind.DEVICE_ALIAS,
            type=ValueType.NUMBER,
            device=designator,
            field=stmt.field,
            register=register,
        )

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------
    def _designator(self, name: str, node: object) -> str:
        lowered = name.lower()
        if lowered in self.config.device_designators:
            return lowered
        sym = self.scope.lookup(name)
        if sym is not None and sym.type is ValueType.DEVICE and sym.device is not None:
            return sym.device
        legal = ", ".join(self.config.device_designators)
        raise InvalidDeviceAlias(
            f"'{name}' is not a device slot (expected one of {legal})",
            location=getattr(node, "location", None),
        )

    def _device(self, expr: ast.Expr) -> str:
        if isinstance(expr, ast.Device):
            return self._designator(expr.designator, expr)
        if isinstance(expr, ast.Name):
            sym = self._lookup(expr.id, expr)
            if sym.type is not ValueType.DEVICE:
                raise TypeMismatch(f"'{expr.id}' is not a device", location=expr.location)
            self.result.references[expr] = sym
            assert sym.device is not None
            return sym.device
        raise TypeMismatch("expected a device reference", location=getattr(expr, "location", None))

    def _check_field(self, name: str, node: object) -> None:
        if name not in LOGIC_TYPE_SET:
            raise InvalidDeviceAlias(
                f"unknown device variable '{name}'",
                location=getattr(node, "location", None),
            )

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------
    def _numeric(self, expr: ast.Expr) -> None:
        if isinstance(expr, (ast.Number, ast.Boolean)):
            return
        if isinstance(expr, ast.Name):
            sym = self._lookup(expr.id, expr)
            if sym.kind is SymbolKind.FUNCTION:
                raise TypeMismatch(f"function '{expr.id}' used as a value", location=expr.location)
            if sym.type is ValueType.DEVICE:
                raise TypeMismatch(f"device '{expr.id}' used as a number", location=expr.location)
            self.result.references[expr] = sym
        elif isinstance(expr, ast.Device):
            raise TypeMismatch(
                f"device '{expr.designator}' used as a number", location=expr.location
            )
        elif isinstance(expr, ast.BinaryOp):
            if expr.op not in BINARY_OPCODES:
                raise TypeMismatch(f"unsupported operator '{expr.op}'", location=expr.location)
            self._numeric(expr.left)
            self._numeric(expr.right)
        elif isinstance(expr, ast.UnaryOp):
            if expr.op not in ast.UNARY_OPERATORS:
                raise TypeMismatch(f"unsupported operator '{expr.op}'", location=expr.location)
            self._numeric(expr.operand)
        elif isinstance(expr, ast.Call):
            self._call(expr)
        elif isinstance(expr, ast.DeviceRead):
            self._device(expr.device)
            self._check_field(expr.field, expr)
        else:
            raise TypeMismatch(
                f"unsupported expression {type(expr).__name__}",
                location=getattr(expr, "location", None),
            )

    def _call(self, expr: ast.Call) -> None:
        sym = self.scope.lookup(expr.name)
        if sym is not None:
            if sym.kind is not SymbolKind.FUNCTION:
                raise TypeMismatch(f"'{expr.name}' is not a function", location=expr.location)
            expected = len(sym.node.params)
            self.result.references[expr] = sym
        elif expr.name in BUILTINS:
            expected = BUILTINS[expr.name][1]
        else:
            raise UnboundIdentifier(expr.name, location=expr.location)
        if len(expr.args) != expected:
            raise TypeMismatch(
                f"'{expr.name}' expects {expected} argument(s), got {len(expr.args)}",
                location=expr.location,
            )
        for arg in expr.args:
            self._numeric(arg)

    def _constant_value(self, expr: ast.Expr) -> Optional[float]:
        """Fold a constant initializer; ``None`` when it depends on runtime values."""

        if isinstance(expr, ast.Number):
            return float(expr.value)
        if isinstance(expr, ast.Boolean):
            return 1.0 if expr.value else 0.0
        if isinstance(expr, ast.Name):
            sym = self._lookup(expr.id, expr)
            self.result.references[expr] = sym
            if sym.kind is SymbolKind.CONSTANT:
                return sym.value
            if sym.type is ValueType.DEVICE:
                raise TypeMismatch(f"device '{expr.id}' used as a number", location=expr.location)
            return None
        if isinstance(expr, ast.BinaryOp):
            if expr.op not in BINARY_OPCODES:
                raise TypeMismatch(f"unsupported operator '{expr.op}'", location=expr.location)
            left = self._constant_value(expr.left)
            right = self._constant_value(expr.right)
            if left is None or right is None:
                return None
            return OPCODES[BINARY_OPCODES[expr.op]].evaluate(left, right)
        if isinstance(expr, ast.UnaryOp):
            operand = self._constant_value(expr.operand)
            if operand is None:
                return None
            return -operand if expr.op == "-" else OPCODES["seqz"].evaluate(operand)
        if isinstance(expr, ast.Call) and expr.name in BUILTINS and self.scope.lookup(expr.name) is None:
            opcode, arity = BUILTINS[expr.name]
            if len(expr.args) != arity:
                return None
            args = [self._constant_value(arg) for arg in expr.args]
            if any(arg is None for arg in args):
                return None
            return OPCODES[opcode].evaluate(*args)
        self._numeric(expr)
        return None


def resolve(program: ast.Program, config: TargetConfig = DEFAULT_CONFIG) -> Resolution:
    """Run scope resolution over ``program``."""

    return Resolver(program, config).run()


__all__ = ["BINARY_OPCODES", "BUILTINS", "Resolution", "Resolver", "resolve"]
