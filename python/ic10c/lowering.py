"""Structured-to-goto lowering.

Turns the resolved tree into a flat list of :mod:`ic10c.ir` operations with
symbolic labels. User functions are expanded inline at every call site with
their parameters and locals cloned, so the result has no calls left.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from . import ir
from . import nodes as ast
from .config import DEFAULT_CONFIG, TargetConfig
from .errors import InternalCompilerError
from .scope import BINARY_OPCODES, BUILTINS, Resolution
from .symbols import Symbol, SymbolKind

LOGGER = logging.getLogger("ic10c.lowering")

COMPARE_OPS = {"==": "eq", "!=": "ne", ">": "gt", ">=": "ge", "<": "lt", "<=": "le"}


@dataclass
class _LoopFrame:
    cont: ir.Label
    end: ir.Label


@dataclass
class _CallFrame:
    result: Optional[Symbol]
    end: ir.Label
    loop_depth: int


class Lowerer:
    def __init__(self, resolution: Resolution, config: TargetConfig = DEFAULT_CONFIG) -> None:
        self.res = resolution
        self.config = config
        self.factory = resolution.factory
        self.ops: List[ir.Op] = []
        self.scope_ranges: Dict[Symbol, tuple] = {}
        self._label_counter = 0
        self._loops: List[_LoopFrame] = []
        self._calls: List[_CallFrame] = []
        self._subst: List[Dict[Symbol, Symbol]] = []
        self._pins: List[List[tuple]] = []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def new_label(self, tag: str) -> ir.Label:
        self._label_counter += 1
        return ir.Label(f"__{tag}_{self._label_counter}")

    def emit(self, op: ir.Op) -> None:
        self.ops.append(op)

    def place(self, label: ir.Label) -> None:
        self.ops.append(ir.Place(label))

    def temp(self, node: object = None) -> Symbol:
        return self.factory.temporary(location=getattr(node, "location", None))

    def _sym(self, sym: Symbol) -> Symbol:
        for frame in reversed(self._subst):
            if sym in frame:
                return frame[sym]
        return sym

    def _bind(self, sym: Symbol) -> Symbol:
        """Fresh copy of a local when expanding a function body."""

        if not self._subst:
            return sym
        copy = self.factory.clone(sym)
        self._subst[-1][sym] = copy
        return copy

    def _has_user_call(self, expr: ast.Expr) -> bool:
        if isinstance(expr, ast.Call):
            if expr in self.res.references:
                return True
            return any(self._has_user_call(arg) for arg in expr.args)
        if isinstance(expr, ast.BinaryOp):
            return self._has_user_call(expr.left) or self._has_user_call(expr.right)
        if isinstance(expr, ast.UnaryOp):
            return self._has_user_call(expr.operand)
        return False

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(self) -> ir.IRProgram:
        self._block(self.res.program.body)
        symbols: List[Symbol] = []
        seen = set()
        for op in self.ops:
            for sym in (*op.defs(), *op.uses()):
                if sym not in seen:
                    seen.add(sym)
                    symbols.append(sym)
        for sym in self.scope_ranges:
            if sym not in seen:
                seen.add(sym)
                symbols.append(sym)
        LOGGER.debug(
            "lowered to %d ops, %d labels, %d symbols",
            len(self.ops),
            self._label_counter,
            len(symbols),
        )
        return ir.IRProgram(ops=self.ops, symbols=symbols, scope_ranges=self.scope_ranges)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------
    def _block(self, block: ast.Block) -> None:
        self._statements(block.statements)

    def _statements(self, statements: Sequence[ast.Stmt]) -> None:
        self._pins.append([])
        for stmt in statements:
            self._statement(stmt)
        for sym, start in self._pins.pop():
            self.scope_ranges[sym] = (start, len(self.ops))

    def _statement(self, stmt: ast.Stmt) -> None:
        if isinstance(stmt, ast.Let):
            target = self._bind(self.res.declared(stmt))
            self.into(stmt.value, target)
        elif isinstance(stmt, ast.Const):
            pass
        elif isinstance(stmt, ast.DeviceAlias):
            sym = self.res.declared(stmt)
            if sym.pinned:
                self._pins[-1].append((self._bind(sym), len(self.ops)))
        elif isinstance(stmt, ast.Assign):
            sym = self._sym(self.res.referenced(stmt))
            self.into(stmt.value, sym)
            if sym.pinned:
                self.emit(ir.DeviceStore(sym.device, sym.field, sym))
        elif isinstance(stmt, ast.DeviceWrite):
            device = self.res.device_of(stmt.device)
            self.emit(ir.DeviceStore(device, stmt.field, self.value(stmt.value)))
        elif isinstance(stmt, ast.If):
            self._if(stmt)
        elif isinstance(stmt, ast.While):
            top = self.new_label("while")
            end = self.new_label("endwhile")
            self.place(top)
            self.branch_false(stmt.condition, end)
            self._loop_body(stmt.body, top, end)
            self.emit(ir.Jump(top))
            self.place(end)
        elif isinstance(stmt, ast.For):
            self._for(stmt)
        elif isinstance(stmt, ast.Loop):
            top = self.new_label("loop")
            end = self.new_label("endloop")
            self.place(top)
            self._loop_body(stmt.body, top, end)
            self.emit(ir.Jump(top))
            self.place(end)
        elif isinstance(stmt, ast.Break):
            self.emit(ir.Jump(self._innermost_loop(stmt).end))
        elif isinstance(stmt, ast.Continue):
            self.emit(ir.Jump(self._innermost_loop(stmt).cont))
        elif isinstance(stmt, ast.Yield):
            self.emit(ir.Yield())
        elif isinstance(stmt, ast.Sleep):
            self.emit(ir.Sleep(self.value(stmt.duration)))
        elif isinstance(stmt, ast.FunctionDef):
            # Expanded at each call site.
            pass
        elif isinstance(stmt, ast.Return):
            self._return(stmt)
        elif isinstance(stmt, ast.ExprStatement):
            if isinstance(stmt.expr, ast.Call) and stmt.expr in self.res.references:
                self._inline(stmt.expr, None)
            else:
                self.value(stmt.expr)
        elif isinstance(stmt, ast.Block):
            self._block(stmt)
        else:
            raise InternalCompilerError(f"cannot lower {type(stmt).__name__}")

    def _if(self, stmt: ast.If) -> None:
        end = self.new_label("endif")
        if stmt.orelse is None:
            self.branch_false(stmt.condition, end)
            self._block(stmt.body)
        else:
            orelse = self.new_label("else")
            self.branch_false(stmt.condition, orelse)
            self._block(stmt.body)
            self.emit(ir.Jump(end))
            self.place(orelse)
            self._block(stmt.orelse)
        self.place(end)

    def _for(self, stmt: ast.For) -> None:
        top = self.new_label("for")
        cont = self.new_label("forstep")
        end = self.new_label("endfor")
        self._pins.append([])
        if stmt.init is not None:
            self._statement(stmt.init)
        self.place(top)
        if stmt.condition is not None:
            self.branch_false(stmt.condition, end)
        self._loop_body(stmt.body, cont, end)
        self.place(cont)
        if stmt.step is not None:
            self._statement(stmt.step)
        self.emit(ir.Jump(top))
        self.place(end)
        for sym, start in self._pins.pop():
            self.scope_ranges[sym] = (start, len(self.ops))

    def _loop_body(self, body: ast.Block, cont: ir.Label, end: ir.Label) -> None:
        self._loops.append(_LoopFrame(cont, end))
        try:
            self._block(body)
        finally:
            self._loops.pop()

    def _innermost_loop(self, stmt: ast.Stmt) -> _LoopFrame:
        floor = self._calls[-1].loop_depth if self._calls else 0
        if len(self._loops) <= floor:
            raise InternalCompilerError("loop control outside of a loop", location=stmt.location)
        return self._loops[-1]

    def _return(self, stmt: ast.Return) -> None:
        if not self._calls:
            raise InternalCompilerError("return outside of a function", location=stmt.location)
        frame = self._calls[-1]
        if stmt.value is not None:
            if frame.result is not None:
                self.into(stmt.value, frame.result)
            else:
                self.value(stmt.value)
        self.emit(ir.Jump(frame.end))

    def _inline(self, call: ast.Call, dst: Optional[Symbol]) -> None:
        fn = self.res.referenced(call).node
        params = self.res.parameters[fn]
        args = self._operands(call.args)
        frame: Dict[Symbol, Symbol] = {}
        for param, arg in zip(params, args):
            copy = self.factory.clone(param)
            frame[param] = copy
            self.emit(ir.Move(copy, arg))
        result = None
        if dst is not None:
            result = self.temp(call)
            self.emit(ir.Move(result, ir.Immediate(0.0)))
        end = self.new_label(f"ret_{fn.name}")
        self._subst.append(frame)
        self._calls.append(_CallFrame(result, end, len(self._loops)))
        try:
            self._block(fn.body)
        finally:
            self._calls.pop()
            self._subst.pop()
        self.place(end)
        if dst is not None:
            self.emit(ir.Move(dst, result))

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------
    def value(self, expr: ast.Expr) -> ir.Value:
        """Evaluate ``expr`` into an operand, reusing symbols where possible."""

        if isinstance(expr, ast.Number):
            return ir.Immediate(float(expr.value))
        if isinstance(expr, ast.Boolean):
            return ir.Immediate(1.0 if expr.value else 0.0)
        if isinstance(expr, ast.Name):
            sym = self.res.referenced(expr)
            if sym.kind is SymbolKind.CONSTANT:
                return ir.Immediate(sym.value)
            sym = self._sym(sym)
            if sym.pinned:
                self.emit(ir.DeviceLoad(sym, sym.device, sym.field))
            return sym
        dst = self.temp(expr)
        self.into(expr, dst)
        return dst

    def _operands(self, exprs: Sequence[ast.Expr]) -> List[ir.Value]:
        values: List[ir.Value] = []
        for idx, expr in enumerate(exprs):
            value = self.value(expr)
            later_calls = any(self._has_user_call(rest) for rest in exprs[idx + 1:])
            if later_calls and isinstance(value, Symbol) and value.kind is not SymbolKind.TEMPORARY:
                # An inlined body may reassign the variable before it is used.
                snapshot = self.temp(expr)
                self.emit(ir.Move(snapshot, value))
                value = snapshot
            values.append(value)
        return values

    def into(self, expr: ast.Expr, dst: Symbol) -> None:
        """Evaluate ``expr`` and leave the result in ``dst``."""

        if isinstance(expr, (ast.Number, ast.Boolean, ast.Name)):
            src = self.value(expr)
            if src is not dst:
                self.emit(ir.Move(dst, src))
        elif isinstance(expr, ast.BinaryOp):
            if expr.op in ("&&", "||"):
                self._logical_value(expr, dst)
                return
            lhs, rhs = self._operands((expr.left, expr.right))
            if expr.op in COMPARE_OPS:
                self.emit(ir.Compare(COMPARE_OPS[expr.op], dst, lhs, rhs))
            else:
                self.emit(ir.Binary(BINARY_OPCODES[expr.op], dst, lhs, rhs))
        elif isinstance(expr, ast.UnaryOp):
            src = self.value(expr.operand)
            self.emit(ir.Unary("neg" if expr.op == "-" else "not", dst, src))
        elif isinstance(expr, ast.Call):
            if expr in self.res.references:
                self._inline(expr, dst)
                return
            opcode, arity = BUILTINS[expr.name]
            args = self._operands(expr.args)
            if arity == 1:
                self.emit(ir.Unary(opcode, dst, args[0]))
            else:
                self.emit(ir.Binary(opcode, dst, args[0], args[1]))
        elif isinstance(expr, ast.DeviceRead):
            device = self.res.device_of(expr.device)
            self.emit(ir.DeviceLoad(dst, device, expr.field))
        else:
            raise InternalCompilerError(
                f"cannot lower {type(expr).__name__}", location=getattr(expr, "location", None)
            )

    def _logical_value(self, expr: ast.BinaryOp, dst: Symbol) -> None:
        flag = self.temp(expr)
        false = self.new_label("false")
        self.emit(ir.Move(flag, ir.Immediate(0.0)))
        self.branch_false(expr, false)
        self.emit(ir.Move(flag, ir.Immediate(1.0)))
        self.place(false)
        self.emit(ir.Move(dst, flag))

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------
    def branch_false(self, expr: ast.Expr, target: ir.Label) -> None:
        """Jump to ``target`` when ``expr`` is zero; fall through otherwise."""

        if isinstance(expr, ast.BinaryOp) and expr.op == "&&":
            self.branch_false(expr.left, target)
            self.branch_false(expr.right, target)
        elif isinstance(expr, ast.BinaryOp) and expr.op == "||":
            taken = self.new_label("or")
            self.branch_true(expr.left, taken)
            self.branch_false(expr.right, target)
            self.place(taken)
        elif isinstance(expr, ast.UnaryOp) and expr.op == "!":
            self.branch_true(expr.operand, target)
        else:
            self.emit(ir.JumpIfZero(self.value(expr), target))

    def branch_true(self, expr: ast.Expr, target: ir.Label) -> None:
        """Jump to ``target`` when ``expr`` is non-zero; fall through otherwise."""

        if isinstance(expr, ast.BinaryOp) and expr.op == "||":
            self.branch_true(expr.left, target)
            self.branch_true(expr.right, target)
        elif isinstance(expr, ast.BinaryOp) and expr.op == "&&":
            skip = self.new_label("and")
            self.branch_false(expr.left, skip)
            self.branch_true(expr.right, target)
            self.place(skip)
        elif isinstance(expr, ast.UnaryOp) and expr.op == "!":
            self.branch_false(expr.operand, target)
        else:
            self.emit(ir.JumpIfNotZero(self.value(expr), target))


def lower(resolution: Resolution, config: TargetConfig = DEFAULT_CONFIG) -> ir.IRProgram:
    return Lowerer(resolution, config).run()


__all__ = ["COMPARE_OPS", "Lowerer", "lower"]
