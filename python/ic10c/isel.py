"""Instruction selection: IR operations to IC10 instructions."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Type

from . import ir
from .errors import InternalCompilerError
from .instructions import (
    Code,
    DeviceSlot,
    Instruction,
    Label,
    LabelRef,
    LogicType,
    Number,
    Operand,
    Register,
    make,
)
from .regalloc import Allocation
from .symbols import Symbol

LOGGER = logging.getLogger("ic10c.isel")

COMPARE_MNEMONICS = {"eq": "seq", "ne": "sne", "gt": "sgt", "ge": "sge", "lt": "slt", "le": "sle"}
UNARY_MNEMONICS = {"not": "seqz", "abs": "abs", "ceil": "ceil", "floor": "floor",
                   "round": "round", "trunc": "trunc", "sqrt": "sqrt", "exp": "exp", "log": "log"}
BINARY_MNEMONICS = frozenset({"add", "sub", "mul", "div", "mod", "max", "min", "and", "or"})


class Selector:
    def __init__(self, allocation: Allocation) -> None:
        self.allocation = allocation

    def reg(self, sym: object) -> Register:
        if not isinstance(sym, Symbol):
            raise InternalCompilerError(f"expected a symbol, got {sym!r}")
        try:
            return Register(self.allocation.register_of(sym))
        except KeyError:
            raise InternalCompilerError(f"no register assigned to {sym!r}") from None

    def val(self, value: object) -> Operand:
        if isinstance(value, ir.Immediate):
            return Number(value.value)
        return self.reg(value)

    # Templates ---------------------------------------------------------
    def _move(self, op: ir.Move) -> List[Instruction]:
        return [make("move", self.reg(op.dst), self.val(op.src))]

    def _binary(self, op: ir.Binary) -> List[Instruction]:
        if op.op not in BINARY_MNEMONICS:
            raise InternalCompilerError(f"unknown binary operation '{op.op}'")
        return [make(op.op, self.reg(op.dst), self.val(op.lhs), self.val(op.rhs))]

    def _compare(self, op: ir.Compare) -> List[Instruction]:
        mnemonic = COMPARE_MNEMONICS.get(op.op)
        if mnemonic is None:
            raise InternalCompilerError(f"unknown comparison '{op.op}'")
        return [make(mnemonic, self.reg(op.dst), self.val(op.lhs), self.val(op.rhs))]

    def _unary(self, op: ir.Unary) -> List[Instruction]:
        if op.op == "neg":
            return [make("sub", self.reg(op.dst), Number(0.0), self.val(op.src))]
        mnemonic = UNARY_MNEMONICS.get(op.op)
        if mnemonic is None:
            raise InternalCompilerError(f"unknown unary operation '{op.op}'")
        return [make(mnemonic, self.reg(op.dst), self.val(op.src))]

    def _jump(self, op: ir.Jump) -> List[Instruction]:
        return [make("j", LabelRef(op.target.name))]

    def _jump_if_zero(self, op: ir.JumpIfZero) -> List[Instruction]:
        return [make("beqz", self.val(op.cond), LabelRef(op.target.name))]

    def _jump_if_not_zero(self, op: ir.JumpIfNotZero) -> List[Instruction]:
        return [make("bnez", self.val(op.cond), LabelRef(op.target.name))]

    def _load(self, op: ir.DeviceLoad) -> List[Instruction]:
        return [make("l", self.reg(op.dst), DeviceSlot(op.device), LogicType(op.field))]

    def _store(self, op: ir.DeviceStore) -> List[Instruction]:
        return [make("s", DeviceSlot(op.device), LogicType(op.field), self.val(op.src))]

    def _yield(self, op: ir.Yield) -> List[Instruction]:
        return [make("yield")]

    def _sleep(self, op: ir.Sleep) -> List[Instruction]:
        return [make("sleep", self.val(op.duration))]

    def _nop(self, op: ir.Nop) -> List[Instruction]:
        return []

    def _place(self, op: ir.Place) -> List[Label]:
        return [Label(op.label.name)]

    TEMPLATES: Dict[Type[ir.Op], Callable] = {
        ir.Move: _move,
        ir.Binary: _binary,
        ir.Compare: _compare,
        ir.Unary: _unary,
        ir.Jump: _jump,
        ir.JumpIfZero: _jump_if_zero,
        ir.JumpIfNotZero: _jump_if_not_zero,
        ir.DeviceLoad: _load,
        ir.DeviceStore: _store,
        ir.Yield: _yield,
        ir.Sleep: _sleep,
        ir.Nop: _nop,
        ir.Place: _place,
    }

    def select(self, ops: List[ir.Op]) -> Code:
        code: Code = []
        for op in ops:
            template = self.TEMPLATES.get(type(op))
            if template is None:
                raise InternalCompilerError(f"no instruction template for {type(op).__name__}")
            try:
                code.extend(template(self, op))
            except (AttributeError, TypeError, ValueError) as exc:
                raise InternalCompilerError(f"malformed {type(op).__name__}: {exc}") from exc
        LOGGER.debug("selected %d instructions from %d ops", sum(isinstance(i, Instruction) for i in code), len(ops))
        return code


def select(program: ir.IRProgram, allocation: Allocation) -> Code:
    return Selector(allocation).select(program.ops)


__all__ = ["Selector", "select"]
