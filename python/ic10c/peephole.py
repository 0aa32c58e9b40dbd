"""Peephole optimizer over selected IC10 code.

Each pass returns the rewritten code together with a flag saying whether it
changed anything; :func:`optimize` runs them in order until none does.
Registers in ``observable`` (the pinned device-facing registers) are treated
as live everywhere, so writes to them are never dropped.
"""

from __future__ import annotations

import logging
import math
from typing import AbstractSet, Dict, FrozenSet, List, Optional, Sequence, Tuple

from .errors import UnresolvedLabel
from .instructions import Code, Instruction, Label, LabelRef, Number, Register, make
from .liveness import compute_liveness

LOGGER = logging.getLogger("ic10c.peephole")

MAX_ROUNDS = 1000


def build_label_positions(code: Sequence[object]) -> Dict[str, int]:
    return {item.name: idx for idx, item in enumerate(code) if isinstance(item, Label)}


def next_instruction_index(code: Sequence[object], start_idx: int) -> int:
    for idx in range(start_idx, len(code)):
        if isinstance(code[idx], Instruction):
            return idx
    return -1


def _successors(code: Code, labels: Dict[str, int]) -> List[Tuple[int, ...]]:
    result = []
    for idx, item in enumerate(code):
        succ: List[int] = []
        if isinstance(item, Instruction) and item.spec.branch:
            target = item.target
            if isinstance(target, LabelRef):
                if target.name not in labels:
                    raise UnresolvedLabel(target.name)
                succ.append(labels[target.name])
            if item.spec.conditional:
                succ.append(idx + 1)
        else:
            succ.append(idx + 1)
        result.append(tuple(succ))
    return result


def live_after(code: Code, observable: AbstractSet[int] = frozenset()) -> List[FrozenSet[int]]:
    """Registers live after each item of ``code``."""

    labels = build_label_positions(code)

    def uses(idx: int):
        item = code[idx]
        if isinstance(item, Instruction):
            return {reg.index for reg in item.reads()}
        return set()

    def defs(idx: int):
        item = code[idx]
        if isinstance(item, Instruction) and item.dest is not None:
            return {item.dest.index}
        return set()

    _, live_out = compute_liveness(len(code), _successors(code, labels), uses, defs)
    if observable:
        return [out | frozenset(observable) for out in live_out]
    return live_out


# ---------------------------------------------------------------------------
# Rules


def _folded(item: Instruction) -> Optional[Instruction]:
    """``item`` as a ``move`` of its computed value, or ``None``."""

    spec = item.spec
    if item.opcode == "move" or not spec.foldable:
        return None
    values = item.values()
    if not all(isinstance(v, Number) for v in values):
        return None
    folded = spec.evaluate(*(v.value for v in values))
    if not math.isfinite(folded):
        return None
    return make("move", item.dest, Number(folded))


def _fold_constants_core(code: Code) -> Tuple[Code, bool]:
    result: Code = []
    changed = False
    for item in code:
        if isinstance(item, Instruction) and item.opcode != "move":
            folded = _folded(item)
            if folded is not None:
                result.append(folded)
                changed = True
                continue
            spec = item.spec
            values = item.values()
            if spec.conditional and isinstance(values[0], Number):
                taken = (values[0].value == 0.0) == (item.opcode == "beqz")
                if taken:
                    result.append(make("j", item.target))
                changed = True
                continue
        result.append(item)
    return result, changed


def fold_constants(code: Code) -> Code:
    return _fold_constants_core(code)[0]


def _forward_moves_core(code: Code, observable: AbstractSet[int]) -> Tuple[Code, bool]:
    """``move t k; op .. t ..`` becomes ``op .. k ..`` when ``t`` dies there."""

    live = live_after(code, observable)
    work = list(code)
    changed = False
    for idx in range(len(work) - 1):
        item = work[idx]
        reader = work[idx + 1]
        if not (isinstance(item, Instruction) and item.opcode == "move"):
            continue
        if not isinstance(reader, Instruction):
            continue
        dst = item.dest
        src = item.operands[1]
        if dst is None or dst.index in observable or src == dst:
            continue
        if reader.dest != dst and dst.index in live[idx + 1]:
            continue
        positions = [pos for pos in reader.spec.value_indices if reader.operands[pos] == dst]
        if not positions:
            continue
        for pos in positions:
            reader = reader.with_operand(pos, src)
        # Fold on the spot so a chain of constants collapses in one pass.
        work[idx + 1] = _folded(reader) or reader
        changed = True
    return work, changed


def forward_moves(code: Code, observable: AbstractSet[int] = frozenset()) -> Code:
    return _forward_moves_core(code, observable)[0]


def _combine_result_movs_core(code: Code, observable: AbstractSet[int]) -> Tuple[Code, bool]:
    """``op t ..; move x t`` becomes ``op x ..`` when ``t`` dies at the move."""

    live = live_after(code, observable)
    result: Code = []
    changed = False
    idx = 0
    while idx < len(code):
        item = code[idx]
        nxt = code[idx + 1] if idx + 1 < len(code) else None
        if (
            isinstance(item, Instruction)
            and isinstance(nxt, Instruction)
            and nxt.opcode == "move"
            and item.dest is not None
            and nxt.operands[1] == item.dest
            and nxt.dest != item.dest
            and item.dest.index not in observable
            and item.dest.index not in live[idx + 1]
        ):
            result.append(item.with_operand(item.spec.dest_index, nxt.dest))
            idx += 2
            changed = True
            continue
        result.append(item)
        idx += 1
    return result, changed


def combine_result_movs(code: Code, observable: AbstractSet[int] = frozenset()) -> Code:
    return _combine_result_movs_core(code, observable)[0]


def _eliminate_dead_stores_core(code: Code, observable: AbstractSet[int]) -> Tuple[Code, bool]:
    live = live_after(code, observable)
    result: Code = []
    changed = False
    for idx, item in enumerate(code):
        if isinstance(item, Instruction):
            if item.opcode == "move" and item.operands[1] == item.dest:
                changed = True
                continue
            dest = item.dest
            if item.spec.removable and dest is not None and dest.index not in live[idx]:
                changed = True
                continue
        result.append(item)
    return result, changed


def eliminate_dead_stores(code: Code, observable: AbstractSet[int] = frozenset()) -> Code:
    return _eliminate_dead_stores_core(code, observable)[0]


def _thread_target(code: Code, labels: Dict[str, int], name: str) -> str:
    seen = {name}
    while True:
        idx = next_instruction_index(code, labels[name])
        if idx == -1:
            return name
        item = code[idx]
        if item.opcode != "j" or not isinstance(item.target, LabelRef):
            return name
        following = item.target.name
        if following in seen or following not in labels:
            return name
        seen.add(following)
        name = following


def _simplify_jumps_core(code: Code) -> Tuple[Code, bool]:
    labels = build_label_positions(code)
    result: Code = []
    changed = False
    unreachable = False
    for idx, item in enumerate(code):
        if isinstance(item, Label):
            unreachable = False
            result.append(item)
            continue
        if unreachable:
            changed = True
            continue
        target = item.target
        if item.spec.branch and isinstance(target, LabelRef):
            if target.name not in labels:
                raise UnresolvedLabel(target.name)
            threaded = _thread_target(code, labels, target.name)
            if threaded != target.name:
                item = item.with_operand(item.spec.target_index, LabelRef(threaded))
                target = item.target
                changed = True
            # Only labels sit between here and the target.
            where = labels[target.name]
            if where > idx and all(isinstance(code[pos], Label) for pos in range(idx + 1, where)):
                changed = True
                continue
        result.append(item)
        if item.opcode == "j":
            unreachable = True
    return result, changed


def simplify_jumps(code: Code) -> Code:
    return _simplify_jumps_core(code)[0]


def _remove_dead_labels_core(code: Code) -> Tuple[Code, bool]:
    referenced = {
        item.target.name
        for item in code
        if isinstance(item, Instruction) and isinstance(item.target, LabelRef)
    }
    result = [item for item in code if not isinstance(item, Label) or item.name in referenced]
    return result, len(result) != len(code)


def remove_dead_labels(code: Code) -> Code:
    return _remove_dead_labels_core(code)[0]


def optimize(code: Code, observable: Optional[AbstractSet[int]] = None) -> Code:
    """Apply every rule until none of them changes the code."""

    keep = frozenset(observable or ())
    work: Code = list(code)
    before = sum(1 for item in work if isinstance(item, Instruction))
    for rounds in range(1, MAX_ROUNDS + 1):
        changed = False
        work, hit = _fold_constants_core(work)
        changed |= hit
        work, hit = _forward_moves_core(work, keep)
        changed |= hit
        work, hit = _combine_result_movs_core(work, keep)
        changed |= hit
        work, hit = _eliminate_dead_stores_core(work, keep)
        changed |= hit
        work, hit = _simplify_jumps_core(work)
        changed |= hit
        work, hit = _remove_dead_labels_core(work)
        changed |= hit
        if not changed:
            break
    after = sum(1 for item in work if isinstance(item, Instruction))
    LOGGER.debug("peephole: %d -> %d instructions in %d rounds", before, after, rounds)
    return work


__all__ = [
    "build_label_positions",
    "combine_result_movs",
    "eliminate_dead_stores",
    "fold_constants",
    "forward_moves",
    "live_after",
    "next_instruction_index",
    "optimize",
    "remove_dead_labels",
    "simplify_jumps",
]
