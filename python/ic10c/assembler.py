"""Two-pass label resolution and listing assembly.

Pass 1 walks the code and gives every label the line of the instruction that
follows it; a label with nothing after it resolves to the line count, so a
jump there ends the program. Pass 2 swaps each ``LabelRef`` for the
resolved ``LineNumber``. The line limit is checked on the rewritten code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Union

from .config import DEFAULT_CONFIG, TargetConfig
from .errors import DuplicateLabel, LineLimitExceeded, UnresolvedLabel
from .instructions import Instruction, Label, LabelRef, LineNumber

LOGGER = logging.getLogger("ic10c.assembler")


@dataclass
class Listing:
    instructions: List[Instruction]
    labels: Dict[str, int] = field(default_factory=dict)
    line_limit: int = DEFAULT_CONFIG.line_limit

    def lines(self) -> List[str]:
        return [str(instr) for instr in self.instructions]

    @property
    def text(self) -> str:
        return "\n".join(self.lines())

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self):
        return iter(self.instructions)

    def __getitem__(self, idx: int) -> Instruction:
        return self.instructions[idx]


def assign_lines(code: Iterable[Union[Instruction, Label]]) -> Dict[str, int]:
    """Pass 1: label name -> line number."""

    labels: Dict[str, int] = {}
    line = 0
    for item in code:
        if isinstance(item, Label):
            if item.name in labels:
                raise DuplicateLabel(item.name)
            labels[item.name] = line
        else:
            line += 1
    return labels


def resolve_labels(code: Iterable[Union[Instruction, Label]], labels: Dict[str, int]) -> List[Instruction]:
    """Pass 2: rewrite jump targets to absolute lines and drop label markers."""

    resolved: List[Instruction] = []
    for item in code:
        if isinstance(item, Label):
            continue
        idx = item.spec.target_index
        if idx is not None:
            target = item.operands[idx]
            if isinstance(target, LabelRef):
                if target.name not in labels:
                    raise UnresolvedLabel(target.name)
                item = item.with_operand(idx, LineNumber(labels[target.name]))
        resolved.append(item)
    return resolved


def assemble(code: Iterable[Union[Instruction, Label]], config: TargetConfig = DEFAULT_CONFIG) -> Listing:
    items = list(code)
    labels = assign_lines(items)
    instructions = resolve_labels(items, labels)
    if len(instructions) > config.line_limit:
        raise LineLimitExceeded(len(instructions), config.line_limit)
    LOGGER.debug(
        "assembled %d lines (%d labels, limit %d)",
        len(instructions),
        len(labels),
        config.line_limit,
    )
    return Listing(instructions=instructions, labels=labels, line_limit=config.line_limit)


__all__ = ["Listing", "assemble", "assign_lines", "resolve_labels"]
