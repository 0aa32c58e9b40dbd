from __future__ import annotations

import itertools
import random

import pytest

from ast_builders import assign, binop, block, let, port, program, read, while_, write
from ic10c import ir
from ic10c.config import TargetConfig
from ic10c.errors import RegisterExhaustion
from ic10c.liveness import LiveRange, compute_liveness, live_ranges
from ic10c.lowering import lower
from ic10c.regalloc import allocate
from ic10c.scope import resolve
from ic10c.symbols import SymbolFactory, SymbolKind


def _allocate(prog, config=None):
    cfg = config or TargetConfig()
    lowered = lower(resolve(prog, cfg), cfg)
    return lowered, allocate(lowered, cfg)


def _assert_no_sharing(allocation):
    for (a, reg_a), (b, reg_b) in itertools.combinations(allocation.registers.items(), 2):
        if allocation.ranges[a].overlaps(allocation.ranges[b]):
            assert reg_a != reg_b, f"{a!r} and {b!r} share r{reg_a}"


def test_live_range_overlap_is_half_open():
    assert LiveRange(0, 4).overlaps(LiveRange(3, 6))
    assert not LiveRange(0, 4).overlaps(LiveRange(4, 6))
    assert LiveRange(2, 3).union(LiveRange(5, 9)) == LiveRange(2, 9)


def test_liveness_solver_handles_loops():
    # 0: x = ..   1: use x   2: jump 1
    live_in, live_out = compute_liveness(
        3,
        [(1,), (2,), (1,)],
        lambda idx: {"x"} if idx == 1 else set(),
        lambda idx: {"x"} if idx == 0 else set(),
    )
    assert live_in[0] == frozenset()
    assert live_out[2] == {"x"}
    assert live_in[1] == {"x"}


def test_liveness_exit_values():
    live_in, _ = compute_liveness(2, [(1,), (2,)], lambda idx: set(), lambda idx: set(), {"r"})
    assert live_in[0] == {"r"}


def test_sequential_values_reuse_lowest_register():
    lowered, alloc = _allocate(
        program(
            write("d0", "Setting", binop("*", read("d1", "Setting"), 2)),
            write("d0", "Setting", binop("*", read("d2", "Setting"), 3)),
        )
    )
    assert set(alloc.registers.values()) == {0}
    assert alloc.stats["max_pressure"] == 1


def test_operand_and_result_may_share_register():
    _, alloc = _allocate(program(let("x", read("d0", "Setting")), write("d1", "Setting", binop("+", "x", 1))))
    # x dies at the add, so the sum can take its register
    assert set(alloc.registers.values()) == {0}


def test_overlapping_values_get_distinct_registers():
    _, alloc = _allocate(
        program(
            let("a", read("d0", "Setting")),
            let("b", read("d1", "Setting")),
            let("c", read("d2", "Setting")),
            write("d3", "Setting", binop("+", binop("+", "a", "b"), "c")),
        )
    )
    regs = {sym.name: reg for sym, reg in alloc.registers.items() if sym.kind is SymbolKind.VARIABLE}
    assert regs == {"a": 0, "b": 1, "c": 2}
    _assert_no_sharing(alloc)
    assert alloc.conflicts() == []


def test_loop_carried_value_stays_live_across_back_edge():
    _, alloc = _allocate(
        program(
            let("i", 0),
            while_(
                binop("<", "i", 5),
                block(let("t", binop("*", "i", 2)), write("d0", "Setting", "t"), assign("i", binop("+", "i", 1))),
            ),
        )
    )
    regs = {sym.name: reg for sym, reg in alloc.registers.items()}
    assert regs["i"] != regs["t"]
    _assert_no_sharing(alloc)


@pytest.mark.parametrize("seed", range(8))
def test_random_programs_never_share_overlapping_registers(seed):
    rng = random.Random(seed)
    names = []
    stmts = []
    for idx in range(rng.randint(4, 10)):
        if names and rng.random() < 0.5:
            left, right = rng.choice(names), rng.choice(names)
            value = binop(rng.choice(["+", "-", "*", "<"]), left, right)
        else:
            value = read(f"d{rng.randint(0, 5)}", "Setting")
        name = f"v{idx}"
        stmts.append(let(name, value))
        names.append(name)
        if rng.random() < 0.3:
            stmts.append(write("d0", "Setting", rng.choice(names)))
    stmts.append(write("d1", "Setting", names[-1]))
    _, alloc = _allocate(program(*stmts))
    _assert_no_sharing(alloc)


def test_pinned_ports_take_io_registers_then_top_of_pool():
    _, alloc = _allocate(
        program(
            port("a", "d0", "Setting"),
            port("b", "d1", "Setting"),
            port("c", "d2", "Setting"),
            let("x", binop("+", "a", "b")),
            assign("c", "x"),
        )
    )
    regs = {sym.name: reg for sym, reg in alloc.registers.items()}
    assert (regs["a"], regs["b"], regs["c"]) == (14, 15, 13)
    assert regs["x"] == 0
    assert alloc.pinned_registers == (13, 14, 15)


def test_pinned_register_reserved_for_whole_scope():
    _, alloc = _allocate(
        program(
            port("a", "d0", "Setting"),
            write("d1", "Setting", "a"),
            let("x", read("d2", "Setting")),
            write("d3", "Setting", "x"),
        ),
        TargetConfig(io_registers=0),
    )
    regs = {sym.name: reg for sym, reg in alloc.registers.items()}
    # a is never read after line 2, but keeps r15 until the program ends
    assert regs["a"] == 15
    assert regs["x"] == 0
    pinned = next(sym for sym in alloc.registers if sym.name == "a")
    x = next(sym for sym in alloc.registers if sym.name == "x")
    assert alloc.ranges[pinned].overlaps(alloc.ranges[x])


def test_explicit_pin_is_honoured():
    _, alloc = _allocate(program(port("p", "d0", "Setting", register="r7"), assign("p", 1)))
    assert [reg for sym, reg in alloc.registers.items() if sym.name == "p"] == [7]


def test_general_values_avoid_explicitly_pinned_general_register():
    _, alloc = _allocate(
        program(
            port("p", "d0", "Setting", register="r0"),
            let("x", read("d1", "Setting")),
            assign("p", "x"),
        )
    )
    regs = {sym.name: reg for sym, reg in alloc.registers.items()}
    assert regs["p"] == 0
    assert regs["x"] == 1


def test_explicit_pin_claims_register_before_automatic_pins():
    _, alloc = _allocate(
        program(
            port("a", "d0", "Setting"),
            port("b", "d1", "Setting", register="r14"),
            assign("b", binop("+", "a", 1)),
        )
    )
    regs = {sym.name: reg for sym, reg in alloc.registers.items()}
    # a is declared first but r14 belongs to b, so a moves to the next io register
    assert (regs["a"], regs["b"]) == (15, 14)
    _assert_no_sharing(alloc)


def test_conflicting_explicit_pins_fail():
    with pytest.raises(RegisterExhaustion, match="both pinned to r5"):
        _allocate(
            program(
                port("p", "d0", "Setting", register="r5"),
                port("q", "d1", "Setting", register="r5"),
                assign("p", "q"),
            )
        )


def test_exhaustion_reports_live_count_and_capacity(small_config):
    # 3 general registers in the small target
    stmts = [let(f"v{idx}", read("d0", "Setting")) for idx in range(4)]
    total = binop("+", binop("+", binop("+", "v0", "v1"), "v2"), "v3")
    with pytest.raises(RegisterExhaustion) as excinfo:
        _allocate(program(*stmts, write("d1", "Setting", total)), small_config)
    assert excinfo.value.live == 4
    assert excinfo.value.capacity == 3


def test_allocation_stats_present():
    _, alloc = _allocate(program(let("x", read("d0", "Setting")), write("d1", "Setting", "x")))
    for key in ("max_pressure", "available_registers", "used_registers", "used_register_count", "pinned_count"):
        assert key in alloc.stats, f"{key} missing from allocation stats"
    assert alloc.stats["available_registers"] == 14


def test_live_ranges_cover_definition_to_last_use():
    factory = SymbolFactory()
    x = factory.new("x", SymbolKind.VARIABLE)
    y = factory.new("y", SymbolKind.VARIABLE)
    prog = ir.IRProgram(
        ops=[
            ir.DeviceLoad(x, "d0", "Setting"),
            ir.DeviceLoad(y, "d1", "Setting"),
            ir.DeviceStore("d2", "Setting", x),
            ir.DeviceStore("d2", "Setting", y),
        ]
    )
    ranges = live_ranges(prog)
    assert ranges[x] == LiveRange(1, 5)
    assert ranges[y] == LiveRange(3, 7)
