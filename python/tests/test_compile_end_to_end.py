from __future__ import annotations

import logging
import random
import sys

import pytest

from ast_builders import (
    assign,
    binop,
    block,
    call,
    const,
    function,
    if_,
    let,
    neg,
    port,
    program,
    read,
    ret,
    while_,
    write,
)
from ic10c import (
    ErrorKind,
    LineLimitExceeded,
    RegisterExhaustion,
    Simulator,
    TargetConfig,
    TickResult,
    compile_program,
    try_compile,
)
from ic10c import nodes as ast
from ic10c.instructions import LineNumber
from ic10c.peephole import optimize


def _if_program():
    return program(
        port("a", "d0", "Setting"),
        port("out", "d1", "Setting"),
        if_(binop(">", "a", 0), block(assign("out", 1)), block(assign("out", neg(1)))),
    )


def _while_program():
    return program(
        let("x", 0),
        while_(binop("<", "x", 10), block(assign("x", binop("+", "x", 1)))),
    )


def test_if_else_listing_matches_expected_shape():
    result = compile_program(_if_program())
    assert result.lines == [
        "l r14 d0 Setting",
        "sgt r0 r14 0",
        "beqz r0 6",
        "move r15 1",
        "s d1 Setting r15",
        "j 8",
        "move r15 -1",
        "s d1 Setting r15",
    ]


@pytest.mark.parametrize("value, expected", [(5, 1), (-3, -1), (0, -1)])
def test_if_else_simulates_both_branches(value, expected):
    result = compile_program(_if_program())
    sim = Simulator(result.listing)
    sim.write("d0", "Setting", value)
    assert sim.tick() is TickResult.END
    assert sim.read("d1", "Setting") == expected


def test_while_loop_listing_and_iterations():
    result = compile_program(_while_program())
    assert result.lines == [
        "move r0 0",
        "slt r1 r0 10",
        "beqz r1 5",
        "add r0 r0 1",
        "j 1",
    ]
    sim = Simulator(result.listing)
    assert sim.tick() is TickResult.END
    assert sim.register(result.register_of("x")) == 10
    # the increment runs once per iteration
    assert sim.line_counts[3] == 10


def test_constant_expression_folds_to_single_move():
    deep = binop("*", binop("+", binop("-", 10, 4), binop("/", 8, 2)), binop("%", 7, 4))
    result = compile_program(program(port("out", "d0", "Setting"), assign("out", deep)))
    assert result.lines == ["move r14 30", "s d0 Setting r14"]



def _sum_of_ones(depth: int):
    total = ast.Number(1.0)
    for _ in range(depth):
        total = binop("+", total, 1)
    return total


def test_deeply_nested_constant_still_folds():
    result = compile_program(program(port("out", "d0", "Setting"), assign("out", _sum_of_ones(1200))))
    assert result.lines == ["move r14 1201", "s d0 Setting r14"]


def test_nesting_beyond_recursion_limit_is_a_compile_error():
    limit = sys.getrecursionlimit()
    where = ast.SourceLocation(7, 3)
    prog = program(port("out", "d0", "Setting"), ast.Assign("out", _sum_of_ones(20000), location=where))
    outcome = try_compile(prog)
    assert not outcome.ok
    assert outcome.error.kind is ErrorKind.NESTING_TOO_DEEP
    assert outcome.error.location == where
    assert outcome.error.depth > 20000
    assert "nested too deeply" in str(outcome.error)
    assert sys.getrecursionlimit() == limit

def test_named_constant_is_inlined():
    result = compile_program(program(const("K", binop("*", 2, 8)), write("d0", "Setting", binop("+", "K", 1))))
    assert result.lines == ["s d0 Setting 17"]


def test_optimizer_is_idempotent_on_compiled_output():
    for prog in (_if_program(), _while_program()):
        result = compile_program(prog)
        observable = frozenset(r for name, r in result.registers.items() if name in {"a", "out"})
        assert optimize(result.code, observable) == result.code


def _random_program(seed: int):
    rng = random.Random(seed)
    names = []
    stmts = [port("out", "d0", "Setting")]
    for idx in range(rng.randint(3, 5)):
        if names and rng.random() < 0.5:
            value = binop(rng.choice(["+", "-", "*", "<", "=="]), rng.choice(names), rng.choice(names + [2]))
        elif rng.random() < 0.3:
            value = binop("+", rng.randint(0, 9), rng.randint(0, 9))
        else:
            value = read(f"d{rng.randint(1, 5)}", "Setting")
        name = f"v{idx}"
        stmts.append(let(name, value))
        names.append(name)
        shape = rng.random()
        if shape < 0.3:
            stmts.append(
                if_(
                    binop(">", rng.choice(names), rng.randint(-2, 2)),
                    block(assign("out", rng.choice(names))),
                    block(assign(rng.choice(names), binop("-", rng.choice(names), 1))),
                )
            )
        elif shape < 0.5:
            counter = f"i{idx}"
            stmts.append(let(counter, 0))
            stmts.append(
                while_(
                    binop("<", counter, rng.randint(1, 4)),
                    block(
                        assign(counter, binop("+", counter, 1)),
                        assign("out", binop("+", "out", rng.choice(names))),
                    ),
                )
            )
    stmts.append(assign("out", names[-1]))
    return program(*stmts)


@pytest.mark.parametrize("seed", range(12))
def test_optimizer_is_idempotent_on_random_programs(seed):
    result = compile_program(_random_program(seed))
    observable = frozenset({result.register_of("out")})
    assert optimize(result.code, observable) == result.code


def test_jump_targets_resolve_inside_listing():
    result = compile_program(_if_program())
    for instr in result.listing:
        target = instr.target
        if target is not None:
            assert isinstance(target, LineNumber)
            assert 0 <= target.line <= len(result.listing)


def test_unoptimized_count_recorded():
    result = compile_program(_if_program(), optimize=False)
    assert result.unoptimized_count == len(result.listing)
    assert "sub r15 0 1" in result.lines


def _pressure_program(count: int):
    stmts = [let(f"v{idx}", idx) for idx in range(count)]
    total = "v0"
    for idx in range(1, count):
        total = binop("+", total, f"v{idx}")
    stmts.append(write("d0", "Setting", total))
    return program(*stmts)


def test_register_pool_exactly_full_succeeds():
    result = compile_program(_pressure_program(14))
    assert result.allocation_stats["max_pressure"] == 14
    sim = Simulator(result.listing)
    sim.run()
    assert sim.read("d0", "Setting") == sum(range(14))


def test_register_pool_overflow_fails():
    with pytest.raises(RegisterExhaustion) as excinfo:
        compile_program(_pressure_program(15))
    assert excinfo.value.live == 15
    assert excinfo.value.capacity == 14


def _straight_line_writes(count: int):
    return program(*(write("d0", "Setting", idx) for idx in range(count)))


def test_line_limit_exactly_reached_succeeds():
    result = compile_program(_straight_line_writes(128))
    assert len(result.listing) == 128


def test_line_limit_exceeded_reports_actual_and_limit():
    with pytest.raises(LineLimitExceeded) as excinfo:
        compile_program(_straight_line_writes(129))
    assert excinfo.value.actual == 129
    assert excinfo.value.limit == 128


def test_line_limit_follows_config():
    cfg = TargetConfig(line_limit=4)
    assert len(compile_program(_straight_line_writes(4), cfg).listing) == 4
    outcome = try_compile(_straight_line_writes(5), cfg)
    assert not outcome.ok
    assert outcome.error.kind is ErrorKind.LINE_LIMIT_EXCEEDED


def test_inlined_function_with_early_return():
    clamp = function(
        "clamp",
        ["v"],
        block(if_(binop(">", "v", 100), block(ret(100))), ret("v")),
    )
    prog = program(
        clamp,
        port("out", "d1", "Setting"),
        assign("out", call("clamp", read("d0", "Setting"))),
    )
    result = compile_program(prog)
    for value, expected in ((150, 100), (42, 42)):
        sim = Simulator(result.listing)
        sim.write("d0", "Setting", value)
        sim.run()
        assert sim.read("d1", "Setting") == expected


def test_function_called_twice_gets_fresh_locals():
    double = function("double", ["n"], block(let("r", binop("*", "n", 2)), ret("r")))
    prog = program(
        double,
        write("d0", "Setting", binop("+", call("double", 3), call("double", 4))),
    )
    result = compile_program(prog)
    sim = Simulator(result.listing)
    sim.run()
    assert sim.read("d0", "Setting") == 14


def test_for_loop_with_break_and_continue():
    body = block(
        if_(binop("==", "i", 5), block(ast.Break())),
        if_(binop("==", binop("%", "i", 2), 1), block(ast.Continue())),
        assign("total", binop("+", "total", "i")),
    )
    prog = program(
        let("total", 0),
        ast.For(let("i", 0), binop("<", "i", 10), assign("i", binop("+", "i", 1)), body),
        write("d0", "Setting", "total"),
    )
    result = compile_program(prog)
    sim = Simulator(result.listing)
    assert sim.run() is TickResult.END
    assert sim.read("d0", "Setting") == 0 + 2 + 4


def test_endless_loop_yields_every_tick():
    prog = program(
        port("count", "d0", "Setting"),
        ast.Loop(block(assign("count", binop("+", "count", 1)), ast.Yield())),
    )
    result = compile_program(prog)
    sim = Simulator(result.listing)
    for expected in (1, 2, 3):
        assert sim.tick() is TickResult.YIELD
        assert sim.read("d0", "Setting") == expected


@pytest.mark.parametrize(
    "x, y, expected_and, expected_or",
    [(1, 1, 1, 1), (1, 0, 0, 1), (0, 1, 0, 1), (0, 0, 0, 0)],
)
def test_short_circuit_values(x, y, expected_and, expected_or):
    prog = program(
        let("x", read("d1", "Setting")),
        let("y", read("d2", "Setting")),
        write("d0", "Setting", binop("&&", binop(">", "x", 0), binop(">", "y", 0))),
        write("d0", "On", binop("||", binop(">", "x", 0), binop(">", "y", 0))),
    )
    result = compile_program(prog)
    sim = Simulator(result.listing)
    sim.write("d1", "Setting", x)
    sim.write("d2", "Setting", y)
    sim.run()
    assert sim.read("d0", "Setting") == expected_and
    assert sim.read("d0", "On") == expected_or


def test_builtins_compile_to_target_math():
    prog = program(
        let("x", read("d1", "Setting")),
        write("d0", "Setting", call("max", call("abs", "x"), 3)),
        write("d0", "Ratio", call("floor", binop("/", "x", 2))),
    )
    result = compile_program(prog)
    sim = Simulator(result.listing)
    sim.write("d1", "Setting", -5)
    sim.run()
    assert sim.read("d0", "Setting") == 5
    assert sim.read("d0", "Ratio") == -3


def test_try_compile_returns_structured_error():
    outcome = try_compile(program(assign("missing", 1)))
    assert outcome.result is None
    assert outcome.error.kind is ErrorKind.UNBOUND_IDENTIFIER
    assert outcome.error.to_dict()["kind"] == "UnboundIdentifier"


def test_pipeline_logs_stage_summaries(caplog):
    caplog.set_level(logging.DEBUG, logger="ic10c")
    compile_program(_while_program())
    loggers = {record.name for record in caplog.records}
    assert {"ic10c.lowering", "ic10c.regalloc", "ic10c.assembler"} <= loggers
