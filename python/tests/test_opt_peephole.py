from __future__ import annotations

import textwrap

import pytest

from ic10c.errors import UnresolvedLabel
from ic10c.instructions import format_code, parse_listing
from ic10c import peephole


def _opt(src: str, observable=()):
    code = parse_listing(textwrap.dedent(src).strip("\n"))
    return format_code(peephole.optimize(code, frozenset(observable)))


def test_constant_arithmetic_folds_and_forwards():
    assert _opt(
        """
        add r0 2 3
        s d0 Setting r0
        """
    ) == ["s d0 Setting 5"]


def test_nested_constants_collapse_to_one_move():
    assert _opt(
        """
        mul r1 2 3
        add r2 r1 4
        move r14 r2
        """,
        observable={14},
    ) == ["move r14 10"]


def test_comparisons_and_unary_math_fold():
    optimized = _opt(
        """
        sgt r14 3 2
        sqrt r15 16
        """,
        observable={14, 15},
    )
    assert optimized == ["move r14 1", "move r15 4"]


def test_non_finite_results_are_not_folded():
    listing = ["div r0 1 0", "s d0 Setting r0"]
    assert _opt("\n".join(listing)) == listing


def test_self_move_removed():
    assert _opt(
        """
        l r3 d0 Setting
        move r3 r3
        s d1 Setting r3
        """
    ) == ["l r3 d0 Setting", "s d1 Setting r3"]


def test_overwritten_move_is_dropped():
    assert _opt(
        """
        move r1 5
        move r1 6
        s d0 Setting r1
        """
    ) == ["s d0 Setting 6"]


def test_result_move_coalesced_into_producer():
    assert _opt(
        """
        l r0 d0 Setting
        add r1 r0 1
        move r2 r1
        s d1 Setting r2
        s d2 Setting r2
        """
    ) == ["l r0 d0 Setting", "add r2 r0 1", "s d1 Setting r2", "s d2 Setting r2"]


def test_writes_to_observable_registers_survive():
    listing = ["move r15 1", "s d1 Setting r15"]
    assert _opt("\n".join(listing), observable={15}) == listing


def test_unused_device_read_is_dead():
    assert _opt(
        """
        l r0 d0 Setting
        yield
        """
    ) == ["yield"]


def test_value_live_around_loop_is_kept():
    src = """
        move r0 0
        top:
        slt r1 r0 10
        beqz r1 done
        add r0 r0 1
        j top
        done:
        """
    assert _opt(src) == ["move r0 0", "top:", "slt r1 r0 10", "beqz r1 done", "add r0 r0 1", "j top", "done:"]


def test_jump_to_next_line_removed():
    assert _opt(
        """
        j next
        next:
        yield
        """
    ) == ["yield"]


def test_unreachable_code_after_jump_removed():
    assert _opt(
        """
        j end
        move r0 1
        s d0 Setting r0
        end:
        yield
        """
    ) == ["yield"]


def test_jump_threading():
    optimized = _opt(
        """
        top:
        l r0 d0 Setting
        bnez r0 mid
        yield
        j top
        mid:
        j top
        """
    )
    assert optimized == ["top:", "l r0 d0 Setting", "bnez r0 top", "yield", "j top"]


@pytest.mark.parametrize(
    "branch, expected",
    [
        ("beqz 0 skip", ["s d0 Setting 1"]),
        ("bnez 0 skip", ["yield", "s d0 Setting 1"]),
        ("beqz 2 skip", ["yield", "s d0 Setting 1"]),
        ("bnez -1 skip", ["s d0 Setting 1"]),
    ],
)
def test_constant_branches_fold(branch, expected):
    src = f"{branch}\nyield\nskip:\ns d0 Setting 1"
    assert _opt(src) == expected


def test_unreferenced_labels_removed():
    assert _opt(
        """
        orphan:
        s d0 Setting 1
        """
    ) == ["s d0 Setting 1"]


def test_input_list_untouched():
    code = parse_listing("move r1 r1\nyield")
    snapshot = list(code)
    peephole.optimize(code)
    assert code == snapshot


@pytest.mark.parametrize(
    "src, observable",
    [
        ("add r0 2 3\ns d0 Setting r0", ()),
        ("l r0 d0 Setting\nadd r1 r0 1\nmove r14 r1\ns d0 Setting r14", (14,)),
        ("top:\nl r0 d0 On\nbeqz r0 top\nmove r15 r0\ns d1 On r15\nj top", (15,)),
        ("j a\nb:\nyield\na:\nj b", ()),
    ],
)
def test_optimizer_is_idempotent(src, observable):
    once = peephole.optimize(parse_listing(src), frozenset(observable))
    twice = peephole.optimize(once, frozenset(observable))
    assert twice == once


def test_dangling_jump_is_reported():
    with pytest.raises(UnresolvedLabel):
        peephole.optimize(parse_listing("j nowhere"))


def test_live_after_tracks_branch_targets():
    code = parse_listing("beqz r0 out\nmove r1 2\nout:\ns d0 Setting r1")
    live = peephole.live_after(code)
    assert 1 in live[0]
    assert live[3] == frozenset()
