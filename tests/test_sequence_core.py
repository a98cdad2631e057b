from __future__ import annotations

import random

import pytest

from abacus_trainer.sequence import (
    GeneratedSequence,
    Operation,
    OperationMode,
    SequenceItem,
    generate_sequence,
    magnitude_range,
    parse_integer,
    render_term,
    signed_total,
)


class ScriptedRng:
    """Random source that replays fixed draws and fails if it runs dry."""

    def __init__(self, ints: list[int], floats: list[float] | None = None) -> None:
        self._ints = list(ints)
        self._floats = list(floats or [])

    def randint(self, a: int, b: int) -> int:
        value = self._ints.pop(0)
        assert a <= value <= b
        return value

    def random(self) -> float:
        return self._floats.pop(0)


def _prefix_sums(seq: GeneratedSequence) -> list[int]:
    sums = []
    total = 0
    for item in seq.items:
        total += item.signed_value
        sums.append(total)
    return sums


@pytest.mark.parametrize("digits", [1, 2, 3, 4])
def test_every_term_has_exactly_the_configured_digit_count(digits: int) -> None:
    lo, hi = magnitude_range(digits)
    rng = random.Random(100 + digits)
    for _ in range(200):
        seq = generate_sequence(digits, 6, OperationMode.MIXED, rng=rng)
        assert all(lo <= item.value <= hi for item in seq.items)
        assert all(len(str(item.value)) == digits for item in seq.items)


def test_mixed_mode_never_goes_negative_and_starts_with_addition() -> None:
    rng = random.Random(7)
    saw_subtraction = False
    for _ in range(500):
        seq = generate_sequence(1, 10, OperationMode.MIXED, rng=rng)
        assert seq.items[0].operation is Operation.ADD
        assert min(_prefix_sums(seq)) >= 0
        saw_subtraction = saw_subtraction or any(i.operation is Operation.SUBTRACT for i in seq.items)
    assert saw_subtraction


def test_addition_only_mode_never_draws_an_operation() -> None:
    # No floats queued: any operation draw would raise.
    rng = ScriptedRng([9, 1, 5, 2, 8])
    seq = generate_sequence(1, 5, OperationMode.ADDITION_ONLY, rng=rng)
    assert [i.operation for i in seq.items] == [Operation.ADD] * 5
    assert seq.expected_answer == 25


def test_expected_answer_matches_independent_sum() -> None:
    rng = random.Random(2024)
    for _ in range(300):
        seq = generate_sequence(2, 7, OperationMode.MIXED, rng=rng)
        assert seq.expected_answer == signed_total(seq.items)
        assert seq.expected_answer == _prefix_sums(seq)[-1]


def test_same_random_state_gives_identical_sequences() -> None:
    a = generate_sequence(3, 12, OperationMode.MIXED, rng=random.Random(42))
    b = generate_sequence(3, 12, OperationMode.MIXED, rng=random.Random(42))
    assert a == b


def test_scripted_draws_seven_then_three() -> None:
    seq = generate_sequence(1, 2, OperationMode.MIXED, rng=ScriptedRng([7, 3], [0.9]))
    assert seq.items == (SequenceItem(7, Operation.ADD), SequenceItem(3, Operation.ADD))
    assert seq.expected_answer == 10


def test_subtraction_below_zero_is_forced_to_addition_keeping_the_magnitude() -> None:
    # 3 then a proposed "- 7": would be negative, so it becomes "+ 7".
    seq = generate_sequence(1, 2, OperationMode.MIXED, rng=ScriptedRng([3, 7], [0.1]))
    assert seq.items[1] == SequenceItem(7, Operation.ADD)
    assert seq.expected_answer == 10


def test_subtraction_is_kept_when_total_stays_non_negative() -> None:
    seq = generate_sequence(1, 3, OperationMode.MIXED, rng=ScriptedRng([8, 5, 3], [0.2, 0.6]))
    assert [i.operation for i in seq.items] == [Operation.ADD, Operation.SUBTRACT, Operation.ADD]
    assert seq.expected_answer == 8 - 5 + 3


def test_subtraction_down_to_exactly_zero_is_kept() -> None:
    seq = generate_sequence(1, 3, OperationMode.MIXED, rng=ScriptedRng([8, 5, 3], [0.2, 0.39]))
    assert [i.operation for i in seq.items] == [Operation.ADD, Operation.SUBTRACT, Operation.SUBTRACT]
    assert seq.expected_answer == 0


def test_invalid_counts_are_rejected() -> None:
    with pytest.raises(ValueError):
        generate_sequence(0, 5, rng=random.Random(1))
    with pytest.raises(ValueError):
        generate_sequence(1, 1, rng=random.Random(1))


def test_render_term_marks_subtractions() -> None:
    assert render_term(SequenceItem(12, Operation.ADD)) == "12"
    assert render_term(SequenceItem(12, Operation.SUBTRACT)) == "-12"


@pytest.mark.parametrize(
    ("text", "value"),
    [("42", 42), (" -7 ", -7), ("+5", 5), ("007", 7), ("", None), ("abc", None), ("1_0", None), ("١٠", None), ("3.0", None)],
)
def test_parse_integer_accepts_only_ascii_digits(text: str, value: int | None) -> None:
    assert parse_integer(text) == value
