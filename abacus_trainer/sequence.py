"""Deterministic generation of practice sequences.

A practice sequence is a short run of signed terms that the user totals in
their head.  Generation is a pure function of its arguments and an injected
random source, so the same source state always yields the same sequence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


# Mixed mode: rng.random() below this value proposes a subtraction.
SUBTRACTION_PROBABILITY = 0.4


class RandomSource(Protocol):
    """The subset of ``random.Random`` the generator draws from."""

    def randint(self, a: int, b: int) -> int:
        ...

    def random(self) -> float:
        ...


class Operation(str, Enum):
    ADD = "+"
    SUBTRACT = "-"


class OperationMode(str, Enum):
    MIXED = "mixed"
    ADDITION_ONLY = "addition_only"


@dataclass(frozen=True, slots=True)
class SequenceItem:
    value: int
    operation: Operation = Operation.ADD

    @property
    def signed_value(self) -> int:
        return -self.value if self.operation is Operation.SUBTRACT else self.value


@dataclass(frozen=True, slots=True)
class GeneratedSequence:
    items: tuple[SequenceItem, ...]
    expected_answer: int

    def __len__(self) -> int:
        return len(self.items)


def magnitude_range(digit_count: int) -> tuple[int, int]:
    """Inclusive bounds of numbers with exactly ``digit_count`` digits."""

    if digit_count < 1:
        raise ValueError("digit_count must be >= 1")
    return 10 ** (digit_count - 1), 10**digit_count - 1


def generate_sequence(
    digit_count: int,
    term_count: int,
    operation_mode: OperationMode = OperationMode.MIXED,
    *,
    rng: RandomSource,
) -> GeneratedSequence:
    """Generate ``term_count`` terms of ``digit_count`` digits each.

    The first term is always an addition.  In mixed mode later terms are
    subtractions with probability 0.4, except that a subtraction which would
    take the running total below zero is turned into an addition of the same
    magnitude.  The returned ``expected_answer`` is the final running total.
    """

    if term_count < 2:
        raise ValueError("term_count must be >= 2")
    lo, hi = magnitude_range(digit_count)

    items: list[SequenceItem] = []
    total = 0
    for index in range(term_count):
        value = rng.randint(lo, hi)
        op = Operation.ADD
        if index > 0 and operation_mode is OperationMode.MIXED:
            if rng.random() < SUBTRACTION_PROBABILITY:
                op = Operation.SUBTRACT
            if op is Operation.SUBTRACT and total - value < 0:
                op = Operation.ADD
        item = SequenceItem(value=value, operation=op)
        items.append(item)
        total += item.signed_value

    return GeneratedSequence(items=tuple(items), expected_answer=total)


def signed_total(items: tuple[SequenceItem, ...] | list[SequenceItem]) -> int:
    return sum(item.signed_value for item in items)


def render_term(item: SequenceItem) -> str:
    """Flash-card text: subtractions carry a leading minus sign."""

    if item.operation is Operation.SUBTRACT:
        return f"-{item.value}"
    return str(item.value)


_INTEGER_TEXT = re.compile(r"[+-]?\d+", re.ASCII)


def parse_integer(text: str) -> int | None:
    """Parse typed digits (ASCII 0-9 with an optional sign), or None."""

    s = str(text).strip()
    if _INTEGER_TEXT.fullmatch(s) is None:
        return None
    return int(s)
