"""
Arithmetic over the BN254 scalar field.

`FieldElement` and plain `int` are distinct types: a FieldElement can
only be built from a value already below the prime, and the only way to turn
an arbitrary integer into one is the explicit `reduce` call, which logs.
There are no arithmetic dunders mixing the two types.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from .errors import OutOfFieldRange
from .project_constants import FIELD_PRIME

log = logging.getLogger(__name__)

P = FIELD_PRIME


@dataclass(frozen=True)
class FieldElement:
    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise TypeError(f"FieldElement needs an int, got {type(self.value).__name__}")
        if not 0 <= self.value < P:
            raise OutOfFieldRange(
                f"Value {self.value} is not a canonical field element",
                value=self.value,
                prime=P,
            )

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)

    def __lt__(self, other: "FieldElement") -> bool:
        if not isinstance(other, FieldElement):
            return NotImplemented
        return self.value < other.value


Operand = Union[FieldElement, int]


def ensure_canonical(x: Operand, name: str = "value") -> FieldElement:
    """Validate without reducing. Raises OutOfFieldRange for x >= p."""
    if isinstance(x, FieldElement):
        return x
    if isinstance(x, int) and not isinstance(x, bool) and not 0 <= x < P:
        raise OutOfFieldRange(
            f"{name}={x} is outside the field [0, p)", operand=name, value=x, prime=P
        )
    return FieldElement(x)


def reduce(x: int, reason: str = "") -> FieldElement:
    if x < 0 or x >= P:
        log.debug("Reducing %s mod p%s", x, f" ({reason})" if reason else "")
    return FieldElement(x % P)


def add(a: FieldElement, b: FieldElement) -> FieldElement:
    return FieldElement((a.value + b.value) % P)


def mul(a: FieldElement, b: FieldElement) -> FieldElement:
    return FieldElement((a.value * b.value) % P)


def less_than(a: Operand, b: Operand) -> bool:
    return ensure_canonical(a, "a").value < ensure_canonical(b, "b").value
