"""
Field-overflow audit.

The claim circuit computes `difficulty * chances` inside the field, so the
threshold silently wraps mod p once the product passes p. Past that point
the win probability follows a sawtooth instead of saturating at 100%.
These helpers quantify the gap between the advertised and deployed odds.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from fractions import Fraction
from typing import List, Optional

from .field import P
from .project_constants import FIXED_CHANCE_PRICE
from .sizing import overflow_boundary, win_probability


@dataclass(frozen=True)
class SimulationResult:
    trials: int
    circuit_rate: float
    correct_rate: float
    claimed_prob: float
    actual_prob: float

    @property
    def deviation(self) -> float:
        return abs(self.circuit_rate - self.claimed_prob)


@dataclass(frozen=True)
class SawtoothRow:
    num_chances: int
    cost_wei: int
    expected_prob: Fraction
    actual_prob: Fraction

    @property
    def status(self) -> str:
        expected, actual = float(self.expected_prob), float(self.actual_prob)
        if abs(expected - actual) < 0.001:
            return "OK"
        if actual < 0.01 and expected > 0.5:
            return "CATASTROPHIC"
        return "WRONG"


def random_field_element(rng: random.Random) -> int:
    # rejection sampling keeps the distribution uniform on [0, p)
    while True:
        value = rng.getrandbits(256)
        if value < P:
            return value


def simulate_win_rate(
    difficulty: int,
    num_chances: int,
    trials: int,
    rng: Optional[random.Random] = None,
) -> SimulationResult:
    rng = rng or random.Random()
    raw_threshold = difficulty * num_chances
    circuit_threshold = raw_threshold % P

    circuit_wins = 0
    correct_wins = 0
    for _ in range(trials):
        r = random_field_element(rng)
        if r < circuit_threshold:
            circuit_wins += 1
        if raw_threshold > P or r < raw_threshold:
            correct_wins += 1

    return SimulationResult(
        trials=trials,
        circuit_rate=circuit_wins / trials,
        correct_rate=correct_wins / trials,
        claimed_prob=float(win_probability(difficulty, num_chances)),
        actual_prob=float(win_probability(difficulty, num_chances, deployed=True)),
    )


def sawtooth(difficulty: int) -> List[SawtoothRow]:
    boundary = overflow_boundary(difficulty)
    points = [
        boundary // 10,
        boundary // 2,
        boundary * 9 // 10,
        boundary - 1,
        boundary,
        boundary + 1,
        boundary * 3 // 2,
        boundary * 2,
    ]
    rows = []
    for n in points:
        if n <= 0:
            continue
        rows.append(
            SawtoothRow(
                num_chances=n,
                cost_wei=n * FIXED_CHANCE_PRICE,
                expected_prob=Fraction(difficulty * n, P),
                actual_prob=win_probability(difficulty, n, deployed=True),
            )
        )
    return rows
