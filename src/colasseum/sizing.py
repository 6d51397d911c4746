from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction

from .errors import InvalidChanceCount, InvalidDifficulty, ThresholdOverflow
from .field import P
from .project_constants import FIXED_CHANCE_PRICE, WEI_PER_ETH


@dataclass(frozen=True)
class EntryPlan:
    odds_percent: int
    difficulty: int
    num_chances: int
    cost_wei: int
    threshold: int


def _check_difficulty(difficulty: int) -> None:
    if difficulty <= 0:
        raise InvalidDifficulty(
            f"Difficulty must be positive, got {difficulty}", difficulty=difficulty
        )


def _check_chances(num_chances: int) -> None:
    if num_chances <= 0:
        raise InvalidChanceCount(
            f"Chance count must be positive, got {num_chances}", num_chances=num_chances
        )


def size_for(odds_percent: int, difficulty: int) -> int:
    """
    Smallest chance count whose threshold covers `odds_percent` of the field.

        desired = max(floor(p * odds / 100), 1)
        chances = max(ceil(desired / difficulty), 1)
    """
    _check_difficulty(difficulty)
    desired_share = max(P * odds_percent // 100, 1)
    num_chances = -(-desired_share // difficulty)
    return max(num_chances, 1)


def cost_wei(num_chances: int) -> int:
    _check_chances(num_chances)
    return FIXED_CHANCE_PRICE * num_chances


def to_eth(wei: int) -> float:
    return round(wei / WEI_PER_ETH, 6)


def difficulty_for_appraisal(appraisal_wei: int) -> int:
    """Contract formula: (MAX_HASH / appraisal) * FIXED_CHANCE_PRICE."""
    if appraisal_wei <= 0:
        raise InvalidDifficulty(
            f"Appraisal must be positive, got {appraisal_wei}", appraisal_wei=appraisal_wei
        )
    difficulty = (P // appraisal_wei) * FIXED_CHANCE_PRICE
    _check_difficulty(difficulty)
    return difficulty


def overflow_boundary(difficulty: int) -> int:
    """First chance count whose threshold exceeds p."""
    _check_difficulty(difficulty)
    return P // difficulty + 1


def assert_within_field(difficulty: int, num_chances: int) -> int:
    _check_difficulty(difficulty)
    _check_chances(num_chances)
    threshold = difficulty * num_chances
    if threshold > P:
        raise ThresholdOverflow(
            "difficulty * numChances exceeds the field prime",
            difficulty=difficulty,
            num_chances=num_chances,
            threshold=threshold,
            max_safe_chances=P // difficulty,
        )
    return threshold


def win_probability(difficulty: int, num_chances: int, deployed: bool = False) -> Fraction:
    """
    Exact probability that a uniform field element falls below the threshold.
    With `deployed` the threshold is wrapped mod p first, as the circuit does.
    """
    _check_difficulty(difficulty)
    _check_chances(num_chances)
    threshold = difficulty * num_chances
    if deployed:
        return Fraction(threshold % P, P)
    return Fraction(min(threshold, P), P)


def plan_entry(odds_percent: int, difficulty: int) -> EntryPlan:
    num_chances = size_for(odds_percent, difficulty)
    threshold = assert_within_field(difficulty, num_chances)
    return EntryPlan(
        odds_percent=odds_percent,
        difficulty=difficulty,
        num_chances=num_chances,
        cost_wei=cost_wei(num_chances),
        threshold=threshold,
    )
