from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Tuple

from .commitment import secret_to_field
from .errors import InvalidChanceCount, InvalidDifficulty, OutOfFieldRange
from .field import P, FieldElement, less_than, reduce
from .hashing import FieldHasher
from .project_constants import ROOT_HALF_BITS

log = logging.getLogger(__name__)

ROOT_BITS = 2 * ROOT_HALF_BITS
_HALF_MASK = (1 << ROOT_HALF_BITS) - 1


class EvaluationMode(str, enum.Enum):
    # unbounded-precision threshold; threshold > p always wins
    INTENDED = "intended"
    # threshold wrapped mod p before comparing, as the deployed circuit does
    DEPLOYED = "deployed"


@dataclass(frozen=True)
class Outcome:
    is_winner: bool
    randomness: FieldElement
    threshold: int
    effective_threshold: int
    mode: EvaluationMode
    root_high: int
    root_low: int

    @property
    def overflowed(self) -> bool:
        return self.threshold > P


def split_root(beacon_root: int) -> Tuple[int, int]:
    if not 0 <= beacon_root < (1 << ROOT_BITS):
        raise OutOfFieldRange(
            f"Beacon root must be a {ROOT_BITS}-bit value", beacon_root=beacon_root
        )
    return beacon_root >> ROOT_HALF_BITS, beacon_root & _HALF_MASK


def parse_root(root: int | str | bytes) -> int:
    if isinstance(root, bytes):
        return int.from_bytes(root, "big")
    if isinstance(root, str):
        return int(root, 16) if root.lower().startswith("0x") else int(root)
    return int(root)


def wrap_threshold(threshold: int) -> FieldElement:
    """Deployed-circuit behaviour: the threshold lives in the field and wraps."""
    if threshold >= P:
        log.warning(
            "Threshold %s >= p wraps to %s; advertised odds no longer hold",
            threshold,
            threshold % P,
        )
    return reduce(threshold, reason="deployed threshold")


class OutcomeEvaluator:
    def __init__(
        self, hasher: FieldHasher, mode: EvaluationMode = EvaluationMode.INTENDED
    ) -> None:
        self.hasher = hasher
        self.mode = EvaluationMode(mode)

    def randomness(self, secret: str, beacon_root: int) -> Tuple[FieldElement, int, int]:
        root_high, root_low = split_root(beacon_root)
        value = self.hasher.hash3(
            secret_to_field(secret), FieldElement(root_high), FieldElement(root_low)
        )
        return value, root_high, root_low

    def evaluate(
        self, secret: str, beacon_root: int, difficulty: int, num_chances: int
    ) -> Outcome:
        if difficulty <= 0:
            raise InvalidDifficulty(
                f"Difficulty must be positive, got {difficulty}", difficulty=difficulty
            )
        if num_chances <= 0:
            raise InvalidChanceCount(
                f"Chance count must be positive, got {num_chances}",
                num_chances=num_chances,
            )

        value, root_high, root_low = self.randomness(secret, beacon_root)
        threshold = difficulty * num_chances

        if self.mode is EvaluationMode.DEPLOYED:
            effective = wrap_threshold(threshold)
            is_winner = less_than(value, effective)
            effective_threshold = effective.value
        elif threshold > P:
            # every field element is below the threshold
            is_winner = True
            effective_threshold = threshold
        else:
            is_winner = value.value < threshold
            effective_threshold = threshold

        log.debug(
            "Evaluated (mode=%s): randomness=%s threshold=%s winner=%s",
            self.mode.value,
            value,
            threshold,
            is_winner,
        )
        return Outcome(
            is_winner=is_winner,
            randomness=value,
            threshold=threshold,
            effective_threshold=effective_threshold,
            mode=self.mode,
            root_high=root_high,
            root_low=root_low,
        )
