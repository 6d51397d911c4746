from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .beacon import BeaconRecord, BeaconResolver
from .commitment import CommitmentScheme
from .errors import EntryClosed, SecretUnavailable, ThresholdOverflow
from .evaluate import EvaluationMode, Outcome, OutcomeEvaluator
from .field import P
from .ledger import Chance, Trial
from .proof import ProofBundle, ProofJob, ProofPreparer, SolidityProof
from .secret_store import SecretStore

log = logging.getLogger(__name__)


class EntryReader(Protocol):
    def chance(self, chance_id: int) -> Chance: ...

    def trial(self, trial_id: int) -> Trial: ...


@dataclass(frozen=True)
class Reveal:
    chance: Chance
    trial: Trial
    beacon: BeaconRecord
    outcome: Outcome


@dataclass(frozen=True)
class ClaimPackage:
    """Arguments of the on-chain victory(chanceId, beaconTimestamp, pA, pB, pC) call."""

    chance_id: int
    beacon_timestamp: int
    proof: SolidityProof
    public_signals: List[int]

    def to_json(self) -> Dict[str, Any]:
        return {
            "chance_id": self.chance_id,
            "beacon_timestamp": self.beacon_timestamp,
            **self.proof.to_json(),
            "public_signals": [str(s) for s in self.public_signals],
        }


class ClaimPipeline:
    def __init__(
        self,
        reader: EntryReader,
        resolver: BeaconResolver,
        scheme: CommitmentScheme,
        evaluator: OutcomeEvaluator,
        secrets: Optional[SecretStore] = None,
        preparer: Optional[ProofPreparer] = None,
    ) -> None:
        self.reader = reader
        self.resolver = resolver
        self.scheme = scheme
        self.evaluator = evaluator
        self.secrets = secrets
        self.preparer = preparer

    def secret_for(self, chance_id: int, secret: Optional[str]) -> str:
        if secret:
            return secret
        stored = self.secrets.get(chance_id) if self.secrets is not None else None
        if not stored:
            raise SecretUnavailable(
                f"No secret stored for chance {chance_id}; pass it explicitly",
                chance_id=chance_id,
            )
        return stored

    def load(self, chance_id: int) -> Tuple[Chance, Trial]:
        chance = self.reader.chance(chance_id)
        return chance, self.reader.trial(chance.trial_id)

    def reveal(
        self,
        chance_id: int,
        secret: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Reveal:
        chance, trial = self.load(chance_id)
        secret = self.secret_for(chance_id, secret)

        # checked before any ledger scan or proving
        self.scheme.ensure_matches(secret, chance.owner, chance.commitment)

        beacon = self.resolver.resolve(chance.target_timestamp, cancel=cancel)
        outcome = self.evaluator.evaluate(
            secret, beacon.root, trial.difficulty, chance.num_chances
        )
        log.info(
            "Chance %d: %s (threshold %s, mode %s)",
            chance_id,
            "WIN" if outcome.is_winner else "loss",
            outcome.threshold,
            outcome.mode.value,
        )
        if self.secrets is not None:
            self.secrets.store_result(chance_id, outcome.is_winner)
            self.secrets.mark_reveal_seen(chance_id)
        return Reveal(chance=chance, trial=trial, beacon=beacon, outcome=outcome)

    def _check_claimable(self, reveal: Reveal) -> None:
        chance = reveal.chance
        if chance.claimed or chance.refunded:
            raise EntryClosed(
                f"Chance {chance.id} is already {'claimed' if chance.claimed else 'refunded'}",
                chance_id=chance.id,
                status=chance.status,
            )
        outcome = reveal.outcome
        if outcome.overflowed and self.evaluator.mode is EvaluationMode.INTENDED:
            # the deployed circuit compares against the wrapped threshold
            wrapped = outcome.threshold % P
            if outcome.randomness.value >= wrapped:
                raise ThresholdOverflow(
                    "Win relies on a threshold above p, which the deployed verifier cannot prove",
                    chance_id=chance.id,
                    threshold=outcome.threshold,
                    wrapped_threshold=wrapped,
                    prime=P,
                )
            log.warning(
                "Chance %d threshold exceeds p; claim is provable against the wrapped threshold %s",
                chance.id,
                wrapped,
            )

    def _require_preparer(self) -> ProofPreparer:
        if self.preparer is None:
            raise RuntimeError("Claim pipeline has no proof preparer configured")
        return self.preparer

    def claim(
        self,
        chance_id: int,
        secret: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[Reveal, Optional[ClaimPackage]]:
        preparer = self._require_preparer()
        secret = self.secret_for(chance_id, secret)
        reveal = self.reveal(chance_id, secret=secret, cancel=cancel)
        if not reveal.outcome.is_winner:
            return reveal, None
        self._check_claimable(reveal)

        bundle = preparer.generate(*self._proof_args(reveal, secret))
        return reveal, self.package(reveal, bundle)

    def submit_proof(self, reveal: Reveal, secret: str, listener=None) -> ProofJob:
        """Background variant of claim's proving step; the job is keyed by chance id."""
        self._check_claimable(reveal)
        return self._require_preparer().submit(
            reveal.chance.id, *self._proof_args(reveal, secret), listener=listener
        )

    @staticmethod
    def _proof_args(reveal: Reveal, secret: str) -> Tuple[Any, ...]:
        return (
            secret,
            reveal.chance.owner,
            reveal.beacon.root,
            reveal.chance.commitment,
            reveal.trial.difficulty,
            reveal.chance.num_chances,
        )

    @staticmethod
    def package(reveal: Reveal, bundle: ProofBundle) -> ClaimPackage:
        return ClaimPackage(
            chance_id=reveal.chance.id,
            beacon_timestamp=reveal.beacon.timestamp,
            proof=bundle.proof,
            public_signals=bundle.public_signals,
        )
