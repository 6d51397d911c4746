from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .claim import ClaimPackage, Reveal
from .evaluate import EvaluationMode, OutcomeEvaluator, parse_root, split_root
from .field import P
from .hashing import FieldHasher
from .project_constants import MAX_WINDOW
from .proof import public_signals


def reveal_record(reveal: Reveal, package: Optional[ClaimPackage] = None) -> Dict[str, Any]:
    """Everything needed to re-check an outcome, except the secret."""
    chance, trial, beacon, outcome = reveal.chance, reveal.trial, reveal.beacon, reveal.outcome
    record: Dict[str, Any] = {
        "metadata": {
            "tool": "colasseum-resolver",
            "version": "1.0.0",
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "evaluation_mode": outcome.mode.value,
            "max_window": MAX_WINDOW,
        },
        "chance": {
            "id": chance.id,
            "trial_id": chance.trial_id,
            "owner": chance.owner,
            "commitment": str(chance.commitment),
            "target_timestamp": chance.target_timestamp,
            "num_chances": str(chance.num_chances),
        },
        "trial": {"difficulty": str(trial.difficulty)},
        "beacon": {
            "timestamp": beacon.timestamp,
            "block_number": beacon.block_number,
            "root": beacon.root_hex,
        },
        # big ints stored as strings for safety
        "outcome": {
            "is_winner": outcome.is_winner,
            "randomness": str(outcome.randomness),
            "threshold": str(outcome.threshold),
            "effective_threshold": str(outcome.effective_threshold),
        },
    }
    if package is not None:
        record["claim"] = package.to_json()
    return record


def verify_record(
    audit_path: str,
    hasher: Optional[FieldHasher] = None,
    secret: Optional[str] = None,
) -> Dict[str, Any]:
    with open(audit_path, "r", encoding="utf-8") as f:
        audit = json.load(f)

    meta = audit["metadata"]
    chance = audit["chance"]
    mode = EvaluationMode(meta["evaluation_mode"])
    target = int(chance["target_timestamp"])
    commitment = int(chance["commitment"])
    difficulty = int(audit["trial"]["difficulty"])
    num_chances = int(chance["num_chances"])
    beacon_ts = int(audit["beacon"]["timestamp"])
    root = parse_root(audit["beacon"]["root"])
    outcome = audit["outcome"]

    # the window is fixed by the claim contract, never by the record
    if "max_window" in meta and int(meta["max_window"]) != MAX_WINDOW:
        raise RuntimeError(
            f"Audit max_window {meta['max_window']} differs from protocol window {MAX_WINDOW}"
        )
    if not target <= beacon_ts <= target + MAX_WINDOW:
        raise RuntimeError(
            f"Beacon timestamp outside window: beacon={beacon_ts} "
            f"window=[{target}, {target + MAX_WINDOW}]"
        )

    threshold = difficulty * num_chances
    if int(outcome["threshold"]) != threshold:
        raise RuntimeError(
            f"Threshold mismatch: audit={outcome['threshold']} recomputed={threshold}"
        )

    randomness = int(outcome["randomness"])
    if secret is not None:
        if hasher is None:
            raise RuntimeError("Re-deriving randomness from a secret needs a hasher")
        recomputed = OutcomeEvaluator(hasher, mode).evaluate(secret, root, difficulty, num_chances)
        if recomputed.randomness.value != randomness:
            raise RuntimeError(
                f"Randomness mismatch: audit={randomness} recomputed={recomputed.randomness}"
            )

    if mode is EvaluationMode.DEPLOYED:
        is_winner = randomness < threshold % P
    else:
        is_winner = threshold > P or randomness < threshold
    if is_winner != bool(outcome["is_winner"]):
        raise RuntimeError(
            f"Outcome mismatch: audit={outcome['is_winner']} recomputed={is_winner}"
        )

    root_high, root_low = split_root(root)
    signals = public_signals(root_high, root_low, commitment, difficulty, num_chances)
    claim = audit.get("claim")
    if claim is not None:
        claimed = [int(s) for s in claim["public_signals"]]
        if claimed != signals:
            raise RuntimeError(f"Public signals mismatch: audit={claimed} recomputed={signals}")
        if int(claim["beacon_timestamp"]) != beacon_ts:
            raise RuntimeError("Claim beacon timestamp differs from the resolved beacon")

    return {
        "ok": True,
        "chance_id": chance["id"],
        "is_winner": is_winner,
        "threshold": threshold,
        "randomness": randomness,
        "public_signals": signals,
        "secret_checked": secret is not None,
    }
