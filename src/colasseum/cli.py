from __future__ import annotations

import argparse
import json
import logging
import random
from decimal import Decimal
from typing import Any, Dict

from .audit import sawtooth, simulate_win_rate
from .beacon import BeaconResolver
from .claim import ClaimPipeline
from .commitment import CommitmentScheme
from .config import Settings
from .errors import ResolutionError
from .evaluate import OutcomeEvaluator
from .ledger import BeaconOracle, ColasseumReader, RpcBlockSequence, load_block_feed_file
from .node_bridge import NodeBridge, PoseidonHasher, SnarkjsProver
from .proof import CircuitArtifacts, ProofPreparer
from .project_constants import MAX_WINDOW, WEI_PER_ETH
from .rpc import RpcClient
from .secret_store import SecretStore
from .sizing import (
    difficulty_for_appraisal,
    overflow_boundary,
    plan_entry,
    to_eth,
    win_probability,
)
from .verify import reveal_record, verify_record


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(rpc_url_override=args.rpc_url, mode_override=args.mode)


def _hasher(settings: Settings) -> PoseidonHasher:
    return PoseidonHasher(NodeBridge(settings.node_binary, settings.node_path))


def _eth_to_wei(value: str) -> int:
    return int(Decimal(value) * WEI_PER_ETH)


def _pct(prob) -> str:
    return f"{float(prob) * 100:.4f}%"


def _write_json(path: str, obj: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2)


def cmd_size(args: argparse.Namespace) -> int:
    if args.difficulty is not None:
        difficulty = int(args.difficulty)
    else:
        difficulty = difficulty_for_appraisal(_eth_to_wei(args.appraisal_eth))

    plan = plan_entry(args.odds, difficulty)
    print("--- ENTRY SIZING ---")
    print(f"Difficulty        : {plan.difficulty}")
    print(f"Target odds       : {plan.odds_percent}%")
    print(f"Chances           : {plan.num_chances}")
    print(f"Cost              : {to_eth(plan.cost_wei)} ETH ({plan.cost_wei} wei)")
    print(f"Exact P(win)      : {_pct(win_probability(difficulty, plan.num_chances))}")
    print(f"Overflow at       : {overflow_boundary(difficulty)} chances")
    return 0


def cmd_commit(args: argparse.Namespace) -> int:
    settings = _settings(args)
    scheme = CommitmentScheme(_hasher(settings))
    commitment = scheme.commit(args.secret, args.owner)
    print(f"Commitment    : {commitment}")
    print(f"Commitment hex: 0x{commitment.value:064x}")
    if args.chance_id is not None:
        SecretStore(settings.secret_store_path).put(args.chance_id, args.secret)
        print(f"Secret stored for chance {args.chance_id} in {settings.secret_store_path}")
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    log = logging.getLogger("resolve")
    if args.block_feed_file:
        feed = load_block_feed_file(args.block_feed_file)
        beacon = BeaconResolver(feed, feed, max_wall_s=args.max_wall).resolve(args.target)
        source = f"file:{args.block_feed_file}"
    else:
        settings = _settings(args)
        with RpcClient(settings.require_rpc(), timeout_s=args.timeout) as rpc:
            resolver = BeaconResolver(
                RpcBlockSequence(rpc),
                BeaconOracle(rpc, settings.require_oracle()),
                max_wall_s=args.max_wall,
            )
            beacon = resolver.resolve(args.target)
        source = "rpc"

    log.info("Beacon source    : %s", source)
    print("--- CANONICAL BEACON ---")
    print(f"Target timestamp : {args.target} (window +{MAX_WINDOW}s)")
    print(f"Beacon timestamp : {beacon.timestamp}")
    print(f"Block number     : {beacon.block_number}")
    print(f"Beacon root      : {beacon.root_hex}")
    return 0


def _pipeline(settings: Settings, rpc: RpcClient, args: argparse.Namespace, with_prover: bool) -> ClaimPipeline:
    hasher = _hasher(settings)
    scheme = CommitmentScheme(hasher)
    preparer = None
    if with_prover:
        wasm, zkey = settings.require_circuit()
        preparer = ProofPreparer(
            SnarkjsProver(NodeBridge(settings.node_binary, settings.node_path)),
            CircuitArtifacts(wasm, zkey, cache_dir=settings.artifact_cache_dir),
            scheme=scheme,
        )
    return ClaimPipeline(
        reader=ColasseumReader(rpc, settings.colasseum_address),
        resolver=BeaconResolver(
            RpcBlockSequence(rpc),
            BeaconOracle(rpc, settings.require_oracle()),
            max_wall_s=args.max_wall,
        ),
        scheme=scheme,
        evaluator=OutcomeEvaluator(hasher, settings.evaluation_mode),
        secrets=SecretStore(settings.secret_store_path),
        preparer=preparer,
    )


def cmd_reveal(args: argparse.Namespace) -> int:
    settings = _settings(args)
    with RpcClient(settings.require_rpc(), timeout_s=args.timeout) as rpc:
        reveal = _pipeline(settings, rpc, args, with_prover=False).reveal(
            args.chance_id, secret=args.secret
        )

    outcome = reveal.outcome
    print("========================================")
    print("🍾 REVEAL")
    print("========================================")
    print(f"Chance        : {reveal.chance.id} (trial {reveal.trial.id})")
    print(f"Beacon        : {reveal.beacon.root_hex} @ {reveal.beacon.timestamp}")
    print(f"Randomness    : {outcome.randomness}")
    print(f"Threshold     : {outcome.threshold}")
    print(f"Mode          : {outcome.mode.value}")
    print(f"Result        : {'🏆 WINNER' if outcome.is_winner else 'no win'}")
    if args.out:
        _write_json(args.out, reveal_record(reveal))
        print(f"🧾 Wrote audit: {args.out}")
    return 0


def cmd_claim(args: argparse.Namespace) -> int:
    settings = _settings(args)
    log = logging.getLogger("claim")
    with RpcClient(settings.require_rpc(), timeout_s=args.timeout) as rpc:
        pipeline = _pipeline(settings, rpc, args, with_prover=True)
        secret = pipeline.secret_for(args.chance_id, args.secret)
        reveal = pipeline.reveal(args.chance_id, secret=secret)

    if not reveal.outcome.is_winner:
        print(f"Chance {args.chance_id} did not win; nothing to claim.")
        return 1

    job = pipeline.submit_proof(
        reveal, secret, listener=lambda j, state: log.info("Proof: %s", state.value)
    )
    try:
        bundle = job.result()
    finally:
        pipeline.preparer.shutdown()
    package = pipeline.package(reveal, bundle)

    _write_json(args.out, reveal_record(reveal, package))
    print("========================================")
    print("🏆 CLAIM READY")
    print("========================================")
    print(f"Chance            : {package.chance_id}")
    print(f"Beacon timestamp  : {package.beacon_timestamp}")
    print(json.dumps(package.proof.to_hex(), indent=2))
    print(f"🧾 Wrote claim: {args.out}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    hasher = _hasher(_settings(args)) if args.secret else None
    result = verify_record(args.audit, hasher=hasher, secret=args.secret)
    print("✅ AUDIT VERIFIED")
    print(f"Chance        : {result['chance_id']}")
    print(f"Winner        : {result['is_winner']}")
    print(f"Threshold     : {result['threshold']}")
    print(f"Randomness    : {result['randomness']}")
    print(f"Secret checked: {result['secret_checked']}")
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    difficulty = difficulty_for_appraisal(_eth_to_wei(args.appraisal_eth))
    print(f"Appraisal  : {args.appraisal_eth} ETH")
    print(f"Difficulty : {difficulty}")
    print(f"Overflow at: {overflow_boundary(difficulty)} chances")
    print()
    print("  numChances         | Cost (ETH)     | Expected P(win) | Actual P(win) | Status")
    print("  " + "-" * 85)
    rows = sawtooth(difficulty)
    for row in rows:
        print(
            f"  {row.num_chances:>18} | {to_eth(row.cost_wei):>14} | "
            f"{float(row.expected_prob) * 100:>14.2f}% | "
            f"{float(row.actual_prob) * 100:>12.2f}% | {row.status}"
        )

    if args.trials:
        rng = random.Random(args.seed)
        print()
        print(f"Monte Carlo ({args.trials} trials per row)")
        for row in rows:
            sim = simulate_win_rate(difficulty, row.num_chances, args.trials, rng)
            print(
                f"  {row.num_chances:>18} | circuit {sim.circuit_rate * 100:6.2f}% | "
                f"intended {sim.correct_rate * 100:6.2f}% | deviation {sim.deviation * 100:.2f}%"
            )
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="colasseum",
        description="Provably-fair Colasseum outcome resolution and claim tooling.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")
    p.add_argument(
        "--mode",
        choices=["intended", "deployed"],
        default=None,
        help="Threshold comparison: unbounded (intended) or wrapped mod p (deployed).",
    )
    p.add_argument(
        "--max-wall",
        type=float,
        default=120.0,
        help="Wall-clock budget for the beacon search, seconds.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("size", help="Convert target odds into a chance count and cost.")
    s.add_argument("--odds", required=True, type=int, help="Target odds percent (1-99).")
    group = s.add_mutually_exclusive_group(required=True)
    group.add_argument("--difficulty", help="Trial difficulty (integer).")
    group.add_argument("--appraisal-eth", help="Trial appraisal in ETH.")
    s.set_defaults(func=cmd_size)

    c = sub.add_parser("commit", help="Compute the commitment for a secret and owner.")
    c.add_argument("--secret", required=True, help="Secret passphrase.")
    c.add_argument("--owner", required=True, help="Owner address (0x...).")
    c.add_argument("--chance-id", type=int, default=None, help="Store the secret under this chance.")
    c.set_defaults(func=cmd_commit)

    r = sub.add_parser("resolve", help="Find the canonical beacon root for a target time.")
    r.add_argument("--target", required=True, type=int, help="Target timestamp (unix seconds).")
    r.add_argument(
        "--block-feed-file",
        default=None,
        help="JSON file of recorded blocks and roots to resolve against offline.",
    )
    r.set_defaults(func=cmd_resolve)

    rv = sub.add_parser("reveal", help="Resolve the beacon and evaluate a chance.")
    rv.add_argument("--chance-id", required=True, type=int)
    rv.add_argument("--secret", default=None, help="Secret (else read from the local store).")
    rv.add_argument("--out", default=None, help="Write an audit JSON here.")
    rv.set_defaults(func=cmd_reveal)

    cl = sub.add_parser("claim", help="Reveal and, on a win, generate the claim proof.")
    cl.add_argument("--chance-id", required=True, type=int)
    cl.add_argument("--secret", default=None, help="Secret (else read from the local store).")
    cl.add_argument("--out", default="claim.json", help="Claim JSON output path.")
    cl.set_defaults(func=cmd_claim)

    v = sub.add_parser("verify", help="Re-check an audit or claim JSON deterministically.")
    v.add_argument("--audit", required=True, help="Path to audit/claim JSON.")
    v.add_argument("--secret", default=None, help="Also re-derive the randomness.")
    v.set_defaults(func=cmd_verify)

    a = sub.add_parser("audit", help="Show the field-overflow sawtooth for an appraisal.")
    a.add_argument("--appraisal-eth", required=True)
    a.add_argument("--trials", type=int, default=0, help="Monte Carlo trials per row.")
    a.add_argument("--seed", type=int, default=None)
    a.set_defaults(func=cmd_audit)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        raise SystemExit(args.func(args))
    except ResolutionError as e:
        logging.getLogger("colasseum").error(
            "%s: %s %s", e.kind, e, json.dumps(e.to_dict()["detail"], default=str)
        )
        raise SystemExit(3 if e.terminal else 2)
