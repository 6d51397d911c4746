"""
Groth16 claim proofs: input preparation, prover invocation, and reshaping of
the prover output into the calldata layout of the on-chain verifier.

Proof generation takes seconds and is CPU bound. `ProofPreparer.submit`
runs it on a worker thread and hands back a `ProofJob` whose state moves
preparing -> proving -> done | failed. A job cannot be interrupted; a caller
that loses interest simply drops it. Submitting again for an entry whose job
is still running returns that same job.
"""
from __future__ import annotations

import enum
import hashlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

import httpx

from .commitment import CommitmentScheme, owner_to_field, secret_to_field
from .errors import (
    ProverArtifactsUnavailable,
    ProverInputInvalid,
    ProverInvocationFailed,
    ResolutionError,
)
from .evaluate import split_root
from .field import P, FieldElement

log = logging.getLogger(__name__)

G1 = Tuple[int, int]
G2 = Tuple[Tuple[int, int], Tuple[int, int]]


class Prover(Protocol):
    def full_prove(self, inputs: Dict[str, str], wasm: Path, zkey: Path) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class ProverInputs:
    secret_field: FieldElement
    owner_field: FieldElement
    root_high: int
    root_low: int
    commitment: FieldElement
    difficulty: int
    num_chances: int

    def to_circuit_input(self) -> Dict[str, str]:
        # signal names of the claim circuit
        return {
            "passphrase": str(self.secret_field),
            "ownerAddress": str(self.owner_field),
            "rootHigh": str(self.root_high),
            "rootLow": str(self.root_low),
            "ticketHash": str(self.commitment),
            "difficulty": str(self.difficulty),
            "chances": str(self.num_chances),
        }

    def public_signals(self) -> List[int]:
        return public_signals(
            self.root_high, self.root_low, self.commitment.value, self.difficulty, self.num_chances
        )


def public_signals(
    root_high: int, root_low: int, commitment: int, difficulty: int, num_chances: int
) -> List[int]:
    """Verifier order: rootHigh, rootLow, commitment, difficulty, numChances."""
    return [root_high, root_low, commitment, difficulty, num_chances]


@dataclass(frozen=True)
class RawProof:
    pi_a: Tuple[int, int]
    pi_b: Tuple[Tuple[int, int], Tuple[int, int]]
    pi_c: Tuple[int, int]
    public_signals: Tuple[int, ...]

    @classmethod
    def from_snarkjs(cls, out: Dict[str, Any]) -> "RawProof":
        """
        snarkjs output: projective coordinates, so pi_a/pi_c carry a trailing
        "1" and pi_b a trailing ["1", "0"]; only the affine part is kept.
        """
        try:
            proof = out["proof"]
            pi_a = (int(proof["pi_a"][0]), int(proof["pi_a"][1]))
            pi_b = (
                (int(proof["pi_b"][0][0]), int(proof["pi_b"][0][1])),
                (int(proof["pi_b"][1][0]), int(proof["pi_b"][1][1])),
            )
            pi_c = (int(proof["pi_c"][0]), int(proof["pi_c"][1]))
            signals = tuple(int(s) for s in out["publicSignals"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProverInvocationFailed(f"Malformed prover output: {e!r}") from e
        return cls(pi_a=pi_a, pi_b=pi_b, pi_c=pi_c, public_signals=signals)


@dataclass(frozen=True)
class SolidityProof:
    pA: G1
    pB: G2
    pC: G1

    def to_json(self) -> Dict[str, Any]:
        return {
            "pA": [str(x) for x in self.pA],
            "pB": [[str(x) for x in pair] for pair in self.pB],
            "pC": [str(x) for x in self.pC],
        }

    def to_hex(self) -> Dict[str, Any]:
        h = lambda x: "0x" + format(x, "064x")  # noqa: E731
        return {
            "pA": [h(x) for x in self.pA],
            "pB": [[h(x) for x in pair] for pair in self.pB],
            "pC": [h(x) for x in self.pC],
        }

    @classmethod
    def from_json(cls, j: Dict[str, Any]) -> "SolidityProof":
        n = lambda x: int(x, 0) if isinstance(x, str) else int(x)  # noqa: E731
        return cls(
            pA=(n(j["pA"][0]), n(j["pA"][1])),
            pB=((n(j["pB"][0][0]), n(j["pB"][0][1])), (n(j["pB"][1][0]), n(j["pB"][1][1]))),
            pC=(n(j["pC"][0]), n(j["pC"][1])),
        )


def to_onchain_format(raw: RawProof) -> SolidityProof:
    """
    The prover emits each G2 coordinate as [c0, c1]; the Solidity verifier
    (EIP-197 encoding) takes [c1, c0].
    """
    (b00, b01), (b10, b11) = raw.pi_b
    return SolidityProof(pA=raw.pi_a, pB=((b01, b00), (b11, b10)), pC=raw.pi_c)


@dataclass
class CircuitArtifacts:
    """Circuit wasm and proving key; each a local path or an http(s) URL."""

    wasm: str
    zkey: str
    cache_dir: Path = field(default_factory=lambda: Path(".colasseum-cache"))
    _local: Optional[Tuple[Path, Path]] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def ensure_local(self, client: Optional[httpx.Client] = None) -> Tuple[Path, Path]:
        with self._lock:
            if self._local is None:
                self._local = (
                    self._materialize(self.wasm, client),
                    self._materialize(self.zkey, client),
                )
            return self._local

    def _materialize(self, source: str, client: Optional[httpx.Client]) -> Path:
        if not source.startswith(("http://", "https://")):
            path = Path(source)
            if not path.is_file():
                raise ProverArtifactsUnavailable(
                    f"Circuit artifact not found: {source}", artifact=source
                )
            return path

        name = hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]
        target = self.cache_dir / f"{name}-{Path(source.split('?')[0]).name}"
        if target.is_file():
            return target

        log.info("Fetching circuit artifact %s", source)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".part")
        own_client = client is None
        client = client or httpx.Client(timeout=120.0, follow_redirects=True)
        try:
            with client.stream("GET", source) as resp:
                resp.raise_for_status()
                with open(tmp, "wb") as f:
                    for chunk in resp.iter_bytes():
                        f.write(chunk)
            tmp.replace(target)
        except httpx.HTTPError as e:
            tmp.unlink(missing_ok=True)
            raise ProverArtifactsUnavailable(
                f"Failed to fetch circuit artifact {source}: {e}", artifact=source
            ) from e
        finally:
            if own_client:
                client.close()
        return target


class ProofState(str, enum.Enum):
    PREPARING = "preparing"
    PROVING = "proving"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ProofBundle:
    inputs: ProverInputs
    raw: RawProof
    proof: SolidityProof

    @property
    def public_signals(self) -> List[int]:
        return list(self.raw.public_signals)


Listener = Callable[["ProofJob", ProofState], None]


class ProofJob:
    def __init__(self, entry_id: Union[int, str]) -> None:
        self.entry_id = entry_id
        self.error: Optional[BaseException] = None
        self._state = ProofState.PREPARING
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    @property
    def state(self) -> ProofState:
        return self._state

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)
            state = self._state
        listener(self, state)

    def _set_state(self, state: ProofState) -> None:
        with self._lock:
            self._state = state
            listeners = list(self._listeners)
        log.info("Proof job %s: %s", self.entry_id, state.value)
        for listener in listeners:
            listener(self, state)

    def done(self) -> bool:
        return self._state in (ProofState.DONE, ProofState.FAILED)

    def result(self, timeout: Optional[float] = None) -> ProofBundle:
        if self._future is None:
            raise RuntimeError("Proof job was never submitted")
        return self._future.result(timeout)


class ProofPreparer:
    def __init__(
        self,
        prover: Prover,
        artifacts: CircuitArtifacts,
        scheme: Optional[CommitmentScheme] = None,
        max_workers: int = 1,
    ) -> None:
        self.prover = prover
        self.artifacts = artifacts
        self.scheme = scheme
        self._executor: Optional[ThreadPoolExecutor] = None
        self._max_workers = max_workers
        self._inflight: Dict[Union[int, str], ProofJob] = {}
        self._lock = threading.Lock()

    def prepare(
        self,
        secret: str,
        owner: str,
        beacon_root: int,
        commitment: int,
        difficulty: int,
        num_chances: int,
    ) -> ProverInputs:
        for name, value in (("difficulty", difficulty), ("num_chances", num_chances)):
            if not 0 < value < P:
                raise ProverInputInvalid(
                    f"{name} must be in (0, p) to be a circuit input, got {value}",
                    input=name,
                    value=value,
                )
        if not 0 <= commitment < P:
            raise ProverInputInvalid(
                "Commitment is not a canonical field element", commitment=commitment
            )
        try:
            root_high, root_low = split_root(beacon_root)
        except ResolutionError as e:
            raise ProverInputInvalid(str(e), **e.detail) from e
        if self.scheme is not None:
            self.scheme.ensure_matches(secret, owner, commitment)

        return ProverInputs(
            secret_field=secret_to_field(secret),
            owner_field=owner_to_field(owner),
            root_high=root_high,
            root_low=root_low,
            commitment=FieldElement(commitment),
            difficulty=difficulty,
            num_chances=num_chances,
        )

    def invoke(self, inputs: ProverInputs) -> RawProof:
        wasm, zkey = self.artifacts.ensure_local()
        log.info(
            "Generating proof: rootHigh=%s rootLow=%s ticketHash=%s difficulty=%s chances=%s",
            inputs.root_high,
            inputs.root_low,
            inputs.commitment,
            inputs.difficulty,
            inputs.num_chances,
        )
        raw = RawProof.from_snarkjs(self.prover.full_prove(inputs.to_circuit_input(), wasm, zkey))
        expected = inputs.public_signals()
        if list(raw.public_signals) != expected:
            raise ProverInvocationFailed(
                "Prover public signals do not match the prepared inputs",
                expected=[str(s) for s in expected],
                got=[str(s) for s in raw.public_signals],
            )
        return raw

    def generate(
        self,
        secret: str,
        owner: str,
        beacon_root: int,
        commitment: int,
        difficulty: int,
        num_chances: int,
        job: Optional[ProofJob] = None,
    ) -> ProofBundle:
        inputs = self.prepare(secret, owner, beacon_root, commitment, difficulty, num_chances)
        if job is not None:
            job._set_state(ProofState.PROVING)
        raw = self.invoke(inputs)
        return ProofBundle(inputs=inputs, raw=raw, proof=to_onchain_format(raw))

    def submit(
        self,
        entry_id: Union[int, str],
        secret: str,
        owner: str,
        beacon_root: int,
        commitment: int,
        difficulty: int,
        num_chances: int,
        listener: Optional[Listener] = None,
    ) -> ProofJob:
        with self._lock:
            running = self._inflight.get(entry_id)
            if running is not None and not running.done():
                log.info("Proof for entry %s already in flight", entry_id)
                if listener is not None:
                    running.add_listener(listener)
                return running
            job = ProofJob(entry_id)
            if listener is not None:
                job.add_listener(listener)
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="prover"
                )
            self._inflight[entry_id] = job
            job._future = self._executor.submit(
                self._run, job, secret, owner, beacon_root, commitment, difficulty, num_chances
            )
            return job

    def _run(self, job: ProofJob, *args: Any) -> ProofBundle:
        try:
            bundle = self.generate(*args, job=job)
            job._set_state(ProofState.DONE)
            return bundle
        except Exception as e:
            job.error = e
            job._set_state(ProofState.FAILED)
            raise
        finally:
            with self._lock:
                if self._inflight.get(job.entry_id) is job:
                    del self._inflight[job.entry_id]

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
