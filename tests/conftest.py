"""
Deterministic stand-ins for the external collaborators: the field hasher
(Poseidon in production), the block sequence and randomness oracle, and the
Groth16 prover.
"""
import json
import random
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from colasseum.beacon import BlockInfo
from colasseum.field import FieldElement, reduce
from colasseum.hashing import keccak256
from colasseum.ledger import Chance, Trial
from colasseum.proof import CircuitArtifacts

GENESIS_TS = 1_700_000_000
SLOT = 12


class KeccakFieldHasher:
    """keccak256 over domain-tagged 32-byte words, reduced into the field."""

    def __init__(self) -> None:
        self.calls = 0

    def _hash(self, tag: bytes, *xs: FieldElement) -> FieldElement:
        self.calls += 1
        data = tag + b"".join(int(x).to_bytes(32, "big") for x in xs)
        return reduce(int.from_bytes(keccak256(data), "big"))

    def hash2(self, a, b):
        return self._hash(b"H2", a, b)

    def hash3(self, a, b, c):
        return self._hash(b"H3", a, b, c)


class SyntheticChain:
    """Blocks every SLOT seconds; `missing` block numbers read as absent."""

    def __init__(
        self,
        count: int = 200,
        start_ts: int = GENESIS_TS,
        timestamps: Optional[List[int]] = None,
        roots: Optional[Dict[int, int]] = None,
        missing: Iterable[int] = (),
    ) -> None:
        ts = timestamps or [start_ts + SLOT * i for i in range(count)]
        self.blocks = {i: BlockInfo(number=i, timestamp=t) for i, t in enumerate(ts)}
        self.roots = dict(roots or {})
        self.missing = set(missing)
        self.block_calls = 0
        self.oracle_calls: List[int] = []

    def latest(self) -> BlockInfo:
        return self.blocks[max(self.blocks)]

    def by_number(self, number: int) -> Optional[BlockInfo]:
        self.block_calls += 1
        if number in self.missing:
            return None
        return self.blocks.get(number)

    def root_at(self, timestamp: int) -> int:
        self.oracle_calls.append(timestamp)
        return self.roots.get(timestamp, 0)

    def ts(self, number: int) -> int:
        return self.blocks[number].timestamp


# Groth16 proof of the first mainnet win, as snarkjs emits it. The on-chain
# calldata of that claim is EXPECTED_ONCHAIN below.
EXPECTED_ONCHAIN_HEX = {
    "pA": [
        "0x248dc990529cbc457c369aa05a376c1dcb7860c0be5270ffa6d0e130142348e6",
        "0x2ce27bc90f38a873e4cdf5b22bc3c616e77a0c75b0868a356940195d8e68c910",
    ],
    "pB": [
        [
            "0x1dd45382537126916658c9cfde11f7adaeef32529c1349a8dc3ef39f1044540d",
            "0x293997aa8aa1a8560b5d8e31c3031f2255337a4b6c603eb3435b7492c9f12e39",
        ],
        [
            "0x1800cc93d937022f1fcd337248a45f147830f30ca3fcb7ac5c25c5da81265c56",
            "0x29d80d34b15c153d25599a5f6b6dc318e1fd0ff1d66b7bba57cab379f687c889",
        ],
    ],
    "pC": [
        "0x0284d157514753fbada59e7fac8be709d57e4467204972ae0f9fb9e2249f37d2",
        "0x0b8fc4c66b0611042a964da2878a2f4f176f951a1c8995dbfc72443d56ab9c51",
    ],
}


def _dec(h: str) -> str:
    return str(int(h, 16))


def snarkjs_output(public_signals: List[str]) -> dict:
    on = EXPECTED_ONCHAIN_HEX
    return {
        "proof": {
            "pi_a": [_dec(on["pA"][0]), _dec(on["pA"][1]), "1"],
            "pi_b": [
                [_dec(on["pB"][0][1]), _dec(on["pB"][0][0])],
                [_dec(on["pB"][1][1]), _dec(on["pB"][1][0])],
                ["1", "0"],
            ],
            "pi_c": [_dec(on["pC"][0]), _dec(on["pC"][1]), "1"],
            "protocol": "groth16",
            "curve": "bn128",
        },
        "publicSignals": public_signals,
    }


class CannedProver:
    """Returns the fixture proof with public signals echoed from the inputs."""

    def __init__(self, gate=None) -> None:
        self.calls: List[dict] = []
        self.gate = gate

    def full_prove(self, inputs, wasm, zkey):
        if self.gate is not None:
            self.gate.wait(5)
        self.calls.append(inputs)
        signals = [
            inputs["rootHigh"],
            inputs["rootLow"],
            inputs["ticketHash"],
            inputs["difficulty"],
            inputs["chances"],
        ]
        return snarkjs_output(signals)


class StaticReader:
    def __init__(self, chances: Dict[int, Chance], trials: Dict[int, Trial]) -> None:
        self.chances = chances
        self.trials = trials

    def chance(self, chance_id):
        return self.chances[chance_id]

    def trial(self, trial_id):
        return self.trials[trial_id]


OWNER = "0xABCDabcdABCDabcdABCDabcdABCDabcdABCDabcd"
SECRET = "my-secret-phrase"


@pytest.fixture
def hasher():
    return KeccakFieldHasher()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def artifacts(tmp_path: Path) -> CircuitArtifacts:
    wasm = tmp_path / "challenge.wasm"
    zkey = tmp_path / "challenge_final.zkey"
    wasm.write_bytes(b"\0asm")
    zkey.write_bytes(b"zkey")
    return CircuitArtifacts(str(wasm), str(zkey), cache_dir=tmp_path / "cache")


def make_trial(difficulty: int, trial_id: int = 1, status: int = 1) -> Trial:
    return Trial(
        id=trial_id,
        creator="0x" + "11" * 20,
        nft_contract="0x" + "22" * 20,
        nft_id=7,
        appraisal=390_000_000_000_000_000,
        deposit=19_500_000_000_000_000,
        difficulty=difficulty,
        pot=0,
        created_at=GENESIS_TS - 86_400,
        charity_bps=0,
        status=status,
    )


def make_chance(
    commitment: int,
    num_chances: int,
    target_timestamp: int,
    chance_id: int = 1,
    status: int = 0,
    owner: str = OWNER,
) -> Chance:
    return Chance(
        id=chance_id,
        trial_id=1,
        owner=owner,
        commitment=commitment,
        target_timestamp=target_timestamp,
        num_chances=num_chances,
        status=status,
    )


def write_json(path: Path, obj) -> Path:
    path.write_text(json.dumps(obj), encoding="utf-8")
    return path
