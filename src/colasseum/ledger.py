from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .beacon import BlockInfo
from .errors import ExecutionReverted, LedgerError
from .hashing import function_selector
from .project_constants import (
    CHANCE_CLAIMED,
    CHANCE_REFUNDED,
    TRIAL_ACTIVE,
    TRIAL_CANCELLED,
)
from .rpc import RpcClient

log = logging.getLogger(__name__)

WORD_BYTES = 32


def encode_call(signature: str, *args: int) -> str:
    data = function_selector(signature)
    for arg in args:
        data += int(arg).to_bytes(WORD_BYTES, "big")
    return "0x" + data.hex()


def decode_words(result: str, expected: int) -> List[int]:
    raw = bytes.fromhex(result[2:] if result.startswith("0x") else result)
    if len(raw) < expected * WORD_BYTES:
        raise LedgerError(
            f"Call returned {len(raw)} bytes, expected {expected * WORD_BYTES}",
            returned_bytes=len(raw),
        )
    return [
        int.from_bytes(raw[i * WORD_BYTES : (i + 1) * WORD_BYTES], "big")
        for i in range(expected)
    ]


def word_to_address(word: int) -> str:
    return "0x" + format(word & ((1 << 160) - 1), "040x")


@dataclass(frozen=True)
class Trial:
    id: int
    creator: str
    nft_contract: str
    nft_id: int
    appraisal: int
    deposit: int
    difficulty: int
    pot: int
    created_at: int
    charity_bps: int
    status: int

    @property
    def active(self) -> bool:
        return bool(self.status & TRIAL_ACTIVE)

    @property
    def cancelled(self) -> bool:
        return bool(self.status & TRIAL_CANCELLED)


@dataclass(frozen=True)
class Chance:
    id: int
    trial_id: int
    owner: str
    commitment: int
    target_timestamp: int
    num_chances: int
    status: int

    @property
    def claimed(self) -> bool:
        return bool(self.status & CHANCE_CLAIMED)

    @property
    def refunded(self) -> bool:
        return bool(self.status & CHANCE_REFUNDED)


class RpcBlockSequence:
    def __init__(self, rpc: RpcClient) -> None:
        self.rpc = rpc

    @staticmethod
    def _to_info(block: dict) -> BlockInfo:
        return BlockInfo(number=int(block["number"], 16), timestamp=int(block["timestamp"], 16))

    def latest(self) -> BlockInfo:
        block = self.rpc.get_block("latest")
        if not block:
            raise LedgerError("Node returned no latest block")
        return self._to_info(block)

    def by_number(self, number: int) -> Optional[BlockInfo]:
        block = self.rpc.get_block(number)
        return self._to_info(block) if block else None


class BeaconOracle:
    """Colasseum randomness oracle: getRandomness(uint256) -> bytes32."""

    SIGNATURE = "getRandomness(uint256)"

    def __init__(self, rpc: RpcClient, address: str) -> None:
        self.rpc = rpc
        self.address = address

    def root_at(self, timestamp: int) -> int:
        try:
            result = self.rpc.eth_call(self.address, encode_call(self.SIGNATURE, timestamp))
        except ExecutionReverted as e:
            # the oracle reverts for timestamps it has no root for
            log.debug("Oracle reverted for timestamp %d: %s", timestamp, e)
            return 0
        return decode_words(result, 1)[0]


class ColasseumReader:
    CHANCES = "chances(uint256)"
    TRIALS = "trials(uint256)"

    def __init__(self, rpc: RpcClient, address: str) -> None:
        self.rpc = rpc
        self.address = address

    def chance(self, chance_id: int) -> Chance:
        words = decode_words(
            self.rpc.eth_call(self.address, encode_call(self.CHANCES, chance_id)), 6
        )
        trial_id, participant, commitment, target_ts, num_chances, status = words
        return Chance(
            id=chance_id,
            trial_id=trial_id,
            owner=word_to_address(participant),
            commitment=commitment,
            target_timestamp=target_ts,
            num_chances=num_chances,
            status=status,
        )

    def trial(self, trial_id: int) -> Trial:
        words = decode_words(
            self.rpc.eth_call(self.address, encode_call(self.TRIALS, trial_id)), 10
        )
        return Trial(
            id=trial_id,
            creator=word_to_address(words[0]),
            nft_contract=word_to_address(words[1]),
            nft_id=words[2],
            appraisal=words[3],
            deposit=words[4],
            difficulty=words[5],
            pot=words[6],
            created_at=words[7],
            charity_bps=words[8],
            status=words[9],
        )


class FeedLedger:
    """
    Recorded blocks and oracle roots, for offline resolution and replays.
    Unknown timestamps read as a zero root.
    """

    def __init__(self, blocks: Iterable[BlockInfo], roots: Dict[int, int]) -> None:
        self._blocks = {b.number: b for b in blocks}
        if not self._blocks:
            raise LedgerError("Block feed has no blocks")
        self._roots = dict(roots)

    def latest(self) -> BlockInfo:
        return self._blocks[max(self._blocks)]

    def by_number(self, number: int) -> Optional[BlockInfo]:
        return self._blocks.get(number)

    def root_at(self, timestamp: int) -> int:
        return self._roots.get(timestamp, 0)


def _int(value) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    return int(value)


def load_block_feed_file(path: str) -> FeedLedger:
    """
    JSON of the form:
       {"blocks": [{"number": 1, "timestamp": 12}, ...],
        "roots": {"12": "0x..."}}
    Numbers may be ints, decimal strings or 0x-hex strings.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            j = json.load(f)
    except json.JSONDecodeError as e:
        raise LedgerError(f"Block feed file is not valid JSON: {e}", path=path) from e

    if not isinstance(j, dict) or not isinstance(j.get("blocks"), list):
        raise LedgerError("Block feed file needs a 'blocks' list", path=path)

    blocks = [BlockInfo(number=_int(b["number"]), timestamp=_int(b["timestamp"])) for b in j["blocks"]]
    roots = {_int(ts): _int(root) for ts, root in (j.get("roots") or {}).items()}
    return FeedLedger(blocks, roots)
