"""
Canonical beacon resolution.

The claim contract accepts any beacon timestamp inside
[target, target + MAX_WINDOW], but the oracle only answers for timestamps
that are real block timestamps and only once the root is finalized. The
client therefore cannot compute the timestamp; it has to find it:

1. binary search the recent block range for the first block at or after the
   target timestamp,
2. query the oracle at that block's timestamp,
3. if the root is not observable yet, walk forward a few blocks while still
   inside the window.

Every probe is bounded: by block count (lookback and forward scan) and by a
wall-clock deadline. A cancel event lets a caller abandon the search between
queries; the queries are read-only so nothing needs to be rolled back.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from .errors import (
    NoCandidateBlock,
    NoRandomnessInWindow,
    ResolutionCancelled,
    TargetInFuture,
    WindowExceeded,
)
from .project_constants import MAX_FORWARD_BLOCKS, MAX_WINDOW, SEARCH_LOOKBACK_BLOCKS

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int


@dataclass(frozen=True)
class BeaconRecord:
    timestamp: int
    root: int
    block_number: int

    @property
    def root_hex(self) -> str:
        return "0x" + format(self.root, "064x")


class BlockSequence(Protocol):
    def latest(self) -> BlockInfo: ...

    def by_number(self, number: int) -> Optional[BlockInfo]: ...


class RandomnessOracle(Protocol):
    def root_at(self, timestamp: int) -> int:
        """Beacon root for `timestamp`, or 0 when not (yet) available."""
        ...


class BeaconResolver:
    def __init__(
        self,
        blocks: BlockSequence,
        oracle: RandomnessOracle,
        max_window: int = MAX_WINDOW,
        lookback_blocks: int = SEARCH_LOOKBACK_BLOCKS,
        max_forward_blocks: int = MAX_FORWARD_BLOCKS,
        max_wall_s: Optional[float] = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.blocks = blocks
        self.oracle = oracle
        self.max_window = max_window
        self.lookback_blocks = lookback_blocks
        self.max_forward_blocks = max_forward_blocks
        self.max_wall_s = max_wall_s
        self.clock = clock

    def resolve(
        self, target_timestamp: int, cancel: Optional[threading.Event] = None
    ) -> BeaconRecord:
        max_allowed = target_timestamp + self.max_window
        deadline = None if self.max_wall_s is None else self.clock() + self.max_wall_s

        def checkpoint(phase: str) -> None:
            if cancel is not None and cancel.is_set():
                raise ResolutionCancelled(
                    "Beacon search abandoned by caller",
                    target_timestamp=target_timestamp,
                    phase=phase,
                )
            if deadline is not None and self.clock() > deadline:
                raise NoRandomnessInWindow(
                    f"Beacon search exceeded {self.max_wall_s}s wall-clock budget",
                    target_timestamp=target_timestamp,
                    max_allowed_timestamp=max_allowed,
                    max_wall_s=self.max_wall_s,
                    phase=phase,
                )

        log.info(
            "Searching for beacon root. Target: %d, max allowed: %d",
            target_timestamp,
            max_allowed,
        )
        checkpoint("latest")
        latest = self.blocks.latest()
        log.debug("Latest block: %d, timestamp: %d", latest.number, latest.timestamp)

        if latest.timestamp < target_timestamp:
            raise TargetInFuture(
                f"Target timestamp {target_timestamp} is in the future "
                f"(current: {latest.timestamp})",
                target_timestamp=target_timestamp,
                latest_timestamp=latest.timestamp,
            )

        candidate = self._first_block_at_or_after(target_timestamp, latest, checkpoint)
        if candidate is None:
            raise NoCandidateBlock(
                f"Could not find any block with timestamp >= {target_timestamp}",
                target_timestamp=target_timestamp,
                lookback_blocks=self.lookback_blocks,
            )
        log.info(
            "Found candidate block: %d, timestamp: %d",
            candidate.number,
            candidate.timestamp,
        )

        if candidate.timestamp > max_allowed:
            raise WindowExceeded(
                f"First valid block ({candidate.timestamp}) is beyond allowed window "
                f"(max: {max_allowed})",
                target_timestamp=target_timestamp,
                candidate_timestamp=candidate.timestamp,
                max_window=self.max_window,
            )

        checkpoint("oracle")
        root = self.oracle.root_at(candidate.timestamp)
        if root:
            return self._found(candidate, root)
        log.debug("Root at %d not observable yet, scanning forward", candidate.timestamp)

        for offset in range(1, self.max_forward_blocks + 1):
            checkpoint("forward-scan")
            block = self.blocks.by_number(candidate.number + offset)
            if block is None or block.timestamp > max_allowed:
                break
            checkpoint("oracle")
            root = self.oracle.root_at(block.timestamp)
            if root:
                return self._found(block, root)
            log.debug("Block %d (ts %d) has no root yet", block.number, block.timestamp)

        raise NoRandomnessInWindow(
            f"No valid beacon root found within allowed window "
            f"[{target_timestamp}, {max_allowed}]",
            target_timestamp=target_timestamp,
            max_allowed_timestamp=max_allowed,
            max_forward_blocks=self.max_forward_blocks,
        )

    def _first_block_at_or_after(
        self,
        target_timestamp: int,
        latest: BlockInfo,
        checkpoint: Callable[[str], None],
    ) -> Optional[BlockInfo]:
        low = max(latest.number - self.lookback_blocks, 0)
        high = latest.number
        candidate: Optional[BlockInfo] = None

        while low <= high:
            mid = (low + high) // 2
            checkpoint("binary-search")
            block = self.blocks.by_number(mid)
            if block is None:
                # absent blocks count as "too early"
                low = mid + 1
                continue
            log.debug("Probe block %d ts %d", block.number, block.timestamp)
            if block.timestamp >= target_timestamp:
                candidate = block
                high = mid - 1
            else:
                low = mid + 1
        return candidate

    @staticmethod
    def _found(block: BlockInfo, root: int) -> BeaconRecord:
        log.info(
            "Found canonical beacon root at block %d, timestamp %d",
            block.number,
            block.timestamp,
        )
        return BeaconRecord(timestamp=block.timestamp, root=root, block_number=block.number)
