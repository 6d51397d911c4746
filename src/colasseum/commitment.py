from __future__ import annotations

import logging
from typing import Union

from .errors import CommitmentMismatch, OutOfFieldRange
from .field import FieldElement, ensure_canonical, reduce
from .hashing import FieldHasher, keccak256

log = logging.getLogger(__name__)

ADDRESS_BYTES = 20


def secret_to_field(secret: str) -> FieldElement:
    """keccak256 of the UTF-8 secret, reduced into the field."""
    digest = keccak256(secret.encode("utf-8"))
    return reduce(int.from_bytes(digest, "big"), reason="secret digest")


def owner_to_field(owner: Union[str, int]) -> FieldElement:
    if isinstance(owner, str):
        hex_part = owner[2:] if owner.lower().startswith("0x") else owner
        if not hex_part or len(hex_part) > ADDRESS_BYTES * 2:
            raise OutOfFieldRange(
                f"Owner {owner!r} is not a {ADDRESS_BYTES}-byte address", owner=owner
            )
        value = int(hex_part, 16)
    else:
        value = int(owner)
    if value >> (ADDRESS_BYTES * 8):
        raise OutOfFieldRange(
            f"Owner {owner!r} is wider than {ADDRESS_BYTES} bytes", owner=str(owner)
        )
    return ensure_canonical(value, "owner")


class CommitmentScheme:
    def __init__(self, hasher: FieldHasher) -> None:
        self.hasher = hasher

    def commit(self, secret: str, owner: Union[str, int]) -> FieldElement:
        return self.hasher.hash2(secret_to_field(secret), owner_to_field(owner))

    def verify(self, secret: str, owner: Union[str, int], expected: Union[FieldElement, int]) -> bool:
        return self.commit(secret, owner).value == int(expected)

    def ensure_matches(
        self, secret: str, owner: Union[str, int], expected: Union[FieldElement, int]
    ) -> FieldElement:
        """Fail fast before any resolver or prover work."""
        actual = self.commit(secret, owner)
        if actual.value != int(expected):
            log.debug("Commitment mismatch for owner %s", owner)
            raise CommitmentMismatch(
                "Secret does not match the on-chain commitment",
                owner=str(owner),
                expected=int(expected),
            )
        return actual
