from __future__ import annotations

from typing import Protocol

from Crypto.Hash import keccak

from .field import FieldElement


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 of a canonical Solidity signature."""
    return keccak256(signature.encode("ascii"))[:4]


class FieldHasher(Protocol):
    """
    Two- and three-input hash over field elements (Poseidon in production).
    Implementations must return canonical field elements.
    """

    def hash2(self, a: FieldElement, b: FieldElement) -> FieldElement: ...

    def hash3(self, a: FieldElement, b: FieldElement, c: FieldElement) -> FieldElement: ...
