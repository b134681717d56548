from __future__ import annotations

from typing import Protocol


class SignatureVerifierInterface(Protocol):
    def verify(self, tx_hash: str, signature: str, claimed_address: str) -> bool:
        ...
