from __future__ import annotations

from typing import Optional, Protocol

from core.domain.schemas.chain_types import ChainHandle, VerificationOutcome, WitnessedPayload


class ChainSubmitterInterface(Protocol):
    """
    Outbound submission of an assembled, witnessed transaction.

    Raises SubmissionError on any failure.
    """

    def submit(self, payload: WitnessedPayload) -> ChainHandle:
        ...


class ChainVerifierInterface(Protocol):
    """
    Reads the on-chain status of a previously submitted transaction.

    Raises VerificationError on transient failures.
    """

    def fetch_status(self, chain_tx_id: str, *, rpc_url: Optional[str] = None) -> VerificationOutcome:
        ...
