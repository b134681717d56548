from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.enums.tx_enums import ChainOutcome


class WitnessedPayload(BaseModel):
    """
    Transaction assembled for chain submission.

    `witnesses` are the approved signatures in the vault's canonical signer
    order, never in response order.
    """

    transaction_id: str
    hash: str
    vault_address: str
    rpc_url: Optional[str] = None
    tx_data: Dict[str, Any] = Field(default_factory=dict)
    witnesses: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ChainHandle(BaseModel):
    chain_tx_id: str

    model_config = ConfigDict(frozen=True)


class VerificationOutcome(BaseModel):
    status: ChainOutcome
    fee_used: Optional[str] = None

    model_config = ConfigDict(frozen=True, use_enum_values=True)
