from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.services.normalize import _norm_lower


class VaultMember(BaseModel):
    id: str
    address: str

    model_config = ConfigDict(frozen=True)


class VaultInfo(BaseModel):
    """
    Read-only vault definition consumed at transaction creation.

    `signers` is the canonical signer order of the vault; it fixes both the
    witness list of a new transaction and the positional order of signatures
    at chain submission.
    """

    id: str
    address: str
    name: Optional[str] = None
    chain: Optional[str] = None
    rpc_url: Optional[str] = None

    required_signers: int = Field(..., ge=1)
    signers: List[str]
    members: List[VaultMember] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_signers(self) -> "VaultInfo":
        normalized = [_norm_lower(s) for s in self.signers]
        if any(not s for s in normalized):
            raise ValueError("Vault signer addresses must not be empty")
        if len(set(normalized)) != len(normalized):
            raise ValueError("Vault signer addresses must be distinct")
        if self.required_signers > len(normalized):
            raise ValueError(
                f"required_signers ({self.required_signers}) exceeds signer count ({len(normalized)})"
            )
        return self

    def is_member(self, member_id: str) -> bool:
        return any(m.id == member_id for m in self.members)


class Actor(BaseModel):
    """
    Authenticated identity invoking a coordinator operation.

    `is_admin` is the elevated vault privilege that bypasses membership checks.
    """

    member_id: str
    address: str
    is_admin: bool = False

    model_config = ConfigDict(frozen=True)


class TransactionProposal(BaseModel):
    name: str
    hash: str
    outputs: List[Dict[str, Any]] = Field(default_factory=list)
    tx_data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")
