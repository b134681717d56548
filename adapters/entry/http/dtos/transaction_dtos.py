from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from core.domain.entities.transaction_entity import (
    TransactionEntity,
    TransactionOutput,
    TransactionResume,
    WitnessEntry,
)
from core.domain.enums.tx_enums import TransactionStatus
from core.domain.schemas.query_types import PendingSummary


class TransactionOutputIn(BaseModel):
    to: str
    amount: str
    asset_id: str = Field(..., validation_alias=AliasChoices("asset_id", "assetId"))


class CreateTransactionIn(BaseModel):
    name: str = Field(..., min_length=1)
    hash: str = Field(..., description="32-byte content hash of the unsigned transaction (0x...)")
    vault_address: str = Field(
        ...,
        validation_alias=AliasChoices("vault_address", "predicateAddress"),
        description="vault the transaction spends from",
    )
    outputs: List[TransactionOutputIn] = Field(default_factory=list)
    tx_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="call executed by the vault: {to, value, data}",
    )


class SignerResponseIn(BaseModel):
    account: Optional[str] = Field(None, description="signer address; defaults to the caller's wallet")
    confirm: bool
    signature: Optional[str] = Field(None, description="required when confirm=true")


class CloseTransactionIn(BaseModel):
    outcome: TransactionStatus = Field(..., description="confirmed_success | confirmed_failed")
    gas_used: Optional[str] = None
    chain_tx_id: Optional[str] = None


class VaultOut(BaseModel):
    id: str
    address: str
    name: Optional[str] = None
    chain: Optional[str] = None


class TransactionOut(BaseModel):
    id: str
    name: str
    hash: str
    status: TransactionStatus

    required_signers: int
    total_signers: int

    vault: VaultOut
    outputs: List[TransactionOutput] = Field(default_factory=list)
    witnesses: List[WitnessEntry] = Field(default_factory=list)
    resume: Optional[TransactionResume] = None

    created_by: str
    chain_tx_id: Optional[str] = None
    send_time: Optional[str] = None
    gas_used: Optional[str] = None
    last_error: Optional[str] = None

    version: int
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    model_config = ConfigDict(use_enum_values=True)

    @classmethod
    def from_entity(cls, tx: TransactionEntity) -> "TransactionOut":
        return cls(
            id=str(tx.id),
            name=tx.name,
            hash=tx.hash,
            status=tx.status,
            required_signers=tx.required_signers,
            total_signers=tx.total_signers,
            vault=VaultOut(id=tx.vault.id, address=tx.vault.address, name=tx.vault.name, chain=tx.vault.chain),
            outputs=tx.outputs,
            witnesses=tx.witnesses,
            resume=tx.resume,
            created_by=tx.created_by,
            chain_tx_id=tx.chain_tx_id,
            send_time=tx.send_time,
            gas_used=tx.gas_used,
            last_error=tx.last_error,
            version=tx.version,
            created_at=tx.created_at,
            updated_at=tx.updated_at,
        )


class TransactionsListOut(BaseModel):
    items: List[TransactionOut]
    total: Optional[int] = None
    offset: int
    limit: int


class SignerResponseOut(BaseModel):
    accepted: bool
    changed: bool
    transaction: TransactionOut


class PendingSummaryOut(BaseModel):
    of_user: int = Field(..., serialization_alias="ofUser")
    transactions_blocked: bool = Field(..., serialization_alias="transactionsBlocked")

    @classmethod
    def from_summary(cls, s: PendingSummary) -> "PendingSummaryOut":
        return cls(of_user=s.of_user, transactions_blocked=s.transactions_blocked)


class ErrorOut(BaseModel):
    kind: str
    title: str
    detail: str
