from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.enums.tx_enums import TERMINAL_STATUSES, TransactionStatus, WitnessStatus

from .base_entity import MongoEntity

RESUME_SCHEMA_VERSION = 1


class TransactionOutput(BaseModel):
    """
    One intended transfer of the transaction (recipient, amount, asset).
    """

    to: str
    amount: str
    asset_id: str

    model_config = ConfigDict(extra="allow", use_enum_values=True)


class VaultMemberRef(BaseModel):
    id: str
    address: str


class VaultRef(BaseModel):
    """
    Snapshot of the vault definition taken when the transaction is created.

    `signers` keeps the vault's canonical signer order, which is the order
    witnesses must be assembled in for chain submission.
    """

    id: str
    address: str
    name: Optional[str] = None
    chain: Optional[str] = None
    rpc_url: Optional[str] = None

    signers: List[str] = Field(default_factory=list)
    members: List[VaultMemberRef] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    def member_ids(self) -> List[str]:
        return [m.id for m in self.members]

    def member_id_for(self, address: str) -> Optional[str]:
        addr = (address or "").strip().lower()
        for m in self.members:
            if m.address.lower() == addr:
                return m.id
        return None

    def address_for(self, member_id: str) -> Optional[str]:
        for m in self.members:
            if m.id == member_id:
                return m.address
        return None


class WitnessEntry(BaseModel):
    """
    One required signer's stance. `signature` is present iff status is approved.
    """

    account: str
    status: WitnessStatus = WitnessStatus.PENDING
    signature: Optional[str] = None
    updated_at: Optional[int] = None

    model_config = ConfigDict(use_enum_values=True)


class ResumeVaultRef(BaseModel):
    id: str
    address: str


class TransactionResume(BaseModel):
    """
    Versioned chain-facing snapshot of a transaction.

    Field presence by status:
    - chain_tx_id / send_time: set once status reached awaiting_chain_confirmation
      (or the transaction was closed with them).
    - gas_used: set only for confirmed_success / confirmed_failed.
    - error: set only while status is submission_failed.
    """

    schema_version: int = RESUME_SCHEMA_VERSION
    transaction_id: Optional[str] = None
    hash: str
    status: TransactionStatus
    outputs: List[TransactionOutput] = Field(default_factory=list)
    witnesses: List[str] = Field(default_factory=list)
    required_signers: int
    total_signers: int
    vault: ResumeVaultRef

    chain_tx_id: Optional[str] = None
    send_time: Optional[str] = None
    gas_used: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)


class TransactionEntity(MongoEntity):
    """
    Collection: transactions

    Authoritative record of a proposed vault transaction. Every write goes
    through a compare-and-swap on `version`.
    """

    name: str
    hash: str
    status: TransactionStatus = TransactionStatus.AWAITING_APPROVAL

    required_signers: int
    total_signers: int

    vault: VaultRef
    outputs: List[TransactionOutput] = Field(default_factory=list)
    tx_data: Dict[str, Any] = Field(default_factory=dict)

    witnesses: List[WitnessEntry] = Field(default_factory=list)
    resume: Optional[TransactionResume] = None

    created_by: str

    chain_tx_id: Optional[str] = None
    send_time: Optional[str] = None
    gas_used: Optional[str] = None
    last_error: Optional[str] = None
    submission_attempts: int = 0

    version: int = 0
    deleted_at: Optional[int] = None

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    @property
    def is_terminal(self) -> bool:
        return TransactionStatus(self.status) in TERMINAL_STATUSES
