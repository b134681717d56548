from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from core.domain.entities.transaction_entity import TransactionEntity
from core.domain.enums.tx_enums import TransactionHistoryType, TransactionStatus, WitnessStatus


class HistoryOwner(BaseModel):
    id: Optional[str] = None
    address: Optional[str] = None


class HistoryEntry(BaseModel):
    type: TransactionHistoryType
    date: Optional[str | int] = None
    owner: HistoryOwner


def format_history(tx: TransactionEntity) -> List[HistoryEntry]:
    """
    Timeline of a transaction: creation, each signer decision, then the
    chain outcome when there is one.
    """
    creator = HistoryOwner(id=tx.created_by, address=tx.vault.address_for(tx.created_by))
    out: List[HistoryEntry] = [
        HistoryEntry(type=TransactionHistoryType.CREATED, date=tx.created_at, owner=creator)
    ]

    responded = [w for w in tx.witnesses if w.status != WitnessStatus.PENDING]
    responded.sort(key=lambda w: w.updated_at or 0)
    for w in responded:
        out.append(
            HistoryEntry(
                type=TransactionHistoryType.DECLINE
                if w.status == WitnessStatus.REJECTED
                else TransactionHistoryType.SIGN,
                date=w.updated_at,
                owner=HistoryOwner(id=tx.vault.member_id_for(w.account), address=w.account),
            )
        )

    status = TransactionStatus(tx.status)
    if status == TransactionStatus.CONFIRMED_SUCCESS:
        out.append(HistoryEntry(type=TransactionHistoryType.SEND, date=tx.send_time, owner=creator))
    elif status in (TransactionStatus.CONFIRMED_FAILED, TransactionStatus.SUBMISSION_FAILED):
        out.append(HistoryEntry(type=TransactionHistoryType.FAILED, date=tx.updated_at, owner=creator))

    return out
