from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from core.domain.entities.transaction_entity import WitnessEntry
from core.domain.enums.tx_enums import TransactionStatus, WitnessStatus


@dataclass(frozen=True)
class WitnessCounts:
    approved: int
    rejected: int
    pending: int

    @property
    def total(self) -> int:
        return self.approved + self.rejected + self.pending


def count_responses(witnesses: Iterable[WitnessEntry]) -> WitnessCounts:
    approved = rejected = pending = 0
    for w in witnesses:
        if w.status == WitnessStatus.APPROVED:
            approved += 1
        elif w.status == WitnessStatus.REJECTED:
            rejected += 1
        else:
            pending += 1
    return WitnessCounts(approved=approved, rejected=rejected, pending=pending)


def evaluate(witnesses: Iterable[WitnessEntry], required_signers: int) -> TransactionStatus:
    """
    Derive the approval-phase status of a transaction from its witness ledger.

    Only meaningful while the transaction is still awaiting approval: callers
    never feed the result back into a transaction that already moved past it.

    Returns:
        AWAITING_SUBMISSION when approvals reached the threshold,
        REJECTED when rejections made the threshold unreachable,
        AWAITING_APPROVAL otherwise.
    """
    if required_signers < 1:
        raise ValueError("required_signers must be >= 1")

    c = count_responses(witnesses)

    if c.approved >= required_signers:
        return TransactionStatus.AWAITING_SUBMISSION

    if c.approved + c.pending < required_signers:
        return TransactionStatus.REJECTED

    return TransactionStatus.AWAITING_APPROVAL
