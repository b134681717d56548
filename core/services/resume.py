from __future__ import annotations

from core.domain.entities.transaction_entity import (
    ResumeVaultRef,
    TransactionEntity,
    TransactionResume,
)
from core.domain.enums.tx_enums import TransactionStatus
from core.services.witness_ledger import ordered_signatures

_GAS_STATUSES = {TransactionStatus.CONFIRMED_SUCCESS, TransactionStatus.CONFIRMED_FAILED}


def build_resume(tx: TransactionEntity) -> TransactionResume:
    """
    Rebuild the chain-facing snapshot from the record and its witness ledger.

    The snapshot is a pure function of the transaction, so it can be
    regenerated at any point and compared with the stored one.
    """
    status = TransactionStatus(tx.status)
    return TransactionResume(
        transaction_id=tx.id,
        hash=tx.hash,
        status=status,
        outputs=[o.model_copy() for o in tx.outputs],
        witnesses=ordered_signatures(tx.witnesses, tx.vault.signers),
        required_signers=tx.required_signers,
        total_signers=tx.total_signers,
        vault=ResumeVaultRef(id=tx.vault.id, address=tx.vault.address),
        chain_tx_id=tx.chain_tx_id,
        send_time=tx.send_time,
        gas_used=tx.gas_used if status in _GAS_STATUSES else None,
        error=tx.last_error if status == TransactionStatus.SUBMISSION_FAILED else None,
    )
