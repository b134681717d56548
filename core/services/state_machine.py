"""
Transaction lifecycle state machine.

Every function here is pure: it receives the current record and returns a
`Transition` (the next record plus the signer events it produces) or None when
the request is an idempotent no-op. Persisting the record and dispatching the
events are the coordinator's job, in that order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from core.domain.entities.transaction_entity import (
    TransactionEntity,
    TransactionOutput,
    VaultMemberRef,
    VaultRef,
)
from core.domain.enums.tx_enums import (
    ChainOutcome,
    SignerEventKind,
    TransactionStatus,
    WitnessStatus,
)
from core.domain.schemas.chain_types import ChainHandle, VerificationOutcome
from core.domain.schemas.vault_inputs import Actor, TransactionProposal, VaultInfo
from core.services.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError
from core.services.normalize import _norm, _norm_hash, _norm_lower
from core.services.quorum import evaluate
from core.services.resume import build_resume
from core.services.witness_ledger import apply_response, find_entry, open_ledger, ordered_signatures

S = TransactionStatus

ALLOWED_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    S.AWAITING_APPROVAL: frozenset({S.AWAITING_SUBMISSION, S.REJECTED}),
    S.AWAITING_SUBMISSION: frozenset({S.SUBMITTING, S.CONFIRMED_SUCCESS, S.CONFIRMED_FAILED}),
    S.SUBMITTING: frozenset(
        {S.AWAITING_CHAIN_CONFIRMATION, S.SUBMISSION_FAILED, S.CONFIRMED_SUCCESS, S.CONFIRMED_FAILED}
    ),
    S.SUBMISSION_FAILED: frozenset(
        {S.SUBMITTING, S.AWAITING_CHAIN_CONFIRMATION, S.CONFIRMED_SUCCESS, S.CONFIRMED_FAILED}
    ),
    S.AWAITING_CHAIN_CONFIRMATION: frozenset({S.CONFIRMED_SUCCESS, S.CONFIRMED_FAILED}),
    S.CONFIRMED_SUCCESS: frozenset(),
    S.CONFIRMED_FAILED: frozenset(),
    S.REJECTED: frozenset(),
}

SUBMITTABLE_STATUSES = frozenset({S.AWAITING_SUBMISSION, S.SUBMISSION_FAILED})
CLOSE_OUTCOMES = frozenset({S.CONFIRMED_SUCCESS, S.CONFIRMED_FAILED})


@dataclass(frozen=True)
class SignerEvent:
    kind: SignerEventKind
    transaction_id: str
    recipients: Tuple[str, ...]
    summary: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class Transition:
    entity: TransactionEntity
    previous_status: TransactionStatus
    events: List[SignerEvent] = field(default_factory=list)

    @property
    def status_changed(self) -> bool:
        return self.entity.status != self.previous_status


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return TransactionStatus(target) in ALLOWED_TRANSITIONS[TransactionStatus(current)]


def ensure_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStateError(f"Cannot move transaction from '{current}' to '{target}'.")


def _summary(tx: TransactionEntity) -> Dict[str, Optional[str]]:
    return {
        "vault_id": tx.vault.id,
        "vault_name": tx.vault.name,
        "transaction_id": tx.id,
        "transaction_name": tx.name,
    }


def _event(tx: TransactionEntity, kind: SignerEventKind, recipients: List[str]) -> SignerEvent:
    return SignerEvent(
        kind=kind,
        transaction_id=str(tx.id),
        recipients=tuple(recipients),
        summary=_summary(tx),
    )


def _advance(tx: TransactionEntity, target: Optional[TransactionStatus], **updates) -> TransactionEntity:
    """
    Copy `tx` with `updates` applied, moving to `target` when given, and
    regenerate the resume snapshot.
    """
    if target is not None and target != tx.status:
        ensure_transition(tx.status, target)
        updates["status"] = TransactionStatus(target).value

    nxt = tx.model_copy(deep=True, update=updates)
    nxt.resume = build_resume(nxt)
    return nxt


# ---------------- creation ----------------


def plan_creation(proposal: TransactionProposal, vault: VaultInfo, actor: Actor) -> Transition:
    """
    Build a new transaction awaiting approval, with one pending witness per
    vault signer.

    Raises:
        PermissionDeniedError: actor is neither a vault member nor admin.
        ValueError: malformed proposal.
    """
    if not actor.is_admin and not vault.is_member(actor.member_id):
        raise PermissionDeniedError("You do not have permission to propose transactions for this vault.")

    name = _norm(proposal.name)
    if not name:
        raise ValueError("name is required")

    outputs = [TransactionOutput.model_validate(o) for o in proposal.outputs]
    witnesses = open_ledger(vault.signers)

    tx = TransactionEntity(
        id=TransactionEntity.new_id(),
        name=name,
        hash=_norm_hash(proposal.hash),
        status=S.AWAITING_APPROVAL,
        required_signers=vault.required_signers,
        total_signers=len(witnesses),
        vault=VaultRef(
            id=vault.id,
            address=_norm_lower(vault.address),
            name=vault.name,
            chain=vault.chain,
            rpc_url=vault.rpc_url,
            signers=[w.account for w in witnesses],
            members=[VaultMemberRef(id=m.id, address=_norm_lower(m.address)) for m in vault.members],
        ),
        outputs=outputs,
        tx_data=dict(proposal.tx_data or {}),
        witnesses=witnesses,
        created_by=actor.member_id,
    )
    tx.resume = build_resume(tx)

    recipients = [m for m in tx.vault.member_ids() if m != actor.member_id]
    return Transition(
        entity=tx,
        previous_status=S.AWAITING_APPROVAL,
        events=[_event(tx, SignerEventKind.TRANSACTION_CREATED, recipients)],
    )


# ---------------- approval intake ----------------


def plan_response(
    tx: TransactionEntity,
    *,
    account: str,
    accept: bool,
    signature: Optional[str],
    at_ms: int,
) -> Optional[Transition]:
    """
    Record one signer's decision and re-derive the approval status.

    A repeated identical decision is a no-op (returns None). A conflicting
    second decision is refused: witness entries are write-once.
    """
    if tx.is_terminal:
        raise InvalidStateError(f"Transaction is already '{tx.status}'.")

    entry = find_entry(tx.witnesses, account)
    if entry is None:
        raise NotFoundError(
            f"Signer {_norm_lower(account)} is not a witness of transaction {tx.id}.",
            title="Witness not found",
        )

    if entry.status != WitnessStatus.PENDING:
        already_accepted = entry.status == WitnessStatus.APPROVED
        if already_accepted == bool(accept):
            return None
        raise InvalidStateError(
            f"Signer {entry.account} already responded '{entry.status}' to this transaction.",
            title="Conflicting witness response",
        )

    witnesses = apply_response(
        tx.witnesses,
        account=entry.account,
        accept=accept,
        signature=signature,
        at_ms=at_ms,
    )

    # once past approval a late response is recorded but never re-evaluated
    target = None
    if tx.status == S.AWAITING_APPROVAL:
        target = evaluate(witnesses, tx.required_signers)

    nxt = _advance(tx, target, witnesses=witnesses)

    events: List[SignerEvent] = []
    if accept:
        signer_member = tx.vault.member_id_for(entry.account)
        recipients = [m for m in tx.vault.member_ids() if m != signer_member]
        events.append(_event(nxt, SignerEventKind.TRANSACTION_SIGNED, recipients))
    if nxt.status == S.REJECTED and tx.status != S.REJECTED:
        events.append(_event(nxt, SignerEventKind.TRANSACTION_DECLINED, tx.vault.member_ids()))

    return Transition(entity=nxt, previous_status=TransactionStatus(tx.status), events=events)


# ---------------- submission ----------------


def plan_submission_start(tx: TransactionEntity, *, explicit: bool) -> Optional[Transition]:
    """
    Take the submission guard (move to SUBMITTING).

    The automatic trigger returns None when another caller already holds or
    consumed the guard; an explicit Submit raises instead.
    """
    if TransactionStatus(tx.status) not in SUBMITTABLE_STATUSES:
        if explicit:
            raise InvalidStateError(
                f"Transaction must be '{S.AWAITING_SUBMISSION}' to be submitted, got '{tx.status}'."
            )
        return None

    witnesses = ordered_signatures(tx.witnesses, tx.vault.signers)
    if len(witnesses) < tx.required_signers:
        raise InvalidStateError(
            f"Only {len(witnesses)} of {tx.required_signers} required signatures are attached."
        )

    nxt = _advance(tx, S.SUBMITTING, last_error=None, submission_attempts=tx.submission_attempts + 1)
    return Transition(entity=nxt, previous_status=TransactionStatus(tx.status))


def plan_submission_result(
    tx: TransactionEntity,
    *,
    handle: Optional[ChainHandle],
    error: Optional[str],
    at_iso: str,
    attempt: Optional[int] = None,
) -> Optional[Transition]:
    """
    Release the submission guard with the chain call's outcome.

    A broadcast handle is recorded even when it arrives after the guard was
    released as failed, since the chain transaction exists either way. A
    failure only applies while the guard taken by `attempt` is still held.
    Returns None otherwise (e.g. an operator closed the transaction while
    the call was in flight).
    """
    status = TransactionStatus(tx.status)

    if handle is not None:
        if status not in (S.SUBMITTING, S.SUBMISSION_FAILED):
            return None
        nxt = _advance(
            tx,
            S.AWAITING_CHAIN_CONFIRMATION,
            chain_tx_id=handle.chain_tx_id,
            send_time=at_iso,
            last_error=None,
        )
        return Transition(entity=nxt, previous_status=status)

    if status != S.SUBMITTING:
        return None
    if attempt is not None and tx.submission_attempts != attempt:
        return None

    nxt = _advance(tx, S.SUBMISSION_FAILED, last_error=error or "submission failed")
    return Transition(entity=nxt, previous_status=S.SUBMITTING)


def plan_guard_release(tx: TransactionEntity, *, now_ms: int, stale_after_ms: int) -> Optional[Transition]:
    """
    Release a submission guard nobody finished within `stale_after_ms`.

    The outcome of the abandoned call is unknown, so the record moves to
    submission_failed and waits for an operator to check the chain before a
    retry or a close.
    """
    if tx.status != S.SUBMITTING:
        return None
    if now_ms - int(tx.updated_at or 0) < stale_after_ms:
        return None

    nxt = _advance(
        tx,
        S.SUBMISSION_FAILED,
        last_error="Submission outcome unknown: the guard expired before a result was stored. "
        "Check the chain before retrying.",
    )
    return Transition(entity=nxt, previous_status=S.SUBMITTING)


# ---------------- verification / close ----------------


def plan_verification(tx: TransactionEntity, outcome: VerificationOutcome) -> Optional[Transition]:
    """
    Apply a chain read. Pending outcomes and already-finalized records are
    no-ops, so repeated verification never applies a change twice.
    """
    if outcome.status == ChainOutcome.PENDING:
        return None
    if tx.status != S.AWAITING_CHAIN_CONFIRMATION:
        return None

    target = S.CONFIRMED_SUCCESS if outcome.status == ChainOutcome.SUCCESS else S.CONFIRMED_FAILED
    nxt = _advance(tx, target, gas_used=outcome.fee_used)

    events: List[SignerEvent] = []
    if target == S.CONFIRMED_SUCCESS:
        events.append(_event(nxt, SignerEventKind.TRANSACTION_COMPLETED, tx.vault.member_ids()))
    return Transition(entity=nxt, previous_status=S.AWAITING_CHAIN_CONFIRMATION, events=events)


def plan_close(
    tx: TransactionEntity,
    *,
    outcome: TransactionStatus,
    gas_used: Optional[str],
    chain_tx_id: Optional[str],
    at_iso: str,
) -> Transition:
    """
    Administrative override setting a terminal chain outcome directly.

    Raises:
        ValueError: outcome is not a confirmed status.
        InvalidStateError: already terminal, or quorum not reached yet.
    """
    try:
        target = TransactionStatus(outcome)
    except ValueError as exc:
        raise ValueError(f"Unknown close outcome: {outcome}") from exc
    if target not in CLOSE_OUTCOMES:
        raise ValueError(f"Close outcome must be one of {sorted(CLOSE_OUTCOMES)}")

    if tx.is_terminal:
        raise InvalidStateError(f"Transaction was already closed as '{tx.status}'.")

    ensure_transition(tx.status, target)

    nxt = _advance(
        tx,
        target,
        gas_used=_norm(gas_used) or tx.gas_used,
        chain_tx_id=_norm(chain_tx_id) or tx.chain_tx_id,
        send_time=tx.send_time or at_iso,
        last_error=None,
    )

    events: List[SignerEvent] = []
    if target == S.CONFIRMED_SUCCESS:
        events.append(_event(nxt, SignerEventKind.TRANSACTION_COMPLETED, tx.vault.member_ids()))
    return Transition(entity=nxt, previous_status=TransactionStatus(tx.status), events=events)
