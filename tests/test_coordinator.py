import threading
import time

import pytest

from core.domain.enums.tx_enums import (
    ChainOutcome,
    SignerEventKind,
    TransactionHistoryType,
    TransactionStatus,
    WitnessStatus,
)
from core.domain.schemas.chain_types import VerificationOutcome
from core.domain.schemas.query_types import Pagination, TransactionFilter
from core.domain.schemas.vault_inputs import TransactionProposal
from core.services.exceptions import (
    InternalError,
    InvalidSignatureError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    SubmissionError,
    VerificationError,
)

from conftest import TX_HASH

S = TransactionStatus


def _approve(coordinator, tx, accounts, sign, *names):
    out = None
    for n in names:
        out = coordinator.record_response(tx.id, accounts[n].address, accept=True, signature=sign(n))
    return out


def test_two_of_three_happy_path(coordinator, created, accounts, sign, submitter, chain_verifier, notifier):
    assert created.status == S.AWAITING_APPROVAL
    assert [w.status for w in created.witnesses] == [WitnessStatus.PENDING] * 3

    first = _approve(coordinator, created, accounts, sign, "alice")
    assert first.accepted and first.changed
    assert first.transaction.status == S.AWAITING_APPROVAL
    assert submitter.payloads == []

    second = _approve(coordinator, created, accounts, sign, "bob")
    tx = second.transaction
    assert tx.status == S.AWAITING_CHAIN_CONFIRMATION
    assert tx.chain_tx_id == "0xabc"
    assert tx.resume.send_time

    (payload,) = submitter.payloads
    assert payload.witnesses == [sign("alice"), sign("bob")]
    assert payload.vault_address == created.vault.address

    chain_verifier.outcome = VerificationOutcome(status=ChainOutcome.SUCCESS, fee_used="0.000012")
    resume = coordinator.reconcile(tx.id)
    assert resume.status == S.CONFIRMED_SUCCESS
    assert resume.gas_used == "0.000012"

    assert notifier.kinds() == [
        SignerEventKind.TRANSACTION_CREATED,
        SignerEventKind.TRANSACTION_SIGNED,
        SignerEventKind.TRANSACTION_SIGNED,
        SignerEventKind.TRANSACTION_COMPLETED,
    ]


def test_signatures_are_submitted_in_vault_order(coordinator, created, accounts, sign, submitter):
    _approve(coordinator, created, accounts, sign, "bob", "alice")
    (payload,) = submitter.payloads
    assert payload.witnesses == [sign("alice"), sign("bob")]


def test_unanimous_vault_rejected_on_first_decline(coordinator, proposal, vault_factory, actor, accounts, notifier):
    tx = coordinator.create(proposal, vault_factory(required=3), actor("alice"))

    out = coordinator.record_response(tx.id, accounts["alice"].address, accept=False)
    assert out.transaction.status == S.REJECTED
    assert SignerEventKind.TRANSACTION_DECLINED in notifier.kinds()

    with pytest.raises(InvalidStateError):
        coordinator.record_response(tx.id, accounts["bob"].address, accept=False)


def test_two_rejections_reject_two_of_three(coordinator, created, accounts):
    coordinator.record_response(created.id, accounts["alice"].address, accept=False)
    out = coordinator.record_response(created.id, accounts["carol"].address, accept=False)
    assert out.transaction.status == S.REJECTED


def test_invalid_signature_leaves_ledger_unchanged(coordinator, created, accounts, sign, repo):
    with pytest.raises(InvalidSignatureError):
        coordinator.record_response(created.id, accounts["alice"].address, accept=True, signature=sign("mallory"))
    with pytest.raises(InvalidSignatureError):
        coordinator.record_response(created.id, accounts["alice"].address, accept=True, signature="0x1234")
    with pytest.raises(InvalidSignatureError):
        coordinator.record_response(created.id, accounts["alice"].address, accept=True)

    stored = repo.find_by_id(created.id)
    assert stored.version == 0
    assert all(w.status == WitnessStatus.PENDING for w in stored.witnesses)


def test_repeat_response_is_noop_success(coordinator, created, accounts, sign, notifier):
    _approve(coordinator, created, accounts, sign, "alice")
    sent = len(notifier.sent)

    again = _approve(coordinator, created, accounts, sign, "alice")
    assert again.accepted and not again.changed
    assert len(notifier.sent) == sent


def test_conflicting_response_is_refused(coordinator, created, accounts, sign):
    _approve(coordinator, created, accounts, sign, "alice")
    with pytest.raises(InvalidStateError):
        coordinator.record_response(created.id, accounts["alice"].address, accept=False)


def test_unknown_transaction_and_signer(coordinator, created, accounts, sign):
    with pytest.raises(NotFoundError):
        coordinator.record_response("missing", accounts["alice"].address, accept=False)
    with pytest.raises(NotFoundError):
        coordinator.record_response(created.id, accounts["mallory"].address, accept=True, signature=sign("mallory"))


def test_signer_cannot_answer_for_someone_else(coordinator, created, accounts, actor):
    with pytest.raises(PermissionDeniedError):
        coordinator.record_response(created.id, accounts["bob"].address, accept=False, actor=actor("alice"))

    out = coordinator.record_response(
        created.id, accounts["bob"].address, accept=False, actor=actor("alice", is_admin=True)
    )
    assert out.changed


def test_create_rejects_non_member_and_duplicate_hash(coordinator, created, proposal, vault, actor):
    with pytest.raises(PermissionDeniedError):
        coordinator.create(proposal, vault, actor("mallory"))
    with pytest.raises(InvalidStateError):
        coordinator.create(proposal, vault, actor("bob"))


def test_submission_failure_is_recorded_and_not_retried(
    coordinator, created, accounts, sign, submitter, submission_failure
):
    submitter.error = submission_failure
    _approve(coordinator, created, accounts, sign, "alice")

    with pytest.raises(SubmissionError):
        _approve(coordinator, created, accounts, sign, "bob")

    tx = coordinator.get_by_id(created.id)
    assert tx.status == S.SUBMISSION_FAILED
    assert tx.resume.error == "execution reverted: GS026"
    assert tx.witnesses[1].status == WitnessStatus.APPROVED
    assert len(submitter.payloads) == 1

    # the operator fixes the issue and submits again
    submitter.error = None
    tx = coordinator.submit(created.id)
    assert tx.status == S.AWAITING_CHAIN_CONFIRMATION
    assert tx.resume.error is None
    assert len(submitter.payloads) == 2


def test_unexpected_submitter_exception_becomes_submission_failure(coordinator, created, accounts, sign, submitter):
    submitter.error = ConnectionError("rpc unreachable")
    _approve(coordinator, created, accounts, sign, "alice")
    with pytest.raises(SubmissionError):
        _approve(coordinator, created, accounts, sign, "bob")
    assert coordinator.get_by_id(created.id).last_error == "rpc unreachable"


def _wait_for_status(coordinator, transaction_id, status, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        tx = coordinator.get_by_id(transaction_id, reconcile=False)
        if tx.status == status or time.monotonic() > deadline:
            return tx
        time.sleep(0.01)


def test_in_flight_submission_keeps_guard_until_call_returns(coordinator, created, accounts, sign, submitter):
    submitter.gate = threading.Event()
    coordinator.submit_timeout_sec = 0.1
    _approve(coordinator, created, accounts, sign, "alice")
    try:
        with pytest.raises(SubmissionError):
            _approve(coordinator, created, accounts, sign, "bob")
        assert coordinator.get_by_id(created.id).status == S.SUBMITTING
        with pytest.raises(InvalidStateError):
            coordinator.submit(created.id)
    finally:
        submitter.gate.set()

    tx = _wait_for_status(coordinator, created.id, S.AWAITING_CHAIN_CONFIRMATION)
    assert tx.status == S.AWAITING_CHAIN_CONFIRMATION
    assert tx.chain_tx_id == "0xabc"
    assert len(submitter.payloads) == 1


def test_in_flight_submission_failure_is_recorded_when_call_returns(
    coordinator, created, accounts, sign, submitter, submission_failure
):
    submitter.gate = threading.Event()
    submitter.error = submission_failure
    coordinator.submit_timeout_sec = 0.1
    _approve(coordinator, created, accounts, sign, "alice")
    try:
        with pytest.raises(SubmissionError):
            _approve(coordinator, created, accounts, sign, "bob")
    finally:
        submitter.gate.set()

    tx = _wait_for_status(coordinator, created.id, S.SUBMISSION_FAILED)
    assert tx.status == S.SUBMISSION_FAILED
    assert tx.last_error == submission_failure.detail


def _fail_result_writes(monkeypatch, repo, failures):
    real = repo.compare_and_set
    left = [failures]

    def compare_and_set(entity, expected_version):
        if entity.status == S.AWAITING_CHAIN_CONFIRMATION and left[0] > 0:
            left[0] -= 1
            raise ConnectionError("mongo unavailable")
        return real(entity, expected_version)

    monkeypatch.setattr(repo, "compare_and_set", compare_and_set)


def test_submission_result_write_is_retried(coordinator, created, accounts, sign, submitter, repo, monkeypatch):
    _fail_result_writes(monkeypatch, repo, failures=2)
    _approve(coordinator, created, accounts, sign, "alice")

    tx = _approve(coordinator, created, accounts, sign, "bob").transaction
    assert tx.status == S.AWAITING_CHAIN_CONFIRMATION
    assert tx.chain_tx_id == "0xabc"
    assert len(submitter.payloads) == 1


def test_stranded_submission_guard_is_released_by_polling(
    coordinator, created, accounts, sign, submitter, repo, monkeypatch, caplog
):
    _fail_result_writes(monkeypatch, repo, failures=100)
    _approve(coordinator, created, accounts, sign, "alice")

    with pytest.raises(InternalError):
        _approve(coordinator, created, accounts, sign, "bob")
    assert coordinator.get_by_id(created.id).status == S.SUBMITTING
    assert any(r.levelname == "ERROR" and "0xabc" in r.getMessage() for r in caplog.records)

    # a fresh guard is left alone
    coordinator.stale_submission_sec = 60
    coordinator.reconcile_pending()
    assert coordinator.get_by_id(created.id).status == S.SUBMITTING

    coordinator.stale_submission_sec = 0
    coordinator.reconcile_pending()
    tx = coordinator.get_by_id(created.id)
    assert tx.status == S.SUBMISSION_FAILED
    assert "unknown" in tx.last_error

    # the operator closes with the broadcast id from the log
    closed = coordinator.close(created.id, S.CONFIRMED_SUCCESS, chain_tx_id="0xabc")
    assert closed.status == S.CONFIRMED_SUCCESS
    assert closed.chain_tx_id == "0xabc"
    assert len(submitter.payloads) == 1


def test_explicit_submit_requires_awaiting_submission(coordinator, created, accounts, sign):
    with pytest.raises(InvalidStateError):
        coordinator.submit(created.id)

    _approve(coordinator, created, accounts, sign, "alice", "bob")
    with pytest.raises(InvalidStateError):
        coordinator.submit(created.id)


def test_reconcile_pending_is_idempotent(coordinator, created, accounts, sign, chain_verifier):
    tx = _approve(coordinator, created, accounts, sign, "alice", "bob").transaction

    first = coordinator.reconcile(tx.id)
    second = coordinator.reconcile(tx.id)
    assert first.status == second.status == S.AWAITING_CHAIN_CONFIRMATION
    assert coordinator.get_by_id(tx.id, reconcile=False).version == tx.version


def test_reconcile_on_confirmed_success_returns_same_snapshot(coordinator, created, accounts, sign, chain_verifier):
    tx = _approve(coordinator, created, accounts, sign, "alice", "bob").transaction
    chain_verifier.outcome = VerificationOutcome(status=ChainOutcome.SUCCESS, fee_used="0.000012")

    first = coordinator.reconcile(tx.id)
    assert first.status == S.CONFIRMED_SUCCESS
    calls = len(chain_verifier.calls)
    version = coordinator.get_by_id(tx.id).version

    second = coordinator.reconcile(tx.id)
    assert second.model_dump() == first.model_dump()
    assert len(chain_verifier.calls) == calls
    assert coordinator.get_by_id(tx.id).version == version


def test_verification_timeout_leaves_status_for_next_poll(coordinator, created, accounts, sign, chain_verifier):
    tx = _approve(coordinator, created, accounts, sign, "alice", "bob").transaction
    chain_verifier.outcome = VerificationOutcome(status=ChainOutcome.SUCCESS, fee_used="0.000012")
    chain_verifier.gate = threading.Event()
    coordinator.verify_timeout_sec = 0.1
    try:
        assert coordinator.reconcile(tx.id).status == S.AWAITING_CHAIN_CONFIRMATION
        assert coordinator.reconcile_pending() == 0
    finally:
        chain_verifier.gate.set()

    assert coordinator.get_by_id(tx.id, reconcile=False).status == S.AWAITING_CHAIN_CONFIRMATION
    assert coordinator.reconcile_pending() == 1
    assert coordinator.get_by_id(tx.id).status == S.CONFIRMED_SUCCESS


def test_reconcile_swallows_verification_errors(coordinator, created, accounts, sign, chain_verifier):
    tx = _approve(coordinator, created, accounts, sign, "alice", "bob").transaction
    chain_verifier.error = VerificationError("rpc timeout")

    resume = coordinator.reconcile(tx.id)
    assert resume.status == S.AWAITING_CHAIN_CONFIRMATION

    chain_verifier.error = None
    chain_verifier.outcome = VerificationOutcome(status=ChainOutcome.FAILED, fee_used="0.0002")
    assert coordinator.reconcile(tx.id).status == S.CONFIRMED_FAILED

    # finalized records return their stored snapshot without another chain read
    calls = len(chain_verifier.calls)
    assert coordinator.reconcile(tx.id).gas_used == "0.0002"
    assert len(chain_verifier.calls) == calls


def test_reconcile_requires_submitted_transaction(coordinator, created):
    with pytest.raises(InvalidStateError):
        coordinator.reconcile(created.id)


def test_get_by_id_reconciles_on_read(coordinator, created, accounts, sign, chain_verifier):
    _approve(coordinator, created, accounts, sign, "alice", "bob")
    chain_verifier.outcome = VerificationOutcome(status=ChainOutcome.SUCCESS, fee_used="0.000012")

    assert coordinator.get_by_id(created.id).status == S.CONFIRMED_SUCCESS


def test_reconcile_pending_batch(coordinator, proposal, vault, actor, accounts, sign, chain_verifier):
    ids = []
    for i in range(3):
        h = "0x" + f"{i + 1:02x}" * 32
        tx = coordinator.create(proposal.model_copy(update={"hash": h}), vault, actor("alice"))
        for n in ("alice", "bob"):
            coordinator.record_response(tx.id, accounts[n].address, accept=True, signature=sign(n, h))
        ids.append(tx.id)

    assert coordinator.reconcile_pending() == 0

    chain_verifier.outcome = VerificationOutcome(status=ChainOutcome.SUCCESS, fee_used="0.1")
    assert coordinator.reconcile_pending(limit=2) == 2
    assert coordinator.reconcile_pending() == 1


def test_close_is_admin_only_and_once(coordinator, created, accounts, sign, actor):
    _approve(coordinator, created, accounts, sign, "alice", "bob")

    with pytest.raises(PermissionDeniedError):
        coordinator.close(created.id, S.CONFIRMED_SUCCESS, actor=actor("alice"))

    tx = coordinator.close(created.id, S.CONFIRMED_SUCCESS, actor=actor("alice", is_admin=True), gas_used="0.3")
    assert tx.status == S.CONFIRMED_SUCCESS
    assert tx.resume.gas_used == "0.3"

    with pytest.raises(InvalidStateError):
        coordinator.close(created.id, S.CONFIRMED_FAILED, actor=actor("alice", is_admin=True))


def test_reads(coordinator, created, accounts, sign, proposal, vault, actor):
    assert coordinator.get_by_hash(TX_HASH.upper().replace("0X", "0x")).id == created.id
    with pytest.raises(NotFoundError):
        coordinator.get_by_hash("0x" + "ef" * 32)

    other = coordinator.create(proposal.model_copy(update={"hash": "0x" + "cd" * 32}), vault, actor("bob"))
    page = coordinator.list(TransactionFilter(created_by="member-bob"), Pagination(with_total=True))
    assert [t.id for t in page.items] == [other.id]
    assert page.total == 1

    page = coordinator.list(TransactionFilter(), Pagination(limit=1))
    assert len(page.items) == 1
    assert page.total is None


def test_history(coordinator, created, accounts, sign, chain_verifier):
    coordinator.record_response(created.id, accounts["carol"].address, accept=False)
    _approve(coordinator, created, accounts, sign, "alice", "bob")
    chain_verifier.outcome = VerificationOutcome(status=ChainOutcome.SUCCESS, fee_used="0.1")
    coordinator.reconcile(created.id)

    types = [h.type for h in coordinator.history(created.id)]
    assert types[0] == TransactionHistoryType.CREATED
    assert sorted(types[1:4]) == sorted(
        [TransactionHistoryType.DECLINE, TransactionHistoryType.SIGN, TransactionHistoryType.SIGN]
    )
    assert types[-1] == TransactionHistoryType.SEND


def test_pending_summary(coordinator, created, proposal, vault, actor, accounts, sign):
    coordinator.create(proposal.model_copy(update={"hash": "0x" + "cd" * 32}), vault, actor("bob"))
    _approve(coordinator, created, accounts, sign, "alice")

    alice = coordinator.pending_summary(accounts["alice"].address)
    assert alice.of_user == 1
    assert alice.transactions_blocked

    carol = coordinator.pending_summary(accounts["carol"].address)
    assert carol.of_user == 2

    nobody = coordinator.pending_summary(accounts["carol"].address, vault_ids=["other-vault"])
    assert nobody.of_user == 0
    assert not nobody.transactions_blocked


def test_notification_failure_never_blocks_transition(coordinator, created, accounts, sign, notifier, events_repo):
    notifier.fail = True
    out = _approve(coordinator, created, accounts, sign, "alice")
    assert out.changed

    undelivered = events_repo.list_undelivered()
    assert [e.kind for e in undelivered] == [SignerEventKind.TRANSACTION_SIGNED]

    notifier.fail = False
    assert coordinator.redeliver_notifications() == 1
    assert events_repo.list_undelivered() == []


def test_proposal_outputs_are_kept(coordinator, vault, actor):
    tx = coordinator.create(
        TransactionProposal(
            name="Two outputs",
            hash="0x" + "ee" * 32,
            outputs=[
                {"to": "0x" + "01" * 20, "amount": "1", "asset_id": "eth"},
                {"to": "0x" + "02" * 20, "amount": "2", "asset_id": "usdc"},
            ],
        ),
        vault,
        actor("carol"),
    )
    assert [o.amount for o in tx.resume.outputs] == ["1", "2"]
