from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError

from adapters.chain.chain_submitter import Web3ChainSubmitter
from adapters.chain.chain_verifier import Web3ChainVerifier
from adapters.external.database.transaction_events_repository_mongodb import TransactionEventsRepositoryMongoDB
from adapters.external.database.transaction_repository_mongodb import TransactionRepositoryMongoDB
from adapters.external.database.vault_registry_repository_mongodb import VaultRegistryRepositoryMongoDB
from adapters.external.notifications.notification_http_client import NotificationHttpClient
from config import get_settings
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.transaction_entity import TransactionEntity, TransactionResume
from core.domain.enums.tx_enums import ChainOutcome, OrderBy, SortDirection, TransactionStatus, WitnessStatus
from core.domain.gateways import ChainSubmitterInterface, ChainVerifierInterface, SignatureVerifierInterface
from core.domain.repositories import TransactionRepositoryInterface, VaultRegistryRepositoryInterface
from core.domain.schemas.chain_types import ChainHandle, VerificationOutcome, WitnessedPayload
from core.domain.schemas.query_types import (
    MAX_PAGE_LIMIT,
    Ordination,
    Page,
    Pagination,
    PendingSummary,
    TransactionFilter,
)
from core.domain.schemas.vault_inputs import Actor, TransactionProposal, VaultInfo
from core.services.exceptions import (
    InternalError,
    InvalidSignatureError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    SubmissionError,
    TransactionCoordinatorError,
    VerificationError,
)
from core.services.history import HistoryEntry, format_history
from core.services.normalize import _norm, _norm_hash, _norm_lower
from core.services.notification_service import NotificationDispatcher
from core.services.resume import build_resume
from core.services.signature_verifier import EthSignatureVerifier
from core.services.state_machine import (
    Transition,
    plan_close,
    plan_creation,
    plan_guard_release,
    plan_response,
    plan_submission_result,
    plan_submission_start,
    plan_verification,
)
from core.services.witness_ledger import find_entry, ordered_signatures

logger = logging.getLogger(__name__)

# Chain calls run here so they can be bounded without holding any record lock.
# Broadcasts and receipt reads use separate pools so hung reads never delay a
# submission. Each RPC request is also bounded by the provider timeout.
_SUBMIT_IO = ThreadPoolExecutor(max_workers=8, thread_name_prefix="chain-submit")
_VERIFY_IO = ThreadPoolExecutor(max_workers=8, thread_name_prefix="chain-verify")

# Attempts to store a submission result before giving up on the write.
_RESULT_WRITE_ATTEMPTS = 5

Planner = Callable[[TransactionEntity], Optional[Transition]]


def _call_with_timeout(
    pool: ThreadPoolExecutor, fn: Callable[..., Any], timeout_sec: float, *args: Any, **kwargs: Any
) -> Any:
    fut = pool.submit(fn, *args, **kwargs)
    try:
        return fut.result(timeout=timeout_sec)
    except FuturesTimeoutError:
        fut.cancel()
        raise


@dataclass
class ResponseOutcome:
    """
    Result of RecordResponse. `changed` is False for a repeated identical
    decision, which is still an accepted response.
    """

    accepted: bool
    changed: bool
    transaction: TransactionEntity


@dataclass
class TransactionCoordinator:
    """
    Drives the lifecycle of vault transactions: approval intake, quorum,
    chain submission and chain verification.

    Every state change is a read-plan-CAS loop against one record, so
    concurrent signers and the reconciliation poller never lose updates.
    Signer events are dispatched only after the write that produced them
    committed.
    """

    repo: TransactionRepositoryInterface
    signature_verifier: SignatureVerifierInterface
    submitter: ChainSubmitterInterface
    chain_verifier: ChainVerifierInterface
    dispatcher: NotificationDispatcher
    vaults: Optional[VaultRegistryRepositoryInterface] = None

    submit_timeout_sec: float = 30
    verify_timeout_sec: float = 15
    stale_submission_sec: float = 300
    max_cas_retries: int = 5

    @classmethod
    def from_settings(cls) -> "TransactionCoordinator":
        s = get_settings()
        repo = TransactionRepositoryMongoDB()
        events_repo = TransactionEventsRepositoryMongoDB()

        for r in (repo, events_repo):
            try:
                r.ensure_indexes()
            except Exception as exc:
                logger.warning("Could not ensure indexes on %s: %s", r.COLLECTION_NAME, exc)

        notifier = NotificationHttpClient.from_settings() if s.NOTIFICATIONS_URL else None

        return cls(
            repo=repo,
            signature_verifier=EthSignatureVerifier(),
            submitter=Web3ChainSubmitter.from_settings(),
            chain_verifier=Web3ChainVerifier.from_settings(),
            dispatcher=NotificationDispatcher(events_repo=events_repo, notifier=notifier),
            vaults=VaultRegistryRepositoryMongoDB(),
            submit_timeout_sec=s.CHAIN_SUBMIT_TIMEOUT_SEC,
            verify_timeout_sec=s.CHAIN_VERIFY_TIMEOUT_SEC,
            stale_submission_sec=s.SUBMISSION_STALE_SEC,
            max_cas_retries=s.TX_CAS_MAX_RETRIES,
        )

    # ---------------- internal helpers ----------------

    def _store(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except TransactionCoordinatorError:
            raise
        except Exception as exc:
            logger.exception("Transaction store call %s failed", getattr(fn, "__name__", fn))
            raise InternalError(f"Transaction store unavailable: {exc}") from exc

    def _load(self, transaction_id: str) -> TransactionEntity:
        tx = self._store(self.repo.find_by_id, _norm(transaction_id))
        if tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found.", title="Transaction not found")
        return tx

    def _commit_log(self, transition: Transition, saved: TransactionEntity) -> None:
        if transition.status_changed:
            logger.info(
                "Transaction %s: %s -> %s (v%d)",
                saved.id,
                transition.previous_status,
                saved.status,
                saved.version,
            )
        else:
            logger.debug("Transaction %s updated (v%d)", saved.id, saved.version)

    def _mutate(self, transaction_id: str, planner: Planner) -> Tuple[TransactionEntity, Optional[Transition]]:
        """
        Apply `planner` to the latest record and commit it with a version CAS,
        retrying on conflicts. Returns the stored record and the committed
        transition (None when the planner found nothing to do).
        """
        for attempt in range(1, self.max_cas_retries + 1):
            current = self._load(transaction_id)
            transition = planner(current)
            if transition is None:
                return current, None

            saved = self._store(self.repo.compare_and_set, transition.entity, current.version)
            if saved is not None:
                transition.entity = saved
                self._commit_log(transition, saved)
                self.dispatcher.dispatch(transition.events, transaction_version=saved.version)
                return saved, transition

            logger.debug(
                "Version conflict on transaction %s (attempt %d/%d)",
                transaction_id,
                attempt,
                self.max_cas_retries,
            )

        raise InternalError(
            f"Transaction {transaction_id} kept changing concurrently; gave up after {self.max_cas_retries} attempts.",
            title="Concurrent update conflict",
        )

    def _check_signature(self, tx: TransactionEntity, signer_address: str, signature: Optional[str]) -> None:
        if not _norm(signature):
            raise InvalidSignatureError("An approval must carry a signature.")
        try:
            ok = self.signature_verifier.verify(tx.hash, _norm(signature), signer_address)
        except VerificationError as exc:
            raise InvalidSignatureError(exc.detail) from exc
        if not ok:
            raise InvalidSignatureError(
                f"Signature does not match signer {_norm_lower(signer_address)} for hash {tx.hash}."
            )

    # ---------------- creation ----------------

    def resolve_vault(self, vault_address: str) -> VaultInfo:
        if self.vaults is None:
            raise InternalError("Vault registry is not configured.")
        row = self._store(self.vaults.find_by_address, vault_address)
        if row is None:
            raise NotFoundError(f"Vault {_norm_lower(vault_address)} not found.", title="Vault not found")
        try:
            return row.to_vault_info()
        except ValidationError as exc:
            raise InternalError(f"Vault {row.address} has an invalid definition: {exc}") from exc

    def create(self, proposal: TransactionProposal, vault: VaultInfo, actor: Actor) -> TransactionEntity:
        """
        Open a transaction awaiting approval from every vault signer.

        Raises:
            PermissionDeniedError: actor is not a member of the vault.
            InvalidStateError: a transaction with the same hash exists.
            ValueError: malformed proposal.
        """
        transition = plan_creation(proposal, vault, actor)
        tx = transition.entity

        if self._store(self.repo.find_by_hash, tx.hash) is not None:
            raise InvalidStateError(
                f"A transaction with hash {tx.hash} already exists.",
                title="Duplicate transaction",
            )

        saved = self._store(self.repo.insert, tx)
        logger.info(
            "Transaction %s created on vault %s by %s (%d/%d required)",
            saved.id,
            saved.vault.address,
            actor.member_id,
            saved.required_signers,
            saved.total_signers,
        )
        self.dispatcher.dispatch(transition.events, transaction_version=saved.version)
        return saved

    # ---------------- approval intake ----------------

    def record_response(
        self,
        transaction_id: str,
        signer_address: str,
        *,
        accept: bool,
        signature: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> ResponseOutcome:
        """
        Record one signer's approval or rejection.

        Reaching quorum triggers submission right away. When that submission
        fails the response stays recorded, the record moves to
        submission_failed and SubmissionError is raised.
        """
        if actor is not None and not actor.is_admin and _norm_lower(actor.address) != _norm_lower(signer_address):
            raise PermissionDeniedError("Signers can only respond on their own behalf.")

        tx = self._load(transaction_id)
        if tx.is_terminal:
            raise InvalidStateError(f"Transaction is already '{tx.status}'.")
        entry = find_entry(tx.witnesses, signer_address)
        if entry is None:
            raise NotFoundError(
                f"Signer {_norm_lower(signer_address)} is not a witness of transaction {tx.id}.",
                title="Witness not found",
            )

        if accept and entry.status == WitnessStatus.PENDING:
            self._check_signature(tx, signer_address, signature)

        at_ms = MongoEntity.now_ms()
        saved, transition = self._mutate(
            tx.id,
            lambda cur: plan_response(
                cur,
                account=signer_address,
                accept=accept,
                signature=signature,
                at_ms=at_ms,
            ),
        )

        if transition is None:
            logger.info(
                "Repeated response from %s on transaction %s ignored",
                _norm_lower(signer_address),
                saved.id,
            )
            return ResponseOutcome(accepted=True, changed=False, transaction=saved)

        if transition.status_changed and saved.status == TransactionStatus.AWAITING_SUBMISSION:
            saved = self._submit(saved.id, explicit=False)

        return ResponseOutcome(accepted=True, changed=True, transaction=saved)

    # ---------------- submission ----------------

    def submit(self, transaction_id: str) -> TransactionEntity:
        """
        Explicit submission, also the retry path after submission_failed.

        Raises:
            InvalidStateError: not awaiting submission (or already submitting).
            SubmissionError: the chain call failed (the failure is persisted),
                or is still running after `submit_timeout_sec`, in which case
                the record stays submitting until the call returns.
        """
        return self._submit(transaction_id, explicit=True)

    def _submit(self, transaction_id: str, *, explicit: bool) -> TransactionEntity:
        guarded, taken = self._mutate(transaction_id, lambda cur: plan_submission_start(cur, explicit=explicit))
        if taken is None:
            return guarded
        attempt = guarded.submission_attempts

        payload = WitnessedPayload(
            transaction_id=str(guarded.id),
            hash=guarded.hash,
            vault_address=guarded.vault.address,
            rpc_url=guarded.vault.rpc_url,
            tx_data=dict(guarded.tx_data or {}),
            witnesses=ordered_signatures(guarded.witnesses, guarded.vault.signers),
        )

        handle: Optional[ChainHandle] = None
        error: Optional[str] = None
        fut = _SUBMIT_IO.submit(self.submitter.submit, payload)
        try:
            handle = fut.result(timeout=self.submit_timeout_sec)
        except FuturesTimeoutError:
            if not fut.cancel():
                # The broadcast may still land: keep the guard and store
                # whatever the call returns.
                logger.warning(
                    "Submission of transaction %s still in flight after %ss",
                    transaction_id,
                    self.submit_timeout_sec,
                )
                fut.add_done_callback(lambda f: self._store_late_submission(transaction_id, attempt, f))
                raise SubmissionError(
                    f"Chain submission still in flight after {self.submit_timeout_sec}s; "
                    "its outcome will be recorded when the call returns.",
                    title="Submission in flight",
                )
            error = f"Chain submission did not start within {self.submit_timeout_sec}s."
        except SubmissionError as exc:
            error = exc.detail
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__

        saved = self._store_submission_result(transaction_id, attempt, handle=handle, error=error)

        if error is not None:
            logger.error("Submission of transaction %s failed: %s", transaction_id, error)
            raise SubmissionError(error)
        return saved

    def _store_submission_result(
        self,
        transaction_id: str,
        attempt: int,
        *,
        handle: Optional[ChainHandle],
        error: Optional[str],
    ) -> TransactionEntity:
        """
        Persist the outcome of a chain call, retrying store failures. A lost
        write after a broadcast would leave the guard held with no chain id.
        """
        if handle is not None:
            logger.info("Transaction %s broadcast as %s", transaction_id, handle.chain_tx_id)

        at_iso = MongoEntity.now_iso()
        for n in range(1, _RESULT_WRITE_ATTEMPTS + 1):
            try:
                saved, transition = self._mutate(
                    transaction_id,
                    lambda cur: plan_submission_result(
                        cur, handle=handle, error=error, at_iso=at_iso, attempt=attempt
                    ),
                )
                break
            except InternalError as exc:
                if n == _RESULT_WRITE_ATTEMPTS:
                    logger.error(
                        "Could not store submission result of transaction %s (chain tx %s, error %s): %s",
                        transaction_id,
                        handle.chain_tx_id if handle is not None else None,
                        error,
                        exc.detail,
                    )
                    raise
                time.sleep(0.05 * n)

        if transition is None:
            logger.warning(
                "Submission result of transaction %s discarded in status %s (chain tx %s)",
                transaction_id,
                saved.status,
                handle.chain_tx_id if handle is not None else None,
            )
        return saved

    def _store_late_submission(self, transaction_id: str, attempt: int, fut: Future) -> None:
        handle: Optional[ChainHandle] = None
        error: Optional[str] = None
        exc = fut.exception()
        if isinstance(exc, SubmissionError):
            error = exc.detail
        elif exc is not None:
            error = str(exc) or exc.__class__.__name__
        else:
            handle = fut.result()

        try:
            self._store_submission_result(transaction_id, attempt, handle=handle, error=error)
        except Exception:
            logger.exception("Late submission result of transaction %s was not stored", transaction_id)

    def release_stale_submissions(self, limit: int = 100) -> int:
        """
        Move submission guards older than `stale_submission_sec` to
        submission_failed. Returns how many were released.
        """
        rows = self._store(
            self.repo.list,
            TransactionFilter(status=[TransactionStatus.SUBMITTING]),
            Pagination(offset=0, limit=limit),
            Ordination(order_by=OrderBy.UPDATED_AT, sort=SortDirection.ASC),
        )

        stale_ms = int(self.stale_submission_sec * 1000)
        released = 0
        for tx in rows:
            now_ms = MongoEntity.now_ms()
            try:
                saved, transition = self._mutate(
                    tx.id, lambda cur: plan_guard_release(cur, now_ms=now_ms, stale_after_ms=stale_ms)
                )
            except TransactionCoordinatorError as exc:
                logger.warning("Release of submission guard on %s failed: %s", tx.id, exc)
                continue
            if transition is not None:
                logger.warning("Released stale submission guard on transaction %s", saved.id)
                released += 1
        return released

    # ---------------- verification ----------------

    def _fetch_outcome(self, tx: TransactionEntity) -> Optional[VerificationOutcome]:
        try:
            return _call_with_timeout(
                _VERIFY_IO,
                self.chain_verifier.fetch_status,
                self.verify_timeout_sec,
                tx.chain_tx_id,
                rpc_url=tx.vault.rpc_url,
            )
        except FuturesTimeoutError:
            logger.warning("Chain status of %s timed out after %ss", tx.chain_tx_id, self.verify_timeout_sec)
        except VerificationError as exc:
            logger.warning("Chain status of %s unavailable: %s", tx.chain_tx_id, exc.detail)
        return None

    def _reconcile(self, tx: TransactionEntity) -> TransactionEntity:
        if not tx.chain_tx_id:
            raise InternalError(f"Transaction {tx.id} awaits confirmation without a chain transaction id.")

        outcome = self._fetch_outcome(tx)
        if outcome is None or outcome.status == ChainOutcome.PENDING:
            return tx

        saved, _ = self._mutate(tx.id, lambda cur: plan_verification(cur, outcome))
        return saved

    def reconcile(self, transaction_id: str) -> TransactionResume:
        """
        Pull the chain outcome of a submitted transaction.

        While the chain has no final answer (or cannot be reached) this
        returns the stored snapshot unchanged.
        """
        tx = self._load(transaction_id)
        status = TransactionStatus(tx.status)
        if status in (TransactionStatus.CONFIRMED_SUCCESS, TransactionStatus.CONFIRMED_FAILED):
            return tx.resume or build_resume(tx)
        if status != TransactionStatus.AWAITING_CHAIN_CONFIRMATION:
            raise InvalidStateError(
                f"Transaction must be '{TransactionStatus.AWAITING_CHAIN_CONFIRMATION}' to be verified, got '{status}'."
            )
        saved = self._reconcile(tx)
        return saved.resume or build_resume(saved)

    def reconcile_pending(self, limit: int = 100) -> int:
        """
        Reconcile transactions awaiting confirmation, oldest update first.
        Stale submission guards are released first. Returns how many
        transactions reached a terminal status.
        """
        self.release_stale_submissions(limit=limit)

        rows = self._store(
            self.repo.list,
            TransactionFilter(status=[TransactionStatus.AWAITING_CHAIN_CONFIRMATION]),
            Pagination(offset=0, limit=limit),
            Ordination(order_by=OrderBy.UPDATED_AT, sort=SortDirection.ASC),
        )

        finalized = 0
        for tx in rows:
            try:
                saved = self._reconcile(tx)
            except TransactionCoordinatorError as exc:
                logger.warning("Reconcile of transaction %s failed: %s", tx.id, exc)
                continue
            if saved.is_terminal:
                finalized += 1
        return finalized

    def redeliver_notifications(self, limit: int = 100) -> int:
        return self.dispatcher.redeliver_pending(limit=limit)

    # ---------------- administrative close ----------------

    def close(
        self,
        transaction_id: str,
        outcome: TransactionStatus,
        *,
        actor: Optional[Actor] = None,
        gas_used: Optional[str] = None,
        chain_tx_id: Optional[str] = None,
    ) -> TransactionEntity:
        if actor is not None and not actor.is_admin:
            raise PermissionDeniedError("Only vault administrators can close transactions.")

        at_iso = MongoEntity.now_iso()
        saved, _ = self._mutate(
            transaction_id,
            lambda cur: plan_close(
                cur,
                outcome=outcome,
                gas_used=gas_used,
                chain_tx_id=chain_tx_id,
                at_iso=at_iso,
            ),
        )
        return saved

    # ---------------- reads ----------------

    def get_by_id(self, transaction_id: str, *, reconcile: bool = True) -> TransactionEntity:
        tx = self._load(transaction_id)
        if reconcile and tx.status == TransactionStatus.AWAITING_CHAIN_CONFIRMATION:
            return self._reconcile(tx)
        return tx

    def get_by_hash(self, tx_hash: str) -> TransactionEntity:
        key = _norm_hash(tx_hash)
        tx = self._store(self.repo.find_by_hash, key)
        if tx is None:
            raise NotFoundError(f"Transaction with hash {key} not found.", title="Transaction not found")
        return tx

    def list(
        self,
        flt: TransactionFilter,
        pagination: Optional[Pagination] = None,
        ordination: Optional[Ordination] = None,
    ) -> Page[TransactionEntity]:
        pagination = pagination or Pagination()
        ordination = ordination or Ordination()

        items = self._store(self.repo.list, flt, pagination, ordination)
        total = self._store(self.repo.count, flt) if pagination.with_total else None
        return Page[TransactionEntity](
            items=items,
            total=total,
            offset=pagination.offset,
            limit=pagination.limit,
        )

    def history(self, transaction_id: str) -> List[HistoryEntry]:
        return format_history(self._load(transaction_id))

    def pending_summary(self, signer: str, vault_ids: Optional[List[str]] = None) -> PendingSummary:
        account = _norm_lower(signer)
        if not account:
            raise ValueError("signer is required")

        flt = TransactionFilter(
            status=[TransactionStatus.AWAITING_APPROVAL],
            signer=account,
            vault_ids=vault_ids or None,
        )

        of_user = 0
        blocked = False
        offset = 0
        while True:
            rows = self._store(
                self.repo.list,
                flt,
                Pagination(offset=offset, limit=MAX_PAGE_LIMIT),
                Ordination(order_by=OrderBy.CREATED_AT, sort=SortDirection.ASC),
            )
            if rows:
                blocked = True
            for tx in rows:
                entry = find_entry(tx.witnesses, account)
                if entry is not None and entry.status == WitnessStatus.PENDING:
                    of_user += 1
            if len(rows) < MAX_PAGE_LIMIT:
                break
            offset += MAX_PAGE_LIMIT

        return PendingSummary(of_user=of_user, transactions_blocked=blocked)
