from __future__ import annotations

import threading
from typing import Dict, List, Optional

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from core.domain.entities.transaction_entity import TransactionEntity
from core.domain.entities.transaction_event_entity import TransactionEventEntity
from core.domain.enums.tx_enums import ChainOutcome
from core.domain.schemas.chain_types import ChainHandle, VerificationOutcome, WitnessedPayload
from core.domain.schemas.query_types import Ordination, Pagination, TransactionFilter
from core.domain.schemas.vault_inputs import Actor, TransactionProposal, VaultInfo, VaultMember
from core.services.exceptions import InvalidStateError, SubmissionError
from core.services.notification_service import NotificationDispatcher
from core.services.signature_verifier import EthSignatureVerifier
from core.use_cases.transaction_coordinator_usecase import TransactionCoordinator

TX_HASH = "0x" + "ab" * 32

KEYS = {
    "alice": "0x" + "11" * 32,
    "bob": "0x" + "22" * 32,
    "carol": "0x" + "33" * 32,
    "mallory": "0x" + "44" * 32,
}


class InMemoryTransactionRepository:
    """
    Dict-backed store with the same version compare-and-swap contract as the
    Mongo repository.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, TransactionEntity] = {}
        self._lock = threading.Lock()
        self.cas_calls = 0
        self.cas_conflicts = 0

    def ensure_indexes(self) -> None:
        return None

    def insert(self, entity: TransactionEntity) -> TransactionEntity:
        with self._lock:
            if any(r.hash == entity.hash for r in self._rows.values()):
                raise InvalidStateError(f"A transaction with hash {entity.hash} already exists.")
            row = entity.model_copy(deep=True).touch_for_insert()
            row.version = 0
            self._rows[row.id] = row
            return row.model_copy(deep=True)

    def find_by_id(self, transaction_id: str) -> Optional[TransactionEntity]:
        with self._lock:
            row = self._rows.get(transaction_id)
            return row.model_copy(deep=True) if row else None

    def find_by_hash(self, tx_hash: str) -> Optional[TransactionEntity]:
        with self._lock:
            for row in self._rows.values():
                if row.hash == tx_hash.lower():
                    return row.model_copy(deep=True)
            return None

    def compare_and_set(self, entity: TransactionEntity, expected_version: int) -> Optional[TransactionEntity]:
        with self._lock:
            self.cas_calls += 1
            current = self._rows.get(entity.id)
            if current is None or current.version != expected_version:
                self.cas_conflicts += 1
                return None
            nxt = entity.model_copy(deep=True).touch_for_update()
            nxt.version = expected_version + 1
            self._rows[nxt.id] = nxt
            return nxt.model_copy(deep=True)

    def _matches(self, row: TransactionEntity, flt: TransactionFilter) -> bool:
        if flt.status and row.status not in flt.status:
            return False
        if flt.signer and not any(w.account == flt.signer.lower() for w in row.witnesses):
            return False
        if flt.vault_ids and row.vault.id not in flt.vault_ids:
            return False
        if flt.created_by and row.created_by != flt.created_by:
            return False
        if flt.hash and row.hash != flt.hash.lower():
            return False
        return True

    def list(self, flt: TransactionFilter, pagination: Pagination, ordination: Ordination) -> List[TransactionEntity]:
        with self._lock:
            rows = [r for r in self._rows.values() if self._matches(r, flt)]
        rows.sort(key=lambda r: getattr(r, ordination.order_by) or 0, reverse=ordination.sort == "desc")
        rows = rows[pagination.offset : pagination.offset + pagination.limit]
        return [r.model_copy(deep=True) for r in rows]

    def count(self, flt: TransactionFilter) -> int:
        with self._lock:
            return sum(1 for r in self._rows.values() if self._matches(r, flt))


class InMemoryEventsRepository:
    def __init__(self) -> None:
        self.rows: Dict[tuple, TransactionEventEntity] = {}
        self._lock = threading.Lock()

    def ensure_indexes(self) -> None:
        return None

    def upsert_idempotent(self, entity: TransactionEventEntity) -> TransactionEventEntity:
        key = (entity.transaction_id, str(entity.kind), entity.transaction_version)
        with self._lock:
            if key not in self.rows:
                self.rows[key] = entity.touch_for_insert()
            return self.rows[key].model_copy(deep=True)

    def _by_id(self, event_id: str) -> TransactionEventEntity:
        return next(r for r in self.rows.values() if r.id == event_id)

    def mark_delivered(self, event_id: str) -> None:
        with self._lock:
            row = self._by_id(event_id)
            row.delivered = True
            row.attempts += 1

    def mark_failed(self, event_id: str, error: str) -> None:
        with self._lock:
            row = self._by_id(event_id)
            row.attempts += 1
            row.last_error = error

    def list_undelivered(self, limit: int = 100) -> List[TransactionEventEntity]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self.rows.values() if not r.delivered][:limit]


class FakeSubmitter:
    def __init__(self, chain_tx_id: str = "0xabc") -> None:
        self.chain_tx_id = chain_tx_id
        self.error: Optional[Exception] = None
        self.payloads: List[WitnessedPayload] = []
        self.gate: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def submit(self, payload: WitnessedPayload) -> ChainHandle:
        with self._lock:
            self.payloads.append(payload)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return ChainHandle(chain_tx_id=self.chain_tx_id)


class FakeVerifier:
    def __init__(self) -> None:
        self.outcome = VerificationOutcome(status=ChainOutcome.PENDING)
        self.error: Optional[Exception] = None
        self.calls: List[str] = []
        self.gate: Optional[threading.Event] = None

    def fetch_status(self, chain_tx_id: str, *, rpc_url: Optional[str] = None) -> VerificationOutcome:
        self.calls.append(chain_tx_id)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.outcome


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.fail = False

    def notify(self, *, transaction_id, kind, recipients, summary) -> None:
        if self.fail:
            raise RuntimeError("notification service down")
        self.sent.append(
            {"transaction_id": transaction_id, "kind": kind, "recipients": list(recipients), "summary": summary}
        )

    def kinds(self) -> List[str]:
        return [s["kind"] for s in self.sent]


@pytest.fixture
def accounts():
    return {name: Account.from_key(key) for name, key in KEYS.items()}


@pytest.fixture
def sign(accounts):
    def _sign(name: str, tx_hash: str = TX_HASH) -> str:
        signed = Account.sign_message(encode_defunct(hexstr=tx_hash), private_key=KEYS[name])
        return "0x" + bytes(signed.signature).hex()

    return _sign


def make_vault(accounts, *, required: int = 2, names=("alice", "bob", "carol")) -> VaultInfo:
    return VaultInfo(
        id="vault-1",
        address="0x" + "99" * 20,
        name="Treasury",
        chain="base",
        required_signers=required,
        signers=[accounts[n].address for n in names],
        members=[VaultMember(id=f"member-{n}", address=accounts[n].address) for n in names],
    )


def actor_for(accounts, name: str, *, is_admin: bool = False) -> Actor:
    return Actor(member_id=f"member-{name}", address=accounts[name].address.lower(), is_admin=is_admin)


@pytest.fixture
def vault(accounts):
    return make_vault(accounts)


@pytest.fixture
def proposal():
    return TransactionProposal(
        name="Pay contractor",
        hash=TX_HASH,
        outputs=[{"to": "0x" + "77" * 20, "amount": "1.5", "asset_id": "eth"}],
        tx_data={"to": "0x" + "77" * 20, "value": "1500000000000000000", "data": "0x"},
    )


@pytest.fixture
def repo():
    return InMemoryTransactionRepository()


@pytest.fixture
def events_repo():
    return InMemoryEventsRepository()


@pytest.fixture
def submitter():
    return FakeSubmitter()


@pytest.fixture
def chain_verifier():
    return FakeVerifier()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def coordinator(repo, events_repo, submitter, chain_verifier, notifier):
    return TransactionCoordinator(
        repo=repo,
        signature_verifier=EthSignatureVerifier(),
        submitter=submitter,
        chain_verifier=chain_verifier,
        dispatcher=NotificationDispatcher(events_repo=events_repo, notifier=notifier),
        submit_timeout_sec=5,
        verify_timeout_sec=5,
        max_cas_retries=50,
    )


@pytest.fixture
def created(coordinator, proposal, vault, accounts):
    return coordinator.create(proposal, vault, actor_for(accounts, "alice"))


@pytest.fixture
def submission_failure():
    return SubmissionError("execution reverted: GS026")


@pytest.fixture
def actor(accounts):
    def _actor(name: str, *, is_admin: bool = False) -> Actor:
        return actor_for(accounts, name, is_admin=is_admin)

    return _actor


@pytest.fixture
def vault_factory(accounts):
    def _vault(**kwargs) -> VaultInfo:
        return make_vault(accounts, **kwargs)

    return _vault
