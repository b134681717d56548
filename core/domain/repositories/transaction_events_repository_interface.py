from __future__ import annotations

from typing import List, Protocol

from core.domain.entities.transaction_event_entity import TransactionEventEntity


class TransactionEventsRepositoryInterface(Protocol):
    """
    Abstraction for the signer notification outbox.
    """

    def ensure_indexes(self) -> None:
        ...

    def upsert_idempotent(self, entity: TransactionEventEntity) -> TransactionEventEntity:
        ...

    def mark_delivered(self, event_id: str) -> None:
        ...

    def mark_failed(self, event_id: str, error: str) -> None:
        ...

    def list_undelivered(self, limit: int = 100) -> List[TransactionEventEntity]:
        ...
