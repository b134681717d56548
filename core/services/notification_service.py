from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from core.domain.entities.transaction_event_entity import TransactionEventEntity
from core.domain.gateways.notifier_interface import NotifierInterface
from core.domain.repositories.transaction_events_repository_interface import (
    TransactionEventsRepositoryInterface,
)
from core.services.state_machine import SignerEvent

logger = logging.getLogger(__name__)


@dataclass
class NotificationDispatcher:
    """
    Delivers signer events after the state transition that produced them has
    been committed.

    Events go through the outbox first so a failed delivery can be retried by
    `redeliver_pending`. Nothing here raises to the caller: notification
    failures never undo or block a transition.
    """

    events_repo: TransactionEventsRepositoryInterface
    notifier: Optional[NotifierInterface] = None

    def dispatch(self, events: Iterable[SignerEvent], *, transaction_version: int) -> int:
        delivered = 0
        for ev in events:
            try:
                record = self.events_repo.upsert_idempotent(
                    TransactionEventEntity(
                        transaction_id=ev.transaction_id,
                        transaction_version=int(transaction_version),
                        kind=ev.kind,
                        recipients=list(ev.recipients),
                        summary=dict(ev.summary),
                    )
                )
            except Exception as exc:
                logger.warning(
                    "Failed to store %s event for transaction %s: %s",
                    ev.kind,
                    ev.transaction_id,
                    exc,
                )
                continue

            if record.delivered:
                continue
            if self._deliver(record):
                delivered += 1
        return delivered

    def redeliver_pending(self, limit: int = 100) -> int:
        delivered = 0
        for record in self.events_repo.list_undelivered(limit=limit):
            if self._deliver(record):
                delivered += 1
        return delivered

    def _mark_delivered(self, record: TransactionEventEntity) -> None:
        try:
            self.events_repo.mark_delivered(str(record.id))
        except Exception:
            logger.exception("Failed to mark event %s as delivered", record.id)

    def _deliver(self, record: TransactionEventEntity) -> bool:
        if not record.recipients:
            self._mark_delivered(record)
            return True

        if self.notifier is None:
            logger.info(
                "Notification %s for transaction %s -> %s (no notifier configured)",
                record.kind,
                record.transaction_id,
                ", ".join(record.recipients),
            )
            self._mark_delivered(record)
            return True

        try:
            self.notifier.notify(
                transaction_id=record.transaction_id,
                kind=str(record.kind),
                recipients=list(record.recipients),
                summary=dict(record.summary),
            )
        except Exception as exc:
            logger.warning(
                "Notification %s for transaction %s not delivered: %s",
                record.kind,
                record.transaction_id,
                exc,
            )
            try:
                self.events_repo.mark_failed(str(record.id), str(exc))
            except Exception:
                logger.exception("Failed to mark event %s as failed", record.id)
            return False

        self._mark_delivered(record)
        return True
