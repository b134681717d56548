from __future__ import annotations

from typing import List, Optional, Protocol

from core.domain.entities.transaction_entity import TransactionEntity
from core.domain.schemas.query_types import Ordination, Pagination, TransactionFilter


class TransactionRepositoryInterface(Protocol):
    """
    Transactional record store for vault transactions.

    `compare_and_set` is the only mutation path after insert: it writes the
    entity if and only if the stored `version` still equals
    `expected_version`, incrementing it, and returns None otherwise.
    """

    def ensure_indexes(self) -> None:
        ...

    def insert(self, entity: TransactionEntity) -> TransactionEntity:
        ...

    def find_by_id(self, transaction_id: str) -> Optional[TransactionEntity]:
        ...

    def find_by_hash(self, tx_hash: str) -> Optional[TransactionEntity]:
        ...

    def compare_and_set(self, entity: TransactionEntity, expected_version: int) -> Optional[TransactionEntity]:
        ...

    def list(
        self,
        flt: TransactionFilter,
        pagination: Pagination,
        ordination: Ordination,
    ) -> List[TransactionEntity]:
        ...

    def count(self, flt: TransactionFilter) -> int:
        ...
