# adapters/external/database/transaction_repository_mongodb.py

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.transaction_entity import TransactionEntity
from core.domain.enums.tx_enums import OrderBy, SortDirection
from core.domain.schemas.query_types import Ordination, Pagination, TransactionFilter
from core.services.exceptions import InvalidStateError
from core.services.normalize import _norm, _norm_hash, _norm_lower

SORT_FIELDS: Dict[str, str] = {
    OrderBy.UPDATED_AT.value: "updated_at",
    OrderBy.CREATED_AT.value: "created_at",
    OrderBy.NAME.value: "name",
    OrderBy.STATUS.value: "status",
}


def build_transaction_query(flt: TransactionFilter) -> Dict[str, Any]:
    """
    Translate a TransactionFilter into a Mongo query. Soft-deleted records are
    always excluded.
    """
    q: Dict[str, Any] = {"deleted_at": None}

    if flt.status:
        q["status"] = {"$in": [str(s) for s in flt.status]}
    if _norm(flt.signer):
        q["witnesses.account"] = _norm_lower(flt.signer)
    if flt.vault_ids:
        q["vault.id"] = {"$in": list(flt.vault_ids)}
    if _norm(flt.vault_address):
        q["vault.address"] = _norm_lower(flt.vault_address)
    if _norm(flt.created_by):
        q["created_by"] = _norm(flt.created_by)
    if _norm(flt.hash):
        q["hash"] = _norm_hash(flt.hash)
    if _norm(flt.name):
        q["name"] = {"$regex": re.escape(_norm(flt.name)), "$options": "i"}

    created: Dict[str, int] = {}
    if flt.start_ms is not None:
        created["$gte"] = int(flt.start_ms)
    if flt.end_ms is not None:
        created["$lte"] = int(flt.end_ms)
    if created:
        q["created_at"] = created

    return q


def build_sort(ordination: Ordination) -> List[Tuple[str, int]]:
    field = SORT_FIELDS.get(str(ordination.order_by), "updated_at")
    direction = ASCENDING if str(ordination.sort) == SortDirection.ASC.value else DESCENDING
    return [(field, direction), ("_id", direction)]


class TransactionRepositoryMongoDB:
    """
    Collection: transactions

    After insert the only write path is `compare_and_set`, which replaces the
    whole document when the stored version still matches.
    """

    COLLECTION_NAME = "transactions"

    def __init__(self, db: Optional[Database] = None, col: Optional[Collection] = None) -> None:
        if col is not None:
            self._col = col
            self._db = col.database
        else:
            self._db = db if db is not None else get_mongo_db()
            self._col = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> Collection:
        return self._col

    def ensure_indexes(self) -> None:
        self._col.create_index([("hash", ASCENDING)], unique=True, name="ux_hash")
        self._col.create_index([("status", ASCENDING), ("updated_at", DESCENDING)], name="ix_status_updated_desc")
        self._col.create_index([("vault.id", ASCENDING), ("updated_at", DESCENDING)], name="ix_vault_updated_desc")
        self._col.create_index([("witnesses.account", ASCENDING)], name="ix_witness_account")
        self._col.create_index([("created_by", ASCENDING)], name="ix_created_by")

    def _to_doc(self, entity: TransactionEntity) -> Dict[str, Any]:
        return sanitize_for_mongo(entity.to_mongo())

    def insert(self, entity: TransactionEntity) -> TransactionEntity:
        entity = entity.model_copy(deep=True).touch_for_insert()
        entity.version = 0
        doc = self._to_doc(entity)
        try:
            self._col.insert_one(doc)
        except DuplicateKeyError as exc:
            raise InvalidStateError(
                f"A transaction with hash {entity.hash} already exists.",
                title="Duplicate transaction",
            ) from exc
        return entity

    def find_by_id(self, transaction_id: str) -> Optional[TransactionEntity]:
        doc = self._col.find_one({"_id": _norm(transaction_id), "deleted_at": None})
        return TransactionEntity.from_mongo(doc)

    def find_by_hash(self, tx_hash: str) -> Optional[TransactionEntity]:
        doc = self._col.find_one({"hash": _norm_hash(tx_hash), "deleted_at": None})
        return TransactionEntity.from_mongo(doc)

    def compare_and_set(self, entity: TransactionEntity, expected_version: int) -> Optional[TransactionEntity]:
        nxt = entity.model_copy(deep=True).touch_for_update()
        nxt.version = int(expected_version) + 1
        doc = self._to_doc(nxt)
        doc.pop("_id", None)

        saved = self._col.find_one_and_replace(
            {"_id": str(entity.id), "version": int(expected_version)},
            doc,
            return_document=ReturnDocument.AFTER,
        )
        return TransactionEntity.from_mongo(saved)

    def list(
        self,
        flt: TransactionFilter,
        pagination: Pagination,
        ordination: Ordination,
    ) -> List[TransactionEntity]:
        cur = (
            self._col.find(build_transaction_query(flt))
            .sort(build_sort(ordination))
            .skip(int(pagination.offset))
            .limit(int(pagination.limit))
        )
        return [TransactionEntity.from_mongo(d) for d in cur if d]

    def count(self, flt: TransactionFilter) -> int:
        return int(self._col.count_documents(build_transaction_query(flt)))
