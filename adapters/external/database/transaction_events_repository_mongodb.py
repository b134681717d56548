# adapters/external/database/transaction_events_repository_mongodb.py

from __future__ import annotations

from typing import List, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.transaction_event_entity import TransactionEventEntity


class TransactionEventsRepositoryMongoDB:
    COLLECTION_NAME = "transaction_events"

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
        self._col.create_index(
            [("transaction_id", ASCENDING), ("kind", ASCENDING), ("transaction_version", ASCENDING)],
            unique=True,
            name="ux_tx_kind_version",
        )
        self._col.create_index([("delivered", ASCENDING), ("created_at", ASCENDING)], name="ix_delivered_created")

    def upsert_idempotent(self, entity: TransactionEventEntity) -> TransactionEventEntity:
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        for k in ("updated_at", "updated_at_iso"):
            doc.pop(k, None)

        q = {
            "transaction_id": doc.get("transaction_id"),
            "kind": doc.get("kind"),
            "transaction_version": doc.get("transaction_version"),
        }

        saved = self._col.find_one_and_update(
            q,
            {"$setOnInsert": doc, "$set": {"updated_at": entity.now_ms(), "updated_at_iso": entity.now_iso()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return TransactionEventEntity.from_mongo(saved)

    def mark_delivered(self, event_id: str) -> None:
        self._col.update_one(
            {"_id": event_id},
            {
                "$set": {
                    "delivered": True,
                    "last_error": None,
                    "updated_at": TransactionEventEntity.now_ms(),
                    "updated_at_iso": TransactionEventEntity.now_iso(),
                },
                "$inc": {"attempts": 1},
            },
        )

    def mark_failed(self, event_id: str, error: str) -> None:
        self._col.update_one(
            {"_id": event_id},
            {
                "$set": {
                    "last_error": str(error)[:500],
                    "updated_at": TransactionEventEntity.now_ms(),
                    "updated_at_iso": TransactionEventEntity.now_iso(),
                },
                "$inc": {"attempts": 1},
            },
        )

    def list_undelivered(self, limit: int = 100) -> List[TransactionEventEntity]:
        cur = self._col.find({"delivered": False}).sort("created_at", ASCENDING).limit(int(limit or 100))
        return [TransactionEventEntity.from_mongo(d) for d in cur if d]
