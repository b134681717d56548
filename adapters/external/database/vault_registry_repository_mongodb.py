# adapters/external/database/vault_registry_repository_mongodb.py

from __future__ import annotations

from typing import Optional

from pymongo.collection import Collection
from pymongo.database import Database

from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.vault_registry_entity import VaultRegistryEntity
from core.services.normalize import _norm, _norm_lower


class VaultRegistryRepositoryMongoDB:
    """
    Read-only view over `vault_registry`. Vault membership is maintained by
    another subsystem, so no indexes are created here.
    """

    COLLECTION_NAME = "vault_registry"

    def __init__(self, db: Optional[Database] = None, col: Optional[Collection] = None) -> None:
        if col is not None:
            self._col = col
        else:
            self._col = (db if db is not None else get_mongo_db())[self.COLLECTION_NAME]

    def find_by_address(self, address: str) -> Optional[VaultRegistryEntity]:
        doc = self._col.find_one({"address": _norm_lower(address), "is_active": {"$ne": False}})
        return VaultRegistryEntity.from_mongo(doc)

    def find_by_id(self, vault_id: str) -> Optional[VaultRegistryEntity]:
        doc = self._col.find_one({"_id": _norm(vault_id)})
        return VaultRegistryEntity.from_mongo(doc)
