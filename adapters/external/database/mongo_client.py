# adapters/external/database/mongo_client.py

from __future__ import annotations

from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database

from config import get_settings

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_mongo_client() -> MongoClient:
    """
    Return a singleton MongoClient configured from MONGO_URI.

    The client is created lazily and cached at module level so that subsequent
    calls reuse the same connection pool.
    """
    global _client
    if _client is None:
        uri = get_settings().MONGO_URI
        if not uri:
            raise RuntimeError(
                "MONGO_URI is not configured. Please set it so the transaction "
                "coordinator can connect to MongoDB."
            )
        _client = MongoClient(uri, tz_aware=True)
    return _client


def get_mongo_db() -> Database:
    """
    Return the database holding `transactions`, `transaction_events` and
    `vault_registry`, selected by MONGO_DB.
    """
    global _db
    if _db is None:
        db_name = get_settings().MONGO_DB
        if not db_name:
            raise RuntimeError(
                "MONGO_DB is not configured. Please set it so the transaction "
                "coordinator can select a MongoDB database."
            )
        _db = get_mongo_client()[db_name]
    return _db
