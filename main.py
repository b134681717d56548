# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.external.database.transaction_events_repository_mongodb import TransactionEventsRepositoryMongoDB
from adapters.external.database.transaction_repository_mongodb import TransactionRepositoryMongoDB
from adapters.entry.http.views.transaction_view import router as transactions_router
from config import get_settings

logger = logging.getLogger(__name__)


def init_mongo_indexes() -> None:
    """
    Make sure the `transactions` and `transaction_events` indexes exist
    (unique hash, outbox idempotency key) before serving any request.
    """
    TransactionRepositoryMongoDB().ensure_indexes()
    TransactionEventsRepositoryMongoDB().ensure_indexes()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_mongo_indexes()
    logger.info("Vault transaction coordinator ready (env=%s)", get_settings().ENV)
    yield


def create_app() -> FastAPI:
    """
    Application factory for the vault transaction coordinator API.
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    app = FastAPI(
        title="Vault Transaction Coordinator API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(transactions_router, prefix="/api")

    return app


app = create_app()
