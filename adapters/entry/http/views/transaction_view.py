from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from adapters.entry.http.dtos.transaction_dtos import (
    CloseTransactionIn,
    CreateTransactionIn,
    ErrorOut,
    PendingSummaryOut,
    SignerResponseIn,
    SignerResponseOut,
    TransactionOut,
    TransactionsListOut,
)
from adapters.entry.http.views.auth import require_actor, require_admin
from core.domain.entities.transaction_entity import TransactionResume
from core.domain.enums.tx_enums import OrderBy, SortDirection, TransactionStatus
from core.domain.schemas.query_types import MAX_PAGE_LIMIT, Ordination, Pagination, TransactionFilter
from core.domain.schemas.vault_inputs import Actor, TransactionProposal
from core.services.exceptions import TransactionCoordinatorError
from core.services.history import HistoryEntry
from core.use_cases.transaction_coordinator_usecase import TransactionCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])

STATUS_BY_KIND = {
    "permission_denied": 403,
    "not_found": 404,
    "invalid_signature": 400,
    "invalid_state": 409,
    "submission_error": 502,
    "verification_error": 503,
    "internal": 500,
}

ERROR_RESPONSES = {code: {"model": ErrorOut} for code in sorted(set(STATUS_BY_KIND.values()))}


@lru_cache(maxsize=1)
def get_coordinator() -> TransactionCoordinator:
    return TransactionCoordinator.from_settings()


def to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, TransactionCoordinatorError):
        return HTTPException(status_code=STATUS_BY_KIND.get(exc.kind, 500), detail=exc.as_dict())
    if isinstance(exc, ValueError):
        return HTTPException(
            status_code=400,
            detail={"kind": "invalid_request", "title": "Invalid request", "detail": str(exc)},
        )
    logger.exception("Unhandled error in transaction route")
    return HTTPException(
        status_code=500,
        detail={"kind": "internal", "title": "Internal error", "detail": str(exc) or exc.__class__.__name__},
    )


@router.post(
    "",
    status_code=201,
    response_model=TransactionOut,
    responses=ERROR_RESPONSES,
    summary="Propose a vault transaction; opens one pending witness per vault signer",
)
def create_transaction(
    body: CreateTransactionIn,
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        vault = coordinator.resolve_vault(body.vault_address)
        proposal = TransactionProposal(
            name=body.name,
            hash=body.hash,
            outputs=[o.model_dump() for o in body.outputs],
            tx_data=body.tx_data,
        )
        return TransactionOut.from_entity(coordinator.create(proposal, vault, actor))
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.get(
    "",
    response_model=TransactionsListOut,
    responses=ERROR_RESPONSES,
    summary="List transactions (most recently updated first by default)",
)
def list_transactions(
    status: Optional[List[TransactionStatus]] = Query(None),
    signer: Optional[str] = Query(None),
    vault_id: Optional[List[str]] = Query(None),
    vault_address: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    hash: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    start_ms: Optional[int] = Query(None, ge=0),
    end_ms: Optional[int] = Query(None, ge=0),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=MAX_PAGE_LIMIT),
    with_total: bool = Query(False),
    order_by: OrderBy = Query(OrderBy.UPDATED_AT),
    sort: SortDirection = Query(SortDirection.DESC),
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        flt = TransactionFilter(
            status=status,
            signer=signer,
            vault_ids=vault_id,
            vault_address=vault_address,
            created_by=created_by,
            hash=hash,
            name=name,
            start_ms=start_ms,
            end_ms=end_ms,
        )
        page = coordinator.list(
            flt,
            Pagination(offset=offset, limit=limit, with_total=with_total),
            Ordination(order_by=order_by, sort=sort),
        )
        return TransactionsListOut(
            items=[TransactionOut.from_entity(t) for t in page.items],
            total=page.total,
            offset=page.offset,
            limit=page.limit,
        )
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.get(
    "/pending",
    response_model=PendingSummaryOut,
    response_model_by_alias=True,
    responses=ERROR_RESPONSES,
    summary="Approval backlog of a signer (defaults to the caller)",
)
def pending_summary(
    signer: Optional[str] = Query(None),
    vault_id: Optional[List[str]] = Query(None),
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        summary = coordinator.pending_summary(signer or actor.address, vault_ids=vault_id)
        return PendingSummaryOut.from_summary(summary)
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.get(
    "/by-hash/{tx_hash}",
    response_model=TransactionOut,
    responses=ERROR_RESPONSES,
)
def get_transaction_by_hash(
    tx_hash: str,
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        return TransactionOut.from_entity(coordinator.get_by_hash(tx_hash))
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.get(
    "/{transaction_id}",
    response_model=TransactionOut,
    responses=ERROR_RESPONSES,
    summary="Fetch a transaction; pulls the chain outcome first while awaiting confirmation",
)
def get_transaction(
    transaction_id: str,
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        return TransactionOut.from_entity(coordinator.get_by_id(transaction_id))
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.get(
    "/{transaction_id}/history",
    response_model=List[HistoryEntry],
    responses=ERROR_RESPONSES,
)
def get_transaction_history(
    transaction_id: str,
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        return coordinator.history(transaction_id)
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.put(
    "/{transaction_id}/signer",
    response_model=SignerResponseOut,
    responses=ERROR_RESPONSES,
    summary="Approve (with signature) or reject a transaction as one of its signers",
)
def respond_as_signer(
    transaction_id: str,
    body: SignerResponseIn,
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        outcome = coordinator.record_response(
            transaction_id,
            body.account or actor.address,
            accept=body.confirm,
            signature=body.signature,
            actor=actor,
        )
        return SignerResponseOut(
            accepted=outcome.accepted,
            changed=outcome.changed,
            transaction=TransactionOut.from_entity(outcome.transaction),
        )
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.post(
    "/{transaction_id}/send",
    response_model=TransactionOut,
    responses=ERROR_RESPONSES,
    summary="Submit an approved transaction to the chain (also retries a failed submission)",
)
def send_transaction(
    transaction_id: str,
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        return TransactionOut.from_entity(coordinator.submit(transaction_id))
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.post(
    "/{transaction_id}/verify",
    response_model=TransactionResume,
    responses=ERROR_RESPONSES,
    summary="Pull the chain outcome of a submitted transaction",
)
def verify_transaction(
    transaction_id: str,
    actor: Actor = Depends(require_actor),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        return coordinator.reconcile(transaction_id)
    except Exception as exc:
        raise to_http_error(exc) from exc


@router.put(
    "/{transaction_id}/close",
    response_model=TransactionOut,
    responses=ERROR_RESPONSES,
    summary="Admin: set the final chain outcome of a transaction confirmed elsewhere",
)
def close_transaction(
    transaction_id: str,
    body: CloseTransactionIn,
    admin: Actor = Depends(require_admin),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
):
    try:
        tx = coordinator.close(
            transaction_id,
            body.outcome,
            actor=admin,
            gas_used=body.gas_used,
            chain_tx_id=body.chain_tx_id,
        )
        return TransactionOut.from_entity(tx)
    except Exception as exc:
        raise to_http_error(exc) from exc
