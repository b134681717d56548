from __future__ import annotations

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.domain.enums.tx_enums import OrderBy, SortDirection, TransactionStatus

T = TypeVar("T")

MAX_PAGE_LIMIT = 200


class TransactionFilter(BaseModel):
    """
    Immutable filter for transaction listings. All criteria are ANDed.

    Dates are creation timestamps in milliseconds (inclusive bounds).
    """

    status: Optional[List[TransactionStatus]] = None
    signer: Optional[str] = None
    vault_ids: Optional[List[str]] = None
    vault_address: Optional[str] = None
    created_by: Optional[str] = None
    hash: Optional[str] = None
    name: Optional[str] = None
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None

    model_config = ConfigDict(frozen=True, use_enum_values=True)


class Pagination(BaseModel):
    offset: int = 0
    limit: int = 50
    with_total: bool = False

    model_config = ConfigDict(frozen=True)

    @field_validator("offset")
    @classmethod
    def _clamp_offset(cls, v: int) -> int:
        return max(int(v or 0), 0)

    @field_validator("limit")
    @classmethod
    def _clamp_limit(cls, v: int) -> int:
        v = int(v or 50)
        if v < 1:
            return 1
        if v > MAX_PAGE_LIMIT:
            return MAX_PAGE_LIMIT
        return v


class Ordination(BaseModel):
    order_by: OrderBy = OrderBy.UPDATED_AT
    sort: SortDirection = SortDirection.DESC

    model_config = ConfigDict(frozen=True, use_enum_values=True)


class Page(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    total: Optional[int] = None
    offset: int = 0
    limit: int = 50


class PendingSummary(BaseModel):
    """
    Approval backlog of one signer: how many transactions still wait on them
    and whether anything in their vaults is blocked on approvals at all.
    """

    of_user: int = 0
    transactions_blocked: bool = False
