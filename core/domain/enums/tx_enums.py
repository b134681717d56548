from __future__ import annotations

from enum import StrEnum


class GasStrategy(StrEnum):
    """
    Gas strategy selector for TxService calls.
    """

    DEFAULT = "default"
    BUFFERED = "buffered"
    AGGRESSIVE = "aggressive"


class TransactionStatus(StrEnum):
    """
    Lifecycle of a vault transaction.

    SUBMITTING is the guard state held while the chain call is in flight.
    """

    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_SUBMISSION = "awaiting_submission"
    SUBMITTING = "submitting"
    SUBMISSION_FAILED = "submission_failed"
    AWAITING_CHAIN_CONFIRMATION = "awaiting_chain_confirmation"
    CONFIRMED_SUCCESS = "confirmed_success"
    CONFIRMED_FAILED = "confirmed_failed"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.CONFIRMED_SUCCESS,
        TransactionStatus.CONFIRMED_FAILED,
        TransactionStatus.REJECTED,
    }
)


class WitnessStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChainOutcome(StrEnum):
    """
    Result of reading a submitted transaction back from the chain.
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class SignerEventKind(StrEnum):
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_SIGNED = "transaction_signed"
    TRANSACTION_DECLINED = "transaction_declined"
    TRANSACTION_COMPLETED = "transaction_completed"


class TransactionHistoryType(StrEnum):
    CREATED = "created"
    SIGN = "sign"
    DECLINE = "decline"
    SEND = "send"
    FAILED = "failed"


class OrderBy(StrEnum):
    UPDATED_AT = "updated_at"
    CREATED_AT = "created_at"
    NAME = "name"
    STATUS = "status"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"
