from __future__ import annotations

from typing import Any, Dict, Optional


class TransactionCoordinatorError(Exception):
    """
    Base class of every error surfaced by the transaction coordinator.

    Each subclass carries a stable `kind` so the entry layer can map it to a
    response without string matching.
    """

    kind: str = "internal"
    default_title: str = "Unexpected error"

    def __init__(self, detail: str, *, title: Optional[str] = None) -> None:
        self.title = title or self.default_title
        self.detail = detail
        super().__init__(f"{self.title}: {detail}")

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "title": self.title, "detail": self.detail}


class PermissionDeniedError(TransactionCoordinatorError):
    kind = "permission_denied"
    default_title = "Missing permission"


class NotFoundError(TransactionCoordinatorError):
    kind = "not_found"
    default_title = "Not found"


class InvalidSignatureError(TransactionCoordinatorError):
    kind = "invalid_signature"
    default_title = "Invalid signature"


class InvalidStateError(TransactionCoordinatorError):
    kind = "invalid_state"
    default_title = "Invalid transaction state"


class SubmissionError(TransactionCoordinatorError):
    """
    Chain submission failed (network error, rejected by the node, gas
    estimation failure or timeout). Never retried automatically.
    """

    kind = "submission_error"
    default_title = "Error on transaction submission"


class VerificationError(TransactionCoordinatorError):
    """
    Transient failure while reading chain state or verifying a signature.
    """

    kind = "verification_error"
    default_title = "Error on chain verification"


class InternalError(TransactionCoordinatorError):
    kind = "internal"
    default_title = "Internal error"
