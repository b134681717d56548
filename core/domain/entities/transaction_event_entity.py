from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from core.domain.enums.tx_enums import SignerEventKind

from .base_entity import MongoEntity


class TransactionEventEntity(MongoEntity):
    """
    Collection: transaction_events

    Outbox of signer notifications produced by committed state transitions.

    Idempotency key: (transaction_id, kind, transaction_version)
    """

    transaction_id: str
    transaction_version: int
    kind: SignerEventKind

    recipients: List[str] = Field(default_factory=list)
    summary: Dict[str, Optional[str]] = Field(default_factory=dict)

    delivered: bool = False
    attempts: int = 0
    last_error: Optional[str] = None

    model_config = ConfigDict(extra="allow", use_enum_values=True)
