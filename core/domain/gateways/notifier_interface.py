from __future__ import annotations

from typing import Dict, List, Optional, Protocol


class NotifierInterface(Protocol):
    """
    Best-effort delivery of signer events to the notification collaborator.
    """

    def notify(
        self,
        *,
        transaction_id: str,
        kind: str,
        recipients: List[str],
        summary: Dict[str, Optional[str]],
    ) -> None:
        ...
