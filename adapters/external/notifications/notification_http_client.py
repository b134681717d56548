from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

from config import get_settings


@dataclass
class NotificationHttpClient:
    """
    Posts signer events to the notification service.

    Raises RuntimeError on any non-2xx answer so the dispatcher can record the
    failed attempt.
    """

    base_url: str
    timeout_sec: float = 10.0
    transport: Optional[httpx.BaseTransport] = None

    @classmethod
    def from_settings(cls) -> "NotificationHttpClient":
        st = get_settings()
        return cls(base_url=(st.NOTIFICATIONS_URL or "").rstrip("/"))

    def notify(
        self,
        *,
        transaction_id: str,
        kind: str,
        recipients: List[str],
        summary: Dict[str, Optional[str]],
    ) -> None:
        url = f"{self.base_url}/api/notifications"
        payload = {
            "type": str(kind).upper(),
            "transaction_id": transaction_id,
            "recipients": list(recipients),
            "data": {
                "vaultId": summary.get("vault_id"),
                "vaultName": summary.get("vault_name"),
                "transactionId": summary.get("transaction_id"),
                "transactionName": summary.get("transaction_name"),
            },
        }

        with httpx.Client(timeout=self.timeout_sec, transport=self.transport) as cli:
            res = cli.post(url, json=payload)
            if res.status_code >= 400:
                try:
                    data = res.json() if res.content else {}
                except ValueError:
                    data = {}
                detail = (data.get("detail") or data.get("message")) if isinstance(data, dict) else None
                raise RuntimeError(detail or f"notifications_error_{res.status_code}")
