from __future__ import annotations

from typing import List, Optional, Sequence

from core.domain.entities.transaction_entity import WitnessEntry
from core.domain.enums.tx_enums import WitnessStatus
from core.services.normalize import _norm, _norm_lower


def open_ledger(signers: Sequence[str]) -> List[WitnessEntry]:
    """
    One pending entry per distinct signer, in the given (canonical) order.
    """
    entries: List[WitnessEntry] = []
    seen = set()
    for s in signers:
        account = _norm_lower(s)
        if not account:
            raise ValueError("signer address must not be empty")
        if account in seen:
            raise ValueError(f"duplicate signer address: {account}")
        seen.add(account)
        entries.append(WitnessEntry(account=account, status=WitnessStatus.PENDING))
    return entries


def find_entry(witnesses: Sequence[WitnessEntry], account: str) -> Optional[WitnessEntry]:
    key = _norm_lower(account)
    for w in witnesses:
        if w.account == key:
            return w
    return None


def apply_response(
    witnesses: Sequence[WitnessEntry],
    *,
    account: str,
    accept: bool,
    signature: Optional[str],
    at_ms: int,
) -> List[WitnessEntry]:
    """
    Return a new ledger with `account` resolved to approved or rejected.

    The caller has already checked the entry exists and is still pending.
    """
    key = _norm_lower(account)
    sig = _norm(signature) or None
    if accept and not sig:
        raise ValueError("approval requires a signature")

    out: List[WitnessEntry] = []
    for w in witnesses:
        if w.account != key:
            out.append(w.model_copy())
            continue
        out.append(
            WitnessEntry(
                account=w.account,
                status=WitnessStatus.APPROVED if accept else WitnessStatus.REJECTED,
                signature=sig if accept else None,
                updated_at=at_ms,
            )
        )
    return out


def ordered_signatures(witnesses: Sequence[WitnessEntry], canonical_order: Sequence[str]) -> List[str]:
    """
    Approved signatures reordered to the vault's canonical signer order.

    Accounts missing from the canonical order are appended last in ledger
    order so nothing collected is dropped.
    """
    by_account = {
        w.account: w.signature
        for w in witnesses
        if w.status == WitnessStatus.APPROVED and w.signature
    }

    out: List[str] = []
    for s in canonical_order:
        sig = by_account.pop(_norm_lower(s), None)
        if sig:
            out.append(sig)
    for w in witnesses:
        sig = by_account.pop(w.account, None)
        if sig:
            out.append(sig)
    return out
