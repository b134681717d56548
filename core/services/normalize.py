from __future__ import annotations

import re

_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")


def _norm(a: str | None) -> str:
    return (a or "").strip()


def _norm_lower(a: str | None) -> str:
    return _norm(a).lower()


def _norm_hash(h: str | None) -> str:
    """
    Normalize a 32-byte content hash to lowercase 0x-prefixed hex.
    """
    v = _norm_lower(h)
    if v and not v.startswith("0x"):
        v = "0x" + v
    if not _HASH_RE.match(v):
        raise ValueError("hash must be a 32-byte hex string")
    return v

