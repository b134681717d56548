from __future__ import annotations

from functools import lru_cache
from typing import Any, Set

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from privy import PrivyAPI

from config import get_settings
from core.domain.schemas.vault_inputs import Actor

bearer = HTTPBearer(auto_error=False)


@lru_cache(maxsize=1)
def _admin_allowlist() -> Set[str]:
    return {w.lower() for w in get_settings().ADMIN_WALLETS}


@lru_cache(maxsize=1)
def _privy_client() -> PrivyAPI:
    s = get_settings()
    if not s.PRIVY_APP_ID:
        raise RuntimeError("Missing settings.PRIVY_APP_ID")
    if not s.PRIVY_APP_SECRET:
        raise RuntimeError("Missing settings.PRIVY_APP_SECRET")
    return PrivyAPI(app_id=s.PRIVY_APP_ID, app_secret=s.PRIVY_APP_SECRET)


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _is_address(v: Any) -> bool:
    return isinstance(v, str) and v.startswith("0x")


def wallet_of(user: Any) -> str:
    """
    First Ethereum address found on a Privy user, checking the direct
    fields, then `wallet`, `wallets` and finally `linked_accounts`.
    """
    for key in ("wallet_address", "address"):
        if _is_address(_get(user, key)):
            return _get(user, key)

    wallet = _get(user, "wallet")
    addr = _get(wallet, "address") or _get(wallet, "wallet_address")
    if _is_address(addr):
        return addr

    for w in _get(user, "wallets") or []:
        addr = _get(w, "address") or _get(w, "wallet_address")
        if _is_address(addr):
            return addr

    for acc in _get(user, "linked_accounts") or []:
        addr = _get(acc, "address") or _get(acc, "wallet_address")
        if (_get(acc, "type") or "").lower() == "wallet" and _is_address(addr):
            return addr

    return ""


def _fetch_user(client: PrivyAPI, did: str) -> Any:
    users = client.users
    for name, kwargs in (("get", None), ("get_by_id", {"user_id": did}), ("retrieve", {"user_id": did})):
        fn = getattr(users, name, None)
        if callable(fn):
            return fn(did) if kwargs is None else fn(**kwargs)
    raise RuntimeError("Privy SDK does not expose a method to fetch a user by DID.")


def require_actor(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Actor:
    """
    Resolve the caller from a Privy access token. The Privy DID is the vault
    member id; admin privilege comes from the ADMIN_WALLETS allowlist.
    """
    if not creds or not creds.credentials:
        raise HTTPException(status_code=401, detail="Missing Authorization bearer token.")

    try:
        client = _privy_client()
        claims = client.users.verify_access_token(auth_token=creds.credentials)

        did = str(_get(claims, "user_id") or "")
        if not did:
            raise HTTPException(status_code=401, detail="Invalid token (missing user_id).")

        wallet = wallet_of(_fetch_user(client, did)).lower()
        if not wallet:
            raise HTTPException(status_code=403, detail="Token verified but user has no linked wallet address.")

        return Actor(member_id=did, address=wallet, is_admin=wallet in _admin_allowlist())

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=401, detail=f"Authentication failed: {str(e) or 'invalid token'}") from e


def require_admin(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized (wallet not allowlisted).")
    return actor
