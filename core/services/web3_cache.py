# core/services/web3_cache.py

from __future__ import annotations

from threading import Lock
from time import time
from typing import Dict, Tuple

from web3 import Web3
from web3.providers.rpc import HTTPProvider

_W3_CACHE: Dict[Tuple[str, int], Tuple[float, Web3]] = {}
_W3_LOCK = Lock()
_W3_TTL_SEC = 10 * 60  # 10 minutes


def get_web3(rpc_url: str, *, timeout_sec: int = 30) -> Web3:
    """
    Cache Web3 instances per (rpc_url, timeout) to avoid rebuilding
    HTTPProvider on every submission or verification.

    The provider timeout bounds each JSON-RPC request on its own.
    """
    url = (rpc_url or "").strip()
    if not url:
        raise ValueError("rpc_url is required")

    key = (url, int(timeout_sec))
    now = time()
    with _W3_LOCK:
        hit = _W3_CACHE.get(key)
        if hit and (now - hit[0]) < _W3_TTL_SEC:
            return hit[1]

        w3 = Web3(HTTPProvider(url, request_kwargs={"timeout": int(timeout_sec)}))
        _W3_CACHE[key] = (now, w3)
        return w3
