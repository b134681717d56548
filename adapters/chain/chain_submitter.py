from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from hexbytes import HexBytes
from web3 import Web3

from adapters.chain.vault_executor import VaultExecutorAdapter, pack_signatures
from config import get_settings
from core.domain.enums.tx_enums import GasStrategy
from core.domain.schemas.chain_types import ChainHandle, WitnessedPayload
from core.services.exceptions import SubmissionError
from core.services.tx_service import TxService

logger = logging.getLogger(__name__)


def _parse_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    s = str(value).strip()
    return int(s, 16) if s.lower().startswith("0x") else int(s)


def decode_call(tx_data: Dict[str, Any]) -> Tuple[str, int, bytes]:
    """
    Extract (to, value, data) from the opaque transaction payload.
    """
    to = str((tx_data or {}).get("to") or "").strip()
    if not Web3.is_address(to):
        raise ValueError("tx_data.to must be a valid address")
    value = _parse_int(tx_data.get("value"))
    if value < 0:
        raise ValueError("tx_data.value must be >= 0")
    data = bytes(HexBytes(tx_data.get("data") or "0x"))
    return Web3.to_checksum_address(to), value, data


@dataclass
class Web3ChainSubmitter:
    """
    Submits a witnessed payload through the vault's `execTransaction`,
    paid by the relayer account.

    Any failure (bad payload, gas estimation, provider error) is raised as
    SubmissionError; the coordinator decides what to persist.
    """

    default_rpc_url: str
    private_key: str
    timeout_sec: int = 30
    gas_strategy: GasStrategy = GasStrategy.BUFFERED

    @classmethod
    def from_settings(cls) -> "Web3ChainSubmitter":
        s = get_settings()
        return cls(
            default_rpc_url=s.RPC_URL_DEFAULT,
            private_key=s.PRIVATE_KEY,
            timeout_sec=s.CHAIN_SUBMIT_TIMEOUT_SEC,
        )

    def _tx_service(self, rpc_url: Optional[str]) -> TxService:
        return TxService(
            rpc_url or self.default_rpc_url,
            private_key=self.private_key,
            timeout_sec=self.timeout_sec,
        )

    def submit(self, payload: WitnessedPayload) -> ChainHandle:
        try:
            to, value, data = decode_call(payload.tx_data)
            signatures = pack_signatures(payload.witnesses)

            txs = self._tx_service(payload.rpc_url)
            vault = VaultExecutorAdapter(txs.w3, payload.vault_address)
            fn = vault.fn_exec_transaction(to=to, value=value, data=data, signatures=signatures)

            res = txs.send(fn, gas_strategy=self.gas_strategy)
        except SubmissionError:
            raise
        except Exception as exc:
            raise SubmissionError(str(exc) or exc.__class__.__name__) from exc

        tx_hash = (res or {}).get("tx_hash")
        if not tx_hash:
            raise SubmissionError("Broadcast returned no transaction hash.")

        logger.info(
            "Transaction %s broadcast via vault %s: chain_tx_id=%s",
            payload.transaction_id,
            payload.vault_address,
            tx_hash,
        )
        return ChainHandle(chain_tx_id=str(tx_hash))
