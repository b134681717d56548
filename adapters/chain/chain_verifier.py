from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound

from config import get_settings
from core.domain.enums.tx_enums import ChainOutcome
from core.domain.schemas.chain_types import VerificationOutcome
from core.services.exceptions import VerificationError
from core.services.web3_cache import get_web3


def format_fee_eth(gas_used: int, effective_price_wei: int) -> str:
    """
    gasUsed * effectiveGasPrice in ether, as a plain decimal string.
    """
    wei = Decimal(int(gas_used or 0)) * Decimal(int(effective_price_wei or 0))
    eth = wei / Decimal(10**18)
    if eth == 0:
        return "0"
    return format(eth.normalize(), "f")


@dataclass
class Web3ChainVerifier:
    default_rpc_url: str
    timeout_sec: int = 15
    w3: Optional[Web3] = None

    @classmethod
    def from_settings(cls) -> "Web3ChainVerifier":
        s = get_settings()
        return cls(default_rpc_url=s.RPC_URL_DEFAULT, timeout_sec=s.CHAIN_VERIFY_TIMEOUT_SEC)

    def _web3(self, rpc_url: Optional[str]) -> Web3:
        if self.w3 is not None:
            return self.w3
        return get_web3(rpc_url or self.default_rpc_url, timeout_sec=self.timeout_sec)

    def fetch_status(self, chain_tx_id: str, *, rpc_url: Optional[str] = None) -> VerificationOutcome:
        """
        Receipt not found yet -> PENDING; status 1 -> SUCCESS; status 0 -> FAILED.

        Raises:
            VerificationError: provider unreachable or malformed response.
        """
        try:
            w3 = self._web3(rpc_url)
            rcpt = dict(w3.eth.get_transaction_receipt(chain_tx_id))
        except TransactionNotFound:
            return VerificationOutcome(status=ChainOutcome.PENDING)
        except Exception as exc:
            raise VerificationError(str(exc) or exc.__class__.__name__) from exc

        try:
            status = int(rcpt.get("status", 0))
            fee = format_fee_eth(rcpt.get("gasUsed") or 0, rcpt.get("effectiveGasPrice") or 0)
        except (TypeError, ValueError) as exc:
            raise VerificationError(f"Malformed receipt for {chain_tx_id}: {exc}") from exc

        return VerificationOutcome(
            status=ChainOutcome.SUCCESS if status == 1 else ChainOutcome.FAILED,
            fee_used=fee,
        )
