from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.contract.contract import ContractFunction

from config import get_settings
from core.domain.enums.tx_enums import GasStrategy
from core.services.exceptions import SubmissionError
from core.services.web3_cache import get_web3


class TxService:
    """
    Relayer transaction sender.

    Responsibilities:
    - Build, sign and broadcast contract calls from the relayer account.
    - Apply gas padding strategy.
    - Normalize the broadcast result so callers can persist it.

    It never waits for the receipt: finality is read later by the chain
    verifier.
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        *,
        w3: Optional[Web3] = None,
        private_key: Optional[str] = None,
        timeout_sec: int = 30,
    ):
        s = get_settings()
        self.w3 = w3 if w3 is not None else get_web3(rpc_url or s.RPC_URL_DEFAULT, timeout_sec=timeout_sec)
        self.pk = private_key if private_key is not None else s.PRIVATE_KEY
        if not self.pk:
            raise RuntimeError("PRIVATE_KEY is not configured; the relayer cannot sign transactions.")
        self.account = Account.from_key(self.pk)

    # ---------- internal helpers ----------

    def _next_nonce(self) -> int:
        return self.w3.eth.get_transaction_count(self.account.address, "pending")

    def _estimate_with_strategy(self, tx: dict, strategy: GasStrategy) -> int:
        """
        Calls estimateGas(tx) and applies a safety buffer depending on strategy.

        A failed estimation usually means the vault would revert (bad
        signatures, insufficient balance), so it is surfaced, not defaulted.
        """
        try:
            base_estimate = int(self.w3.eth.estimate_gas(tx))
        except Exception as exc:
            raise SubmissionError(str(exc) or exc.__class__.__name__, title="Gas estimation failed") from exc

        if strategy == GasStrategy.DEFAULT:
            return base_estimate
        if strategy == GasStrategy.BUFFERED:
            return int(base_estimate * 1.25) + 10_000
        if strategy == GasStrategy.AGGRESSIVE:
            return int(base_estimate * 1.5) + 25_000
        return base_estimate

    def _finalize_fee_fields(self, tx: dict) -> dict:
        """
        If the caller didn't specify EIP-1559 style fields, fallback to legacy gasPrice.
        """
        if "maxFeePerGas" in tx or "maxPriorityFeePerGas" in tx:
            return tx
        if "gasPrice" not in tx:
            tx["gasPrice"] = self.w3.eth.gas_price
        return tx

    def _build_tx_dict(self, fn: ContractFunction, value_wei: int) -> dict:
        """
        Builds the bare transaction dict with from/nonce/value.
        """
        base_tx = {
            "from": self.account.address,
            "nonce": self._next_nonce(),
            "value": int(value_wei or 0),
        }
        return fn.build_transaction(base_tx)

    def _sign_and_send(self, tx: dict) -> str:
        signed = self.w3.eth.account.sign_transaction(tx, self.pk)
        txh = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(txh)

    # ---------- public API ----------

    def send(
        self,
        fn: ContractFunction,
        *,
        value: int = 0,
        gas_limit: Optional[int] = None,
        gas_strategy: GasStrategy = GasStrategy.BUFFERED,
    ) -> dict:
        """
        Broadcasts a state-changing transaction for a given contract function.

        Returns:
            {
              "tx_hash": "0x..",
              "from": relayer address,
              "gas": {"limit": int, "price_wei": int},
              "ts": ISO-8601 UTC
            }

        Raises:
            SubmissionError: gas estimation failed.
            Exception: any web3/provider error while building or broadcasting.
        """
        tx = self._build_tx_dict(fn, value_wei=value)

        if gas_limit is not None:
            final_gas_limit = int(gas_limit)
        else:
            final_gas_limit = self._estimate_with_strategy(tx, gas_strategy)
        tx["gas"] = final_gas_limit

        tx = self._finalize_fee_fields(tx)
        gas_price_wei = int(tx.get("gasPrice", 0) or tx.get("maxFeePerGas", 0))

        tx_hash = self._sign_and_send(tx)

        return {
            "tx_hash": tx_hash,
            "from": self.account.address,
            "gas": {"limit": int(final_gas_limit), "price_wei": gas_price_wei},
            "ts": datetime.now(UTC).isoformat(),
        }
