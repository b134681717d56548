from typing import Sequence

from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction


ABI_VAULT_EXECUTOR = [
    # ---- witnessed execution
    {"name": "execTransaction", "inputs": [
        {"type": "address", "name": "to"},
        {"type": "uint256", "name": "value"},
        {"type": "bytes", "name": "data"},
        {"type": "bytes", "name": "signatures"},
    ], "outputs": [{"type": "bool", "name": "success"}], "stateMutability": "payable", "type": "function"},
]


def pack_signatures(signatures: Sequence[str]) -> bytes:
    """
    Concatenate 65-byte signatures positionally. The vault contract checks
    them against its owner list in the same order.
    """
    out = b""
    for sig in signatures:
        raw = bytes(HexBytes(sig))
        if len(raw) != 65:
            raise ValueError(f"signature must be 65 bytes, got {len(raw)}")
        out += raw
    return out


class VaultExecutorAdapter:
    def __init__(self, w3: Web3, address: str):
        if not address:
            raise RuntimeError("VaultExecutorAdapter: address not configured")
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.contract: Contract = w3.eth.contract(address=self.address, abi=ABI_VAULT_EXECUTOR)

    # ---------------- tx builders ----------------

    def fn_exec_transaction(self, *, to: str, value: int, data: bytes, signatures: bytes) -> ContractFunction:
        return self.contract.functions.execTransaction(
            Web3.to_checksum_address(to),
            int(value),
            data,
            signatures,
        )
