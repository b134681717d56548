from __future__ import annotations

from eth_account import Account
from eth_account.messages import encode_defunct
from hexbytes import HexBytes

from core.services.exceptions import VerificationError
from core.services.normalize import _norm, _norm_lower


class EthSignatureVerifier:
    """
    Checks EIP-191 personal-sign signatures over a transaction content hash.

    The signed message is the raw 32 bytes of the hash, which is what
    wallets produce for `personal_sign(hash)`.
    """

    def recover(self, tx_hash: str, signature: str) -> str:
        try:
            message = encode_defunct(hexstr=_norm(tx_hash))
            return Account.recover_message(message, signature=HexBytes(_norm(signature)))
        except Exception as exc:
            raise VerificationError(f"Could not recover signer: {exc}") from exc

    def verify(self, tx_hash: str, signature: str, claimed_address: str) -> bool:
        """
        Returns True when `signature` was produced by `claimed_address`.

        Raises:
            VerificationError: malformed hash or signature.
        """
        if not _norm(signature):
            return False
        recovered = self.recover(tx_hash, signature)
        return _norm_lower(recovered) == _norm_lower(claimed_address)
