from .chain_gateway_interface import ChainSubmitterInterface, ChainVerifierInterface
from .notifier_interface import NotifierInterface
from .signature_verifier_interface import SignatureVerifierInterface

__all__ = [
    "ChainSubmitterInterface",
    "ChainVerifierInterface",
    "NotifierInterface",
    "SignatureVerifierInterface",
]
