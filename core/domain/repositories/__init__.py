from .transaction_repository_interface import TransactionRepositoryInterface
from .transaction_events_repository_interface import TransactionEventsRepositoryInterface
from .vault_registry_repository_interface import VaultRegistryRepositoryInterface

__all__ = [
    "TransactionRepositoryInterface",
    "TransactionEventsRepositoryInterface",
    "VaultRegistryRepositoryInterface",
]
