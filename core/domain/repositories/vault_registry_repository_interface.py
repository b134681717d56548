from __future__ import annotations

from typing import Optional, Protocol

from core.domain.entities.vault_registry_entity import VaultRegistryEntity


class VaultRegistryRepositoryInterface(Protocol):
    """
    Read-only access to vault definitions.
    """

    def find_by_address(self, address: str) -> Optional[VaultRegistryEntity]:
        ...

    def find_by_id(self, vault_id: str) -> Optional[VaultRegistryEntity]:
        ...
