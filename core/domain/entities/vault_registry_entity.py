from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.schemas.vault_inputs import VaultInfo, VaultMember

from .base_entity import MongoEntity


class VaultMemberDoc(BaseModel):
    id: str
    address: str

    model_config = ConfigDict(extra="allow")


class VaultRegistryEntity(MongoEntity):
    """
    Collection: vault_registry

    Multi-signer vault definition. Owned by the membership subsystem; the
    transaction coordinator only reads it to snapshot a `VaultInfo` at
    transaction creation.
    """

    address: str
    name: str
    chain: Optional[str] = None
    rpc_url: Optional[str] = None

    required_signers: int
    signers: List[str] = Field(default_factory=list)
    members: List[VaultMemberDoc] = Field(default_factory=list)

    is_active: bool = True

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    def to_vault_info(self) -> VaultInfo:
        return VaultInfo(
            id=str(self.id),
            address=self.address,
            name=self.name,
            chain=self.chain,
            rpc_url=self.rpc_url,
            required_signers=int(self.required_signers),
            signers=list(self.signers),
            members=[VaultMember(id=m.id, address=m.address) for m in self.members],
        )
