import enum
from dataclasses import dataclass
from typing import Optional

CENTRAL_REALM = "central"


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class ContextKind(str, enum.Enum):
    CENTRAL = "central"
    TENANT = "tenant"


@dataclass(frozen=True)
class AuthContext:
    """
    Which side of the system an authentication belongs to.

    Central admins and tenant users live in separate realms, and every token
    ability is namespaced with the realm so a token issued for one context
    is never honoured by another.
    """
    kind: ContextKind
    tenant_id: Optional[str] = None

    def __post_init__(self):
        if self.kind is ContextKind.TENANT and not self.tenant_id:
            raise ValueError("Tenant context requires a tenant_id")
        if self.kind is ContextKind.CENTRAL and self.tenant_id is not None:
            raise ValueError("Central context cannot carry a tenant_id")

    @classmethod
    def central(cls) -> "AuthContext":
        return cls(ContextKind.CENTRAL)

    @classmethod
    def tenant(cls, tenant_id: str) -> "AuthContext":
        return cls(ContextKind.TENANT, str(tenant_id))

    @property
    def is_central(self) -> bool:
        return self.kind is ContextKind.CENTRAL

    @property
    def realm(self) -> str:
        if self.is_central:
            return CENTRAL_REALM
        return f"tenant:{self.tenant_id}"

    @property
    def ability_prefix(self) -> str:
        return self.realm + ":"

    def namespace(self, ability: str) -> str:
        return self.ability_prefix + ability

    def owns(self, ability: str) -> bool:
        return isinstance(ability, str) and ability.startswith(self.ability_prefix)

    def allows(self, abilities, ability: str) -> bool:
        """True if ``abilities`` grants the un-namespaced ``ability`` here."""
        wanted = {self.namespace("*"), self.namespace(ability)}
        return any(a in wanted for a in abilities or [])
