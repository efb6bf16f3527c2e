"""
ActorContext -- who is calling, on behalf of which tenant.

Supplied by the identity/tenant resolver that sits in front of the core.
Every service operation takes one; the store scopes every read and write
to ``tenant_id`` and stamps ``actor_id`` as creator/updater.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class ActorContext:
    tenant_id: UUID
    actor_id: UUID
    correlation_id: str | None = None

    def log_fields(self) -> dict[str, str | None]:
        return {
            "tenant_id": str(self.tenant_id),
            "actor_id": str(self.actor_id),
            "correlation_id": self.correlation_id,
        }
