import uuid
from dataclasses import dataclass, field


SYSTEM_ACTOR = "system"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class RequestContext:
    """
    Identity of the caller, passed explicitly to every engine operation.

    tenant_id scopes every query; actor_id is stamped on movements and
    reservations; correlation_id ties log lines and audit entries together.
    """

    tenant_id: str
    actor_id: str
    correlation_id: str = field(default_factory=new_correlation_id)

    def __post_init__(self):
        from inventory.services.base_service import ValidationError

        if not self.tenant_id or not str(self.tenant_id).strip():
            raise ValidationError("Tenant id is required", "tenant_id")
        if not self.actor_id:
            raise ValidationError("Actor id is required", "actor_id")

    @classmethod
    def system(cls, tenant_id: str) -> "RequestContext":
        return cls(tenant_id=tenant_id, actor_id=SYSTEM_ACTOR)

    def __str__(self):
        return f"tenant={self.tenant_id} actor={self.actor_id} cid={self.correlation_id}"
