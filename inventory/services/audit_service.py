import logging
from typing import Any, Dict

from django.db import transaction

from inventory.conf import engine_setting
from inventory.models import AuditEntry

logger = logging.getLogger(__name__)


class AuditService:
    """
    Best-effort side log of engine actions.

    Entries are written after the surrounding transaction commits; a failing
    audit write is logged and never reaches the caller.
    """

    @classmethod
    def record(cls, ctx, action: str, entity: str, entity_id: Any = "", details: Dict = None):
        if not engine_setting("AUDIT_ENABLED"):
            return

        payload = {
            "tenant_id": ctx.tenant_id,
            "actor_id": ctx.actor_id,
            "correlation_id": ctx.correlation_id,
            "action": action,
            "entity": entity,
            "entity_id": str(entity_id),
            "details": details or {},
        }
        transaction.on_commit(lambda: cls._write(payload))

    @classmethod
    def _write(cls, payload: Dict[str, Any]):
        try:
            AuditEntry.objects.create(**payload)
        except Exception:
            logger.exception(
                f"Audit write failed for {payload['action']} "
                f"{payload['entity']}:{payload['entity_id']} (cid={payload['correlation_id']})"
            )

    @classmethod
    def list(cls, ctx, entity: str = None, entity_id: Any = None, limit: int = 50):
        queryset = AuditEntry.objects.for_tenant(ctx.tenant_id)
        if entity:
            queryset = queryset.filter(entity=entity)
        if entity_id is not None:
            queryset = queryset.filter(entity_id=str(entity_id))
        return list(queryset[:limit])
