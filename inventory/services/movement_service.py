import logging
from typing import Dict, Any

from django.db import transaction

from inventory.conf import engine_setting
from inventory.models import StockMovement
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, ValidationError, to_quantity, to_id
)

logger = logging.getLogger(__name__)


class MovementLogService(BaseService):
    """Append-only trail of every quantity change."""

    model = StockMovement

    @classmethod
    def serialize(cls, movement: StockMovement) -> Dict[str, Any]:
        return {
            "id": movement.id,
            "variant_id": movement.variant_id,
            "location_id": movement.location_id,
            "direction": movement.direction,
            "quantity": movement.quantity,
            "reason": movement.reason,
            "reference": movement.reference,
            "actor_id": movement.actor_id,
            "correlation_id": movement.correlation_id,
            "created_at": movement.created_at.isoformat(),
        }

    @classmethod
    def append(cls, ctx, variant_id: int, location_id: int, direction: str,
               quantity: int, reason: str, reference: str = "") -> StockMovement:
        if not transaction.get_connection().in_atomic_block:
            raise RuntimeError("Stock movements must be appended inside the mutating transaction")

        if direction not in StockMovement.Direction.values:
            raise ValidationError(f"Invalid direction: {direction}", "direction")
        quantity = to_quantity(quantity)
        if not reason:
            raise ValidationError("Movement reason is required", "reason")

        movement = StockMovement.objects.create(
            tenant_id=ctx.tenant_id,
            variant_id=variant_id,
            location_id=location_id,
            direction=direction,
            quantity=quantity,
            reason=reason,
            reference=reference or "",
            actor_id=ctx.actor_id,
            correlation_id=ctx.correlation_id,
        )
        logger.debug(
            f"[{ctx}] Movement {direction} {quantity} ({reason}) "
            f"variant={variant_id} location={location_id}"
        )
        return movement

    @classmethod
    def history(cls,
                ctx,
                variant_id: int = None,
                location_id: int = None,
                reason: str = None,
                page: int = 1,
                per_page: int = None) -> Dict[str, Any]:
        queryset = cls.for_tenant(ctx)

        if variant_id:
            queryset = queryset.filter(variant_id=to_id(variant_id, "variant_id"))
        if location_id:
            queryset = queryset.filter(location_id=to_id(location_id, "location_id"))
        if reason:
            queryset = queryset.filter(reason=reason)

        queryset = queryset.order_by("-created_at", "-id")
        movements, pagination = paginate_queryset(
            queryset, page, per_page or engine_setting("HISTORY_PAGE_SIZE")
        )

        return success_response({
            "movements": [cls.serialize(m) for m in movements],
            "pagination": pagination,
        })

