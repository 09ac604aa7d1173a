import logging
from typing import Dict, Any, Optional, List, Tuple

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from inventory.models import StockRecord, StockMovement, ProductVariant, Location
from inventory.services.audit_service import AuditService
from inventory.services.base_service import (
    BaseService, service_operation, to_quantity, to_id,
    ValidationError, NotFoundError, BusinessRuleError
)
from inventory.services.movement_service import MovementLogService

logger = logging.getLogger(__name__)


def channel_buffers_of(record: StockRecord) -> Dict[str, int]:
    try:
        return record.buffers
    except DjangoValidationError as e:
        raise ValidationError(
            f"Corrupt channel buffers on stock record {record.id}",
            "channel_buffers",
            {"errors": e.messages},
        ) from e


class StockRecordService(BaseService):
    """
    Per (variant, location) stock rows.

    Every mutation locks the row with ``select_for_update`` inside the
    caller's transaction, so concurrent writers on the same record
    serialize in the database.
    """

    model = StockRecord

    @classmethod
    def serialize(cls, record: StockRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "variant_id": record.variant_id,
            "location_id": record.location_id,
            "on_hand": record.on_hand,
            "reserved": record.reserved,
            "available": record.available,
            "safety_stock": record.safety_stock,
            "channel_buffers": channel_buffers_of(record),
            "last_counted_at": record.last_counted_at.isoformat() if record.last_counted_at else None,
        }

    @classmethod
    def get(cls, ctx, variant_id: int, location_id: int) -> Optional[StockRecord]:
        return cls.for_tenant(ctx).filter(variant_id=variant_id, location_id=location_id).first()

    @classmethod
    def list_for_variant(cls, ctx, variant_id: int, location_id: int = None) -> List[StockRecord]:
        queryset = cls.for_tenant(ctx).filter(variant_id=variant_id)
        if location_id:
            queryset = queryset.filter(location_id=location_id)
        return list(queryset.order_by("location__priority", "location_id"))

    @classmethod
    def resolve_refs(cls, ctx, variant_id: int, location_id: int) -> Tuple[ProductVariant, Location]:
        variant_id = to_id(variant_id, "variant_id")
        location_id = to_id(location_id, "location_id")

        variant = ProductVariant.objects.for_tenant(ctx.tenant_id).filter(id=variant_id).first()
        if not variant:
            raise NotFoundError("Variant", variant_id)

        location = Location.objects.for_tenant(ctx.tenant_id).filter(id=location_id).first()
        if not location:
            raise NotFoundError("Location", location_id)

        return variant, location

    @classmethod
    def lock(cls, ctx, variant_id: int, location_id: int, create: bool = True) -> Optional[StockRecord]:
        """Row-locked record, created zeroed when the pair has none yet."""
        if not transaction.get_connection().in_atomic_block:
            raise RuntimeError("Stock records can only be locked inside a transaction")

        queryset = cls.for_tenant(ctx).select_for_update()
        if not create:
            return queryset.filter(variant_id=variant_id, location_id=location_id).first()

        record, created = queryset.get_or_create(
            tenant_id=ctx.tenant_id,
            variant_id=variant_id,
            location_id=location_id,
        )
        if created:
            logger.debug(f"[{ctx}] Created stock record variant={variant_id} location={location_id}")
        return record

    @classmethod
    def _apply(cls, ctx, record: StockRecord, delta: int, reason: str, reference: str = "",
               counted: bool = False) -> StockRecord:
        requested = record.on_hand + delta
        # on_hand never drops below what is already held by reservations
        new_on_hand = max(record.reserved, requested)

        if new_on_hand != requested:
            logger.warning(
                f"[{ctx}] Clamped on-hand for variant={record.variant_id} "
                f"location={record.location_id}: requested {requested}, set to {new_on_hand}"
            )

        applied = new_on_hand - record.on_hand
        update_fields = ["updated_at"]

        if applied:
            record.on_hand = new_on_hand
            update_fields.append("on_hand")
        if counted:
            record.last_counted_at = timezone.now()
            update_fields.append("last_counted_at")

        if len(update_fields) > 1:
            record.save(update_fields=update_fields)

        if applied:
            MovementLogService.append(
                ctx,
                record.variant_id,
                record.location_id,
                StockMovement.Direction.IN if applied > 0 else StockMovement.Direction.OUT,
                abs(applied),
                reason,
                reference,
            )

        return record

    @classmethod
    @service_operation("stock.apply_delta")
    def apply_delta(cls,
                    ctx,
                    variant_id: int,
                    location_id: int,
                    delta: int,
                    reason: str = StockMovement.Reason.ADJUSTMENT,
                    reference: str = "") -> StockRecord:
        delta = to_quantity(delta, "delta", allow_zero=True, allow_negative=True)
        if not reason:
            raise ValidationError("Reason is required", "reason")

        with transaction.atomic():
            variant, location = cls.resolve_refs(ctx, variant_id, location_id)
            record = cls.lock(ctx, variant.id, location.id)
            return cls._apply(ctx, record, delta, reason, reference)

    @classmethod
    @service_operation("stock.set_level")
    def set_level(cls,
                  ctx,
                  variant_id: int,
                  location_id: int,
                  quantity: int,
                  reason: str = StockMovement.Reason.ADJUSTMENT,
                  reference: str = None) -> StockRecord:
        quantity = to_quantity(quantity, allow_zero=True)
        if not reason:
            raise ValidationError("Reason is required", "reason")

        with transaction.atomic():
            variant, location = cls.resolve_refs(ctx, variant_id, location_id)
            record = cls.lock(ctx, variant.id, location.id)

            if quantity < record.reserved:
                raise BusinessRuleError(
                    f"Cannot set on-hand to {quantity}: {record.reserved} units are reserved",
                    "reserved_lte_on_hand"
                )

            previous = record.on_hand
            record = cls._apply(
                ctx, record, quantity - previous, reason,
                reference or f"Set to {quantity}", counted=True
            )
            AuditService.record(ctx, "stock.level_set", "stock_record", record.id, {
                "previous": previous, "quantity": quantity, "reason": reason,
            })

        logger.info(
            f"[{ctx}] Level set variant={variant_id} location={location_id}: {previous} -> {quantity}"
        )
        return record

    @classmethod
    @service_operation("stock.set_safety_stock")
    def set_safety_stock(cls, ctx, variant_id: int, location_id: int, quantity: int) -> StockRecord:
        quantity = to_quantity(quantity, "safety_stock", allow_zero=True)

        with transaction.atomic():
            variant, location = cls.resolve_refs(ctx, variant_id, location_id)
            record = cls.lock(ctx, variant.id, location.id)
            record.safety_stock = quantity
            record.save(update_fields=["safety_stock", "updated_at"])

        return record

    @classmethod
    @service_operation("stock.set_channel_buffer")
    def set_channel_buffer(cls, ctx, variant_id: int, location_id: int,
                           channel: str, quantity: int) -> StockRecord:
        """Hold ``quantity`` units back for ``channel``; zero removes the buffer."""
        if not channel or not isinstance(channel, str):
            raise ValidationError("Channel is required", "channel")
        quantity = to_quantity(quantity, "buffer", allow_zero=True)

        with transaction.atomic():
            variant, location = cls.resolve_refs(ctx, variant_id, location_id)
            record = cls.lock(ctx, variant.id, location.id)

            buffers = channel_buffers_of(record)
            if quantity:
                buffers[channel] = quantity
            else:
                buffers.pop(channel, None)

            record.channel_buffers = buffers
            record.save(update_fields=["channel_buffers", "updated_at"])

        return record
