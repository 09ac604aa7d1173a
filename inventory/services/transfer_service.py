"""
Transfer Service - move stock of one variant between two locations
"""
import logging
from collections import defaultdict
from typing import Dict, Any, List

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from inventory.models import Transfer, StockMovement, StockRecord, ProductVariant
from inventory.services.audit_service import AuditService
from inventory.services.base_service import (
    BaseService, service_operation, to_quantity, to_id, generate_number,
    ValidationError, NotFoundError, BusinessRuleError, InsufficientStockError
)
from inventory.services.location_service import LocationService
from inventory.services.movement_service import MovementLogService
from inventory.services.record_service import StockRecordService

logger = logging.getLogger(__name__)

# Suggestion thresholds, in units above / below safety stock
EXCESS_MARGIN = 10
KEEP_MARGIN = 5
SHORTAGE_TOP_UP = 5


class TransferService(BaseService):
    """
    Pending and in-transit transfers hold no stock; completion moves both
    sides in one transaction or not at all.
    """

    model = Transfer

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize(cls, transfer: Transfer) -> Dict[str, Any]:
        return {
            "id": transfer.id,
            "uuid": str(transfer.uuid),
            "transfer_number": transfer.transfer_number,
            "variant_id": transfer.variant_id,
            "from_location_id": transfer.from_location_id,
            "to_location_id": transfer.to_location_id,
            "quantity": transfer.quantity,
            "status": transfer.status,
            "status_display": transfer.get_status_display(),
            "reason": transfer.reason,
            "reference": transfer.reference,
            "notes": transfer.notes,
            "created_by": transfer.created_by,
            "completed_by": transfer.completed_by or None,
            "created_at": transfer.created_at.isoformat(),
            "shipped_at": transfer.shipped_at.isoformat() if transfer.shipped_at else None,
            "completed_at": transfer.completed_at.isoformat() if transfer.completed_at else None,
            "cancelled_at": transfer.cancelled_at.isoformat() if transfer.cancelled_at else None,
        }

    @classmethod
    def history(cls, ctx, variant_id: int = None, location_id: int = None,
                limit: int = 50) -> List[Dict[str, Any]]:
        queryset = cls.for_tenant(ctx)

        if variant_id:
            queryset = queryset.filter(variant_id=to_id(variant_id, "variant_id"))
        if location_id:
            location_id = to_id(location_id, "location_id")
            queryset = queryset.filter(Q(from_location_id=location_id) | Q(to_location_id=location_id))

        return [cls.serialize(t) for t in queryset.order_by("-created_at", "-id")[:limit]]

    # ==================== LIFECYCLE ====================

    @classmethod
    @service_operation("transfer.create")
    def create(cls,
               ctx,
               variant_id: int,
               from_location_id: int,
               to_location_id: int,
               quantity: int,
               reason: str = "",
               reference: str = "",
               notes: str = "") -> Transfer:
        variant_id = to_id(variant_id, "variant_id")
        from_location_id = to_id(from_location_id, "from_location_id")
        to_location_id = to_id(to_location_id, "to_location_id")
        quantity = to_quantity(quantity)

        if from_location_id == to_location_id:
            raise ValidationError("Cannot transfer to same location", "to_location_id")

        if not ProductVariant.objects.for_tenant(ctx.tenant_id).filter(id=variant_id).exists():
            raise NotFoundError("Variant", variant_id)

        from_location = LocationService.require_active(ctx, from_location_id)
        to_location = LocationService.require_active(ctx, to_location_id)

        with transaction.atomic():
            transfer_number = generate_number("TRF", cls.for_tenant(ctx), "transfer_number")
            transfer = cls.model.objects.create(
                tenant_id=ctx.tenant_id,
                transfer_number=transfer_number,
                variant_id=variant_id,
                from_location=from_location,
                to_location=to_location,
                quantity=quantity,
                reason=reason or "",
                reference=reference or "",
                notes=notes or "",
                created_by=ctx.actor_id,
            )
            AuditService.record(ctx, "transfer.created", "transfer", transfer.transfer_number, {
                "variant_id": variant_id,
                "from_location_id": from_location_id,
                "to_location_id": to_location_id,
                "quantity": quantity,
            })

        logger.info(
            f"[{ctx}] Transfer {transfer_number} created: {quantity} x {variant_id} "
            f"{from_location.name} -> {to_location.name}"
        )
        return transfer

    @classmethod
    def _lock_transfer(cls, ctx, transfer_id: int) -> Transfer:
        transfer = cls.for_tenant(ctx).select_for_update().filter(
            id=to_id(transfer_id, "transfer_id")
        ).first()
        if not transfer:
            raise NotFoundError("Transfer", transfer_id)
        return transfer

    @classmethod
    @service_operation("transfer.mark_in_transit")
    def mark_in_transit(cls, ctx, transfer_id: int) -> Transfer:
        with transaction.atomic():
            transfer = cls._lock_transfer(ctx, transfer_id)
            if transfer.status != Transfer.Status.PENDING:
                raise BusinessRuleError(
                    f"Cannot ship {transfer.status} transfer", "transfer_pending"
                )

            transfer.status = Transfer.Status.IN_TRANSIT
            transfer.shipped_by = ctx.actor_id
            transfer.shipped_at = timezone.now()
            transfer.save(update_fields=["status", "shipped_by", "shipped_at", "updated_at"])
            AuditService.record(ctx, "transfer.shipped", "transfer", transfer.transfer_number)

        return transfer

    @classmethod
    @service_operation("transfer.complete")
    def complete(cls, ctx, transfer_id: int) -> Transfer:
        with transaction.atomic():
            transfer = cls._lock_transfer(ctx, transfer_id)
            if transfer.status not in (Transfer.Status.PENDING, Transfer.Status.IN_TRANSIT):
                raise BusinessRuleError(
                    f"Cannot complete {transfer.status} transfer", "transfer_open"
                )

            # Lock both sides in location id order so opposite transfers cannot deadlock
            records = {}
            for location_id in sorted([transfer.from_location_id, transfer.to_location_id]):
                records[location_id] = StockRecordService.lock(ctx, transfer.variant_id, location_id)
            source = records[transfer.from_location_id]
            destination = records[transfer.to_location_id]

            if source.available < transfer.quantity:
                raise InsufficientStockError(
                    transfer.quantity, source.available, transfer.variant_id, transfer.from_location_id
                )

            source.on_hand -= transfer.quantity
            source.save(update_fields=["on_hand", "updated_at"])
            destination.on_hand += transfer.quantity
            destination.save(update_fields=["on_hand", "updated_at"])

            MovementLogService.append(
                ctx, transfer.variant_id, transfer.from_location_id,
                StockMovement.Direction.OUT, transfer.quantity,
                StockMovement.Reason.TRANSFER_OUT, transfer.transfer_number,
            )
            MovementLogService.append(
                ctx, transfer.variant_id, transfer.to_location_id,
                StockMovement.Direction.IN, transfer.quantity,
                StockMovement.Reason.TRANSFER_IN, transfer.transfer_number,
            )

            transfer.status = Transfer.Status.COMPLETED
            transfer.completed_by = ctx.actor_id
            transfer.completed_at = timezone.now()
            transfer.save(update_fields=["status", "completed_by", "completed_at", "updated_at"])
            AuditService.record(ctx, "transfer.completed", "transfer", transfer.transfer_number)

        logger.info(f"[{ctx}] Transfer {transfer.transfer_number} completed")
        return transfer

    @classmethod
    @service_operation("transfer.cancel")
    def cancel(cls, ctx, transfer_id: int, reason: str = "") -> Transfer:
        with transaction.atomic():
            transfer = cls._lock_transfer(ctx, transfer_id)
            if transfer.status in (Transfer.Status.COMPLETED, Transfer.Status.CANCELLED):
                raise BusinessRuleError(f"Cannot cancel {transfer.status} transfer", "transfer_open")

            transfer.status = Transfer.Status.CANCELLED
            transfer.cancelled_by = ctx.actor_id
            transfer.cancelled_at = timezone.now()
            if reason:
                transfer.notes = f"{transfer.notes}\nCancelled: {reason}".strip()
            transfer.save(update_fields=["status", "cancelled_by", "cancelled_at", "notes", "updated_at"])
            AuditService.record(ctx, "transfer.cancelled", "transfer", transfer.transfer_number, {
                "reason": reason,
            })

        logger.info(f"[{ctx}] Transfer {transfer.transfer_number} cancelled")
        return transfer

    # ==================== VALIDATION ====================

    @classmethod
    def validate(cls,
                 ctx,
                 variant_id: Any,
                 from_location_id: Any,
                 to_location_id: Any,
                 quantity: Any) -> Dict[str, Any]:
        """
        Dry run of ``create`` plus a source stock check.

        Collects every problem instead of stopping at the first one. Reads
        only; nothing is locked or written.
        """
        errors = []
        ids = {}

        for field, value in (("variant_id", variant_id),
                             ("from_location_id", from_location_id),
                             ("to_location_id", to_location_id)):
            try:
                ids[field] = to_id(value, field)
            except ValidationError as e:
                errors.append(e.message)

        try:
            quantity = to_quantity(quantity)
        except ValidationError as e:
            errors.append(e.message)
            quantity = None

        source_id = ids.get("from_location_id")
        target_id = ids.get("to_location_id")
        if source_id and source_id == target_id:
            errors.append("Source and destination locations cannot be the same")

        active = LocationService.for_tenant(ctx).filter(is_active=True)
        source = active.filter(id=source_id).first() if source_id else None
        if source_id and not source:
            errors.append("Source location not found or inactive")
        if target_id and not active.filter(id=target_id).exists():
            errors.append("Destination location not found or inactive")

        variant_known = bool(ids.get("variant_id")) and ProductVariant.objects.for_tenant(
            ctx.tenant_id
        ).filter(id=ids["variant_id"]).exists()
        if ids.get("variant_id") and not variant_known:
            errors.append("Product variant not found")

        available = 0
        if source and variant_known:
            record = StockRecordService.get(ctx, ids["variant_id"], source.id)
            if not record:
                errors.append("No stock recorded at source location")
            else:
                available = record.available
                if quantity is not None and available < quantity:
                    errors.append(f"Insufficient stock: {available} available, {quantity} requested")

        return {
            "is_valid": not errors,
            "errors": errors,
            "available_quantity": available,
        }

    # ==================== SUGGESTIONS ====================

    @classmethod
    def suggestions(cls, ctx, variant_id: Any = None, limit: int = 20) -> List[Dict[str, Any]]:
        """
        Rebalancing proposals: every location well above safety stock is paired
        with every location at or below it. Each pair is sized on its own, so
        one surplus can appear in several proposals. Most urgent shortages first.
        """
        records = (
            StockRecord.objects.for_tenant(ctx.tenant_id)
            .filter(location__is_active=True)
            .select_related("location")
            .order_by("variant_id", "location__priority", "location_id")
        )
        if variant_id is not None:
            records = records.filter(variant_id=to_id(variant_id, "variant_id"))

        by_variant = defaultdict(list)
        for record in records:
            by_variant[record.variant_id].append(record)

        suggestions = []
        for record_variant_id, variant_records in by_variant.items():
            if len(variant_records) < 2:
                continue

            excess = [r for r in variant_records if r.available > r.safety_stock + EXCESS_MARGIN]
            short = [r for r in variant_records if r.available <= r.safety_stock]

            for source in excess:
                spare = source.available - source.safety_stock - KEEP_MARGIN
                for target in short:
                    needed = target.safety_stock - target.available + SHORTAGE_TOP_UP
                    quantity = min(spare, needed)
                    if quantity <= 0:
                        continue
                    suggestions.append({
                        "variant_id": record_variant_id,
                        "from_location_id": source.location_id,
                        "from_location": source.location.name,
                        "to_location_id": target.location_id,
                        "to_location": target.location.name,
                        "quantity": quantity,
                        "shortage": target.safety_stock - target.available,
                        "reason": f"{target.location.name} is at or below safety stock",
                    })

        # stable sort keeps location priority order among equal shortages
        suggestions.sort(key=lambda s: s["shortage"], reverse=True)
        return suggestions[:limit]
