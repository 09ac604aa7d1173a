import logging
import uuid as uuid_lib
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Tuple, Iterable

from django.db import transaction, DatabaseError
from django.utils import timezone

from inventory.conf import engine_setting
from inventory.context import RequestContext
from inventory.models import Reservation, StockMovement, ProductVariant, Location
from inventory.services.audit_service import AuditService
from inventory.services.base_service import (
    BaseService, service_operation, success_response, to_quantity, to_id, require_id,
    ServiceError, ValidationError, NotFoundError, BusinessRuleError, InsufficientStockError
)
from inventory.services.movement_service import MovementLogService
from inventory.services.record_service import StockRecordService

logger = logging.getLogger(__name__)


@dataclass
class ReservationLine:
    variant_id: int
    location_id: int
    quantity: int
    order_id: str
    expires_at: Optional[datetime] = None

    @classmethod
    def parse(cls, raw, now: datetime) -> "ReservationLine":
        if isinstance(raw, cls):
            raw = asdict(raw)
        if not isinstance(raw, dict):
            raise ValidationError("Each reservation line must be a mapping", "lines")

        variant_id = to_id(raw.get("variant_id"), "variant_id")
        location_id = to_id(raw.get("location_id"), "location_id")
        order_id = require_id(raw.get("order_id"), "order_id")
        quantity = to_quantity(raw.get("quantity"))

        expires_at = raw.get("expires_at")
        if expires_at is not None:
            if not isinstance(expires_at, datetime) or timezone.is_naive(expires_at):
                raise ValidationError("expires_at must be a timezone-aware datetime", "expires_at")
            if expires_at <= now:
                raise ValidationError("expires_at must be in the future", "expires_at")

        return cls(variant_id, location_id, quantity, str(order_id), expires_at)


@dataclass
class ReservationResult:
    success: bool
    available_quantity: int
    reservation_id: Optional[str] = None
    error: Optional[str] = None
    shortfall: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExpiryReport:
    total_expired: int = 0
    total_released: int = 0
    total_failed: int = 0
    released_inventory: Dict[Tuple[int, int], int] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, released: Dict[Tuple[int, int], int], count: int):
        self.total_expired += count
        for key, quantity in released.items():
            self.released_inventory[key] = self.released_inventory.get(key, 0) + quantity
            self.total_released += quantity

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_expired": self.total_expired,
            "total_released": self.total_released,
            "total_failed": self.total_failed,
            "released_inventory": [
                {"variant_id": variant_id, "location_id": location_id, "quantity": quantity}
                for (variant_id, location_id), quantity in sorted(self.released_inventory.items())
            ],
            "errors": self.errors,
        }


class ReservationService(BaseService):
    """
    Holds stock against orders.

    ``active`` is the only non-terminal status. Every transition out of it
    reverses exactly the quantity stored on the reservation.
    """

    model = Reservation

    @classmethod
    def serialize(cls, reservation: Reservation) -> Dict[str, Any]:
        return {
            "id": str(reservation.uuid),
            "variant_id": reservation.variant_id,
            "location_id": reservation.location_id,
            "order_id": reservation.order_id,
            "quantity": reservation.quantity,
            "status": reservation.status,
            "expires_at": reservation.expires_at.isoformat(),
            "created_by": reservation.created_by,
            "created_at": reservation.created_at.isoformat(),
            "closed_at": reservation.closed_at.isoformat() if reservation.closed_at else None,
        }

    @classmethod
    def get(cls, ctx, reservation_id) -> Reservation:
        reservation = cls.for_tenant(ctx).filter(uuid=cls._parse_id(reservation_id)).first()
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    @classmethod
    def list_for_order(cls, ctx, order_id: str, status: str = None) -> List[Reservation]:
        require_id(order_id, "order_id")
        queryset = cls.for_tenant(ctx).filter(order_id=order_id)
        if status:
            queryset = queryset.filter(status=status)
        return list(queryset.order_by("created_at", "id"))

    @classmethod
    def order_summary(cls, ctx, order_id: str) -> Dict[str, Any]:
        reservations = cls.list_for_order(ctx, order_id)
        held = sum(r.quantity for r in reservations if r.is_active)

        return success_response({
            "order_id": order_id,
            "reservations": [cls.serialize(r) for r in reservations],
            "count": len(reservations),
            "reserved_quantity": held,
        })

    @staticmethod
    def _parse_id(value) -> uuid_lib.UUID:
        try:
            return uuid_lib.UUID(str(value))
        except (ValueError, TypeError):
            raise ValidationError(f"Invalid reservation id: {value}", "reservation_id")

    @classmethod
    def _check_refs(cls, ctx, lines: Iterable[ReservationLine]):
        variant_ids = {line.variant_id for line in lines}
        location_ids = {line.location_id for line in lines}

        known_variants = set(
            ProductVariant.objects.for_tenant(ctx.tenant_id)
            .filter(id__in=variant_ids).values_list("id", flat=True)
        )
        for variant_id in variant_ids:
            if variant_id not in known_variants:
                raise NotFoundError("Variant", variant_id)

        known_locations = set(
            Location.objects.for_tenant(ctx.tenant_id)
            .filter(id__in=location_ids).values_list("id", flat=True)
        )
        for location_id in location_ids:
            if location_id not in known_locations:
                raise NotFoundError("Location", location_id)

    # =========================================================================
    # RESERVE
    # =========================================================================

    @classmethod
    @service_operation("reservation.reserve")
    def reserve(cls, ctx, lines: List[Dict[str, Any]]) -> List[ReservationResult]:
        """
        Reserve each line independently inside one transaction.

        A line that cannot be covered yields a failed result carrying the
        shortfall; the remaining lines are still attempted.
        """
        if not lines:
            raise ValidationError("At least one reservation line is required", "lines")

        now = timezone.now()
        requests = [ReservationLine.parse(raw, now) for raw in lines]
        cls._check_refs(ctx, requests)

        default_expiry = now + timedelta(hours=engine_setting("RESERVATION_TTL_HOURS"))
        results = []

        with transaction.atomic():
            for line in requests:
                record = StockRecordService.lock(ctx, line.variant_id, line.location_id, create=False)
                available = record.available if record else 0

                if available < line.quantity:
                    error = InsufficientStockError(
                        line.quantity, available, line.variant_id, line.location_id
                    )
                    logger.warning(
                        f"[{ctx}] Reservation for order {line.order_id} rejected: {error.message}"
                    )
                    results.append(ReservationResult(
                        success=False,
                        available_quantity=available,
                        error=error.message,
                        shortfall=error.shortfall,
                    ))
                    continue

                record.reserved += line.quantity
                record.save(update_fields=["reserved", "updated_at"])

                reservation = Reservation.objects.create(
                    tenant_id=ctx.tenant_id,
                    variant_id=line.variant_id,
                    location_id=line.location_id,
                    order_id=line.order_id,
                    quantity=line.quantity,
                    expires_at=line.expires_at or default_expiry,
                    created_by=ctx.actor_id,
                )

                MovementLogService.append(
                    ctx,
                    line.variant_id,
                    line.location_id,
                    StockMovement.Direction.OUT,
                    line.quantity,
                    StockMovement.Reason.RESERVATION,
                    line.order_id,
                )

                results.append(ReservationResult(
                    success=True,
                    available_quantity=record.available,
                    reservation_id=str(reservation.uuid),
                ))

            succeeded = [r.reservation_id for r in results if r.success]
            if succeeded:
                AuditService.record(ctx, "reservation.reserved", "reservation", "", {
                    "reservation_ids": succeeded,
                    "failed_lines": len(results) - len(succeeded),
                })

        logger.info(
            f"[{ctx}] Reserved {len(succeeded)}/{len(results)} lines"
        )
        return results

    # =========================================================================
    # RELEASE / EXPIRE / FULFIL
    # =========================================================================

    @classmethod
    def _close(cls, ctx, reservations: List[Reservation], status: str, reason: str,
               consume: bool = False) -> Dict[Tuple[int, int], int]:
        """
        Move active reservations to ``status``, giving back their stored quantity.

        With ``consume`` the units also leave on-hand (the order shipped).
        Callers lock the reservations and hold the transaction.
        """
        released = defaultdict(int)
        now = timezone.now()

        for reservation in reservations:
            record = StockRecordService.lock(ctx, reservation.variant_id, reservation.location_id)

            if record.reserved < reservation.quantity:
                logger.error(
                    f"[{ctx}] Stock record {record.id} holds {record.reserved} reserved, "
                    f"below reservation {reservation.uuid} quantity {reservation.quantity}"
                )
            record.reserved = max(0, record.reserved - reservation.quantity)
            update_fields = ["reserved", "updated_at"]
            if consume:
                record.on_hand = max(record.reserved, record.on_hand - reservation.quantity)
                update_fields.append("on_hand")
            record.save(update_fields=update_fields)

            reservation.status = status
            reservation.closed_by = ctx.actor_id
            reservation.closed_at = now
            reservation.save(update_fields=["status", "closed_by", "closed_at", "updated_at"])

            MovementLogService.append(
                ctx,
                reservation.variant_id,
                reservation.location_id,
                StockMovement.Direction.OUT if consume else StockMovement.Direction.IN,
                reservation.quantity,
                reason,
                reservation.order_id,
            )
            released[(reservation.variant_id, reservation.location_id)] += reservation.quantity

        return dict(released)

    @classmethod
    def _locked(cls, ctx, **filters) -> List[Reservation]:
        # Stable order keeps lock acquisition deterministic across workers
        return list(
            cls.for_tenant(ctx).select_for_update()
            .filter(**filters)
            .order_by("variant_id", "location_id", "id")
        )

    @classmethod
    @service_operation("reservation.release_by_ids")
    def release_by_ids(cls, ctx, reservation_ids: List[Any]) -> None:
        if not reservation_ids:
            raise ValidationError("At least one reservation id is required", "reservation_ids")
        ids = [cls._parse_id(value) for value in reservation_ids]

        with transaction.atomic():
            reservations = cls._locked(ctx, uuid__in=ids)

            found = {r.uuid for r in reservations}
            for reservation_id in ids:
                if reservation_id not in found:
                    raise NotFoundError("Reservation", reservation_id)

            active = [r for r in reservations if r.is_active]
            released = cls._close(
                ctx, active, Reservation.Status.CANCELLED, StockMovement.Reason.RESERVATION_RELEASED
            )
            if active:
                AuditService.record(ctx, "reservation.released", "reservation", "", {
                    "reservation_ids": [str(r.uuid) for r in active],
                })

        skipped = len(reservations) - len(active)
        logger.info(
            f"[{ctx}] Released {len(active)} reservations ({sum(released.values())} units), "
            f"{skipped} already closed"
        )

    @classmethod
    @service_operation("reservation.release_by_order")
    def release_by_order(cls, ctx, order_id: str) -> None:
        require_id(order_id, "order_id")

        with transaction.atomic():
            active = cls._locked(ctx, order_id=order_id, status=Reservation.Status.ACTIVE)
            if not active:
                logger.debug(f"[{ctx}] No active reservations for order {order_id}")
                return

            released = cls._close(
                ctx, active, Reservation.Status.CANCELLED, StockMovement.Reason.RESERVATION_RELEASED
            )
            AuditService.record(ctx, "reservation.released", "order", order_id, {
                "reservation_ids": [str(r.uuid) for r in active],
            })

        logger.info(
            f"[{ctx}] Released {len(active)} reservations for order {order_id} "
            f"({sum(released.values())} units)"
        )

    @classmethod
    @service_operation("reservation.fulfill_order")
    def fulfill_order(cls, ctx, order_id: str) -> int:
        """Consume the order's active reservations; returns how many were fulfilled."""
        require_id(order_id, "order_id")

        with transaction.atomic():
            active = cls._locked(ctx, order_id=order_id, status=Reservation.Status.ACTIVE)
            if not active:
                return 0

            cls._close(
                ctx, active, Reservation.Status.FULFILLED,
                StockMovement.Reason.RESERVATION_FULFILLED, consume=True
            )
            AuditService.record(ctx, "reservation.fulfilled", "order", order_id, {
                "reservation_ids": [str(r.uuid) for r in active],
            })

        logger.info(f"[{ctx}] Fulfilled {len(active)} reservations for order {order_id}")
        return len(active)

    @classmethod
    @service_operation("reservation.extend")
    def extend(cls, ctx, reservation_id, hours: int) -> Reservation:
        hours = to_quantity(hours, "hours")
        parsed_id = cls._parse_id(reservation_id)

        with transaction.atomic():
            reservation = cls.for_tenant(ctx).select_for_update().filter(uuid=parsed_id).first()
            if not reservation:
                raise NotFoundError("Reservation", reservation_id)
            if not reservation.is_active:
                raise BusinessRuleError(
                    f"Cannot extend a {reservation.status} reservation", "reservation_active"
                )

            reservation.expires_at = reservation.expires_at + timedelta(hours=hours)
            reservation.save(update_fields=["expires_at", "updated_at"])
            AuditService.record(ctx, "reservation.extended", "reservation", reservation.uuid, {
                "hours": hours, "expires_at": reservation.expires_at.isoformat(),
            })

        return reservation

    @classmethod
    def expire_due(cls, ctx, now: datetime = None, limit: int = None) -> ExpiryReport:
        """
        Expire this tenant's active reservations whose deadline has passed.

        Works in batches of EXPIRY_SWEEP_BATCH_SIZE, one transaction each. A
        failing batch is logged and reported, later batches still run.
        """
        now = now or timezone.now()
        batch_size = engine_setting("EXPIRY_SWEEP_BATCH_SIZE")
        report = ExpiryReport()

        due_ids = list(
            cls.for_tenant(ctx)
            .filter(status=Reservation.Status.ACTIVE, expires_at__lte=now)
            .order_by("expires_at", "id")
            .values_list("id", flat=True)[:limit]
        )

        for start in range(0, len(due_ids), batch_size):
            chunk = due_ids[start:start + batch_size]
            try:
                with transaction.atomic():
                    due = cls._locked(
                        ctx, id__in=chunk, status=Reservation.Status.ACTIVE, expires_at__lte=now
                    )
                    released = cls._close(
                        ctx, due, Reservation.Status.EXPIRED, StockMovement.Reason.RESERVATION_EXPIRED
                    )
                    if due:
                        AuditService.record(ctx, "reservation.expired", "reservation", "", {
                            "reservation_ids": [str(r.uuid) for r in due],
                        })
            except (ServiceError, DatabaseError) as e:
                logger.exception(f"[{ctx}] Expiry batch starting at {start} failed")
                report.total_failed += len(chunk)
                report.errors.append({"offset": start, "reservation_ids": chunk, "message": str(e)})
                continue

            report.add(released, len(due))

        if due_ids:
            logger.info(
                f"[{ctx}] Expired {report.total_expired} reservations, released "
                f"{report.total_released} units, {report.total_failed} failed"
            )
        return report

    @classmethod
    def sweep_all_tenants(cls, now: datetime = None) -> Dict[str, ExpiryReport]:
        """Run ``expire_due`` for every tenant that has overdue reservations."""
        now = now or timezone.now()
        # Only place a query spans tenants: it reads tenant ids, nothing else
        tenant_ids = list(
            Reservation.objects
            .filter(status=Reservation.Status.ACTIVE, expires_at__lte=now)
            .order_by("tenant_id")
            .values_list("tenant_id", flat=True)
            .distinct()
        )

        reports = {}
        for tenant_id in tenant_ids:
            reports[tenant_id] = cls.expire_due(RequestContext.system(tenant_id), now=now)
        return reports
