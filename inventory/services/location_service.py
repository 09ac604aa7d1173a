import logging
from typing import Dict, Any

from django.db import transaction
from django.db.models import Q, Count, Sum

from inventory.models import Location, StockRecord
from inventory.services.audit_service import AuditService
from inventory.services.base_service import (
    BaseService, success_response, service_operation,
    ValidationError, NotFoundError, BusinessRuleError, to_id
)

logger = logging.getLogger(__name__)


class LocationService(BaseService):
    model = Location

    @classmethod
    def serialize(cls, location: Location, include_stats: bool = False) -> Dict[str, Any]:
        data = {
            "id": location.id,
            "uuid": str(location.uuid),
            "name": location.name,
            "type": location.type,
            "type_display": location.get_type_display(),
            "external_id": location.external_id,
            "priority": location.priority,
            "address": location.address,
            "is_active": location.is_active,
            "created_at": location.created_at.isoformat(),
        }

        if include_stats:
            stats = StockRecord.objects.for_tenant(location.tenant_id).filter(
                location=location
            ).aggregate(
                record_count=Count("id"),
                on_hand=Sum("on_hand"),
                reserved=Sum("reserved"),
            )
            data["stats"] = {
                "record_count": stats["record_count"] or 0,
                "on_hand": stats["on_hand"] or 0,
                "reserved": stats["reserved"] or 0,
            }

        return data

    @classmethod
    def list(cls, ctx, include_inactive: bool = False, type_filter: str = None) -> Dict[str, Any]:
        queryset = cls.for_tenant(ctx)

        if not include_inactive:
            queryset = queryset.filter(is_active=True)

        if type_filter:
            queryset = queryset.filter(type=type_filter)

        locations = [cls.serialize(loc) for loc in queryset.order_by("priority", "name")]

        return success_response({
            "locations": locations,
            "count": len(locations),
        })

    @classmethod
    def get(cls, ctx, location_id: int, include_stats: bool = True) -> Dict[str, Any]:
        location = cls.get_by_id(ctx, location_id)
        if not location:
            raise NotFoundError("Location", location_id)

        return success_response({
            "location": cls.serialize(location, include_stats=include_stats)
        })

    @classmethod
    def require_active(cls, ctx, location_id: int) -> Location:
        location = cls.get_or_404(ctx, location_id)
        if not location.is_active:
            raise BusinessRuleError(f"Location '{location.name}' is inactive", "location_active")
        return location

    @classmethod
    def _validate_unique(cls, ctx, name: str = None, external_id: str = None, exclude_id: int = None):
        queryset = cls.for_tenant(ctx)
        if exclude_id:
            queryset = queryset.exclude(id=exclude_id)

        if name is not None and queryset.filter(name__iexact=name).exists():
            raise ValidationError(f"Location with name '{name}' already exists", "name")

        if external_id and queryset.filter(external_id=external_id).exists():
            raise ValidationError(
                f"Location with external id '{external_id}' already exists", "external_id"
            )

    @classmethod
    @service_operation("location.create")
    def create(cls,
               ctx,
               name: str,
               type: str = Location.LocationType.WAREHOUSE,
               external_id: str = None,
               priority: int = 0,
               address: Dict[str, Any] = None) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Location name is required", "name")
        external_id = (external_id or "").strip() or None

        if type not in Location.LocationType.values:
            raise ValidationError(f"Invalid type. Valid: {Location.LocationType.values}", "type")

        cls._validate_unique(ctx, name=name, external_id=external_id)

        with transaction.atomic():
            location = cls.model.objects.create(
                tenant_id=ctx.tenant_id,
                name=name,
                type=type,
                external_id=external_id,
                priority=priority,
                address=address,
            )
            AuditService.record(ctx, "location.created", "location", location.id, {"name": location.name})

        logger.info(f"[{ctx}] Location '{location.name}' created (id={location.id})")

        return success_response({
            "id": location.id,
            "uuid": str(location.uuid),
            "location": cls.serialize(location)
        }, f"Location '{location.name}' created")

    @classmethod
    @service_operation("location.update")
    def update(cls, ctx, location_id: int, **kwargs) -> Dict[str, Any]:
        location = cls.get_or_404(ctx, location_id)

        if "type" in kwargs and kwargs["type"] not in Location.LocationType.values:
            raise ValidationError(f"Invalid type. Valid: {Location.LocationType.values}", "type")

        if "name" in kwargs:
            kwargs["name"] = (kwargs["name"] or "").strip()
            if not kwargs["name"]:
                raise ValidationError("Location name is required", "name")
        if "external_id" in kwargs:
            kwargs["external_id"] = (kwargs["external_id"] or "").strip() or None

        new_name = kwargs.get("name")
        cls._validate_unique(
            ctx,
            name=new_name,
            external_id=kwargs.get("external_id"),
            exclude_id=location.id,
        )

        update_fields = ["updated_at"]
        for field in ["name", "type", "external_id", "priority", "address"]:
            if field in kwargs:
                setattr(location, field, kwargs[field])
                update_fields.append(field)

        with transaction.atomic():
            location.save(update_fields=update_fields)
            AuditService.record(ctx, "location.updated", "location", location.id, {
                "fields": [f for f in update_fields if f != "updated_at"]
            })

        return success_response({
            "location": cls.serialize(location)
        }, "Location updated")

    @classmethod
    @service_operation("location.deactivate")
    def deactivate(cls, ctx, location_id: int) -> Dict[str, Any]:
        with transaction.atomic():
            location = cls.for_tenant(ctx).select_for_update().filter(
                id=to_id(location_id, "location_id")
            ).first()
            if not location:
                raise NotFoundError("Location", location_id)

            holds_stock = StockRecord.objects.for_tenant(ctx.tenant_id).filter(
                location=location
            ).filter(Q(on_hand__gt=0) | Q(reserved__gt=0)).exists()

            if holds_stock:
                raise BusinessRuleError(
                    "Cannot deactivate location with stock. Transfer stock first.",
                    "location_empty"
                )

            location.is_active = False
            location.save(update_fields=["is_active", "updated_at"])
            AuditService.record(ctx, "location.deactivated", "location", location.id)

        logger.info(f"[{ctx}] Location {location_id} deactivated")

        return success_response({"id": location_id}, "Location deactivated")

    @classmethod
    @service_operation("location.activate")
    def activate(cls, ctx, location_id: int) -> Dict[str, Any]:
        location = cls.get_or_404(ctx, location_id)

        with transaction.atomic():
            location.is_active = True
            location.save(update_fields=["is_active", "updated_at"])
            AuditService.record(ctx, "location.activated", "location", location.id)

        return success_response({
            "location": cls.serialize(location)
        }, "Location activated")
