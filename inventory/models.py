import uuid as uuid_lib

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from django.db.models import F, Q


class TenantQuerySet(models.QuerySet):
    def for_tenant(self, tenant_id):
        if not tenant_id:
            raise ValueError("tenant_id is required for every inventory query")
        return self.filter(tenant_id=tenant_id)


TenantManager = models.Manager.from_queryset(TenantQuerySet)


def validate_channel_buffers(value):
    if not isinstance(value, dict):
        raise DjangoValidationError("Channel buffers must be a mapping of channel to quantity")
    for channel, quantity in value.items():
        if not isinstance(channel, str) or not channel:
            raise DjangoValidationError(f"Invalid channel name: {channel!r}")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise DjangoValidationError(
                f"Buffer for channel {channel!r} must be a non-negative integer"
            )


class Location(models.Model):
    class LocationType(models.TextChoices):
        WAREHOUSE = "warehouse", "Warehouse"
        STORE = "store", "Store"
        VIRTUAL = "virtual", "Virtual"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    tenant_id = models.CharField(max_length=64, db_index=True)
    name = models.CharField(max_length=100)
    type = models.CharField(
        max_length=20, choices=LocationType.choices, default=LocationType.WAREHOUSE
    )
    external_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Identifier of this location in an external sales system",
    )
    priority = models.IntegerField(default=0)
    address = models.JSONField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantManager()

    class Meta:
        db_table = "inventory_location"
        ordering = ["priority", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "name"], name="inventory_location_unique_name"
            ),
            models.UniqueConstraint(
                fields=["tenant_id", "external_id"],
                condition=Q(external_id__isnull=False),
                name="inventory_location_unique_external_id",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_type_display()})"


class ProductVariant(models.Model):
    """
    Catalog variant as mirrored from the catalog service.
    The engine only reads it to validate references.
    """

    tenant_id = models.CharField(max_length=64, db_index=True)
    sku = models.CharField(max_length=100)
    title = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        db_table = "inventory_product_variant"
        unique_together = [("tenant_id", "sku")]

    def __str__(self):
        return self.sku


class StockRecord(models.Model):
    """
    Current stock of one variant at one location.
    Created lazily by the first movement, never deleted.
    """

    tenant_id = models.CharField(max_length=64)
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.CASCADE, related_name="stock_records"
    )
    location = models.ForeignKey(
        Location, on_delete=models.PROTECT, related_name="stock_records"
    )
    on_hand = models.PositiveIntegerField(default=0)
    reserved = models.PositiveIntegerField(default=0)
    safety_stock = models.PositiveIntegerField(default=0)
    channel_buffers = models.JSONField(default=dict, validators=[validate_channel_buffers])
    last_counted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantManager()

    class Meta:
        db_table = "inventory_stock_record"
        unique_together = [("tenant_id", "variant", "location")]
        constraints = [
            models.CheckConstraint(
                condition=Q(reserved__lte=F("on_hand")),
                name="inventory_stock_record_reserved_lte_on_hand",
            ),
        ]

    @property
    def available(self):
        return self.on_hand - self.reserved

    @property
    def buffers(self):
        validate_channel_buffers(self.channel_buffers)
        return dict(self.channel_buffers)

    def __str__(self):
        return f"{self.variant_id} @ {self.location_id}: {self.on_hand} ({self.reserved} reserved)"


class StockMovementQuerySet(TenantQuerySet):
    def update(self, **kwargs):
        raise TypeError("Stock movements are append-only")

    def delete(self):
        raise TypeError("Stock movements are append-only")


class StockMovement(models.Model):
    class Direction(models.TextChoices):
        IN = "in", "In"
        OUT = "out", "Out"

    class Reason(models.TextChoices):
        ADJUSTMENT = "adjustment", "Adjustment"
        COUNT = "count", "Stock count"
        IMPORT = "import", "Import"
        RESERVATION = "reservation", "Reservation"
        RESERVATION_RELEASED = "reservation_released", "Reservation released"
        RESERVATION_EXPIRED = "reservation_expired", "Reservation expired"
        RESERVATION_FULFILLED = "reservation_fulfilled", "Reservation fulfilled"
        TRANSFER_IN = "transfer_in", "Transfer in"
        TRANSFER_OUT = "transfer_out", "Transfer out"

    tenant_id = models.CharField(max_length=64)
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.CASCADE, related_name="movements"
    )
    location = models.ForeignKey(
        Location, on_delete=models.PROTECT, related_name="movements"
    )
    direction = models.CharField(max_length=3, choices=Direction.choices)
    quantity = models.PositiveIntegerField()
    # Free-form tag; Reason lists the ones the engine writes itself
    reason = models.CharField(max_length=50)
    reference = models.CharField(max_length=255, blank=True, default="")
    actor_id = models.CharField(max_length=64)
    correlation_id = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = models.Manager.from_queryset(StockMovementQuerySet)()

    class Meta:
        db_table = "inventory_stock_movement"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["tenant_id", "variant", "location"]),
            models.Index(fields=["tenant_id", "reason"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0), name="inventory_stock_movement_positive_quantity"
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise TypeError("Stock movements are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise TypeError("Stock movements are append-only")

    @property
    def signed_quantity(self):
        return self.quantity if self.direction == self.Direction.IN else -self.quantity

    def __str__(self):
        return f"{self.direction} {self.quantity} ({self.reason})"


class Reservation(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"
        FULFILLED = "fulfilled", "Fulfilled"
        EXPIRED = "expired", "Expired"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    tenant_id = models.CharField(max_length=64)
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.CASCADE, related_name="reservations"
    )
    location = models.ForeignKey(
        Location, on_delete=models.PROTECT, related_name="reservations"
    )
    order_id = models.CharField(max_length=100)
    quantity = models.PositiveIntegerField()
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.ACTIVE
    )
    expires_at = models.DateTimeField()
    created_by = models.CharField(max_length=64)
    closed_by = models.CharField(max_length=64, blank=True, default="")
    closed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantManager()

    class Meta:
        db_table = "inventory_reservation"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["expires_at", "status"]),
            models.Index(fields=["tenant_id", "order_id"]),
            models.Index(fields=["tenant_id", "variant", "location"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0), name="inventory_reservation_positive_quantity"
            ),
        ]

    @property
    def is_active(self):
        return self.status == self.Status.ACTIVE

    def __str__(self):
        return f"{self.order_id}: {self.quantity} x {self.variant_id} ({self.status})"


class Transfer(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        IN_TRANSIT = "in_transit", "In transit"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    tenant_id = models.CharField(max_length=64)
    transfer_number = models.CharField(max_length=50)
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.CASCADE, related_name="transfers"
    )
    from_location = models.ForeignKey(
        Location, on_delete=models.PROTECT, related_name="transfers_out"
    )
    to_location = models.ForeignKey(
        Location, on_delete=models.PROTECT, related_name="transfers_in"
    )
    quantity = models.PositiveIntegerField()
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )
    reason = models.CharField(max_length=100, blank=True, default="")
    reference = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    created_by = models.CharField(max_length=64)
    shipped_by = models.CharField(max_length=64, blank=True, default="")
    shipped_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.CharField(max_length=64, blank=True, default="")
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=64, blank=True, default="")
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantManager()

    class Meta:
        db_table = "inventory_transfer"
        ordering = ["-created_at", "-id"]
        unique_together = [("tenant_id", "transfer_number")]
        indexes = [
            models.Index(fields=["tenant_id", "status"]),
            models.Index(fields=["tenant_id", "variant"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0), name="inventory_transfer_positive_quantity"
            ),
            models.CheckConstraint(
                condition=~Q(from_location=F("to_location")),
                name="inventory_transfer_distinct_locations",
            ),
        ]

    def __str__(self):
        return f"{self.transfer_number}: {self.from_location_id} -> {self.to_location_id}"


class AuditEntry(models.Model):
    tenant_id = models.CharField(max_length=64)
    actor_id = models.CharField(max_length=64)
    correlation_id = models.CharField(max_length=64, blank=True, default="")
    action = models.CharField(max_length=100)
    entity = models.CharField(max_length=50)
    entity_id = models.CharField(max_length=100, blank=True, default="")
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        db_table = "inventory_audit_entry"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["tenant_id", "entity", "entity_id"]),
        ]

    def __str__(self):
        return f"{self.action} {self.entity}:{self.entity_id}"
