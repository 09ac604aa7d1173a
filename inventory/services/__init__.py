"""
Inventory Services - stock availability and reservation engine

Usage:
    from inventory.context import RequestContext
    from inventory.services import ReservationService, ChannelAvailabilityService

    ctx = RequestContext(tenant_id="acme", actor_id="user-42")

    # Hold stock for an order
    results = ReservationService.reserve(ctx, [
        {"variant_id": 1, "location_id": 1, "quantity": 2, "order_id": "O-1001"},
    ])

    # Sellable quantity for a channel
    ChannelAvailabilityService.get_available(ctx, variant_id=1, channel="web")
"""

# Base utilities
from inventory.services.base_service import (
    ServiceError,
    ValidationError,
    NotFoundError,
    ConflictError,
    BusinessRuleError,
    InsufficientStockError,
    OperationError,
    service_operation,
    success_response,
    paginate_queryset,
    generate_number,
    BaseService,
)

# Core entities
from .audit_service import AuditService
from .location_service import LocationService
from .movement_service import MovementLogService
from .record_service import StockRecordService

# Sell side
from .availability_service import (
    ChannelAvailabilityService,
    per_record_available,
    total_available,
)
from .reservation_service import (
    ReservationService,
    ReservationLine,
    ReservationResult,
    ExpiryReport,
)

# Stock movement between locations
from .transfer_service import TransferService

# Bulk imports
from .batch_service import BatchUpdateService, BatchUpdateReport, BatchError


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "BusinessRuleError",
    "InsufficientStockError",
    "OperationError",
    "service_operation",
    "success_response",
    "paginate_queryset",
    "generate_number",
    "BaseService",

    # Core
    "AuditService",
    "LocationService",
    "MovementLogService",
    "StockRecordService",

    # Sell side
    "ChannelAvailabilityService",
    "per_record_available",
    "total_available",
    "ReservationService",
    "ReservationLine",
    "ReservationResult",
    "ExpiryReport",

    # Transfers
    "TransferService",

    # Bulk
    "BatchUpdateService",
    "BatchUpdateReport",
    "BatchError",
]
