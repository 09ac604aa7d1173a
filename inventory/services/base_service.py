import functools
import logging
from typing import Dict, Any, Optional, List, Tuple

from django.db import DatabaseError, IntegrityError
from django.db.models import Model
from django.utils import timezone

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    def __init__(self, message: str, code: str = "ERROR", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str = None, details: Dict = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)}
        )


class ConflictError(ServiceError):
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, "CONFLICT", details)


class BusinessRuleError(ServiceError):
    def __init__(self, message: str, rule: str = None):
        super().__init__(message, "BUSINESS_RULE_VIOLATION", {"rule": rule})


class InsufficientStockError(ServiceError):
    def __init__(self, requested: int, available: int, variant_id: Any = None, location_id: Any = None):
        self.requested = requested
        self.available = max(0, available)
        self.shortfall = requested - self.available
        super().__init__(
            f"Insufficient stock: requested {requested}, available {self.available}, "
            f"short by {self.shortfall}",
            "INSUFFICIENT_STOCK",
            {
                "variant_id": variant_id,
                "location_id": location_id,
                "requested": requested,
                "available": self.available,
                "shortfall": self.shortfall,
            }
        )


class OperationError(ServiceError):
    """Unclassified store failure, wrapped with enough context to trace it."""

    def __init__(self, operation: str, ctx=None, cause: Exception = None):
        details = {"operation": operation}
        if ctx is not None:
            details.update({
                "tenant_id": ctx.tenant_id,
                "correlation_id": ctx.correlation_id,
            })
        if cause is not None:
            details["cause"] = f"{type(cause).__name__}: {cause}"
        super().__init__(f"Inventory operation '{operation}' failed", "OPERATION_FAILED", details)


def service_operation(name: str):
    """
    Map store failures raised by an engine operation onto the service errors.

    The wrapped callable takes the request context as its first argument
    after ``cls``. Must sit outside any ``transaction.atomic`` so that
    failures raised at commit time are mapped too.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(cls, ctx, *args, **kwargs):
            try:
                return func(cls, ctx, *args, **kwargs)
            except ServiceError:
                raise
            except IntegrityError as e:
                logger.warning(f"[{ctx}] {name}: constraint violation: {e}")
                raise ConflictError(
                    f"Conflicting change rejected during {name}",
                    {"operation": name, "tenant_id": ctx.tenant_id, "correlation_id": ctx.correlation_id},
                ) from e
            except DatabaseError as e:
                logger.exception(f"[{ctx}] {name}: store failure")
                raise OperationError(name, ctx, e) from e
        return wrapper
    return decorator


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


def to_quantity(value: Any, field: str = "quantity", allow_zero: bool = False,
                allow_negative: bool = False) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field)
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field)
    if value < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative", field)
    if value == 0 and not allow_zero:
        raise ValidationError(f"{field} must be greater than zero", field)
    return value


def require_id(value: Any, field: str) -> Any:
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field)
    return value


def to_id(value: Any, field: str) -> int:
    """Primary key from an int or a numeric string."""
    require_id(value, field)
    try:
        return to_quantity(value, field)
    except ValidationError:
        raise ValidationError(f"Invalid {field}: {value}", field)


def generate_number(prefix: str, queryset, field: str = "transfer_number") -> str:
    """Next ``PREFIX-YYYYMMDD-NNNN`` value within ``queryset``."""
    date_part = timezone.now().strftime("%Y%m%d")
    filter_kwargs = {f"{field}__startswith": f"{prefix}-{date_part}"}
    last = queryset.filter(**filter_kwargs).order_by(f"-{field}").first()

    seq = 1
    if last:
        tail = getattr(last, field).split("-")[-1]
        if tail.isdigit():
            seq = int(tail) + 1

    return f"{prefix}-{date_part}-{seq:04d}"


class BaseService:
    model = None

    @classmethod
    def for_tenant(cls, ctx):
        return cls.model.objects.for_tenant(ctx.tenant_id)

    @classmethod
    def get_by_id(cls, ctx, id: Any) -> Optional[Model]:
        try:
            return cls.for_tenant(ctx).get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            return None

    @classmethod
    def get_or_404(cls, ctx, id: Any) -> Model:
        obj = cls.get_by_id(ctx, id)
        if not obj:
            raise NotFoundError(cls.model.__name__, id)
        return obj

    @classmethod
    def exists(cls, ctx, id: Any) -> bool:
        return cls.for_tenant(ctx).filter(id=id).exists()
