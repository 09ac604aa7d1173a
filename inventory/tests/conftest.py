import pytest

from inventory.context import RequestContext
from inventory.models import Location, ProductVariant, StockRecord

TENANT = "acme"
OTHER_TENANT = "globex"


@pytest.fixture
def ctx():
    return RequestContext(tenant_id=TENANT, actor_id="user-1", correlation_id="cid-test")


@pytest.fixture
def other_ctx():
    return RequestContext(tenant_id=OTHER_TENANT, actor_id="user-2", correlation_id="cid-other")


@pytest.fixture
def variant(db):
    return ProductVariant.objects.create(tenant_id=TENANT, sku="TSHIRT-M", title="T-shirt M")


@pytest.fixture
def other_variant(db):
    return ProductVariant.objects.create(tenant_id=TENANT, sku="TSHIRT-L", title="T-shirt L")


@pytest.fixture
def warehouse(db):
    return Location.objects.create(
        tenant_id=TENANT, name="Main warehouse", type=Location.LocationType.WAREHOUSE, priority=1
    )


@pytest.fixture
def store(db):
    return Location.objects.create(
        tenant_id=TENANT, name="High street", type=Location.LocationType.STORE, priority=2
    )


@pytest.fixture
def foreign_location(db):
    return Location.objects.create(tenant_id=OTHER_TENANT, name="Globex depot")


@pytest.fixture
def stock_record(variant, warehouse):
    def _create(on_hand=0, reserved=0, safety_stock=0, channel_buffers=None, location=None,
                for_variant=None):
        return StockRecord.objects.create(
            tenant_id=TENANT,
            variant=for_variant or variant,
            location=location or warehouse,
            on_hand=on_hand,
            reserved=reserved,
            safety_stock=safety_stock,
            channel_buffers=channel_buffers or {},
        )
    return _create


@pytest.fixture
def assert_ledger_invariants():
    def _check(tenant_id=TENANT):
        for record in StockRecord.objects.for_tenant(tenant_id):
            assert 0 <= record.reserved <= record.on_hand, record
    return _check
