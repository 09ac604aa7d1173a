import pytest

from inventory.models import StockMovement, StockRecord
from inventory.services import (
    BusinessRuleError,
    NotFoundError,
    StockRecordService,
    ValidationError,
)


@pytest.mark.django_db
def test_apply_delta_creates_record_lazily(ctx, variant, warehouse):
    # when
    record = StockRecordService.apply_delta(ctx, variant.id, warehouse.id, 7, reason="receiving")

    # then
    assert record.on_hand == 7
    assert record.reserved == 0
    assert record.tenant_id == ctx.tenant_id
    movement = StockMovement.objects.for_tenant(ctx.tenant_id).get()
    assert movement.direction == StockMovement.Direction.IN
    assert movement.quantity == 7
    assert movement.reason == "receiving"
    assert movement.actor_id == ctx.actor_id


@pytest.mark.django_db
def test_apply_delta_clamps_at_zero(ctx, variant, warehouse, stock_record):
    # given
    stock_record(on_hand=3)

    # when
    record = StockRecordService.apply_delta(ctx, variant.id, warehouse.id, -10)

    # then
    assert record.on_hand == 0
    movement = StockMovement.objects.for_tenant(ctx.tenant_id).get()
    assert movement.direction == StockMovement.Direction.OUT
    assert movement.quantity == 3


@pytest.mark.django_db
def test_apply_delta_never_drops_below_reserved(ctx, variant, warehouse, stock_record, assert_ledger_invariants):
    # given
    stock_record(on_hand=5, reserved=4)

    # when
    record = StockRecordService.apply_delta(ctx, variant.id, warehouse.id, -5)

    # then
    assert record.on_hand == 4
    assert record.reserved == 4
    assert_ledger_invariants()


@pytest.mark.django_db
def test_apply_delta_zero_writes_no_movement(ctx, variant, warehouse, stock_record):
    # given
    stock_record(on_hand=3)

    # when
    StockRecordService.apply_delta(ctx, variant.id, warehouse.id, 0)

    # then
    assert not StockMovement.objects.for_tenant(ctx.tenant_id).exists()


@pytest.mark.django_db
def test_apply_delta_unknown_location(ctx, variant, foreign_location):
    with pytest.raises(NotFoundError):
        StockRecordService.apply_delta(ctx, variant.id, foreign_location.id, 1)


@pytest.mark.django_db
def test_set_level_routes_through_delta(ctx, variant, warehouse, stock_record):
    # given
    stock_record(on_hand=10)

    # when
    record = StockRecordService.set_level(ctx, variant.id, warehouse.id, 4, reason="count")

    # then
    assert record.on_hand == 4
    assert record.last_counted_at is not None
    movement = StockMovement.objects.for_tenant(ctx.tenant_id).get()
    assert movement.direction == StockMovement.Direction.OUT
    assert movement.quantity == 6
    assert movement.reason == "count"
    assert movement.reference == "Set to 4"


@pytest.mark.django_db
def test_set_level_unchanged_writes_no_movement(ctx, variant, warehouse, stock_record):
    # given
    stock_record(on_hand=4)

    # when
    record = StockRecordService.set_level(ctx, variant.id, warehouse.id, 4)

    # then
    assert record.on_hand == 4
    assert not StockMovement.objects.for_tenant(ctx.tenant_id).exists()


@pytest.mark.django_db
def test_set_level_below_reserved_is_rejected(ctx, variant, warehouse, stock_record):
    # given
    record = stock_record(on_hand=5, reserved=3)

    # when / then
    with pytest.raises(BusinessRuleError):
        StockRecordService.set_level(ctx, variant.id, warehouse.id, 2)
    record.refresh_from_db()
    assert record.on_hand == 5


@pytest.mark.django_db
def test_set_level_rejects_negative(ctx, variant, warehouse):
    with pytest.raises(ValidationError):
        StockRecordService.set_level(ctx, variant.id, warehouse.id, -1)


@pytest.mark.django_db
def test_set_channel_buffer_and_remove(ctx, variant, warehouse, stock_record):
    # given
    stock_record(on_hand=10, channel_buffers={"marketplace": 2})

    # when
    record = StockRecordService.set_channel_buffer(ctx, variant.id, warehouse.id, "web", 3)

    # then
    assert record.channel_buffers == {"marketplace": 2, "web": 3}

    # when
    record = StockRecordService.set_channel_buffer(ctx, variant.id, warehouse.id, "marketplace", 0)

    # then
    record.refresh_from_db()
    assert record.channel_buffers == {"web": 3}


@pytest.mark.django_db
def test_corrupt_channel_buffers_are_rejected_on_read(ctx, variant, warehouse, stock_record):
    # given
    stock_record(on_hand=10, channel_buffers={"web": "lots"})

    # when / then
    with pytest.raises(ValidationError):
        StockRecordService.set_channel_buffer(ctx, variant.id, warehouse.id, "pos", 1)


@pytest.mark.django_db
def test_set_safety_stock(ctx, variant, warehouse):
    record = StockRecordService.set_safety_stock(ctx, variant.id, warehouse.id, 2)

    assert record.safety_stock == 2
    assert StockRecordService.get(ctx, variant.id, warehouse.id).safety_stock == 2


@pytest.mark.django_db
def test_get_is_tenant_scoped(ctx, other_ctx, variant, warehouse, stock_record):
    # given
    stock_record(on_hand=1)

    # then
    assert StockRecordService.get(ctx, variant.id, warehouse.id) is not None
    assert StockRecordService.get(other_ctx, variant.id, warehouse.id) is None


@pytest.mark.django_db
def test_queries_refuse_missing_tenant():
    with pytest.raises(ValueError):
        StockRecord.objects.for_tenant("")


def test_context_requires_tenant():
    from inventory.context import RequestContext

    with pytest.raises(ValidationError):
        RequestContext(tenant_id="", actor_id="user-1")


@pytest.mark.django_db
def test_list_for_variant_orders_by_location_priority(ctx, variant, warehouse, store, stock_record):
    # given
    stock_record(on_hand=1, location=store)
    stock_record(on_hand=2, location=warehouse)

    # when
    records = StockRecordService.list_for_variant(ctx, variant.id)

    # then
    assert [r.location_id for r in records] == [warehouse.id, store.id]
    assert StockRecordService.list_for_variant(ctx, variant.id, location_id=store.id)[0].on_hand == 1
