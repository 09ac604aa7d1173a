import pytest

from inventory.models import Location, StockMovement, StockRecord, Transfer
from inventory.services import (
    BusinessRuleError,
    InsufficientStockError,
    NotFoundError,
    StockRecordService,
    TransferService,
    ValidationError,
)


@pytest.fixture
def transfer(ctx, variant, warehouse, store, stock_record):
    stock_record(on_hand=10)
    return TransferService.create(ctx, variant.id, warehouse.id, store.id, 4, reason="rebalance")


@pytest.mark.django_db
def test_create_moves_no_stock(ctx, variant, warehouse, transfer):
    # then
    assert transfer.status == Transfer.Status.PENDING
    assert transfer.transfer_number.startswith("TRF-")
    assert transfer.created_by == ctx.actor_id
    assert StockRecordService.get(ctx, variant.id, warehouse.id).on_hand == 10
    assert not StockMovement.objects.for_tenant(ctx.tenant_id).exists()


@pytest.mark.django_db
def test_transfer_numbers_are_sequential(ctx, variant, warehouse, store, transfer):
    # when
    second = TransferService.create(ctx, variant.id, warehouse.id, store.id, 1)

    # then
    assert int(second.transfer_number.split("-")[-1]) == int(transfer.transfer_number.split("-")[-1]) + 1


@pytest.mark.django_db
def test_complete_conserves_stock(ctx, variant, warehouse, store, transfer, assert_ledger_invariants):
    # when
    completed = TransferService.complete(ctx, transfer.id)

    # then
    assert completed.status == Transfer.Status.COMPLETED
    assert completed.completed_by == ctx.actor_id
    source = StockRecordService.get(ctx, variant.id, warehouse.id)
    destination = StockRecordService.get(ctx, variant.id, store.id)
    assert (source.on_hand, destination.on_hand) == (6, 4)
    assert source.on_hand + destination.on_hand == 10

    movements = StockMovement.objects.for_tenant(ctx.tenant_id).order_by("id")
    assert [(m.location_id, m.direction, m.reason, m.quantity) for m in movements] == [
        (warehouse.id, "out", "transfer_out", 4),
        (store.id, "in", "transfer_in", 4),
    ]
    assert {m.reference for m in movements} == {transfer.transfer_number}
    assert_ledger_invariants()


@pytest.mark.django_db
def test_complete_with_insufficient_stock_changes_nothing(ctx, variant, warehouse, store, transfer):
    # given
    StockRecordService.set_level(ctx, variant.id, warehouse.id, 2)
    movements_before = StockMovement.objects.for_tenant(ctx.tenant_id).count()

    # when
    with pytest.raises(InsufficientStockError) as exc:
        TransferService.complete(ctx, transfer.id)

    # then
    assert exc.value.shortfall == 2
    transfer.refresh_from_db()
    assert transfer.status == Transfer.Status.PENDING
    assert StockRecordService.get(ctx, variant.id, warehouse.id).on_hand == 2
    assert StockRecordService.get(ctx, variant.id, store.id) is None
    assert StockMovement.objects.for_tenant(ctx.tenant_id).count() == movements_before


@pytest.mark.django_db
def test_complete_respects_reserved_units(ctx, variant, warehouse, store, transfer):
    # given
    StockRecord.objects.filter(variant=variant, location=warehouse).update(reserved=8)

    # when / then
    with pytest.raises(InsufficientStockError):
        TransferService.complete(ctx, transfer.id)


@pytest.mark.django_db
def test_in_transit_then_complete(ctx, variant, store, transfer):
    # when
    shipped = TransferService.mark_in_transit(ctx, transfer.id)
    completed = TransferService.complete(ctx, transfer.id)

    # then
    assert shipped.shipped_by == ctx.actor_id
    assert completed.status == Transfer.Status.COMPLETED
    assert StockRecordService.get(ctx, variant.id, store.id).on_hand == 4


@pytest.mark.parametrize("ship_first", [False, True])
@pytest.mark.django_db
def test_cancel_open_transfer_has_no_stock_effect(ctx, variant, warehouse, transfer, ship_first):
    # given
    if ship_first:
        TransferService.mark_in_transit(ctx, transfer.id)

    # when
    cancelled = TransferService.cancel(ctx, transfer.id, reason="wrong item")

    # then
    assert cancelled.status == Transfer.Status.CANCELLED
    assert "Cancelled: wrong item" in cancelled.notes
    assert StockRecordService.get(ctx, variant.id, warehouse.id).on_hand == 10
    assert not StockMovement.objects.for_tenant(ctx.tenant_id).exists()


@pytest.mark.django_db
def test_closed_transfers_cannot_change(ctx, transfer):
    # given
    TransferService.complete(ctx, transfer.id)

    # then
    with pytest.raises(BusinessRuleError):
        TransferService.cancel(ctx, transfer.id)
    with pytest.raises(BusinessRuleError):
        TransferService.complete(ctx, transfer.id)
    with pytest.raises(BusinessRuleError):
        TransferService.mark_in_transit(ctx, transfer.id)


@pytest.mark.django_db
def test_create_rejects_same_location(ctx, variant, warehouse):
    with pytest.raises(ValidationError):
        TransferService.create(ctx, variant.id, warehouse.id, warehouse.id, 1)


@pytest.mark.django_db
def test_create_rejects_inactive_location(ctx, variant, warehouse, store):
    # given
    store.is_active = False
    store.save()

    # when / then
    with pytest.raises(BusinessRuleError):
        TransferService.create(ctx, variant.id, warehouse.id, store.id, 1)


@pytest.mark.django_db
def test_create_rejects_foreign_location(ctx, variant, warehouse, foreign_location):
    with pytest.raises(NotFoundError):
        TransferService.create(ctx, variant.id, warehouse.id, foreign_location.id, 1)


@pytest.mark.django_db
def test_other_tenant_cannot_complete(other_ctx, transfer):
    with pytest.raises(NotFoundError):
        TransferService.complete(other_ctx, transfer.id)


@pytest.mark.django_db
def test_history_matches_either_side(ctx, variant, warehouse, store, transfer):
    # given
    TransferService.create(ctx, variant.id, store.id, warehouse.id, 1)

    # when
    history = TransferService.history(ctx, location_id=store.id)

    # then
    assert len(history) == 2
    assert history[0]["from_location_id"] == store.id


@pytest.mark.django_db
def test_suggestions_move_surplus_to_short_location(ctx, variant, warehouse, store, stock_record):
    # given
    stock_record(on_hand=30, safety_stock=5)
    stock_record(on_hand=1, safety_stock=3, location=store)

    # when
    [suggestion] = TransferService.suggestions(ctx)

    # then
    assert suggestion["from_location_id"] == warehouse.id
    assert suggestion["to_location_id"] == store.id
    assert suggestion["quantity"] == 7
    assert suggestion["shortage"] == 2


@pytest.mark.django_db
def test_no_suggestions_without_surplus(ctx, variant, warehouse, store, stock_record):
    # given
    stock_record(on_hand=12, safety_stock=5)
    stock_record(on_hand=0, safety_stock=3, location=store)

    # then
    assert TransferService.suggestions(ctx) == []


@pytest.mark.django_db
def test_suggestions_pair_surplus_with_every_short_location(ctx, variant, warehouse, store, stock_record):
    # given
    kiosk = Location.objects.create(tenant_id=ctx.tenant_id, name="Kiosk", priority=3)
    stock_record(on_hand=30)
    stock_record(on_hand=0, safety_stock=20, location=store)
    stock_record(on_hand=0, safety_stock=20, location=kiosk)

    # when
    suggestions = TransferService.suggestions(ctx)

    # then
    assert [(s["to_location_id"], s["quantity"]) for s in suggestions] == [
        (store.id, 25),
        (kiosk.id, 25),
    ]
    assert {s["from_location_id"] for s in suggestions} == {warehouse.id}


@pytest.mark.django_db
def test_suggestions_for_single_variant(ctx, variant, other_variant, warehouse, store, stock_record):
    # given
    stock_record(on_hand=30, safety_stock=5)
    stock_record(on_hand=1, safety_stock=3, location=store)
    stock_record(on_hand=30, safety_stock=5, for_variant=other_variant)
    stock_record(on_hand=1, safety_stock=3, location=store, for_variant=other_variant)

    # when
    suggestions = TransferService.suggestions(ctx, variant_id=str(other_variant.id))

    # then
    assert [s["variant_id"] for s in suggestions] == [other_variant.id]


@pytest.mark.django_db
def test_validate_accepts_coverable_transfer(ctx, variant, warehouse, store, stock_record):
    # given
    stock_record(on_hand=10, reserved=3)

    # when
    result = TransferService.validate(ctx, variant.id, warehouse.id, store.id, 7)

    # then
    assert result == {"is_valid": True, "errors": [], "available_quantity": 7}
    assert not Transfer.objects.exists()


@pytest.mark.django_db
def test_validate_reports_short_source(ctx, variant, warehouse, store, stock_record):
    # given
    stock_record(on_hand=10, reserved=3)

    # when
    result = TransferService.validate(ctx, variant.id, warehouse.id, store.id, 8)

    # then
    assert result["is_valid"] is False
    assert result["errors"] == ["Insufficient stock: 7 available, 8 requested"]
    assert result["available_quantity"] == 7


@pytest.mark.django_db
def test_validate_collects_every_problem(ctx, warehouse, foreign_location):
    # when
    result = TransferService.validate(ctx, "abc", warehouse.id, foreign_location.id, 0)

    # then
    assert result["is_valid"] is False
    assert result["errors"] == [
        "Invalid variant_id: abc",
        "quantity must be greater than zero",
        "Destination location not found or inactive",
    ]
    assert result["available_quantity"] == 0


@pytest.mark.django_db
def test_validate_same_and_inactive_location(ctx, variant, warehouse):
    # given
    warehouse.is_active = False
    warehouse.save()

    # when
    result = TransferService.validate(ctx, variant.id, warehouse.id, warehouse.id, 1)

    # then
    assert result["errors"] == [
        "Source and destination locations cannot be the same",
        "Source location not found or inactive",
        "Destination location not found or inactive",
    ]


@pytest.mark.django_db
def test_validate_without_source_record(ctx, variant, warehouse, store):
    result = TransferService.validate(ctx, variant.id, warehouse.id, store.id, 1)

    assert result["errors"] == ["No stock recorded at source location"]


@pytest.mark.django_db
def test_malformed_transfer_ids_are_validation_errors(ctx, variant, warehouse, store):
    with pytest.raises(ValidationError):
        TransferService.create(ctx, variant.id, "main", store.id, 1)
    with pytest.raises(ValidationError):
        TransferService.complete(ctx, "TRF-1")
    with pytest.raises(ValidationError):
        TransferService.history(ctx, location_id="abc")
