import logging
from types import SimpleNamespace

import pytest
from django.db import DatabaseError

from inventory.models import AuditEntry
from inventory.services import audit_service
from inventory.services.audit_service import AuditService


@pytest.mark.django_db
def test_record_is_written_after_commit(ctx, django_capture_on_commit_callbacks):
    # when
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        AuditService.record(ctx, "location.created", "location", 7, {"name": "Depot"})

    # then
    assert len(callbacks) == 1
    assert not AuditEntry.objects.exists()

    # when
    callbacks[0]()

    # then
    [entry] = AuditService.list(ctx, entity="location", entity_id=7)
    assert entry.action == "location.created"
    assert entry.actor_id == ctx.actor_id
    assert entry.details == {"name": "Depot"}


@pytest.mark.django_db
def test_record_disabled(ctx, settings, django_capture_on_commit_callbacks):
    # given
    settings.INVENTORY_ENGINE = {**settings.INVENTORY_ENGINE, "AUDIT_ENABLED": False}

    # when
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        AuditService.record(ctx, "location.created", "location", 7)

    # then
    assert callbacks == []
    assert not AuditEntry.objects.exists()


@pytest.mark.django_db
def test_failed_write_is_logged_not_raised(ctx, monkeypatch, caplog, django_capture_on_commit_callbacks):
    # given
    def _broken_create(**kwargs):
        raise DatabaseError("audit table locked")

    monkeypatch.setattr(
        audit_service, "AuditEntry", SimpleNamespace(objects=SimpleNamespace(create=_broken_create))
    )
    caplog.set_level(logging.ERROR, logger="inventory")

    # when
    with django_capture_on_commit_callbacks(execute=True):
        AuditService.record(ctx, "reservation.reserved", "order", "O1")

    # then
    assert "Audit write failed for reservation.reserved order:O1" in caplog.text


@pytest.mark.django_db
def test_list_is_tenant_scoped(ctx, other_ctx, django_capture_on_commit_callbacks):
    # given
    with django_capture_on_commit_callbacks(execute=True):
        AuditService.record(ctx, "transfer.created", "transfer", 1)
        AuditService.record(other_ctx, "transfer.created", "transfer", 1)

    # when
    entries = AuditService.list(ctx)

    # then
    assert [e.tenant_id for e in entries] == [ctx.tenant_id]
