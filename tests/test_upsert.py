from datetime import datetime, timezone

import pytest

from billing_sync.errors import UpsertError
from billing_sync.models import IuguCustomer, IuguInvoice, IuguInvoiceItem, UnroutedRecord
from billing_sync.services.upsert import (
    CREATED,
    STALE,
    UNCHANGED,
    UPDATED,
    upsert,
    upsert_generic,
    upsert_payload,
)

pytestmark = pytest.mark.django_db


def test_same_payload_twice_converges():
    record = {"id": "c1", "email": "a@example.com", "name": "Ana"}

    assert upsert_payload("customer", record) == CREATED
    assert upsert_payload("customer", record) == UNCHANGED
    assert IuguCustomer.objects.count() == 1


def test_later_payload_overwrites_fields():
    upsert_payload("customer", {"id": "c1", "email": "a@example.com"})
    assert upsert_payload("customer", {"id": "c1", "email": "a2@example.com"}) == UPDATED
    assert IuguCustomer.objects.get(pk="c1").email == "a2@example.com"


def test_null_fields_never_clear_stored_values():
    upsert("customer", "c1", {"email": "a@example.com", "name": "Ana"})
    upsert("customer", "c1", {"email": None, "name": "Ana Maria"})

    customer = IuguCustomer.objects.get(pk="c1")
    assert customer.email == "a@example.com"
    assert customer.name == "Ana Maria"


def test_older_revision_is_rejected_as_stale():
    newer = {"id": "c1", "email": "new@example.com", "updated_at": "2025-03-02T10:00:00Z"}
    older = {"id": "c1", "email": "old@example.com", "updated_at": "2025-03-01T10:00:00Z"}

    upsert_payload("customer", newer)
    assert upsert_payload("customer", older) == STALE

    customer = IuguCustomer.objects.get(pk="c1")
    assert customer.email == "new@example.com"
    assert customer.updated_at_iugu == datetime(2025, 3, 2, 10, tzinfo=timezone.utc)


def test_missing_natural_id_raises():
    with pytest.raises(UpsertError):
        upsert_payload("customer", {"email": "x@example.com"})


def test_non_object_payload_raises():
    with pytest.raises(UpsertError):
        upsert_payload("invoice", ["inv_1"])


def test_invoice_items_route_with_items_list():
    upsert_payload("invoice_items", {"invoice_id": "inv_1", "items": [{"id": "it_1"}, {"id": "it_2"}, {"price": 1}]})

    assert set(IuguInvoiceItem.objects.values_list("pk", flat=True)) == {"it_1", "it_2"}
    assert set(IuguInvoiceItem.objects.values_list("invoice_id", flat=True)) == {"inv_1"}


def test_single_invoice_item_needs_invoice_id():
    with pytest.raises(UpsertError):
        upsert_payload("invoice_items", {"id": "it_1"})


def test_stale_invoice_does_not_touch_items():
    upsert_payload("invoice", {"id": "inv_1", "updated_at": "2025-03-02T10:00:00Z"})

    outcome = upsert_payload(
        "invoice",
        {"id": "inv_1", "updated_at": "2025-03-01T10:00:00Z", "items": [{"id": "it_1"}]},
    )

    assert outcome == STALE
    assert not IuguInvoiceItem.objects.exists()


def test_invoice_money_and_dates_are_normalized():
    upsert_payload(
        "invoice",
        {"id": "inv_1", "total": "R$ 1.234,56", "paid_cents": 0, "due_date": "2025-04-10", "status": "paid"},
    )

    invoice = IuguInvoice.objects.get(pk="inv_1")
    assert invoice.total_cents == 123456
    assert invoice.paid_cents == 0
    assert str(invoice.due_date) == "2025-04-10"


def test_generic_sink_counts_repeats():
    upsert_generic({"id": "r1"}, "referrals.verified")
    upsert_generic({"id": "r1", "more": True}, "referrals.verified")

    record = UnroutedRecord.objects.get()
    assert record.hits == 2
    assert record.payload == {"id": "r1", "more": True}


def test_generic_sink_without_id_uses_payload_hash():
    upsert_generic({"foo": "bar"}, None)
    upsert_generic({"foo": "bar"}, None)

    record = UnroutedRecord.objects.get()
    assert record.kind == "unknown"
    assert len(record.natural_id) == 40
