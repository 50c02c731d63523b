import hashlib
import json
import logging
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.db.models import F

from ..errors import UpsertError
from ..models import (
    IuguAccount,
    IuguCharge,
    IuguChargeback,
    IuguCustomer,
    IuguInvoice,
    IuguInvoiceItem,
    IuguPaymentMethod,
    IuguPlan,
    IuguSubscription,
    IuguTransfer,
    UnroutedRecord,
)
from . import mappers

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
STALE = "stale"

ENTITY_MODELS = {
    "customer": IuguCustomer,
    "invoice": IuguInvoice,
    "invoice_items": IuguInvoiceItem,
    "subscription": IuguSubscription,
    "plan": IuguPlan,
    "transfer": IuguTransfer,
    "charge": IuguCharge,
    "chargeback": IuguChargeback,
    "payment_method": IuguPaymentMethod,
    "account": IuguAccount,
}

FIELD_MAPPERS = {
    "customer": mappers.customer_to_fields,
    "invoice": mappers.invoice_to_fields,
    "invoice_items": mappers.invoice_item_to_fields,
    "subscription": mappers.subscription_to_fields,
    "plan": mappers.plan_to_fields,
    "transfer": mappers.transfer_to_fields,
    "charge": mappers.charge_to_fields,
    "chargeback": mappers.chargeback_to_fields,
    "payment_method": mappers.payment_method_to_fields,
    "account": mappers.account_to_fields,
}


def upsert(entity_type: str, natural_id, fields: Dict[str, Any]) -> str:
    """
    Merge-on-conflict write keyed by the upstream id.

    Non-null incoming fields overwrite stored values, nulls never clear them. A write whose
    upstream updated_at is older than the stored one is rejected as stale.
    """
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise UpsertError(f"Unknown entity type: {entity_type}")
    if natural_id in (None, ""):
        raise UpsertError(f"{entity_type} payload has no id")
    natural_id = str(natural_id)

    incoming = {k: v for k, v in fields.items() if v is not None and k != "id"}

    with transaction.atomic():
        obj = model.objects.select_for_update().filter(pk=natural_id).first()
        if obj is None:
            try:
                with transaction.atomic():
                    model.objects.create(pk=natural_id, **incoming)
                return CREATED
            except IntegrityError as e:
                # Lost the insert race to a concurrent worker; merge into its row.
                obj = model.objects.select_for_update().filter(pk=natural_id).first()
                if obj is None:
                    raise UpsertError(f"{entity_type} {natural_id}: {e}") from e

        stored_rev = obj.updated_at_iugu
        incoming_rev = incoming.get("updated_at_iugu")
        if stored_rev and incoming_rev and incoming_rev < stored_rev:
            logger.warning(
                "Stale %s %s ignored (incoming updated_at %s < stored %s)",
                entity_type, natural_id, incoming_rev.isoformat(), stored_rev.isoformat(),
            )
            return STALE

        changed = [name for name, value in incoming.items() if getattr(obj, name) != value]
        if not changed:
            return UNCHANGED
        for name in changed:
            setattr(obj, name, incoming[name])
        obj.save(update_fields=changed + ["updated_at"])
        return UPDATED


def upsert_invoice_items(invoice_id, items) -> int:
    applied = 0
    for item in items or []:
        if not isinstance(item, dict):
            continue
        if not item.get("id"):
            logger.warning("Invoice %s has an item without id; skipped", invoice_id)
            continue
        upsert("invoice_items", item["id"], mappers.invoice_item_to_fields(item, invoice_id))
        applied += 1
    return applied


def _fallback_id(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:40]


def upsert_generic(payload: Any, event_name: Optional[str] = None) -> str:
    """Fallback sink for event names without a dedicated table; always logged."""
    kind = (event_name or "").split(".", 1)[0] or "unknown"
    natural_id = None
    if isinstance(payload, dict):
        natural_id = payload.get("id")
    natural_id = str(natural_id) if natural_id else _fallback_id(payload)

    logger.warning("Unmapped event %r stored as generic %s:%s", event_name, kind, natural_id)
    with transaction.atomic():
        record, created = UnroutedRecord.objects.select_for_update().get_or_create(
            kind=kind,
            natural_id=natural_id,
            defaults={"payload": payload, "event_name": event_name or "", "hits": 1},
        )
        if not created:
            UnroutedRecord.objects.filter(pk=record.pk).update(
                payload=payload, event_name=event_name or record.event_name, hits=F("hits") + 1
            )
    return CREATED if created else UPDATED


def upsert_payload(route: str, record: Any, event_name: Optional[str] = None) -> str:
    """Map a raw upstream record for the given route and apply it."""
    if route == "generic":
        return upsert_generic(record, event_name)
    if not isinstance(record, dict):
        raise UpsertError(f"{route} payload must be an object, got {type(record).__name__}")

    if route == "invoice_items":
        if isinstance(record.get("items"), list):
            invoice_id = record.get("invoice_id") or record.get("id")
            upsert_invoice_items(invoice_id, record["items"])
            return UPDATED
        if not record.get("invoice_id"):
            raise UpsertError(f"invoice item {record.get('id')} has no invoice_id")
        return upsert(route, record.get("id"), mappers.invoice_item_to_fields(record))

    mapper = FIELD_MAPPERS.get(route)
    if mapper is None:
        raise UpsertError(f"No mapper for route {route}")
    outcome = upsert(route, record.get("id"), mapper(record))

    if route == "invoice" and outcome != STALE and isinstance(record.get("items"), list):
        upsert_invoice_items(record["id"], record["items"])
    return outcome
