import logging
from typing import Any

from .upsert import upsert_payload

logger = logging.getLogger(__name__)

GENERIC = "generic"

# Event-name prefix -> upsert route. Matched longest prefix first.
EVENT_PREFIX_ROUTES = {
    "customer_payment_method.": "payment_method",
    "payment_method.": "payment_method",
    "customer.": "customer",
    "invoice_items.": "invoice_items",
    "invoice_item.": "invoice_items",
    "invoice.": "invoice",
    "subscription.": "subscription",
    "plan.": "plan",
    "transfer.": "transfer",
    "withdraw_request.": "transfer",
    "charge.": "charge",
    "chargeback.": "chargeback",
}
_PREFIXES = sorted(EVENT_PREFIX_ROUTES, key=len, reverse=True)

# Backfill / incremental resource name -> upsert route.
RESOURCE_ROUTES = {
    "customers": "customer",
    "invoices": "invoice",
    "subscriptions": "subscription",
    "plans": "plan",
    "transfers": "transfer",
    "charges": "charge",
    "chargebacks": "chargeback",
    "payment_methods": "payment_method",
    "accounts": "account",
}


def route_for(event_name: str | None) -> str:
    name = (event_name or "").strip().lower()
    for prefix in _PREFIXES:
        if name.startswith(prefix):
            return EVENT_PREFIX_ROUTES[prefix]
    return GENERIC


def extract_entity(payload: Any) -> Any:
    """
    Webhook bodies arrive either as an envelope ({"event_name": ..., "data": {...}})
    or as the bare entity. Both normalize to the entity object.
    """
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict) and "id" not in payload:
            return data
    return payload


def dispatch_event(event) -> str:
    """Apply one claimed WebhookEvent to its target table; returns the route used."""
    route = route_for(event.event_name)
    entity = extract_entity(event.payload)
    if route == GENERIC:
        logger.warning("No route for event %r (id=%s); using generic upsert", event.event_name, event.pk)
    upsert_payload(route, entity, event_name=event.event_name)
    return route
