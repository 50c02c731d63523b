import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone as djtz

from ..config import SyncConfig
from ..errors import WebhookRejected
from ..models import WebhookEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-Iugu-Signature", "X-Signature")


@dataclass
class ReceiveResult:
    status_code: int
    created: bool = False
    duplicate: bool = False
    event: Optional[WebhookEvent] = None
    error: str = ""

    def as_body(self) -> dict:
        if self.status_code != 200:
            return {"ok": False, "error": self.error}
        return {"ok": True, "duplicate": self.duplicate}


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not secret:
        return True
    if not signature:
        return False
    expected = compute_signature(secret, raw_body).encode("ascii")
    return hmac.compare_digest(expected, signature.strip().lower().encode("utf-8"))


def compute_dedupe_key(event_name: str, entity_id: Optional[str], timestamp: str) -> str:
    return hashlib.sha256(f"{event_name}|{entity_id or ''}|{timestamp}".encode("utf-8")).hexdigest()


def parse_event(raw_body: bytes):
    """-> (event_name, entity_id, timestamp, payload); WebhookRejected(400) when malformed."""
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise WebhookRejected(400, "invalid json")
    if not isinstance(payload, dict):
        raise WebhookRejected(400, "payload must be a JSON object")

    event_name = payload.get("event_name") or payload.get("type")
    if not event_name or not isinstance(event_name, str):
        raise WebhookRejected(400, "event_name required")

    data = payload.get("data")
    if data is not None and not isinstance(data, dict):
        raise WebhookRejected(400, "data must be an object")
    data = data or {}
    entity_id = data.get("id") or data.get("invoice_id") or data.get("subscription_id")

    timestamp = payload.get("timestamp") or payload.get("created_at")
    if not timestamp:
        # No upstream timestamp: the body itself identifies the delivery.
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        timestamp = hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    return event_name, (str(entity_id) if entity_id else None), str(timestamp), payload


def _default_wakeup():
    from ..tasks import process_webhook_events_task

    process_webhook_events_task.delay()


def _wake(notify: Callable[[], None]) -> None:
    # Latency only: the beat-scheduled poll picks the event up if this is lost.
    try:
        notify()
    except Exception as e:
        logger.warning("Worker wake-up failed (event will be picked up by polling): %s", e)


def receive_webhook(
    raw_body: bytes,
    signature: Optional[str],
    config: SyncConfig,
    notify: Optional[Callable[[], None]] = None,
) -> ReceiveResult:
    """Validate, dedupe and enqueue one delivery. Never processes it inline."""
    try:
        if not verify_signature(raw_body, signature, config.webhook_secret):
            raise WebhookRejected(401, "invalid signature")
        event_name, entity_id, timestamp, payload = parse_event(raw_body)
    except WebhookRejected as e:
        logger.warning("Webhook rejected (%s): %s", e.status_code, e.reason)
        return ReceiveResult(status_code=e.status_code, error=e.reason)

    dedupe_key = compute_dedupe_key(event_name, entity_id, timestamp)
    try:
        with transaction.atomic():
            event = WebhookEvent.objects.create(
                event_name=event_name,
                entity_id=entity_id,
                payload=payload,
                dedupe_key=dedupe_key,
                status=WebhookEvent.PENDING,
                received_at=djtz.now(),
            )
    except IntegrityError as e:
        if WebhookEvent.objects.filter(dedupe_key=dedupe_key).exists():
            logger.info("Duplicate delivery %s (%s) ignored", event_name, dedupe_key[:12])
            return ReceiveResult(status_code=200, duplicate=True)
        logger.error("Storing webhook %s failed: %s", event_name, e)
        return ReceiveResult(status_code=500, error="storage failure")
    except DatabaseError as e:
        logger.error("Storing webhook %s failed: %s", event_name, e)
        return ReceiveResult(status_code=500, error="storage failure")

    transaction.on_commit(lambda: _wake(notify or _default_wakeup))
    logger.info("Webhook %s [%s] queued as event %s", event_name, entity_id or "-", event.pk)
    return ReceiveResult(status_code=200, created=True, event=event)
