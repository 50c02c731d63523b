import logging
from datetime import timedelta
from typing import List, Optional, Sequence

from django.db import transaction
from django.utils import timezone as djtz

from ..models import StagingBatch, WebhookEvent

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
FAILED = "failed"


def claim(queryset, limit: int, order_by: Sequence[str]) -> List:
    """
    Atomically move up to `limit` pending rows to 'processing' and return them.
    Rows locked by a concurrent claimer are skipped, so no row is handed out twice.
    """
    if limit <= 0:
        return []
    with transaction.atomic():
        units = list(
            queryset.filter(status=PENDING)
            .order_by(*order_by)
            .select_for_update(skip_locked=True)[:limit]
        )
        if not units:
            return []
        ids = [u.pk for u in units]
        claimed_at = djtz.now()
        queryset.model.objects.filter(pk__in=ids).update(status=PROCESSING, claimed_at=claimed_at)
    for unit in units:
        unit.status = PROCESSING
        unit.claimed_at = claimed_at
    return units


def claim_events(limit: int) -> List[WebhookEvent]:
    return claim(WebhookEvent.objects.all(), limit, ("received_at", "id"))


def claim_staging_batches(limit: int, entity: Optional[str] = None) -> List[StagingBatch]:
    qs = StagingBatch.objects.all()
    if entity:
        qs = qs.filter(entity=entity)
    return claim(qs, limit, ("created_at", "id"))


def finish(unit, status: str, error: Optional[str] = None, **extra) -> None:
    """
    processing -> terminal state. A no-op unless this unit still holds the claim it was
    handed; a row requeued by requeue_stuck and claimed again belongs to the new worker.
    """
    type(unit).objects.filter(pk=unit.pk, status=PROCESSING, claimed_at=unit.claimed_at).update(
        status=status,
        error=(error or "")[:1000] or None,
        processed_at=djtz.now(),
        **extra,
    )
    unit.status = status


def mark_success(unit, **extra) -> None:
    status = StagingBatch.DONE if isinstance(unit, StagingBatch) else WebhookEvent.SUCCESS
    finish(unit, status, **extra)


def mark_failed(unit, error: str, **extra) -> None:
    finish(unit, FAILED, error=error, **extra)


def requeue_failed(model, ids: Optional[Sequence[int]] = None) -> int:
    """Operator action: reset failed units to pending so a worker claims them again."""
    qs = model.objects.filter(status=FAILED)
    if ids:
        qs = qs.filter(pk__in=ids)
    count = qs.update(status=PENDING, error=None, processed_at=None, claimed_at=None)
    logger.info("Requeued %s failed %s row(s)", count, model._meta.db_table)
    return count


def requeue_stuck(model, older_than_minutes: int, ids: Optional[Sequence[int]] = None) -> int:
    """
    Operator action: reset units left in 'processing' by a worker that died mid-batch.
    Only claims older than `older_than_minutes` are touched.
    """
    cutoff = djtz.now() - timedelta(minutes=older_than_minutes)
    qs = model.objects.filter(status=PROCESSING, claimed_at__lt=cutoff)
    if ids:
        qs = qs.filter(pk__in=ids)
    count = qs.update(status=PENDING, claimed_at=None)
    if count:
        logger.warning(
            "Requeued %s %s row(s) stuck in processing for over %s minute(s)",
            count, model._meta.db_table, older_than_minutes,
        )
    return count
