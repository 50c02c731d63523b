# billing_sync/tasks.py
from celery import shared_task, group

from .config import get_config
from .services.backfill import run_backfill
from .services.checkpoints import get_checkpoint_store
from .services.incremental import sync_all
from .services.iugu_client import IuguClient
from .services.workers import process_pending_events, process_staging_batches, run_worker_loop


@shared_task(bind=True, name="billing_sync.process_webhook_events")
def process_webhook_events_task(self, limit=None):
    config = get_config()
    summary = run_worker_loop(
        process_pending_events,
        limit or config.worker_batch_size,
        config.worker_poll_seconds,
        stop_when_idle=True,
    )
    return summary.as_dict()


@shared_task(bind=True, name="billing_sync.process_staging")
def process_staging_task(self, limit=None, entity=None):
    config = get_config()
    summary = run_worker_loop(
        lambda n: process_staging_batches(n, entity),
        limit or config.worker_batch_size,
        config.worker_poll_seconds,
        stop_when_idle=True,
    )
    return summary.as_dict()


@shared_task(bind=True, name="billing_sync.incremental_sync")
def incremental_sync_task(self, resources=None):
    config = get_config()
    cycle = sync_all(
        resources or config.sync_resources,
        config,
        IuguClient(config),
        get_checkpoint_store(config),
    )
    return {
        "results": {name: r.as_dict() for name, r in cycle.results.items()},
        "errors": cycle.errors,
    }


@shared_task(bind=True, name="billing_sync.backfill_entity")
def backfill_entity_task(self, resource, resume=True, max_pages=None):
    config = get_config()
    result = run_backfill(
        resource,
        config,
        IuguClient(config),
        get_checkpoint_store(config),
        resume=resume,
        max_pages=max_pages,
    )
    # Let the staging worker start on what was just recorded.
    process_staging_task.delay(entity=resource)
    return result.as_dict()


@shared_task(bind=True, name="billing_sync.backfill_all")
def backfill_all_task(self, resources=None):
    g = group([backfill_entity_task.si(resource) for resource in (resources or get_config().sync_resources)])
    res = g.apply_async()
    return {"group_id": res.id}
