import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from django.db import transaction
from django.utils import timezone as djtz

from ..config import SyncConfig
from ..errors import PageFetchFailed
from ..models import StagingBatch
from .checkpoints import Checkpoint
from .iugu_client import RESOURCE_ENDPOINTS, fetch_page_with_retry

logger = logging.getLogger(__name__)

STOP_SHORT_PAGE = "short_page"
STOP_EMPTY_PAGE = "empty_page"
STOP_MAX_PAGES = "max_pages"
STOP_TOO_MANY_FAILURES = "too_many_failures"


@dataclass
class BackfillResult:
    resource: str
    run_id: str
    start_page: int
    pages_recorded: int = 0
    records_staged: int = 0
    skipped_pages: List[int] = field(default_factory=list)
    last_page: Optional[int] = None
    completed: bool = False
    stop_reason: str = ""

    def as_dict(self) -> dict:
        return asdict(self)


def backfill_key(resource: str) -> str:
    return f"{resource}_backfill"


def new_run_id(resource: str, now: Optional[datetime] = None) -> str:
    return f"{resource}-{(now or djtz.now()):%Y%m%dT%H%M%S%fZ}"


def record_page(resource: str, run_id: str, page: int, records: list, store):
    """
    Stage one page and advance the run's checkpoint. With the database store both commit
    together, so a batch never becomes claimable without its checkpoint.
    """
    checkpoint = Checkpoint(backfill_key(resource), last_page=page, run_id=run_id, completed=False)
    with transaction.atomic():
        batch, created = StagingBatch.objects.get_or_create(
            entity=resource,
            run_id=run_id,
            page=page,
            defaults={"payload": records, "record_count": len(records), "status": StagingBatch.PENDING},
        )
        if store.transactional:
            store.save(checkpoint)
    if not store.transactional:
        store.save(checkpoint)
    if not created:
        logger.info("%s run %s page %s already staged (batch %s)", resource, run_id, page, batch.pk)
    return batch, created


def run_backfill(
    resource: str,
    config: SyncConfig,
    client,
    store,
    sleep: Callable[[float], None] = time.sleep,
    resume: bool = True,
    max_pages: Optional[int] = None,
    on_page: Optional[Callable[[int, int, BackfillResult], None]] = None,
) -> BackfillResult:
    """
    Page through one upstream resource into the staging table.

    Resumes an unfinished run after its last recorded page. A page that keeps failing
    is logged and skipped; the skip is listed in the result.
    """
    if resource not in RESOURCE_ENDPOINTS:
        raise ValueError(f"Unknown resource: {resource}")

    key = backfill_key(resource)
    checkpoint = store.load(key) if resume else None
    if checkpoint and checkpoint.run_id and not checkpoint.completed:
        run_id = checkpoint.run_id
        page = (checkpoint.last_page or 0) + 1
        logger.info("Resuming %s backfill run %s at page %s", resource, run_id, page)
    else:
        run_id = new_run_id(resource)
        page = 1
        logger.info("Starting %s backfill run %s", resource, run_id)

    page_limit = max_pages or config.max_pages
    result = BackfillResult(resource=resource, run_id=run_id, start_page=page,
                            last_page=checkpoint.last_page if checkpoint and checkpoint.run_id == run_id else None)
    consecutive_failures = 0

    while True:
        if page > page_limit:
            logger.warning("%s backfill hit the page bound (%s)", resource, page_limit)
            result.stop_reason = STOP_MAX_PAGES
            break

        try:
            records = fetch_page_with_retry(client, resource, page, config, sleep)
        except PageFetchFailed as e:
            logger.error("SKIPPED %s page %s: %s", resource, page, e)
            result.skipped_pages.append(page)
            consecutive_failures += 1
            if consecutive_failures >= config.max_consecutive_page_failures:
                logger.error(
                    "%s backfill aborted after %s consecutive page failures; resume later",
                    resource, consecutive_failures,
                )
                result.stop_reason = STOP_TOO_MANY_FAILURES
                return result
            page += 1
            continue

        consecutive_failures = 0
        if not records:
            result.stop_reason = STOP_EMPTY_PAGE
            break

        record_page(resource, run_id, page, records, store)
        result.pages_recorded += 1
        result.records_staged += len(records)
        result.last_page = page
        if on_page:
            on_page(page, len(records), result)

        if len(records) < config.page_size:
            result.stop_reason = STOP_SHORT_PAGE
            break

        page += 1
        if config.page_pause_seconds:
            sleep(config.page_pause_seconds)

    store.save(Checkpoint(key, last_page=result.last_page, run_id=run_id, completed=True))
    result.completed = True
    logger.info(
        "%s backfill run %s complete: %s records in %s pages (%s), skipped pages: %s",
        resource, run_id, result.records_staged, result.pages_recorded, result.stop_reason,
        result.skipped_pages or "none",
    )
    return result
