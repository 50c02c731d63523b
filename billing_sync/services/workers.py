import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from .dispatcher import claim_events, claim_staging_batches, mark_failed, mark_success
from .router import GENERIC, RESOURCE_ROUTES, dispatch_event
from .upsert import upsert_payload

logger = logging.getLogger(__name__)


@dataclass
class WorkerSummary:
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    fallback: int = 0

    def add(self, other: "WorkerSummary") -> "WorkerSummary":
        self.claimed += other.claimed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.fallback += other.fallback
        return self

    def as_dict(self) -> dict:
        return asdict(self)


def process_pending_events(limit: int) -> WorkerSummary:
    """claim -> normalize/route -> upsert -> success | failed, one event at a time."""
    summary = WorkerSummary()
    events = claim_events(limit)
    summary.claimed = len(events)

    for event in events:
        try:
            route = dispatch_event(event)
        except Exception as e:
            logger.error("Event %s (%s) failed: %s", event.pk, event.event_name, e)
            mark_failed(event, str(e))
            summary.failed += 1
            continue
        mark_success(event, route=route)
        summary.succeeded += 1
        if route == GENERIC:
            summary.fallback += 1

    if events:
        logger.info(
            "Events: claimed=%s ok=%s failed=%s generic=%s",
            summary.claimed, summary.succeeded, summary.failed, summary.fallback,
        )
    return summary


def process_staging_batches(limit: int, entity: Optional[str] = None) -> WorkerSummary:
    """
    Apply claimed staging batches record by record. One bad record fails its batch
    (with the offending ids in the error) without stopping the other records.
    """
    summary = WorkerSummary()
    batches = claim_staging_batches(limit, entity)
    summary.claimed = len(batches)

    for batch in batches:
        route = RESOURCE_ROUTES.get(batch.entity)
        errors = []
        if route is None:
            errors.append(f"unknown entity {batch.entity!r}")
        else:
            for record in batch.payload or []:
                try:
                    upsert_payload(route, record)
                except Exception as e:
                    rid = record.get("id") if isinstance(record, dict) else None
                    errors.append(f"{rid or '?'}: {e}")

        if errors:
            logger.error(
                "Staging batch %s (%s page %s) had %s failing record(s)",
                batch.pk, batch.entity, batch.page, len(errors),
            )
            mark_failed(batch, "; ".join(errors))
            summary.failed += 1
        else:
            mark_success(batch)
            summary.succeeded += 1

    return summary


def run_worker_loop(
    process: Callable[[int], WorkerSummary],
    limit: int,
    poll_seconds: float,
    max_rounds: Optional[int] = None,
    stop_when_idle: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    on_round: Optional[Callable[[WorkerSummary, WorkerSummary], None]] = None,
) -> WorkerSummary:
    """
    poll -> claim -> process -> mark. Polling is what guarantees progress; wake-ups only
    shorten the wait. Sleeps only after a round that claimed nothing.
    """
    total = WorkerSummary()
    rounds = 0
    while max_rounds is None or rounds < max_rounds:
        rounds += 1
        summary = process(limit)
        total.add(summary)
        if on_round:
            on_round(summary, total)
        if summary.claimed == 0:
            if stop_when_idle:
                break
            sleep(poll_seconds)
    return total
