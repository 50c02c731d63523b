import json
import logging

import pytest

from billing_sync.models import CheckpointRecord, StagingBatch
from billing_sync.services.backfill import (
    STOP_EMPTY_PAGE,
    STOP_MAX_PAGES,
    STOP_SHORT_PAGE,
    STOP_TOO_MANY_FAILURES,
    backfill_key,
    run_backfill,
)
from billing_sync.services.checkpoints import Checkpoint, DatabaseCheckpointStore, FileCheckpointStore

from fakes import FakeIuguClient, make_records, transient

pytestmark = pytest.mark.django_db


def _pages(*sizes, prefix="c"):
    pages, start = {}, 0
    for n, size in enumerate(sizes, start=1):
        pages[n] = make_records(prefix, size, start=start)
        start += size
    return pages


def test_full_run_stages_every_page(config, sleeps):
    client = FakeIuguClient({"customers": _pages(100, 100, 40)})
    store = DatabaseCheckpointStore()

    result = run_backfill("customers", config, client, store, sleep=sleeps.append)

    assert result.completed
    assert result.stop_reason == STOP_SHORT_PAGE
    assert result.pages_recorded == 3
    assert result.records_staged == 240
    assert result.skipped_pages == []
    batches = StagingBatch.objects.filter(entity="customers").order_by("page")
    assert [b.page for b in batches] == [1, 2, 3]
    assert [b.record_count for b in batches] == [100, 100, 40]
    assert all(b.status == StagingBatch.PENDING and b.run_id == result.run_id for b in batches)
    # Short page ends the run without asking for page 4.
    assert client.requested_pages("customers") == [1, 2, 3]

    checkpoint = store.load(backfill_key("customers"))
    assert checkpoint.completed and checkpoint.last_page == 3


def test_pause_between_pages(config, sleeps):
    client = FakeIuguClient({"customers": _pages(100, 100, 40)})

    run_backfill("customers", config.with_overrides(page_pause_seconds=2.0), client, DatabaseCheckpointStore(),
                 sleep=sleeps.append)

    assert sleeps == [2.0, 2.0]


def test_empty_page_ends_run(config, sleeps):
    client = FakeIuguClient({"customers": _pages(100)})

    result = run_backfill("customers", config, client, DatabaseCheckpointStore(), sleep=sleeps.append)

    assert result.stop_reason == STOP_EMPTY_PAGE
    assert result.records_staged == 100
    assert client.requested_pages("customers") == [1, 2]


def test_resume_continues_after_last_recorded_page(config, sleeps):
    store = DatabaseCheckpointStore()
    store.save(Checkpoint(backfill_key("customers"), last_page=2, run_id="customers-run1", completed=False))
    client = FakeIuguClient({"customers": _pages(100, 100, 40)})

    result = run_backfill("customers", config, client, store, sleep=sleeps.append)

    assert result.run_id == "customers-run1"
    assert result.start_page == 3
    assert client.requested_pages("customers") == [3]
    assert list(StagingBatch.objects.values_list("run_id", "page")) == [("customers-run1", 3)]


def test_completed_checkpoint_starts_new_run(config, sleeps):
    store = DatabaseCheckpointStore()
    store.save(Checkpoint(backfill_key("customers"), last_page=3, run_id="customers-old", completed=True))
    client = FakeIuguClient({"customers": _pages(10)})

    result = run_backfill("customers", config, client, store, sleep=sleeps.append)

    assert result.run_id != "customers-old"
    assert result.start_page == 1


def test_rerecording_a_page_does_not_duplicate_it(config, sleeps):
    store = DatabaseCheckpointStore()
    store.save(Checkpoint(backfill_key("customers"), last_page=0, run_id="customers-run1", completed=False))
    StagingBatch.objects.create(entity="customers", run_id="customers-run1", page=1, payload=[], record_count=0)
    client = FakeIuguClient({"customers": _pages(10)})

    run_backfill("customers", config, client, store, sleep=sleeps.append)

    assert StagingBatch.objects.filter(run_id="customers-run1", page=1).count() == 1


def test_persistent_page_failure_is_skipped_and_reported(config, sleeps, caplog):
    caplog.set_level(logging.ERROR, logger="billing_sync")
    pages = _pages(100, 100, 40)
    pages[2] = (transient(), transient(), transient())
    client = FakeIuguClient({"customers": pages})

    result = run_backfill("customers", config, client, DatabaseCheckpointStore(), sleep=sleeps.append)

    assert result.completed
    assert result.skipped_pages == [2]
    assert result.records_staged == 140
    assert client.requested_pages("customers") == [1, 2, 2, 2, 3]
    assert sorted(StagingBatch.objects.values_list("page", flat=True)) == [1, 3]
    assert "SKIPPED customers page 2" in caplog.text
    # Backoff between the three attempts only.
    assert sleeps == [1.0, 2.0]


def test_too_many_consecutive_failures_aborts_for_resume(config, sleeps):
    cfg = config.with_overrides(max_consecutive_page_failures=2, max_attempts=1)
    pages = _pages(100)
    pages[2] = transient()
    pages[3] = transient()
    client = FakeIuguClient({"customers": pages})
    store = DatabaseCheckpointStore()

    result = run_backfill("customers", cfg, client, store, sleep=sleeps.append)

    assert not result.completed
    assert result.stop_reason == STOP_TOO_MANY_FAILURES
    assert result.skipped_pages == [2, 3]
    checkpoint = store.load(backfill_key("customers"))
    assert checkpoint.last_page == 1 and not checkpoint.completed


def test_max_pages_bound(config, sleeps):
    client = FakeIuguClient({"customers": _pages(100, 100, 100, 100)})

    result = run_backfill("customers", config, client, DatabaseCheckpointStore(), sleep=sleeps.append, max_pages=2)

    assert result.stop_reason == STOP_MAX_PAGES
    assert result.completed
    assert client.requested_pages("customers") == [1, 2]


def test_unknown_resource_is_refused(config):
    with pytest.raises(ValueError):
        run_backfill("widgets", config, FakeIuguClient({}), DatabaseCheckpointStore())


def test_file_checkpoint_store(config, sleeps, tmp_path):
    store = FileCheckpointStore(tmp_path)
    client = FakeIuguClient({"invoices": _pages(100, 5, prefix="i")})

    result = run_backfill("invoices", config, client, store, sleep=sleeps.append)

    document = json.loads((tmp_path / "invoices_backfill_last_sync.json").read_text())
    assert document["entityName"] == "invoices_backfill"
    assert document["runId"] == result.run_id
    assert document["lastPage"] == 2
    assert document["completed"] is True
    assert not CheckpointRecord.objects.exists()
    assert store.load("invoices_backfill").last_page == 2


def test_file_checkpoint_store_treats_corrupt_file_as_absent(tmp_path):
    (tmp_path / "customers_last_sync.json").write_text("{broken")
    assert FileCheckpointStore(tmp_path).load("customers") is None
