import pytest
from django.utils import timezone

from billing_sync import tasks
from billing_sync.models import IuguCustomer, StagingBatch, WebhookEvent

from fakes import FakeIuguClient, make_records

pytestmark = pytest.mark.django_db


def test_process_webhook_events_task_drains_queue():
    WebhookEvent.objects.create(
        event_name="customer.created", payload={"data": {"id": "c1"}}, dedupe_key="k1", received_at=timezone.now()
    )

    result = tasks.process_webhook_events_task.apply().get()

    assert result["claimed"] == 1 and result["succeeded"] == 1
    assert IuguCustomer.objects.filter(pk="c1").exists()


def test_process_staging_task_filters_entity():
    StagingBatch.objects.create(entity="customers", run_id="r1", page=1, payload=[{"id": "c1"}], record_count=1)
    StagingBatch.objects.create(entity="plans", run_id="r1", page=1, payload=[{"id": "p1"}], record_count=1)

    result = tasks.process_staging_task.apply(kwargs={"entity": "plans"}).get()

    assert result["succeeded"] == 1
    assert StagingBatch.objects.get(entity="customers").status == StagingBatch.PENDING


def test_incremental_sync_task_reports_errors_per_entity(monkeypatch):
    client = FakeIuguClient({"customers": {1: [{"id": "c1"}]}})
    monkeypatch.setattr(tasks, "IuguClient", lambda config: client)

    result = tasks.incremental_sync_task.apply(kwargs={"resources": ["customers", "widgets"]}).get()

    assert result["results"]["customers"]["applied"] == 1
    assert "widgets" in result["errors"]


def test_backfill_entity_task_stages_and_wakes_staging_worker(monkeypatch):
    client = FakeIuguClient({"plans": {1: make_records("p", 3)}})
    monkeypatch.setattr(tasks, "IuguClient", lambda config: client)
    woken = []
    monkeypatch.setattr(tasks.process_staging_task, "delay", lambda **kw: woken.append(kw))

    result = tasks.backfill_entity_task.apply(args=["plans"]).get()

    assert result["records_staged"] == 3 and result["completed"]
    assert woken == [{"entity": "plans"}]
