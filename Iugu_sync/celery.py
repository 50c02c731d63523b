import os
from celery import Celery
from django.conf import settings

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "Iugu_sync.settings")

celery_app = Celery("Iugu_sync")
celery_app.config_from_object("django.conf:settings", namespace="CELERY")
celery_app.conf.task_routes = {
    "billing_sync.process_webhook_events": {"queue": "events"},
    "billing_sync.process_staging": {"queue": "sync"},
    "billing_sync.incremental_sync": {"queue": "sync"},
    "billing_sync.backfill_entity": {"queue": "backfill"},
    "billing_sync.backfill_all": {"queue": "backfill"},
}
celery_app.autodiscover_tasks(lambda: settings.INSTALLED_APPS)
