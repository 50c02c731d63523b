import os
import tempfile

from .settings import *  # noqa: F401,F403

# File-backed so worker threads share one database; IMMEDIATE serializes concurrent claims.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.path.join(tempfile.gettempdir(), "iugu_sync.sqlite3"),
        "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
        "TEST": {"NAME": os.path.join(tempfile.gettempdir(), "test_iugu_sync.sqlite3")},
    },
}

ENVIRONMENT = "test"
IUGU_API_TOKEN = "test-token"
IUGU_WEBHOOK_SECRET = "test-secret"
IUGU_PAGE_PAUSE_SECONDS = 0.0
IUGU_BACKOFF_BASE_SECONDS = 0.0

CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"
CELERY_TASK_ALWAYS_EAGER = False

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "loggers": {"billing_sync": {"level": "DEBUG", "propagate": True}},
}
