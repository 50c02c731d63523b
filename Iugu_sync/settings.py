from pathlib import Path
import os

from dotenv import load_dotenv

load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'insecure-dev-key')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS').split(",") if os.getenv('ALLOWED_HOSTS') else ['*']

# Application definition

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    # my apps
    'billing_sync',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'Iugu_sync.urls'

WSGI_APPLICATION = 'Iugu_sync.wsgi.application'

# Database
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.environ.get('POSTGRES_DB'),
        'USER': os.environ.get('POSTGRES_USER'),
        'PASSWORD': os.environ.get('POSTGRES_PASSWORD'),
        'HOST': os.environ.get('POSTGRES_HOST'),
        'PORT': os.environ.get('POSTGRES_PORT')
    },
}

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = False

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Logging

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "[%(asctime)s] %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "billing_sync": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# Celery / Brokers

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "cache+memory://")
CELERY_TASK_TIME_LIMIT = 60 * 60
CELERY_TASK_SOFT_TIME_LIMIT = 60 * 55
CELERY_TASK_TRACK_STARTED = True
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_BROKER_CONNECTION_MAX_RETRIES = 100
CELERY_BROKER_HEARTBEAT = 30
CELERY_BROKER_CONNECTION_TIMEOUT = 30

CELERY_TASK_ALWAYS_EAGER = os.getenv("CELERY_TASK_ALWAYS_EAGER", "False").lower() == "true"
CELERY_TASK_EAGER_PROPAGATES = True

# Iugu upstream

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

IUGU_API_TOKEN = os.getenv("IUGU_API_TOKEN", "")
IUGU_API_BASE_URL = os.getenv("IUGU_API_BASE_URL", "https://api.iugu.com/v1")
IUGU_WEBHOOK_SECRET = os.getenv("IUGU_WEBHOOK_SECRET", "")

IUGU_PAGE_SIZE = int(os.getenv("IUGU_PAGE_SIZE", "100"))
IUGU_MAX_PAGES = int(os.getenv("IUGU_MAX_PAGES", "1000"))
IUGU_INCREMENTAL_MAX_PAGES = int(os.getenv("IUGU_INCREMENTAL_MAX_PAGES", "10"))
IUGU_PAGE_PAUSE_SECONDS = float(os.getenv("IUGU_PAGE_PAUSE_SECONDS", "2.0"))
IUGU_MAX_ATTEMPTS = int(os.getenv("IUGU_MAX_ATTEMPTS", "3"))
IUGU_BACKOFF_BASE_SECONDS = float(os.getenv("IUGU_BACKOFF_BASE_SECONDS", "2.0"))
IUGU_BACKOFF_CAP_SECONDS = float(os.getenv("IUGU_BACKOFF_CAP_SECONDS", "30.0"))
IUGU_HTTP_TIMEOUT_SECONDS = float(os.getenv("IUGU_HTTP_TIMEOUT_SECONDS", "30"))
IUGU_MAX_CONSECUTIVE_PAGE_FAILURES = int(os.getenv("IUGU_MAX_CONSECUTIVE_PAGE_FAILURES", "10"))

# Checkpoints / workers

SYNC_CHECKPOINT_BACKEND = os.getenv("SYNC_CHECKPOINT_BACKEND", "db")  # "db" or "file"
SYNC_CHECKPOINT_DIR = os.getenv("SYNC_CHECKPOINT_DIR", str(BASE_DIR / "sync_checkpoints"))
SYNC_DEFAULT_LOOKBACK_MINUTES = int(os.getenv("SYNC_DEFAULT_LOOKBACK_MINUTES", "1440"))
SYNC_INTERVAL_SECONDS = int(os.getenv("SYNC_INTERVAL_SECONDS", str(60 * 15)))
SYNC_RESOURCES = os.getenv(
    "SYNC_RESOURCES", "invoices,customers,subscriptions,plans"
).split(",")

WORKER_BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "50"))
WORKER_POLL_SECONDS = float(os.getenv("WORKER_POLL_SECONDS", "5"))

CELERY_BEAT_SCHEDULE = {
    "billing-sync-poll-events": {
        "task": "billing_sync.process_webhook_events",
        "schedule": 30,
        "options": {"queue": "events"},
    },
    "billing-sync-process-staging": {
        "task": "billing_sync.process_staging",
        "schedule": 60,
        "options": {"queue": "sync"},
    },
    "billing-sync-incremental": {
        "task": "billing_sync.incremental_sync",
        "schedule": SYNC_INTERVAL_SECONDS,
        "options": {"queue": "sync"},
    },
}
