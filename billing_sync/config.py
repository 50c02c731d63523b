import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from django.conf import settings

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Profiles where a missing webhook secret only disables signature checks.
PERMISSIVE_ENVIRONMENTS = ("development", "local", "test")


def _setting(name: str, default=None):
    return getattr(settings, name, default)


@dataclass(frozen=True)
class SyncConfig:
    """Process-wide configuration, built once at startup and passed to each component."""

    environment: str = "development"
    api_token: str = ""
    api_base_url: str = "https://api.iugu.com/v1"
    webhook_secret: str = ""

    page_size: int = 100
    max_pages: int = 1000
    incremental_max_pages: int = 10
    page_pause_seconds: float = 2.0
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    backoff_cap_seconds: float = 30.0
    http_timeout_seconds: float = 30.0
    max_consecutive_page_failures: int = 10

    checkpoint_backend: str = "db"
    checkpoint_dir: str = "sync_checkpoints"
    default_lookback_minutes: int = 1440
    sync_interval_seconds: int = 900
    sync_resources: Tuple[str, ...] = ("invoices", "customers", "subscriptions", "plans")

    worker_batch_size: int = 50
    worker_poll_seconds: float = 5.0

    @classmethod
    def from_settings(cls) -> "SyncConfig":
        config = cls(
            environment=_setting("ENVIRONMENT", "development"),
            api_token=_setting("IUGU_API_TOKEN", "") or "",
            api_base_url=(_setting("IUGU_API_BASE_URL") or cls.api_base_url).rstrip("/"),
            webhook_secret=_setting("IUGU_WEBHOOK_SECRET", "") or "",
            page_size=_setting("IUGU_PAGE_SIZE", cls.page_size),
            max_pages=_setting("IUGU_MAX_PAGES", cls.max_pages),
            incremental_max_pages=_setting("IUGU_INCREMENTAL_MAX_PAGES", cls.incremental_max_pages),
            page_pause_seconds=_setting("IUGU_PAGE_PAUSE_SECONDS", cls.page_pause_seconds),
            max_attempts=_setting("IUGU_MAX_ATTEMPTS", cls.max_attempts),
            backoff_base_seconds=_setting("IUGU_BACKOFF_BASE_SECONDS", cls.backoff_base_seconds),
            backoff_cap_seconds=_setting("IUGU_BACKOFF_CAP_SECONDS", cls.backoff_cap_seconds),
            http_timeout_seconds=_setting("IUGU_HTTP_TIMEOUT_SECONDS", cls.http_timeout_seconds),
            max_consecutive_page_failures=_setting(
                "IUGU_MAX_CONSECUTIVE_PAGE_FAILURES", cls.max_consecutive_page_failures
            ),
            checkpoint_backend=_setting("SYNC_CHECKPOINT_BACKEND", cls.checkpoint_backend),
            checkpoint_dir=str(_setting("SYNC_CHECKPOINT_DIR", cls.checkpoint_dir)),
            default_lookback_minutes=_setting("SYNC_DEFAULT_LOOKBACK_MINUTES", cls.default_lookback_minutes),
            sync_interval_seconds=_setting("SYNC_INTERVAL_SECONDS", cls.sync_interval_seconds),
            sync_resources=tuple(
                r.strip() for r in _setting("SYNC_RESOURCES", cls.sync_resources) if r.strip()
            ),
            worker_batch_size=_setting("WORKER_BATCH_SIZE", cls.worker_batch_size),
            worker_poll_seconds=_setting("WORKER_POLL_SECONDS", cls.worker_poll_seconds),
        )
        config.validate()
        return config

    @property
    def signature_required(self) -> bool:
        return bool(self.webhook_secret)

    def validate(self) -> None:
        if self.checkpoint_backend not in ("db", "file"):
            raise ConfigurationError(
                f"SYNC_CHECKPOINT_BACKEND must be 'db' or 'file', got {self.checkpoint_backend!r}"
            )
        if self.page_size <= 0 or self.max_attempts <= 0:
            raise ConfigurationError("IUGU_PAGE_SIZE and IUGU_MAX_ATTEMPTS must be positive")
        if not self.webhook_secret:
            if self.environment not in PERMISSIVE_ENVIRONMENTS:
                raise ConfigurationError(
                    f"IUGU_WEBHOOK_SECRET is required when ENVIRONMENT={self.environment!r}"
                )
            logger.warning(
                "IUGU_WEBHOOK_SECRET not set (ENVIRONMENT=%s): webhook signatures are NOT checked",
                self.environment,
            )

    def require_upstream(self) -> "SyncConfig":
        if not self.api_token:
            raise ConfigurationError("Missing env var: IUGU_API_TOKEN")
        return self

    def with_overrides(self, **changes) -> "SyncConfig":
        return replace(self, **changes)


_config: Optional[SyncConfig] = None


def get_config() -> SyncConfig:
    """Process-level instance used by Celery tasks and views."""
    global _config
    if _config is None:
        _config = SyncConfig.from_settings()
    return _config
