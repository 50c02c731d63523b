import pytest

from billing_sync.config import SyncConfig


@pytest.fixture
def config():
    return SyncConfig(
        environment="test",
        api_token="test-token",
        webhook_secret="test-secret",
        page_size=100,
        max_pages=1000,
        incremental_max_pages=10,
        page_pause_seconds=0.0,
        max_attempts=3,
        backoff_base_seconds=1.0,
        backoff_cap_seconds=30.0,
        max_consecutive_page_failures=10,
    )


@pytest.fixture
def sleeps():
    """Pass sleeps.append where a sleep callable is expected; the list records the delays."""
    return []
