# billing_sync/services/iugu_client.py
import logging
import time
from typing import Any, Callable, List

import requests

from ..config import SyncConfig
from ..errors import PageFetchFailed, UpstreamError

logger = logging.getLogger(__name__)

RESOURCE_ENDPOINTS = {
    "customers": "/customers",
    "invoices": "/invoices",
    "subscriptions": "/subscriptions",
    "plans": "/plans",
    "transfers": "/transfers",
    "charges": "/charges",
    "chargebacks": "/chargebacks",
    "payment_methods": "/payment_methods",
    "accounts": "/accounts",
}


def _items(body: Any) -> List[dict]:
    # Endpoints answer with a bare list or an {"items": [...]} / {"data": [...]} wrapper.
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ("items", "data"):
            if isinstance(body.get(key), list):
                return body[key]
    return []


class IuguClient:
    def __init__(self, config: SyncConfig, session: requests.Session | None = None):
        config.require_upstream()
        self.base_url = config.api_base_url.rstrip("/")
        self.timeout = config.http_timeout_seconds
        self.session = session or requests.Session()
        # Basic auth: API token as the username, empty password.
        self.session.auth = (config.api_token, "")
        self.session.headers.update({"Accept": "application/json"})

    def list_page(self, resource: str, page: int, per_page: int) -> List[dict]:
        endpoint = RESOURCE_ENDPOINTS.get(resource)
        if endpoint is None:
            raise ValueError(f"Unknown resource: {resource}")

        try:
            resp = self.session.get(
                f"{self.base_url}{endpoint}",
                params={"page": page, "per_page": per_page},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"GET {endpoint} page {page}: {e}", transient=True) from e

        status = resp.status_code
        if status == 429 or status >= 500:
            raise UpstreamError(f"GET {endpoint} page {page}: HTTP {status}", status=status, transient=True)
        if status >= 400:
            raise UpstreamError(
                f"GET {endpoint} page {page}: HTTP {status} {resp.text[:200]}", status=status, transient=False
            )
        try:
            return _items(resp.json())
        except ValueError as e:
            raise UpstreamError(f"GET {endpoint} page {page}: invalid JSON", status=status, transient=True) from e


def backoff_delay(attempt: int, config: SyncConfig) -> float:
    return min(config.backoff_base_seconds * (2 ** (attempt - 1)), config.backoff_cap_seconds)


def fetch_page_with_retry(
    client: IuguClient,
    resource: str,
    page: int,
    config: SyncConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> List[dict]:
    """
    At most config.max_attempts requests for one page, exponential backoff in between.
    Non-transient errors (4xx other than 429) are not retried.
    """
    last_error: Exception | None = None
    attempt = 0
    for attempt in range(1, config.max_attempts + 1):
        try:
            return client.list_page(resource, page, config.page_size)
        except UpstreamError as e:
            last_error = e
            if not e.transient:
                break
            if attempt < config.max_attempts:
                delay = backoff_delay(attempt, config)
                logger.warning(
                    "%s page %s attempt %s/%s failed (%s); retrying in %.1fs",
                    resource, page, attempt, config.max_attempts, e, delay,
                )
                sleep(delay)
    raise PageFetchFailed(resource, page, attempt, last_error)
