"""
DataForSEO keyword data client.

Only the bulk Google Ads search volume endpoint is used. Requests are
throttled by a sliding-window limiter (DataForSEO allows ~12 live calls per
minute on the default plan) and split into chunks of 1000 keywords, the
endpoint's per-request maximum. Cost: ~$0.002 per keyword.
"""

from typing import Any, Dict, List, Optional

import httpx

from opportunity_engine.core.config import settings
from opportunity_engine.core.errors import ConfigurationError, UpstreamCallError
from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.core.rate_limit import SlidingWindowRateLimiter

logger = get_logger(__name__)

SEARCH_VOLUME_ENDPOINT = "/keywords_data/google_ads/search_volume/live"
MAX_KEYWORDS_PER_REQUEST = 1000
STATUS_OK = 20000


class DataForSEOClient:
    """
    Usage:
        with DataForSEOClient() as client:
            rows = client.get_bulk_search_volume(["london food tours"])
    """

    def __init__(
        self,
        login: Optional[str] = None,
        password: Optional[str] = None,
        base_url: Optional[str] = None,
        location_code: Optional[int] = None,
        language_code: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        timeout: float = 60.0,
    ):
        login = login or settings.DATAFORSEO_API_LOGIN
        password = password or settings.DATAFORSEO_API_PASSWORD
        if client is None and not (login and password):
            raise ConfigurationError("DATAFORSEO_API_LOGIN / DATAFORSEO_API_PASSWORD not set")

        self._owns_client = client is None
        self.client = client or httpx.Client(
            base_url=base_url or settings.DATAFORSEO_BASE_URL,
            auth=httpx.BasicAuth(login, password),
            timeout=timeout,
        )
        self.location_code = location_code or settings.DATAFORSEO_LOCATION_CODE
        self.language_code = language_code or settings.DATAFORSEO_LANGUAGE_CODE
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            settings.DATAFORSEO_RATE_LIMIT, settings.DATAFORSEO_RATE_WINDOW_SECONDS
        )

    def _post(self, endpoint: str, payload: List[Dict[str, Any]]) -> Dict[str, Any]:
        waited = self.rate_limiter.acquire()
        if waited:
            logger.info("DataForSEO rate limit wait", seconds=round(waited, 1))

        try:
            response = self.client.post(endpoint, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamCallError("dataforseo", f"request failed: {e}") from e

        if not response.is_success:
            raise UpstreamCallError(
                "dataforseo", f"HTTP {response.status_code} {response.reason_phrase}", response.status_code
            )

        data = response.json()
        if data.get("status_code") != STATUS_OK:
            raise UpstreamCallError("dataforseo", data.get("status_message") or "Unknown error", data.get("status_code"))
        return data

    def get_bulk_search_volume(self, keywords: List[str]) -> List[Dict[str, Any]]:
        """Raw result rows (keyword, search_volume, competition, cpc, monthly_searches...)."""
        rows: List[Dict[str, Any]] = []
        for start in range(0, len(keywords), MAX_KEYWORDS_PER_REQUEST):
            chunk = keywords[start : start + MAX_KEYWORDS_PER_REQUEST]
            data = self._post(
                SEARCH_VOLUME_ENDPOINT,
                [
                    {
                        "keywords": chunk,
                        "location_code": self.location_code,
                        "language_code": self.language_code,
                    }
                ],
            )
            tasks = data.get("tasks") or []
            task = tasks[0] if tasks else {}
            if task.get("status_code") not in (None, STATUS_OK):
                raise UpstreamCallError("dataforseo", task.get("status_message") or "Task failed", task.get("status_code"))
            rows.extend(task.get("result") or [])

        logger.debug("DataForSEO search volume", keywords=len(keywords), rows=len(rows))
        return rows

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "DataForSEOClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
