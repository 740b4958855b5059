"""
Holibob product discovery (GraphQL) used as the inventory feasibility check.

Requests carry X-API-Key / X-Partner-Id headers. When an API secret is
configured every request is also signed: X-Holibob-Signature is the hex
HMAC-SHA256 of timestamp + body, with the timestamp sent as X-Holibob-Date.

Transport failures and 5xx responses are retried with exponential backoff
(2s, 4s, ...); 4xx responses and GraphQL errors are not retried.
"""

import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, Optional

import httpx

from opportunity_engine.core.config import settings
from opportunity_engine.core.errors import ConfigurationError, UpstreamCallError
from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.core.typing import utc_now
from opportunity_engine.schemas import InventoryFilter, InventoryProduct, InventoryResult

logger = get_logger(__name__)

PRODUCT_LIST_QUERY = """
query ProductList($filter: ProductFilterInput, $first: Int, $after: String) {
  productList(filter: $filter, first: $first, after: $after) {
    nodes {
      id
      name
      categoryList {
        nodes {
          id
          name
        }
      }
    }
    totalCount
  }
}
"""


def sign_request(secret: str, timestamp: str, body: str) -> str:
    return hmac.new(secret.encode(), f"{timestamp}{body}".encode(), hashlib.sha256).hexdigest()


def parse_product(node: Dict[str, Any]) -> InventoryProduct:
    categories = [c.get("name") for c in (node.get("categoryList") or {}).get("nodes") or [] if c.get("name")]
    return InventoryProduct(
        id=str(node.get("id") or ""),
        name=node.get("name") or "",
        category=node.get("category") or None,
        categories=categories,
    )


class HolibobClient:
    """
    InventoryFeasibilityGateway over the Holibob partner API.

    Usage:
        with HolibobClient() as holibob:
            result = holibob.discover(InventoryFilter(free_text="London", search_term="Food Tours"))
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        partner_id: Optional[str] = None,
        api_secret: Optional[str] = None,
        retries: int = 3,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_url = api_url or settings.HOLIBOB_API_URL
        self.api_key = api_key or settings.HOLIBOB_API_KEY
        self.partner_id = partner_id or settings.HOLIBOB_PARTNER_ID
        self.api_secret = api_secret if api_secret is not None else settings.HOLIBOB_API_SECRET
        if not (self.api_key and self.partner_id):
            raise ConfigurationError("HOLIBOB_API_KEY / HOLIBOB_PARTNER_ID not set")

        self.retries = max(1, retries)
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=settings.HOLIBOB_TIMEOUT_SECONDS)
        self._sleep = sleep

    def _headers(self, body: str) -> Dict[str, str]:
        headers = {
            "X-API-Key": self.api_key or "",
            "X-Partner-Id": self.partner_id or "",
            "Content-Type": "application/json",
        }
        if self.api_secret:
            timestamp = utc_now().isoformat()
            headers["X-Holibob-Date"] = timestamp
            headers["X-Holibob-Signature"] = sign_request(self.api_secret, timestamp, body)
        return headers

    def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = json.dumps({"query": query, "variables": variables or {}})
        # Replaced by the first failed attempt (retries >= 1)
        last_error = UpstreamCallError("holibob", "no request attempted")

        for attempt in range(1, self.retries + 1):
            try:
                response = self.client.post(self.api_url, content=body, headers=self._headers(body))
            except httpx.HTTPError as e:
                last_error = UpstreamCallError("holibob", f"request failed: {e}")
            else:
                if 400 <= response.status_code < 500:
                    raise UpstreamCallError("holibob", f"HTTP {response.status_code}", response.status_code)
                if response.is_success:
                    payload = response.json()
                    if payload.get("errors"):
                        message = "; ".join(e.get("message", "unknown") for e in payload["errors"])
                        raise UpstreamCallError("holibob", f"GraphQL error: {message}")
                    return payload.get("data") or {}
                last_error = UpstreamCallError("holibob", f"HTTP {response.status_code}", response.status_code)

            if attempt < self.retries:
                delay = 2 ** attempt
                logger.warning("Holibob request failed, retrying", attempt=attempt, delay=delay, error=str(last_error))
                self._sleep(delay)

        raise last_error

    def discover(self, filter: InventoryFilter, page_size: int = 10) -> InventoryResult:
        variables = {
            "filter": {
                key: value
                for key, value in {
                    "freeText": filter.free_text,
                    "searchTerm": filter.search_term,
                    "currency": filter.currency,
                }.items()
                if value
            },
            "first": page_size,
        }
        data = self.execute(PRODUCT_LIST_QUERY, variables)
        product_list = data.get("productList") or {}
        products = [parse_product(node) for node in product_list.get("nodes") or []]
        return InventoryResult(products=products, total_count=product_list.get("totalCount") or len(products))

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "HolibobClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
