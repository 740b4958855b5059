"""
Domain availability heuristic.

A HEAD request to https://<domain>: a 2xx answer means the domain is
registered and serving; anything else (error status, timeout, DNS failure)
means it is *likely* available. This is approximate and only ever feeds the
small domain component of the priority score.
"""

import re
from typing import List, Optional

import httpx

from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.schemas import DomainAvailability, DomainCheck, OpportunitySuggestion

logger = get_logger(__name__)

MAX_ALTERNATIVES = 3
HEAD_TIMEOUT_SECONDS = 2.0

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def keyword_domain(keyword: str) -> str:
    """'London Food Tours' -> 'london-food-tours.com'"""
    return re.sub(r"\s+", "-", keyword.strip().lower()) + ".com"


def normalize_domain(domain: str) -> str:
    return _SCHEME_RE.sub("", domain.strip()).rstrip("/").lower()


def candidate_domains(suggestion: OpportunitySuggestion) -> List[str]:
    domains: List[str] = []
    if suggestion.suggested_domain:
        domains.append(suggestion.suggested_domain)
    domains.extend(suggestion.alternative_domains[:MAX_ALTERNATIVES])
    if not domains:
        domains.append(keyword_domain(suggestion.keyword))
    return domains


class DomainChecker:
    """
    Callable used by the validator.

    Usage:
        with DomainChecker() as checker:
            availability = checker(suggestion)
    """

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = HEAD_TIMEOUT_SECONDS):
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def is_likely_available(self, domain: str) -> bool:
        try:
            response = self.client.head(f"https://{normalize_domain(domain)}")
        except httpx.HTTPError:
            # No answer at all: most likely nothing registered there
            return True
        return not response.is_success

    def check(self, suggestion: OpportunitySuggestion) -> DomainAvailability:
        checked: List[DomainCheck] = []
        for domain in candidate_domains(suggestion):
            try:
                available = self.is_likely_available(domain)
            except Exception as e:
                # Malformed domain or unexpected client failure
                logger.debug("Domain check failed", domain=domain, error=str(e))
                available = False
            checked.append(DomainCheck(domain=domain, available=available))

        return DomainAvailability(
            primary_available=checked[0].available if checked else False,
            alternatives_available=sum(1 for c in checked[1:] if c.available),
            checked_domains=checked,
        )

    __call__ = check

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "DomainChecker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
