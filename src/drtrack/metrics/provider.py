"""Domain Rating metrics provider client.

The concrete provider is the SEO Intelligence API on RapidAPI. A fetch is
retried with linearly increasing backoff (1s, 2s, ...) before it surfaces as
``UpstreamError``.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from drtrack.config import Settings, get_settings
from drtrack.errors import UpstreamError

logger = structlog.get_logger()

_SCHEME_RE = re.compile(r"^https?://")


def normalize_domain(url: str) -> str:
    """Lower-case and strip scheme, ``www.``, path and port.

    >>> normalize_domain("https://WWW.Example.com:8080/blog/")
    'example.com'
    """
    domain = _SCHEME_RE.sub("", url.strip().lower())
    domain = domain.removeprefix("www.")
    domain = domain.split("/", 1)[0]
    return domain.split(":", 1)[0]


@dataclass(frozen=True)
class DomainMetrics:
    domain: str
    metric_value: int
    backlinks: int | None = None
    referring_domains: int | None = None


class MetricsProvider(ABC):
    """Source of Domain Rating values. May fail transiently."""

    name = "base"

    @abstractmethod
    async def fetch(self, normalized: str) -> DomainMetrics:
        """Fetch current metrics. Raises UpstreamError once retries are exhausted."""


def _first_present(payload: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return int(value)
    return None


def parse_metrics(domain: str, payload: dict[str, Any]) -> DomainMetrics:
    """Map an API payload to DomainMetrics. A missing rating reads as 0."""
    rating = payload.get("domain_rating")
    return DomainMetrics(
        domain=domain,
        metric_value=int(rating) if rating is not None else 0,
        backlinks=_first_present(payload, "backlinks", "total_backlinks"),
        referring_domains=_first_present(payload, "referring_domains", "ref_domains"),
    )


class SeoIntelligenceProvider(MetricsProvider):
    """RapidAPI SEO Intelligence client using httpx."""

    name = "karmalabs"

    def __init__(
        self,
        api_key: str,
        host: str = "seo-intelligence.p.rapidapi.com",
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            msg = "RapidAPI key is not configured"
            raise ValueError(msg)
        if max_attempts < 1:
            msg = f"max_attempts must be >= 1, got {max_attempts}"
            raise ValueError(msg)
        self.api_key = api_key
        self.host = host
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SeoIntelligenceProvider:
        settings = settings or get_settings()
        return cls(
            api_key=settings.rapidapi_key,
            host=settings.rapidapi_host,
            max_attempts=settings.metrics_max_attempts,
            retry_delay=settings.metrics_retry_delay_seconds,
            timeout=settings.metrics_timeout_seconds,
        )

    async def _request(self, client: httpx.AsyncClient, domain: str) -> dict[str, Any]:
        response = await client.get(
            f"https://{self.host}/check-dr-ar",
            params={"domain": domain},
            headers={"x-rapidapi-key": self.api_key, "x-rapidapi-host": self.host},
        )
        response.raise_for_status()
        return response.json()

    async def _fetch_with(self, client: httpx.AsyncClient, normalized: str) -> DomainMetrics:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                payload = await self._request(client, normalized)
                return parse_metrics(normalized, payload)
            except (httpx.HTTPError, ValueError, TypeError) as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                logger.warning("metrics_fetch_retry", domain=normalized, attempt=attempt, error=str(exc))
                await asyncio.sleep(self.retry_delay * attempt)

        logger.error("metrics_fetch_failed", domain=normalized, attempts=self.max_attempts, error=str(last_error))
        msg = f"Metrics provider failed for {normalized} after {self.max_attempts} attempts"
        raise UpstreamError(msg) from last_error

    async def fetch(self, normalized: str) -> DomainMetrics:
        if self._client is not None:
            return await self._fetch_with(self._client, normalized)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._fetch_with(client, normalized)
