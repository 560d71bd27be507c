"""
Base provider client with retry, backoff and circuit breaker.

Provides:
- Exponential backoff retry for timeouts, network errors, 429 and 5xx
- Circuit breaker pattern to stop hammering a failing provider
- Typed errors for authentication (401/403) and not-found (404)
- Page iteration over a provider catalog
"""

import httpx
import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional
from datetime import datetime, timedelta
from pydantic import BaseModel, Field
from core.config import settings
from core.exceptions import (
    ProviderError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


class CatalogFilters(BaseModel):
    """Optional scope for a catalog fetch"""
    bundle_group: Optional[str] = None
    country_id: Optional[str] = None


class CatalogPage(BaseModel):
    """One page of raw provider records"""
    bundles: List[Dict[str, Any]] = Field(default_factory=list)
    page: int = 1
    has_more: bool = False
    total_count: Optional[int] = None


class ProviderClient:
    """
    Base class for upstream catalog clients.

    Subclasses implement fetch_catalog_page() and check_health(); the base
    owns the httpx.AsyncClient and the resilience policy.

    Attributes:
        max_retries: Maximum number of attempts per request (default: 3)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        timeout: Request timeout in seconds (default: 30.0)
        circuit_breaker_threshold: Failures before circuit opens (default: 5)
        circuit_breaker_timeout: Seconds before circuit reset (default: 60)
    """

    provider: str = ""
    supports_groups: bool = False

    def __init__(
        self,
        base_url: str,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries if max_retries is not None else settings.PROVIDER_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.PROVIDER_RETRY_DELAY_SECONDS
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.page_size = page_size or settings.PROVIDER_PAGE_SIZE
        self._client = http_client

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = 60  # seconds

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Catalog API
    # ------------------------------------------------------------------

    async def fetch_catalog_page(self, page: int, filters: Optional[CatalogFilters] = None) -> CatalogPage:
        raise NotImplementedError

    async def check_health(self) -> bool:
        """True when the provider answered with a non-empty catalog"""
        raise NotImplementedError

    async def list_bundle_groups(self) -> List[str]:
        return []

    async def iter_catalog_pages(self, filters: Optional[CatalogFilters] = None) -> AsyncIterator[CatalogPage]:
        """Yield catalog pages in provider order until has_more is false"""
        page = 1
        while True:
            logger.info(f"Fetching {self.provider} catalog page {page}")
            result = await self.fetch_catalog_page(page, filters)
            yield result
            if not result.has_more or not result.bundles:
                break
            page += 1

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info(f"Circuit breaker reset for {self.provider}")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for {self.provider}. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _headers_async(self) -> Dict[str, str]:
        return self._headers()

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Make an HTTP request with retry logic and return the decoded JSON body.

        Raises:
            AuthenticationError: 401/403
            ResourceNotFoundError: 404
            RateLimitError: 429 after max retries
            NetworkError: 5xx, timeouts or transport errors after max retries
            ProviderError: circuit open, invalid JSON, other HTTP errors
        """
        url = f"{self.base_url}{path}"

        if self._is_circuit_open():
            raise ProviderError(
                f"Circuit breaker is open for {self.provider}",
                context={
                    "provider": self.provider,
                    "api_url": url,
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        request_headers = headers if headers is not None else await self._headers_async()

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")

                response = await self.client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=request_headers,
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as e:
                if attempt < self.max_retries - 1:
                    delay = self._backoff(attempt)
                    logger.warning(f"{self.provider} request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Request timeout after {self.max_retries} retries",
                    context={
                        "provider": self.provider,
                        "api_url": url,
                        "timeout": self.timeout,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )
            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    delay = self._backoff(attempt)
                    logger.warning(f"{self.provider} network error. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Network error after {self.max_retries} retries",
                    context={"provider": self.provider, "api_url": url, "retry_count": attempt + 1},
                    original_exception=e
                )

            status = response.status_code

            if status in (401, 403):
                self._record_failure()
                raise AuthenticationError(
                    f"Authentication failed for {url}",
                    context={"status_code": status, "api_url": url, "provider": self.provider}
                )

            if status == 404:
                self._record_failure()
                raise ResourceNotFoundError(
                    f"Resource not found: {url}",
                    context={"status_code": 404, "api_url": url, "provider": self.provider}
                )

            if status == 429:
                retry_after = self._retry_after(response, attempt)
                if attempt < self.max_retries - 1:
                    logger.warning(f"{self.provider} rate limited. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                self._record_failure()
                raise RateLimitError(
                    f"Rate limit exceeded for {url}",
                    context={
                        "status_code": 429,
                        "api_url": url,
                        "provider": self.provider,
                        "retry_count": attempt + 1
                    },
                    retry_after=int(retry_after)
                )

            if status >= 500:
                if attempt < self.max_retries - 1:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"{self.provider} server error {status}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Server error after {self.max_retries} retries",
                    context={
                        "status_code": status,
                        "api_url": url,
                        "provider": self.provider,
                        "retry_count": attempt + 1,
                        "response_body": response.text[:500]
                    }
                )

            if status >= 400:
                self._record_failure()
                raise ProviderError(
                    f"HTTP {status} from {url}",
                    context={
                        "status_code": status,
                        "api_url": url,
                        "provider": self.provider,
                        "response_body": response.text[:500]
                    }
                )

            self._record_success()
            try:
                return response.json()
            except ValueError as e:
                raise ProviderError(
                    "Failed to parse JSON response",
                    context={"api_url": url, "provider": self.provider, "response_body": response.text[:500]},
                    original_exception=e
                )

        raise NetworkError(
            "Max retries exceeded",
            context={"api_url": url, "provider": self.provider}
        )

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        header = response.headers.get("Retry-After")
        try:
            return float(header) if header is not None else self._backoff(attempt)
        except ValueError:
            return self._backoff(attempt)
