"""HTTP client for the external license provider feed."""

import logging
import math
from typing import Any, ClassVar

import httpx

from licence_admin.config import get_settings
from licence_admin.exceptions import ExternalSyncError, TransientInfrastructureError
from licence_admin.providers.base import BaseLicenseProvider, ProviderPage

logger = logging.getLogger(__name__)

LICENSES_ENDPOINT = "/api/v1/licenses"


class ExternalLicenseApiProvider(BaseLicenseProvider):
    """Paginated, read-only license feed authenticated with an API key."""

    _http_client: ClassVar[httpx.AsyncClient | None] = None

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        page_size: int | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.provider_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.provider_api_key
        self.page_size = page_size or settings.provider_page_size
        self.timeout = timeout or settings.provider_timeout_seconds

    @classmethod
    def _get_http_client(cls, timeout: float) -> httpx.AsyncClient:
        """Get or create the shared HTTP client for connection pooling."""
        if cls._http_client is None or cls._http_client.is_closed:
            cls._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return cls._http_client

    @classmethod
    async def close_client(cls) -> None:
        """Close the shared HTTP client. Call on application shutdown."""
        if cls._http_client and not cls._http_client.is_closed:
            await cls._http_client.aclose()
            cls._http_client = None

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "Accept": "application/json"}

    async def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        client = self._get_http_client(self.timeout)
        try:
            response = await client.get(
                f"{self.base_url}{LICENSES_ENDPOINT}",
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientInfrastructureError("Provider request timed out") from e
        except httpx.TransportError as e:
            raise TransientInfrastructureError("Provider connection failed") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientInfrastructureError(
                f"Provider returned HTTP {response.status_code}",
                {"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise ExternalSyncError(
                f"Provider returned HTTP {response.status_code}",
                {"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalSyncError("Provider returned invalid JSON") from e
        if not isinstance(body, dict):
            raise ExternalSyncError("Provider response is not an object")
        return body

    async def test_connection(self) -> bool:
        """Fetch a single record to verify credentials and reachability."""
        try:
            await self._get({"page": 1, "limit": 1})
            return True
        except (TransientInfrastructureError, ExternalSyncError) as e:
            logger.warning(f"Provider connection test failed: {e.message}")
            return False

    async def fetch_page(self, page: int) -> ProviderPage:
        """Fetch one page from the provider."""
        body = await self._get({"page": page, "limit": self.page_size})

        records = body.get("data") or []
        if not isinstance(records, list):
            raise ExternalSyncError("Provider response data is not a list")

        meta = body.get("meta") or {}
        total_pages = meta.get("totalPages")
        if total_pages is None and meta.get("total") is not None:
            total_pages = max(1, math.ceil(int(meta["total"]) / self.page_size))

        logger.debug(f"Fetched provider page {page} with {len(records)} records")
        return ProviderPage(
            records=records,
            page=page,
            total_pages=int(total_pages) if total_pages is not None else None,
        )
