"""
Airalo partner API client
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
import asyncio
import logging

from core.config import settings
from core.exceptions import AuthenticationError, ConfigurationError
from models.base import Provider
from catalog_sync.providers.base import ProviderClient, CatalogFilters, CatalogPage

logger = logging.getLogger(__name__)


def flatten_packages(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Flatten Airalo's country -> operator -> package tree.

    Each package becomes one record carrying its operator's title and the
    operator's country codes (falling back to the item's country_code).
    """
    flat = []
    for item in items:
        for operator in item.get("operators") or []:
            countries = [
                c.get("country_code")
                for c in operator.get("countries") or []
                if c.get("country_code")
            ]
            if not countries and item.get("country_code"):
                countries = [item["country_code"]]

            for package in operator.get("packages") or []:
                flat.append({
                    "id": str(package["id"]) if package.get("id") is not None else None,
                    "title": package.get("title"),
                    "operator": operator.get("title"),
                    "amount": package.get("amount"),
                    "day": package.get("day"),
                    "price": package.get("price"),
                    "is_unlimited": package.get("is_unlimited"),
                    "countries": countries,
                    "short_info": package.get("short_info"),
                    "type": package.get("type"),
                })
    return flat


class AiraloClient(ProviderClient):
    """
    Airalo /v2 partner API with client-credentials OAuth.

    Access tokens are fetched lazily and cached until shortly before expiry.
    """

    provider = Provider.AIRALO.value
    supports_groups = False

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs
    ):
        super().__init__(base_url or settings.AIRALO_BASE_URL, **kwargs)
        self.client_id = client_id or settings.AIRALO_CLIENT_ID
        self.client_secret = client_secret or settings.AIRALO_CLIENT_SECRET
        if not self.client_id or not self.client_secret:
            raise ConfigurationError(
                "Airalo credentials are not configured",
                context={"setting": "AIRALO_CLIENT_ID, AIRALO_CLIENT_SECRET"}
            )

        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._token_lock = asyncio.Lock()

    async def _get_access_token(self) -> str:
        async with self._token_lock:
            if self._access_token and self._token_expires_at and datetime.utcnow() < self._token_expires_at:
                return self._access_token

            data = await self._request(
                "POST",
                "/v2/token",
                json={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                },
                headers={"Accept": "application/json"},
            )
            token_data = data.get("data", data) if isinstance(data, dict) else {}
            token = token_data.get("access_token")
            if not token:
                raise AuthenticationError(
                    "Airalo token response did not include an access token",
                    context={"provider": self.provider}
                )

            expires_in = int(token_data.get("expires_in", 3600))
            self._access_token = token
            self._token_expires_at = datetime.utcnow() + timedelta(seconds=max(expires_in - 60, 0))
            logger.info("Airalo access token refreshed")
            return token

    async def _headers_async(self) -> Dict[str, str]:
        token = await self._get_access_token()
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def fetch_catalog_page(self, page: int, filters: Optional[CatalogFilters] = None) -> CatalogPage:
        params: Dict[str, Any] = {"page": page, "limit": self.page_size}
        if filters and filters.country_id:
            params["filter[country]"] = filters.country_id.upper()

        data = await self._request("GET", "/v2/packages", params=params)
        items = data.get("data", []) if isinstance(data, dict) else []
        meta = data.get("meta", {}) if isinstance(data, dict) else {}

        last_page = meta.get("last_page")
        if last_page is not None:
            has_more = page < int(last_page)
        else:
            has_more = len(items) >= self.page_size

        packages = flatten_packages(items)
        logger.debug(f"Airalo page {page}: {len(items)} items, {len(packages)} packages")
        return CatalogPage(bundles=packages, page=page, has_more=has_more, total_count=meta.get("total"))

    async def check_health(self) -> bool:
        page = await self.fetch_catalog_page(1)
        return bool(page.bundles)
