"""
eSIM Go catalogue client
"""

from typing import Dict, List, Optional
import logging

from core.config import settings
from core.exceptions import ConfigurationError
from models.base import Provider
from catalog_sync.providers.base import ProviderClient, CatalogFilters, CatalogPage

logger = logging.getLogger(__name__)


class EsimGoClient(ProviderClient):
    """
    eSIM Go v2.4 catalogue API.

    GET /catalogue?page=&perPage=&group=&countries= with X-API-Key auth.
    Bundles carry per-country regions and group names, so group syncs are
    supported.
    """

    provider = Provider.ESIMGO.value
    supports_groups = True

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.ESIM_GO_BASE_URL, **kwargs)
        self.api_key = api_key or settings.ESIM_GO_API_KEY
        if not self.api_key:
            raise ConfigurationError("eSIM Go API key is not configured", context={"setting": "ESIM_GO_API_KEY"})

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key, "Content-Type": "application/json"}

    async def fetch_catalog_page(self, page: int, filters: Optional[CatalogFilters] = None) -> CatalogPage:
        params = {"page": page, "perPage": self.page_size}
        if filters and filters.bundle_group:
            params["group"] = filters.bundle_group
        if filters and filters.country_id:
            params["countries"] = filters.country_id.upper()

        data = await self._request("GET", "/catalogue", params=params)

        if isinstance(data, list):
            bundles, page_count = data, None
        else:
            bundles = data.get("bundles", [])
            page_count = data.get("pageCount")

        if page_count is not None:
            has_more = page < int(page_count)
        else:
            has_more = len(bundles) >= self.page_size

        logger.debug(f"eSIM Go page {page}: {len(bundles)} bundles (has_more={has_more})")
        return CatalogPage(
            bundles=bundles,
            page=page,
            has_more=has_more,
            total_count=data.get("rows") if isinstance(data, dict) else None,
        )

    async def list_bundle_groups(self) -> List[str]:
        data = await self._request("GET", "/organisation/groups")
        groups = data.get("groups", []) if isinstance(data, dict) else data
        return [g.get("name") if isinstance(g, dict) else str(g) for g in groups if g]

    async def check_health(self) -> bool:
        page = await self.fetch_catalog_page(1)
        return bool(page.bundles)
