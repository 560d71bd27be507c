"""
Maya connectivity products client
"""

from typing import Dict, Optional
import logging

from core.config import settings
from core.exceptions import ConfigurationError
from models.base import Provider
from catalog_sync.providers.base import ProviderClient, CatalogFilters, CatalogPage

logger = logging.getLogger(__name__)


class MayaClient(ProviderClient):
    """
    Maya /connectivity/v1/account/products.

    The endpoint is not paginated; every call returns the whole product
    list (optionally filtered by country), so the catalog is one page.
    """

    provider = Provider.MAYA.value
    supports_groups = False

    def __init__(self, auth: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.MAYA_BASE_URL, **kwargs)
        self.auth = auth or settings.MAYA_AUTH
        if not self.auth:
            raise ConfigurationError("Maya credentials are not configured", context={"setting": "MAYA_AUTH"})

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": self.auth, "Content-Type": "application/json"}

    async def fetch_catalog_page(self, page: int, filters: Optional[CatalogFilters] = None) -> CatalogPage:
        params = {}
        if filters and filters.country_id:
            params["country"] = filters.country_id.upper()

        data = await self._request("GET", "/connectivity/v1/account/products", params=params)
        products = data.get("products", []) if isinstance(data, dict) else []

        logger.debug(f"Maya returned {len(products)} products")
        return CatalogPage(bundles=products, page=page, has_more=False, total_count=len(products))

    async def check_health(self) -> bool:
        page = await self.fetch_catalog_page(1)
        return bool(page.bundles)
