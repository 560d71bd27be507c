"""
Upstream catalog clients (eSIM Go, Maya, Airalo).
"""

from models.base import Provider
from catalog_sync.providers.base import ProviderClient, CatalogFilters, CatalogPage
from catalog_sync.providers.esim_go import EsimGoClient
from catalog_sync.providers.maya import MayaClient
from catalog_sync.providers.airalo import AiraloClient

_CLIENTS = {
    Provider.ESIMGO.value: EsimGoClient,
    Provider.MAYA.value: MayaClient,
    Provider.AIRALO.value: AiraloClient,
}


def create_provider_client(provider: str, **kwargs) -> ProviderClient:
    """Build the client for a provider name; raises ConfigurationError on missing credentials"""
    try:
        client_class = _CLIENTS[provider.lower()]
    except KeyError:
        raise ValueError(f"Unknown provider: {provider}")
    return client_class(**kwargs)


__all__ = [
    "ProviderClient",
    "CatalogFilters",
    "CatalogPage",
    "EsimGoClient",
    "MayaClient",
    "AiraloClient",
    "create_provider_client",
]
