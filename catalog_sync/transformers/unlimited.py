"""
Unlimited-plan detection strategies.

Providers signal unlimited plans differently. eSIM Go and Airalo carry a
structural signal (a flag or a quota sentinel); Maya only has the product
name. Each transformer is handed the strategy that matches its provider.
"""

from typing import Optional


class UnlimitedDetectionStrategy:
    """Base strategy"""

    name = "base"

    def is_unlimited(
        self,
        flag: Optional[bool] = None,
        quota: Optional[float] = None,
        name: Optional[str] = None,
    ) -> bool:
        raise NotImplementedError


class ExplicitUnlimitedStrategy(UnlimitedDetectionStrategy):
    """
    Structural detection: explicit boolean flag or quota sentinel.

    Args:
        sentinel: Quota value that means unlimited (eSIM Go uses -1)
        missing_quota_is_unlimited: Treat an absent quota as unlimited
            (Airalo sends amount=null for unlimited packages)
    """

    name = "explicit"

    def __init__(self, sentinel: Optional[float] = -1, missing_quota_is_unlimited: bool = False):
        self.sentinel = sentinel
        self.missing_quota_is_unlimited = missing_quota_is_unlimited

    def is_unlimited(self, flag=None, quota=None, name=None) -> bool:
        if flag is True:
            return True
        if quota is None:
            return self.missing_quota_is_unlimited
        return self.sentinel is not None and quota == self.sentinel


class NameHeuristicUnlimitedStrategy(UnlimitedDetectionStrategy):
    """Heuristic detection: "unlimited" appears in the bundle name (case-insensitive)"""

    name = "name_heuristic"

    def __init__(self, keyword: str = "unlimited"):
        self.keyword = keyword.lower()

    def is_unlimited(self, flag=None, quota=None, name=None) -> bool:
        return bool(name) and self.keyword in name.lower()
