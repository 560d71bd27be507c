"""
Pydantic schemas for raw provider bundles and the canonical catalog bundle
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Union
from datetime import datetime


# ============================================================================
# Raw provider records
# ============================================================================

class EsimGoCountry(BaseModel):
    """Country entry inside an eSIM Go catalogue bundle"""
    name: Optional[str] = None
    region: Optional[str] = None
    iso: Optional[str] = None


class EsimGoRawBundle(BaseModel):
    """Single bundle from the eSIM Go /catalogue endpoint"""
    name: Optional[str] = None
    description: Optional[str] = None
    groups: List[str] = Field(default_factory=list)
    countries: List[EsimGoCountry] = Field(default_factory=list)
    dataAmount: Optional[float] = None
    duration: Optional[int] = None
    speed: Optional[List[str]] = None
    autostart: Optional[bool] = None
    unlimited: Optional[bool] = None
    roamingEnabled: Optional[List[EsimGoCountry]] = None
    price: Optional[float] = None
    billingType: Optional[str] = None

    class Config:
        extra = "ignore"


class MayaRawBundle(BaseModel):
    """Single product from the Maya /account/products endpoint"""
    uid: Optional[str] = None
    name: Optional[str] = None
    countries_enabled: List[str] = Field(default_factory=list)
    data_quota_mb: Optional[float] = None
    data_quota_bytes: Optional[float] = None
    validity_days: Optional[int] = None
    policy_id: Optional[int] = None
    policy_name: Optional[str] = None
    wholesale_price_usd: Optional[Union[str, float]] = None

    class Config:
        extra = "ignore"


class AiraloRawPackage(BaseModel):
    """
    Airalo package flattened out of the operator tree.

    The Airalo client emits one record per package with the operator's
    countries copied in, so the transformer sees a flat shape.
    """
    id: Optional[str] = None
    title: Optional[str] = None
    operator: Optional[str] = None
    amount: Optional[float] = None
    day: Optional[int] = None
    price: Optional[float] = None
    is_unlimited: Optional[bool] = None
    countries: List[str] = Field(default_factory=list)
    short_info: Optional[str] = None
    type: Optional[str] = None

    class Config:
        extra = "ignore"


# ============================================================================
# Canonical bundle
# ============================================================================

class CatalogBundle(BaseModel):
    """
    Provider-agnostic bundle ready for persistence.

    Ensures:
    - Price and validity are strictly positive
    - At least one ISO-3166 alpha-2 country
    - Currency is a 3-letter upper-case code
    """

    provider: str = Field(..., min_length=1, max_length=50)
    external_id: str = Field(..., min_length=1, max_length=255)

    name: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None

    validity_days: int = Field(..., gt=0)
    data_amount_mb: Optional[float] = None
    data_amount_readable: str
    is_unlimited: bool = False

    price: float = Field(..., gt=0)
    currency: str = Field("USD", min_length=3, max_length=3)

    countries: List[str] = Field(..., min_length=1)
    region: Optional[str] = None
    groups: List[str] = Field(default_factory=list)
    speed: List[str] = Field(default_factory=list)
    plan_type: str = "fixed"

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    synced_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("provider")
    @classmethod
    def lowercase_provider(cls, v):
        return v.strip().lower()

    @field_validator("currency")
    @classmethod
    def uppercase_currency(cls, v):
        return v.upper()

    @field_validator("countries")
    @classmethod
    def dedupe_countries(cls, v):
        """Keep first occurrence order, drop repeats"""
        seen = []
        for code in v:
            if code not in seen:
                seen.append(code)
        return seen

    @property
    def group_name(self) -> Optional[str]:
        """First provider group; stored on the bundle row"""
        return self.groups[0] if self.groups else None
