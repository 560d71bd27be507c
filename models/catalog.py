from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, DateTime, Float, Text,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class CatalogProvider(Base):
    """
    Upstream provider, created lazily the first time a bundle references it.

    Names are stored lowercase ("esimgo", "maya", "airalo").
    """
    __tablename__ = "catalog_providers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    bundles = relationship("CatalogBundleRecord", back_populates="provider")


class CatalogBundleRecord(Base):
    """
    Canonical catalog bundle.

    Design:
    - Natural key is (provider_id, external_id); every sync upserts on it
    - is_active is written false on every upsert and flipped to true only
      after at least one country link has been persisted
    - group_name holds the first provider group; speed holds speed tags
    """
    __tablename__ = "catalog_bundles"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # Source tracking
    provider_id = Column(Integer, ForeignKey("catalog_providers.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)

    # Core fields
    name = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    data_amount_mb = Column(Float, nullable=True)
    data_amount_readable = Column(String(50), nullable=True)
    validity_days = Column(Integer, nullable=True)
    price_usd = Column(Float, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    unlimited = Column(Boolean, nullable=False, default=False)
    plan_type = Column(String(50), nullable=True)
    group_name = Column(String(200), nullable=True, index=True)
    region = Column(String(100), nullable=True, index=True)
    speed = Column(JSONType, nullable=True)

    # Lifecycle
    is_active = Column(Boolean, nullable=False, default=False, index=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    synced_at = Column(DateTime, nullable=True)

    provider = relationship("CatalogProvider", back_populates="bundles")
    countries = relationship("CatalogBundleCountry", back_populates="bundle")

    __table_args__ = (
        UniqueConstraint("provider_id", "external_id", name="uq_catalog_bundles_provider_external"),
        Index("idx_catalog_bundles_active_provider", "is_active", "provider_id"),
    )


class CatalogBundleCountry(Base):
    """Many-to-many link between a bundle and an ISO-3166 alpha-2 country"""
    __tablename__ = "catalog_bundle_countries"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    bundle_id = Column(BigInteger, ForeignKey("catalog_bundles.id", ondelete="CASCADE"), nullable=False)
    country_iso2 = Column(String(2), nullable=False, index=True)

    bundle = relationship("CatalogBundleRecord", back_populates="countries")

    __table_args__ = (
        UniqueConstraint("bundle_id", "country_iso2", name="uq_catalog_bundle_countries_bundle_country"),
    )
