"""
Transform raw provider bundles into canonical CatalogBundle records
"""

from typing import Any, Dict, Iterable, List, Optional, Type
from datetime import datetime
from pydantic import BaseModel, Field, ValidationError
import logging

from core.exceptions import BundleRejectedError
from models.base import Provider
from schemas.bundle import (
    AiraloRawPackage,
    CatalogBundle,
    EsimGoRawBundle,
    MayaRawBundle,
)
from catalog_sync.transformers.countries import normalize_countries
from catalog_sync.transformers.data_amount import format_data_amount
from catalog_sync.transformers.regions import primary_region, region_for
from catalog_sync.transformers.unlimited import (
    ExplicitUnlimitedStrategy,
    NameHeuristicUnlimitedStrategy,
    UnlimitedDetectionStrategy,
)

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class TransformContext(BaseModel):
    """Per-run values shared by every bundle of a page"""
    currency: str = "USD"
    synced_at: datetime = Field(default_factory=datetime.utcnow)


class BundleTransformer:
    """
    Validate and normalize one provider's raw bundles.

    Handles:
    - Parsing into the provider's raw model
    - Required field, price, duration and country checks
    - Unlimited detection through a strategy object
    - Region and readable data amount derivation

    transform() is pure: no I/O, rejects return None and log the reason.
    """

    provider: str = ""
    raw_model: Type[BaseModel] = BaseModel
    unlimited_strategy: UnlimitedDetectionStrategy = ExplicitUnlimitedStrategy()

    def transform(self, raw: Any, context: Optional[TransformContext] = None) -> Optional[CatalogBundle]:
        context = context or TransformContext()

        try:
            parsed = raw if isinstance(raw, self.raw_model) else self.raw_model.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                f"Skipping {self.provider} bundle: payload failed validation ({e.error_count()} errors)",
                extra={"provider": self.provider}
            )
            return None

        try:
            return self._build(parsed, context)
        except BundleRejectedError as e:
            logger.warning(
                f"Skipping {self.provider} bundle {e.context.get('bundle')}: {e.message}",
                extra={"provider": self.provider, "reason": e.message}
            )
            return None
        except ValidationError as e:
            logger.warning(
                f"Skipping {self.provider} bundle: canonical validation failed ({e.error_count()} errors)",
                extra={"provider": self.provider}
            )
            return None

    def transform_all(self, raws: Iterable[Any], context: Optional[TransformContext] = None) -> List[CatalogBundle]:
        """Transform a page of raw records; a single bad record never aborts the page"""
        context = context or TransformContext()
        accepted: List[CatalogBundle] = []
        total = 0

        for raw in raws:
            total += 1
            try:
                bundle = self.transform(raw, context)
            except Exception as e:
                logger.error(f"Unexpected error transforming {self.provider} bundle: {e}", exc_info=True)
                continue
            if bundle is not None:
                accepted.append(bundle)

        logger.info(
            f"Transformed {len(accepted)} valid bundles out of {total} total ({total - len(accepted)} rejected)",
            extra={"provider": self.provider}
        )
        return accepted

    def _build(self, parsed: BaseModel, context: TransformContext) -> CatalogBundle:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    @staticmethod
    def _reject(reason: str, bundle_ref: Any, **details) -> None:
        raise BundleRejectedError(reason, context={"bundle": bundle_ref, **details})

    def _check_required(self, bundle_ref: Any, **fields) -> None:
        missing = [k for k, v in fields.items() if v is None or v == ""]
        if missing:
            self._reject("missing required fields", bundle_ref, missing=", ".join(missing))

    def _check_price(self, price: Any, bundle_ref: Any) -> float:
        try:
            value = float(price)
        except (TypeError, ValueError):
            self._reject("invalid price", bundle_ref, price=price)
        if value <= 0:
            self._reject("invalid price", bundle_ref, price=price)
        return value

    def _check_duration(self, duration: int, bundle_ref: Any) -> int:
        if duration <= 0:
            self._reject("invalid duration", bundle_ref, duration=duration)
        return duration

    def _check_countries(self, codes: Iterable[Optional[str]], bundle_ref: Any) -> List[str]:
        countries = normalize_countries(codes, bundle_ref=str(bundle_ref))
        if not countries:
            self._reject("no valid countries", bundle_ref)
        return countries

    def _canonical(
        self,
        context: TransformContext,
        *,
        external_id: str,
        name: str,
        description: Optional[str],
        validity_days: int,
        data_mb: Optional[float],
        is_unlimited: bool,
        price: float,
        countries: List[str],
        region: Optional[str],
        groups: List[str],
        speed: List[str],
    ) -> CatalogBundle:
        return CatalogBundle(
            provider=self.provider,
            external_id=external_id,
            name=name,
            description=description,
            validity_days=validity_days,
            data_amount_mb=None if is_unlimited or not data_mb or data_mb <= 0 else data_mb,
            data_amount_readable=format_data_amount(data_mb, is_unlimited),
            is_unlimited=is_unlimited,
            price=price,
            currency=context.currency,
            countries=countries,
            region=region,
            groups=groups,
            speed=speed,
            plan_type="unlimited" if is_unlimited else "fixed",
            created_at=context.synced_at,
            updated_at=context.synced_at,
            synced_at=context.synced_at,
        )


class EsimGoBundleTransformer(BundleTransformer):
    """eSIM Go catalogue bundles (dataAmount in MB, -1 = unlimited)"""

    provider = Provider.ESIMGO.value
    raw_model = EsimGoRawBundle
    unlimited_strategy = ExplicitUnlimitedStrategy(sentinel=-1)

    def _build(self, bundle: EsimGoRawBundle, context: TransformContext) -> CatalogBundle:
        ref = bundle.name
        self._check_required(ref, name=bundle.name, duration=bundle.duration, price=bundle.price)
        price = self._check_price(bundle.price, ref)
        duration = self._check_duration(bundle.duration, ref)
        countries = self._check_countries([c.iso for c in bundle.countries], ref)

        is_unlimited = self.unlimited_strategy.is_unlimited(
            flag=bundle.unlimited, quota=bundle.dataAmount, name=bundle.name
        )

        return self._canonical(
            context,
            external_id=bundle.name,
            name=bundle.name,
            description=bundle.description or None,
            validity_days=duration,
            data_mb=bundle.dataAmount,
            is_unlimited=is_unlimited,
            price=price,
            countries=countries,
            region=primary_region(c.region for c in bundle.countries),
            groups=[g.replace("-", "") for g in bundle.groups],
            speed=bundle.speed or [],
        )


class MayaBundleTransformer(BundleTransformer):
    """Maya products (quota in MB or bytes, alpha-3 countries, no unlimited flag)"""

    provider = Provider.MAYA.value
    raw_model = MayaRawBundle
    unlimited_strategy = NameHeuristicUnlimitedStrategy()

    def _build(self, bundle: MayaRawBundle, context: TransformContext) -> CatalogBundle:
        ref = bundle.uid
        self._check_required(
            ref,
            uid=bundle.uid,
            name=bundle.name,
            validity_days=bundle.validity_days,
            wholesale_price_usd=bundle.wholesale_price_usd,
        )
        price = self._check_price(bundle.wholesale_price_usd, ref)
        duration = self._check_duration(bundle.validity_days, ref)
        countries = self._check_countries(bundle.countries_enabled, ref)

        if bundle.data_quota_mb is not None:
            data_mb = bundle.data_quota_mb
        elif bundle.data_quota_bytes is not None:
            data_mb = bundle.data_quota_bytes / BYTES_PER_MB
        else:
            data_mb = None

        is_unlimited = self.unlimited_strategy.is_unlimited(quota=data_mb, name=bundle.name)

        return self._canonical(
            context,
            external_id=bundle.uid,
            name=bundle.name,
            description=bundle.name,
            validity_days=duration,
            data_mb=data_mb,
            is_unlimited=is_unlimited,
            price=price,
            countries=countries,
            region=primary_region(region_for(c) for c in countries),
            groups=[],
            speed=["4G", "5G"],
        )


class AiraloBundleTransformer(BundleTransformer):
    """Airalo packages flattened by the Airalo client (amount in MB, null = unlimited)"""

    provider = Provider.AIRALO.value
    raw_model = AiraloRawPackage
    unlimited_strategy = ExplicitUnlimitedStrategy(sentinel=0, missing_quota_is_unlimited=True)

    def _build(self, package: AiraloRawPackage, context: TransformContext) -> CatalogBundle:
        ref = package.id
        self._check_required(ref, id=package.id, title=package.title, day=package.day, price=package.price)
        price = self._check_price(package.price, ref)
        duration = self._check_duration(package.day, ref)
        countries = self._check_countries(package.countries, ref)

        is_unlimited = self.unlimited_strategy.is_unlimited(
            flag=package.is_unlimited, quota=package.amount, name=package.title
        )

        return self._canonical(
            context,
            external_id=package.id,
            name=package.title,
            description=package.short_info or None,
            validity_days=duration,
            data_mb=package.amount,
            is_unlimited=is_unlimited,
            price=price,
            countries=countries,
            region=primary_region(region_for(c) for c in countries),
            groups=[package.operator] if package.operator else [],
            speed=[],
        )


_TRANSFORMERS: Dict[str, Type[BundleTransformer]] = {
    Provider.ESIMGO.value: EsimGoBundleTransformer,
    Provider.MAYA.value: MayaBundleTransformer,
    Provider.AIRALO.value: AiraloBundleTransformer,
}


def get_transformer(provider: str) -> BundleTransformer:
    """Return the transformer for a provider name (case-insensitive)"""
    try:
        return _TRANSFORMERS[str(provider).lower()]()
    except KeyError:
        raise ValueError(f"Unknown provider: {provider}")
