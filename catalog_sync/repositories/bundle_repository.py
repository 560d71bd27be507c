"""
Persist canonical bundles with idempotent, chunked upserts
"""

from typing import Dict, List, Optional, Sequence, Tuple
from datetime import datetime
from sqlalchemy import select, update, func, exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
import logging

from models.catalog import CatalogProvider, CatalogBundleRecord, CatalogBundleCountry
from schemas.bundle import CatalogBundle
from schemas.jobs import UpsertResult
from catalog_sync.transformers.countries import normalize_countries

logger = logging.getLogger(__name__)

BundleKey = Tuple[int, str]

# Columns refreshed when a bundle row already exists
_BUNDLE_UPDATE_COLUMNS = (
    "name",
    "description",
    "data_amount_mb",
    "data_amount_readable",
    "validity_days",
    "price_usd",
    "currency",
    "unlimited",
    "plan_type",
    "group_name",
    "region",
    "speed",
    "is_active",
    "updated_at",
    "synced_at",
)


def _chunks(items: Sequence, size: int):
    for i in range(0, len(items), size):
        yield i // size, items[i:i + size]


class BundleRepository:
    """
    Write catalog bundles as an idempotent saga.

    Steps (each independently re-runnable):
    1. Ensure provider rows exist, resolve name -> id
    2. Upsert bundle rows (inactive) in chunks on (provider_id, external_id)
    3. Upsert bundle-country links in chunks on (bundle_id, country_iso2)
    4. Activate bundles that have at least one persisted country link

    A failed chunk is rolled back and recorded in UpsertResult.errors; the
    remaining chunks still run.
    """

    def __init__(self, db_session: AsyncSession, batch_size: int = 100):
        self.db = db_session
        self.batch_size = max(1, batch_size)

    def _insert(self, model):
        if self.db.bind.dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    async def upsert_bundles(self, bundles: List[CatalogBundle]) -> UpsertResult:
        """
        Upsert bundles and their country links.

        Args:
            bundles: Canonical bundles; duplicate (provider, external_id)
                pairs collapse to the last occurrence

        Returns:
            UpsertResult with added/updated/activated counts and errors
        """
        result = UpsertResult()
        if not bundles:
            return result

        provider_ids = await self._ensure_providers({b.provider.lower() for b in bundles}, result)

        rows, countries = self._build_rows(bundles, provider_ids, result)
        if not rows:
            return result

        bundle_ids = await self._upsert_bundle_rows(list(rows.values()), result)
        await self._upsert_country_links(bundle_ids, countries, result)
        # Every upserted row was reset to inactive; links from earlier syncs count too
        result.activated = await self._activate(list(bundle_ids.values()))

        logger.info(
            f"Upserted bundles: {result.added} added, {result.updated} updated, "
            f"{result.activated} activated, {len(result.errors)} errors"
        )
        return result

    # ------------------------------------------------------------------
    # Step 1: providers
    # ------------------------------------------------------------------

    async def _ensure_providers(self, names: set, result: UpsertResult) -> Dict[str, int]:
        now = datetime.utcnow()
        try:
            stmt = self._insert(CatalogProvider).values(
                [{"name": name, "created_at": now} for name in sorted(names)]
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["name"])
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Provider upsert failed on catalog_providers: {e}")
            result.errors.append(f"catalog_providers: {e}")

        rows = await self.db.execute(
            select(CatalogProvider.name, CatalogProvider.id).where(CatalogProvider.name.in_(names))
        )
        return {name: provider_id for name, provider_id in rows.all()}

    # ------------------------------------------------------------------
    # Step 2: row mapping
    # ------------------------------------------------------------------

    def _build_rows(
        self,
        bundles: List[CatalogBundle],
        provider_ids: Dict[str, int],
        result: UpsertResult,
    ) -> Tuple[Dict[BundleKey, dict], Dict[BundleKey, List[str]]]:
        rows: Dict[BundleKey, dict] = {}
        countries: Dict[BundleKey, List[str]] = {}
        now = datetime.utcnow()

        for bundle in bundles:
            provider_id = provider_ids.get(bundle.provider.lower())
            if provider_id is None:
                result.errors.append(f"Unresolved provider {bundle.provider} for bundle {bundle.external_id}")
                continue
            if not bundle.external_id:
                result.errors.append(f"Bundle without external id from provider {bundle.provider}")
                continue

            key = (provider_id, bundle.external_id)
            # Last occurrence wins; pop keeps insertion order aligned with it
            rows.pop(key, None)
            rows[key] = {
                "provider_id": provider_id,
                "external_id": bundle.external_id,
                "name": bundle.name,
                "description": bundle.description,
                "data_amount_mb": bundle.data_amount_mb,
                "data_amount_readable": bundle.data_amount_readable,
                "validity_days": bundle.validity_days,
                "price_usd": bundle.price,
                "currency": bundle.currency,
                "unlimited": bundle.is_unlimited,
                "plan_type": bundle.plan_type,
                "group_name": bundle.group_name,
                "region": bundle.region,
                "speed": bundle.speed,
                "is_active": False,
                "created_at": now,
                "updated_at": now,
                "synced_at": bundle.synced_at,
            }
            countries[key] = normalize_countries(bundle.countries, bundle_ref=bundle.external_id)

        return rows, countries

    # ------------------------------------------------------------------
    # Step 3: bundle rows
    # ------------------------------------------------------------------

    async def _existing_keys(self, chunk: List[dict]) -> set:
        provider_ids = {row["provider_id"] for row in chunk}
        external_ids = {row["external_id"] for row in chunk}
        found = await self.db.execute(
            select(CatalogBundleRecord.provider_id, CatalogBundleRecord.external_id).where(
                CatalogBundleRecord.provider_id.in_(provider_ids),
                CatalogBundleRecord.external_id.in_(external_ids),
            )
        )
        return {(provider_id, external_id) for provider_id, external_id in found.all()}

    async def _upsert_bundle_rows(self, rows: List[dict], result: UpsertResult) -> Dict[BundleKey, int]:
        bundle_ids: Dict[BundleKey, int] = {}

        for batch_index, chunk in _chunks(rows, self.batch_size):
            try:
                existing = await self._existing_keys(chunk)

                stmt = self._insert(CatalogBundleRecord).values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["provider_id", "external_id"],
                    set_={col: getattr(stmt.excluded, col) for col in _BUNDLE_UPDATE_COLUMNS},
                ).returning(
                    CatalogBundleRecord.id,
                    CatalogBundleRecord.provider_id,
                    CatalogBundleRecord.external_id,
                )
                returned = (await self.db.execute(stmt)).all()
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    f"Batch {batch_index + 1} failed on catalog_bundles ({len(chunk)} rows): {e}",
                    extra={"table_name": "catalog_bundles", "batch_index": batch_index}
                )
                result.errors.append(f"catalog_bundles batch {batch_index + 1}: {e}")
                continue

            for bundle_id, provider_id, external_id in returned:
                bundle_ids[(provider_id, external_id)] = bundle_id

            updated = sum(1 for row in chunk if (row["provider_id"], row["external_id"]) in existing)
            result.updated += updated
            result.added += len(chunk) - updated

            logger.debug(f"Batch {batch_index + 1}: upserted {len(chunk)} bundles")

        return bundle_ids

    # ------------------------------------------------------------------
    # Step 4: country links
    # ------------------------------------------------------------------

    async def _upsert_country_links(
        self,
        bundle_ids: Dict[BundleKey, int],
        countries: Dict[BundleKey, List[str]],
        result: UpsertResult,
    ) -> None:
        links = [
            {"bundle_id": bundle_id, "country_iso2": iso2}
            for key, bundle_id in bundle_ids.items()
            for iso2 in countries.get(key, [])
        ]

        for batch_index, chunk in _chunks(links, self.batch_size):
            try:
                stmt = self._insert(CatalogBundleCountry).values(chunk)
                stmt = stmt.on_conflict_do_nothing(index_elements=["bundle_id", "country_iso2"])
                await self.db.execute(stmt)
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    f"Batch {batch_index + 1} failed on catalog_bundle_countries ({len(chunk)} rows): {e}",
                    extra={"table_name": "catalog_bundle_countries", "batch_index": batch_index}
                )
                result.errors.append(f"catalog_bundle_countries batch {batch_index + 1}: {e}")
                continue

            logger.debug(f"Batch {batch_index + 1}: upserted {len(chunk)} country links")

    # ------------------------------------------------------------------
    # Step 5: activation
    # ------------------------------------------------------------------

    async def _activate(self, bundle_ids: List[int]) -> int:
        if not bundle_ids:
            return 0

        has_link = exists().where(CatalogBundleCountry.bundle_id == CatalogBundleRecord.id)
        activated = 0
        for _, chunk in _chunks(bundle_ids, 500):
            outcome = await self.db.execute(
                update(CatalogBundleRecord)
                .where(CatalogBundleRecord.id.in_(chunk), has_link)
                .values(is_active=True)
                .execution_options(synchronize_session=False)
            )
            activated += outcome.rowcount or 0
        await self.db.commit()
        return activated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count_active_bundles(self, provider: Optional[str] = None) -> int:
        stmt = select(func.count(CatalogBundleRecord.id)).where(CatalogBundleRecord.is_active.is_(True))
        if provider:
            stmt = stmt.join(CatalogProvider).where(CatalogProvider.name == provider.lower())
        return (await self.db.execute(stmt)).scalar() or 0

    async def list_bundle_groups(self, provider: str) -> List[str]:
        stmt = (
            select(CatalogBundleRecord.group_name)
            .join(CatalogProvider)
            .where(
                CatalogProvider.name == provider.lower(),
                CatalogBundleRecord.group_name.isnot(None),
                CatalogBundleRecord.is_active.is_(True),
            )
            .distinct()
            .order_by(CatalogBundleRecord.group_name)
        )
        return list((await self.db.execute(stmt)).scalars().all())
