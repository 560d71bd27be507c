"""
Unit tests for bundle transformers
"""

import logging
from datetime import datetime

import pytest

from catalog_sync.transformers import (
    AiraloBundleTransformer,
    EsimGoBundleTransformer,
    MayaBundleTransformer,
    TransformContext,
    get_transformer,
)
from catalog_sync.transformers.unlimited import (
    ExplicitUnlimitedStrategy,
    NameHeuristicUnlimitedStrategy,
)
from catalog_sync.transformers.regions import primary_region


class TestMayaBundleTransformer:
    """Maya products: alpha-3 countries, string prices, name-based unlimited"""

    def test_unlimited_europe_bundle(self, maya_raw_bundles):
        bundle = MayaBundleTransformer().transform(maya_raw_bundles[0])

        assert bundle is not None
        assert bundle.is_unlimited is True
        assert bundle.countries == ["FR", "DE"]
        assert bundle.price == 19.99
        assert bundle.data_amount_readable == "Unlimited"
        assert bundle.data_amount_mb is None
        assert bundle.plan_type == "unlimited"
        assert bundle.region == "Europe"
        assert bundle.external_id == "b1"
        assert bundle.provider == "maya"

    def test_zero_price_rejected_with_logged_reason(self, maya_raw_bundles, caplog):
        raw = {**maya_raw_bundles[0], "wholesale_price_usd": "0"}

        with caplog.at_level(logging.WARNING):
            bundle = MayaBundleTransformer().transform(raw)

        assert bundle is None
        assert "invalid price" in caplog.text

    def test_fixed_quota_in_mb(self, maya_raw_bundles):
        bundle = MayaBundleTransformer().transform(maya_raw_bundles[1])

        assert bundle.is_unlimited is False
        assert bundle.data_amount_mb == 3072
        assert bundle.data_amount_readable == "3GB"
        assert bundle.countries == ["JP"]
        assert bundle.region == "Asia"

    def test_quota_in_bytes_converted_to_mb(self, maya_raw_bundles):
        raw = {**maya_raw_bundles[1], "data_quota_mb": None, "data_quota_bytes": 512 * 1024 * 1024}

        bundle = MayaBundleTransformer().transform(raw)

        assert bundle.data_amount_mb == 512
        assert bundle.data_amount_readable == "512MB"


class TestRejection:
    """Price <= 0, duration <= 0 and zero valid countries all reject"""

    @pytest.mark.parametrize("price", ["0", "-1", 0, -5.0, "abc"])
    def test_invalid_price(self, maya_raw_bundles, price):
        raw = {**maya_raw_bundles[1], "wholesale_price_usd": price}
        assert MayaBundleTransformer().transform(raw) is None

    @pytest.mark.parametrize("duration", [0, -7])
    def test_invalid_duration(self, esimgo_raw_bundles, duration, caplog):
        raw = {**esimgo_raw_bundles[0], "duration": duration}

        with caplog.at_level(logging.WARNING):
            assert EsimGoBundleTransformer().transform(raw) is None
        assert "invalid duration" in caplog.text

    def test_no_valid_countries(self, airalo_raw_packages, caplog):
        raw = {**airalo_raw_packages[0], "countries": ["XX", "ZZZ", ""]}

        with caplog.at_level(logging.WARNING):
            assert AiraloBundleTransformer().transform(raw) is None
        assert "no valid countries" in caplog.text

    def test_missing_required_fields(self, esimgo_raw_bundles, caplog):
        raw = {**esimgo_raw_bundles[0]}
        del raw["price"]

        with caplog.at_level(logging.WARNING):
            assert EsimGoBundleTransformer().transform(raw) is None
        assert "missing required fields" in caplog.text

    def test_invalid_countries_dropped_but_bundle_kept(self, maya_raw_bundles):
        raw = {**maya_raw_bundles[1], "countries_enabled": ["JPN", "XYZ", "jpn", "KOR"]}

        bundle = MayaBundleTransformer().transform(raw)

        assert bundle.countries == ["JP", "KR"]

    def test_payload_of_wrong_shape(self):
        assert EsimGoBundleTransformer().transform({"countries": "not-a-list"}) is None


class TestEsimGoBundleTransformer:

    def test_fixed_bundle(self, esimgo_raw_bundles):
        bundle = EsimGoBundleTransformer().transform(esimgo_raw_bundles[0])

        assert bundle.external_id == "esim_1GB_7D_FR_V2"
        assert bundle.validity_days == 7
        assert bundle.is_unlimited is False
        assert bundle.data_amount_readable == "1000MB"
        assert bundle.groups == ["Standard Fixed"]
        assert bundle.group_name == "Standard Fixed"
        assert bundle.speed == ["4G", "5G"]

    def test_unlimited_sentinel_and_region_majority(self, esimgo_raw_bundles):
        bundle = EsimGoBundleTransformer().transform(esimgo_raw_bundles[1])

        assert bundle.is_unlimited is True
        assert bundle.data_amount_mb is None
        assert bundle.countries == ["FR", "DE", "TR"]
        assert bundle.region == "Europe"

    def test_transform_all_skips_rejects(self, esimgo_raw_bundles, caplog):
        bad = {**esimgo_raw_bundles[0], "name": "bad", "price": 0}
        context = TransformContext(synced_at=datetime(2024, 1, 15, 10, 0, 0))

        with caplog.at_level(logging.INFO):
            bundles = EsimGoBundleTransformer().transform_all(esimgo_raw_bundles + [bad], context)

        assert [b.external_id for b in bundles] == ["esim_1GB_7D_FR_V2", "esim_ULE_30D_EU_V2"]
        assert all(b.synced_at == datetime(2024, 1, 15, 10, 0, 0) for b in bundles)
        assert "Transformed 2 valid bundles out of 3 total" in caplog.text


class TestAiraloBundleTransformer:

    def test_missing_amount_is_unlimited(self, airalo_raw_packages):
        bundle = AiraloBundleTransformer().transform(airalo_raw_packages[1])

        assert bundle.is_unlimited is True
        assert bundle.data_amount_readable == "Unlimited"
        assert bundle.region == "North America"
        assert bundle.groups == ["Discover Global"]

    def test_fixed_package(self, airalo_raw_packages):
        bundle = AiraloBundleTransformer().transform(airalo_raw_packages[0])

        assert bundle.is_unlimited is False
        assert bundle.data_amount_readable == "1GB"
        assert bundle.description == "Turkey data only"


class TestUnlimitedStrategies:

    def test_explicit_flag_wins(self):
        assert ExplicitUnlimitedStrategy().is_unlimited(flag=True, quota=1024) is True

    def test_explicit_sentinel(self):
        strategy = ExplicitUnlimitedStrategy(sentinel=-1)
        assert strategy.is_unlimited(quota=-1) is True
        assert strategy.is_unlimited(quota=1024) is False
        assert strategy.is_unlimited(quota=None) is False

    def test_name_heuristic(self):
        strategy = NameHeuristicUnlimitedStrategy()
        assert strategy.is_unlimited(name="Europe UNLIMITED 30 days") is True
        assert strategy.is_unlimited(name="Europe 5GB") is False
        assert strategy.is_unlimited(name=None) is False


def test_primary_region_tie_goes_to_first_seen():
    assert primary_region(["Asia", "Europe", None, "Europe", "Asia"]) == "Asia"
    assert primary_region([None, None]) is None


def test_get_transformer():
    assert isinstance(get_transformer("ESIMGO"), EsimGoBundleTransformer)
    assert isinstance(get_transformer("maya"), MayaBundleTransformer)
    with pytest.raises(ValueError):
        get_transformer("unknown")
