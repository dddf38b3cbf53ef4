"""
Tests for the YAML feature catalog loader and the catalog seeder.
"""

import logging
from pathlib import Path

import pytest

from office_access.config.feature_catalog import (
    FeatureCatalogError,
    FeatureCatalogLoader,
    parse_catalog,
)
from office_access.entitlements.gateway import SqlAlchemyEntitlementGateway
from office_access.entitlements.models import Feature, FeatureGroup, FeatureToken
from office_access.entitlements.seeder import FeatureCatalogSeeder

SAMPLE_CATALOG = Path(__file__).parents[2] / "config" / "feature_catalog.yml"

MINIMAL = {
    "features": [{"name": "Create Office"}, "Update Office"],
    "feature_groups": [
        {
            "name": "Office Management",
            "app_name": "office-management",
            "is_paid": True,
            "features": ["Create Office", "Update Office"],
        }
    ],
    "tokens": [
        {"token_name": "annual", "feature_group": "Office Management", "expires_in_days": 365}
    ],
}


class TestParseCatalog:

    def test_parses_all_sections(self):
        catalog = parse_catalog(MINIMAL)

        assert catalog.feature_names() == ["Create Office", "Update Office"]
        group = catalog.get_group("Office Management")
        assert group.is_paid is True
        assert group.features == ("Create Office", "Update Office")
        assert catalog.tokens[0].expires_in_days == 365
        assert catalog.get_group("Missing") is None

    def test_empty_catalog(self):
        catalog = parse_catalog({})
        assert catalog.features == ()
        assert catalog.tokens == ()

    def test_rejects_non_mapping(self):
        with pytest.raises(FeatureCatalogError):
            parse_catalog(["Create Office"])

    def test_rejects_duplicate_features(self):
        with pytest.raises(FeatureCatalogError, match="Duplicate feature"):
            parse_catalog({"features": ["Create Office", "Create Office"]})

    def test_rejects_duplicate_app_names(self):
        raw = {
            "feature_groups": [
                {"name": "A", "app_name": "shared"},
                {"name": "B", "app_name": "shared"},
            ]
        }
        with pytest.raises(FeatureCatalogError, match="app_name"):
            parse_catalog(raw)

    def test_group_requires_app_name(self):
        with pytest.raises(FeatureCatalogError):
            parse_catalog({"feature_groups": [{"name": "Office Management"}]})

    def test_token_requires_group(self):
        with pytest.raises(FeatureCatalogError):
            parse_catalog({"tokens": [{"token_name": "annual"}]})


class TestFeatureCatalogLoader:

    def test_loads_from_path(self, make_yaml_config):
        path = make_yaml_config("feature_catalog.yml", MINIMAL)
        catalog = FeatureCatalogLoader(str(path)).get_catalog()
        assert len(catalog.features) == 2

    def test_cached_until_reload(self, make_yaml_config):
        path = make_yaml_config("feature_catalog.yml", MINIMAL)
        loader = FeatureCatalogLoader(str(path))
        first = loader.get_catalog()

        make_yaml_config("feature_catalog.yml", {"features": ["Only One"]})
        assert loader.get_catalog() is first
        assert loader.reload().feature_names() == ["Only One"]

    def test_invalid_yaml(self, temp_config_dir):
        path = temp_config_dir / "broken.yml"
        path.write_text("features: [unclosed")
        with pytest.raises(FeatureCatalogError):
            FeatureCatalogLoader(str(path)).get_catalog()

    def test_sample_catalog_is_valid(self):
        catalog = FeatureCatalogLoader(str(SAMPLE_CATALOG)).get_catalog()
        known = set(catalog.feature_names())

        for group in catalog.feature_groups:
            assert set(group.features) <= known
        for token in catalog.tokens:
            assert catalog.get_group(token.feature_group) is not None


class TestFeatureCatalogSeeder:

    def test_seeds_catalog(self, db_session):
        stats = FeatureCatalogSeeder(db_session).seed(parse_catalog(MINIMAL))

        assert stats.to_dict() == {
            "features_created": 2,
            "feature_groups_created": 1,
            "tokens_created": 1,
            "skipped": 0,
        }
        gateway = SqlAlchemyEntitlementGateway(db_session)
        group = gateway.get_feature_group_by_name("Office Management")
        assert group.feature_names == ("Create Office", "Update Office")
        assert gateway.get_token("annual").feature_group_id == group.id

    def test_idempotent(self, db_session):
        catalog = parse_catalog(MINIMAL)
        seeder = FeatureCatalogSeeder(db_session)
        seeder.seed(catalog)

        stats = seeder.seed(catalog)

        assert stats.features_created == 0
        assert stats.skipped == 4
        assert db_session.query(Feature).count() == 2
        assert db_session.query(FeatureGroup).count() == 1
        assert db_session.query(FeatureToken).count() == 1

    def test_unknown_references_are_skipped(self, db_session, caplog):
        raw = {
            "features": ["Create Office"],
            "feature_groups": [
                {"name": "Office Management", "app_name": "om", "features": ["Create Office", "Ghost"]}
            ],
            "tokens": [{"token_name": "orphan", "feature_group": "Missing Group"}],
        }
        with caplog.at_level(logging.WARNING, logger="office_access.entitlements.seeder"):
            stats = FeatureCatalogSeeder(db_session).seed(parse_catalog(raw))

        assert stats.tokens_created == 0
        messages = [r.getMessage() for r in caplog.records]
        assert "Feature group references unknown feature" in messages
        assert "Token references unknown feature group" in messages

    def test_seeds_sample_catalog(self, db_session):
        catalog = FeatureCatalogLoader(str(SAMPLE_CATALOG)).get_catalog()
        stats = FeatureCatalogSeeder(db_session).seed(catalog)

        assert stats.features_created == len(catalog.features)
        assert stats.tokens_created == len(catalog.tokens)
