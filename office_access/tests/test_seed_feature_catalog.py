"""
Tests for the feature catalog seed job.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from office_access.config.settings import AccessSettings
from office_access.database.session import get_engine, get_session_factory, reset_engine
from office_access.db_base import Base
from office_access.entitlements.gateway import SqlAlchemyEntitlementGateway
from office_access.entitlements.models import FeatureGroup, FeatureToken
from office_access.jobs.seed_feature_catalog import main, seed_feature_catalog

SAMPLE_CATALOG = str(Path(__file__).parents[2] / "config" / "feature_catalog.yml")

CATALOG = {
    "features": ["Create Office"],
    "feature_groups": [
        {"name": "Office Management", "app_name": "office-management", "features": ["Create Office"]}
    ],
    "tokens": [{"token_name": "annual", "feature_group": "Office Management", "expires_in_days": 365}],
}


class TestSeedFeatureCatalog:

    def test_catalog_path_from_settings(self, db_session, make_yaml_config):
        path = make_yaml_config("catalog.yml", CATALOG)

        stats = seed_feature_catalog(
            db=db_session, settings=AccessSettings(feature_catalog_path=str(path))
        )

        assert stats.feature_groups_created == 1
        assert stats.tokens_created == 1
        gateway = SqlAlchemyEntitlementGateway(db_session)
        assert gateway.get_feature_group_by_name("Office Management").feature_names == (
            "Create Office",
        )

    def test_explicit_path_wins(self, db_session, make_yaml_config):
        path = make_yaml_config("catalog.yml", CATALOG)
        settings = AccessSettings(feature_catalog_path="/does/not/exist.yml")

        stats = seed_feature_catalog(db=db_session, catalog_path=str(path), settings=settings)
        assert stats.features_created == 1

    def test_rerun_skips_existing(self, db_session):
        seed_feature_catalog(db=db_session, catalog_path=SAMPLE_CATALOG)
        stats = seed_feature_catalog(db=db_session, catalog_path=SAMPLE_CATALOG)

        assert stats.features_created == 0
        assert stats.tokens_created == 0
        assert stats.skipped > 0

    def test_dry_run_rolls_back(self, make_yaml_config):
        db = MagicMock()
        path = make_yaml_config("catalog.yml", CATALOG)

        stats = seed_feature_catalog(db=db, catalog_path=str(path), dry_run=True)

        assert stats.features_created == 1
        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_seeder_failure_rolls_back(self, make_yaml_config):
        db = MagicMock()
        db.flush.side_effect = RuntimeError("db down")
        path = make_yaml_config("catalog.yml", CATALOG)

        with pytest.raises(RuntimeError):
            seed_feature_catalog(db=db, catalog_path=str(path))

        db.rollback.assert_called_once()
        db.commit.assert_not_called()


class TestMain:

    @pytest.fixture
    def sqlite_database(self, temp_config_dir, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{temp_config_dir / 'office_access.db'}")
        reset_engine()
        Base.metadata.create_all(bind=get_engine())
        yield
        reset_engine()

    @pytest.mark.slow
    def test_seeds_through_configured_database(self, sqlite_database, monkeypatch):
        monkeypatch.setenv("FEATURE_CATALOG_PATH", SAMPLE_CATALOG)

        main([])

        session = get_session_factory()()
        try:
            assert session.query(FeatureGroup).count() == 3
            assert session.query(FeatureToken).count() == 3
        finally:
            session.close()

    def test_dry_run_writes_nothing(self, sqlite_database):
        main(["--catalog", SAMPLE_CATALOG, "--dry-run"])

        session = get_session_factory()()
        try:
            assert session.query(FeatureGroup).count() == 0
        finally:
            session.close()

    def test_missing_catalog_exits_nonzero(self, sqlite_database, temp_config_dir):
        with pytest.raises(SystemExit) as exc_info:
            main(["--catalog", str(temp_config_dir / "missing.yml")])
        assert exc_info.value.code == 1
