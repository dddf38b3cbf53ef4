"""
Root test configuration and fixtures.

Provides an in-memory SQLite database, catalog factories, a fresh
FeatureRegistry per test and a fixed clock value.
"""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from office_access.db_base import Base
from office_access.entitlements import models  # noqa: F401 - registers tables
from office_access.entitlements.audit import EntitlementAuditLogger
from office_access.entitlements.gateway import SqlAlchemyEntitlementGateway
from office_access.entitlements.models import (
    Feature,
    FeatureGroup,
    FeatureToken,
    OfficeFeatureGroup,
)
from office_access.entitlements.service import EntitlementEvaluator
from office_access.features.registry import FeatureRegistry

os.environ.setdefault("ENV", "test")

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Database session with transaction rollback for test isolation.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=connection)
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def registry() -> FeatureRegistry:
    return FeatureRegistry()


@pytest.fixture
def gateway(db_session) -> SqlAlchemyEntitlementGateway:
    return SqlAlchemyEntitlementGateway(db_session)


@pytest.fixture
def audit_logger() -> EntitlementAuditLogger:
    return EntitlementAuditLogger()


@pytest.fixture
def evaluator(gateway, registry, audit_logger) -> EntitlementEvaluator:
    return EntitlementEvaluator(gateway, registry, audit_logger=audit_logger)


# =============================================================================
# Catalog factories
# =============================================================================

@pytest.fixture
def make_feature(db_session):
    def _make(name: str, is_active: bool = True) -> Feature:
        feature = Feature(name=name, is_active=is_active)
        db_session.add(feature)
        db_session.flush()
        return feature
    return _make


@pytest.fixture
def make_feature_group(db_session):
    def _make(
        name: str,
        features=(),
        is_paid: bool = False,
        app_name: Optional[str] = None,
    ) -> FeatureGroup:
        group = FeatureGroup(
            name=name,
            app_name=app_name or name.lower().replace(" ", "-"),
            is_paid=is_paid,
            features=list(features),
        )
        db_session.add(group)
        db_session.flush()
        return group
    return _make


@pytest.fixture
def make_token(db_session):
    def _make(
        token_name: str,
        feature_group: FeatureGroup,
        expires_in_days: Optional[int] = None,
        is_active: bool = True,
    ) -> FeatureToken:
        token = FeatureToken(
            token_name=token_name,
            feature_group_id=feature_group.id,
            expires_in_days=expires_in_days,
            is_active=is_active,
        )
        db_session.add(token)
        db_session.flush()
        return token
    return _make


@pytest.fixture
def make_grant(db_session):
    def _make(
        office_id: str,
        feature_group: FeatureGroup,
        is_active: bool = True,
        activated_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> OfficeFeatureGroup:
        grant = OfficeFeatureGroup(
            office_id=office_id,
            feature_group_id=feature_group.id,
            is_active=is_active,
            activated_at=activated_at,
            expires_at=expires_at,
        )
        db_session.add(grant)
        db_session.flush()
        return grant
    return _make


@pytest.fixture
def office_management(make_feature, make_feature_group):
    """Paid group with two features, plus a free group sharing one of them."""
    create_office = make_feature("Create Office")
    update_office = make_feature("Update Office")
    paid = make_feature_group(
        "Office Management", [create_office, update_office], is_paid=True
    )
    free = make_feature_group("Office Basics", [update_office])
    return {"paid": paid, "free": free, "create": create_office, "update": update_office}


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# =============================================================================
# Config fixtures
# =============================================================================

@pytest.fixture
def temp_config_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make
