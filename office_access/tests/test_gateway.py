"""
Tests for the SQLAlchemy entitlement gateway.
"""

from datetime import timedelta

from office_access.entitlements.models import OfficeFeatureGroupRecord


class TestCatalogReads:

    def test_get_feature_group_by_name(self, gateway, office_management):
        group = gateway.get_feature_group_by_name("Office Management")
        assert group.id == office_management["paid"].id
        assert group.is_paid is True
        assert group.feature_names == ("Create Office", "Update Office")
        assert group.has_feature("Create Office")

    def test_get_feature_group_by_id(self, gateway, office_management):
        assert gateway.get_feature_group(office_management["free"].id).name == "Office Basics"
        assert gateway.get_feature_group("missing") is None

    def test_feature_in_several_groups(self, gateway, office_management):
        groups = gateway.get_feature_groups_by_feature("Update Office")
        assert [g.name for g in groups] == ["Office Basics", "Office Management"]
        assert gateway.get_feature_group_by_feature("Update Office").name == "Office Basics"

    def test_feature_without_group(self, gateway, make_feature):
        make_feature("Orphan")
        assert gateway.get_feature_group_by_feature("Orphan") is None
        assert gateway.get_feature("Orphan").is_active is True

    def test_soft_deleted_group_is_invisible(self, gateway, office_management, db_session, t0):
        office_management["free"].deleted_at = t0
        db_session.flush()

        assert gateway.get_feature_group_by_name("Office Basics") is None
        assert [g.name for g in gateway.get_feature_groups_by_feature("Update Office")] == [
            "Office Management"
        ]

    def test_list_feature_groups(self, gateway, office_management, db_session, t0):
        assert [g.name for g in gateway.list_feature_groups()] == [
            "Office Basics",
            "Office Management",
        ]

        office_management["paid"].deleted_at = t0
        db_session.flush()
        assert [g.name for g in gateway.list_feature_groups()] == ["Office Basics"]

    def test_soft_deleted_feature_dropped_from_group(self, gateway, office_management, db_session, t0):
        office_management["create"].deleted_at = t0
        db_session.flush()

        group = gateway.get_feature_group_by_name("Office Management")
        assert group.feature_names == ("Update Office",)
        assert gateway.get_feature("Create Office") is None

    def test_get_token(self, gateway, office_management, make_token):
        token = make_token("annual", office_management["paid"], expires_in_days=365)
        record = gateway.get_token("annual")
        assert record.id == token.id
        assert record.feature_group_id == office_management["paid"].id
        assert record.expires_in_days == 365
        assert gateway.get_token("ghost") is None


class TestGrantWrites:

    def test_upsert_inserts_then_updates(self, gateway, office_management, t0):
        group_id = office_management["paid"].id
        created = gateway.upsert_office_feature_group(
            OfficeFeatureGroupRecord(
                office_id="o1",
                feature_group_id=group_id,
                activated_at=t0,
                expires_at=t0 + timedelta(days=30),
            )
        )
        assert created.id is not None

        updated = gateway.upsert_office_feature_group(
            OfficeFeatureGroupRecord(office_id="o1", feature_group_id=group_id, is_active=False)
        )
        assert updated.id == created.id
        assert updated.is_active is False
        assert len(gateway.list_office_feature_groups("o1")) == 1

    def test_read_after_write(self, gateway, office_management, t0):
        group_id = office_management["paid"].id
        gateway.upsert_office_feature_group(
            OfficeFeatureGroupRecord(office_id="o1", feature_group_id=group_id, activated_at=t0)
        )
        record = gateway.get_office_feature_group("o1", group_id)
        assert record.is_active is True
        assert record.activated_at == t0

    def test_datetimes_come_back_as_utc(self, gateway, office_management, db_session, t0):
        group_id = office_management["paid"].id
        gateway.upsert_office_feature_group(
            OfficeFeatureGroupRecord(
                office_id="o1", feature_group_id=group_id, expires_at=t0 + timedelta(days=1)
            )
        )
        db_session.expire_all()

        record = gateway.get_office_feature_group("o1", group_id)
        assert record.expires_at.tzinfo is not None
        assert record.expires_at == t0 + timedelta(days=1)

    def test_list_expired_grants(self, gateway, office_management, make_grant, t0):
        group = office_management["paid"]
        make_grant("expired", group, expires_at=t0 - timedelta(seconds=1))
        make_grant("boundary", group, expires_at=t0)
        make_grant("future", group, expires_at=t0 + timedelta(days=1))
        make_grant("forever", group)
        make_grant("already-off", group, is_active=False, expires_at=t0 - timedelta(days=1))

        expired = sorted(g.office_id for g in gateway.list_expired_grants(t0))
        assert expired == ["boundary", "expired"]
