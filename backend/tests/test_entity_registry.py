"""Tests for the entity registry whitelist and entity writes."""

import pytest
from sqlalchemy import select

from core.exceptions import NonRetryableStepError, StepExecutionError
from workflow.entity_registry import (
    ENTITY_REGISTRY,
    EntityStore,
    get_entity_spec,
    pick_allowed_fields,
    prepare_fields,
)


@pytest.mark.unit
class TestWhitelist:
    """Test lookup and field filtering."""

    def test_unknown_entity_fails_closed(self):
        with pytest.raises(NonRetryableStepError) as exc_info:
            get_entity_spec("users")
        assert exc_info.value.error == "unsupported entity: users"

    def test_registry_contents(self):
        assert set(ENTITY_REGISTRY) == {
            "notifications",
            "partner_submissions",
            "partner_incentive_applications",
            "partner_contracts",
            "messaging_requests",
        }

    def test_pick_allowed_fields_drops_extras(self):
        fields = pick_allowed_fields("partner_submissions", {"title": "T", "is_admin": True})
        assert fields == {"title": "T"}

    def test_tenant_fields_injected_and_win(self):
        fields = prepare_fields(
            "messaging_requests",
            {"district_id": "evil", "reason": "r"},
            district_id="d1",
            school_id="s1",
        )
        assert fields == {"district_id": "d1", "school_id": "s1", "reason": "r"}

    def test_unset_scope_is_not_injected(self):
        fields = prepare_fields("notifications", {"title": "x", "school_id": "s9"}, district_id="d1")
        assert fields == {"title": "x", "school_id": "s9", "district_id": "d1"}

    def test_district_only_entity_ignores_school(self):
        fields = prepare_fields("partner_contracts", {"status": "draft"}, district_id="d1", school_id="s1")
        assert fields == {"status": "draft", "district_id": "d1"}


@pytest.mark.integration
class TestEntityStore:
    """Test create/update through the database."""

    async def test_create_entity_persists_whitelisted_row(self, db_session):
        from db.models.partner import PartnerSubmission

        store = EntityStore(db_session)
        result = await store.create_entity(
            "partner_submissions",
            {"title": "Proposal", "is_admin": True, "partner_id": "p1"},
            district_id="d1",
        )
        assert result["entity"] == "partner_submissions"
        assert "is_admin" not in result["fields"]

        row = (
            await db_session.execute(select(PartnerSubmission).where(PartnerSubmission.id == result["id"]))
        ).scalar_one()
        assert row.title == "Proposal"
        assert row.district_id == "d1"

    async def test_update_entity_requires_pk(self, db_session):
        store = EntityStore(db_session)
        with pytest.raises(NonRetryableStepError) as exc_info:
            await store.update_entity_by_pk("partner_submissions", {}, {"status": "approved"})
        assert exc_info.value.error == "missing_pk"

    async def test_update_entity_by_pk(self, db_session):
        from db.models.partner import PartnerSubmission

        store = EntityStore(db_session)
        created = await store.create_entity("partner_submissions", {"title": "P"}, district_id="d1")
        result = await store.update_entity_by_pk(
            "partner_submissions",
            {"id": created["id"]},
            {"status": "approved", "is_admin": True},
            district_id="d1",
        )
        assert result["updated"] == 1
        assert result["fields"] == {"status": "approved", "district_id": "d1"}

        row = (
            await db_session.execute(select(PartnerSubmission).where(PartnerSubmission.id == created["id"]))
        ).scalar_one()
        await db_session.refresh(row)
        assert row.status == "approved"

    async def test_update_cannot_reach_other_district(self, db_session):
        from db.models.partner import PartnerSubmission

        store = EntityStore(db_session)
        created = await store.create_entity("partner_submissions", {"title": "P"}, district_id="d2")
        with pytest.raises(StepExecutionError, match="not found"):
            await store.update_entity_by_pk(
                "partner_submissions",
                {"id": created["id"]},
                {"status": "approved"},
                district_id="d1",
            )

        row = (
            await db_session.execute(select(PartnerSubmission).where(PartnerSubmission.id == created["id"]))
        ).scalar_one()
        await db_session.refresh(row)
        assert row.district_id == "d2"
        assert row.status != "approved"

    async def test_update_missing_row_is_retryable_error(self, db_session):
        store = EntityStore(db_session)
        with pytest.raises(StepExecutionError) as exc_info:
            await store.update_entity_by_pk("partner_submissions", {"id": "nope"}, {"status": "x"})
        assert not isinstance(exc_info.value, NonRetryableStepError)

    async def test_failed_insert_does_not_poison_session(self, db_session):
        store = EntityStore(db_session)
        # notifications.title is NOT NULL
        with pytest.raises(StepExecutionError):
            await store.create_entity("notifications", {"user_id": "u1"})

        result = await store.create_entity("notifications", {"user_id": "u1", "title": "ok"})
        assert result["id"]
