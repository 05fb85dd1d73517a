"""
Unit tests for family pattern detection, member CRUD and health trends.
"""

import pytest
from datetime import date
from unittest.mock import AsyncMock

from althea.core.exceptions import NotFoundError, PatternDetectionError
from althea.core.family_manager import FamilyManager
from althea.core.pattern_detector import PatternDetector, describe_pattern, risk_tier
from althea.models import FamilyHealthTrendCreate, FamilyMemberCreate, FamilyMemberUpdate

USER = "user-1"


async def add_member(store, name, conditions, relationship="sibling", user_id=USER):
    manager = FamilyManager(store, user_id)
    return await manager.create(FamilyMemberCreate(name=name, relationship=relationship, conditions=conditions))


class TestRiskTier:
    """Tests for the tier function."""

    def test_two_members_is_moderate(self):
        assert risk_tier(2) == "moderate"

    def test_three_or_more_is_high(self):
        for count in (3, 4, 10):
            assert risk_tier(count) == "high"

    def test_single_member_is_low(self):
        assert risk_tier(1) == "low"

    def test_description(self):
        assert describe_pattern("Asthma", ["Alice", "Bob"]) == \
            "Asthma detected in 2 family members: Alice, Bob"


class TestPatternDetector:
    """Tests for PatternDetector.analyze."""

    @pytest.mark.asyncio
    async def test_shared_conditions_form_moderate_patterns(self, record_store):
        alice = await add_member(record_store, "Alice", ["Diabetes"])
        bob = await add_member(record_store, "Bob", ["Diabetes", "Hypertension"])
        carol = await add_member(record_store, "Carol", ["Hypertension"])

        patterns = await PatternDetector(record_store).analyze(USER)
        by_condition = {p.pattern_type: p for p in patterns}

        assert set(by_condition) == {"Diabetes", "Hypertension"}
        assert by_condition["Diabetes"].risk_level == "moderate"
        assert by_condition["Diabetes"].affected_members == [alice.id, bob.id]
        assert by_condition["Hypertension"].affected_members == [bob.id, carol.id]

    @pytest.mark.asyncio
    async def test_member_details_carry_full_condition_list(self, record_store):
        await add_member(record_store, "Alice", ["Diabetes"])
        await add_member(record_store, "Bob", ["Diabetes", "Hypertension"])

        patterns = await PatternDetector(record_store).analyze(USER)
        bob_detail = patterns[0].member_details[1]

        assert bob_detail.member_name == "Bob"
        assert bob_detail.conditions == ["Diabetes", "Hypertension"]

    @pytest.mark.asyncio
    async def test_three_members_is_high(self, record_store):
        for name in ("Alice", "Bob", "Carol"):
            await add_member(record_store, name, ["Asthma"])

        patterns = await PatternDetector(record_store).analyze(USER)

        assert len(patterns) == 1
        assert patterns[0].risk_level == "high"
        assert len(patterns[0].affected_members) == 3
        assert patterns[0].description == "Asthma detected in 3 family members: Alice, Bob, Carol"

    @pytest.mark.asyncio
    async def test_matching_is_case_sensitive(self, record_store):
        await add_member(record_store, "Alice", ["Diabetes"])
        await add_member(record_store, "Bob", ["diabetes"])

        assert await PatternDetector(record_store).analyze(USER) == []

    @pytest.mark.asyncio
    async def test_single_member_never_forms_pattern(self, record_store):
        await add_member(record_store, "Alice", ["Diabetes", "Asthma"])
        await add_member(record_store, "Bob", ["Gout"])

        assert await PatternDetector(record_store).analyze(USER) == []

    @pytest.mark.asyncio
    async def test_other_users_members_are_ignored(self, record_store):
        await add_member(record_store, "Alice", ["Diabetes"])
        await add_member(record_store, "Mallory", ["Diabetes"], user_id="user-2")

        assert await PatternDetector(record_store).analyze(USER) == []

    @pytest.mark.asyncio
    async def test_patterns_are_persisted_once_per_condition(self, record_store):
        await add_member(record_store, "Alice", ["Diabetes"])
        await add_member(record_store, "Bob", ["Diabetes"])
        detector = PatternDetector(record_store)

        await detector.analyze(USER)
        await detector.analyze(USER)
        stored = await detector.stored_patterns(USER)

        assert [p.pattern_type for p in stored] == ["Diabetes"]
        assert stored[0].risk_level == "moderate"

    @pytest.mark.asyncio
    async def test_stale_patterns_are_pruned(self, record_store):
        await add_member(record_store, "Alice", ["Diabetes"])
        bob = await add_member(record_store, "Bob", ["Diabetes"])
        detector = PatternDetector(record_store)
        await detector.analyze(USER)

        await FamilyManager(record_store, USER).update(bob.id, FamilyMemberUpdate(conditions=["Gout"]))
        patterns = await detector.analyze(USER)

        assert patterns == []
        assert await detector.stored_patterns(USER) == []

    @pytest.mark.asyncio
    async def test_persistence_failure_still_returns_patterns(self, record_store):
        await add_member(record_store, "Alice", ["Diabetes"])
        await add_member(record_store, "Bob", ["Diabetes"])
        record_store.upsert = AsyncMock(side_effect=RuntimeError("disk full"))
        record_store.delete_where = AsyncMock(side_effect=RuntimeError("disk full"))

        patterns = await PatternDetector(record_store).analyze(USER)

        assert [p.pattern_type for p in patterns] == ["Diabetes"]

    @pytest.mark.asyncio
    async def test_member_fetch_failure_raises(self, record_store):
        record_store.select = AsyncMock(side_effect=RuntimeError("store offline"))
        record_store.upsert = AsyncMock()

        with pytest.raises(PatternDetectionError):
            await PatternDetector(record_store).analyze(USER)
        record_store.upsert.assert_not_called()


class TestFamilyManager:
    """Tests for member CRUD."""

    @pytest.mark.asyncio
    async def test_conditions_are_deduplicated_in_order(self, record_store):
        member = await add_member(record_store, "Alice", ["Asthma", "Gout", "Asthma", " "])
        assert member.conditions == ["Asthma", "Gout"]

    @pytest.mark.asyncio
    async def test_list_is_newest_first(self, record_store):
        await add_member(record_store, "Alice", [])
        await add_member(record_store, "Bob", [])

        members = await FamilyManager(record_store, USER).list()
        assert [m.name for m in members] == ["Bob", "Alice"]

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, record_store):
        member = await add_member(record_store, "Alice", ["Asthma"], relationship="mother")

        updated = await FamilyManager(record_store, USER).update(member.id, FamilyMemberUpdate(age=61))

        assert updated.age == 61
        assert updated.relationship == "mother"
        assert updated.conditions == ["Asthma"]

    @pytest.mark.asyncio
    async def test_other_users_cannot_read_member(self, record_store):
        member = await add_member(record_store, "Alice", [])

        with pytest.raises(NotFoundError):
            await FamilyManager(record_store, "user-2").get(member.id)

    @pytest.mark.asyncio
    async def test_every_action_is_audited(self, record_store):
        manager = FamilyManager(record_store, USER)
        member = await add_member(record_store, "Alice", [])
        await manager.get(member.id)
        await manager.delete(member.id)

        audit = await record_store.select("family_audit_log", USER, order_by="created_at")
        assert [row["action"] for row in audit] == ["create", "view", "delete"]

    def test_blank_name_is_rejected(self):
        from pydantic import ValidationError
        with pytest.raises(ValidationError):
            FamilyMemberCreate(name="  ", relationship="father")


class TestHealthTrends:
    """Tests for recording and reading family health trends."""

    def trend(self, value, recorded, member_id=None):
        return FamilyHealthTrendCreate(
            family_member_id=member_id, metric_name="HbA1c", metric_value=value,
            metric_unit="%", recorded_date=recorded,
        )

    @pytest.mark.asyncio
    async def test_trends_are_newest_first(self, record_store):
        manager = FamilyManager(record_store, USER)
        await manager.record_trend(self.trend(5.9, date(2024, 1, 10)))
        await manager.record_trend(self.trend(6.4, date(2024, 9, 2)))
        await manager.record_trend(self.trend(6.1, date(2024, 4, 15)))

        trends = await manager.trends()

        assert [t.metric_value for t in trends] == [6.4, 6.1, 5.9]

    @pytest.mark.asyncio
    async def test_filter_by_member(self, record_store):
        manager = FamilyManager(record_store, USER)
        alice = await add_member(record_store, "Alice", [])
        await manager.record_trend(self.trend(6.4, date(2024, 9, 2), alice.id))
        await manager.record_trend(self.trend(5.2, date(2024, 9, 3)))

        trends = await manager.trends(alice.id)

        assert len(trends) == 1
        assert trends[0].family_member_id == alice.id
        assert len(await manager.trends()) == 2

    @pytest.mark.asyncio
    async def test_unknown_member_is_rejected(self, record_store):
        with pytest.raises(NotFoundError):
            await FamilyManager(record_store, USER).record_trend(self.trend(6.0, date(2024, 1, 1), "missing"))

    @pytest.mark.asyncio
    async def test_trends_are_private(self, record_store):
        await FamilyManager(record_store, USER).record_trend(self.trend(6.0, date(2024, 1, 1)))
        assert await FamilyManager(record_store, "user-2").trends() == []
