"""
Family Manager - CRUD for a user's tracked relatives and their health trends.
"""

import logging
from typing import List, Optional

from ..models.family import (
    FamilyHealthTrend, FamilyHealthTrendCreate, FamilyMember, FamilyMemberCreate, FamilyMemberUpdate,
)
from ..storage.record_store import RecordStore
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)

MEMBERS_TABLE = "family_members"
AUDIT_TABLE = "family_audit_log"
TRENDS_TABLE = "family_health_trends"


class FamilyManager:
    """
    Manages family members for one user. Every read and write is scoped to
    that user.
    """

    def __init__(self, store: RecordStore, user_id: str):
        """
        Initialize the manager for a specific user.

        Args:
            store: Record store implementation to use
            user_id: User identifier
        """
        self.store = store
        self.user_id = user_id

    async def _audit(self, action: str, member_id: str, details: Optional[dict] = None) -> None:
        """Record an access event. Failures are logged and ignored."""
        try:
            await self.store.insert(AUDIT_TABLE, {
                "user_id": self.user_id,
                "family_member_id": member_id,
                "action": action,
                "details": details or {},
            })
        except Exception as e:
            logger.warning(
                f"Failed to write family audit log: {e}",
                extra={"extra_fields": {"user_id": self.user_id, "action": action}}
            )

    async def create(self, member: FamilyMemberCreate) -> FamilyMember:
        row = member.model_dump(mode="json")
        row["user_id"] = self.user_id
        stored = await self.store.insert(MEMBERS_TABLE, row)

        logger.info(
            "Family member added",
            extra={"extra_fields": {"user_id": self.user_id, "member_id": stored["id"]}}
        )
        await self._audit("create", stored["id"], {"relationship": stored["relationship"]})
        return FamilyMember.model_validate(stored)

    async def list(self) -> List[FamilyMember]:
        """All members, newest first."""
        rows = await self.store.select(MEMBERS_TABLE, self.user_id, order_by="created_at", descending=True)
        return [FamilyMember.model_validate(row) for row in rows]

    async def get(self, member_id: str) -> FamilyMember:
        row = await self.store.get(MEMBERS_TABLE, member_id, self.user_id)
        if row is None:
            raise NotFoundError("Family member not found", member_id=member_id)
        await self._audit("view", member_id)
        return FamilyMember.model_validate(row)

    async def update(self, member_id: str, changes: FamilyMemberUpdate) -> FamilyMember:
        """Partial update; only fields present in the request are written."""
        updates = changes.model_dump(mode="json", exclude_unset=True)
        for required in ("name", "relationship"):
            if updates.get(required) is None:
                updates.pop(required, None)
        row = await self.store.update(MEMBERS_TABLE, member_id, self.user_id, updates)
        if row is None:
            raise NotFoundError("Family member not found", member_id=member_id)

        await self._audit("update", member_id, {"fields": sorted(updates)})
        return FamilyMember.model_validate(row)

    async def delete(self, member_id: str) -> None:
        """Hard delete."""
        if not await self.store.delete(MEMBERS_TABLE, member_id, self.user_id):
            raise NotFoundError("Family member not found", member_id=member_id)

        logger.info(
            "Family member deleted",
            extra={"extra_fields": {"user_id": self.user_id, "member_id": member_id}}
        )
        await self._audit("delete", member_id)

    async def record_trend(self, trend: FamilyHealthTrendCreate) -> FamilyHealthTrend:
        """
        Store one measurement.

        Raises:
            NotFoundError: ``family_member_id`` is set but is not one of this user's relatives
        """
        member_id = trend.family_member_id
        if member_id and await self.store.get(MEMBERS_TABLE, member_id, self.user_id) is None:
            raise NotFoundError("Family member not found", member_id=member_id)

        row = trend.model_dump(mode="json")
        row["user_id"] = self.user_id
        stored = await self.store.insert(TRENDS_TABLE, row)

        if member_id:
            await self._audit("record_trend", member_id, {"metric_name": trend.metric_name})
        return FamilyHealthTrend.model_validate(stored)

    async def trends(self, member_id: Optional[str] = None) -> List[FamilyHealthTrend]:
        """Measurements, most recently recorded first, optionally for one relative."""
        filters = {"family_member_id": member_id} if member_id is not None else None
        rows = await self.store.select(
            TRENDS_TABLE, self.user_id,
            filters=filters, order_by="recorded_date", descending=True,
        )
        return [FamilyHealthTrend.model_validate(row) for row in rows]
