"""
Pattern Detector - finds conditions shared by two or more family members.

Condition strings are opaque and case-sensitive: "Diabetes" and "diabetes"
are different conditions.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List

from ..models.family import FamilyPattern, PatternMemberDetail, StoredFamilyPattern
from ..storage.record_store import RecordStore
from .exceptions import PatternDetectionError

logger = logging.getLogger(__name__)

MEMBERS_TABLE = "family_members"
PATTERNS_TABLE = "family_patterns"


def risk_tier(affected_count: int) -> str:
    """Risk tier for a number of affected members."""
    if affected_count >= 3:
        return "high"
    if affected_count == 2:
        return "moderate"
    # Unreachable for emitted patterns, which always have two or more members
    return "low"


def describe_pattern(condition: str, member_names: List[str]) -> str:
    count = len(member_names)
    plural = "s" if count > 1 else ""
    return f"{condition} detected in {count} family member{plural}: {', '.join(member_names)}"


class PatternDetector:
    """
    Recomputes a user's shared-condition patterns from scratch and persists
    them, keyed on (user, condition).
    """

    def __init__(self, store: RecordStore):
        """
        Args:
            store: Record store holding family members and stored patterns
        """
        self.store = store

    async def analyze(self, user_id: str) -> List[FamilyPattern]:
        """
        Compute and persist every shared-condition pattern for a user.

        Args:
            user_id: Owner of the family members

        Returns:
            List[FamilyPattern]: The computed patterns, whether or not saving succeeded

        Raises:
            PatternDetectionError: If family members could not be loaded
        """
        try:
            members = await self.store.select(MEMBERS_TABLE, user_id, order_by="created_at")
        except Exception as e:
            logger.error(
                f"Failed to load family members for pattern analysis: {e}",
                extra={"extra_fields": {"user_id": user_id}}
            )
            raise PatternDetectionError("Could not load family members", user_id=user_id) from e

        patterns = self.compute(members)
        await self._persist(user_id, patterns)

        logger.info(
            f"Detected {len(patterns)} family patterns",
            extra={"extra_fields": {
                "user_id": user_id,
                "member_count": len(members),
                "pattern_count": len(patterns),
            }}
        )
        return patterns

    @staticmethod
    def compute(members: List[Dict]) -> List[FamilyPattern]:
        """Group members by exact condition string; pure, no I/O."""
        buckets: "OrderedDict[str, List[Dict]]" = OrderedDict()
        for member in members:
            for condition in member.get("conditions") or []:
                bucket = buckets.setdefault(condition, [])
                if member not in bucket:
                    bucket.append(member)

        patterns = []
        for condition, affected in buckets.items():
            if len(affected) < 2:
                continue
            names = [m.get("name", "") for m in affected]
            patterns.append(FamilyPattern(
                pattern_type=condition,
                affected_members=[m["id"] for m in affected],
                risk_level=risk_tier(len(affected)),
                description=describe_pattern(condition, names),
                member_details=[
                    PatternMemberDetail(
                        member_id=m["id"],
                        member_name=m.get("name", ""),
                        relationship=m.get("relationship", ""),
                        conditions=list(m.get("conditions") or []),
                    )
                    for m in affected
                ],
            ))
        return patterns

    async def _persist(self, user_id: str, patterns: List[FamilyPattern]) -> None:
        """Upsert current patterns, then drop ones that no longer qualify. Never raises."""
        detected_at = datetime.now(timezone.utc).isoformat()
        rows = [
            {
                "user_id": user_id,
                "pattern_type": p.pattern_type,
                "affected_members": p.affected_members,
                "risk_level": p.risk_level,
                "description": p.description,
                "detected_at": detected_at,
            }
            for p in patterns
        ]

        try:
            await self.store.upsert(PATTERNS_TABLE, rows, conflict_keys=("user_id", "pattern_type"))
        except Exception as e:
            logger.error(
                f"Failed to save family patterns: {e}",
                extra={"extra_fields": {"user_id": user_id, "pattern_count": len(rows)}}
            )

        current = {p.pattern_type for p in patterns}
        try:
            removed = await self.store.delete_where(
                PATTERNS_TABLE, user_id, lambda row: row.get("pattern_type") not in current
            )
            if removed:
                logger.info(
                    f"Removed {removed} stale family patterns",
                    extra={"extra_fields": {"user_id": user_id}}
                )
        except Exception as e:
            logger.error(
                f"Failed to prune stale family patterns: {e}",
                extra={"extra_fields": {"user_id": user_id}}
            )

    async def stored_patterns(self, user_id: str) -> List[StoredFamilyPattern]:
        """Patterns as last persisted for a user."""
        rows = await self.store.select(PATTERNS_TABLE, user_id, order_by="pattern_type")
        return [StoredFamilyPattern.model_validate(row) for row in rows]
