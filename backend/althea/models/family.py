"""
Family Models - Relatives tracked by a user and the shared-condition
patterns derived from them.
"""

from datetime import date, datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

RiskLevel = Literal["low", "moderate", "high"]


def _unique(values: Optional[List[str]]) -> List[str]:
    """Drop blank and exactly repeated entries; values are kept verbatim."""
    seen: List[str] = []
    for value in values or []:
        if value.strip() and value not in seen:
            seen.append(value)
    return seen


class FamilyMemberBase(BaseModel):
    """Fields shared by create and read models."""
    name: str = Field(..., min_length=1, max_length=120)
    relationship: str = Field(..., min_length=1, max_length=60)
    date_of_birth: Optional[date] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[str] = None
    conditions: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    medical_history_notes: Optional[str] = None

    @field_validator("name", "relationship")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("conditions", "allergies")
    @classmethod
    def _dedupe(cls, values: List[str]) -> List[str]:
        return _unique(values)


class FamilyMemberCreate(FamilyMemberBase):
    """Payload for adding a relative."""
    pass


class FamilyMemberUpdate(BaseModel):
    """Partial update - only fields that are set are written."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    relationship: Optional[str] = Field(default=None, min_length=1, max_length=60)
    date_of_birth: Optional[date] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[str] = None
    conditions: Optional[List[str]] = None
    allergies: Optional[List[str]] = None
    medical_history_notes: Optional[str] = None

    @field_validator("name", "relationship")
    @classmethod
    def _not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("conditions", "allergies")
    @classmethod
    def _dedupe(cls, values: Optional[List[str]]) -> Optional[List[str]]:
        return None if values is None else _unique(values)


class FamilyMember(FamilyMemberBase):
    """A stored relative."""
    id: str
    user_id: str
    created_at: datetime
    updated_at: datetime


class PatternMemberDetail(BaseModel):
    """One affected relative, with every condition they have on record."""
    member_id: str
    member_name: str
    relationship: str
    conditions: List[str]


class FamilyPattern(BaseModel):
    """A condition recorded for two or more relatives."""
    pattern_type: str  # the condition string, verbatim
    affected_members: List[str]
    risk_level: RiskLevel
    description: str
    member_details: List[PatternMemberDetail]


class StoredFamilyPattern(BaseModel):
    """A persisted pattern row."""
    id: str
    user_id: str
    pattern_type: str
    affected_members: List[str]
    risk_level: RiskLevel
    description: str
    detected_at: datetime


class FamilyHealthTrendCreate(BaseModel):
    """One dated measurement, optionally tied to a relative."""
    family_member_id: Optional[str] = None  # None for the user themself
    metric_name: str = Field(..., min_length=1, max_length=120)
    metric_value: float
    metric_unit: Optional[str] = None
    recorded_date: date
    source_session_id: Optional[str] = None
    notes: Optional[str] = None


class FamilyHealthTrend(FamilyHealthTrendCreate):
    """A stored measurement."""
    id: str
    user_id: str
    created_at: datetime
