"""
Insight Models - AI interpretation of a session and the reports rendered
from it.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

Urgency = Literal["none", "routine", "urgent", "emergency"]
URGENCY_LEVELS = ("none", "routine", "urgent", "emergency")


class KeyFinding(BaseModel):
    model_config = ConfigDict(extra="allow")

    category: str = "General"
    finding: str = ""
    significance: str = ""
    action_needed: str = ""


class AbnormalValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    test_name: str = ""
    value: str = ""
    normal_range: str = ""
    status: str = ""
    explanation: str = ""


class Recommendation(BaseModel):
    model_config = ConfigDict(extra="allow")

    category: str = ""
    recommendation: str = ""
    priority: str = "medium"


class ScreeningSuggestion(BaseModel):
    model_config = ConfigDict(extra="allow")

    condition: str = ""
    reason: str = ""
    who_should_screen: str = ""


class InsightsPayload(BaseModel):
    """The interpretation itself, as returned by the insight service."""
    summary: str = ""
    key_findings: List[KeyFinding] = Field(default_factory=list)
    abnormal_values: List[AbnormalValue] = Field(default_factory=list)
    doctor_questions: List[str] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    family_screening: List[ScreeningSuggestion] = Field(default_factory=list)
    follow_up_timeline: str = ""
    urgency_flag: Urgency = "none"

    @field_validator("urgency_flag", mode="before")
    @classmethod
    def _known_urgency(cls, value: Any) -> str:
        value = str(value or "none").strip().lower()
        return value if value in URGENCY_LEVELS else "none"


class HealthInsights(InsightsPayload):
    """A stored interpretation for one (session, tone, language level)."""
    id: str
    session_id: str
    user_id: str
    tone: str
    language_level: str
    report_storage_path: Optional[str] = None
    created_at: datetime


class HealthReport(BaseModel):
    """A rendered, downloadable report artifact."""
    id: str
    session_id: str
    user_id: str
    insight_id: Optional[str] = None
    report_type: str = "comprehensive"
    storage_path: str
    file_size: int
    generated_at: datetime


class ReportQuestion(BaseModel):
    """A doctor question saved alongside a rendered report."""
    id: str
    report_id: str
    user_id: str
    question_text: str
    priority: str = "medium"
    category: str = "General"
    clinical_context: str = ""
    sort_order: int = 0


class HealthReportDetail(HealthReport):
    """A report with its saved questions, as listed in the report history."""
    questions: List[ReportQuestion] = Field(default_factory=list)
