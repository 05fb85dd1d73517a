"""
Session Models - Document-processing workflow instances.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from .document import FileRecord

Tone = Literal["friendly", "professional", "empathetic"]
LanguageLevel = Literal["simple", "moderate", "technical"]

TONES = ("friendly", "professional", "empathetic")
LANGUAGE_LEVELS = ("simple", "moderate", "technical")
DEFAULT_TONE: Tone = "friendly"
DEFAULT_LANGUAGE_LEVEL: LanguageLevel = "simple"


class SessionStatus(str, Enum):
    """Coarse status; never moves to a lower rank."""
    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    SessionStatus.PENDING: 0,
    SessionStatus.PROCESSING: 1,
    SessionStatus.FAILED: 2,
    SessionStatus.COMPLETED: 3,
}


class SessionStage(str, Enum):
    """Fine-grained workflow stage, persisted at every transition."""
    CREATED = "created"
    UPLOADING = "uploading"
    PARSING = "parsing"
    REVIEWING_DOCUMENTS = "reviewing_documents"
    REVIEWING_PARSED_DATA = "reviewing_parsed_data"
    CUSTOMIZING = "customizing"
    PREVIEWING_DATA = "previewing_data"
    GENERATING_INSIGHTS = "generating_insights"
    REVIEWING_INSIGHTS = "reviewing_insights"
    GENERATING_REPORT = "generating_report"
    COMPLETED = "completed"


def insight_key(tone: str, language_level: str) -> str:
    """Key of the current-insight index on a session."""
    return f"{tone}:{language_level}"


class Session(BaseModel):
    """One upload → parse → review → insights → report workflow."""
    id: str
    user_id: str
    family_member_id: Optional[str] = None
    tone: Tone = DEFAULT_TONE
    language_level: LanguageLevel = DEFAULT_LANGUAGE_LEVEL
    status: SessionStatus = SessionStatus.PENDING
    stage: SessionStage = SessionStage.CREATED
    # insight_key(tone, language_level) -> id of the newest HealthInsights row
    current_insights: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    def current_insight_id(self, tone: str, language_level: str) -> Optional[str]:
        return self.current_insights.get(insight_key(tone, language_level))


class CustomizeRequest(BaseModel):
    """Tone and vocabulary preferences for generated text."""
    tone: Tone
    language_level: LanguageLevel


class ApproveRequest(BaseModel):
    """Approval of the data preview, with optional free-text feedback."""
    feedback: Optional[str] = Field(default=None, max_length=4000)


class InsightRequest(BaseModel):
    """Generate or regenerate insights, optionally with new preferences."""
    tone: Optional[Tone] = None
    language_level: Optional[LanguageLevel] = None


class UploadOutcome(BaseModel):
    """Result of starting a session from a file selection."""
    session: Session
    files: List[FileRecord]
    dropped_files: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    parsed: bool = False


class SessionProgress(BaseModel):
    """Snapshot for progress indicators."""
    session_id: str
    stage: SessionStage
    status: SessionStatus
    files_uploaded: int
    documents_parsed: int
    percent_complete: int

