"""Models module."""

from .user import TokenData
from .family import (
    FamilyMember, FamilyMemberCreate, FamilyMemberUpdate,
    FamilyPattern, PatternMemberDetail, StoredFamilyPattern,
    FamilyHealthTrend, FamilyHealthTrendCreate,
)
from .document import FileRecord, LabResult, StructuredData, ParsedDocument, ParsedDocumentUpdate
from .session import (
    Session, SessionStage, SessionStatus, SessionProgress, UploadOutcome,
    CustomizeRequest, ApproveRequest, InsightRequest,
)
from .insights import InsightsPayload, HealthInsights, HealthReport, HealthReportDetail, ReportQuestion

__all__ = [
    'TokenData',
    'FamilyMember', 'FamilyMemberCreate', 'FamilyMemberUpdate',
    'FamilyPattern', 'PatternMemberDetail', 'StoredFamilyPattern',
    'FamilyHealthTrend', 'FamilyHealthTrendCreate',
    'FileRecord', 'LabResult', 'StructuredData', 'ParsedDocument', 'ParsedDocumentUpdate',
    'Session', 'SessionStage', 'SessionStatus', 'SessionProgress', 'UploadOutcome',
    'CustomizeRequest', 'ApproveRequest', 'InsightRequest',
    'InsightsPayload', 'HealthInsights', 'HealthReport', 'HealthReportDetail', 'ReportQuestion',
]
