"""
Document Models - Uploaded files and their structured extraction results.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class FileRecord(BaseModel):
    """An uploaded document. Immutable apart from deletion."""
    id: str
    session_id: str
    user_id: str
    storage_path: str
    file_name: str
    file_type: str
    file_size: int
    created_at: datetime


class LabResult(BaseModel):
    """One measured value from a lab report."""
    model_config = ConfigDict(extra="allow")

    test_name: str = ""
    value: str = ""
    unit: str = ""
    reference_range: str = ""
    status: str = ""
    test_date: Optional[str] = None


class StructuredData(BaseModel):
    """Structured extraction payload for one document."""
    model_config = ConfigDict(extra="allow")

    patient_info: Dict[str, Any] = Field(default_factory=dict)
    report_date: str = ""
    lab_name: str = ""
    doctor_name: str = ""
    test_results: List[LabResult] = Field(default_factory=list)
    diagnoses: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    summary: str = ""


class ParsedDocument(BaseModel):
    """Extraction result for one file; user-editable after creation."""
    id: str
    file_id: str
    session_id: str
    user_id: str
    file_name: Optional[str] = None
    parsing_status: str = "completed"
    structured_data: StructuredData
    confidence_scores: Dict[str, float] = Field(default_factory=dict)
    manually_edited: bool = False
    created_at: datetime
    updated_at: datetime


class ParsedDocumentUpdate(BaseModel):
    """Manual correction - replaces the structured payload in place."""
    structured_data: StructuredData
