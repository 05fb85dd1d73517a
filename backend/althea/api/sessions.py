"""
Session API endpoints - upload, extraction review, customization, insights
and reports.
"""

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from typing import List, Optional

from ..container import AppServices
from ..core.session_pipeline import UploadedFile
from ..models import (
    ApproveRequest, CustomizeRequest, FileRecord, HealthInsights, HealthReportDetail, InsightRequest,
    ParsedDocument, ParsedDocumentUpdate, Session, SessionProgress, UploadOutcome,
)
from ..models.session import LanguageLevel, Tone
from ..utils.auth import get_current_user_id
from .deps import get_services

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=UploadOutcome, status_code=status.HTTP_201_CREATED)
async def start_session(
    files: List[UploadFile] = File(...),
    tone: Optional[Tone] = Form(default=None),
    language_level: Optional[LanguageLevel] = Form(default=None),
    family_member_id: Optional[str] = Form(default=None),
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """
    Start a session from up to the per-session limit of files.

    Extra files are dropped with a warning; extraction runs before the
    response is returned.
    """
    uploads = []
    for upload in files:
        data = await upload.read()
        uploads.append(UploadedFile(
            filename=upload.filename or "",
            content_type=upload.content_type or "application/octet-stream",
            data=data,
        ))

    return await services.pipeline.start_session(
        user_id, uploads,
        tone=tone,
        language_level=language_level,
        family_member_id=family_member_id or None,
    )


@router.get("/{session_id}", response_model=Session)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await services.pipeline.get_session(user_id, session_id)


@router.get("/{session_id}/progress", response_model=SessionProgress)
async def get_progress(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await services.pipeline.progress(user_id, session_id)


@router.get("/{session_id}/files", response_model=List[FileRecord])
async def list_files(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await services.pipeline.list_files(user_id, session_id)


@router.post("/{session_id}/parse", response_model=Session)
async def parse_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Retry extraction from the manual document review stage."""
    return await services.pipeline.parse_session(user_id, session_id)


@router.get("/{session_id}/parsed-documents", response_model=List[ParsedDocument])
async def list_parsed_documents(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await services.pipeline.list_parsed_documents(user_id, session_id)


@router.put("/{session_id}/parsed-documents/{document_id}", response_model=ParsedDocument)
async def update_parsed_document(
    session_id: str,
    document_id: str,
    update: ParsedDocumentUpdate,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Manually correct extracted data."""
    return await services.pipeline.update_parsed_document(
        user_id, session_id, document_id, update.structured_data
    )


@router.post("/{session_id}/review/confirm", response_model=Session)
async def confirm_review(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await services.pipeline.confirm_review(user_id, session_id)


@router.post("/{session_id}/customize", response_model=Session)
async def customize(
    session_id: str,
    request: CustomizeRequest,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await services.pipeline.customize(user_id, session_id, request.tone, request.language_level)


@router.post("/{session_id}/customize/back", response_model=Session)
async def back_to_customize(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await services.pipeline.back_to_customize(user_id, session_id)


@router.post("/{session_id}/approve", response_model=HealthInsights)
async def approve_preview(
    session_id: str,
    request: Optional[ApproveRequest] = None,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Approve the data preview and generate insights."""
    feedback = request.feedback if request else None
    return await services.pipeline.approve_preview(user_id, session_id, feedback)


@router.post("/{session_id}/insights", response_model=HealthInsights)
async def generate_insights(
    session_id: str,
    request: Optional[InsightRequest] = None,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Generate, or regenerate, insights with optional new preferences."""
    request = request or InsightRequest()
    return await services.pipeline.generate_insights(
        user_id, session_id, request.tone, request.language_level
    )


@router.get("/{session_id}/insights", response_model=HealthInsights)
async def get_insights(
    session_id: str,
    tone: Optional[Tone] = Query(default=None),
    language_level: Optional[LanguageLevel] = Query(default=None),
    generate: bool = Query(default=True),
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Insights for exactly these preferences; generated if missing."""
    return await services.pipeline.get_insights(
        user_id, session_id, tone, language_level, generate=generate
    )


@router.post("/{session_id}/report")
async def download_report(
    session_id: str,
    tone: Optional[Tone] = Query(default=None),
    language_level: Optional[LanguageLevel] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Resolve the report (cached when possible) and send it as an attachment."""
    report = await services.pipeline.generate_report(user_id, session_id, tone, language_level)
    return Response(
        content=report.content,
        media_type=report.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{report.filename}"',
            "X-Report-Cached": str(report.cached).lower(),
            "X-Report-Fallback": str(report.fallback).lower(),
        },
    )


@router.get("/{session_id}/report/url")
async def report_url(
    session_id: str,
    tone: Optional[Tone] = Query(default=None),
    language_level: Optional[LanguageLevel] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Short-lived signed URL for the session's stored report."""
    return await services.pipeline.report_download_url(user_id, session_id, tone, language_level)


@router.get("/{session_id}/reports", response_model=List[HealthReportDetail])
async def list_reports(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Every report rendered for the session, newest first, with saved questions."""
    await services.pipeline.get_session(user_id, session_id)
    return await services.reports.list_reports(user_id, session_id)


@router.get("/{session_id}/reports/{report_id}", response_model=HealthReportDetail)
async def get_report(
    session_id: str,
    report_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    await services.pipeline.get_session(user_id, session_id)
    return await services.reports.get_report(user_id, session_id, report_id)


@router.get("/{session_id}/reports/{report_id}/url")
async def past_report_url(
    session_id: str,
    report_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Short-lived signed URL for one report from the history."""
    await services.pipeline.get_session(user_id, session_id)
    return await services.reports.download_url(user_id, session_id, report_id)
