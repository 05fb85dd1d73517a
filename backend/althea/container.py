"""
Service container - builds the stores and services once per application.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import Settings
from .core.pattern_detector import PatternDetector
from .core.report_cache import ReportCache
from .core.report_history import ReportHistory
from .core.session_pipeline import SessionPipeline
from .llm.base import LLMProvider
from .llm.factory import create_llm_provider
from .services.extraction import ExtractionService, LLMExtractionService
from .services.insights import InsightService, LLMInsightService
from .services.reports import LocalReportRenderingService, ReportRenderingService
from .storage.interface import BlobStore
from .storage.local_storage import LocalBlobStore
from .storage.record_store import JSONRecordStore, RecordStore

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Everything a request handler needs."""
    settings: Settings
    record_store: RecordStore
    blob_store: BlobStore
    detector: PatternDetector
    report_cache: ReportCache
    pipeline: SessionPipeline
    reports: ReportHistory


def build_services(
    settings: Settings,
    llm_provider: Optional[LLMProvider] = None,
    extraction: Optional[ExtractionService] = None,
    insights: Optional[InsightService] = None,
    renderer: Optional[ReportRenderingService] = None,
) -> AppServices:
    """
    Wire stores and services from settings.

    Any AI service may be passed in to replace the default LLM-backed one.
    """
    blob_store = LocalBlobStore(settings.blob_storage_path)
    record_store = JSONRecordStore(LocalBlobStore(settings.record_storage_path))

    if llm_provider is None and (extraction is None or insights is None):
        llm_provider = create_llm_provider(
            provider=settings.llm_provider,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            timeout=settings.llm_timeout_seconds,
        )
        if llm_provider is None:
            logger.warning("No LLM API key configured; extraction and insights are unavailable")

    extraction = extraction or LLMExtractionService(llm_provider, blob_store)
    insights = insights or LLMInsightService(llm_provider)
    renderer = renderer or LocalReportRenderingService(record_store, blob_store)

    report_cache = ReportCache(
        record_store, blob_store, renderer,
        offline_fallback=settings.report_offline_fallback,
        report_type=settings.report_type,
        include_questions=settings.report_include_questions,
    )
    pipeline = SessionPipeline(
        record_store, blob_store, extraction, insights, report_cache,
        max_files=settings.max_files_per_session,
        max_file_size=settings.max_file_size_bytes,
        allowed_file_types=settings.allowed_file_types,
        signed_url_expire_seconds=settings.signed_url_expire_seconds,
    )

    logger.info(
        "Services initialized",
        extra={"extra_fields": {
            "blob_storage_path": str(Path(settings.blob_storage_path).resolve()),
            "record_storage_path": str(Path(settings.record_storage_path).resolve()),
            "llm_provider": settings.llm_provider if llm_provider else None,
        }}
    )
    return AppServices(
        settings=settings,
        record_store=record_store,
        blob_store=blob_store,
        detector=PatternDetector(record_store),
        report_cache=report_cache,
        pipeline=pipeline,
        reports=ReportHistory(record_store, blob_store, settings.signed_url_expire_seconds),
    )
