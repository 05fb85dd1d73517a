"""
Report rendering service - renders insights to a stored HTML artifact.

The service keeps its own cache: an insight that already has a rendered
report whose blob is still present is returned as-is with ``cached=True``.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from ..core.exceptions import ReportGenerationError, ReportServiceUnavailable
from ..models.document import ParsedDocument
from ..models.insights import HealthInsights, HealthReport
from ..storage.interface import BlobStore
from ..storage.record_store import RecordStore
from .report_template import REPORT_MEDIA_TYPE, render_report_html

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Where the rendered artifact lives and whether it was reused."""
    storage_path: str
    cached: bool
    report: Optional[HealthReport] = None


def report_storage_path(user_id: str, report_id: str) -> str:
    return f"reports/{user_id}/{report_id}.html"


class ReportRenderingService(ABC):
    """External report-rendering service."""

    @abstractmethod
    async def render(
        self,
        user_id: str,
        session_id: str,
        insight_id: str,
        report_type: str = "comprehensive",
        include_questions: bool = True,
    ) -> RenderResult:
        """
        Render (or reuse) the report for one insight set.

        Raises:
            ReportServiceUnavailable: The service or its storage could not be reached
            ReportGenerationError: Rendering failed
        """
        pass


class LocalReportRenderingService(ReportRenderingService):
    """In-process renderer writing reports to the blob store."""

    def __init__(self, store: RecordStore, blob_store: BlobStore):
        self.store = store
        self.blob_store = blob_store

    async def _existing_report(self, user_id: str, insight_id: str) -> Optional[HealthReport]:
        rows = await self.store.select(
            "health_reports", user_id,
            filters={"insight_id": insight_id},
            order_by="generated_at", descending=True, limit=1,
        )
        if not rows:
            return None
        report = HealthReport.model_validate(rows[0])
        if not await self.blob_store.exists(report.storage_path):
            return None
        return report

    async def render(
        self,
        user_id: str,
        session_id: str,
        insight_id: str,
        report_type: str = "comprehensive",
        include_questions: bool = True,
    ) -> RenderResult:
        row = await self.store.get("health_insights", insight_id, user_id)
        if row is None or row.get("session_id") != session_id:
            raise ReportGenerationError(
                "No insights to render for this session",
                session_id=session_id, insight_id=insight_id,
            )
        insights = HealthInsights.model_validate(row)

        existing = await self._existing_report(user_id, insight_id)
        if existing is not None:
            logger.info(
                f"Reusing rendered report {existing.id}",
                extra={"extra_fields": {"session_id": session_id, "report_id": existing.id}}
            )
            return RenderResult(storage_path=existing.storage_path, cached=True, report=existing)

        documents = [
            ParsedDocument.model_validate(doc)
            for doc in await self.store.select(
                "parsed_documents", user_id,
                filters={"session_id": session_id}, order_by="created_at",
            )
        ]

        report_id = str(uuid.uuid4())
        generated_at = datetime.now(timezone.utc)
        html = render_report_html(
            insights, documents,
            generated_at=generated_at, report_id=report_id,
            include_questions=include_questions, report_type=report_type,
        )
        content = html.encode("utf-8")
        path = report_storage_path(user_id, report_id)

        saved = await self.blob_store.save(path, content, metadata={
            "content_type": REPORT_MEDIA_TYPE,
            "session_id": session_id,
            "insight_id": insight_id,
        })
        if not saved:
            raise ReportServiceUnavailable(
                "Report storage is unavailable", session_id=session_id,
            )

        stored = await self.store.insert("health_reports", {
            "id": report_id,
            "session_id": session_id,
            "user_id": user_id,
            "insight_id": insight_id,
            "report_type": report_type,
            "storage_path": path,
            "file_size": len(content),
            "generated_at": generated_at.isoformat(),
        })
        if include_questions:
            await self._save_questions(user_id, report_id, insights.doctor_questions)
        await self._log_generated(user_id, report_id, session_id)

        logger.info(
            f"Rendered report {report_id} ({len(content)} bytes)",
            extra={"extra_fields": {
                "session_id": session_id,
                "report_id": report_id,
                "insight_id": insight_id,
                "file_size": len(content),
            }}
        )
        return RenderResult(storage_path=path, cached=False, report=HealthReport.model_validate(stored))

    async def _save_questions(self, user_id: str, report_id: str, questions: List[str]) -> None:
        """Store the report's doctor questions in display order. Failures are logged."""
        try:
            for order, question in enumerate(questions):
                await self.store.insert("report_questions", {
                    "user_id": user_id,
                    "report_id": report_id,
                    "question_text": question,
                    "priority": "medium",
                    "category": "General",
                    "clinical_context": "",
                    "sort_order": order,
                })
        except Exception as e:
            logger.warning(f"Failed to save report questions for {report_id}: {e}")

    async def _log_generated(self, user_id: str, report_id: str, session_id: str) -> None:
        try:
            await self.store.insert("report_access_log", {
                "user_id": user_id,
                "report_id": report_id,
                "session_id": session_id,
                "action": "generated",
            })
        except Exception as e:
            logger.warning(f"Failed to write report access log: {e}")
