"""
Report History - every report rendered for a session, with its saved
questions, and signed links to download any of them.
"""

import logging
from typing import Any, Dict, List

from ..models.insights import HealthReport, HealthReportDetail, ReportQuestion
from ..storage.interface import BlobStore
from ..storage.record_store import RecordStore
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)

REPORTS_TABLE = "health_reports"
QUESTIONS_TABLE = "report_questions"
ACCESS_LOG_TABLE = "report_access_log"


class ReportHistory:
    """Read side of the ``health_reports`` table."""

    def __init__(self, store: RecordStore, blob_store: BlobStore, signed_url_expire_seconds: int = 600):
        self.store = store
        self.blob_store = blob_store
        self.signed_url_expire_seconds = signed_url_expire_seconds

    async def _questions(self, user_id: str, report_id: str) -> List[ReportQuestion]:
        rows = await self.store.select(QUESTIONS_TABLE, user_id, filters={"report_id": report_id})
        rows.sort(key=lambda row: row.get("sort_order", 0))
        return [ReportQuestion.model_validate(row) for row in rows]

    async def _log(self, user_id: str, report: HealthReport, action: str) -> None:
        try:
            await self.store.insert(ACCESS_LOG_TABLE, {
                "user_id": user_id,
                "report_id": report.id,
                "session_id": report.session_id,
                "action": action,
            })
        except Exception as e:
            logger.warning(f"Failed to write report access log: {e}")

    async def list_reports(self, user_id: str, session_id: str) -> List[HealthReportDetail]:
        """Reports for a session, newest first."""
        rows = await self.store.select(
            REPORTS_TABLE, user_id,
            filters={"session_id": session_id}, order_by="generated_at", descending=True,
        )
        reports = []
        for row in rows:
            questions = await self._questions(user_id, row["id"])
            reports.append(HealthReportDetail(**row, questions=questions))
        return reports

    async def get_report(self, user_id: str, session_id: str, report_id: str) -> HealthReportDetail:
        """
        One report of the session with its questions; logged as viewed.

        Raises:
            NotFoundError: No such report for this user and session
        """
        row = await self.store.get(REPORTS_TABLE, report_id, user_id)
        if row is None or row.get("session_id") != session_id:
            raise NotFoundError("Report not found", report_id=report_id)

        report = HealthReportDetail(**row, questions=await self._questions(user_id, report_id))
        await self._log(user_id, report, "viewed")
        return report

    async def download_url(self, user_id: str, session_id: str, report_id: str) -> Dict[str, Any]:
        """
        Signed link to a past report; logged as downloaded.

        Raises:
            NotFoundError: The report or its stored file no longer exists
        """
        row = await self.store.get(REPORTS_TABLE, report_id, user_id)
        if row is None or row.get("session_id") != session_id:
            raise NotFoundError("Report not found", report_id=report_id)
        report = HealthReport.model_validate(row)

        if not await self.blob_store.exists(report.storage_path):
            raise NotFoundError("Report file is no longer stored", report_id=report_id)

        await self._log(user_id, report, "downloaded")
        return {
            "url": self.blob_store.create_signed_url(report.storage_path, self.signed_url_expire_seconds),
            "filename": f"althea-health-report-{report.id[:8]}.html",
            "expires_in": self.signed_url_expire_seconds,
        }
