"""
Report Cache - avoids re-rendering a report that already exists.

Lookup order for a (session, tone, language level):
1. a storage path already verified by this process for the current insight
   is downloaded directly;
2. otherwise the current insight's ``report_storage_path`` is read;
3. that path is trusted only if listing its directory shows the blob;
4. on a miss the rendering service is called once and the new path is
   written back to the insight and to memory.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..models.document import ParsedDocument
from ..models.insights import HealthInsights
from ..models.session import Session
from ..services.report_template import REPORT_MEDIA_TYPE, render_report_html
from ..services.reports import ReportRenderingService
from ..storage.interface import BlobStore
from ..storage.record_store import RecordStore
from .exceptions import (
    AltheaError, NotFoundError, ReportGenerationError, ReportServiceUnavailable,
)

logger = logging.getLogger(__name__)

INSIGHTS_TABLE = "health_insights"
ACCESS_LOG_TABLE = "report_access_log"


def report_filename(session_id: str) -> str:
    return f"althea-health-report-{session_id[:8]}.html"


@dataclass
class ResolvedReport:
    """A report ready to be served as a download."""
    content: bytes
    filename: str
    media_type: str
    storage_path: Optional[str]
    insight_id: str
    cached: bool = False  # served without calling the rendering service
    fallback: bool = False  # rendered offline, never stored


class ReportCache:
    """
    Client-side report cache in front of a ReportRenderingService.
    """

    def __init__(
        self,
        store: RecordStore,
        blob_store: BlobStore,
        renderer: ReportRenderingService,
        offline_fallback: bool = True,
        report_type: str = "comprehensive",
        include_questions: bool = True,
    ):
        self.store = store
        self.blob_store = blob_store
        self.renderer = renderer
        self.offline_fallback = offline_fallback
        self.report_type = report_type
        self.include_questions = include_questions
        # (session_id, tone, language_level) -> (insight_id, verified storage path)
        self._verified: Dict[Tuple[str, str, str], Tuple[str, str]] = {}

    def forget(self, session_id: str, tone: Optional[str] = None,
               language_level: Optional[str] = None) -> None:
        """Drop verified paths for a session, or only for one preference combination."""
        for key in [k for k in self._verified if k[0] == session_id]:
            if tone is not None and key[1] != tone:
                continue
            if language_level is not None and key[2] != language_level:
                continue
            del self._verified[key]

    async def current_insight(self, user_id: str, session: Session,
                              tone: str, language_level: str) -> Optional[HealthInsights]:
        """The current insight for exactly this tone and language level."""
        insight_id = session.current_insight_id(tone, language_level)
        if insight_id:
            row = await self.store.get(INSIGHTS_TABLE, insight_id, user_id)
            if row and row.get("tone") == tone and row.get("language_level") == language_level:
                return HealthInsights.model_validate(row)

        rows = await self.store.select(
            INSIGHTS_TABLE, user_id,
            filters={"session_id": session.id, "tone": tone, "language_level": language_level},
            order_by="created_at", descending=True, limit=1,
        )
        return HealthInsights.model_validate(rows[0]) if rows else None

    async def _blob_present(self, path: str) -> bool:
        directory, _, name = path.rpartition("/")
        listed = await self.blob_store.list(directory)
        return path in listed or name in listed

    async def resolve(
        self,
        user_id: str,
        session: Session,
        tone: Optional[str] = None,
        language_level: Optional[str] = None,
    ) -> ResolvedReport:
        """
        Resolve the report for a session's preferences, rendering only on a miss.

        Raises:
            NotFoundError: No insights exist for these preferences
            ReportGenerationError: Rendering failed and no fallback applied
        """
        tone = tone or session.tone
        language_level = language_level or session.language_level
        key = (session.id, tone, language_level)
        filename = report_filename(session.id)

        current_id = session.current_insight_id(tone, language_level)
        insight_id, path = self._verified.get(key, (None, None))
        if path and insight_id != current_id:
            logger.debug(f"Report cache entry belongs to a replaced insight: {insight_id}")
            del self._verified[key]
        elif path:
            content = await self.blob_store.load(path)
            if content is not None:
                logger.debug(f"Report cache hit (memory): {path}")
                resolved = ResolvedReport(content, filename, REPORT_MEDIA_TYPE, path, insight_id, cached=True)
                await self._log_download(user_id, session.id, resolved)
                return resolved
            del self._verified[key]

        insight = await self.current_insight(user_id, session, tone, language_level)
        if insight is None:
            raise NotFoundError(
                "No insights exist for these preferences",
                session_id=session.id, tone=tone, language_level=language_level,
            )

        path = insight.report_storage_path
        if path and await self._blob_present(path):
            content = await self.blob_store.load(path)
            if content is not None:
                self._verified[key] = (insight.id, path)
                logger.info(
                    f"Report cache hit (stored path): {path}",
                    extra={"extra_fields": {"session_id": session.id, "insight_id": insight.id}}
                )
                resolved = ResolvedReport(content, filename, REPORT_MEDIA_TYPE, path, insight.id, cached=True)
                await self._log_download(user_id, session.id, resolved)
                return resolved
        elif path:
            logger.info(
                f"Cached report path is dangling, regenerating: {path}",
                extra={"extra_fields": {"session_id": session.id, "insight_id": insight.id}}
            )

        try:
            result = await self.renderer.render(
                user_id, session.id, insight.id,
                report_type=self.report_type,
                include_questions=self.include_questions,
            )
        except ReportServiceUnavailable as e:
            if not self.offline_fallback:
                raise
            logger.warning(
                f"Report service unreachable, rendering offline: {e}",
                extra={"extra_fields": {"session_id": session.id, "insight_id": insight.id}}
            )
            resolved = await self._render_offline(user_id, session, insight, filename)
            await self._log_download(user_id, session.id, resolved)
            return resolved
        except AltheaError:
            raise
        except Exception as e:
            raise ReportGenerationError(f"Report generation failed: {e}", session_id=session.id) from e

        content = await self.blob_store.load(result.storage_path)
        if content is None:
            raise ReportGenerationError(
                "Rendered report is missing from storage",
                session_id=session.id, storage_path=result.storage_path,
            )

        try:
            await self.store.update(INSIGHTS_TABLE, insight.id, user_id,
                                    {"report_storage_path": result.storage_path})
        except Exception as e:
            logger.warning(f"Failed to record report path on insights {insight.id}: {e}")
        self._verified[key] = (insight.id, result.storage_path)

        resolved = ResolvedReport(content, filename, REPORT_MEDIA_TYPE, result.storage_path, insight.id)
        await self._log_download(user_id, session.id, resolved)
        return resolved

    async def _render_offline(self, user_id: str, session: Session,
                              insight: HealthInsights, filename: str) -> ResolvedReport:
        rows = await self.store.select(
            "parsed_documents", user_id,
            filters={"session_id": session.id}, order_by="created_at",
        )
        documents: List[ParsedDocument] = [ParsedDocument.model_validate(row) for row in rows]
        html = render_report_html(
            insight, documents,
            report_id=insight.id,
            include_questions=self.include_questions,
            report_type=self.report_type,
        )
        return ResolvedReport(
            html.encode("utf-8"), filename, REPORT_MEDIA_TYPE,
            storage_path=None, insight_id=insight.id, fallback=True,
        )

    async def _log_download(self, user_id: str, session_id: str, resolved: ResolvedReport) -> None:
        try:
            await self.store.insert(ACCESS_LOG_TABLE, {
                "user_id": user_id,
                "session_id": session_id,
                "insight_id": resolved.insight_id,
                "storage_path": resolved.storage_path,
                "action": "downloaded",
                "fallback": resolved.fallback,
            })
        except Exception as e:
            logger.warning(f"Failed to write report access log: {e}")
