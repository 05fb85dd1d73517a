"""
Session Pipeline - the upload → parse → review → customize → insights →
report workflow.

The fine-grained stage is persisted on the session at every transition so a
reloaded client resumes where it left off. The coarse status is derived from
the stage and never moves to a lower rank.
"""

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional, Sequence

from ..models.document import FileRecord, ParsedDocument, StructuredData
from ..models.insights import HealthInsights
from ..models.session import (
    DEFAULT_LANGUAGE_LEVEL, DEFAULT_TONE, LANGUAGE_LEVELS, TONES,
    Session, SessionProgress, SessionStage, SessionStatus, UploadOutcome, insight_key,
)
from ..services.extraction import ExtractionService
from ..services.insights import InsightService, map_preferences
from ..storage.interface import BlobStore
from ..storage.record_store import RecordStore, utc_now_iso
from .exceptions import (
    AltheaError, ExternalServiceError, InsightGenerationError, InvalidTransitionError,
    NotFoundError, ReportGenerationError, ReportServiceUnavailable, UploadError, ValidationError,
)
from .logging_config import bind_context
from .report_cache import ReportCache, ResolvedReport

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "sessions"
FILES_TABLE = "files"
PARSED_TABLE = "parsed_documents"
INSIGHTS_TABLE = "health_insights"
PREVIEWS_TABLE = "parsing_previews"
PREFERENCES_TABLE = "user_preferences"
MEMBERS_TABLE = "family_members"

S = SessionStage

TRANSITIONS: Dict[SessionStage, frozenset] = {
    S.CREATED: frozenset({S.UPLOADING}),
    S.UPLOADING: frozenset({S.PARSING}),
    S.PARSING: frozenset({S.REVIEWING_PARSED_DATA, S.REVIEWING_DOCUMENTS}),
    S.REVIEWING_DOCUMENTS: frozenset({S.PARSING, S.CUSTOMIZING}),
    S.REVIEWING_PARSED_DATA: frozenset({S.CUSTOMIZING}),
    S.CUSTOMIZING: frozenset({S.PREVIEWING_DATA}),
    S.PREVIEWING_DATA: frozenset({S.CUSTOMIZING, S.GENERATING_INSIGHTS}),
    S.GENERATING_INSIGHTS: frozenset({S.GENERATING_INSIGHTS, S.REVIEWING_INSIGHTS}),
    S.REVIEWING_INSIGHTS: frozenset({S.GENERATING_INSIGHTS, S.GENERATING_REPORT}),
    S.GENERATING_REPORT: frozenset({S.GENERATING_REPORT, S.COMPLETED}),
    S.COMPLETED: frozenset({S.GENERATING_INSIGHTS, S.GENERATING_REPORT}),
}

STAGE_PROGRESS: Dict[SessionStage, int] = {
    S.CREATED: 0,
    S.UPLOADING: 10,
    S.PARSING: 25,
    S.REVIEWING_DOCUMENTS: 35,
    S.REVIEWING_PARSED_DATA: 40,
    S.CUSTOMIZING: 50,
    S.PREVIEWING_DATA: 60,
    S.GENERATING_INSIGHTS: 70,
    S.REVIEWING_INSIGHTS: 80,
    S.GENERATING_REPORT: 90,
    S.COMPLETED: 100,
}


def stage_status(stage: SessionStage) -> SessionStatus:
    """Coarse status implied by a stage."""
    if stage in (S.CREATED, S.UPLOADING):
        return SessionStatus.PENDING
    if stage == S.COMPLETED:
        return SessionStatus.COMPLETED
    return SessionStatus.PROCESSING


def merge_status(current: SessionStatus, requested: SessionStatus) -> SessionStatus:
    """The higher-ranked of two statuses; status never regresses."""
    return requested if requested.rank > current.rank else current


def can_transition(current: SessionStage, target: SessionStage) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def safe_filename(name: Optional[str]) -> str:
    """Last path component of a client-supplied filename."""
    name = (name or "").strip()
    return PurePosixPath(PureWindowsPath(name).name).name


@dataclass
class UploadedFile:
    """One file of an upload request, already read into memory."""
    filename: str
    content_type: str
    data: bytes


class SessionPipeline:
    """
    Drives sessions through their stages. Every operation is scoped to the
    calling user; sessions of other users are reported as not found.
    """

    def __init__(
        self,
        store: RecordStore,
        blob_store: BlobStore,
        extraction: ExtractionService,
        insights: InsightService,
        report_cache: ReportCache,
        max_files: int = 5,
        max_file_size: int = 10 * 1024 * 1024,
        allowed_file_types: Optional[Sequence[str]] = None,
        signed_url_expire_seconds: int = 600,
    ):
        self.store = store
        self.blob_store = blob_store
        self.extraction = extraction
        self.insights = insights
        self.report_cache = report_cache
        self.max_files = max_files
        self.max_file_size = max_file_size
        self.allowed_file_types = set(allowed_file_types) if allowed_file_types else None
        self.signed_url_expire_seconds = signed_url_expire_seconds

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    async def get_session(self, user_id: str, session_id: str) -> Session:
        row = await self.store.get(SESSIONS_TABLE, session_id, user_id)
        if row is None:
            raise NotFoundError("Session not found", session_id=session_id)
        return Session.model_validate(row)

    def _check_transition(self, session: Session, target: SessionStage) -> None:
        if not can_transition(session.stage, target):
            raise InvalidTransitionError(
                f"Cannot move session from {session.stage.value} to {target.value}",
                session_id=session.id,
                stage=session.stage.value,
                requested_stage=target.value,
            )

    async def _advance(self, session: Session, target: SessionStage, **changes: Any) -> Session:
        """Persist a stage transition together with any extra column changes."""
        self._check_transition(session, target)
        status = merge_status(session.status, stage_status(target))
        row = await self.store.update(SESSIONS_TABLE, session.id, session.user_id, {
            **changes,
            "stage": target.value,
            "status": status.value,
        })
        if row is None:
            raise NotFoundError("Session not found", session_id=session.id)

        bind_context(logger, user_id=session.user_id, session_id=session.id).info(
            f"Session stage {session.stage.value} -> {target.value}",
            extra={"extra_fields": {"stage": target.value, "status": status.value}}
        )
        return Session.model_validate(row)

    async def _mark_failed(self, session: Session, reason: str) -> None:
        """Record a required-stage failure. Never raises."""
        log = bind_context(logger, user_id=session.user_id, session_id=session.id)
        status = merge_status(session.status, SessionStatus.FAILED)
        try:
            await self.store.update(SESSIONS_TABLE, session.id, session.user_id, {"status": status.value})
        except Exception as e:
            log.error(f"Failed to mark session failed: {e}")
            return
        log.warning(f"Session failed at {session.stage.value}: {reason}")

    # ------------------------------------------------------------------
    # Upload and parsing
    # ------------------------------------------------------------------

    def _validate_preferences(self, tone: Optional[str], language_level: Optional[str]) -> None:
        if tone is not None and tone not in TONES:
            raise ValidationError(f"Unknown tone: {tone}", allowed=list(TONES))
        if language_level is not None and language_level not in LANGUAGE_LEVELS:
            raise ValidationError(f"Unknown language level: {language_level}", allowed=list(LANGUAGE_LEVELS))

    def _validate_upload(self, upload: UploadedFile) -> str:
        name = safe_filename(upload.filename)
        if not name:
            raise ValidationError("Every file needs a name")
        if self.allowed_file_types is not None and upload.content_type not in self.allowed_file_types:
            raise ValidationError(
                f"File type not allowed: {upload.content_type}",
                file_name=name, allowed=sorted(self.allowed_file_types),
            )
        if not upload.data:
            raise ValidationError(f"File is empty: {name}", file_name=name)
        if len(upload.data) > self.max_file_size:
            raise ValidationError(
                f"File too large: {name}",
                file_name=name, max_file_size=self.max_file_size,
            )
        return name

    async def _saved_preferences(self, user_id: str) -> Dict[str, str]:
        try:
            rows = await self.store.select(PREFERENCES_TABLE, user_id, order_by="updated_at",
                                           descending=True, limit=1)
        except Exception as e:
            logger.warning(f"Failed to read saved insight preferences: {e}")
            return {}
        return rows[0] if rows else {}

    async def _save_preferences(self, user_id: str, tone: str, language_level: str) -> None:
        try:
            await self.store.upsert(
                PREFERENCES_TABLE,
                [{"user_id": user_id, "tone": tone, "language_level": language_level}],
                conflict_keys=("user_id",),
            )
        except Exception as e:
            logger.warning(f"Failed to save insight preferences: {e}")

    async def start_session(
        self,
        user_id: str,
        uploads: List[UploadedFile],
        tone: Optional[str] = None,
        language_level: Optional[str] = None,
        family_member_id: Optional[str] = None,
    ) -> UploadOutcome:
        """
        Create a session from a file selection, upload the files one at a
        time, then run extraction.

        More than ``max_files`` files are truncated with a warning rather than
        rejected. Validation happens before anything is written.

        Raises:
            ValidationError: No files, or a file/preference is not acceptable
            NotFoundError: ``family_member_id`` is not one of the user's members
            UploadError: Storage failed partway; already stored files remain
        """
        if not uploads:
            raise ValidationError("At least one file is required")
        self._validate_preferences(tone, language_level)

        accepted = list(uploads[:self.max_files])
        dropped = [safe_filename(u.filename) or "(unnamed)" for u in uploads[self.max_files:]]
        warnings: List[str] = []
        if dropped:
            warnings.append(
                f"Only {self.max_files} files can be processed per session; "
                f"{len(dropped)} file(s) were not uploaded: {', '.join(dropped)}"
            )

        names = [self._validate_upload(u) for u in accepted]
        if len(set(names)) != len(names):
            raise ValidationError("File names must be unique within a session")

        if family_member_id and await self.store.get(MEMBERS_TABLE, family_member_id, user_id) is None:
            raise NotFoundError("Family member not found", member_id=family_member_id)

        if tone is None or language_level is None:
            saved = await self._saved_preferences(user_id)
            tone = tone or saved.get("tone") or DEFAULT_TONE
            language_level = language_level or saved.get("language_level") or DEFAULT_LANGUAGE_LEVEL

        row = await self.store.insert(SESSIONS_TABLE, {
            "user_id": user_id,
            "family_member_id": family_member_id,
            "tone": tone,
            "language_level": language_level,
            "status": SessionStatus.PENDING.value,
            "stage": SessionStage.CREATED.value,
            "current_insights": {},
        })
        session = Session.model_validate(row)
        log = bind_context(logger, user_id=user_id, session_id=session.id)
        if dropped:
            log.warning(f"Dropped {len(dropped)} files over the per-session limit")

        session = await self._advance(session, S.UPLOADING)
        files = await self._upload_sequentially(session, accepted, names)

        session = await self.parse_session(user_id, session.id)
        return UploadOutcome(
            session=session,
            files=files,
            dropped_files=dropped,
            warnings=warnings,
            parsed=session.stage == S.REVIEWING_PARSED_DATA,
        )

    async def _upload_sequentially(self, session: Session, uploads: List[UploadedFile],
                                   names: List[str]) -> List[FileRecord]:
        log = bind_context(logger, user_id=session.user_id, session_id=session.id)
        stored: List[FileRecord] = []

        for upload, name in zip(uploads, names):
            path = f"{session.user_id}/{session.id}/{name}"
            try:
                saved = await self.blob_store.save(path, upload.data, metadata={
                    "content_type": upload.content_type,
                    "session_id": session.id,
                })
                if not saved:
                    raise RuntimeError("blob store rejected the file")
                row = await self.store.insert(FILES_TABLE, {
                    "session_id": session.id,
                    "user_id": session.user_id,
                    "storage_path": path,
                    "file_name": name,
                    "file_type": upload.content_type,
                    "file_size": len(upload.data),
                })
            except Exception as e:
                uploaded = [f.file_name for f in stored]
                log.error(
                    f"Upload failed at {name}: {e}",
                    extra={"extra_fields": {"uploaded_files": uploaded, "failed_file": name}}
                )
                await self._mark_failed(session, f"upload of {name} failed")
                raise UploadError(
                    f"Failed to upload {name}",
                    session_id=session.id, uploaded_files=uploaded, failed_file=name,
                ) from e

            stored.append(FileRecord.model_validate(row))

        log.info(f"Uploaded {len(stored)} files")
        return stored

    async def list_files(self, user_id: str, session_id: str) -> List[FileRecord]:
        await self.get_session(user_id, session_id)
        rows = await self.store.select(FILES_TABLE, user_id, filters={"session_id": session_id},
                                       order_by="created_at")
        return [FileRecord.model_validate(row) for row in rows]

    async def list_parsed_documents(self, user_id: str, session_id: str) -> List[ParsedDocument]:
        await self.get_session(user_id, session_id)
        rows = await self.store.select(PARSED_TABLE, user_id, filters={"session_id": session_id},
                                       order_by="created_at")
        return [ParsedDocument.model_validate(row) for row in rows]

    async def parse_session(self, user_id: str, session_id: str) -> Session:
        """
        Run extraction once over every file of the session.

        Success stores one parsed document per file and moves to
        ``reviewing_parsed_data``. Failure is logged and moves to
        ``reviewing_documents`` so the user can continue without extraction.
        """
        session = await self.get_session(user_id, session_id)
        session = await self._advance(session, S.PARSING)
        log = bind_context(logger, user_id=user_id, session_id=session_id)

        files = await self.list_files(user_id, session_id)
        try:
            results = await self.extraction.extract(session_id, files)
            if len(results) != len(files):
                raise ValueError(f"expected {len(files)} results, got {len(results)}")
        except Exception as e:
            log.error(f"Extraction failed, falling back to manual review: {e}", exc_info=True)
            return await self._advance(session, S.REVIEWING_DOCUMENTS)

        names = {f.id: f.file_name for f in files}
        await self.store.delete_where(PARSED_TABLE, user_id, lambda row: row.get("session_id") == session_id)
        for result in results:
            await self.store.insert(PARSED_TABLE, {
                "file_id": result.file_id,
                "session_id": session_id,
                "user_id": user_id,
                "file_name": names.get(result.file_id),
                "parsing_status": "completed",
                "structured_data": result.structured_data.model_dump(mode="json"),
                "confidence_scores": result.confidence_scores,
                "manually_edited": False,
            })

        log.info(f"Parsed {len(results)} documents")
        return await self._advance(session, S.REVIEWING_PARSED_DATA)

    async def update_parsed_document(
        self,
        user_id: str,
        session_id: str,
        document_id: str,
        structured_data: StructuredData,
    ) -> ParsedDocument:
        """Overwrite a document's structured data in place; no re-extraction."""
        await self.get_session(user_id, session_id)
        row = await self.store.get(PARSED_TABLE, document_id, user_id)
        if row is None:
            raise NotFoundError("Parsed document not found", document_id=document_id)
        if row.get("session_id") != session_id:
            raise ValidationError("Document belongs to another session", document_id=document_id)

        row = await self.store.update(PARSED_TABLE, document_id, user_id, {
            "structured_data": structured_data.model_dump(mode="json"),
            "manually_edited": True,
        })
        if row is None:
            raise NotFoundError("Parsed document not found", document_id=document_id)
        return ParsedDocument.model_validate(row)

    # ------------------------------------------------------------------
    # Review and customization
    # ------------------------------------------------------------------

    async def confirm_review(self, user_id: str, session_id: str) -> Session:
        session = await self.get_session(user_id, session_id)
        self._check_transition(session, S.CUSTOMIZING)
        if session.stage == S.REVIEWING_PARSED_DATA:
            if not await self.list_parsed_documents(user_id, session_id):
                raise ValidationError("No parsed documents to confirm", session_id=session_id)
        return await self._advance(session, S.CUSTOMIZING)

    async def customize(self, user_id: str, session_id: str, tone: str, language_level: str) -> Session:
        self._validate_preferences(tone, language_level)
        session = await self.get_session(user_id, session_id)
        return await self._advance(session, S.PREVIEWING_DATA, tone=tone, language_level=language_level)

    async def back_to_customize(self, user_id: str, session_id: str) -> Session:
        session = await self.get_session(user_id, session_id)
        return await self._advance(session, S.CUSTOMIZING)

    async def approve_preview(self, user_id: str, session_id: str,
                              feedback: Optional[str] = None) -> HealthInsights:
        """
        Record the approval, then generate insights. The approval row is
        written even if generation fails afterwards.
        """
        session = await self.get_session(user_id, session_id)
        self._check_transition(session, S.GENERATING_INSIGHTS)

        documents = await self.list_parsed_documents(user_id, session_id)
        try:
            await self.store.insert(PREVIEWS_TABLE, {
                "user_id": user_id,
                "session_id": session_id,
                "parsed_data": [d.model_dump(mode="json") for d in documents],
                "feedback": feedback,
                "approved_at": utc_now_iso(),
            })
        except Exception as e:
            logger.warning(f"Failed to record preview approval: {e}")

        return await self.generate_insights(user_id, session_id)

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    async def generate_insights(
        self,
        user_id: str,
        session_id: str,
        tone: Optional[str] = None,
        language_level: Optional[str] = None,
    ) -> HealthInsights:
        """
        Generate a new insight set for the given (or the session's) preferences.

        A new row is always inserted and becomes the current insight for its
        (tone, language level).

        Raises:
            InsightGenerationError: The insight service failed; the session is marked failed
        """
        self._validate_preferences(tone, language_level)
        session = await self.get_session(user_id, session_id)
        tone = tone or session.tone
        language_level = language_level or session.language_level

        session = await self._advance(session, S.GENERATING_INSIGHTS, tone=tone, language_level=language_level)
        documents = await self.list_parsed_documents(user_id, session_id)
        service_tone, service_language = map_preferences(tone, language_level)

        try:
            payload = await self.insights.generate(session_id, documents, service_tone, service_language)
        except InsightGenerationError as e:
            await self._mark_failed(session, e.message)
            raise
        except Exception as e:
            await self._mark_failed(session, str(e))
            raise InsightGenerationError(f"Insight generation failed: {e}", session_id=session_id) from e

        row = await self.store.insert(INSIGHTS_TABLE, {
            **payload.model_dump(mode="json"),
            "session_id": session_id,
            "user_id": user_id,
            "tone": tone,
            "language_level": language_level,
            "report_storage_path": None,
        })
        current = {**session.current_insights, insight_key(tone, language_level): row["id"]}
        await self._advance(session, S.REVIEWING_INSIGHTS, current_insights=current)
        self.report_cache.forget(session_id, tone, language_level)
        await self._save_preferences(user_id, tone, language_level)

        return HealthInsights.model_validate(row)

    async def get_insights(
        self,
        user_id: str,
        session_id: str,
        tone: Optional[str] = None,
        language_level: Optional[str] = None,
        generate: bool = True,
    ) -> HealthInsights:
        """
        Current insights for exactly this (tone, language level).

        A row generated for other preferences is never returned; when none
        exists a new one is generated (or NotFoundError if ``generate`` is off).
        """
        self._validate_preferences(tone, language_level)
        session = await self.get_session(user_id, session_id)
        tone = tone or session.tone
        language_level = language_level or session.language_level

        insight = await self.report_cache.current_insight(user_id, session, tone, language_level)
        if insight is not None:
            return insight
        if not generate:
            raise NotFoundError(
                "No insights for these preferences",
                session_id=session_id, tone=tone, language_level=language_level,
            )
        return await self.generate_insights(user_id, session_id, tone, language_level)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def generate_report(
        self,
        user_id: str,
        session_id: str,
        tone: Optional[str] = None,
        language_level: Optional[str] = None,
    ) -> ResolvedReport:
        """
        Resolve the session's report through the report cache and complete
        the session.

        Raises:
            ReportGenerationError: Rendering failed; the session is marked failed
        """
        self._validate_preferences(tone, language_level)
        session = await self.get_session(user_id, session_id)
        session = await self._advance(session, S.GENERATING_REPORT)

        try:
            resolved = await self.report_cache.resolve(user_id, session, tone, language_level)
        except ExternalServiceError as e:
            await self._mark_failed(session, e.message)
            raise
        except AltheaError:
            raise
        except Exception as e:
            await self._mark_failed(session, str(e))
            raise ReportGenerationError(f"Report generation failed: {e}", session_id=session_id) from e

        await self._advance(session, S.COMPLETED)
        return resolved

    async def report_download_url(self, user_id: str, session_id: str,
                                  tone: Optional[str] = None,
                                  language_level: Optional[str] = None) -> Dict[str, Any]:
        """Resolve the report and return a short-lived signed URL for it."""
        resolved = await self.generate_report(user_id, session_id, tone, language_level)
        if resolved.storage_path is None:
            raise ReportServiceUnavailable(
                "Report was rendered offline and has no stored copy; download it directly",
                session_id=session_id,
            )
        return {
            "url": self.blob_store.create_signed_url(resolved.storage_path, self.signed_url_expire_seconds),
            "filename": resolved.filename,
            "expires_in": self.signed_url_expire_seconds,
            "cached": resolved.cached,
        }

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def progress(self, user_id: str, session_id: str) -> SessionProgress:
        session = await self.get_session(user_id, session_id)
        files = await self.store.select(FILES_TABLE, user_id, filters={"session_id": session_id})
        parsed = await self.store.select(PARSED_TABLE, user_id, filters={"session_id": session_id})
        return SessionProgress(
            session_id=session_id,
            stage=session.stage,
            status=session.status,
            files_uploaded=len(files),
            documents_parsed=len(parsed),
            percent_complete=STAGE_PROGRESS[session.stage],
        )
