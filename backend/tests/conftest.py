"""
Shared test fixtures and configuration.
"""

import os
import tempfile
from typing import List

import pytest

# Set test environment variables before importing application modules
_TEST_DATA = tempfile.mkdtemp(prefix="althea_test_")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LLM_API_KEY", "")
os.environ.setdefault("BLOB_STORAGE_PATH", os.path.join(_TEST_DATA, "blobs"))
os.environ.setdefault("RECORD_STORAGE_PATH", os.path.join(_TEST_DATA, "records"))

from althea.core.exceptions import ExtractionError, InsightGenerationError, ReportServiceUnavailable  # noqa: E402
from althea.core.report_cache import ReportCache  # noqa: E402
from althea.core.session_pipeline import SessionPipeline, UploadedFile  # noqa: E402
from althea.models import FileRecord, ParsedDocument  # noqa: E402
from althea.models.document import LabResult, StructuredData  # noqa: E402
from althea.models.insights import AbnormalValue, InsightsPayload, KeyFinding  # noqa: E402
from althea.services.extraction import ExtractionResult, ExtractionService  # noqa: E402
from althea.services.insights import InsightService  # noqa: E402
from althea.services.reports import LocalReportRenderingService, ReportRenderingService  # noqa: E402
from althea.storage import JSONRecordStore, LocalBlobStore  # noqa: E402
from althea.utils.auth import create_access_token  # noqa: E402


class FakeExtractionService(ExtractionService):
    """Returns a small lab payload per file; ``fail`` makes every call raise."""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.fail = False

    async def extract(self, session_id: str, files: List[FileRecord]) -> List[ExtractionResult]:
        self.calls.append([f.id for f in files])
        if self.fail:
            raise ExtractionError("extraction service down", session_id=session_id)
        return [
            ExtractionResult(
                file_id=f.id,
                structured_data=StructuredData(
                    patient_info={"name": "Alice"},
                    test_results=[LabResult(test_name="HbA1c", value="6.1", unit="%", status="high")],
                    summary=f"Summary of {f.file_name}",
                ),
                confidence_scores={"test_results": 0.9},
            )
            for f in files
        ]


class FakeInsightService(InsightService):
    """Echoes the mapped tone and language level back in the summary."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail = False

    async def generate(self, session_id: str, parsed_documents: List[ParsedDocument],
                       tone: str, language_level: str) -> InsightsPayload:
        self.calls.append((session_id, tone, language_level))
        if self.fail:
            raise InsightGenerationError("insight service down", session_id=session_id)
        return InsightsPayload(
            summary=f"{tone}/{language_level} summary",
            key_findings=[KeyFinding(category="Metabolic", finding="HbA1c is mildly elevated")],
            abnormal_values=[AbnormalValue(test_name="HbA1c", value="6.1", status="high")],
            doctor_questions=["Should I retest in three months?"],
            urgency_flag="routine",
        )


class CountingRenderer(ReportRenderingService):
    """Wraps a real renderer and counts calls; ``unavailable`` simulates a network failure."""

    def __init__(self, inner: ReportRenderingService):
        self.inner = inner
        self.calls = 0
        self.unavailable = False

    async def render(self, user_id, session_id, insight_id, report_type="comprehensive",
                     include_questions=True):
        self.calls += 1
        if self.unavailable:
            raise ReportServiceUnavailable("connection refused", session_id=session_id)
        return await self.inner.render(user_id, session_id, insight_id, report_type, include_questions)


def make_upload(name: str = "labs.txt", content_type: str = "text/plain",
                data: bytes = b"HbA1c 6.1 %") -> UploadedFile:
    return UploadedFile(filename=name, content_type=content_type, data=data)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def record_store(tmp_path):
    return JSONRecordStore(LocalBlobStore(str(tmp_path / "records")))


@pytest.fixture
def extraction():
    return FakeExtractionService()


@pytest.fixture
def insight_service():
    return FakeInsightService()


@pytest.fixture
def renderer(record_store, blob_store):
    return CountingRenderer(LocalReportRenderingService(record_store, blob_store))


@pytest.fixture
def report_cache(record_store, blob_store, renderer):
    return ReportCache(record_store, blob_store, renderer)


@pytest.fixture
def pipeline(record_store, blob_store, extraction, insight_service, report_cache):
    return SessionPipeline(
        record_store, blob_store, extraction, insight_service, report_cache,
        max_files=5,
        max_file_size=1024 * 1024,
        allowed_file_types=["application/pdf", "image/png", "image/jpeg", "text/plain"],
    )


@pytest.fixture
def auth_headers():
    token = create_access_token(data={"sub": "user-1"})
    return {"Authorization": f"Bearer {token}"}
