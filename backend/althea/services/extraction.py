"""
Document extraction service - turns uploaded medical documents into
structured data.

The contract is all-or-nothing per call: either every file gets a result,
or ExtractionError is raised and nothing is returned.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ExtractionError
from ..llm.base import LLMMessage, LLMProvider, LLMResponseFormatError
from ..models.document import FileRecord, StructuredData
from ..storage.interface import BlobStore

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """You extract structured data from medical documents.
Reply with one JSON object with these keys:
  "patient_info": {"name", "age", "gender", "date_of_birth"},
  "report_date": string,
  "lab_name": string,
  "doctor_name": string,
  "test_results": [{"test_name", "value", "unit", "reference_range", "status", "test_date"}],
  "diagnoses": [string],
  "medications": [string],
  "summary": string,
  "confidence_scores": {"patient_info": 0-1, "test_results": 0-1, "diagnoses": 0-1, "medications": 0-1, "summary": 0-1}
Use empty strings or lists for anything the document does not contain.
"status" is one of "normal", "high", "low", "critical". Do not invent values."""


@dataclass
class ExtractionResult:
    """Structured payload for one file."""
    file_id: str
    structured_data: StructuredData
    confidence_scores: Dict[str, float] = field(default_factory=dict)


class ExtractionService(ABC):
    """External AI extraction service."""

    @abstractmethod
    async def extract(self, session_id: str, files: List[FileRecord]) -> List[ExtractionResult]:
        """
        Extract structured data from every file of a session.

        Returns:
            One ExtractionResult per file, in input order

        Raises:
            ExtractionError: If any file could not be extracted
        """
        pass


def normalize_confidence(raw: Any) -> Dict[str, float]:
    """Keep numeric section scores, clamped to [0, 1]."""
    scores: Dict[str, float] = {}
    if not isinstance(raw, dict):
        return scores
    for section, value in raw.items():
        try:
            score = float(value)
        except (TypeError, ValueError):
            continue
        scores[str(section)] = min(max(score, 0.0), 1.0)
    return scores


class LLMExtractionService(ExtractionService):
    """
    Extraction through a chat-completion model.

    Plain text is sent inline; images and PDFs are sent as base64 content
    parts on a single multimodal user message.
    """

    def __init__(self, provider: Optional[LLMProvider], blob_store: BlobStore,
                 max_text_chars: int = 60000):
        self.provider = provider
        self.blob_store = blob_store
        self.max_text_chars = max_text_chars

    async def extract(self, session_id: str, files: List[FileRecord]) -> List[ExtractionResult]:
        if self.provider is None:
            raise ExtractionError("AI provider is not configured", session_id=session_id)
        if not files:
            raise ExtractionError("No files to extract", session_id=session_id)

        results = []
        for record in files:
            results.append(await self._extract_one(session_id, record))

        logger.info(
            f"Extracted {len(results)} documents for session {session_id}",
            extra={"extra_fields": {"session_id": session_id, "file_count": len(results)}}
        )
        return results

    async def _extract_one(self, session_id: str, record: FileRecord) -> ExtractionResult:
        content = await self.blob_store.load(record.storage_path)
        if content is None:
            raise ExtractionError(
                f"File {record.file_name} is missing from storage",
                session_id=session_id, file_id=record.id,
            )

        messages = [
            LLMMessage.text("system", EXTRACTION_SYSTEM_PROMPT),
            self._document_message(record, content),
        ]

        try:
            data = await self.provider.complete_json(messages, temperature=0.0)
            confidence = normalize_confidence(data.pop("confidence_scores", None))
            structured = StructuredData.model_validate(data)
        except LLMResponseFormatError as e:
            raise ExtractionError(
                f"Unreadable extraction for {record.file_name}: {e}",
                session_id=session_id, file_id=record.id,
            ) from e
        except PydanticValidationError as e:
            raise ExtractionError(
                f"Extraction for {record.file_name} does not match the document schema",
                session_id=session_id, file_id=record.id,
            ) from e
        except Exception as e:
            raise ExtractionError(
                f"Extraction failed for {record.file_name}: {e}",
                session_id=session_id, file_id=record.id,
            ) from e

        return ExtractionResult(file_id=record.id, structured_data=structured,
                                confidence_scores=confidence)

    def _document_message(self, record: FileRecord, content: bytes) -> LLMMessage:
        instruction = f"Extract the medical data from the document '{record.file_name}'."

        if record.file_type.startswith("text/"):
            text = content.decode("utf-8", errors="replace")[:self.max_text_chars]
            return LLMMessage.text("user", f"{instruction}\n\n---\n{text}")

        encoded = base64.b64encode(content).decode("ascii")
        if record.file_type.startswith("image/"):
            media_type = "image/jpeg" if record.file_type == "image/jpg" else record.file_type
            return LLMMessage.multimodal(
                "user", instruction,
                image_base64_list=[{"data": encoded, "media_type": media_type}],
            )

        # PDFs and other binary documents travel as a file content part
        return LLMMessage(role="user", content=[
            {
                "type": "file",
                "file": {
                    "filename": record.file_name,
                    "file_data": f"data:{record.file_type};base64,{encoded}",
                },
            },
            {"type": "text", "text": instruction},
        ])
