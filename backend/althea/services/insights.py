"""
Insight generation service - plain-language interpretation of parsed
documents, styled by tone and vocabulary level.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import InsightGenerationError
from ..llm.base import LLMMessage, LLMProvider
from ..models.document import ParsedDocument
from ..models.insights import InsightsPayload

logger = logging.getLogger(__name__)

# User-facing preference -> the service's own vocabulary
TONE_MAP = {
    "friendly": "conversational",
    "professional": "professional",
    "empathetic": "reassuring",
}
LANGUAGE_MAP = {
    "simple": "simple_terms",
    "moderate": "educated_patient",
    "technical": "medical_professional",
}
DEFAULT_SERVICE_TONE = "conversational"
DEFAULT_SERVICE_LANGUAGE = "simple_terms"

TONE_STYLES = {
    "professional": "formal, clinical, and precise",
    "conversational": "friendly, approachable, and easy-to-understand",
    "reassuring": "empathetic, comforting, and supportive",
    "direct": "straightforward, concise, and factual",
}
LANGUAGE_STYLES = {
    "medical_professional": "Use proper medical terminology and clinical language",
    "educated_patient": "Use medical terms with brief explanations",
    "simple_terms": "Avoid medical jargon, use everyday language",
    "child_friendly": "Use very simple words suitable for children",
}


def map_preferences(tone: Optional[str], language_level: Optional[str]) -> Tuple[str, str]:
    """Translate tone and language level; unknown values fall back to defaults."""
    return (
        TONE_MAP.get(tone or "", DEFAULT_SERVICE_TONE),
        LANGUAGE_MAP.get(language_level or "", DEFAULT_SERVICE_LANGUAGE),
    )


class InsightService(ABC):
    """External AI insight service."""

    @abstractmethod
    async def generate(
        self,
        session_id: str,
        parsed_documents: List[ParsedDocument],
        tone: str,
        language_level: str,
    ) -> InsightsPayload:
        """
        Interpret a session's parsed documents.

        Args:
            session_id: Session being interpreted
            parsed_documents: Structured extraction results (possibly edited)
            tone: Service tone (conversational, professional, reassuring, direct)
            language_level: Service vocabulary level

        Raises:
            InsightGenerationError: If no usable insights were produced
        """
        pass


class LLMInsightService(InsightService):
    """Insight generation through a chat-completion model."""

    def __init__(self, provider: Optional[LLMProvider]):
        self.provider = provider

    def _system_prompt(self, tone: str, language_level: str) -> str:
        tone_style = TONE_STYLES.get(tone, TONE_STYLES[DEFAULT_SERVICE_TONE])
        language_style = LANGUAGE_STYLES.get(language_level, LANGUAGE_STYLES[DEFAULT_SERVICE_LANGUAGE])
        return (
            "You are Althea, a health interpreter who explains medical results to patients.\n"
            f"Tone: {tone_style}.\n"
            f"Language level: {language_style}.\n"
            "Never diagnose, prescribe or change medication. Flag values that need "
            "prompt medical attention.\n"
            "Reply with one JSON object with the keys: summary, key_findings "
            "[{category, finding, significance, action_needed}], abnormal_values "
            "[{test_name, value, normal_range, status, explanation}], doctor_questions "
            "[string], recommendations [{category, recommendation, priority}], "
            "family_screening [{condition, reason, who_should_screen}], "
            "follow_up_timeline, urgency_flag (none, routine, urgent or emergency)."
        )

    async def generate(
        self,
        session_id: str,
        parsed_documents: List[ParsedDocument],
        tone: str,
        language_level: str,
    ) -> InsightsPayload:
        if self.provider is None:
            raise InsightGenerationError("AI provider is not configured", session_id=session_id)
        if not parsed_documents:
            raise InsightGenerationError("No parsed documents to interpret", session_id=session_id)

        documents = [
            {"file_name": doc.file_name, **doc.structured_data.model_dump(mode="json")}
            for doc in parsed_documents
        ]
        messages = [
            LLMMessage.text("system", self._system_prompt(tone, language_level)),
            LLMMessage.text(
                "user",
                "Interpret these medical documents:\n"
                + json.dumps(documents, ensure_ascii=False, indent=2),
            ),
        ]

        try:
            data = await self.provider.complete_json(messages)
            payload = InsightsPayload.model_validate(data)
        except PydanticValidationError as e:
            raise InsightGenerationError(
                "Insights do not match the expected schema", session_id=session_id
            ) from e
        except Exception as e:
            raise InsightGenerationError(f"Insight generation failed: {e}", session_id=session_id) from e

        logger.info(
            f"Generated insights for session {session_id}",
            extra={"extra_fields": {
                "session_id": session_id,
                "tone": tone,
                "language_level": language_level,
                "urgency_flag": payload.urgency_flag,
                "finding_count": len(payload.key_findings),
            }}
        )
        return payload
