"""
LLM Provider Base - Abstract base for all LLM API providers.
Supports multimodal messages (text + images) and JSON-object replies.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class LLMResponseFormatError(ValueError):
    """The model reply was not the JSON object that was asked for."""


@dataclass
class LLMMessage:
    """
    Represents a message in a conversation.
    Supports multimodal content (text and images).
    """
    role: str  # "system", "user", "assistant"
    content: Union[str, List[Dict[str, Any]]]  # text or multimodal content blocks

    @staticmethod
    def text(role: str, text: str) -> "LLMMessage":
        """Create a text-only message."""
        return LLMMessage(role=role, content=text)

    @staticmethod
    def multimodal(role: str, text: str,
                   image_base64_list: Optional[List[Dict[str, str]]] = None) -> "LLMMessage":
        """
        Create a message with text and inline images.

        Args:
            role: Message role
            text: Text content
            image_base64_list: List of dicts with 'data' (base64 string) and 'media_type'
        """
        content_parts: List[Dict[str, Any]] = []

        for img in image_base64_list or []:
            content_parts.append({
                "type": "image_url",
                "image_url": {"url": f"data:{img['media_type']};base64,{img['data']}"}
            })

        content_parts.append({"type": "text", "text": text})
        return LLMMessage(role=role, content=content_parts)


@dataclass
class LLMResponse:
    """Response from an LLM API call."""
    content: str
    model: str = ""
    usage: Dict[str, int] = field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = None


def parse_json_content(content: str) -> Dict[str, Any]:
    """
    Parse a model reply that should be a single JSON object.

    Markdown code fences around the object are tolerated.

    Raises:
        LLMResponseFormatError: If the reply is not a JSON object
    """
    text = _FENCE.sub("", content.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LLMResponseFormatError(f"Model reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise LLMResponseFormatError("Model reply is not a JSON object")
    return data


class LLMProvider(ABC):
    """
    Abstract base class for LLM API providers.
    All providers must implement chat_completion.
    """

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None,
                 default_temperature: float = 0.3, default_max_tokens: int = 4096):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of conversation messages (supports multimodal)
            temperature: Sampling temperature override
            max_tokens: Max tokens override
            **kwargs: Provider-specific parameters (e.g. response_format)

        Returns:
            LLMResponse with the generated content
        """
        pass

    async def complete_json(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Request a JSON-object reply and return it parsed."""
        response = await self.chat_completion(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        return parse_json_content(response.content)

    def _format_messages(self, messages: List[LLMMessage]) -> List[Dict[str, Any]]:
        """Convert LLMMessage list to API-compatible format."""
        return [{"role": m.role, "content": m.content} for m in messages]
