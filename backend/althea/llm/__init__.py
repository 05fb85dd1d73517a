"""LLM module - provides unified interface for LLM API providers."""

from .base import LLMProvider, LLMMessage, LLMResponse, LLMResponseFormatError, parse_json_content
from .openai_provider import OpenAIProvider
from .factory import create_llm_provider

__all__ = [
    'LLMProvider',
    'LLMMessage',
    'LLMResponse',
    'LLMResponseFormatError',
    'parse_json_content',
    'OpenAIProvider',
    'create_llm_provider',
]
