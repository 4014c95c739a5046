from wabot.services.llm.base import BackendUnavailable, LLMProvider, LLMResponse
from wabot.services.llm.openai_provider import OpenAIProvider

__all__ = ["BackendUnavailable", "LLMProvider", "LLMResponse", "OpenAIProvider"]
