from app.services.llm.base import LLMError, LLMProvider, LLMResponse
from app.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
