"""LLM provider abstraction."""

from agentflow.llm.litellm import LiteLLMProvider
from agentflow.llm.mock import MockLLMProvider
from agentflow.llm.parsing import clean_assistant_text, parse_json_response, try_extract_json
from agentflow.llm.provider import LLMCallOptions, LLMProvider, LLMResult

__all__ = [
    "LLMProvider",
    "LLMCallOptions",
    "LLMResult",
    "LiteLLMProvider",
    "MockLLMProvider",
    "clean_assistant_text",
    "parse_json_response",
    "try_extract_json",
]
