from llm_gateway.providers.anthropic import AnthropicAdapter
from llm_gateway.providers.base import ProviderAdapter, ProviderFailure, ProviderResult
from llm_gateway.providers.dispatcher import ProviderDispatcher
from llm_gateway.providers.factory import build_dispatcher
from llm_gateway.providers.openai_compatible import OpenAICompatibleAdapter

__all__ = [
    "AnthropicAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "ProviderDispatcher",
    "ProviderFailure",
    "ProviderResult",
    "build_dispatcher",
]
