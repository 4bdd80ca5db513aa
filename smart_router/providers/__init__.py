"""Provider contract, registry and built-in providers.

The pydantic-ai adapter lives in ``smart_router.providers.pydantic_ai_provider``
and is imported on demand.
"""

from .base import (
    BaseProvider,
    ChatMessage,
    ProviderRegistry,
    ProviderResponse,
    StreamChunk,
    TokenUsage,
    ToolCall,
    ToolSpec,
    coerce_messages,
    coerce_tools,
)
from .mock import MockProvider, default_mock_models

__all__ = [
    "BaseProvider",
    "ChatMessage",
    "ProviderRegistry",
    "ProviderResponse",
    "StreamChunk",
    "TokenUsage",
    "ToolCall",
    "ToolSpec",
    "coerce_messages",
    "coerce_tools",
    "MockProvider",
    "default_mock_models",
]
