"""Provider contract and registry.

A provider serves one or more models behind a uniform contract: chat with
optional tool declarations, a streaming variant yielding incremental text,
and embeddings. The registry is the router's only view of providers: it
holds the model catalog and dispatches execution to the owning provider.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, List, Optional, Sequence

from smart_router.core.errors import InvalidContext, ProviderExecutionError
from smart_router.core.model_catalog import Capability, ModelDescriptor

logger = logging.getLogger(__name__)


# =============================================================================
# Wire-neutral message types
# =============================================================================


@dataclass(frozen=True)
class ChatMessage:
    """One normalized message of a conversation."""

    role: str
    text: str


@dataclass(frozen=True)
class ToolSpec:
    """Declaration of a tool the model may call."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class ToolCall:
    """Structured tool call returned by a model."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ProviderResponse:
    """Result of one chat call."""

    text: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    model_id: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass(frozen=True)
class StreamChunk:
    """Incremental piece of a streamed response."""

    text: str = ""
    finish_reason: Optional[str] = None
    is_final: bool = False
    usage: Optional[TokenUsage] = None


VALID_ROLES = frozenset({"user", "assistant", "system"})


def coerce_messages(messages: Iterable[Any]) -> List[ChatMessage]:
    """Normalize mappings or message objects into ChatMessages.

    Raises:
        InvalidContext: If a message is not a valid role/text pair.
    """
    result = []
    for i, message in enumerate(messages):
        if isinstance(message, ChatMessage):
            result.append(message)
            continue
        if isinstance(message, Mapping):
            role = message.get("role")
            text = message.get("text", message.get("content"))
        else:
            role = getattr(message, "role", None)
            text = getattr(message, "text", None)
        role = getattr(role, "value", role)
        if role not in VALID_ROLES or not isinstance(text, str):
            raise InvalidContext(f"message {i} is not a valid role/text pair")
        result.append(ChatMessage(role=role, text=text))
    return result


def coerce_tools(tools: Optional[Iterable[Any]]) -> List[ToolSpec]:
    """Accept tool names or ToolSpecs and return ToolSpecs."""
    if not tools:
        return []
    specs = []
    for tool in tools:
        if isinstance(tool, ToolSpec):
            specs.append(tool)
        elif isinstance(tool, str):
            specs.append(ToolSpec(name=tool))
        else:
            raise InvalidContext("tools must be names or ToolSpec declarations")
    return specs


# =============================================================================
# Provider contract
# =============================================================================


class BaseProvider(ABC):
    """Uniform contract the router expects from a provider."""

    def __init__(self, name: str, models: Sequence[ModelDescriptor]):
        if not name:
            raise ValueError("Provider name is required")
        self.name = name
        self._models: Dict[str, ModelDescriptor] = {}
        for model in models:
            if not isinstance(model, ModelDescriptor):
                raise TypeError(f"Provider {name} got a non-descriptor model: {model!r}")
            if model.id in self._models:
                raise ValueError(f"Provider {name} declares model {model.id} twice")
            self._models[model.id] = model

    @property
    def models(self) -> List[ModelDescriptor]:
        return list(self._models.values())

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        caps: set = set()
        for model in self._models.values():
            caps |= model.capabilities
        return frozenset(caps)

    def supports(self, model_id: str) -> bool:
        return model_id in self._models

    @abstractmethod
    async def chat(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> ProviderResponse:
        """Run one chat completion."""

    async def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response; the default yields the full chat result once."""
        response = await self.chat(model_id, messages, tools)
        if response.text:
            yield StreamChunk(text=response.text)
        yield StreamChunk(
            finish_reason=response.finish_reason or "stop",
            is_final=True,
            usage=response.usage,
        )

    async def embeddings(self, model_id: str, text: str) -> List[float]:
        raise ProviderExecutionError(
            f"Provider {self.name} does not support embeddings", model_id=model_id
        )

    async def generate_content(self, model_id: str, prompt: str) -> str:
        """Single-prompt convenience over chat."""
        response = await self.chat(model_id, [ChatMessage(role="user", text=prompt)])
        return response.text or ""


# =============================================================================
# Registry
# =============================================================================


class ProviderRegistry:
    """Catalog of registered models plus execution dispatch."""

    def __init__(self):
        self._providers: Dict[str, BaseProvider] = {}
        self._model_owner: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register_provider(self, provider: BaseProvider) -> None:
        """Register a provider and its models.

        Raises:
            ValueError: On duplicate provider names or model ids.
        """
        with self._lock:
            if provider.name in self._providers:
                raise ValueError(f"Provider already registered: {provider.name}")
            for model in provider.models:
                owner = self._model_owner.get(model.id)
                if owner is not None:
                    raise ValueError(
                        f"Model {model.id} already registered by provider {owner}"
                    )
            self._providers[provider.name] = provider
            for model in provider.models:
                self._model_owner[model.id] = provider.name
        logger.info(
            f"Registered provider {provider.name} with {len(provider.models)} model(s)"
        )

    def unregister_provider(self, name: str) -> bool:
        with self._lock:
            provider = self._providers.pop(name, None)
            if provider is None:
                return False
            for model in provider.models:
                self._model_owner.pop(model.id, None)
        return True

    def get_provider(self, name: str) -> Optional[BaseProvider]:
        return self._providers.get(name)

    def get_provider_for_model(self, model_id: str) -> Optional[BaseProvider]:
        owner = self._model_owner.get(model_id)
        return self._providers.get(owner) if owner else None

    def get_model(self, model_id: str) -> Optional[ModelDescriptor]:
        provider = self.get_provider_for_model(model_id)
        if provider is None:
            return None
        return next((m for m in provider.models if m.id == model_id), None)

    def all_models(self) -> List[ModelDescriptor]:
        with self._lock:
            providers = list(self._providers.values())
        return [m for p in providers for m in p.models]

    def models_by_capability(self, capability: Capability) -> List[ModelDescriptor]:
        return [m for m in self.all_models() if capability in m.capabilities]

    def provider_names(self) -> List[str]:
        return list(self._providers)

    def _require_provider(self, model_id: str) -> BaseProvider:
        provider = self.get_provider_for_model(model_id)
        if provider is None:
            raise ProviderExecutionError(f"No provider for model {model_id}", model_id=model_id)
        return provider

    async def chat(
        self,
        model_id: str,
        messages: Iterable[Any],
        tools: Optional[Iterable[Any]] = None,
    ) -> ProviderResponse:
        provider = self._require_provider(model_id)
        return await provider.chat(model_id, coerce_messages(messages), coerce_tools(tools))

    async def stream(
        self,
        model_id: str,
        messages: Iterable[Any],
        tools: Optional[Iterable[Any]] = None,
    ) -> AsyncIterator[StreamChunk]:
        provider = self._require_provider(model_id)
        async for chunk in provider.stream(model_id, coerce_messages(messages), coerce_tools(tools)):
            yield chunk

    async def embeddings(self, model_id: str, text: str) -> List[float]:
        return await self._require_provider(model_id).embeddings(model_id, text)
