"""Deterministic in-process provider.

Used by tests and the CLI to exercise routing end to end without network
access. Individual models can be scripted to fail, hang, or break partway
through a stream.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
from typing import AsyncIterator, Dict, List, Optional, Sequence

from smart_router.core.model_catalog import Capability, ModelDescriptor, Pricing
from smart_router.providers.base import (
    BaseProvider,
    ChatMessage,
    ProviderResponse,
    StreamChunk,
    TokenUsage,
    ToolCall,
    ToolSpec,
)

DEFAULT_EMBEDDING_DIM = 32


def default_mock_models() -> List[ModelDescriptor]:
    """A small local/remote catalog with distinct tags."""
    return [
        ModelDescriptor(
            id="mock-local",
            name="Mock Local",
            provider="mock",
            capabilities=frozenset({
                Capability.TEXT_GENERATION,
                Capability.FUNCTION_CALLING,
                Capability.STREAMING,
                Capability.EMBEDDINGS,
            }),
            context_window=8192,
            is_local=True,
            tags=frozenset({"fast"}),
        ),
        ModelDescriptor(
            id="mock-remote",
            name="Mock Remote",
            provider="mock",
            capabilities=frozenset({
                Capability.TEXT_GENERATION,
                Capability.FUNCTION_CALLING,
                Capability.STREAMING,
                Capability.CODE_GENERATION,
                Capability.REASONING,
                Capability.VISION,
            }),
            context_window=128_000,
            is_local=False,
            tags=frozenset({"reasoning", "codegen"}),
            pricing=Pricing(per_call=0.0, input_per_1k=0.003, output_per_1k=0.015),
        ),
    ]


class MockProvider(BaseProvider):
    """Scriptable provider returning canned responses."""

    def __init__(
        self,
        models: Optional[Sequence[ModelDescriptor]] = None,
        name: str = "mock",
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
    ):
        super().__init__(name, models if models is not None else default_mock_models())
        self.embedding_dim = embedding_dim
        self.calls: List[str] = []
        self._failures: Dict[str, BaseException] = {}
        self._delays: Dict[str, float] = {}
        self._stream_failures: Dict[str, int] = {}
        self._replies: Dict[str, str] = {}

    # -- scripting ---------------------------------------------------------

    def fail(self, model_id: str, error: BaseException) -> None:
        """Make every call to model_id raise error."""
        self._failures[model_id] = error

    def hang(self, model_id: str, seconds: float) -> None:
        """Delay every call to model_id."""
        self._delays[model_id] = seconds

    def fail_stream_after(self, model_id: str, chunks: int) -> None:
        """Break streams of model_id after this many chunks."""
        self._stream_failures[model_id] = chunks

    def reply(self, model_id: str, text: str) -> None:
        self._replies[model_id] = text

    def clear_script(self) -> None:
        self._failures.clear()
        self._delays.clear()
        self._stream_failures.clear()
        self._replies.clear()

    # -- contract ----------------------------------------------------------

    async def _before_call(self, model_id: str) -> None:
        self.calls.append(model_id)
        delay = self._delays.get(model_id)
        if delay:
            await asyncio.sleep(delay)
        error = self._failures.get(model_id)
        if error is not None:
            raise error

    def _compose(self, model_id: str, messages: Sequence[ChatMessage]) -> str:
        if model_id in self._replies:
            return self._replies[model_id]
        user_turns = sum(1 for m in messages if m.role == "user")
        return f"Mock response from {model_id} ({user_turns} user message(s))"

    async def chat(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> ProviderResponse:
        await self._before_call(model_id)
        text = self._compose(model_id, messages)

        tool_calls = []
        last_user = next((m.text.lower() for m in reversed(messages) if m.role == "user"), "")
        for tool in tools or []:
            if tool.name.lower() in last_user:
                tool_calls.append(ToolCall(name=tool.name, arguments={}))

        input_chars = sum(len(m.text) for m in messages)
        return ProviderResponse(
            text=text,
            tool_calls=tool_calls,
            usage=TokenUsage(
                input_tokens=math.ceil(input_chars / 4),
                output_tokens=len(text.split()),
            ),
            finish_reason="tool_calls" if tool_calls else "stop",
            model_id=model_id,
        )

    async def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> AsyncIterator[StreamChunk]:
        await self._before_call(model_id)
        text = self._compose(model_id, messages)
        words = text.split(" ")
        break_after = self._stream_failures.get(model_id)
        for i, word in enumerate(words):
            if break_after is not None and i >= break_after:
                raise ConnectionError(f"stream from {model_id} interrupted")
            yield StreamChunk(text=word if i == 0 else " " + word)
            await asyncio.sleep(0)
        input_chars = sum(len(m.text) for m in messages)
        yield StreamChunk(
            finish_reason="stop",
            is_final=True,
            usage=TokenUsage(input_tokens=math.ceil(input_chars / 4), output_tokens=len(words)),
        )

    async def embeddings(self, model_id: str, text: str) -> List[float]:
        await self._before_call(model_id)
        values: List[float] = []
        counter = 0
        while len(values) < self.embedding_dim:
            digest = hashlib.sha256(f"{model_id}:{counter}:{text}".encode("utf-8")).digest()
            values.extend((b / 255.0) - 0.5 for b in digest)
            counter += 1
        return values[: self.embedding_dim]
