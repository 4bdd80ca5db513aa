"""Provider adapter over pydantic-ai models.

pydantic-ai owns the wire protocols (OpenAI, Anthropic, Gemini, ...). This
adapter binds ModelDescriptors to pydantic-ai ``Model`` instances and
translates between the router's message types and pydantic-ai's.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ToolCallPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

from smart_router.core.errors import ProviderExecutionError
from smart_router.core.model_catalog import ModelDescriptor
from smart_router.providers.base import (
    BaseProvider,
    ChatMessage,
    ProviderResponse,
    StreamChunk,
    TokenUsage,
    ToolCall,
    ToolSpec,
)

logger = logging.getLogger(__name__)


def to_model_messages(messages: Sequence[ChatMessage]) -> List[ModelMessage]:
    """Convert router messages to pydantic-ai message history.

    System and user turns become request parts; assistant turns become
    text responses. Adjacent request parts are merged into one request.
    """
    history: List[ModelMessage] = []
    pending: list = []
    for message in messages:
        if message.role == "assistant":
            if pending:
                history.append(ModelRequest(parts=pending))
                pending = []
            history.append(ModelResponse(parts=[TextPart(content=message.text)]))
        elif message.role == "system":
            pending.append(SystemPromptPart(content=message.text))
        else:
            pending.append(UserPromptPart(content=message.text))
    if pending:
        history.append(ModelRequest(parts=pending))
    return history


def to_tool_definitions(tools: Optional[Sequence[ToolSpec]]) -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name=tool.name,
            description=tool.description,
            parameters_json_schema=tool.parameters,
        )
        for tool in tools or []
    ]


def from_model_response(response: ModelResponse, model_id: str) -> ProviderResponse:
    """Map a pydantic-ai ModelResponse onto the provider contract."""
    texts = []
    tool_calls = []
    for part in response.parts:
        if isinstance(part, TextPart):
            texts.append(part.content)
        elif isinstance(part, ToolCallPart):
            tool_calls.append(
                ToolCall(
                    name=part.tool_name,
                    arguments=part.args_as_dict(),
                    call_id=part.tool_call_id,
                )
            )

    usage = response.usage
    finish_reason = getattr(response, "finish_reason", None)
    if finish_reason is None:
        finish_reason = "tool_calls" if tool_calls else "stop"

    return ProviderResponse(
        text="".join(texts) if texts else None,
        tool_calls=tool_calls,
        usage=TokenUsage(
            input_tokens=usage.input_tokens or 0,
            output_tokens=usage.output_tokens or 0,
        ),
        finish_reason=finish_reason,
        model_id=model_id,
    )


class PydanticAIProvider(BaseProvider):
    """Serves descriptors backed by pydantic-ai models."""

    def __init__(
        self,
        name: str,
        bindings: Sequence[Tuple[ModelDescriptor, Model]],
        model_settings: Optional[ModelSettings] = None,
    ):
        super().__init__(name, [descriptor for descriptor, _ in bindings])
        self._backends: Dict[str, Model] = {d.id: model for d, model in bindings}
        self._model_settings = model_settings

    def _backend(self, model_id: str) -> Model:
        model = self._backends.get(model_id)
        if model is None:
            raise ProviderExecutionError(
                f"Provider {self.name} does not serve {model_id}", model_id=model_id
            )
        return model

    @staticmethod
    def _parameters(tools: Optional[Sequence[ToolSpec]]) -> ModelRequestParameters:
        return ModelRequestParameters(
            function_tools=to_tool_definitions(tools),
            allow_text_output=True,
        )

    async def chat(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> ProviderResponse:
        model = self._backend(model_id)
        response = await model.request(
            to_model_messages(messages),
            self._model_settings,
            self._parameters(tools),
        )
        return from_model_response(response, model_id)

    async def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> AsyncIterator[StreamChunk]:
        model = self._backend(model_id)
        async with model.request_stream(
            to_model_messages(messages),
            self._model_settings,
            self._parameters(tools),
        ) as streamed:
            async for event in streamed:
                if isinstance(event, PartStartEvent) and isinstance(event.part, TextPart):
                    if event.part.content:
                        yield StreamChunk(text=event.part.content)
                elif isinstance(event, PartDeltaEvent) and isinstance(event.delta, TextPartDelta):
                    if event.delta.content_delta:
                        yield StreamChunk(text=event.delta.content_delta)
            final = from_model_response(streamed.get(), model_id)
        yield StreamChunk(finish_reason=final.finish_reason, is_final=True, usage=final.usage)
