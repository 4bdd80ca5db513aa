"""Fallback Executor - drives the ranked candidates against providers.

Attempts are strictly sequential. Every attempt, success or failure, is
recorded in the Performance Tracker before the next one starts, so
learning reflects real outcomes. A model is never attempted twice within
one request. Cancellation propagates untouched and records nothing.

Streaming follows the same chain but can only fall back before the first
chunk reaches the caller; a failure after that surfaces immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, List, Optional, Sequence, Tuple

from smart_router.core.errors import (
    AllFallbacksFailed,
    AttemptRecord,
    ProviderExecutionError,
)
from smart_router.core.model_catalog import ModelDescriptor
from smart_router.core.observability import (
    log_fallback_attempt,
    log_fallback_success,
    log_fallbacks_exhausted,
)
from smart_router.core.performance_tracker import PerformanceTracker

if TYPE_CHECKING:
    from smart_router.providers.base import ProviderRegistry, ProviderResponse, TokenUsage

logger = logging.getLogger(__name__)


def classify_provider_error(exc: BaseException) -> str:
    """Bucket a provider exception into a coarse, content-free category.

    Handles exception types from different provider SDKs by name, then by
    status code attributes, then by well-known message fragments.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"

    exc_type = type(exc).__name__.lower()
    if "ratelimit" in exc_type:
        return "rate_limit"
    if "timeout" in exc_type:
        return "timeout"
    if any(t in exc_type for t in ("authentication", "permissiondenied")):
        return "auth_error"
    if any(t in exc_type for t in ("remoteprotocolerror", "connectionerror", "connecterror")):
        return "connection"
    if isinstance(exc, ConnectionError):
        return "connection"

    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if isinstance(status, int):
        if status == 429:
            return "rate_limit"
        if status in (401, 403):
            return "auth_error"
        if status in (408, 504):
            return "timeout"
        if status >= 500:
            return "server_error"
        if status in (400, 404, 413, 422):
            return "bad_request"

    exc_str = str(exc).lower()
    if "429" in exc_str or "rate limit" in exc_str or "too many requests" in exc_str:
        return "rate_limit"
    if any(t in exc_str for t in ("timed out", "timeout")):
        return "timeout"
    if any(t in exc_str for t in (
        "connection reset", "connection refused", "peer closed connection",
        "incomplete chunked read",
    )):
        return "connection"
    if any(t in exc_str for t in ("500", "502", "503", "internal server error", "service unavailable")):
        return "server_error"
    if any(t in exc_str for t in ("401", "403", "unauthorized", "forbidden")):
        return "auth_error"
    if any(t in exc_str for t in ("400", "422", "bad request", "unprocessable", "invalid_request")):
        return "bad_request"
    return "unknown"


@dataclass
class ExecutionOutcome:
    """Successful execution result."""

    model: ModelDescriptor
    response: "ProviderResponse"
    attempts: List[AttemptRecord] = field(default_factory=list)
    latency_ms: float = 0.0
    cost_usd: float = 0.0

    @property
    def fell_back(self) -> bool:
        return len(self.attempts) > 1


@dataclass(frozen=True)
class RoutedChunk:
    """A stream chunk tagged with the model that produced it."""

    model_id: str
    text: str = ""
    finish_reason: Optional[str] = None
    is_final: bool = False
    attempt: int = 1
    cost_usd: float = 0.0


async def _next_chunk(stream: AsyncIterator[Any]) -> Any:
    return await stream.__anext__()


def _dedupe(candidates: Sequence[ModelDescriptor]) -> List[ModelDescriptor]:
    seen = set()
    chain = []
    for model in candidates:
        if model.id not in seen:
            seen.add(model.id)
            chain.append(model)
    return chain


class FallbackExecutor:
    """Sequential executor over a ranked candidate list."""

    def __init__(
        self,
        registry: "ProviderRegistry",
        tracker: PerformanceTracker,
        auto_fallback: bool = True,
    ):
        self._registry = registry
        self._tracker = tracker
        self.auto_fallback = auto_fallback

    def _chain(self, candidates: Sequence[ModelDescriptor]) -> List[ModelDescriptor]:
        chain = _dedupe(candidates)
        return chain if self.auto_fallback else chain[:1]

    @staticmethod
    def _cost(model: ModelDescriptor, usage: Optional["TokenUsage"], expected_tokens: Tuple[int, int]) -> float:
        if usage is not None and (usage.input_tokens or usage.output_tokens):
            return model.estimate_cost(usage.input_tokens, usage.output_tokens)
        return model.estimate_cost(*expected_tokens)

    def _record_failure(
        self,
        model: ModelDescriptor,
        task_type: str,
        error: Exception,
        started: float,
        attempt: int,
        next_model: Optional[ModelDescriptor],
    ) -> AttemptRecord:
        latency_ms = (time.perf_counter() - started) * 1000
        category = classify_provider_error(error)
        self._tracker.record(model.id, task_type, False, latency_ms, 0.0)
        record = AttemptRecord(
            model_id=model.id,
            success=False,
            latency_ms=latency_ms,
            error_category=category,
            error_type=type(error).__name__,
        )
        logger.warning(
            f"Attempt {attempt} on {model.id} failed ({category}, {type(error).__name__})"
            + (f", falling back to {next_model.id}" if next_model else "")
        )
        log_fallback_attempt(
            from_model=model.id,
            to_model=next_model.id if next_model else None,
            error_category=category,
            attempt=attempt,
            latency_ms=latency_ms,
        )
        return record

    async def execute(
        self,
        candidates: Sequence[ModelDescriptor],
        messages: Sequence[Any],
        tools: Optional[Sequence[Any]] = None,
        *,
        task_type: str,
        timeout_s: float,
        expected_tokens: Tuple[int, int] = (0, 0),
    ) -> ExecutionOutcome:
        """Run the chain until one candidate succeeds.

        Raises:
            AllFallbacksFailed: When every candidate failed.
        """
        task_type = getattr(task_type, "value", task_type)
        chain = self._chain(candidates)
        attempts: List[AttemptRecord] = []

        for index, model in enumerate(chain):
            attempt = index + 1
            next_model = chain[index + 1] if index + 1 < len(chain) else None
            started = time.perf_counter()
            try:
                response = await asyncio.wait_for(
                    self._registry.chat(model.id, messages, tools),
                    timeout=timeout_s,
                )
            except asyncio.CancelledError:
                logger.info(f"Attempt {attempt} on {model.id} cancelled, nothing recorded")
                raise
            except Exception as e:
                attempts.append(
                    self._record_failure(model, task_type, e, started, attempt, next_model)
                )
                continue

            latency_ms = (time.perf_counter() - started) * 1000
            cost = self._cost(model, response.usage, expected_tokens)
            self._tracker.record(model.id, task_type, True, latency_ms, cost)
            attempts.append(AttemptRecord(model_id=model.id, success=True, latency_ms=latency_ms))
            if attempt > 1:
                log_fallback_success(model.id, attempt, len(chain), latency_ms)
            return ExecutionOutcome(
                model=model,
                response=response,
                attempts=attempts,
                latency_ms=latency_ms,
                cost_usd=cost,
            )

        log_fallbacks_exhausted([a.to_dict() for a in attempts])
        raise AllFallbacksFailed(attempts)

    async def stream(
        self,
        candidates: Sequence[ModelDescriptor],
        messages: Sequence[Any],
        tools: Optional[Sequence[Any]] = None,
        *,
        task_type: str,
        timeout_s: float,
        expected_tokens: Tuple[int, int] = (0, 0),
        attempts: Optional[List[AttemptRecord]] = None,
    ) -> AsyncIterator[RoutedChunk]:
        """Stream from the first candidate that produces output.

        ``timeout_s`` bounds the wait for each chunk. Pass ``attempts`` to
        collect the attempt records.

        Raises:
            AllFallbacksFailed: When every candidate failed before output.
            ProviderExecutionError: When a stream breaks after output began.
        """
        task_type = getattr(task_type, "value", task_type)
        chain = self._chain(candidates)
        attempts = attempts if attempts is not None else []

        for index, model in enumerate(chain):
            attempt = index + 1
            next_model = chain[index + 1] if index + 1 < len(chain) else None
            started = time.perf_counter()
            stream = self._registry.stream(model.id, messages, tools)
            delivered = False
            usage = None
            try:
                while True:
                    try:
                        chunk = await asyncio.wait_for(_next_chunk(stream), timeout=timeout_s)
                    except StopAsyncIteration:
                        break
                    if chunk.usage is not None:
                        usage = chunk.usage
                    if chunk.is_final:
                        continue
                    delivered = True
                    yield RoutedChunk(model_id=model.id, text=chunk.text, attempt=attempt)
            except asyncio.CancelledError:
                logger.info(f"Stream attempt {attempt} on {model.id} cancelled, nothing recorded")
                raise
            except Exception as e:
                if delivered:
                    attempts.append(
                        self._record_failure(model, task_type, e, started, attempt, None)
                    )
                    raise ProviderExecutionError(
                        f"Stream from {model.id} failed after output began "
                        f"({classify_provider_error(e)})",
                        model_id=model.id,
                    ) from e
                attempts.append(
                    self._record_failure(model, task_type, e, started, attempt, next_model)
                )
                continue
            finally:
                await stream.aclose()

            latency_ms = (time.perf_counter() - started) * 1000
            cost = self._cost(model, usage, expected_tokens)
            self._tracker.record(model.id, task_type, True, latency_ms, cost)
            attempts.append(AttemptRecord(model_id=model.id, success=True, latency_ms=latency_ms))
            if attempt > 1:
                log_fallback_success(model.id, attempt, len(chain), latency_ms)
            yield RoutedChunk(
                model_id=model.id,
                finish_reason="stop",
                is_final=True,
                attempt=attempt,
                cost_usd=cost,
            )
            return

        log_fallbacks_exhausted([a.to_dict() for a in attempts])
        raise AllFallbacksFailed(attempts)
