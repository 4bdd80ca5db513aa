"""Tests for the Fallback Executor."""

import asyncio

import pytest

from smart_router.core.errors import AllFallbacksFailed, ProviderExecutionError
from smart_router.core.fallback_executor import FallbackExecutor, classify_provider_error
from smart_router.core.performance_tracker import PerformanceTracker
from smart_router.providers.base import ProviderRegistry
from smart_router.providers.mock import MockProvider

MESSAGES = [{"role": "user", "text": "hello"}]


class RateLimitError(Exception):
    pass


class StatusError(Exception):
    def __init__(self, status_code):
        super().__init__("upstream failure")
        self.status_code = status_code


def make_executor(auto_fallback=True):
    provider = MockProvider()
    registry = ProviderRegistry()
    registry.register_provider(provider)
    tracker = PerformanceTracker()
    executor = FallbackExecutor(registry, tracker, auto_fallback=auto_fallback)
    chain = [registry.get_model("mock-local"), registry.get_model("mock-remote")]
    return executor, provider, tracker, chain


class TestClassifyProviderError:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (RateLimitError("slow down"), "rate_limit"),
            (asyncio.TimeoutError(), "timeout"),
            (ConnectionError("refused"), "connection"),
            (StatusError(503), "server_error"),
            (StatusError(401), "auth_error"),
            (StatusError(422), "bad_request"),
            (RuntimeError("HTTP 429 Too Many Requests"), "rate_limit"),
            (RuntimeError("peer closed connection without response"), "connection"),
            (RuntimeError("something odd"), "unknown"),
        ],
    )
    def test_categories(self, error, expected):
        assert classify_provider_error(error) == expected


class TestExecute:
    async def test_primary_success(self):
        executor, provider, tracker, chain = make_executor()
        outcome = await executor.execute(chain, MESSAGES, task_type="simple_query", timeout_s=5)

        assert outcome.model.id == "mock-local"
        assert outcome.fell_back is False
        assert outcome.cost_usd == 0.0
        assert provider.calls == ["mock-local"]
        assert tracker.get("mock-local").success_rate == 1.0

    async def test_falls_back_and_records_both(self):
        """A failed primary is recorded as a failure before the next attempt."""
        executor, provider, tracker, chain = make_executor()
        provider.fail("mock-local", ConnectionError("down"))

        outcome = await executor.execute(chain, MESSAGES, task_type="simple_query", timeout_s=5)

        assert outcome.model.id == "mock-remote"
        assert outcome.fell_back is True
        assert [a.success for a in outcome.attempts] == [False, True]
        assert outcome.attempts[0].error_category == "connection"
        assert tracker.get("mock-local").success_rate == 0.0
        assert tracker.get("mock-local").avg_cost_usd == 0.0
        assert tracker.get("mock-remote").success_rate == 1.0
        assert outcome.cost_usd > 0

    async def test_all_failures_aggregated(self):
        executor, provider, tracker, chain = make_executor()
        provider.fail("mock-local", ConnectionError("down"))
        provider.fail("mock-remote", StatusError(500))

        with pytest.raises(AllFallbacksFailed) as exc_info:
            await executor.execute(chain, MESSAGES, task_type="simple_query", timeout_s=5)

        attempts = exc_info.value.attempts
        assert [a.model_id for a in attempts] == ["mock-local", "mock-remote"]
        assert [a.error_category for a in attempts] == ["connection", "server_error"]
        assert tracker.get("mock-remote").sample_count == 1

    async def test_error_messages_not_kept(self):
        executor, provider, _, chain = make_executor()
        provider.fail("mock-local", RuntimeError("leaked 123-45-6789"))
        provider.fail("mock-remote", RuntimeError("leaked 123-45-6789"))
        with pytest.raises(AllFallbacksFailed) as exc_info:
            await executor.execute(chain, MESSAGES, task_type="simple_query", timeout_s=5)
        assert "123-45-6789" not in str(exc_info.value)
        assert "123-45-6789" not in repr([a.to_dict() for a in exc_info.value.attempts])

    async def test_timeout_moves_to_next(self):
        executor, provider, tracker, chain = make_executor()
        provider.hang("mock-local", 5)

        outcome = await executor.execute(chain, MESSAGES, task_type="simple_query", timeout_s=0.05)

        assert outcome.model.id == "mock-remote"
        assert outcome.attempts[0].error_category == "timeout"
        assert tracker.get("mock-local").sample_count == 1

    async def test_each_model_attempted_once(self):
        executor, provider, _, chain = make_executor()
        provider.fail("mock-local", ConnectionError("down"))
        provider.fail("mock-remote", ConnectionError("down"))
        with pytest.raises(AllFallbacksFailed):
            await executor.execute(chain + chain, MESSAGES, task_type="simple_query", timeout_s=5)
        assert provider.calls == ["mock-local", "mock-remote"]

    async def test_auto_fallback_disabled(self):
        executor, provider, _, chain = make_executor(auto_fallback=False)
        provider.fail("mock-local", ConnectionError("down"))
        with pytest.raises(AllFallbacksFailed) as exc_info:
            await executor.execute(chain, MESSAGES, task_type="simple_query", timeout_s=5)
        assert len(exc_info.value.attempts) == 1
        assert provider.calls == ["mock-local"]

    async def test_cancellation_records_nothing(self):
        executor, provider, tracker, chain = make_executor()
        provider.hang("mock-local", 5)

        task = asyncio.create_task(
            executor.execute(chain, MESSAGES, task_type="simple_query", timeout_s=10)
        )
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert tracker.snapshot() == {}
        assert provider.calls == ["mock-local"]

    async def test_cost_uses_expected_tokens_without_usage(self):
        executor, _, _, chain = make_executor()
        remote = chain[1]
        assert FallbackExecutor._cost(remote, None, (1000, 1000)) == pytest.approx(
            remote.estimate_cost(1000, 1000)
        )


class TestStream:
    async def collect(self, executor, chain, attempts=None, timeout_s=5):
        return [
            chunk
            async for chunk in executor.stream(
                chain,
                MESSAGES,
                task_type="simple_query",
                timeout_s=timeout_s,
                attempts=attempts,
            )
        ]

    async def test_stream_from_primary(self):
        executor, provider, tracker, chain = make_executor()
        provider.reply("mock-local", "streamed words here")

        chunks = await self.collect(executor, chain)

        assert "".join(c.text for c in chunks) == "streamed words here"
        assert all(c.model_id == "mock-local" for c in chunks)
        assert chunks[-1].is_final is True
        assert tracker.get("mock-local").sample_count == 1

    async def test_falls_back_before_first_chunk(self):
        executor, provider, tracker, chain = make_executor()
        provider.fail("mock-local", ConnectionError("down"))
        attempts = []

        chunks = await self.collect(executor, chain, attempts=attempts)

        assert {c.model_id for c in chunks} == {"mock-remote"}
        assert chunks[-1].attempt == 2
        assert chunks[-1].cost_usd > 0
        assert [a.success for a in attempts] == [False, True]
        assert tracker.get("mock-local").success_rate == 0.0

    async def test_failure_after_output_surfaces(self):
        """Once a chunk reached the caller the stream cannot switch models."""
        executor, provider, tracker, chain = make_executor()
        provider.reply("mock-local", "one two three four")
        provider.fail_stream_after("mock-local", 2)

        received = []
        with pytest.raises(ProviderExecutionError) as exc_info:
            async for chunk in executor.stream(
                chain, MESSAGES, task_type="simple_query", timeout_s=5
            ):
                received.append(chunk)

        assert [c.text for c in received] == ["one", " two"]
        assert exc_info.value.model_id == "mock-local"
        assert "mock-remote" not in provider.calls
        assert tracker.get("mock-local").success_rate == 0.0

    async def test_all_streams_fail(self):
        executor, provider, _, chain = make_executor()
        provider.fail("mock-local", ConnectionError("down"))
        provider.fail("mock-remote", ConnectionError("down"))
        with pytest.raises(AllFallbacksFailed):
            await self.collect(executor, chain)

    async def test_stalled_stream_times_out(self):
        executor, provider, _, chain = make_executor()
        provider.hang("mock-local", 5)
        attempts = []

        chunks = await self.collect(executor, chain, attempts=attempts, timeout_s=0.05)

        assert chunks[-1].model_id == "mock-remote"
        assert attempts[0].error_category == "timeout"
