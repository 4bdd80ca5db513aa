"""Tests for the IntelligentModelRouter end to end over the mock provider."""

import threading

import pytest

from smart_router.core.errors import (
    AllFallbacksFailed,
    BudgetExhausted,
    InvalidContext,
    NoCandidatesAfterPrivacyGate,
    NoCandidatesWithCapabilities,
)
from smart_router.core.intelligent_router import (
    IntelligentModelRouter,
    RoutingStats,
    derive_required_capabilities,
)
from smart_router.core.model_catalog import Capability
from smart_router.core.routing_state import RoutingState
from smart_router.core.scoring import ScoreBreakdown, ScoringStrategy
from smart_router.providers.mock import MockProvider, default_mock_models
from smart_router.settings import PrivacyMode, RoutingSettings, Settings

HELLO = [{"role": "user", "text": "hello there"}]


class FixedScorer(ScoringStrategy):
    """Scores each model with a fixed number."""

    name = "fixed"

    def __init__(self, scores):
        self.scores = scores

    def score(self, model, context):
        total = self.scores.get(model.id, 0.0)
        return ScoreBreakdown(
            model_id=model.id,
            complexity=0.5,
            performance=0.5,
            cost=0.5,
            system=0.5,
            capability=0.5,
            tie_break=0.0,
            total=total,
        )


@pytest.fixture
def remote_first(routing_state, settings):
    """Router that always ranks mock-remote above mock-local."""
    return IntelligentModelRouter(
        routing_state,
        settings=settings,
        scorer=FixedScorer({"mock-remote": 90.0, "mock-local": 50.0}),
    )


class TestDeriveRequiredCapabilities:
    def test_plain_request(self):
        assert derive_required_capabilities() == frozenset({Capability.TEXT_GENERATION})

    def test_tools_need_function_calling(self):
        required = derive_required_capabilities(["search"])
        assert Capability.FUNCTION_CALLING in required
        assert Capability.VISION not in required

    def test_vision_tool(self):
        assert Capability.VISION in derive_required_capabilities(["screenshot"])

    def test_extra_capabilities(self):
        assert Capability.REASONING in derive_required_capabilities(extra=["reasoning"])
        with pytest.raises(InvalidContext):
            derive_required_capabilities(extra=["telepathy"])


class TestSelectModel:
    def test_decision_shape(self, router, system_context):
        decision = router.select_model(HELLO, system_context=system_context)

        assert decision.model.id in {"mock-local", "mock-remote"}
        assert decision.confidence == pytest.approx(decision.score / 100.0)
        assert decision.source == "scored"
        assert decision.is_fallback is False
        assert set(decision.fallback_chain) == {"mock-local", "mock-remote"}
        assert decision.fallback_chain[0] == decision.model.id
        assert len(decision.alternatives) == 1
        assert decision.reasoning.startswith(f"Selected {decision.model.name}")

    def test_to_dict_is_content_free(self, router, system_context):
        messages = [{"role": "user", "text": "draft a note to jane@example.com"}]
        data = router.select_model(messages, system_context=system_context).to_dict()

        assert set(data) >= {"model", "score", "reasoning", "confidence", "structured_reason", "alternatives"}
        assert "jane@example.com" not in repr(data)
        assert data["structured_reason"]["estimates"]["in_tokens"] > 0

    def test_strict_mode_routes_local(self, router, system_context):
        decision = router.select_model(HELLO, privacy_mode="strict", system_context=system_context)
        assert decision.model.id == "mock-local"
        assert decision.fallback_chain == ["mock-local"]
        assert decision.structured_reason.privacy_gate == "strict"

    def test_sensitive_content_routes_local(self, remote_first, system_context):
        """Hard identifiers force the strict gate even in performance mode."""
        messages = [{"role": "user", "text": "My SSN is 123-45-6789, can you help?"}]
        decision = remote_first.select_model(
            messages, privacy_mode=PrivacyMode.PERFORMANCE, system_context=system_context
        )
        assert decision.model.id == "mock-local"
        assert decision.structured_reason.privacy_gate == "strict"
        assert "privacy" in decision.reasoning.lower()

    def test_capability_requirement(self, router, system_context):
        decision = router.select_model(
            HELLO, required_capabilities=["vision"], system_context=system_context
        )
        assert decision.model.id == "mock-remote"

    def test_zero_budget_degrades_to_local(self, remote_first, system_context):
        decision = remote_first.select_model(
            HELLO,
            privacy_mode="performance",
            cost_budget=0.0,
            system_context=system_context,
        )
        assert decision.model.id == "mock-local"
        assert decision.structured_reason.budget_degraded is True

    def test_invalid_privacy_mode(self, router):
        with pytest.raises(InvalidContext):
            router.select_model(HELLO, privacy_mode="paranoid")

    def test_invalid_messages(self, router):
        with pytest.raises(InvalidContext):
            router.select_model([{"role": "narrator", "text": "hi"}])

    def test_policy_rejections_counted(self, settings, system_context):
        state = RoutingState.from_settings(settings)
        state.registry.register_provider(MockProvider(models=default_mock_models()[1:]))
        router = IntelligentModelRouter(state, settings=settings)

        with pytest.raises(NoCandidatesAfterPrivacyGate):
            router.select_model(HELLO, privacy_mode="strict", system_context=system_context)
        with pytest.raises(BudgetExhausted):
            router.select_model(HELLO, cost_budget=0.0, system_context=system_context)
        assert router.stats.policy_rejections == 2
        assert router.stats.total_requests == 0

    def test_missing_capability(self, settings, system_context):
        state = RoutingState.from_settings(settings)
        state.registry.register_provider(MockProvider(models=default_mock_models()[:1]))
        router = IntelligentModelRouter(state, settings=settings)
        with pytest.raises(NoCandidatesWithCapabilities):
            router.select_model(HELLO, required_capabilities=["vision"], system_context=system_context)


class TestLearnedPreference:
    def test_repeated_overrides_promote_model(self, remote_first, system_context):
        decision = remote_first.select_model(
            HELLO, privacy_mode="performance", system_context=system_context
        )
        assert decision.model.id == "mock-remote"

        for _ in range(3):
            remote_first.record_override(decision, "mock-local")

        learned = remote_first.select_model(
            HELLO, privacy_mode="performance", system_context=system_context
        )
        assert learned.model.id == "mock-local"
        assert learned.source == "learned_preference"
        assert learned.fallback_chain == ["mock-local", "mock-remote"]
        assert "learned user preference" in learned.reasoning
        assert remote_first.stats.preference_overrides == 1

    def test_preference_never_bypasses_privacy(self, remote_first, system_context):
        """A learned remote preference is ignored when only local models are eligible."""
        decision = remote_first.select_model(HELLO, privacy_mode="strict", system_context=system_context)
        for _ in range(5):
            remote_first.record_override(decision, "mock-remote")

        again = remote_first.select_model(HELLO, privacy_mode="strict", system_context=system_context)
        assert again.model.id == "mock-local"
        assert again.source == "scored"

    def test_override_with_unknown_model(self, router):
        decision = router.select_model(HELLO)
        with pytest.raises(InvalidContext):
            router.record_override(decision, "ghost-model")

    def test_learning_disabled(self, routing_state):
        settings = Settings(routing=RoutingSettings(learning_enabled=False))
        router = IntelligentModelRouter(routing_state, settings=settings)
        decision = router.select_model(HELLO)
        assert router.record_override(decision, "mock-remote") is None
        assert routing_state.learner.stats()["total_overrides"] == 0


class TestExecute:
    async def test_execute_records_outcome(self, remote_first, routing_state, system_context):
        result = await remote_first.execute(
            HELLO, privacy_mode="performance", system_context=system_context
        )

        assert result.decision.model.id == "mock-remote"
        assert result.response.text.startswith("Mock response from mock-remote")
        assert result.cost_usd > 0
        assert routing_state.costs.cumulative_cost == pytest.approx(result.cost_usd)
        assert routing_state.tracker.get("mock-remote").sample_count == 1
        assert remote_first.stats.executed_requests == 1

    async def test_fallback_rewrites_decision(self, remote_first, mock_provider, routing_state, system_context):
        mock_provider.fail("mock-remote", ConnectionError("down"))

        result = await remote_first.execute(
            HELLO, privacy_mode="performance", system_context=system_context
        )

        decision = result.decision
        assert decision.model.id == "mock-local"
        assert decision.is_fallback is True
        assert decision.fallback_from == "mock-remote"
        assert decision.score == 50.0
        assert "fallback after 1 failed attempt(s)" in decision.reasoning
        assert [a.success for a in result.attempts] == [False, True]
        assert routing_state.tracker.get("mock-remote").success_rate == 0.0
        assert remote_first.stats.fallbacks == 1

    async def test_exhaustion_counted(self, remote_first, mock_provider, system_context):
        mock_provider.fail("mock-remote", ConnectionError("down"))
        mock_provider.fail("mock-local", ConnectionError("down"))

        with pytest.raises(AllFallbacksFailed) as exc_info:
            await remote_first.execute(HELLO, privacy_mode="performance", system_context=system_context)

        assert len(exc_info.value.attempts) == 2
        assert remote_first.stats.exhausted == 1
        assert remote_first.stats.executed_requests == 0

    async def test_no_fallback_when_disabled(self, routing_state, mock_provider, system_context):
        settings = Settings(routing=RoutingSettings(auto_fallback=False))
        router = IntelligentModelRouter(
            routing_state,
            settings=settings,
            scorer=FixedScorer({"mock-remote": 90.0, "mock-local": 50.0}),
        )
        mock_provider.fail("mock-remote", ConnectionError("down"))

        with pytest.raises(AllFallbacksFailed):
            await router.execute(HELLO, privacy_mode="performance", system_context=system_context)
        assert mock_provider.calls == ["mock-remote"]

    async def test_stream(self, remote_first, mock_provider, routing_state, system_context):
        mock_provider.reply("mock-remote", "streamed reply")

        chunks = [
            chunk
            async for chunk in remote_first.stream(
                HELLO, privacy_mode="performance", system_context=system_context
            )
        ]

        assert "".join(c.text for c in chunks) == "streamed reply"
        assert chunks[-1].is_final is True
        assert routing_state.costs.cumulative_cost == pytest.approx(chunks[-1].cost_usd)
        assert remote_first.stats.executed_requests == 1

    async def test_stream_falls_back(self, remote_first, mock_provider, system_context):
        mock_provider.fail("mock-remote", ConnectionError("down"))

        chunks = [
            chunk
            async for chunk in remote_first.stream(
                HELLO, privacy_mode="performance", system_context=system_context
            )
        ]

        assert {c.model_id for c in chunks} == {"mock-local"}
        assert remote_first.stats.fallbacks == 1


class TestStatus:
    def test_status_summary(self, router):
        router.select_model(HELLO)
        status = router.get_status_summary()

        assert status["scorer"] == "weighted_sum"
        assert status["models_registered"] == 2
        assert status["stats"]["total_requests"] == 1
        assert status["learning_enabled"] is True
        assert "preferences" in status
        assert "session" in status


class TestRoutingStats:
    def test_concurrent_counting_is_exact(self):
        stats = RoutingStats()

        def work():
            for _ in range(500):
                stats.increment("fallbacks")
                stats.record_route("mock-local")

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        telemetry = stats.to_telemetry()
        assert telemetry["fallbacks"] == 4000
        assert telemetry["total_requests"] == 4000
        assert telemetry["top_models"] == [("mock-local", 4000)]
