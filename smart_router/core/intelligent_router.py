"""Intelligent Model Router - privacy-gated, cost-aware, adaptive routing.

This module orchestrates one routing decision per request:
1. Analyze the request into a content-free TaskAnalysis
2. Build a RoutingContext (capabilities, privacy mode, budget, system state)
3. Filter candidates: privacy gate, capabilities, cost budget
4. Rank survivors with a pluggable scoring strategy
5. Optionally promote a learned user preference
6. Execute through the fallback chain and record every outcome

Usage:
    state = RoutingState.from_settings(get_settings())
    state.registry.register_provider(MockProvider())
    router = IntelligentModelRouter(state)

    decision = router.select_model([{"role": "user", "text": "hello"}])
    result = await router.execute([{"role": "user", "text": "hello"}])
"""

from __future__ import annotations

import dataclasses
import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

from smart_router.core.candidate_filter import (
    CandidateFilterPipeline,
    FilterResult,
    PrivacyGate,
)
from smart_router.core.context_analyzer import (
    TaskAnalysis,
    analyze_context,
    default_analysis,
    log_analysis_result,
    normalize_privacy_mode,
)
from smart_router.core.errors import AttemptRecord, InvalidContext
from smart_router.core.fallback_executor import FallbackExecutor, RoutedChunk
from smart_router.core.model_catalog import Capability, ModelDescriptor
from smart_router.core.observability import (
    log_analysis,
    log_preference_override,
    log_routing_decision,
)
from smart_router.core.preference_learner import LearnedPreference, context_pattern
from smart_router.core.routing_context import RoutingContext
from smart_router.core.routing_state import RoutingState
from smart_router.core.scoring import (
    ScoredCandidate,
    ScoringStrategy,
    ScoringWeights,
    WeightedSumScorer,
    alternative_notes,
    generate_safe_reasoning,
    identify_dominant_factors,
)
from smart_router.core.system_context import SystemContext
from smart_router.settings import PrivacyMode, Settings, get_settings

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3
VISION_TOOLS = frozenset({"vision", "screenshot", "image_analysis"})


def derive_required_capabilities(
    tools: Optional[Iterable[Any]] = None,
    extra: Optional[Iterable[Any]] = None,
) -> frozenset:
    """Capabilities a request needs from its model."""
    required = {Capability.TEXT_GENERATION}
    names = [str(getattr(t, "name", t)).strip().lower() for t in tools or []]
    if names:
        required.add(Capability.FUNCTION_CALLING)
    if any(name in VISION_TOOLS for name in names):
        required.add(Capability.VISION)
    for capability in extra or []:
        try:
            required.add(Capability(capability))
        except ValueError as e:
            raise InvalidContext(f"unknown capability {capability!r}") from e
    return frozenset(required)


@dataclass(frozen=True)
class StructuredReason:
    """Machine-readable reasons behind a decision."""

    privacy_gate: str
    dominant_factors: Tuple[str, ...]
    expected_cost_usd: float
    input_tokens: int
    output_tokens: int
    budget_degraded: bool = False


@dataclass(frozen=True)
class AlternativeModel:
    id: str
    is_local: bool
    score: float
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RoutingDecision:
    """Result of a model selection. Contains no request content."""

    model: ModelDescriptor
    score: float
    reasoning: str
    confidence: float
    structured_reason: StructuredReason
    alternatives: Tuple[AlternativeModel, ...] = ()
    ranking: Tuple[Tuple[str, float], ...] = ()
    analysis: Optional[TaskAnalysis] = None
    privacy_mode: PrivacyMode = PrivacyMode.BALANCED
    source: str = "scored"
    is_fallback: bool = False
    fallback_from: Optional[str] = None

    @property
    def fallback_chain(self) -> List[str]:
        return [model_id for model_id, _ in self.ranking]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model.id,
            "score": round(self.score, 2),
            "reasoning": self.reasoning,
            "confidence": round(self.confidence, 3),
            "structured_reason": {
                "privacy_gate": self.structured_reason.privacy_gate,
                "dominant_factors": list(self.structured_reason.dominant_factors),
                "expected_cost_usd": round(self.structured_reason.expected_cost_usd, 6),
                "estimates": {
                    "in_tokens": self.structured_reason.input_tokens,
                    "out_tokens": self.structured_reason.output_tokens,
                },
                "budget_degraded": self.structured_reason.budget_degraded,
            },
            "alternatives": [
                {"id": a.id, "is_local": a.is_local, "score": round(a.score, 2), "notes": list(a.notes)}
                for a in self.alternatives
            ],
            "source": self.source,
            "is_fallback": self.is_fallback,
            "fallback_from": self.fallback_from,
        }


@dataclass
class RoutedResponse:
    """Executed request: the decision that served it and the provider response."""

    decision: RoutingDecision
    response: Any
    attempts: List[AttemptRecord] = field(default_factory=list)
    latency_ms: float = 0.0
    cost_usd: float = 0.0


@dataclass
class RoutingStats:
    """Counters over the router's lifetime."""

    total_requests: int = 0
    executed_requests: int = 0
    fallbacks: int = 0
    exhausted: int = 0
    preference_overrides: int = 0
    policy_rejections: int = 0
    models_used: Dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def record_route(self, model_id: str) -> None:
        with self._lock:
            self.total_requests += 1
            self.models_used[model_id] = self.models_used.get(model_id, 0) + 1

    def to_telemetry(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "executed_requests": self.executed_requests,
                "fallbacks": self.fallbacks,
                "exhausted": self.exhausted,
                "preference_overrides": self.preference_overrides,
                "policy_rejections": self.policy_rejections,
                "top_models": sorted(self.models_used.items(), key=lambda x: x[1], reverse=True)[:5],
            }


class IntelligentModelRouter:
    """Routes each request to the best candidate model.

    All mutable state lives in the RoutingState passed in, so several
    routers (or tests) never share hidden globals.
    """

    def __init__(
        self,
        state: Optional[RoutingState] = None,
        settings: Optional[Settings] = None,
        scorer: Optional[ScoringStrategy] = None,
        rng: Optional[random.Random] = None,
        filter_pipeline: Optional[CandidateFilterPipeline] = None,
    ):
        self.settings = settings or get_settings()
        self.state = state or RoutingState.from_settings(self.settings)
        self.scorer = scorer or WeightedSumScorer(
            ScoringWeights.from_settings(
                self.settings.weights,
                min_bucket_samples=self.settings.routing.min_bucket_samples,
            ),
            rng=rng,
        )
        self.filter_pipeline = filter_pipeline or CandidateFilterPipeline()
        self.executor = FallbackExecutor(
            self.state.registry,
            self.state.tracker,
            auto_fallback=self.settings.routing.auto_fallback,
        )
        self.stats = RoutingStats()

    # -- context -----------------------------------------------------------

    def _analyze(self, messages: Sequence[Any], tools: Optional[Iterable[Any]], mode: PrivacyMode) -> TaskAnalysis:
        try:
            analysis = analyze_context(
                messages,
                tools=tools,
                privacy_mode=mode,
                max_scan_chars=self.settings.analyzer.max_scan_chars,
            )
        except InvalidContext:
            raise
        except Exception as e:
            logger.error(f"Context analysis failed, using conservative defaults: {type(e).__name__}")
            analysis = default_analysis()
        log_analysis_result(analysis)
        log_analysis(analysis)
        return analysis

    def build_context(
        self,
        analysis: TaskAnalysis,
        required_capabilities: Iterable[Capability],
        privacy_mode: PrivacyMode,
        cost_budget: Optional[float] = None,
        system_context: Optional[SystemContext] = None,
        max_response_time_ms: Optional[int] = None,
    ) -> RoutingContext:
        budget = self.settings.routing.cost_budget_usd if cost_budget is None else cost_budget
        return RoutingContext(
            analysis=analysis,
            required_capabilities=frozenset(required_capabilities),
            privacy_mode=privacy_mode,
            cost_budget=budget,
            remaining_budget=self.state.costs.remaining(budget),
            system=system_context or SystemContext.current(),
            max_response_time_ms=max_response_time_ms or self.settings.routing.max_response_time_ms,
            performance=self.state.tracker.snapshot(),
        )

    # -- selection ---------------------------------------------------------

    def _apply_learned_preference(
        self, ranked: List[ScoredCandidate], context: RoutingContext
    ) -> Tuple[List[ScoredCandidate], bool]:
        if not self.settings.routing.learning_enabled or not ranked:
            return ranked, False
        analysis = context.analysis
        preferred = self.state.learner.preferred_model(
            analysis.task_type, analysis.complexity, context.privacy_mode
        )
        if preferred is None or preferred == ranked[0].model.id:
            return ranked, False

        match = next((c for c in ranked if c.model.id == preferred), None)
        if match is None:
            # Filtered out by privacy, capabilities or budget
            logger.debug(f"Learned preference {preferred} is not an eligible candidate")
            return ranked, False

        log_preference_override(
            context_pattern(analysis.task_type, analysis.complexity, context.privacy_mode),
            preferred,
            ranked[0].model.id,
        )
        self.stats.increment("preference_overrides")
        return [match] + [c for c in ranked if c is not match], True

    def _build_decision(
        self,
        ranked: List[ScoredCandidate],
        context: RoutingContext,
        filtered: FilterResult,
        learned: bool,
    ) -> RoutingDecision:
        top = ranked[0]
        strict = filtered.gate == PrivacyGate.STRICT
        if learned:
            reasoning = (
                f"Selected {top.model.name} (score: {top.score:.1f}): learned user preference"
                + (", privacy constraints active" if strict else "")
            )
        else:
            reasoning = generate_safe_reasoning(top.model, context, top.score, strict)

        alternatives = tuple(
            AlternativeModel(
                id=c.model.id,
                is_local=c.model.is_local,
                score=c.score,
                notes=tuple(alternative_notes(c.model, context)),
            )
            for c in ranked[1 : 1 + MAX_ALTERNATIVES]
        )
        return RoutingDecision(
            model=top.model,
            score=top.score,
            reasoning=reasoning,
            confidence=top.score / 100.0,
            structured_reason=StructuredReason(
                privacy_gate=filtered.gate.value,
                dominant_factors=tuple(identify_dominant_factors(context)),
                expected_cost_usd=context.estimate_cost(top.model),
                input_tokens=context.expected_input_tokens,
                output_tokens=context.expected_output_tokens,
                budget_degraded=filtered.budget_degraded,
            ),
            alternatives=alternatives,
            ranking=tuple((c.model.id, c.score) for c in ranked),
            analysis=context.analysis,
            privacy_mode=context.privacy_mode,
            source="learned_preference" if learned else "scored",
        )

    def select_model(
        self,
        messages: Sequence[Any],
        tools: Optional[Iterable[Any]] = None,
        *,
        privacy_mode: Any = None,
        cost_budget: Optional[float] = None,
        required_capabilities: Optional[Iterable[Any]] = None,
        system_context: Optional[SystemContext] = None,
        max_response_time_ms: Optional[int] = None,
    ) -> RoutingDecision:
        """Pick the best model for a request without executing it.

        Raises:
            InvalidContext: Malformed messages, tools, mode or capabilities.
            NoCandidatesAfterPrivacyGate: Strict gate and no local model.
            NoCandidatesWithCapabilities: No model offers what is needed.
            BudgetExhausted: Nothing affordable and no local model.
        """
        mode = normalize_privacy_mode(privacy_mode) or self.settings.routing.privacy_mode
        tools = list(tools) if tools is not None else None
        analysis = self._analyze(messages, tools, mode)
        context = self.build_context(
            analysis,
            derive_required_capabilities(tools, required_capabilities),
            mode,
            cost_budget=cost_budget,
            system_context=system_context,
            max_response_time_ms=max_response_time_ms,
        )

        try:
            filtered = self.filter_pipeline.run(self.state.registry.all_models(), context)
        except Exception:
            self.stats.increment("policy_rejections")
            raise

        ranked = self.scorer.rank(filtered.candidates, context)
        ranked, learned = self._apply_learned_preference(ranked, context)
        decision = self._build_decision(ranked, context, filtered, learned)

        self.stats.record_route(decision.model.id)
        log_routing_decision(
            model_id=decision.model.id,
            score=decision.score,
            privacy_gate=decision.structured_reason.privacy_gate,
            dominant_factors=list(decision.structured_reason.dominant_factors),
            candidate_count=len(ranked),
            source=decision.source,
        )
        logger.info(decision.reasoning)
        return decision

    # -- execution ---------------------------------------------------------

    def _chain_for(self, decision: RoutingDecision) -> List[ModelDescriptor]:
        chain = []
        for model_id in decision.fallback_chain:
            model = self.state.registry.get_model(model_id)
            if model is not None:
                chain.append(model)
        return chain

    def _timeout_seconds(self, max_response_time_ms: Optional[int]) -> float:
        ceiling_ms = max_response_time_ms or self.settings.routing.max_response_time_ms
        return min(ceiling_ms / 1000.0, self.settings.routing.provider_timeout_seconds)

    def _served_by(self, decision: RoutingDecision, model: ModelDescriptor, failures: int) -> RoutingDecision:
        if model.id == decision.model.id:
            return decision
        score = dict(decision.ranking).get(model.id, 0.0)
        return dataclasses.replace(
            decision,
            model=model,
            score=score,
            confidence=score / 100.0,
            reasoning=(
                f"Selected {model.name} (score: {score:.1f}): "
                f"fallback after {failures} failed attempt(s)"
            ),
            is_fallback=True,
            fallback_from=decision.model.id,
        )

    async def execute(
        self,
        messages: Sequence[Any],
        tools: Optional[Iterable[Any]] = None,
        *,
        privacy_mode: Any = None,
        cost_budget: Optional[float] = None,
        required_capabilities: Optional[Iterable[Any]] = None,
        system_context: Optional[SystemContext] = None,
        max_response_time_ms: Optional[int] = None,
    ) -> RoutedResponse:
        """Select a model and run the request through the fallback chain.

        Raises:
            AllFallbacksFailed: When every candidate failed.
        """
        tools = list(tools) if tools is not None else None
        decision = self.select_model(
            messages,
            tools,
            privacy_mode=privacy_mode,
            cost_budget=cost_budget,
            required_capabilities=required_capabilities,
            system_context=system_context,
            max_response_time_ms=max_response_time_ms,
        )
        analysis = decision.analysis
        try:
            outcome = await self.executor.execute(
                self._chain_for(decision),
                messages,
                tools,
                task_type=analysis.task_type.value,
                timeout_s=self._timeout_seconds(max_response_time_ms),
                expected_tokens=(analysis.expected_input_tokens, analysis.expected_output_tokens),
            )
        except Exception:
            self.stats.increment("exhausted")
            raise

        budget = self.settings.routing.cost_budget_usd if cost_budget is None else cost_budget
        self.state.costs.record_cost(outcome.cost_usd, budget)
        self.stats.increment("executed_requests")
        if outcome.fell_back:
            self.stats.increment("fallbacks")

        return RoutedResponse(
            decision=self._served_by(decision, outcome.model, len(outcome.attempts) - 1),
            response=outcome.response,
            attempts=outcome.attempts,
            latency_ms=outcome.latency_ms,
            cost_usd=outcome.cost_usd,
        )

    async def stream(
        self,
        messages: Sequence[Any],
        tools: Optional[Iterable[Any]] = None,
        *,
        privacy_mode: Any = None,
        cost_budget: Optional[float] = None,
        required_capabilities: Optional[Iterable[Any]] = None,
        system_context: Optional[SystemContext] = None,
        max_response_time_ms: Optional[int] = None,
    ) -> AsyncIterator[RoutedChunk]:
        """Streaming counterpart of execute; chunks carry the serving model id."""
        tools = list(tools) if tools is not None else None
        decision = self.select_model(
            messages,
            tools,
            privacy_mode=privacy_mode,
            cost_budget=cost_budget,
            required_capabilities=required_capabilities,
            system_context=system_context,
            max_response_time_ms=max_response_time_ms,
        )
        analysis = decision.analysis
        attempts: List[AttemptRecord] = []
        budget = self.settings.routing.cost_budget_usd if cost_budget is None else cost_budget

        try:
            async for chunk in self.executor.stream(
                self._chain_for(decision),
                messages,
                tools,
                task_type=analysis.task_type.value,
                timeout_s=self._timeout_seconds(max_response_time_ms),
                expected_tokens=(analysis.expected_input_tokens, analysis.expected_output_tokens),
                attempts=attempts,
            ):
                if chunk.is_final:
                    self.state.costs.record_cost(chunk.cost_usd, budget)
                    self.stats.increment("executed_requests")
                    if chunk.attempt > 1:
                        self.stats.increment("fallbacks")
                yield chunk
        except Exception:
            self.stats.increment("exhausted")
            raise

    # -- learning ----------------------------------------------------------

    def record_override(self, decision: RoutingDecision, chosen_model_id: str) -> Optional[LearnedPreference]:
        """Learn from the user replacing the routed model with another one."""
        if not self.settings.routing.learning_enabled:
            return None
        if self.state.registry.get_model(chosen_model_id) is None:
            raise InvalidContext(f"unknown model {chosen_model_id!r}")
        analysis = decision.analysis or default_analysis()
        return self.state.learner.record_override(
            suggested_model=decision.model.id,
            chosen_model=chosen_model_id,
            task_type=analysis.task_type,
            complexity=analysis.complexity,
            privacy_mode=decision.privacy_mode,
        )

    # -- status ------------------------------------------------------------

    def get_status_summary(self) -> Dict[str, Any]:
        """Get a summary of router state for display."""
        return {
            "scorer": self.scorer.name,
            "privacy_mode": self.settings.routing.privacy_mode.value,
            "cost_budget_usd": self.settings.routing.cost_budget_usd,
            "remaining_budget_usd": round(self.state.costs.remaining(), 6),
            "learning_enabled": self.settings.routing.learning_enabled,
            "auto_fallback": self.settings.routing.auto_fallback,
            "stats": self.stats.to_telemetry(),
            **self.state.status(),
        }
