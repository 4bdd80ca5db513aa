"""Scoring Engine - ranks filtered candidates.

The default strategy is a normalized weighted sum of five components, each
in [0, 1]:
1. Complexity match (task tier vs. local/remote and tags)
2. Historical performance (success rate and latency EWMAs)
3. Cost efficiency against the remaining session budget
4. System context (battery, network, time of day)
5. Capability coverage

The weighted sum plus a small seeded tie-breaker is clamped to [0, 100].
Strategies are pluggable through ScoringStrategy so alternatives can be
swapped in without touching filtering.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from smart_router.core.context_analyzer import Complexity, TaskAnalysis, TaskType
from smart_router.core.model_catalog import Capability, ModelDescriptor, ModelTag
from smart_router.core.performance_tracker import clamp
from smart_router.core.routing_context import RoutingContext
from smart_router.core.system_context import NetworkQuality, SystemContext
from smart_router.settings import PrivacyMode, RoutingWeightsSettings

logger = logging.getLogger(__name__)

UNSEEN_MODEL_SCORE = 0.6
NEUTRAL_SCORE = 0.5
OVER_BUDGET_FLOOR = 0.05
OVER_BUDGET_CEILING = 0.3
PREMIUM_COST_USD = 0.01

# Tags that earn a bonus when they match the task type
TASK_TYPE_TAGS: Dict[TaskType, str] = {
    TaskType.CODE_GENERATION: ModelTag.CODEGEN.value,
    TaskType.DATA_ANALYSIS: ModelTag.ANALYSIS.value,
}
TASK_TAG_BONUS = 0.15
DOMAIN_TAG_BONUS = 0.3


@dataclass(frozen=True)
class ScoringWeights:
    """Integer factor weights plus normalization knobs."""

    complexity: int = 30
    performance: int = 25
    cost: int = 20
    system: int = 15
    capability: int = 10
    latency_max_ms: float = 5000.0
    tie_breaker: float = 0.5
    min_bucket_samples: int = 3

    @classmethod
    def from_settings(cls, settings: RoutingWeightsSettings, min_bucket_samples: int = 3) -> "ScoringWeights":
        return cls(
            complexity=settings.complexity,
            performance=settings.performance,
            cost=settings.cost,
            system=settings.system,
            capability=settings.capability,
            latency_max_ms=settings.latency_max_ms,
            tie_breaker=settings.tie_breaker,
            min_bucket_samples=min_bucket_samples,
        )


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-component scores of one candidate."""

    model_id: str
    complexity: float
    performance: float
    cost: float
    system: float
    capability: float
    tie_break: float
    total: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "complexity": round(self.complexity, 4),
            "performance": round(self.performance, 4),
            "cost": round(self.cost, 4),
            "system": round(self.system, 4),
            "capability": round(self.capability, 4),
            "tie_break": round(self.tie_break, 4),
            "total": round(self.total, 4),
        }


@dataclass(frozen=True)
class ScoredCandidate:
    model: ModelDescriptor
    breakdown: ScoreBreakdown

    @property
    def score(self) -> float:
        return self.breakdown.total


# =============================================================================
# Components
# =============================================================================


def score_complexity_match(model: ModelDescriptor, analysis: TaskAnalysis) -> float:
    """Fit between the task's complexity tier and the model's profile."""
    reasoning = model.has_tag(ModelTag.REASONING)

    if analysis.complexity == Complexity.LOW:
        if model.is_local:
            score = 1.0 + (0.1 if model.has_tag(ModelTag.FAST) else 0.0)
        else:
            score = 0.5
    elif analysis.complexity == Complexity.MEDIUM:
        if reasoning:
            score = 0.85 if model.is_local else 1.0
        else:
            score = 0.7
    else:
        if not model.is_local:
            score = 1.0 + (0.15 if reasoning else 0.0)
        elif reasoning:
            score = 0.7
        else:
            score = 0.3

    task_tag = TASK_TYPE_TAGS.get(analysis.task_type)
    if task_tag and model.has_tag(task_tag):
        score += TASK_TAG_BONUS
    if any(model.has_tag(domain.value) for domain in analysis.detected_domains):
        score += DOMAIN_TAG_BONUS

    return clamp(score)


def score_performance(
    model: ModelDescriptor,
    context: RoutingContext,
    latency_max_ms: float = 5000.0,
    min_bucket_samples: int = 3,
) -> float:
    """70% success rate plus 30% normalized latency."""
    perf = context.performance.get(model.id)
    if perf is None:
        return UNSEEN_MODEL_SCORE

    bucket = perf.bucket(context.analysis.task_type.value)
    if bucket is not None and bucket.sample_count >= min_bucket_samples:
        success_rate, latency = bucket.success_rate, bucket.avg_latency_ms
    else:
        success_rate, latency = perf.success_rate, perf.avg_latency_ms

    latency_component = 1.0 - clamp(latency / latency_max_ms)
    return clamp(clamp(success_rate) * 0.7 + latency_component * 0.3)


def score_cost_efficiency(model: ModelDescriptor, context: RoutingContext) -> float:
    """Local is free; remote decays as its estimate approaches the remaining budget."""
    if model.is_local:
        return 1.0

    estimated = context.estimate_cost(model)
    remaining = context.remaining_budget

    if estimated >= remaining:
        overage = estimated / max(remaining, 0.0001)
        return clamp(1.0 - (overage - 1.0), OVER_BUDGET_FLOOR, OVER_BUDGET_CEILING)
    return clamp(1.0 - (estimated / remaining) * 0.5, 0.5, 1.0)


def score_system_context(model: ModelDescriptor, system: SystemContext) -> float:
    score = 0.7
    if system.low_battery:
        score += -0.3 if model.is_local else 0.3
    if system.network_quality == NetworkQuality.POOR:
        score += 0.3 if model.is_local else -0.4
    elif system.network_quality == NetworkQuality.EXCELLENT and not model.is_local:
        score += 0.2
    if system.off_peak and not model.is_local:
        score += 0.1
    return clamp(score)


def score_capability_match(model: ModelDescriptor, required: Iterable[Capability]) -> float:
    required = frozenset(required)
    if not required:
        return 1.0
    return len(required & model.capabilities) / len(required)


# =============================================================================
# Strategies
# =============================================================================


class ScoringStrategy(ABC):
    """Ranks candidates that already passed the filter pipeline."""

    name: str = "base"

    @abstractmethod
    def score(self, model: ModelDescriptor, context: RoutingContext) -> ScoreBreakdown:
        """Score one candidate."""

    def rank(self, models: Sequence[ModelDescriptor], context: RoutingContext) -> List[ScoredCandidate]:
        """Score every candidate, best first; ties fall back to model id."""
        scored = [ScoredCandidate(model=m, breakdown=self.score(m, context)) for m in models]
        scored.sort(key=lambda c: (-c.score, c.model.id))
        return scored


class WeightedSumScorer(ScoringStrategy):
    """Weighted sum of the five components plus a seeded tie-breaker."""

    name = "weighted_sum"

    def __init__(self, weights: Optional[ScoringWeights] = None, rng: Optional[random.Random] = None):
        self.weights = weights or ScoringWeights()
        self.rng = rng or random.Random()

    def _component(self, name: str, model: ModelDescriptor, fn: Callable[[], float]) -> float:
        try:
            return clamp(fn())
        except Exception as e:
            logger.warning(f"Scoring component {name} failed for {model.id}, using neutral: {e}")
            return NEUTRAL_SCORE

    def score(self, model: ModelDescriptor, context: RoutingContext) -> ScoreBreakdown:
        w = self.weights
        complexity = self._component(
            "complexity", model, lambda: score_complexity_match(model, context.analysis)
        )
        performance = self._component(
            "performance",
            model,
            lambda: score_performance(model, context, w.latency_max_ms, w.min_bucket_samples),
        )
        cost = self._component("cost", model, lambda: score_cost_efficiency(model, context))
        system = self._component("system", model, lambda: score_system_context(model, context.system))
        capability = self._component(
            "capability", model, lambda: score_capability_match(model, context.required_capabilities)
        )
        tie_break = self.rng.random() * w.tie_breaker

        total = (
            complexity * w.complexity
            + performance * w.performance
            + cost * w.cost
            + system * w.system
            + capability * w.capability
            + tie_break
        )
        return ScoreBreakdown(
            model_id=model.id,
            complexity=complexity,
            performance=performance,
            cost=cost,
            system=system,
            capability=capability,
            tie_break=tie_break,
            total=clamp(total, 0.0, 100.0),
        )


# =============================================================================
# Explanations (flags only, never request content)
# =============================================================================


def identify_dominant_factors(context: RoutingContext) -> List[str]:
    factors = []
    if context.analysis.requires_privacy or context.privacy_mode == PrivacyMode.STRICT:
        factors.append("privacy")
    if context.analysis.complexity in (Complexity.HIGH, Complexity.LOW):
        factors.append("complexity")
    if context.budget_pressure:
        factors.append("cost")
    if context.system.network_quality == NetworkQuality.POOR or context.system.low_battery:
        factors.append("system")
    if not factors:
        factors.append("performance")
    return factors


def generate_safe_reasoning(
    model: ModelDescriptor,
    context: RoutingContext,
    score: float,
    strict_gate: bool,
) -> str:
    """Human-readable decision summary built from flags only."""
    reasons = []
    analysis = context.analysis

    if strict_gate:
        reasons.append("privacy constraints active")

    if analysis.complexity == Complexity.LOW and model.is_local:
        reasons.append("simple task suitable for fast local model")
    elif analysis.complexity == Complexity.HIGH and not model.is_local:
        reasons.append("complex task benefits from advanced model")

    if model.is_local:
        reasons.append("zero cost local processing")
    elif context.remaining_budget < context.cost_budget * 0.2:
        reasons.append("cost budget consideration")

    if context.system.network_quality == NetworkQuality.POOR and model.is_local:
        reasons.append("network conditions favor local")

    domain_match = next(
        (d for d in analysis.detected_domains if model.has_tag(d.value)), None
    )
    task_tag = TASK_TYPE_TAGS.get(analysis.task_type)
    if domain_match is not None:
        reasons.append(f"specialized for {domain_match.value} domain")
    elif analysis.task_type == TaskType.CODE_GENERATION and task_tag and model.has_tag(task_tag):
        reasons.append("optimized for code generation")
    elif analysis.task_type == TaskType.DATA_ANALYSIS and task_tag and model.has_tag(task_tag):
        reasons.append("optimized for data analysis")
    elif model.has_tag(ModelTag.REASONING) and analysis.complexity == Complexity.HIGH:
        reasons.append("reasoning capability matches complexity")

    text = ", ".join(reasons) if reasons else "best overall match for task"
    return f"Selected {model.name} (score: {score:.1f}): {text}"


def alternative_notes(model: ModelDescriptor, context: RoutingContext) -> List[str]:
    """Compact tags describing an alternative candidate."""
    if model.is_local:
        notes = ["Local"]
    elif context.estimate_cost(model) > PREMIUM_COST_USD:
        notes = ["Premium"]
    else:
        notes = ["Low-cost"]
    if model.has_tag(ModelTag.REASONING):
        notes.append("Reasoning")
    if model.has_tag(ModelTag.CODEGEN):
        notes.append("Code")
    if model.has_tag(ModelTag.FAST):
        notes.append("Fast")
    return notes
