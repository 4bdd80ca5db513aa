"""Candidate Filter Pipeline.

Narrows the catalog before anything is scored:
1. Privacy gate (strict keeps local models only, never widens)
2. Capability filter (every required capability must be present)
3. Cost-budget filter (local models always survive; degrades to local-only)

Each stage only ever removes models, so a stricter gate always yields a
subset of a looser one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from smart_router.core.context_analyzer import PrivacyLevel, TaskAnalysis
from smart_router.core.errors import (
    BudgetExhausted,
    NoCandidatesAfterPrivacyGate,
    NoCandidatesWithCapabilities,
)
from smart_router.core.model_catalog import Capability, ModelDescriptor
from smart_router.core.routing_context import RoutingContext
from smart_router.settings import PrivacyMode

logger = logging.getLogger(__name__)

# Remote models may exceed the remaining budget by this factor before exclusion
BUDGET_SLACK = 1.5


class PrivacyGate(str, Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    NONE = "none"


def determine_privacy_gate(privacy_mode: PrivacyMode, analysis: TaskAnalysis) -> PrivacyGate:
    """Derive the gate from the privacy mode and the analyzed request."""
    if privacy_mode == PrivacyMode.STRICT or analysis.requires_privacy:
        return PrivacyGate.STRICT
    if privacy_mode == PrivacyMode.BALANCED and analysis.privacy_level == PrivacyLevel.MODERATE:
        return PrivacyGate.MODERATE
    return PrivacyGate.NONE


def apply_privacy_gate(models: Sequence[ModelDescriptor], gate: PrivacyGate) -> List[ModelDescriptor]:
    """Restrict models by gate.

    Raises:
        NoCandidatesAfterPrivacyGate: If the strict gate leaves nothing.
    """
    if gate == PrivacyGate.STRICT:
        local = [m for m in models if m.is_local]
        if not local:
            raise NoCandidatesAfterPrivacyGate(gate.value, len(models))
        return local
    if gate == PrivacyGate.MODERATE:
        local = [m for m in models if m.is_local]
        return local if local else list(models)
    return list(models)


def filter_by_capabilities(
    models: Sequence[ModelDescriptor], required: Iterable[Capability]
) -> List[ModelDescriptor]:
    """Keep models offering every required capability.

    Raises:
        NoCandidatesWithCapabilities: If none qualifies.
    """
    required = frozenset(required)
    matching = [m for m in models if required <= m.capabilities]
    if not matching:
        raise NoCandidatesWithCapabilities([c.value for c in required])
    return matching


def filter_by_budget(
    models: Sequence[ModelDescriptor], context: RoutingContext
) -> Tuple[List[ModelDescriptor], bool]:
    """Drop remote models the remaining budget cannot cover.

    Returns the surviving models and whether the result was degraded to
    local-only because nothing affordable remained.

    Raises:
        BudgetExhausted: If nothing is affordable and no local model exists.
    """
    remaining = context.remaining_budget
    local = [m for m in models if m.is_local]

    if remaining <= 0:
        if not local:
            raise BudgetExhausted(remaining)
        logger.warning("Cost budget exhausted, restricting to local models")
        return local, True

    limit = remaining * BUDGET_SLACK
    affordable = [m for m in models if m.is_local or context.estimate_cost(m) <= limit]
    if affordable:
        had_remote = len(local) < len(models)
        degraded = had_remote and all(m.is_local for m in affordable)
        if degraded:
            logger.warning("No remote model fits the remaining budget, using local models")
        return affordable, degraded

    # Only reachable when no local model survived earlier stages
    raise BudgetExhausted(remaining)


@dataclass
class FilterResult:
    """Outcome of the filter pipeline."""

    candidates: List[ModelDescriptor]
    gate: PrivacyGate
    budget_degraded: bool = False
    stage_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def candidate_ids(self) -> List[str]:
        return [m.id for m in self.candidates]


class CandidateFilterPipeline:
    """Privacy gate, then capabilities, then budget."""

    def run(self, models: Sequence[ModelDescriptor], context: RoutingContext) -> FilterResult:
        gate = determine_privacy_gate(context.privacy_mode, context.analysis)
        counts = {"catalog": len(models)}

        candidates = apply_privacy_gate(models, gate)
        counts["privacy"] = len(candidates)

        candidates = filter_by_capabilities(candidates, context.required_capabilities)
        counts["capabilities"] = len(candidates)

        candidates, degraded = filter_by_budget(candidates, context)
        counts["budget"] = len(candidates)

        logger.debug(f"Filter pipeline ({gate.value} gate): {counts}")
        return FilterResult(
            candidates=candidates,
            gate=gate,
            budget_degraded=degraded,
            stage_counts=counts,
        )
