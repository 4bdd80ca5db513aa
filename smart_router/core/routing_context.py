"""Per-request routing context shared by filtering and scoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional

from smart_router.core.context_analyzer import TaskAnalysis
from smart_router.core.model_catalog import Capability, ModelDescriptor
from smart_router.core.performance_tracker import ModelPerformance
from smart_router.core.system_context import SystemContext
from smart_router.settings import PrivacyMode


@dataclass(frozen=True)
class RoutingContext:
    """Everything a routing decision depends on; discarded afterwards."""

    analysis: TaskAnalysis
    required_capabilities: FrozenSet[Capability]
    privacy_mode: PrivacyMode
    cost_budget: float
    remaining_budget: float
    system: SystemContext = field(default_factory=SystemContext)
    max_response_time_ms: Optional[int] = None
    performance: Mapping[str, ModelPerformance] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self):
        object.__setattr__(
            self,
            "required_capabilities",
            frozenset(Capability(c) for c in self.required_capabilities),
        )
        object.__setattr__(self, "privacy_mode", PrivacyMode(self.privacy_mode))
        if not isinstance(self.performance, MappingProxyType):
            object.__setattr__(self, "performance", MappingProxyType(dict(self.performance)))

    @property
    def expected_input_tokens(self) -> int:
        return self.analysis.expected_input_tokens

    @property
    def expected_output_tokens(self) -> int:
        return self.analysis.expected_output_tokens

    @property
    def budget_pressure(self) -> bool:
        """Less than 30% of the session budget is left."""
        return self.remaining_budget < self.cost_budget * 0.3

    def estimate_cost(self, model: ModelDescriptor) -> float:
        return model.estimate_cost(self.expected_input_tokens, self.expected_output_tokens)
