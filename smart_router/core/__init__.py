"""Core routing engine.

This module provides:
- detect_privacy_signals: Identifier and sensitive-domain scanner
- analyze_context: Content-free request classification (TaskAnalysis)
- ModelDescriptor / load_catalog: Model catalog entries and loading
- CandidateFilterPipeline: Privacy gate, capability and budget filters
- WeightedSumScorer: Five-factor candidate scoring
- PerformanceTracker: EWMA success/latency/cost statistics per model
- PreferenceLearner: Learning from user model overrides
- SessionCostTracker: Session spend and budget alerts
- FallbackExecutor: Sequential execution over the ranked candidates
- IntelligentModelRouter: End-to-end routing orchestration
"""

from .errors import (
    AllFallbacksFailed,
    AttemptRecord,
    BudgetExhausted,
    InvalidContext,
    NoCandidatesAfterPrivacyGate,
    NoCandidatesWithCapabilities,
    ProviderExecutionError,
    RoutingError,
)
from .privacy_signals import PrivacyDomain, PrivacySignals, detect_privacy_signals
from .context_analyzer import (
    Complexity,
    PrivacyLevel,
    TaskAnalysis,
    TaskType,
    TimeConstraint,
    analyze_context,
    default_analysis,
)
from .model_catalog import (
    Capability,
    ModelDescriptor,
    ModelTag,
    Pricing,
    load_catalog,
    parse_catalog,
)
from .system_context import NetworkQuality, SystemContext, classify_network_quality
from .routing_context import RoutingContext
from .candidate_filter import (
    CandidateFilterPipeline,
    FilterResult,
    PrivacyGate,
    determine_privacy_gate,
)
from .scoring import (
    ScoreBreakdown,
    ScoredCandidate,
    ScoringStrategy,
    ScoringWeights,
    WeightedSumScorer,
)
from .state_store import InMemoryStore, JsonFileStore, KeyValueStore
from .performance_tracker import ModelPerformance, PerformanceTracker, TaskBucket
from .preference_learner import LearnedPreference, PreferenceLearner, UserOverride
from .cost_budget import AlertSeverity, CostAlert, SessionCostTracker
from .fallback_executor import (
    ExecutionOutcome,
    FallbackExecutor,
    RoutedChunk,
    classify_provider_error,
)
from .routing_state import RoutingState
from .intelligent_router import (
    AlternativeModel,
    IntelligentModelRouter,
    RoutedResponse,
    RoutingDecision,
    RoutingStats,
    StructuredReason,
    derive_required_capabilities,
)

__all__ = [
    # Errors
    "RoutingError",
    "InvalidContext",
    "NoCandidatesAfterPrivacyGate",
    "NoCandidatesWithCapabilities",
    "BudgetExhausted",
    "ProviderExecutionError",
    "AllFallbacksFailed",
    "AttemptRecord",
    # Analysis
    "PrivacyDomain",
    "PrivacySignals",
    "detect_privacy_signals",
    "TaskType",
    "Complexity",
    "PrivacyLevel",
    "TimeConstraint",
    "TaskAnalysis",
    "analyze_context",
    "default_analysis",
    # Catalog
    "Capability",
    "ModelTag",
    "Pricing",
    "ModelDescriptor",
    "parse_catalog",
    "load_catalog",
    # Context
    "NetworkQuality",
    "SystemContext",
    "classify_network_quality",
    "RoutingContext",
    # Filtering & scoring
    "PrivacyGate",
    "FilterResult",
    "CandidateFilterPipeline",
    "determine_privacy_gate",
    "ScoringWeights",
    "ScoreBreakdown",
    "ScoredCandidate",
    "ScoringStrategy",
    "WeightedSumScorer",
    # State
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "TaskBucket",
    "ModelPerformance",
    "PerformanceTracker",
    "UserOverride",
    "LearnedPreference",
    "PreferenceLearner",
    "AlertSeverity",
    "CostAlert",
    "SessionCostTracker",
    "RoutingState",
    # Execution
    "classify_provider_error",
    "ExecutionOutcome",
    "RoutedChunk",
    "FallbackExecutor",
    # Router
    "StructuredReason",
    "AlternativeModel",
    "RoutingDecision",
    "RoutedResponse",
    "RoutingStats",
    "IntelligentModelRouter",
    "derive_required_capabilities",
]
