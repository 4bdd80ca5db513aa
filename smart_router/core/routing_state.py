"""The routing engine's single owned state object.

Catalog, performance statistics, session cost counter and learned
preferences live together in one RoutingState passed by reference through
the pipeline. Each member serializes its own updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from smart_router.core.cost_budget import SessionCostTracker
from smart_router.core.performance_tracker import PerformanceTracker
from smart_router.core.preference_learner import PreferenceLearner
from smart_router.core.state_store import JsonFileStore, KeyValueStore

if TYPE_CHECKING:
    from smart_router.providers.base import ProviderRegistry
    from smart_router.settings import Settings

logger = logging.getLogger(__name__)


def _new_registry() -> "ProviderRegistry":
    from smart_router.providers.base import ProviderRegistry

    return ProviderRegistry()


@dataclass
class RoutingState:
    registry: "ProviderRegistry" = field(default_factory=_new_registry)
    tracker: PerformanceTracker = field(default_factory=PerformanceTracker)
    costs: SessionCostTracker = field(default_factory=SessionCostTracker)
    learner: PreferenceLearner = field(default_factory=PreferenceLearner)

    @classmethod
    def from_settings(cls, settings: "Settings", registry: Optional["ProviderRegistry"] = None) -> "RoutingState":
        """Build fresh state sized by the given settings."""
        return cls(
            registry=registry if registry is not None else _new_registry(),
            tracker=PerformanceTracker(alpha=settings.routing.ewma_alpha),
            costs=SessionCostTracker(default_budget=settings.routing.cost_budget_usd),
            learner=PreferenceLearner(
                max_history=settings.preferences.max_override_history,
                max_preferences=settings.preferences.max_learned_preferences,
            ),
        )

    def save(self, performance_store: KeyValueStore, preference_store: KeyValueStore) -> None:
        self.tracker.save(performance_store)
        self.learner.save(preference_store)

    def load(self, performance_store: KeyValueStore, preference_store: KeyValueStore) -> Dict[str, int]:
        models = self.tracker.load(performance_store)
        patterns = self.learner.load(preference_store)
        logger.info(f"Loaded performance for {models} model(s) and {patterns} learned pattern(s)")
        return {"models": models, "patterns": patterns}

    def save_to_dir(self, settings: "Settings") -> None:
        """Persist to the JSON files named by the path settings."""
        settings.ensure_directories()
        self.save(
            JsonFileStore(settings.paths.performance_file),
            JsonFileStore(settings.paths.preferences_file),
        )

    def load_from_dir(self, settings: "Settings") -> Dict[str, int]:
        return self.load(
            JsonFileStore(settings.paths.performance_file),
            JsonFileStore(settings.paths.preferences_file),
        )

    def status(self) -> Dict[str, Any]:
        return {
            "models_registered": len(self.registry.all_models()),
            "performance": self.tracker.summary(),
            "session": self.costs.session_stats(),
            "preferences": self.learner.stats(),
        }
