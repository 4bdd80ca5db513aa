"""Tests for RoutingState construction and persistence."""

from smart_router.core.context_analyzer import Complexity, TaskType
from smart_router.core.routing_state import RoutingState
from smart_router.core.state_store import InMemoryStore
from smart_router.settings import (
    PathSettings,
    PreferenceSettings,
    PrivacyMode,
    RoutingSettings,
    Settings,
)


def populate(state):
    state.tracker.record("mock-local", "simple_query", True, 120.0, 0.0)
    state.tracker.record("mock-remote", "code_generation", False, 900.0, 0.0)
    for _ in range(3):
        state.learner.record_override(
            "mock-remote", "mock-local", TaskType.CODE_GENERATION, Complexity.HIGH, PrivacyMode.BALANCED
        )


class TestRoutingState:
    def test_from_settings(self):
        settings = Settings(
            routing=RoutingSettings(ewma_alpha=0.5, cost_budget_usd=2.0),
            preferences=PreferenceSettings(max_override_history=10),
        )
        state = RoutingState.from_settings(settings)
        assert state.tracker.alpha == 0.5
        assert state.costs.remaining() == 2.0
        assert state.learner.max_history == 10
        assert state.registry.all_models() == []

    def test_states_are_independent(self):
        first = RoutingState()
        second = RoutingState()
        first.tracker.record("m", "simple_query", True, 10.0)
        assert second.tracker.get("m") is None
        assert first.registry is not second.registry

    def test_save_and_load_stores(self):
        state = RoutingState()
        populate(state)
        perf, prefs = InMemoryStore(), InMemoryStore()
        state.save(perf, prefs)

        restored = RoutingState()
        assert restored.load(perf, prefs) == {"models": 2, "patterns": 1}
        assert restored.tracker.get("mock-remote").success_rate == 0.0
        assert restored.learner.preferred_model(
            TaskType.CODE_GENERATION, Complexity.HIGH, PrivacyMode.BALANCED
        ) == "mock-local"

    def test_directory_round_trip(self, tmp_path):
        settings = Settings(paths=PathSettings(state_dir_override=str(tmp_path / "state")))
        state = RoutingState.from_settings(settings)
        populate(state)
        state.save_to_dir(settings)

        assert settings.paths.performance_file.exists()
        assert settings.paths.preferences_file.exists()

        restored = RoutingState.from_settings(settings)
        assert restored.load_from_dir(settings) == {"models": 2, "patterns": 1}

    def test_load_from_empty_dir(self, tmp_path):
        settings = Settings(paths=PathSettings(state_dir_override=str(tmp_path / "missing")))
        assert RoutingState.from_settings(settings).load_from_dir(settings) == {
            "models": 0,
            "patterns": 0,
        }

    def test_status(self, routing_state):
        status = routing_state.status()
        assert status["models_registered"] == 2
        assert status["performance"] == {}
        assert status["preferences"]["learned_patterns"] == 0

    def test_reset_then_save_to_dir_drops_old_state(self, tmp_path):
        settings = Settings(paths=PathSettings(state_dir_override=str(tmp_path / "state")))
        state = RoutingState.from_settings(settings)
        populate(state)
        state.save_to_dir(settings)

        state.tracker.reset()
        state.learner.reset()
        state.save_to_dir(settings)

        restored = RoutingState.from_settings(settings)
        assert restored.load_from_dir(settings) == {"models": 0, "patterns": 0}
