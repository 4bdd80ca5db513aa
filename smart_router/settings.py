"""
Typed settings management using pydantic-settings.

This module holds every externally supplied knob the routing engine reads:
routing weights, privacy mode, per-request cost budget, response-time
ceiling and the learning/fallback switches.

Features:
- Type-safe configuration with validation
- Automatic environment variable loading
- .env file support with proper precedence
- Nested settings for organization

Usage:
    from smart_router.settings import get_settings

    settings = get_settings()
    print(settings.routing.privacy_mode)
    print(settings.weights.as_dict())
"""

from __future__ import annotations

import os
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Enums for validated choices
# =============================================================================


class PrivacyMode(str, Enum):
    """How aggressively requests are kept on local models."""

    STRICT = "strict"
    BALANCED = "balanced"
    PERFORMANCE = "performance"


# =============================================================================
# Path Configuration
# =============================================================================


def _get_xdg_dir(env_var: str) -> Path:
    """Get XDG directory, defaulting to ~/.smart_router if not set."""
    xdg_base = os.getenv(env_var)
    if xdg_base:
        return Path(xdg_base) / "smart_router"
    return Path.home() / ".smart_router"


class PathSettings(BaseSettings):
    """XDG-compliant path configuration for persisted routing state."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_ROUTER_",
        extra="ignore",
        populate_by_name=True,
    )

    state_dir_override: str | None = Field(
        default=None,
        alias="SMART_ROUTER_STATE_DIR",
        description="Explicit directory for persisted routing state",
    )

    @property
    def state_dir(self) -> Path:
        """SMART_ROUTER_STATE_DIR, XDG_STATE_HOME/smart_router or ~/.smart_router"""
        if self.state_dir_override:
            return Path(self.state_dir_override)
        return _get_xdg_dir("XDG_STATE_HOME")

    @property
    def performance_file(self) -> Path:
        return self.state_dir / "performance.json"

    @property
    def preferences_file(self) -> Path:
        return self.state_dir / "preferences.json"

    def ensure_directories(self) -> None:
        """Create the state directory with secure permissions."""
        self.state_dir.mkdir(parents=True, exist_ok=True, mode=0o700)


# =============================================================================
# Routing Weights
# =============================================================================


class RoutingWeightsSettings(BaseSettings):
    """Weights of the five scoring factors plus normalization knobs."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_ROUTER_WEIGHT_",
        extra="ignore",
    )

    complexity: int = Field(default=30, ge=0, description="Complexity-match weight")
    performance: int = Field(default=25, ge=0, description="Historical performance weight")
    cost: int = Field(default=20, ge=0, description="Cost-efficiency weight")
    system: int = Field(default=15, ge=0, description="System-context weight")
    capability: int = Field(default=10, ge=0, description="Capability-match weight")

    latency_max_ms: float = Field(
        default=5000.0,
        gt=0,
        description="Latency at which the latency component reaches zero",
    )
    tie_breaker: float = Field(
        default=0.5,
        ge=0.0,
        le=5.0,
        description="Upper bound of the random tie-break added to each score",
    )

    def as_dict(self) -> dict[str, int]:
        """Get the factor weights keyed by factor name."""
        return {
            "complexity": self.complexity,
            "performance": self.performance,
            "cost": self.cost,
            "system": self.system,
            "capability": self.capability,
        }


# =============================================================================
# Routing Behaviour
# =============================================================================


class RoutingSettings(BaseSettings):
    """Per-request defaults and adaptive behaviour of the router."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_ROUTER_",
        extra="ignore",
    )

    privacy_mode: PrivacyMode = Field(
        default=PrivacyMode.BALANCED,
        description="Default privacy mode (strict, balanced, performance)",
    )
    cost_budget_usd: float = Field(
        default=0.10,
        ge=0.0,
        description="Session cost budget in USD",
    )
    max_response_time_ms: int = Field(
        default=30000,
        ge=100,
        description="Per-attempt provider timeout in milliseconds",
    )
    learning_enabled: bool = Field(
        default=True,
        description="Learn from user overrides and apply learned preferences",
    )
    auto_fallback: bool = Field(
        default=True,
        description="Advance to the next candidate when a provider fails",
    )
    provider_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout used when no max response time is supplied",
    )
    ewma_alpha: float = Field(
        default=0.3,
        gt=0.0,
        le=1.0,
        description="Smoothing factor of performance EWMAs",
    )
    min_bucket_samples: int = Field(
        default=3,
        ge=1,
        description="Samples a task bucket needs before it is trusted",
    )

    @field_validator("privacy_mode", mode="before")
    @classmethod
    def _normalize_privacy_mode(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class AnalyzerSettings(BaseSettings):
    """Context analyzer bounds."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_ROUTER_ANALYZER_",
        extra="ignore",
    )

    max_scan_chars: int = Field(
        default=200_000,
        ge=1000,
        description="Characters scanned per request (head and tail halves)",
    )


class PreferenceSettings(BaseSettings):
    """Bounds of the user preference learner."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_ROUTER_PREFERENCE_",
        extra="ignore",
    )

    max_override_history: int = Field(
        default=100,
        ge=1,
        description="Overrides remembered before the oldest is evicted",
    )
    max_learned_preferences: int = Field(
        default=200,
        ge=1,
        description="Learned context patterns kept before eviction",
    )


# =============================================================================
# Master Settings Class
# =============================================================================


class Settings(BaseSettings):
    """Master settings combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SMART_ROUTER_",
        extra="ignore",
        case_sensitive=False,
    )

    paths: PathSettings = Field(default_factory=PathSettings)
    weights: RoutingWeightsSettings = Field(default_factory=RoutingWeightsSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    analyzer: AnalyzerSettings = Field(default_factory=AnalyzerSettings)
    preferences: PreferenceSettings = Field(default_factory=PreferenceSettings)

    @property
    def privacy_mode(self) -> PrivacyMode:
        return self.routing.privacy_mode

    @property
    def cost_budget_usd(self) -> float:
        return self.routing.cost_budget_usd

    def ensure_directories(self) -> None:
        """Create all necessary directories."""
        self.paths.ensure_directories()


# =============================================================================
# Cached Singleton Accessors
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings singleton.

    The settings are loaded once and cached for the process lifetime.
    To reload, call clear_settings_cache() first.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the cached settings instance.

    Call this if environment variables or .env files have changed
    and you need to reload configuration.
    """
    get_settings.cache_clear()
