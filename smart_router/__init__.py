import importlib.metadata

try:
    _detected_version = importlib.metadata.version("smart-router")
    # Ensure we never end up with None or empty string
    __version__ = _detected_version if _detected_version else "0.0.0-dev"
except Exception:
    # Fallback for dev environments where metadata might not be available
    __version__ = "0.0.0-dev"

# Export typed settings
from smart_router.settings import (
    Settings,
    PathSettings,
    RoutingWeightsSettings,
    RoutingSettings,
    AnalyzerSettings,
    PreferenceSettings,
    PrivacyMode,
    get_settings,
    clear_settings_cache,
)

__all__ = [
    "__version__",
    # Settings classes
    "Settings",
    "PathSettings",
    "RoutingWeightsSettings",
    "RoutingSettings",
    "AnalyzerSettings",
    "PreferenceSettings",
    # Accessors
    "get_settings",
    "clear_settings_cache",
    # Enums
    "PrivacyMode",
]
