"""Device and network conditions considered by the scoring engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class NetworkQuality(str, Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"
    UNKNOWN = "unknown"


LOW_BATTERY_PERCENT = 20

# Round-trip latency ceilings (ms) for each quality band
_NETWORK_BANDS = (
    (100.0, NetworkQuality.EXCELLENT),
    (300.0, NetworkQuality.GOOD),
    (1000.0, NetworkQuality.FAIR),
)


def classify_network_quality(latency_ms: Optional[float], connected: bool = True) -> NetworkQuality:
    """Map a measured round-trip latency to a network quality band."""
    if not connected:
        return NetworkQuality.POOR
    if latency_ms is None or latency_ms < 0:
        return NetworkQuality.UNKNOWN
    for ceiling, quality in _NETWORK_BANDS:
        if latency_ms < ceiling:
            return quality
    return NetworkQuality.POOR


@dataclass(frozen=True)
class SystemContext:
    """Snapshot of battery, network and clock at routing time."""

    battery_level: Optional[float] = None
    on_battery: bool = False
    network_quality: NetworkQuality = NetworkQuality.UNKNOWN
    hour_of_day: int = 12

    def __post_init__(self):
        if not 0 <= self.hour_of_day <= 23:
            raise ValueError("hour_of_day must be within 0-23")
        object.__setattr__(self, "network_quality", NetworkQuality(self.network_quality))

    @property
    def low_battery(self) -> bool:
        return (
            self.on_battery
            and self.battery_level is not None
            and self.battery_level < LOW_BATTERY_PERCENT
        )

    @property
    def off_peak(self) -> bool:
        return self.hour_of_day >= 22 or self.hour_of_day <= 6

    @classmethod
    def current(
        cls,
        battery_level: Optional[float] = None,
        on_battery: bool = False,
        network_quality: NetworkQuality = NetworkQuality.UNKNOWN,
    ) -> "SystemContext":
        """Build a context stamped with the local hour."""
        return cls(
            battery_level=battery_level,
            on_battery=on_battery,
            network_quality=network_quality,
            hour_of_day=datetime.now().hour,
        )
