"""Error kinds raised by the routing engine.

Policy errors (privacy gate, capabilities) are fatal and never widen the
candidate pool. Execution errors are retried across the fallback chain and
only surface once as an aggregate.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


class RoutingError(Exception):
    """Base class for every routing failure."""


class InvalidContext(RoutingError, ValueError):
    """Malformed request input (messages, tools or privacy mode)."""


class NoCandidatesAfterPrivacyGate(RoutingError):
    """The strict privacy gate left no model to route to."""

    def __init__(self, gate: str, catalog_size: int):
        self.gate = gate
        self.catalog_size = catalog_size
        super().__init__(
            f"No local model available for privacy gate '{gate}' "
            f"({catalog_size} models registered)"
        )


class NoCandidatesWithCapabilities(RoutingError):
    """No candidate offers every required capability."""

    def __init__(self, required: List[str]):
        self.required = sorted(required)
        super().__init__(
            f"No candidate model supports all of: {', '.join(self.required)}"
        )


class BudgetExhausted(RoutingError):
    """The session budget excludes every remote model and no local one survived."""

    def __init__(self, remaining_usd: float):
        self.remaining_usd = remaining_usd
        super().__init__(
            f"Session budget exhausted (remaining ${remaining_usd:.4f}) "
            "and no local model is available"
        )


class ProviderExecutionError(RoutingError):
    """A provider failed to serve one attempt."""

    def __init__(self, message: str, model_id: Optional[str] = None):
        self.model_id = model_id
        super().__init__(message)


@dataclass(frozen=True)
class AttemptRecord:
    """PII-free record of one fallback attempt."""

    model_id: str
    success: bool
    latency_ms: float
    error_category: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "model_id": self.model_id,
            "success": self.success,
            "latency_ms": round(self.latency_ms, 1),
            "error_category": self.error_category,
            "error_type": self.error_type,
        }


class AllFallbacksFailed(RoutingError):
    """Every candidate in the fallback chain failed."""

    def __init__(self, attempts: List[AttemptRecord]):
        self.attempts = list(attempts)
        tried = ", ".join(
            f"{a.model_id} ({a.error_category or 'unknown'})" for a in self.attempts
        )
        super().__init__(
            f"All {len(self.attempts)} candidate model(s) failed: {tried or 'none attempted'}"
        )
