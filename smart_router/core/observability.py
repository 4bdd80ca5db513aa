"""Observability utilities for consistent Logfire logging.

Every event emitted here carries flags, ids and numbers only. Request text,
matched patterns and provider error messages are never attached, so the
events are safe to ship to a telemetry backend.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import logfire

logger = logging.getLogger(__name__)


# =============================================================================
# ANALYSIS & ROUTING
# =============================================================================


def log_analysis(analysis: Any) -> None:
    """Log a TaskAnalysis summary."""
    try:
        fields = analysis.to_log_dict()
        logfire.debug(
            "Context analyzed: {type} / {complexity} / privacy {privacy_level}",
            **fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log analysis: {e}")


def log_routing_decision(
    model_id: str,
    score: float,
    privacy_gate: str,
    dominant_factors: List[str],
    candidate_count: int,
    source: str = "scored",
    **extra_fields: Any,
) -> None:
    """Log the model chosen for a request."""
    try:
        logfire.info(
            "Routing decision: {model_id} (score {score:.1f}, gate {privacy_gate})",
            model_id=model_id,
            score=score,
            privacy_gate=privacy_gate,
            dominant_factors=dominant_factors,
            candidate_count=candidate_count,
            source=source,
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log routing decision: {e}")


def log_preference_override(pattern: str, model_id: str, scored_model_id: Optional[str]) -> None:
    """Log a learned preference replacing the scored winner."""
    try:
        logfire.info(
            "Learned preference applied: {pattern} → {model_id}",
            pattern=pattern,
            model_id=model_id,
            scored_model_id=scored_model_id,
        )
    except Exception as e:
        logger.debug(f"Failed to log preference override: {e}")


# =============================================================================
# FALLBACK LOGGING
# =============================================================================


def log_fallback_attempt(
    from_model: str,
    to_model: Optional[str],
    error_category: str,
    attempt: int,
    latency_ms: float,
) -> None:
    """Log a failed attempt and where the chain goes next."""
    try:
        logfire.warn(
            "Fallback: {from_model} → {to_model} ({error_category})",
            from_model=from_model,
            to_model=to_model or "none",
            error_category=error_category,
            attempt=attempt,
            latency_ms=round(latency_ms, 1),
        )
    except Exception as e:
        logger.debug(f"Failed to log fallback attempt: {e}")


def log_fallback_success(model_id: str, attempt: int, total_candidates: int, latency_ms: float) -> None:
    """Log a success reached after at least one failure."""
    try:
        logfire.info(
            "Fallback succeeded: {model_id} (attempt {attempt}/{total})",
            model_id=model_id,
            attempt=attempt,
            total=total_candidates,
            latency_ms=round(latency_ms, 1),
        )
    except Exception as e:
        logger.debug(f"Failed to log fallback success: {e}")


def log_fallbacks_exhausted(attempts: List[dict]) -> None:
    """Log that every candidate failed."""
    try:
        logfire.error(
            "All {count} fallback candidates failed",
            count=len(attempts),
            attempts=attempts,
        )
    except Exception as e:
        logger.debug(f"Failed to log fallback exhaustion: {e}")
