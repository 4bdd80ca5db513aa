"""Performance Tracker - adaptive per-model statistics.

Keeps exponentially weighted moving averages for every model:
1. Global success rate, latency and cost
2. Per-task-type buckets (success rate, latency, sample count)
3. Last-used timestamps

The first observation seeds an average with the raw sample instead of
blending it with a default. Updates are serialized with a lock so
concurrent requests never interleave partial updates.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from smart_router.core.state_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_ALPHA = 0.3


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def ewma(previous: Optional[float], sample: float, alpha: float = DEFAULT_ALPHA) -> float:
    """Exponentially weighted moving average; seeds with the sample."""
    if previous is None:
        return sample
    return alpha * sample + (1 - alpha) * previous


@dataclass
class TaskBucket:
    """Statistics of one model on one task type."""

    success_rate: float
    avg_latency_ms: float
    sample_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_rate": self.success_rate,
            "avg_latency_ms": self.avg_latency_ms,
            "sample_count": self.sample_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskBucket":
        return cls(
            success_rate=clamp(float(data["success_rate"])),
            avg_latency_ms=max(0.0, float(data["avg_latency_ms"])),
            sample_count=int(data.get("sample_count", 0)),
        )


@dataclass
class ModelPerformance:
    """Global and per-task statistics of one model."""

    success_rate: float
    avg_latency_ms: float
    avg_cost_usd: float
    sample_count: int = 0
    last_used: float = field(default_factory=time.time)
    task_buckets: Dict[str, TaskBucket] = field(default_factory=dict)

    def bucket(self, task_type: str) -> Optional[TaskBucket]:
        return self.task_buckets.get(task_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_rate": self.success_rate,
            "avg_latency_ms": self.avg_latency_ms,
            "avg_cost_usd": self.avg_cost_usd,
            "sample_count": self.sample_count,
            "last_used": self.last_used,
            "task_buckets": {k: b.to_dict() for k, b in self.task_buckets.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelPerformance":
        return cls(
            success_rate=clamp(float(data["success_rate"])),
            avg_latency_ms=max(0.0, float(data["avg_latency_ms"])),
            avg_cost_usd=max(0.0, float(data.get("avg_cost_usd", 0.0))),
            sample_count=int(data.get("sample_count", 0)),
            last_used=float(data.get("last_used", 0.0)),
            task_buckets={
                k: TaskBucket.from_dict(v)
                for k, v in (data.get("task_buckets") or {}).items()
            },
        )


class PerformanceTracker:
    """Process-wide EWMA statistics, safe for concurrent updates."""

    def __init__(self, alpha: float = DEFAULT_ALPHA):
        if not 0 < alpha <= 1:
            raise ValueError("alpha must be in (0, 1]")
        self.alpha = alpha
        self._models: Dict[str, ModelPerformance] = {}
        self._lock = threading.Lock()

    def record(
        self,
        model_id: str,
        task_type: str,
        success: bool,
        latency_ms: float,
        cost_usd: float = 0.0,
    ) -> ModelPerformance:
        """Fold one attempt into the model's global and task statistics.

        Returns a copy of the updated statistics.
        """
        task_type = getattr(task_type, "value", task_type)
        outcome = 1.0 if success else 0.0
        latency_ms = max(0.0, float(latency_ms))
        cost_usd = max(0.0, float(cost_usd))

        with self._lock:
            perf = self._models.get(model_id)
            if perf is None:
                perf = ModelPerformance(
                    success_rate=outcome,
                    avg_latency_ms=latency_ms,
                    avg_cost_usd=cost_usd,
                )
                self._models[model_id] = perf
            else:
                perf.success_rate = clamp(ewma(perf.success_rate, outcome, self.alpha))
                perf.avg_latency_ms = ewma(perf.avg_latency_ms, latency_ms, self.alpha)
                perf.avg_cost_usd = ewma(perf.avg_cost_usd, cost_usd, self.alpha)
            perf.sample_count += 1
            perf.last_used = time.time()

            bucket = perf.task_buckets.get(task_type)
            if bucket is None:
                bucket = TaskBucket(success_rate=outcome, avg_latency_ms=latency_ms)
                perf.task_buckets[task_type] = bucket
            else:
                bucket.success_rate = clamp(ewma(bucket.success_rate, outcome, self.alpha))
                bucket.avg_latency_ms = ewma(bucket.avg_latency_ms, latency_ms, self.alpha)
            bucket.sample_count += 1

            result = copy.deepcopy(perf)

        logger.debug(
            f"Recorded {'success' if success else 'failure'} for {model_id} "
            f"[{task_type}] latency={latency_ms:.0f}ms"
        )
        return result

    def get(self, model_id: str) -> Optional[ModelPerformance]:
        with self._lock:
            perf = self._models.get(model_id)
            return copy.deepcopy(perf) if perf is not None else None

    def snapshot(self) -> Dict[str, ModelPerformance]:
        """Read-only copy of every model's statistics."""
        with self._lock:
            return copy.deepcopy(self._models)

    def reset(self, model_id: Optional[str] = None) -> None:
        with self._lock:
            if model_id is None:
                self._models.clear()
            else:
                self._models.pop(model_id, None)

    def summary(self) -> Dict[str, Dict[str, Any]]:
        """Compact per-model view for status displays."""
        with self._lock:
            return {
                model_id: {
                    "success_rate": round(p.success_rate, 3),
                    "avg_latency_ms": round(p.avg_latency_ms, 1),
                    "avg_cost_usd": round(p.avg_cost_usd, 6),
                    "samples": p.sample_count,
                    "task_types": sorted(p.task_buckets),
                }
                for model_id, p in self._models.items()
            }

    # -- persistence -------------------------------------------------------

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {model_id: p.to_dict() for model_id, p in self._models.items()}

    def load_dict(self, data: Dict[str, Dict[str, Any]]) -> int:
        """Replace statistics with serialized ones; returns models loaded."""
        loaded = {}
        for model_id, raw in data.items():
            try:
                loaded[model_id] = ModelPerformance.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping corrupt performance record for {model_id}: {e}")
        with self._lock:
            self._models = loaded
        return len(loaded)

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]], alpha: float = DEFAULT_ALPHA) -> "PerformanceTracker":
        tracker = cls(alpha=alpha)
        tracker.load_dict(data)
        return tracker

    def save(self, store: KeyValueStore) -> None:
        """Replace the store contents with one entry per model id."""
        store.replace_all(self.to_dict())

    def load(self, store: KeyValueStore) -> int:
        return self.load_dict(dict(store.items()))
