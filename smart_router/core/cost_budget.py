"""Session cost counter with budget alerts.

Implements the session-wide spend accounting the router budgets against:
1. Cumulative cost, updated under a lock
2. Remaining budget for a given per-session limit
3. Threshold alerts at 50/80/95/100% of the budget, each sent once
4. Session statistics (duration, total, spend rate)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    """Severity levels for cost alerts."""

    INFO = "info"  # 50% of budget used
    WARNING = "warning"  # 80% of budget used
    CRITICAL = "critical"  # 95% of budget used
    LIMIT_REACHED = "limit_reached"  # At or over budget


@dataclass
class CostAlert:
    """A cost alert notification."""

    severity: AlertSeverity
    message: str
    current_cost: float
    budget_limit: float
    usage_percent: float
    timestamp: float = field(default_factory=time.time)

    def __str__(self) -> str:
        return f"[{self.severity.value.upper()}] {self.message}"


AlertCallback = Callable[[CostAlert], None]


class SessionCostTracker:
    """Cumulative spend of one routing session."""

    ALERT_THRESHOLDS: Dict[AlertSeverity, float] = {
        AlertSeverity.INFO: 50.0,
        AlertSeverity.WARNING: 80.0,
        AlertSeverity.CRITICAL: 95.0,
        AlertSeverity.LIMIT_REACHED: 100.0,
    }

    def __init__(self, default_budget: float = 0.10):
        self.default_budget = default_budget
        self._cumulative = 0.0
        self._started_at = time.time()
        self._alerts_sent: Set[AlertSeverity] = set()
        self._alert_history: List[CostAlert] = []
        self._alert_callbacks: List[AlertCallback] = []
        self._lock = threading.Lock()

    def add_alert_callback(self, callback: AlertCallback) -> None:
        """Add a callback to receive cost alerts."""
        self._alert_callbacks.append(callback)

    @property
    def cumulative_cost(self) -> float:
        with self._lock:
            return self._cumulative

    def remaining(self, budget: Optional[float] = None) -> float:
        """Budget left this session; negative once overspent."""
        budget = self.default_budget if budget is None else budget
        with self._lock:
            return budget - self._cumulative

    def record_cost(self, cost_usd: float, budget: Optional[float] = None) -> List[CostAlert]:
        """Add a cost and return any newly crossed threshold alerts."""
        if cost_usd < 0:
            raise ValueError("cost_usd must be non-negative")
        budget = self.default_budget if budget is None else budget

        with self._lock:
            self._cumulative += cost_usd
            alerts = self._check_alerts(budget)
            self._alert_history.extend(alerts)

        for alert in alerts:
            self._send_alert(alert)
        return alerts

    def _check_alerts(self, budget: float) -> List[CostAlert]:
        alerts: List[CostAlert] = []
        if budget <= 0:
            return alerts
        usage_pct = self._cumulative / budget * 100
        for severity, threshold in self.ALERT_THRESHOLDS.items():
            if usage_pct >= threshold and severity not in self._alerts_sent:
                self._alerts_sent.add(severity)
                alerts.append(
                    CostAlert(
                        severity=severity,
                        message=f"Session budget at {usage_pct:.1f}%",
                        current_cost=self._cumulative,
                        budget_limit=budget,
                        usage_percent=usage_pct,
                    )
                )
        return alerts

    def _send_alert(self, alert: CostAlert) -> None:
        if alert.severity in (AlertSeverity.CRITICAL, AlertSeverity.LIMIT_REACHED):
            logger.warning(str(alert))
        else:
            logger.info(str(alert))
        for callback in self._alert_callbacks:
            try:
                callback(alert)
            except Exception as e:
                logger.error(f"Alert callback failed: {e}")

    def get_alert_history(self, limit: int = 20) -> List[CostAlert]:
        with self._lock:
            return list(self._alert_history[-limit:])

    def reset(self) -> None:
        """Start a new session."""
        with self._lock:
            self._cumulative = 0.0
            self._started_at = time.time()
            self._alerts_sent.clear()
            self._alert_history.clear()

    def session_stats(self) -> Dict[str, Any]:
        with self._lock:
            duration_s = time.time() - self._started_at
            total = self._cumulative
        minutes = duration_s / 60.0
        return {
            "duration_seconds": round(duration_s, 1),
            "total_cost_usd": round(total, 6),
            "avg_cost_per_minute": round(total / minutes, 6) if minutes > 0 else 0.0,
        }
