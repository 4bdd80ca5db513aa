"""User Preference Learner.

Learns which model a user prefers for a coarse context pattern
(task type, complexity, privacy mode) from their overrides:
- A new pattern starts at confidence 0.6
- Repeating the same choice adds 0.1 (capped at 1.0)
- Switching to another model resets confidence to 0.5

Lookups accept an exact pattern above 0.7 confidence, else a similar
pattern (two of three segments equal) above 0.8.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional

from smart_router.core.state_store import KeyValueStore

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 0.6
SWITCH_CONFIDENCE = 0.5
REINFORCEMENT = 0.1
EXACT_MATCH_THRESHOLD = 0.7
SIMILAR_MATCH_THRESHOLD = 0.8
SIMILAR_SEGMENTS = 2
PATTERN_SEPARATOR = ":"
HISTORY_KEY = "_override_history"
PERSISTED_HISTORY = 50


def _value(item: Any) -> str:
    return str(getattr(item, "value", item))


def context_pattern(task_type: Any, complexity: Any, privacy_mode: Any) -> str:
    """Coarse key indexing learned preferences."""
    return PATTERN_SEPARATOR.join((_value(task_type), _value(complexity), _value(privacy_mode)))


def is_similar_pattern(first: str, second: str) -> bool:
    a = first.split(PATTERN_SEPARATOR)
    b = second.split(PATTERN_SEPARATOR)
    return sum(1 for x, y in zip(a, b) if x == y) >= SIMILAR_SEGMENTS


@dataclass
class UserOverride:
    """The user picked chosen_model where suggested_model was proposed."""

    suggested_model: str
    chosen_model: str
    task_type: str
    complexity: str
    privacy_mode: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class LearnedPreference:
    pattern: str
    preferred_model: str
    confidence: float
    usage_count: int = 1
    updated_at: float = field(default_factory=time.time)


class PreferenceLearner:
    """Bounded override history plus confidence-weighted preferences."""

    def __init__(self, max_history: int = 100, max_preferences: int = 200):
        self.max_history = max_history
        self.max_preferences = max_preferences
        self._history: Deque[UserOverride] = deque(maxlen=max_history)
        self._preferences: Dict[str, LearnedPreference] = {}
        self._lock = threading.Lock()

    def record_override(
        self,
        suggested_model: str,
        chosen_model: str,
        task_type: Any,
        complexity: Any,
        privacy_mode: Any,
    ) -> LearnedPreference:
        """Record an override and update the learned preference it implies."""
        override = UserOverride(
            suggested_model=suggested_model,
            chosen_model=chosen_model,
            task_type=_value(task_type),
            complexity=_value(complexity),
            privacy_mode=_value(privacy_mode),
        )
        pattern = context_pattern(override.task_type, override.complexity, override.privacy_mode)

        with self._lock:
            self._history.append(override)
            pref = self._preferences.get(pattern)
            if pref is None:
                pref = LearnedPreference(
                    pattern=pattern,
                    preferred_model=chosen_model,
                    confidence=INITIAL_CONFIDENCE,
                )
                self._preferences[pattern] = pref
                self._evict_if_needed()
            elif pref.preferred_model == chosen_model:
                pref.usage_count += 1
                pref.confidence = round(min(1.0, pref.confidence + REINFORCEMENT), 4)
                pref.updated_at = time.time()
            else:
                pref.preferred_model = chosen_model
                pref.usage_count = 1
                pref.confidence = SWITCH_CONFIDENCE
                pref.updated_at = time.time()
            result = LearnedPreference(**asdict(pref))

        logger.info(
            f"Learned preference {pattern} -> {result.preferred_model} "
            f"(confidence {result.confidence:.2f})"
        )
        return result

    def _evict_if_needed(self) -> None:
        while len(self._preferences) > self.max_preferences:
            victim = min(
                self._preferences.values(),
                key=lambda p: (p.confidence, p.updated_at),
            )
            del self._preferences[victim.pattern]
            logger.debug(f"Evicted learned preference {victim.pattern}")

    def preferred_model(self, task_type: Any, complexity: Any, privacy_mode: Any) -> Optional[str]:
        """Model to short-circuit routing with, or None."""
        pattern = context_pattern(task_type, complexity, privacy_mode)
        with self._lock:
            exact = self._preferences.get(pattern)
            if exact is not None and exact.confidence > EXACT_MATCH_THRESHOLD:
                return exact.preferred_model

            similar = [
                p
                for key, p in self._preferences.items()
                if key != pattern
                and is_similar_pattern(pattern, key)
                and p.confidence > SIMILAR_MATCH_THRESHOLD
            ]
        if not similar:
            return None
        best = max(similar, key=lambda p: (p.confidence, p.usage_count, p.updated_at))
        return best.preferred_model

    def get(self, pattern: str) -> Optional[LearnedPreference]:
        with self._lock:
            pref = self._preferences.get(pattern)
            return LearnedPreference(**asdict(pref)) if pref else None

    @property
    def history(self) -> List[UserOverride]:
        with self._lock:
            return list(self._history)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            top = sorted(self._preferences.values(), key=lambda p: -p.confidence)[:5]
            return {
                "total_overrides": len(self._history),
                "learned_patterns": len(self._preferences),
                "top_preferences": [
                    {"pattern": p.pattern, "model": p.preferred_model, "confidence": p.confidence}
                    for p in top
                ],
            }

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._preferences.clear()

    # -- persistence -------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            data: Dict[str, Any] = {p.pattern: asdict(p) for p in self._preferences.values()}
            data[HISTORY_KEY] = [asdict(o) for o in list(self._history)[-PERSISTED_HISTORY:]]
        return data

    def load_dict(self, data: Dict[str, Any]) -> int:
        """Replace state with serialized preferences; returns patterns loaded."""
        preferences: Dict[str, LearnedPreference] = {}
        history: List[UserOverride] = []
        for key, raw in data.items():
            try:
                if key == HISTORY_KEY:
                    history = [UserOverride(**item) for item in raw]
                    continue
                pref = LearnedPreference(**raw)
                pref.confidence = max(0.0, min(1.0, float(pref.confidence)))
                preferences[key] = pref
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping corrupt preference record {key}: {e}")
        with self._lock:
            self._preferences = preferences
            self._history = deque(history, maxlen=self.max_history)
            self._evict_if_needed()
            return len(self._preferences)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **kwargs: Any) -> "PreferenceLearner":
        learner = cls(**kwargs)
        learner.load_dict(data)
        return learner

    def save(self, store: KeyValueStore) -> None:
        store.replace_all(self.to_dict())

    def load(self, store: KeyValueStore) -> int:
        return self.load_dict(dict(store.items()))
