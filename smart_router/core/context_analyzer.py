"""Context Analyzer - request classification for routing.

Turns raw message history plus tool names into a content-free TaskAnalysis:
1. Privacy level from the Privacy Signal Detector and the privacy mode
2. Task type by cue priority (code > data > reasoning > simple)
3. Complexity tier from word count, escalated by tools and task type
4. Input/output token estimates
5. Time constraint from urgency and long-form keywords
6. A capped confidence blend and categorical reason tags

Oversized histories are scanned through a bounded head+tail window, so the
cost of analysis does not grow with input size beyond that window.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from smart_router.core.errors import InvalidContext
from smart_router.core.privacy_signals import (
    PrivacyDomain,
    PrivacySignals,
    detect_privacy_signals,
)
from smart_router.settings import PrivacyMode

logger = logging.getLogger(__name__)


class TaskType(str, Enum):
    """Kinds of work a request asks for."""

    CODE_GENERATION = "code_generation"
    DATA_ANALYSIS = "data_analysis"
    COMPLEX_REASONING = "complex_reasoning"
    SIMPLE_QUERY = "simple_query"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PrivacyLevel(str, Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    RELAXED = "relaxed"


class TimeConstraint(str, Enum):
    REALTIME = "realtime"
    BATCH = "batch"
    UNSPECIFIED = "unspecified"


VALID_ROLES = frozenset({"user", "assistant", "system"})

# Analyzer constants
MEDIUM_WORD_THRESHOLD = 50
HIGH_WORD_THRESHOLD = 200
ESCALATOR_TOOLS = frozenset({"browser", "vision", "sql", "code_interpreter"})
CHARS_PER_TOKEN = 4
SYSTEM_TOKEN_OVERHEAD = 120
DEFAULT_MAX_SCAN_CHARS = 200_000
DEFAULT_OUTPUT_TOKENS = 400
OUTPUT_TOKENS: Dict[TaskType, int] = {
    TaskType.SIMPLE_QUERY: 200,
    TaskType.CODE_GENERATION: 500,
    TaskType.DATA_ANALYSIS: 800,
    TaskType.COMPLEX_REASONING: 600,
}
CLIP_SEPARATOR = "\n...\n"
MAX_CONFIDENCE = 0.95

CODE_FENCE = "```"
STACK_TRACE_KEYWORDS = ("error", "exception", "traceback")
RX_STACK_FRAME = re.compile(r"[ \t]+at\s")
RX_CODE_FILE = re.compile(
    r"\b\w+\.(ts|tsx|js|jsx|py|java|rb|go|rs|c|cpp|h|hpp|json|yml|yaml|toml)\b",
    re.IGNORECASE,
)
RX_CSV_HEADER = re.compile(r"(^|[\n\r])[^,\n\r]{2,},[^,\n\r]{2,},[^,\n\r]{2,}(\n|\r|$)")
RX_STATISTICAL = re.compile(
    r"\b(regression|p-?value|cohort|anova|confidence interval|logit|roc|auc|pearson|spearman)\b",
    re.IGNORECASE,
)
RX_MULTI_STEP = re.compile(
    r"(^|\s)(first|second|third|finally|step\s?\d+|phase\s?\d+)", re.IGNORECASE
)
RX_REALTIME = re.compile(
    r"\b(asap|right now|urgent|today|tonight|in\s+\d+\s*(min|hour)s?)\b", re.IGNORECASE
)
RX_BATCH = re.compile(
    r"\b(report|long[- ]?form|deep dive|compare|benchmark|literature review)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TaskAnalysis:
    """Content-free classification of one request. Safe to log verbatim."""

    task_type: TaskType
    complexity: Complexity
    privacy_level: PrivacyLevel
    detected_domains: Tuple[PrivacyDomain, ...]
    requires_privacy: bool
    expected_input_tokens: int
    expected_output_tokens: int
    time_constraint: TimeConstraint
    confidence: float
    reasons: Tuple[str, ...] = ()

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "type": self.task_type.value,
            "complexity": self.complexity.value,
            "privacy_level": self.privacy_level.value,
            "domains": [d.value for d in self.detected_domains],
            "tokens": {
                "in": self.expected_input_tokens,
                "out": self.expected_output_tokens,
            },
            "time": self.time_constraint.value,
            "confidence": round(self.confidence, 3),
            "reasons": list(self.reasons),
            "requires_privacy": self.requires_privacy,
        }


# =============================================================================
# Input validation
# =============================================================================


def _message_text(message: Any, index: int) -> str:
    if isinstance(message, Mapping):
        role = message.get("role")
        text = message.get("text", message.get("content"))
    elif hasattr(message, "role") and hasattr(message, "text"):
        role, text = message.role, message.text
    else:
        raise InvalidContext(f"message {index} is not a role/text pair")

    role = getattr(role, "value", role)
    if role not in VALID_ROLES:
        raise InvalidContext(f"message {index} has unknown role {role!r}")
    if not isinstance(text, str):
        raise InvalidContext(f"message {index} text must be a string")
    return text


def _normalize_messages(messages: Any) -> List[str]:
    if isinstance(messages, (str, bytes)) or not isinstance(messages, Sequence):
        raise InvalidContext("messages must be a sequence of role/text pairs")
    return [_message_text(m, i) for i, m in enumerate(messages)]


def _normalize_tools(tools: Optional[Iterable[Any]]) -> List[str]:
    if tools is None:
        return []
    if isinstance(tools, (str, bytes)):
        raise InvalidContext("tools must be a list of tool names")
    names = []
    for tool in tools:
        name = getattr(tool, "name", tool)
        if not isinstance(name, str):
            raise InvalidContext("tool names must be strings")
        names.append(name)
    return names


def normalize_privacy_mode(mode: Any) -> Optional[PrivacyMode]:
    """Coerce a privacy-mode override into the enum, or None when absent."""
    if mode is None or isinstance(mode, PrivacyMode):
        return mode
    if isinstance(mode, str):
        try:
            return PrivacyMode(mode.strip().lower())
        except ValueError:
            pass
    raise InvalidContext(f"unknown privacy mode {mode!r}")


# =============================================================================
# Scan window
# =============================================================================


def _head(texts: List[str], limit: int) -> str:
    parts: List[str] = []
    size = 0
    for i, text in enumerate(texts):
        piece = text if i == 0 else "\n" + text
        piece = piece[: limit - size]
        parts.append(piece)
        size += len(piece)
        if size >= limit:
            break
    return "".join(parts)


def _tail(texts: List[str], limit: int) -> str:
    parts: List[str] = []
    size = 0
    last = len(texts) - 1
    for i in range(last, -1, -1):
        piece = texts[i] if i == last else texts[i] + "\n"
        piece = piece[-(limit - size):]
        parts.append(piece)
        size += len(piece)
        if size >= limit:
            break
    return "".join(reversed(parts))


def build_scan_window(texts: List[str], max_chars: int) -> Tuple[str, bool]:
    """Join message texts, keeping head and tail halves when over max_chars.

    Returns the scanned text and whether it was clipped.
    """
    total = sum(len(t) for t in texts) + max(len(texts) - 1, 0)
    if total <= max_chars:
        return "\n".join(texts), False
    half = max_chars // 2
    return _head(texts, half) + CLIP_SEPARATOR + _tail(texts, half), True


# =============================================================================
# Classifiers
# =============================================================================


def _looks_multi_step(text: str) -> bool:
    return bool(RX_MULTI_STEP.search(text)) or text.count("?") >= 2


def has_code_block(text: str) -> bool:
    """An opening fence with a closing fence somewhere after it."""
    start = text.find(CODE_FENCE)
    return start != -1 and text.find(CODE_FENCE, start + len(CODE_FENCE)) != -1


def has_json_object(text: str) -> bool:
    """A ``{`` followed later by a ``}``."""
    start = text.find("{")
    return start != -1 and text.find("}", start + 1) != -1


def _names_error(line: str) -> bool:
    lower = line.lower()
    for keyword in STACK_TRACE_KEYWORDS:
        index = lower.find(keyword)
        # The keyword must be followed by more text on its line
        if index != -1 and index + len(keyword) < len(lower):
            return True
    return False


def has_stack_trace(text: str) -> bool:
    """An error line directly followed by an indented ``at ...`` frame."""
    lines = text.split("\n")
    for previous, line in zip(lines, lines[1:]):
        if RX_STACK_FRAME.match(line) and _names_error(previous):
            return True
    return False


@dataclass(frozen=True)
class ContentCues:
    """Which content cues the scanned text shows. Each is scanned once."""

    code_block: bool = False
    stack_trace: bool = False
    code_file: bool = False
    json_object: bool = False
    csv_header: bool = False
    statistical: bool = False
    multi_step: bool = False

    @classmethod
    def scan(cls, text: str) -> "ContentCues":
        return cls(
            code_block=has_code_block(text),
            stack_trace=has_stack_trace(text),
            code_file=bool(RX_CODE_FILE.search(text)),
            json_object=has_json_object(text),
            csv_header=bool(RX_CSV_HEADER.search(text)),
            statistical=bool(RX_STATISTICAL.search(text)),
            multi_step=_looks_multi_step(text),
        )

    @property
    def code(self) -> bool:
        return self.code_block or self.stack_trace or self.code_file

    @property
    def data(self) -> bool:
        return self.json_object or self.csv_header or self.statistical


def detect_task_type(text: str, cues: Optional[ContentCues] = None) -> TaskType:
    """Classify by cue priority: code, then data, then reasoning."""
    if cues is None:
        cues = ContentCues.scan(text)
    if cues.code:
        return TaskType.CODE_GENERATION
    if cues.data:
        return TaskType.DATA_ANALYSIS
    if cues.multi_step:
        return TaskType.COMPLEX_REASONING
    return TaskType.SIMPLE_QUERY


def has_escalator_tool(tools: Iterable[str]) -> bool:
    return any(t.strip().lower() in ESCALATOR_TOOLS for t in tools)


def estimate_complexity(word_count: int, task_type: TaskType, tools: Iterable[str] = ()) -> Complexity:
    """Word-count tier, escalated once by escalator tools or analytic task types."""
    if word_count > HIGH_WORD_THRESHOLD:
        tier = Complexity.HIGH
    elif word_count > MEDIUM_WORD_THRESHOLD:
        tier = Complexity.MEDIUM
    else:
        tier = Complexity.LOW

    escalate = has_escalator_tool(tools) or task_type in (
        TaskType.DATA_ANALYSIS,
        TaskType.COMPLEX_REASONING,
    )
    if escalate:
        tier = Complexity.MEDIUM if tier == Complexity.LOW else Complexity.HIGH
    return tier


def estimate_tokens(scanned_chars: int, task_type: TaskType, max_scan_chars: int = DEFAULT_MAX_SCAN_CHARS) -> Tuple[int, int]:
    """Return (input_tokens, output_tokens) estimates."""
    chars = min(scanned_chars, max_scan_chars)
    input_tokens = math.ceil(chars / CHARS_PER_TOKEN) + SYSTEM_TOKEN_OVERHEAD
    output_tokens = OUTPUT_TOKENS.get(task_type, DEFAULT_OUTPUT_TOKENS)
    return input_tokens, output_tokens


def detect_time_constraint(text: str) -> TimeConstraint:
    if RX_REALTIME.search(text):
        return TimeConstraint.REALTIME
    if RX_BATCH.search(text):
        return TimeConstraint.BATCH
    return TimeConstraint.UNSPECIFIED


def _privacy_level(signals: PrivacySignals, mode: Optional[PrivacyMode]) -> PrivacyLevel:
    if mode == PrivacyMode.STRICT or signals.requires_privacy:
        return PrivacyLevel.STRICT
    if signals.domains:
        return PrivacyLevel.MODERATE
    return PrivacyLevel.RELAXED


def _confidence(task_type: TaskType, complexity: Complexity, signals: PrivacySignals) -> float:
    confidence = 0.6
    if task_type in (TaskType.CODE_GENERATION, TaskType.DATA_ANALYSIS):
        confidence += 0.2
    elif task_type == TaskType.COMPLEX_REASONING:
        confidence += 0.1
    if complexity == Complexity.HIGH:
        confidence += 0.1
    elif complexity == Complexity.MEDIUM:
        confidence += 0.05
    if signals.has_signals:
        confidence += 0.05
    return round(min(MAX_CONFIDENCE, confidence), 4)


def _reason_tags(
    cues: ContentCues,
    signals: PrivacySignals,
    complexity: Complexity,
    tools: List[str],
    mode: Optional[PrivacyMode],
    clipped: bool,
) -> Tuple[str, ...]:
    reasons = []
    if cues.code_block:
        reasons.append("code block detected")
    if cues.stack_trace:
        reasons.append("stack trace detected")
    if cues.code_file:
        reasons.append("source file reference detected")
    if cues.json_object:
        reasons.append("json/object detected")
    if cues.csv_header:
        reasons.append("csv pattern detected")
    if cues.statistical:
        reasons.append("statistical terms detected")
    if cues.multi_step:
        reasons.append("multi-step cues detected")
    if signals.requires_privacy:
        reasons.append("privacy signals present")
    elif signals.domains:
        reasons.append("sensitive domain keywords present")
    if mode == PrivacyMode.STRICT:
        reasons.append("strict privacy mode")
    if has_escalator_tool(tools):
        reasons.append("escalator tool present")
    if complexity != Complexity.LOW:
        reasons.append("elevated complexity signals")
    if clipped:
        reasons.append("input clipped")
    return tuple(reasons)


# =============================================================================
# Public entry points
# =============================================================================


def analyze_context(
    messages: Sequence[Any],
    tools: Optional[Iterable[Any]] = None,
    privacy_mode: Any = None,
    max_scan_chars: int = DEFAULT_MAX_SCAN_CHARS,
) -> TaskAnalysis:
    """Classify a request for routing.

    Args:
        messages: Ordered role/text pairs (mappings or objects with
            ``role`` and ``text`` attributes; ``content`` is accepted as an
            alias of ``text`` in mappings).
        tools: Optional tool names (or objects with a ``name``).
        privacy_mode: Optional privacy-mode override.
        max_scan_chars: Size of the head+tail scan window.

    Returns:
        A TaskAnalysis that contains no request content.

    Raises:
        InvalidContext: On malformed messages, tools or privacy mode.
    """
    texts = _normalize_messages(messages)
    tool_names = _normalize_tools(tools)
    mode = normalize_privacy_mode(privacy_mode)

    text, clipped = build_scan_window(texts, max_scan_chars)

    signals = detect_privacy_signals(text)
    privacy_level = _privacy_level(signals, mode)
    cues = ContentCues.scan(text)
    task_type = detect_task_type(text, cues)
    complexity = estimate_complexity(len(text.split()), task_type, tool_names)
    input_tokens, output_tokens = estimate_tokens(len(text), task_type, max_scan_chars)

    return TaskAnalysis(
        task_type=task_type,
        complexity=complexity,
        privacy_level=privacy_level,
        detected_domains=signals.domains,
        requires_privacy=privacy_level == PrivacyLevel.STRICT,
        expected_input_tokens=input_tokens,
        expected_output_tokens=output_tokens,
        time_constraint=detect_time_constraint(text),
        confidence=_confidence(task_type, complexity, signals),
        reasons=_reason_tags(cues, signals, complexity, tool_names, mode, clipped),
    )


def default_analysis() -> TaskAnalysis:
    """Conservative analysis used when classification itself fails.

    Treats the request as privacy-sensitive because it could not be scanned.
    """
    return TaskAnalysis(
        task_type=TaskType.SIMPLE_QUERY,
        complexity=Complexity.MEDIUM,
        privacy_level=PrivacyLevel.STRICT,
        detected_domains=(),
        requires_privacy=True,
        expected_input_tokens=SYSTEM_TOKEN_OVERHEAD,
        expected_output_tokens=DEFAULT_OUTPUT_TOKENS,
        time_constraint=TimeConstraint.UNSPECIFIED,
        confidence=0.0,
        reasons=("analysis unavailable",),
    )


def log_analysis_result(analysis: TaskAnalysis, context: str = "analyze_context.result") -> None:
    """Log analysis flags and metadata; never request text or matches."""
    logger.debug(f"{context}: {analysis.to_log_dict()}")
