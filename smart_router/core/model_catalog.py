"""Model catalog - descriptors of routable models.

ModelDescriptor is created once when a provider registers and never changes.
Capabilities are a closed enumeration. Tags are a closed set of known kinds
plus an open extension set, validated at construction so malformed tags are
rejected at registration time rather than silently never matching.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """What a model can do."""

    TEXT_GENERATION = "text_generation"
    FUNCTION_CALLING = "function_calling"
    VISION = "vision"
    EMBEDDINGS = "embeddings"
    STREAMING = "streaming"
    CODE_GENERATION = "code_generation"
    REASONING = "reasoning"


class ModelTag(str, Enum):
    """Tags the scoring engine understands."""

    REASONING = "reasoning"
    CODEGEN = "codegen"
    FAST = "fast"
    ANALYSIS = "analysis"
    MEDICAL = "medical"
    FINANCIAL = "financial"
    PERSONAL = "personal"


KNOWN_TAGS = frozenset(t.value for t in ModelTag)
TAG_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{0,31}$")
MODEL_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:/@+-]{0,127}$")


def normalize_tag(tag: Union[str, ModelTag]) -> str:
    """Validate a tag; known tags and well-formed extension tags pass."""
    value = tag.value if isinstance(tag, ModelTag) else tag
    if not isinstance(value, str):
        raise ValueError(f"Model tag must be a string, got {type(tag).__name__}")
    value = value.strip().lower()
    if value in KNOWN_TAGS:
        return value
    if not TAG_PATTERN.match(value):
        raise ValueError(f"Malformed model tag: {tag!r}")
    return value


@dataclass(frozen=True)
class Pricing:
    """Per-call and per-1k-token prices in USD."""

    per_call: float = 0.0
    input_per_1k: float = 0.0
    output_per_1k: float = 0.0

    def __post_init__(self):
        for name in ("per_call", "input_per_1k", "output_per_1k"):
            if getattr(self, name) < 0:
                raise ValueError(f"Pricing.{name} must be non-negative")

    @property
    def is_free(self) -> bool:
        return self.per_call == 0 and self.input_per_1k == 0 and self.output_per_1k == 0


@dataclass(frozen=True)
class ModelDescriptor:
    """Immutable description of one routable model."""

    id: str
    name: str
    provider: str
    capabilities: FrozenSet[Capability]
    context_window: int
    is_local: bool = False
    tags: FrozenSet[str] = field(default_factory=frozenset)
    pricing: Pricing = field(default_factory=Pricing)
    max_output_tokens: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.id, str) or not MODEL_ID_PATTERN.match(self.id):
            raise ValueError(f"Invalid model id: {self.id!r}")
        if not self.name:
            raise ValueError(f"Model {self.id} needs a name")
        if self.context_window <= 0:
            raise ValueError(f"Model {self.id} context_window must be positive")
        # Coerce iterables so callers may pass lists of strings
        object.__setattr__(
            self, "capabilities", frozenset(Capability(c) for c in self.capabilities)
        )
        object.__setattr__(self, "tags", frozenset(normalize_tag(t) for t in self.tags))

    def has_capability(self, capability: Union[Capability, str]) -> bool:
        return Capability(capability) in self.capabilities

    def has_tag(self, tag: Union[ModelTag, str]) -> bool:
        return (tag.value if isinstance(tag, ModelTag) else tag) in self.tags

    @property
    def extension_tags(self) -> FrozenSet[str]:
        """Tags outside the known set."""
        return self.tags - KNOWN_TAGS

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Estimated USD cost of one call; local models are free."""
        if self.is_local:
            return 0.0
        p = self.pricing
        return (
            p.per_call
            + (input_tokens / 1000.0) * p.input_per_1k
            + (output_tokens / 1000.0) * p.output_per_1k
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "capabilities": sorted(c.value for c in self.capabilities),
            "context_window": self.context_window,
            "is_local": self.is_local,
            "tags": sorted(self.tags),
            "pricing": {
                "per_call": self.pricing.per_call,
                "input_per_1k": self.pricing.input_per_1k,
                "output_per_1k": self.pricing.output_per_1k,
            },
            "max_output_tokens": self.max_output_tokens,
        }


# =============================================================================
# Catalog files
# =============================================================================


class _PricingEntry(BaseModel):
    per_call: float = Field(default=0.0, ge=0)
    input_per_1k: float = Field(default=0.0, ge=0)
    output_per_1k: float = Field(default=0.0, ge=0)


class CatalogEntry(BaseModel):
    """One model entry as written in a catalog JSON file."""

    id: str
    name: Optional[str] = None
    provider: str = "unknown"
    capabilities: List[Capability] = Field(
        default_factory=lambda: [Capability.TEXT_GENERATION]
    )
    context_window: int = Field(default=8192, gt=0)
    is_local: bool = False
    tags: List[str] = Field(default_factory=list)
    pricing: _PricingEntry = Field(default_factory=_PricingEntry)
    max_output_tokens: Optional[int] = None

    def to_descriptor(self) -> ModelDescriptor:
        return ModelDescriptor(
            id=self.id,
            name=self.name or self.id,
            provider=self.provider,
            capabilities=frozenset(self.capabilities),
            context_window=self.context_window,
            is_local=self.is_local,
            tags=frozenset(self.tags),
            pricing=Pricing(**self.pricing.model_dump()),
            max_output_tokens=self.max_output_tokens,
        )


def parse_catalog(data: Any) -> List[ModelDescriptor]:
    """Build descriptors from a list of entries or a mapping of id -> entry.

    Raises:
        ValueError: If any entry is malformed.
    """
    if isinstance(data, dict):
        entries: Iterable[Any] = [{"id": key, **value} for key, value in data.items()]
    elif isinstance(data, list):
        entries = data
    else:
        raise ValueError("Catalog must be a list of models or a mapping of id to model")

    descriptors = []
    for raw in entries:
        try:
            descriptors.append(CatalogEntry.model_validate(raw).to_descriptor())
        except ValidationError as e:
            raise ValueError(f"Invalid catalog entry {raw.get('id', '?') if isinstance(raw, dict) else raw!r}: {e}") from e
    return descriptors


def load_catalog(path: Union[str, Path]) -> List[ModelDescriptor]:
    """Load model descriptors from a JSON catalog file."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    descriptors = parse_catalog(data)
    logger.debug(f"Loaded {len(descriptors)} model(s) from {path}")
    return descriptors
