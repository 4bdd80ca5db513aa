"""Privacy Signal Detector.

Pure text scanner that reports which privacy domains a request touches and
which identifier-shaped patterns it contains. Only booleans leave this
module; matched text is never returned, logged or stored.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


class PrivacyDomain(str, Enum):
    """Sensitive areas a request can touch."""

    MEDICAL = "medical"
    FINANCIAL = "financial"
    PERSONAL = "personal"


# Precompiled identifier patterns, US-centric; extend per region.
PII_PATTERNS: Dict[str, re.Pattern] = {
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "cc": re.compile(r"\b(?:\d[ -]?){13,19}\b"),
    # IBANs are written in upper case, so this one runs on the unlowered text
    "iban": re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{11,30}\b"),
    "email": re.compile(r"\b[A-Z0-9._%+-]{1,64}@[A-Z0-9.-]{1,255}\.[A-Z]{2,63}\b", re.IGNORECASE),
    "phone": re.compile(r"(?<!\d)(?:\+1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?!\d)"),
    "routing9": re.compile(r"\b\d{9}\b"),
    "mrn": re.compile(r"\b(?:MRN|Med(?:ical)?\s*Record)\s*[:#]?\s*\w+\b", re.IGNORECASE),
}

# A bare nine-digit number only counts as a routing number next to these words
ROUTING_CONTEXT = re.compile(r"\b(?:routing|aba)\b")

PRIVACY_TERMS: Dict[PrivacyDomain, Tuple[str, ...]] = {
    PrivacyDomain.MEDICAL: (
        "hipaa", "phi", "patient", "diagnosis", "ehr",
        "prescription", "icd-10", "cpt", "mrn",
    ),
    PrivacyDomain.FINANCIAL: (
        "ssn", "routing", "account number", "bank", "ach", "iban",
        "swift", "w-2", "1040", "credit card", "cvv",
    ),
    PrivacyDomain.PERSONAL: (
        "password", "pin", "private", "confidential", "proprietary",
    ),
}

_TERM_PATTERNS: Dict[PrivacyDomain, re.Pattern] = {
    domain: re.compile(r"\b(?:" + "|".join(re.escape(t) for t in terms) + r")\b")
    for domain, terms in PRIVACY_TERMS.items()
}

# Patterns that identify a person or account on their own
HARD_IDENTIFIERS = ("ssn", "cc", "iban", "email", "phone", "routing9", "mrn")


@dataclass(frozen=True)
class PrivacySignals:
    """Content-free summary of the privacy scan."""

    requires_privacy: bool
    domains: Tuple[PrivacyDomain, ...] = ()
    patterns: Dict[str, bool] = field(default_factory=dict)
    keywords: Dict[str, bool] = field(default_factory=dict)

    @property
    def has_signals(self) -> bool:
        return bool(self.domains) or any(self.patterns.values())

    def to_dict(self) -> dict:
        return {
            "requires_privacy": self.requires_privacy,
            "domains": [d.value for d in self.domains],
            "patterns": dict(self.patterns),
            "keywords": dict(self.keywords),
        }


def fold_diacritics(text: str, lower: bool = True) -> str:
    """NFKD-fold text and strip combining marks."""
    decomposed = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return folded.lower() if lower else folded


def detect_privacy_signals(text: str) -> PrivacySignals:
    """Scan text for privacy domains and identifier patterns.

    Args:
        text: Raw request text (already clipped by the caller if large).

    Returns:
        PrivacySignals carrying flags only.
    """
    folded = fold_diacritics(text, lower=False)
    lower = folded.lower()

    patterns = {
        "ssn": bool(PII_PATTERNS["ssn"].search(lower)),
        "cc": bool(PII_PATTERNS["cc"].search(lower)),
        "iban": bool(PII_PATTERNS["iban"].search(folded)),
        "email": "@" in lower and bool(PII_PATTERNS["email"].search(lower)),
        "phone": bool(PII_PATTERNS["phone"].search(lower)),
        "routing9": bool(
            PII_PATTERNS["routing9"].search(lower) and ROUTING_CONTEXT.search(lower)
        ),
        "mrn": bool(PII_PATTERNS["mrn"].search(folded)),
    }
    keywords = {
        domain.value: bool(_TERM_PATTERNS[domain].search(lower))
        for domain in PrivacyDomain
    }

    domains = []
    if keywords["medical"] or patterns["mrn"]:
        domains.append(PrivacyDomain.MEDICAL)
    if keywords["financial"] or patterns["cc"] or patterns["iban"] or patterns["routing9"]:
        domains.append(PrivacyDomain.FINANCIAL)
    if keywords["personal"] or patterns["email"] or patterns["phone"] or patterns["ssn"]:
        domains.append(PrivacyDomain.PERSONAL)

    requires_privacy = any(patterns[name] for name in HARD_IDENTIFIERS)

    return PrivacySignals(
        requires_privacy=requires_privacy,
        domains=tuple(domains),
        patterns=patterns,
        keywords=keywords,
    )
