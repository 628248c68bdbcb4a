"""Core data models for ClearLink.

This module defines the data structures exchanged with the engine's
collaborators: per-user custom rules, sanitize policies, and the
cleaning results handed to the audit side.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from clearlink.core.constants import RemovalSource


# ============================================================================
# Input Models
# ============================================================================

@dataclass(frozen=True)
class CustomRule:
    """User-owned parameter pattern.

    Owned and mutated by the settings collaborator. The engine only reads
    the rules supplied for a call and never stores them.
    """
    owner: str
    pattern: re.Pattern
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_text(cls, owner: str, pattern: str, *, case_insensitive: bool = False) -> "CustomRule":
        """Compile a custom rule from its textual pattern.

        Raises:
            re.error: If the pattern is not a valid regular expression
        """
        flags = re.IGNORECASE if case_insensitive else 0
        return cls(owner=owner, pattern=re.compile(pattern, flags))

    def matches(self, key: str) -> bool:
        """Check if a parameter key matches this rule."""
        return self.pattern.search(key) is not None


@dataclass(frozen=True)
class SanitizePolicy:
    """Per-call cleaning policy."""
    remove_referral_marketing: bool = False
    allow_ai_fallback: bool = False
    domain_exceptions: frozenset[str] = frozenset()
    owner: Optional[str] = None             # Requester; selects custom rules

    def is_domain_excepted(self, host: str) -> bool:
        """Check if host equals or is a subdomain of an excepted domain."""
        host = host.lower().rstrip(".")
        for domain in self.domain_exceptions:
            domain = domain.strip().lower().rstrip(".")
            if not domain:
                continue
            if host == domain or host.endswith("." + domain):
                return True
        return False


# ============================================================================
# Result Models
# ============================================================================

@dataclass(frozen=True)
class Removal:
    """A removed parameter key and the rule category that removed it."""
    key: str
    source: RemovalSource


@dataclass
class ExpansionResult:
    """Outcome of following a shortened link."""
    url: str
    hops: int = 0
    partial: bool = False
    error: Optional[str] = None             # ExpansionTimeout, ExpansionLoop, ...


@dataclass
class CleaningResult:
    """Result of one sanitize invocation.

    Ownership passes to the caller as soon as it is returned.
    """
    original_url: str
    cleaned_url: str
    removals: list[Removal] = field(default_factory=list)
    expansion_hops: Optional[int] = None
    partial_expansion: Optional[bool] = None
    provider: Optional[str] = None          # Matched provider name
    unwrap_depth: int = 0                   # Redirect unwraps performed
    error: Optional[str] = None             # Error kind, e.g. UrlParseError

    @property
    def changed(self) -> bool:
        """Check if cleaning altered the URL."""
        return self.cleaned_url != self.original_url

    def removed_keys(self, source: Optional[RemovalSource] = None) -> list[str]:
        """List removed keys, optionally restricted to one source."""
        return [r.key for r in self.removals if source is None or r.source == source]

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the audit collaborator."""
        data: dict[str, Any] = {
            "originalUrl": self.original_url,
            "cleanedUrl": self.cleaned_url,
            "removals": [
                {"key": r.key, "source": r.source.value}
                for r in self.removals
            ],
        }
        if self.expansion_hops is not None:
            data["expansionHops"] = self.expansion_hops
        if self.partial_expansion is not None:
            data["partialExpansion"] = self.partial_expansion
        if self.provider is not None:
            data["provider"] = self.provider
        if self.error is not None:
            data["error"] = self.error
        return data
