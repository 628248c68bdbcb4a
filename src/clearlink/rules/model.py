"""Compiled, immutable rule set.

A RuleSet is built once by the loader and then only read. Every pattern it
holds is already compiled, so a snapshot is never observed half-built.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional

from clearlink.core.constants import RuleKind


@dataclass(frozen=True)
class ParamRule:
    """Single parameter-removal rule.

    Exact rules compare the whole key literally; regex rules must match the
    whole key. Comparison is case-sensitive unless ``case_insensitive`` is set.
    """
    source: str
    kind: RuleKind
    compiled: re.Pattern
    case_insensitive: bool = False

    def matches(self, key: str) -> bool:
        return self.compiled.fullmatch(key) is not None


@dataclass(frozen=True)
class ProviderRule:
    """Rules scoped to one host/domain family."""
    name: str
    url_pattern: re.Pattern
    rules: tuple[ParamRule, ...] = ()
    referral_marketing: tuple[ParamRule, ...] = ()
    exceptions: tuple[re.Pattern, ...] = ()
    redirections: tuple[re.Pattern, ...] = ()

    def match_span(self, url: str) -> int:
        """Length of the URL prefix region matched by the host pattern.

        Returns -1 when the provider does not apply to the URL.
        """
        match = self.url_pattern.search(url)
        if match is None:
            return -1
        return match.end() - match.start()

    def is_exception(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.exceptions)

    def removes(self, key: str, *, referral_marketing: bool = False) -> bool:
        """Check if this provider strips the given key."""
        if any(rule.matches(key) for rule in self.rules):
            return True
        if referral_marketing:
            return any(rule.matches(key) for rule in self.referral_marketing)
        return False


@dataclass(frozen=True)
class RuleSet:
    """Versioned snapshot of all provider rules."""
    version: int
    providers: Mapping[str, ProviderRule]
    global_rules: Optional[ProviderRule] = None
    source: str = ""
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not isinstance(self.providers, MappingProxyType):
            object.__setattr__(self, "providers", MappingProxyType(dict(self.providers)))

    @property
    def provider_count(self) -> int:
        return len(self.providers)

    def resolve(self, url: str) -> Optional[ProviderRule]:
        """Find the most specific provider for a URL.

        The provider whose host pattern matches the longest span wins. Equal
        spans are broken by provider name in alphabetical order, so the
        result never depends on document order.

        Args:
            url: URL in matching form (scheme present, host lowercased)

        Returns:
            Matching provider, or None when only the global rules apply
        """
        best: Optional[ProviderRule] = None
        best_span = -1
        for name in sorted(self.providers):
            provider = self.providers[name]
            span = provider.match_span(url)
            if span > best_span:
                best = provider
                best_span = span
        return best

    def with_version(self, version: int) -> "RuleSet":
        """Copy of this rule set carrying a different version."""
        return RuleSet(
            version=version,
            providers=self.providers,
            global_rules=self.global_rules,
            source=self.source,
            loaded_at=self.loaded_at,
        )
