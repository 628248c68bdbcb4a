"""Rule-driven removal of tracking parameters.

The Sanitizer applies, in order, the requester's custom rules, the most
specific provider's rules and the global rules of one RuleSet snapshot.
Redirector URLs whose real destination is carried in a parameter are
unwrapped first, and kept parameters whose value is itself a URL are
cleaned in turn. Both share one fixed depth limit.
"""

import logging
from typing import Callable, Optional, Sequence
from urllib.parse import quote, unquote

from clearlink.core.constants import MAX_UNWRAP_DEPTH, RemovalSource
from clearlink.core.exceptions import UrlParseError
from clearlink.core.models import CleaningResult, CustomRule, Removal, SanitizePolicy
from clearlink.core.utils import redact_sensitive
from clearlink.cleaner.query import MatchTarget, QueryParam, rewrite_params, strip_params, to_match_target
from clearlink.rules.model import ProviderRule, RuleSet
from clearlink.rules.store import RuleStore


logger = logging.getLogger(__name__)


class Sanitizer:
    """Strip tracking parameters from URLs.

    Pure computation over an in-memory snapshot: no I/O, no locking. Each
    call reads the store once and uses that snapshot to completion.

    Example:
        >>> sanitizer = Sanitizer(store)
        >>> result = sanitizer.sanitize("https://example.com/?utm_source=x&id=5")
        >>> result.cleaned_url
        'https://example.com/?id=5'
    """

    def __init__(self, store: RuleStore, *, max_unwrap_depth: int = MAX_UNWRAP_DEPTH) -> None:
        """Initialize Sanitizer.

        Args:
            store: Rule store providing the active snapshot
            max_unwrap_depth: Maximum redirect unwraps per call
        """
        self.store = store
        self.max_unwrap_depth = max_unwrap_depth

    def sanitize(
        self,
        url: str,
        custom_rules: Sequence[CustomRule] = (),
        policy: Optional[SanitizePolicy] = None,
        *,
        snapshot: Optional[RuleSet] = None,
    ) -> CleaningResult:
        """Clean a single URL.

        Args:
            url: URL text as received
            custom_rules: Requester's custom rules (read only)
            policy: Cleaning policy (defaults to SanitizePolicy())
            snapshot: RuleSet to use instead of the store's current one

        Returns:
            CleaningResult with the cleaned URL and removal provenance.
            Unparseable input is returned unchanged with error set.
        """
        policy = policy or SanitizePolicy()
        ruleset = snapshot if snapshot is not None else self.store.current()
        owned = self._owned_rules(custom_rules, policy)

        logger.debug(f"Sanitizing {redact_sensitive(url)} with rules v{ruleset.version}")

        try:
            target = to_match_target(url)
        except UrlParseError as e:
            logger.debug(f"Passing through unparseable input: {e}")
            return CleaningResult(
                original_url=url,
                cleaned_url=url,
                error=UrlParseError.__name__,
            )

        cleaned, removals, provider, depth = self._clean(url, target, owned, policy, ruleset, 0)
        return self._result(url, cleaned, removals, provider, depth)

    def _clean(
        self,
        url: str,
        target: MatchTarget,
        owned: list[CustomRule],
        policy: SanitizePolicy,
        ruleset: RuleSet,
        depth: int,
    ) -> tuple[str, list[Removal], Optional[ProviderRule], int]:
        """Run the rule passes on one URL.

        ``depth`` counts redirect unwraps and nested-URL descents together,
        so both stop at ``max_unwrap_depth``.

        Returns:
            Tuple of (cleaned URL, removals, resolved provider, depth reached)
        """
        working = url
        while True:
            provider = ruleset.resolve(target.match_url)
            removals: list[Removal] = []

            working = self._apply(
                working,
                lambda param: any(rule.matches(k) for rule in owned for k in param.keys),
                RemovalSource.CUSTOM,
                removals,
            )

            if self._is_excepted(target, provider, ruleset, policy):
                logger.debug(f"Exception-listed host {target.host}: custom rules only")
                return working, removals, provider, depth

            if depth < self.max_unwrap_depth:
                destination = self._extract_redirect(target.match_url, provider, ruleset)
                if destination is not None:
                    depth += 1
                    logger.debug(
                        f"Unwrapped redirect (depth {depth}) to {redact_sensitive(destination)}"
                    )
                    working = destination
                    target = to_match_target(destination)
                    continue
            elif self._extract_redirect(target.match_url, provider, ruleset) is not None:
                logger.warning(
                    f"Redirect unwrap depth {self.max_unwrap_depth} reached for {redact_sensitive(url)}"
                )

            if provider is not None:
                referral = policy.remove_referral_marketing
                working = self._apply(
                    working,
                    lambda param: any(provider.removes(k, referral_marketing=referral) for k in param.keys),
                    RemovalSource.PROVIDER,
                    removals,
                )

            global_rules = ruleset.global_rules
            if global_rules is not None:
                referral = policy.remove_referral_marketing
                working = self._apply(
                    working,
                    lambda param: any(global_rules.removes(k, referral_marketing=referral) for k in param.keys),
                    RemovalSource.GLOBAL,
                    removals,
                )

            if depth < self.max_unwrap_depth:
                working = self._clean_nested(working, owned, policy, ruleset, depth + 1, removals)

            return working, removals, provider, depth

    def _clean_nested(
        self,
        url: str,
        owned: list[CustomRule],
        policy: SanitizePolicy,
        ruleset: RuleSet,
        depth: int,
        removals: list[Removal],
    ) -> str:
        """Clean kept parameters whose value is itself an http(s) URL."""

        def rewrite(param: QueryParam) -> str:
            value = param.value
            if value is None or not value.lower().startswith(("http://", "https://")):
                return param.segment
            try:
                inner_target = to_match_target(value)
            except UrlParseError:
                return param.segment

            cleaned, inner_removals, _, _ = self._clean(value, inner_target, owned, policy, ruleset, depth)
            if cleaned == value:
                return param.segment

            logger.debug(f"Cleaned URL nested in '{param.key}': {redact_sensitive(cleaned)}")
            for removal in inner_removals:
                if removal not in removals:
                    removals.append(removal)
            return f"{param.raw_key}={quote(cleaned, safe='')}"

        return rewrite_params(url, rewrite)

    def _owned_rules(
        self,
        custom_rules: Sequence[CustomRule],
        policy: SanitizePolicy,
    ) -> list[CustomRule]:
        if policy.owner is None:
            return list(custom_rules)
        return [rule for rule in custom_rules if rule.owner == policy.owner]

    def _is_excepted(
        self,
        target: MatchTarget,
        provider: Optional[ProviderRule],
        ruleset: RuleSet,
        policy: SanitizePolicy,
    ) -> bool:
        if policy.is_domain_excepted(target.host):
            return True
        if provider is not None and provider.is_exception(target.match_url):
            return True
        global_rules = ruleset.global_rules
        return global_rules is not None and global_rules.is_exception(target.match_url)

    def _extract_redirect(
        self,
        match_url: str,
        provider: Optional[ProviderRule],
        ruleset: RuleSet,
    ) -> Optional[str]:
        """Find an embedded destination URL via redirection patterns."""
        candidates = [p for p in (provider, ruleset.global_rules) if p is not None]
        for rule_group in candidates:
            for pattern in rule_group.redirections:
                match = pattern.search(match_url)
                if match is None or match.lastindex is None or not match.group(1):
                    continue
                destination = unquote(match.group(1))
                if not destination.lower().startswith(("http://", "https://")):
                    continue
                try:
                    to_match_target(destination)
                except UrlParseError:
                    continue
                return destination
        return None

    def _apply(
        self,
        url: str,
        remove: Callable[[QueryParam], bool],
        source: RemovalSource,
        removals: list[Removal],
    ) -> str:
        cleaned, removed = strip_params(url, remove)
        for key in removed:
            removal = Removal(key=key, source=source)
            if removal not in removals:
                removals.append(removal)
        return cleaned

    def _result(
        self,
        original: str,
        cleaned: str,
        removals: list[Removal],
        provider: Optional[ProviderRule],
        depth: int,
    ) -> CleaningResult:
        if cleaned != original:
            logger.info(
                f"Cleaned {redact_sensitive(original)} -> {redact_sensitive(cleaned)}"
                f" ({len(removals)} removed, provider={provider.name if provider else 'none'})"
            )
        return CleaningResult(
            original_url=original,
            cleaned_url=cleaned,
            removals=removals,
            provider=provider.name if provider else None,
            unwrap_depth=depth,
        )

