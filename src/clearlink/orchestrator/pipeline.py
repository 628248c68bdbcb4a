"""Cleaning pipeline.

This module provides the CleaningPipeline class that composes link
expansion, rule-based sanitizing and the AI fallback into the single
``sanitize`` entry point used by the messaging integration.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Optional, Sequence

from clearlink.core.config import EngineConfig
from clearlink.core.models import CleaningResult, CustomRule, SanitizePolicy
from clearlink.core.utils import redact_sensitive
from clearlink.cleaner.ai_fallback import AIFallback
from clearlink.cleaner.expander import LinkExpander
from clearlink.cleaner.sanitizer import Sanitizer
from clearlink.orchestrator.refresher import RuleRefresher
from clearlink.rules.loader import RuleLoader
from clearlink.rules.store import RuleStore


logger = logging.getLogger(__name__)


class CleaningPipeline:
    """Expand, sanitize and optionally escalate one URL.

    Flow: LinkExpander (shortener hosts only) -> Sanitizer (custom,
    provider, global rules) -> AIFallback (policy-enabled, unresolved keys
    left). Every call uses one RuleSet snapshot from start to finish.

    Example:
        >>> pipeline = CleaningPipeline(store, expander=LinkExpander())
        >>> result = await pipeline.sanitize(url, rules, policy, timeout=5)
    """

    def __init__(
        self,
        store: RuleStore,
        *,
        sanitizer: Optional[Sanitizer] = None,
        expander: Optional[LinkExpander] = None,
        ai: Optional[AIFallback] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize cleaning pipeline.

        Args:
            store: Rule store shared with the refresher
            sanitizer: Sanitizer instance (created from store if None)
            expander: Link expander; expansion is skipped when None
            ai: AI fallback; escalation is skipped when None
            timeout: Default overall budget per call, in seconds
        """
        self.store = store
        self.sanitizer = sanitizer or Sanitizer(store)
        self.expander = expander
        self.ai = ai
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: EngineConfig, *, store: Optional[RuleStore] = None) -> "CleaningPipeline":
        """Build a pipeline and its collaborators from engine configuration."""
        if store is None:
            loader = RuleLoader(config.rules.source, timeout=config.rules.fetch_timeout)
            store = RuleStore(loader=loader)

        expander = None
        if config.expansion.enabled:
            expander = LinkExpander(
                config.expansion.shorteners,
                max_hops=config.expansion.max_hops,
                per_hop_timeout=config.expansion.per_hop_timeout,
                total_timeout=config.expansion.total_timeout,
            )

        ai = None
        if config.ai.enabled:
            ai = AIFallback(config.ai.endpoint, api_key=config.ai.api_key, timeout=config.ai.timeout)

        return cls(store, expander=expander, ai=ai, timeout=config.sanitize_timeout)

    async def sanitize(
        self,
        url: str,
        custom_rules: Sequence[CustomRule] = (),
        policy: Optional[SanitizePolicy] = None,
        *,
        timeout: Optional[float] = None,
    ) -> CleaningResult:
        """Clean one URL end to end.

        Args:
            url: URL text as received
            custom_rules: Requester's custom rules (read only)
            policy: Cleaning policy
            timeout: Overall budget in seconds; when expansion or the AI
                step would exceed it, the result completed so far is returned

        Returns:
            CleaningResult. Never raises for engine error kinds.
        """
        policy = policy or SanitizePolicy()
        snapshot = self.store.current()
        budget = timeout if timeout is not None else self.timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget if budget is not None else None

        def remaining() -> Optional[float]:
            if deadline is None:
                return None
            return deadline - loop.time()

        working = url
        expansion = None
        if self.expander is not None and self.expander.is_shortener(url):
            left = remaining()
            if left is None or left > 0:
                total = self.expander.total_timeout if left is None else min(self.expander.total_timeout, left)
                expansion = await self.expander.expand(url, total_timeout=total)
                working = expansion.url
            else:
                logger.warning(f"No budget left to expand {redact_sensitive(url)}")

        result = self.sanitizer.sanitize(working, custom_rules, policy, snapshot=snapshot)
        result = replace(result, original_url=url)
        if expansion is not None:
            result = replace(
                result,
                expansion_hops=expansion.hops,
                partial_expansion=expansion.partial,
                error=result.error or expansion.error,
            )
        elif self.expander is not None and self.expander.is_shortener(url):
            result = replace(result, expansion_hops=0, partial_expansion=True)

        if self.ai is None or not policy.allow_ai_fallback:
            return result

        left = remaining()
        if left is not None and left <= 0:
            logger.warning("No budget left for AI fallback; returning rule-based result")
            return result

        try:
            return await asyncio.wait_for(self.ai.apply(result, policy), timeout=left)
        except asyncio.TimeoutError:
            logger.warning("AI fallback exceeded the sanitize budget; returning rule-based result")
            return result

    async def sanitize_all(
        self,
        urls: Sequence[str],
        custom_rules: Sequence[CustomRule] = (),
        policy: Optional[SanitizePolicy] = None,
        *,
        timeout: Optional[float] = None,
    ) -> list[CleaningResult]:
        """Clean several URLs from one message concurrently, preserving order."""
        return list(await asyncio.gather(*(
            self.sanitize(url, custom_rules, policy, timeout=timeout)
            for url in urls
        )))


async def start_engine(config: EngineConfig) -> tuple[CleaningPipeline, RuleRefresher]:
    """Load rules and start the periodic refresh.

    Returns:
        Tuple of (ready pipeline, running refresher). The caller stops the
        refresher on shutdown.
    """
    pipeline = CleaningPipeline.from_config(config)
    await pipeline.store.initial_load(
        retries=config.rules.initial_retries,
        backoff_base=config.rules.backoff_base,
    )
    refresher = RuleRefresher(pipeline.store, interval=config.rules.refresh_interval)
    await refresher.start()
    return pipeline, refresher
