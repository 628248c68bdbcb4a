"""Shortened link expansion.

Redirects are followed one hop at a time with HEAD requests, so response
bodies are never downloaded. Expansion is best-effort: every failure mode
yields a usable URL and a ``partial`` flag instead of an exception.
"""

import asyncio
import logging
from typing import Iterable, Optional
from urllib.parse import urljoin

import httpx

from clearlink.core.constants import DEFAULTS, DEFAULT_SHORTENERS, REDIRECT_STATUSES
from clearlink.core.exceptions import ExpansionError, ExpansionLoop, ExpansionTimeout, UrlParseError
from clearlink.core.models import ExpansionResult
from clearlink.core.utils import redact_sensitive
from clearlink.cleaner.query import to_match_target


logger = logging.getLogger(__name__)

# Statuses meaning the server refuses HEAD; retried as a streamed GET
HEAD_UNSUPPORTED = {405, 501}


class LinkExpander:
    """Resolve shortener links to their destination.

    Only hosts on the shortener allowlist are expanded. Terminal conditions:
    a non-redirect response (confirmed), the hop limit, the per-hop or total
    timeout, or a URL seen before (loop).

    Example:
        >>> expander = LinkExpander(["bit.ly"])
        >>> result = await expander.expand("https://bit.ly/xyz")
        >>> result.url, result.hops, result.partial
        ('https://shop.example/?ref=aff123&sku=42', 1, False)
    """

    def __init__(
        self,
        shorteners: Iterable[str] = DEFAULT_SHORTENERS,
        *,
        max_hops: int = DEFAULTS["max_hops"],
        per_hop_timeout: float = DEFAULTS["per_hop_timeout"],
        total_timeout: float = DEFAULTS["total_timeout"],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize LinkExpander.

        Args:
            shorteners: Hosts whose links are expanded (subdomains included)
            max_hops: Default maximum redirects to follow
            per_hop_timeout: Default timeout for one request, in seconds
            total_timeout: Default budget for the whole expansion, in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.shorteners = frozenset(s.strip().lower() for s in shorteners if s.strip())
        self.max_hops = max_hops
        self.per_hop_timeout = per_hop_timeout
        self.total_timeout = total_timeout
        self._transport = transport

    def is_shortener(self, url: str) -> bool:
        """Check if the URL's host is on the shortener allowlist."""
        try:
            host = to_match_target(url).host
        except UrlParseError:
            return False
        return any(host == s or host.endswith("." + s) for s in self.shorteners)

    async def expand(
        self,
        url: str,
        max_hops: Optional[int] = None,
        per_hop_timeout: Optional[float] = None,
        total_timeout: Optional[float] = None,
    ) -> ExpansionResult:
        """Follow redirects from a shortened URL.

        Args:
            url: Shortened URL
            max_hops: Maximum redirects to follow
            per_hop_timeout: Timeout for each request, in seconds
            total_timeout: Budget for the whole expansion, in seconds

        Returns:
            ExpansionResult with the last known URL. ``partial`` is True
            unless a non-redirect response confirmed the destination.
        """
        max_hops = max_hops if max_hops is not None else self.max_hops
        per_hop_timeout = per_hop_timeout if per_hop_timeout is not None else self.per_hop_timeout
        total_timeout = total_timeout if total_timeout is not None else self.total_timeout

        try:
            current = to_match_target(url).match_url
        except UrlParseError:
            return ExpansionResult(url=url, partial=True, error=UrlParseError.__name__)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + total_timeout
        seen = {current}
        hops = 0

        async with httpx.AsyncClient(
            follow_redirects=False,
            timeout=per_hop_timeout,
            transport=self._transport,
        ) as client:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return self._partial(url, current, hops, ExpansionTimeout)

                try:
                    response = await asyncio.wait_for(
                        self._probe(client, current),
                        timeout=min(per_hop_timeout, remaining),
                    )
                except (asyncio.TimeoutError, httpx.TimeoutException):
                    return self._partial(url, current, hops, ExpansionTimeout)
                except httpx.HTTPError as e:
                    logger.warning(f"Expansion of {redact_sensitive(url)} failed: {e}")
                    return ExpansionResult(url=url, hops=0, partial=True, error=ExpansionError.__name__)

                location = response.headers.get("location")
                if response.status_code not in REDIRECT_STATUSES or not location:
                    final = current if hops else url
                    if hops:
                        logger.info(f"Expanded {redact_sensitive(url)} -> {redact_sensitive(final)} in {hops} hop(s)")
                    return ExpansionResult(url=final, hops=hops, partial=False)

                next_url = urljoin(current, location)
                if next_url in seen:
                    return self._partial(url, current, hops, ExpansionLoop)

                seen.add(next_url)
                current = next_url
                hops += 1
                if hops >= max_hops:
                    logger.warning(f"Hop limit {max_hops} reached expanding {redact_sensitive(url)}")
                    return ExpansionResult(url=current, hops=hops, partial=True)

    async def _probe(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        response = await client.head(url)
        if response.status_code not in HEAD_UNSUPPORTED:
            return response
        # Headers only; the body stream is closed unread
        async with client.stream("GET", url) as streamed:
            return streamed

    def _partial(
        self,
        original: str,
        current: str,
        hops: int,
        error: type[ExpansionError],
    ) -> ExpansionResult:
        logger.warning(f"{error.__name__} expanding {redact_sensitive(original)} after {hops} hop(s)")
        return ExpansionResult(
            url=current if hops else original,
            hops=hops,
            partial=True,
            error=error.__name__,
        )
