"""Active rule snapshot with atomic swap-on-refresh.

Readers call ``current()`` and keep the returned RuleSet for the whole of
their work. Refresh compiles a complete candidate first and only then
replaces the reference, so readers never see a partially applied update.
"""

import asyncio
import logging
import threading
from typing import Optional

from clearlink.core.constants import DEFAULTS
from clearlink.core.exceptions import RuleCompileError, RuleError, RuleFetchError
from clearlink.rules.loader import (
    RawDocument,
    RuleLoader,
    compile_ruleset,
    load_bundled_ruleset,
)
from clearlink.rules.model import RuleSet


logger = logging.getLogger(__name__)


class RuleStore:
    """Holder of the currently active RuleSet.

    The snapshot reference is the only state shared between concurrent
    sanitize calls. It is replaced in a single assignment; the lock only
    serializes writers so versions stay strictly increasing.

    Example:
        >>> store = RuleStore(loader=RuleLoader(source))
        >>> await store.initial_load()
        >>> ruleset = store.current()
    """

    def __init__(
        self,
        *,
        loader: Optional[RuleLoader] = None,
        initial: Optional[RuleSet] = None,
    ) -> None:
        """Initialize rule store.

        Args:
            loader: Loader used for fetch-based refreshes
            initial: Starting snapshot (defaults to the bundled rule set)
        """
        self.loader = loader
        self._write_lock = threading.Lock()
        self._snapshot: RuleSet = initial if initial is not None else load_bundled_ruleset(version=1)
        self.last_error: Optional[RuleError] = None

    def current(self) -> RuleSet:
        """Return the active snapshot without blocking."""
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    def refresh(self, candidate: RawDocument, *, source: str = "") -> int:
        """Replace the active snapshot with a compiled candidate document.

        Args:
            candidate: Raw rule document
            source: Origin of the document, kept for diagnostics

        Returns:
            Version of the newly active snapshot

        Raises:
            RuleCompileError: If the candidate is invalid; the existing
                snapshot stays active
        """
        try:
            compiled = compile_ruleset(candidate, source=source)
        except RuleCompileError as e:
            self.last_error = e
            logger.error(f"Rejected rule document (keeping v{self.version}): {e}")
            raise
        return self.install(compiled)

    def install(self, ruleset: RuleSet) -> int:
        """Activate an already compiled rule set under the next version."""
        with self._write_lock:
            version = self._snapshot.version + 1
            self._snapshot = ruleset.with_version(version)
        self.last_error = None
        logger.info(
            f"Activated rules v{version}: {ruleset.provider_count} providers"
            f" from {ruleset.source or 'inline document'}"
        )
        return version

    async def refresh_from_source(self) -> int:
        """Fetch the rule document through the loader and refresh.

        Raises:
            RuleFetchError: If the document cannot be retrieved
            RuleCompileError: If the document is invalid
        """
        if self.loader is None:
            raise RuleFetchError("No rule loader configured")
        try:
            raw = await self.loader.fetch()
        except RuleFetchError as e:
            self.last_error = e
            logger.error(f"Rule fetch failed (keeping v{self.version}): {e}")
            raise
        return self.refresh(raw, source=self.loader.source)

    async def initial_load(
        self,
        *,
        retries: int = DEFAULTS["initial_retries"],
        backoff_base: float = DEFAULTS["backoff_base"],
    ) -> int:
        """Load rules at startup, retrying with exponential backoff.

        When every attempt fails the bundled default rule set is kept so
        the engine stays usable without network access.

        Returns:
            Version of the active snapshot
        """
        for attempt in range(retries):
            try:
                return await self.refresh_from_source()
            except RuleError as e:
                remaining = retries - attempt - 1
                if remaining == 0:
                    break
                delay = backoff_base * (2 ** attempt)
                logger.warning(
                    f"Initial rule load failed (attempt {attempt + 1}/{retries}),"
                    f" retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)

        logger.warning(f"Falling back to bundled rules (v{self.version})")
        return self.version
