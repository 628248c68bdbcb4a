"""Inference-backed classification of parameters no rule covered.

Only the host and the unresolved parameter keys leave the process; values,
full URLs and message context never do. Any failure leaves the rule-based
result untouched.
"""

import logging
from dataclasses import replace
from typing import Optional

import httpx

from clearlink.core.constants import DEFAULTS, RemovalSource
from clearlink.core.exceptions import AIFallbackError, UrlParseError
from clearlink.core.models import CleaningResult, Removal, SanitizePolicy
from clearlink.cleaner.query import param_keys, strip_params, to_match_target


logger = logging.getLogger(__name__)


class AIFallback:
    """Escalate unresolved parameter keys to an inference endpoint.

    Request body: ``{"host": str, "unresolvedKeys": [str, ...]}``.
    Expected response: ``{"trackingKeys": [str, ...]}``. Anything else is
    treated as malformed.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        timeout: float = DEFAULTS["ai_timeout"],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize AIFallback.

        Args:
            endpoint: Inference URL; the fallback is disabled when None
            api_key: Optional bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    async def classify(self, host: str, unresolved_keys: list[str]) -> set[str]:
        """Ask the endpoint which of the keys are tracking parameters.

        Returns:
            Subset of ``unresolved_keys`` classified as tracking

        Raises:
            AIFallbackError: On timeout, transport error, error status or
                malformed response
        """
        if not self.endpoint:
            raise AIFallbackError("No inference endpoint configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {"host": host, "unresolvedKeys": list(unresolved_keys)}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise AIFallbackError(f"Inference request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AIFallbackError(f"Inference request failed: {e}") from e
        except ValueError as e:
            raise AIFallbackError(f"Inference response is not JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("trackingKeys"), list):
            raise AIFallbackError(f"Malformed inference response: {data!r}")

        tracking = data["trackingKeys"]
        if not all(isinstance(key, str) for key in tracking):
            raise AIFallbackError(f"Malformed inference response: {data!r}")

        return set(tracking) & set(unresolved_keys)

    async def apply(self, result: CleaningResult, policy: SanitizePolicy) -> CleaningResult:
        """Remove AI-classified keys from a rule-based result.

        Fails open: on any AIFallbackError the input result is returned
        unchanged and the condition is logged.
        """
        if not policy.allow_ai_fallback or not self.enabled or result.error is not None:
            return result

        unresolved = param_keys(result.cleaned_url)
        if not unresolved:
            return result

        try:
            host = to_match_target(result.cleaned_url).host
        except UrlParseError:
            return result

        try:
            tracking = await self.classify(host, unresolved)
        except AIFallbackError as e:
            logger.warning(f"AI fallback skipped for {host}: {e}")
            return result

        if not tracking:
            return result

        cleaned, removed = strip_params(result.cleaned_url, lambda param: param.key in tracking)
        removals = list(result.removals)
        for key in removed:
            removal = Removal(key=key, source=RemovalSource.AI)
            if removal not in removals:
                removals.append(removal)

        logger.info(f"AI fallback removed {len(removed)} parameter(s) on {host}")
        return replace(result, cleaned_url=cleaned, removals=removals)
