"""Rule document fetching, parsing and compilation.

Rule documents follow the ClearURLs layout::

    {"providers": {"amazon": {"urlPattern": "...", "rules": [...],
                              "referralMarketing": [...], "exceptions": [...],
                              "redirections": [...]}}}

JSON is the usual wire format; YAML documents with the same shape are
accepted too. Compilation is all-or-nothing: one bad pattern or missing
field rejects the whole document.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional, Union

import httpx
import yaml

from clearlink.core.constants import DEFAULTS, GLOBAL_PROVIDER, RuleKind
from clearlink.core.exceptions import RuleCompileError, RuleFetchError
from clearlink.rules.model import ParamRule, ProviderRule, RuleSet


logger = logging.getLogger(__name__)

RawDocument = Union[str, bytes, dict]

BUNDLED_RULES_PATH = Path(__file__).parent / "default_rules.json"

# ClearURLs fields that describe whole-URL rewriting; accepted and ignored
IGNORED_FIELDS = {"completeProvider", "rawRules", "forceRedirection"}


def parse_document(raw: RawDocument) -> dict[str, Any]:
    """Decode a raw rule document into a mapping.

    Args:
        raw: JSON or YAML text, bytes, or an already decoded mapping

    Returns:
        Decoded document

    Raises:
        RuleCompileError: If the document cannot be decoded
    """
    if isinstance(raw, dict):
        return raw

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RuleCompileError(f"Rule document is not valid UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise RuleCompileError(f"Failed to parse rule document: {e}") from e

    if not isinstance(data, dict):
        raise RuleCompileError("Rule document must be a mapping")
    return data


def compile_ruleset(raw: RawDocument, *, version: int = 0, source: str = "") -> RuleSet:
    """Parse and compile a complete rule document.

    Args:
        raw: Rule document (see module docstring)
        version: Version to stamp on the rule set
        source: Where the document came from, kept for diagnostics

    Returns:
        Fully compiled RuleSet

    Raises:
        RuleCompileError: If any field is missing or any pattern is invalid
    """
    data = parse_document(raw)
    providers_data = data.get("providers", data)

    if not isinstance(providers_data, dict) or not providers_data:
        raise RuleCompileError("Rule document has no providers")

    providers: dict[str, ProviderRule] = {}
    global_rules: Optional[ProviderRule] = None

    for name, entry in providers_data.items():
        provider = _compile_provider(str(name), entry)
        if name == GLOBAL_PROVIDER:
            global_rules = provider
        else:
            providers[provider.name] = provider

    return RuleSet(
        version=version,
        providers=providers,
        global_rules=global_rules,
        source=source,
    )


def _compile_provider(name: str, entry: Any) -> ProviderRule:
    if not isinstance(entry, dict):
        raise RuleCompileError(f"Provider '{name}' must be a mapping")

    url_pattern = entry.get("urlPattern")
    if not isinstance(url_pattern, str) or not url_pattern:
        raise RuleCompileError(f"Missing required field 'urlPattern' in provider '{name}'")

    unknown = set(entry) - IGNORED_FIELDS - {
        "urlPattern", "rules", "referralMarketing", "exceptions", "redirections",
    }
    if unknown:
        logger.debug(f"Provider '{name}' has unrecognised fields: {sorted(unknown)}")

    return ProviderRule(
        name=name,
        url_pattern=_compile_pattern(url_pattern, name, "urlPattern", re.IGNORECASE),
        rules=_compile_param_rules(entry.get("rules", []), name, "rules"),
        referral_marketing=_compile_param_rules(
            entry.get("referralMarketing", []), name, "referralMarketing"
        ),
        exceptions=tuple(
            _compile_pattern(p, name, "exceptions", re.IGNORECASE)
            for p in _string_list(entry.get("exceptions", []), name, "exceptions")
        ),
        redirections=tuple(
            _compile_pattern(p, name, "redirections", re.IGNORECASE)
            for p in _string_list(entry.get("redirections", []), name, "redirections")
        ),
    )


def _compile_param_rules(items: Any, provider: str, field_name: str) -> tuple[ParamRule, ...]:
    if items is None:
        return ()
    if not isinstance(items, list):
        raise RuleCompileError(f"'{field_name}' in provider '{provider}' must be a list")

    compiled = []
    for item in items:
        if isinstance(item, str):
            compiled.append(ParamRule(
                source=item,
                kind=RuleKind.REGEX,
                compiled=_compile_pattern(item, provider, field_name),
            ))
        elif isinstance(item, dict):
            compiled.append(_compile_rule_object(item, provider, field_name))
        else:
            raise RuleCompileError(
                f"Invalid rule {item!r} in '{field_name}' of provider '{provider}'"
            )
    return tuple(compiled)


def _compile_rule_object(item: dict, provider: str, field_name: str) -> ParamRule:
    case_insensitive = bool(item.get("caseInsensitive", False))
    flags = re.IGNORECASE if case_insensitive else 0

    if isinstance(item.get("exact"), str) and item["exact"]:
        text = item["exact"]
        return ParamRule(
            source=text,
            kind=RuleKind.EXACT,
            compiled=re.compile(re.escape(text), flags),
            case_insensitive=case_insensitive,
        )
    if isinstance(item.get("pattern"), str) and item["pattern"]:
        text = item["pattern"]
        return ParamRule(
            source=text,
            kind=RuleKind.REGEX,
            compiled=_compile_pattern(text, provider, field_name, flags),
            case_insensitive=case_insensitive,
        )
    raise RuleCompileError(
        f"Rule in '{field_name}' of provider '{provider}' needs 'exact' or 'pattern'"
    )


def _string_list(items: Any, provider: str, field_name: str) -> list[str]:
    if items is None:
        return []
    if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
        raise RuleCompileError(
            f"'{field_name}' in provider '{provider}' must be a list of strings"
        )
    return items


def _compile_pattern(pattern: str, provider: str, field_name: str, flags: int = 0) -> re.Pattern:
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise RuleCompileError(
            f"Invalid pattern {pattern!r} in '{field_name}' of provider '{provider}': {e}"
        ) from e


class RuleLoader:
    """Fetch rule documents and compile them into rule sets.

    Sources are http(s) URLs or local file paths.

    Example:
        >>> loader = RuleLoader("https://rules2.clearurls.xyz/data.minify.json")
        >>> raw = await loader.fetch()
        >>> ruleset = compile_ruleset(raw, version=1)
    """

    def __init__(
        self,
        source: str = DEFAULTS["rules_source"],
        *,
        timeout: float = DEFAULTS["fetch_timeout"],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize rule loader.

        Args:
            source: Rule document URL or file path
            timeout: Fetch timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.source = source
        self.timeout = timeout
        self._transport = transport

    async def fetch(self) -> str:
        """Retrieve the raw rule document.

        Raises:
            RuleFetchError: On network, HTTP status or file read failures
        """
        if not self.source.startswith(("http://", "https://")):
            try:
                return Path(self.source).read_text(encoding="utf-8")
            except OSError as e:
                raise RuleFetchError(f"Failed to read rule file {self.source}: {e}") from e

        logger.info(f"Fetching rules from {self.source}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.source)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            raise RuleFetchError(f"Failed to fetch rules from {self.source}: {e}") from e

    async def load(self, *, version: int = 0) -> RuleSet:
        """Fetch and compile in one step.

        Raises:
            RuleFetchError: If the document cannot be retrieved
            RuleCompileError: If the document is invalid
        """
        raw = await self.fetch()
        return compile_ruleset(raw, version=version, source=self.source)


def load_bundled_ruleset(*, version: int = 0, path: Path = BUNDLED_RULES_PATH) -> RuleSet:
    """Compile the rule document shipped with the package.

    Raises:
        RuleCompileError: If the bundled document is missing or invalid
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RuleCompileError(f"Bundled rules unavailable at {path}: {e}") from e
    return compile_ruleset(raw, version=version, source=f"bundled:{path.name}")
