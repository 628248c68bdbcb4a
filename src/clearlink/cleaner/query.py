"""Query and fragment parameter handling on raw URL strings.

Parameters are removed by dropping their ``key=value`` segments from the
original text. Surviving segments, the scheme, host and path keep their
original spelling and encoding; the URL is only rebuilt when something was
actually removed.
"""

import re
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from clearlink.core.constants import DEFAULT_MATCH_SCHEME
from clearlink.core.exceptions import UrlParseError


HOST_RE = re.compile(r"^[\w.-]+$", re.UNICODE)
SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


@dataclass(frozen=True)
class QueryParam:
    """One ``key=value`` segment of a query or fragment."""
    segment: str                            # Original text, e.g. "utm_source=abc"
    raw_key: str                            # Key as written, still percent-encoded
    key: str                                # Decoded key

    @property
    def keys(self) -> tuple[str, ...]:
        """Decoded key plus the raw spelling when it differs."""
        if self.raw_key != self.key:
            return (self.key, self.raw_key)
        return (self.key,)

    @property
    def value(self) -> Optional[str]:
        """Decoded value, or None for a bare key."""
        if "=" not in self.segment:
            return None
        return unquote_plus(self.segment.split("=", 1)[1])


class MatchTarget(NamedTuple):
    """URL prepared for rule matching."""
    host: str                               # Lowercased hostname
    match_url: str                          # Scheme present, host lowercased


def to_match_target(url: str) -> MatchTarget:
    """Normalize a URL for matching purposes only.

    Scheme-less input is matched as ``http://<input>``. The returned form is
    never emitted; cleaned URLs keep the caller's spelling.

    Raises:
        UrlParseError: If the text is not a usable URL
    """
    if not url or not isinstance(url, str):
        raise UrlParseError(f"Invalid URL: {url!r}")

    text = url.strip()
    if not text or any(ch.isspace() for ch in text):
        raise UrlParseError(f"Invalid URL: {url!r}")

    if not SCHEME_RE.match(text):
        text = f"{DEFAULT_MATCH_SCHEME}://{text}"

    try:
        parts = urlsplit(text)
        host = parts.hostname
        parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise UrlParseError(f"Failed to parse URL {url!r}: {e}") from e

    if not parts.scheme or not host:
        raise UrlParseError(f"URL has no host: {url!r}")
    if ":" not in host and not HOST_RE.match(host):
        raise UrlParseError(f"URL has an invalid host: {url!r}")

    match_url = urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        parts.path,
        parts.query,
        parts.fragment,
    ))
    return MatchTarget(host=host.lower(), match_url=match_url)


def split_url(url: str) -> tuple[str, Optional[str], Optional[str]]:
    """Split raw text into (base, query, fragment).

    Query and fragment are None when their separator is absent, and an
    empty string when the separator is present with nothing after it.
    """
    base, hash_sep, fragment = url.partition("#")
    base, query_sep, query = base.partition("?")
    return (
        base,
        query if query_sep else None,
        fragment if hash_sep else None,
    )


def join_url(base: str, query: Optional[str], fragment: Optional[str]) -> str:
    url = base
    if query is not None:
        url += "?" + query
    if fragment is not None:
        url += "#" + fragment
    return url


def parse_params(text: str) -> list[QueryParam]:
    params = []
    for segment in text.split("&"):
        if not segment:
            continue
        raw_key = segment.split("=", 1)[0]
        params.append(QueryParam(segment=segment, raw_key=raw_key, key=unquote_plus(raw_key)))
    return params


def fragment_has_params(fragment: Optional[str]) -> bool:
    """Fragments are treated as parameter lists only when they contain '='."""
    return bool(fragment) and "=" in fragment


def filter_params(
    text: str,
    remove: Callable[[QueryParam], bool],
) -> tuple[Optional[str], list[str]]:
    """Drop the segments selected by ``remove``.

    Returns:
        Tuple of (remaining text or None when nothing is left, removed keys)
    """
    kept: list[str] = []
    removed: list[str] = []
    for param in parse_params(text):
        if remove(param):
            removed.append(param.key)
        else:
            kept.append(param.segment)

    if not removed:
        return text, []
    return ("&".join(kept) or None), removed


def strip_params(url: str, remove: Callable[[QueryParam], bool]) -> tuple[str, list[str]]:
    """Remove matching parameters from a URL's query and fragment.

    Args:
        url: Raw URL text
        remove: Predicate selecting parameters to drop

    Returns:
        Tuple of (URL text, removed keys in query-then-fragment order).
        The URL is returned unchanged when nothing matched.
    """
    base, query, fragment = split_url(url)
    removed: list[str] = []

    if query:
        query, dropped = filter_params(query, remove)
        removed.extend(dropped)

    if fragment_has_params(fragment):
        fragment, dropped = filter_params(fragment, remove)
        removed.extend(dropped)

    if not removed:
        return url, []
    return join_url(base, query, fragment), removed


def rewrite_params(url: str, rewrite: Callable[[QueryParam], str]) -> str:
    """Replace query and fragment segments with the text ``rewrite`` returns.

    The URL is returned unchanged when every segment comes back as it was.
    """
    base, query, fragment = split_url(url)
    changed = False

    def rewrite_text(text: str) -> str:
        nonlocal changed
        segments = []
        for param in parse_params(text):
            segment = rewrite(param)
            if segment != param.segment:
                changed = True
            segments.append(segment)
        return "&".join(segments)

    if query:
        query = rewrite_text(query)
    if fragment_has_params(fragment):
        fragment = rewrite_text(fragment)

    if not changed:
        return url
    return join_url(base, query, fragment)


def param_keys(url: str) -> list[str]:
    """Distinct decoded keys of the query and parameter-style fragment."""
    _, query, fragment = split_url(url)
    keys: list[str] = []
    for text in (query, fragment if fragment_has_params(fragment) else None):
        if not text:
            continue
        for param in parse_params(text):
            if param.key not in keys:
                keys.append(param.key)
    return keys
