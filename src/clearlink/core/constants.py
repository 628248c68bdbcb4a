"""Constants used throughout ClearLink.

This module contains enums, default values, and static lists
to ensure consistency across the engine.
"""

from enum import Enum


class RemovalSource(str, Enum):
    """Rule category responsible for removing a parameter."""
    CUSTOM = "custom"
    PROVIDER = "provider"
    GLOBAL = "global"
    AI = "ai"


class RuleKind(Enum):
    """How a parameter rule compares against a key."""
    EXACT = "exact"
    REGEX = "regex"


# Provider entry in a rule document that holds the global rules
GLOBAL_PROVIDER = "globalRules"

# Maximum redirect-unwrap restarts per sanitize call
MAX_UNWRAP_DEPTH = 5

# Scheme assumed when matching scheme-less input
DEFAULT_MATCH_SCHEME = "http"

# HTTP status codes treated as redirects by the link expander
REDIRECT_STATUSES = {301, 302, 303, 307, 308}


# Hosts whose links are expanded before cleaning
DEFAULT_SHORTENERS = (
    "bit.ly",
    "tinyurl.com",
    "t.co",
    "goo.gl",
    "rebrand.ly",
    "buff.ly",
    "is.gd",
    "ow.ly",
    "shorturl.at",
    "amzn.to",
)


# Application-wide defaults
DEFAULTS = {
    "rules_source": "https://rules2.clearurls.xyz/data.minify.json",
    "refresh_interval": 86400,
    "fetch_timeout": 30.0,
    "initial_retries": 3,
    "backoff_base": 1.0,
    "max_hops": 5,
    "per_hop_timeout": 5.0,
    "total_timeout": 10.0,
    "ai_timeout": 8.0,
}
