"""Rule sets: compiled model, document loading, and the active snapshot store.

- RuleSet / ProviderRule / ParamRule: immutable compiled rules
- RuleLoader: fetch and compile rule documents
- RuleStore: atomically swapped active snapshot
"""

from clearlink.rules.model import ParamRule, ProviderRule, RuleSet
from clearlink.rules.loader import RuleLoader, compile_ruleset, load_bundled_ruleset
from clearlink.rules.store import RuleStore

__all__ = [
    "ParamRule",
    "ProviderRule",
    "RuleSet",
    "RuleLoader",
    "compile_ruleset",
    "load_bundled_ruleset",
    "RuleStore",
]
