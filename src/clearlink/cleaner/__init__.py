"""URL cleaning components.

- Sanitizer: rule-based parameter removal over a RuleSet snapshot
- LinkExpander: shortened link resolution
- AIFallback: inference-backed classification of unresolved keys
"""

from clearlink.cleaner.sanitizer import Sanitizer
from clearlink.cleaner.expander import LinkExpander
from clearlink.cleaner.ai_fallback import AIFallback

__all__ = [
    "Sanitizer",
    "LinkExpander",
    "AIFallback",
]
