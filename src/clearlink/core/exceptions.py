class ClearLinkError(Exception):
    pass

class ConfigError(ClearLinkError):
    pass

class UrlParseError(ClearLinkError):
    """Input could not be parsed as a URL. Original text is passed through."""
    pass

# Rule errors
class RuleError(ClearLinkError):
    """Base exception for rule document errors."""
    pass

class RuleCompileError(RuleError):
    """Rule document failed validation or compilation. Previous snapshot kept."""
    pass

class RuleFetchError(RuleError):
    """Rule document could not be fetched."""
    pass

# Expansion errors
class ExpansionError(ClearLinkError):
    pass

class ExpansionTimeout(ExpansionError):
    pass

class ExpansionLoop(ExpansionError):
    pass

class AIFallbackError(ClearLinkError):
    """Inference call failed or returned an unexpected shape."""
    pass
