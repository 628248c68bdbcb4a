"""Engine orchestration: the cleaning pipeline and the rule refresh task."""

from clearlink.orchestrator.pipeline import CleaningPipeline, start_engine
from clearlink.orchestrator.refresher import RuleRefresher

__all__ = [
    "CleaningPipeline",
    "RuleRefresher",
    "start_engine",
]
