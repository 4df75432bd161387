"""Insight Engine: rule-based wellness guidance with feedback suppression and scope selection."""

from .catalog import RuleCatalog, load_catalog, load_default_catalog
from .collector import build_snapshot, snapshot_from_dict
from .config import EngineConfig
from .exceptions import CatalogError, ContextFetchError, InsightEngineError
from .feedback import FeedbackIndex, suppress
from .matcher import RuleMatcher, evaluate
from .models import ContextSnapshot, FeedbackRecord, Match, MedsContext, MoodContext, Rule, SleepContext
from .pipeline import InsightEngine
from .scope import pick, pick_for_screen
from .session import InsightSession
from .store import InsightStore

__all__ = [
    "InsightEngine",
    "InsightSession",
    "InsightStore",
    "RuleCatalog",
    "RuleMatcher",
    "EngineConfig",
    "FeedbackIndex",
    "ContextSnapshot",
    "MoodContext",
    "SleepContext",
    "MedsContext",
    "Rule",
    "Match",
    "FeedbackRecord",
    "CatalogError",
    "ContextFetchError",
    "InsightEngineError",
    "build_snapshot",
    "snapshot_from_dict",
    "evaluate",
    "suppress",
    "pick",
    "pick_for_screen",
    "load_catalog",
    "load_default_catalog",
]
