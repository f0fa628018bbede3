"""Public interface for the ``spend_categorizer`` package.

Symbol re-exports only; no runtime logic and no side effects at import time
(no client creation, no logging handler attachment, no environment reads).
"""

from .cache import LearningQueue, VerdictCache, cache_key, export_learning_queue
from .categories import Category, Region, Source, TxType
from .classifier import AiClassifier
from .config import ConfigurationError, Settings
from .engine import categorize_by_rules, tx_type_from
from .models import Categorization, Transaction
from .normalizer import normalize_text, region_from
from .rules import RULES, Rule, load_rules
from .service import CategorizationService

__all__ = [
    "CategorizationService",
    "AiClassifier",
    "categorize_by_rules",
    "tx_type_from",
    "normalize_text",
    "region_from",
    "RULES",
    "Rule",
    "load_rules",
    "VerdictCache",
    "LearningQueue",
    "cache_key",
    "export_learning_queue",
    "Transaction",
    "Categorization",
    "Category",
    "TxType",
    "Region",
    "Source",
    "Settings",
    "ConfigurationError",
]
