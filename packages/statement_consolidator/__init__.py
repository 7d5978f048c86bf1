"""Public interface for the ``statement_consolidator`` package.

Symbol re-exports only; no runtime logic and no side effects at import time.
"""

from .aggregator import BatchAggregator, BatchState
from .ai import AIStrategy, OpenAICategorizer
from .config import Settings, load_settings
from .engine import CategorizationEngine
from .errors import (
    BatchError,
    CategorizationError,
    ConsolidationError,
    InvalidFileError,
    OperationCancelled,
    ParseError,
    PersistenceError,
)
from .models import (
    UNCATEGORIZED,
    AccountIdentifier,
    Aggregation,
    BatchReport,
    CategorizationResult,
    Category,
    DateRange,
    FileGroup,
    Transaction,
)
from .rate_limit import RateLimiter
from .store import CategoryStore
from .strategies import DirectMappingStrategy, KeywordStrategy

__all__ = [
    # Engines
    "BatchAggregator",
    "BatchState",
    "CategorizationEngine",
    # Tiers and their collaborators
    "AIStrategy",
    "CategoryStore",
    "DirectMappingStrategy",
    "KeywordStrategy",
    "OpenAICategorizer",
    "RateLimiter",
    # Models
    "UNCATEGORIZED",
    "AccountIdentifier",
    "Aggregation",
    "BatchReport",
    "CategorizationResult",
    "Category",
    "DateRange",
    "FileGroup",
    "Transaction",
    # Settings
    "Settings",
    "load_settings",
    # Errors
    "BatchError",
    "CategorizationError",
    "ConsolidationError",
    "InvalidFileError",
    "OperationCancelled",
    "ParseError",
    "PersistenceError",
]
