"""Public interface for the ``pnl_categorizer`` package.

This module exposes the package's entrypoints and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
The SQL-backed store lives in :mod:`pnl_categorizer.persistence` and is not
imported here so that dry runs do not need a database driver.
"""

from .api import analyze_csv_upload, result_to_dict, save_results, validate_upload
from .config import PipelineConfig
from .errors import (
    CurrencyNormalizationError,
    DuplicateRuleError,
    InputError,
    NotFoundError,
    PeriodConflictError,
    PersistenceError,
    PipelineError,
    StoreError,
)
from .models import (
    Category,
    CategoryLists,
    ColumnMapping,
    MappingResult,
    MatchKind,
    Period,
    ProcessingSummary,
    ProcessResult,
    RateSet,
    Rule,
    SaveResult,
    Transaction,
)
from .processor import CSVProcessor, build_processor
from .rule_engine import RuleEngine
from .store import InMemoryRecordStore, RecordStore

__all__ = [
    # API
    "analyze_csv_upload",
    "build_processor",
    "result_to_dict",
    "save_results",
    "validate_upload",
    # Components
    "CSVProcessor",
    "InMemoryRecordStore",
    "PipelineConfig",
    "RecordStore",
    "RuleEngine",
    # Models
    "Category",
    "CategoryLists",
    "ColumnMapping",
    "MappingResult",
    "MatchKind",
    "Period",
    "ProcessResult",
    "ProcessingSummary",
    "RateSet",
    "Rule",
    "SaveResult",
    "Transaction",
    # Errors
    "CurrencyNormalizationError",
    "DuplicateRuleError",
    "InputError",
    "NotFoundError",
    "PeriodConflictError",
    "PersistenceError",
    "PipelineError",
    "StoreError",
]
